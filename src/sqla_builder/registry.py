from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Final

import sqlalchemy as sa
from sqlalchemy import orm

from .fields import BelongsTo, Field, FieldTable, HasMany, HasOne, ManyToMany


logger = logging.getLogger(__name__)

DEFAULT_DB_GROUP: Final[str] = "default"
_MODEL_PREFIX: Final[str] = "model_"

RecordFactory = Callable[[dict[str, Any]], Any]


@lru_cache(maxsize=1024)
def _normalize(name: str) -> str:
    name = name.strip().lower()
    if name.startswith(_MODEL_PREFIX) and len(name) > len(_MODEL_PREFIX):
        return name[len(_MODEL_PREFIX) :]

    return name


def model_name(model: Any) -> str:
    """Normalize a model reference to its logical name.

    Accepts a name (``"post"``, ``"Model_Post"``), a class or an instance.
    Matching is case-insensitive and a leading ``model_`` is dropped.

    Example:
        >>> model_name("Model_Test_Alias")
        'test_alias'
        >>> model_name("test_alias")
        'test_alias'
    """
    if isinstance(model, str):
        return _normalize(model)

    if isinstance(model, type):
        return _normalize(model.__name__)

    return _normalize(type(model).__name__)


@lru_cache
def get_table_name(model: type[orm.DeclarativeBase]) -> str:
    """Return the table name for a mapped class, preferring ``__tablename__``.

    Raises:
        ValueError: If the table name cannot be determined.
    """
    result = getattr(model, "__tablename__", None) or model.__table__.description
    if not result:
        raise ValueError(f"Cannot determine tablename for {model}")

    return result


@dataclass(slots=True, frozen=True)
class ModelMeta:
    """Registered metadata for one model.

    Attributes:
        model: Normalized logical name.
        table: Table the model is stored in.
        fields: Ordered field table, see :class:`~sqla_builder.fields.FieldTable`.
        sorting: Default ``(column, direction)`` pairs applied to SELECTs.
        load_with: Relationship paths eager-loaded on every SELECT.
        db: Connection group statements for this model run against.
        primary_key: Primary key field.
        factory: Builds a record from ``{field: value}``; ``None`` keeps dicts.
    """

    model: str
    table: str
    fields: FieldTable = field(default_factory=FieldTable)
    sorting: tuple[tuple[str, str | None], ...] = ()
    load_with: tuple[str, ...] = ()
    db: str = DEFAULT_DB_GROUP
    primary_key: str = "id"
    factory: RecordFactory | None = field(default=None, compare=False)

    def get_field(self, name: str) -> Field | None:
        """Return the field called *name*, or ``None``."""
        return self.fields.get(name)

    def in_db_fields(self) -> Iterator[Field]:
        """Fields backed by a column of the model's own table."""
        return iter(self.fields.in_db())


class Registry:
    """Schema registry: model name to :class:`ModelMeta`.

    A registry is injected into every builder; there is no global instance.
    Lookups accept anything :func:`model_name` accepts and return ``None``
    for unknown models so that callers can fall back to raw table names.
    """

    __slots__ = ("_models",)

    def __init__(self, models: Iterable[ModelMeta] = ()) -> None:
        self._models: dict[str, ModelMeta] = {}
        for meta in models:
            self._models.setdefault(meta.model, meta)

    def register(
        self,
        model: Any,
        *,
        table: str | None = None,
        fields: Iterable[Field] = (),
        sorting: Sequence[tuple[str, str | None]] | Mapping[str, str | None] = (),
        load_with: Sequence[str] = (),
        db: str = DEFAULT_DB_GROUP,
        primary_key: str = "id",
        factory: RecordFactory | None = None,
    ) -> ModelMeta:
        """Register *model* and return its metadata.

        Registering a name that is already known is a no-op returning the
        existing metadata.

        Args:
            model: Model name, class or instance.
            table: Table name. Defaults to the logical model name.
            fields: Field descriptors; they are bound to this model.
            sorting: Default sort, as pairs or a ``{column: direction}`` mapping.
            load_with: Relationship paths to eager-load on every SELECT.
            db: Connection group.
            primary_key: Primary key field.
            factory: Record factory used by :class:`~sqla_builder.collection.Collection`.
        """
        name = model_name(model)
        if (existing := self._models.get(name)) is not None:
            return existing

        if isinstance(sorting, Mapping):
            sorting = tuple(sorting.items())

        meta = ModelMeta(
            model=name,
            table=table or name,
            fields=FieldTable(fields).bind(name),
            sorting=tuple(sorting),
            load_with=tuple(load_with),
            db=db,
            primary_key=primary_key,
            factory=factory,
        )
        self._models[name] = meta
        logger.debug("Registered model %r on table %r (%d fields)", name, meta.table, len(meta.fields))

        return meta

    def lookup(self, model: Any) -> ModelMeta | None:
        """Return metadata for *model*, or ``None`` if it is not registered."""
        if isinstance(model, (sa.ColumnElement, sa.FromClause)) or not model:
            return None

        return self._models.get(model_name(model))

    def __getitem__(self, model: Any) -> ModelMeta:
        """Look up *model*, raising ``KeyError`` if it is not registered."""
        if (meta := self.lookup(model)) is None:
            raise KeyError(model)

        return meta

    def __contains__(self, model: object) -> bool:
        return self.lookup(model) is not None

    def __iter__(self) -> Iterator[ModelMeta]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    @property
    def models(self) -> Mapping[str, ModelMeta]:
        """Snapshot of the registered models (read-only)."""
        return MappingProxyType(dict(self._models))

    @classmethod
    def from_declarative_base(cls, base: type[orm.DeclarativeBase]) -> Registry:
        """Build a registry from every mapper of a SQLAlchemy declarative base."""
        return get_registry(base)


def _relationship_field(
    mapper: orm.Mapper[Any],
    rel: orm.RelationshipProperty[Any],
) -> Field | None:
    foreign = model_name(rel.mapper.class_)

    if rel.secondary is not None:
        through_column = through_foreign_column = None
        column = foreign_column = "id"
        for fk in rel.secondary.foreign_keys:
            if through_column is None and fk.column.table is mapper.local_table:
                through_column, column = fk.parent.name, fk.column.name
            elif fk.column.table is rel.mapper.local_table:
                through_foreign_column, foreign_column = fk.parent.name, fk.column.name

        if through_column is None or through_foreign_column is None:
            logger.debug("Skipping relationship %s: no usable association keys", rel)
            return None

        return ManyToMany(
            rel.key,
            column=column,
            foreign_model=foreign,
            foreign_column=foreign_column,
            through=rel.secondary.name,
            through_column=through_column,
            through_foreign_column=through_foreign_column,
        )

    if not rel.local_remote_pairs:
        return None

    local, remote = rel.local_remote_pairs[0]
    if rel.direction is orm.MANYTOONE:
        # The foreign key column is already registered as a plain field.
        return BelongsTo(
            rel.key,
            column=local.name,
            in_db=False,
            foreign_model=foreign,
            foreign_column=remote.name,
        )

    field_cls = HasMany if rel.uselist else HasOne
    return field_cls(rel.key, column=local.name, foreign_model=foreign, foreign_column=remote.name)


def _instance_factory(cls: type[orm.DeclarativeBase]) -> RecordFactory:
    def build(values: dict[str, Any]) -> Any:
        return cls(**values)

    return build


def get_registry(base: type[orm.DeclarativeBase]) -> Registry:
    """Build a :class:`Registry` from a SQLAlchemy declarative base.

    Every mapped class becomes a model named after the lower-cased class
    name. Column attributes become :class:`Field`s, relationships become
    ``BelongsTo``/``HasOne``/``HasMany``/``ManyToMany`` fields. Optional class
    attributes ``__sorting__``, ``__load_with__`` and ``__db_group__`` supply
    default sort order, eager loads and connection group. Records are built
    as instances of the mapped class.

    Raises:
        AssertionError: If base is not a subclass of orm.DeclarativeBase.

    Example:
        >>> registry = get_registry(Base)
        >>> registry["post"].table
        'posts'
    """
    assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
        "base must be a subclass of orm.DeclarativeBase"
    )

    registry = Registry()
    for mapper in sorted(base.registry.mappers, key=lambda m: m.class_.__name__):
        cls = mapper.class_
        fields: list[Field] = [
            Field(attr.key, column=attr.columns[0].name) for attr in mapper.column_attrs
        ]
        fields.extend(
            f for rel in mapper.relationships if (f := _relationship_field(mapper, rel)) is not None
        )
        primary_key = mapper.primary_key[0]
        pk_field = next(
            (attr.key for attr in mapper.column_attrs if attr.columns[0] is primary_key),
            primary_key.name,
        )

        registry.register(
            cls,
            table=get_table_name(cls),
            fields=fields,
            sorting=getattr(cls, "__sorting__", ()),
            load_with=getattr(cls, "__load_with__", ()),
            db=getattr(cls, "__db_group__", DEFAULT_DB_GROUP),
            primary_key=pk_field,
            factory=_instance_factory(cls),
        )

    return registry
