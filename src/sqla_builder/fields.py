from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, ClassVar


if TYPE_CHECKING:
    from .core import Builder


@dataclass(frozen=True)
class Field:
    """A model field mapped onto a table column.

    ``name`` is the field alias used in queries, ``column`` the database
    column (defaults to ``name``). Fields that do not exist as a column of
    the model's own table (``HasMany``, ``ManyToMany``) have ``in_db=False``
    and are never selected by ``with_()``.

    ``model`` is the owning model's logical name, bound by
    :meth:`Registry.register <sqla_builder.registry.Registry.register>`.
    """

    joinable: ClassVar[bool] = False

    name: str
    column: str = ""
    in_db: bool = True
    model: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.column:
            object.__setattr__(self, "column", self.name)

    def bind(self, model: str) -> Field:
        """Return a copy of this field owned by *model*."""
        return replace(self, model=model)


@dataclass(frozen=True)
class Joinable(Field, ABC):
    """A relationship field that knows how to join its foreign model.

    ``with_()`` selects the foreign model's columns itself and then hands the
    builder to :meth:`emit_join`, which appends the JOIN and its ON
    condition. Join shapes differ per relationship kind.
    """

    joinable: ClassVar[bool] = True
    uselist: ClassVar[bool] = False

    foreign_model: str = field(kw_only=True)
    foreign_column: str = field(default="id", kw_only=True)

    @abstractmethod
    def emit_join(self, builder: Builder[Any]) -> None:
        """Append the JOIN for this relationship, and its ON conditions, to *builder*."""


@dataclass(frozen=True)
class BelongsTo(Joinable):
    """Many-to-one: the owner's ``column`` references ``foreign_column``.

    Example:
        >>> BelongsTo("author", foreign_model="user").column
        'author_id'
    """

    def __post_init__(self) -> None:
        if not self.column:
            object.__setattr__(self, "column", f"{self.name}_id")

    def emit_join(self, builder: Builder[Any]) -> None:
        builder.join(self.foreign_model, "LEFT").on(
            f"{self.model}.{self.name}", "=", f"{self.foreign_model}.{self.foreign_column}"
        )


@dataclass(frozen=True)
class HasMany(Joinable):
    """One-to-many: ``foreign_column`` on the foreign model references the
    owner's ``column`` (its primary key by default)."""

    uselist: ClassVar[bool] = True

    in_db: bool = False

    def __post_init__(self) -> None:
        if not self.column:
            object.__setattr__(self, "column", "id")

    def emit_join(self, builder: Builder[Any]) -> None:
        builder.join(self.foreign_model, "LEFT").on(
            f"{self.foreign_model}.{self.foreign_column}", "=", f"{self.model}.{self.column}"
        )


@dataclass(frozen=True)
class HasOne(HasMany):
    """One-to-one seen from the side that does not hold the foreign key."""

    uselist: ClassVar[bool] = False


@dataclass(frozen=True)
class ManyToMany(Joinable):
    """Many-to-many through an association table.

    ``through_column`` references the owner's ``column`` and defaults to
    ``<owner>_id``; ``through_foreign_column`` references the foreign model's
    ``foreign_column`` and defaults to ``<foreign_model>_id``.
    """

    uselist: ClassVar[bool] = True

    in_db: bool = False
    through: str = field(default="", kw_only=True)
    through_column: str = field(default="", kw_only=True)
    through_foreign_column: str = field(default="", kw_only=True)

    def __post_init__(self) -> None:
        if not self.column:
            object.__setattr__(self, "column", "id")

        if not self.through:
            raise ValueError(f"ManyToMany field {self.name!r} requires `through`")

    def bind(self, model: str) -> Field:
        return replace(
            self,
            model=model,
            through_column=self.through_column or f"{model}_id",
            through_foreign_column=self.through_foreign_column or f"{self.foreign_model}_id",
        )

    def emit_join(self, builder: Builder[Any]) -> None:
        builder.join(self.through, "LEFT").on(
            f"{self.through}.{self.through_column}", "=", f"{self.model}.{self.column}"
        )
        builder.join(self.foreign_model, "LEFT").on(
            f"{self.foreign_model}.{self.foreign_column}",
            "=",
            f"{self.through}.{self.through_foreign_column}",
        )


class FieldTable(Mapping[str, Field]):
    """Read-only table of a model's fields, keyed by field alias.

    Iteration follows declaration order, which is the order ``with_()``
    selects a related model's columns in. :meth:`by_column` maps a database
    column back to the field stored in it; result rows are renamed to field
    aliases through it.

    Example:
        >>> fields = FieldTable([Field("id"), Field("body", column="content")])
        >>> fields["body"].column
        'content'
        >>> fields.by_column("content").name
        'body'
    """

    __slots__ = ("_columns", "_fields", "_hash")

    def __init__(self, fields: Iterable[Field] = ()) -> None:
        self._fields: dict[str, Field] = {f.name: f for f in fields}
        self._columns: dict[str, Field] = {}
        for f in self._fields.values():
            if f.in_db:
                self._columns.setdefault(f.column, f)

        self._hash: int | None = None

    def __getitem__(self, name: str) -> Field:
        return self._fields[name]

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {list(self._fields)!r}>"

    def __eq__(self, other: object) -> bool:
        # order matters between tables, not against plain mappings
        if isinstance(other, FieldTable):
            return list(self._fields.items()) == list(other._fields.items())

        return super().__eq__(other)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(tuple(self._fields.items()))

        return self._hash

    def bind(self, model: str) -> FieldTable:
        """Return a copy with every field owned by *model*."""
        return type(self)(f.bind(model) for f in self._fields.values())

    def by_column(self, column: str) -> Field | None:
        """Return the field stored in *column* of the model's own table, or ``None``."""
        return self._columns.get(column)

    def in_db(self) -> tuple[Field, ...]:
        """Fields backed by a column of the model's own table, in order."""
        return tuple(f for f in self._fields.values() if f.in_db)
