from __future__ import annotations

import logging
import sys
import warnings
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Final, Generic, TypeVar, overload


if sys.version_info >= (3, 11):
    from typing import Required, TypedDict, Unpack
else:
    from typing_extensions import Required, TypedDict, Unpack

import sqlalchemy as sa

from .collection import Collection
from .compiler import (
    COUNT_LABEL,
    Condition,
    ConditionGroup,
    JoinClause,
    Logic,
    QueryState,
    coerce_kind,
    compile_count,
    compile_statement,
)
from .datastructures import Identifier, Kind
from .exceptions import ConfigurationError
from .registry import DEFAULT_DB_GROUP, ModelMeta, Registry
from .resolver import resolve_column, resolve_table


if TYPE_CHECKING:
    from sqlalchemy.engine.interfaces import Dialect

    from .database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_RESULT: Final = object()

ColumnArg = str | Identifier | sa.ColumnElement[Any]
AliasedArg = ColumnArg | tuple[ColumnArg, str]
TableArg = str | tuple[str, str]


def _split_alias(value: Any) -> tuple[Any, str | None]:
    if isinstance(value, tuple):
        return value[0], value[1]

    return value, None


class Builder(Generic[T]):
    """Model-aware query builder with a deferred statement kind.

    Tables, columns and relationships are given in terms of registered
    models and fields (``"post"``, ``"author"``, ``"post.title"``) and
    resolved through the :class:`~sqla_builder.registry.Registry`; unknown
    names pass through untouched so ad-hoc tables keep working. The first
    registered model that reaches ``from_()`` (normally the constructor's)
    becomes the *canonical* model against which unqualified names resolve.

    The same instance compiles into a SELECT, INSERT, UPDATE or DELETE; the
    kind is only consulted by :meth:`build` and :meth:`execute`, and can be
    changed at any time with :meth:`kind`.

    ``execute()`` runs once: later calls return the cached result until
    :meth:`reset`.

    Example::

        posts = (
            Builder("post", Kind.SELECT, registry=registry, database=db)
            .with_("author")
            .where("status", "=", "published")
            .order_by("created", "DESC")
            .limit(10)
            .execute()
        )
    """

    __slots__ = (
        "_database",
        "_having_stack",
        "_kind",
        "_meta",
        "_model",
        "_registry",
        "_result",
        "_state",
        "_where_stack",
    )

    def __init__(
        self,
        model: Any,
        kind: Kind | str | None,
        *,
        registry: Registry,
        database: Database | None = None,
    ) -> None:
        if not model or kind is None:
            raise ConfigurationError(
                f"{type(self).__name__} requires `model` and `kind` to be set in the constructor"
            )

        self._model = model
        self._kind = coerce_kind(kind)
        self._registry = registry
        self._database = database
        self._meta: ModelMeta | None = None
        self._result: Any = _NO_RESULT
        self._state = QueryState()
        self._where_stack: list[ConditionGroup] = [self._state.where]
        self._having_stack: list[ConditionGroup] = [self._state.having]

        self._register_model()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._kind.value} model={self._model!r}>"

    def __str__(self) -> str:
        return str(self.compile())

    def __clause_element__(self) -> sa.Select[Any]:
        """Embed this builder in another statement as a SELECT subquery."""
        return self.build(Kind.SELECT)  # type: ignore[return-value]

    @property
    def meta(self) -> ModelMeta | None:
        """The canonical model, or ``None`` for unregistered tables."""
        return self._meta

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def state(self) -> QueryState:
        """Accumulated clauses (resolved identifiers)."""
        return self._state

    # -- resolution ----------------------------------------------------------

    def _column(self, column: Any, qualify: bool | None = None) -> Any:
        return resolve_column(column, self._meta, self._registry, qualify)

    def _table(self, table: Any) -> Any:
        return resolve_table(table, self._registry)

    def _register_model(self) -> None:
        self._meta = self._registry.lookup(self._model)
        self.from_(self._meta.table if self._meta is not None else self._model)

    # -- clauses -------------------------------------------------------------

    def select(self, *columns: AliasedArg) -> Builder[T]:
        """Choose the columns to select; ``(column, alias)`` pairs are kept."""
        return self.select_array(columns)

    def select_array(self, columns: Sequence[AliasedArg]) -> Builder[T]:
        for column in columns:
            column, alias = _split_alias(column)
            self._state.select.append((self._column(column, True), alias))

        return self

    def distinct(self, value: bool = True) -> Builder[T]:
        self._state.distinct = value
        return self

    def from_(self, *tables: TableArg) -> Builder[T]:
        """Add tables to ``FROM``.

        The first registered model seen becomes the canonical model unless
        one is already set.
        """
        for table in tables:
            table, alias = _split_alias(table)
            if self._meta is None and (meta := self._registry.lookup(table)) is not None:
                self._meta = meta

            self._state.from_.append((self._table(table), alias))

        return self

    def join(self, table: TableArg, type: str | None = None) -> Builder[T]:  # noqa: A002
        """Add a ``JOIN``; follow with :meth:`on`.

        Args:
            table: Model, table, or ``(table, alias)``.
            type: ``None``/``"INNER"``, ``"LEFT"`` or ``"FULL"``.
        """
        table, alias = _split_alias(table)
        self._state.joins.append(JoinClause(self._table(table), alias, type))
        return self

    def on(self, c1: ColumnArg, op: str, c2: ColumnArg) -> Builder[T]:
        """Add an ``ON`` condition to the last join; repeated calls are ANDed."""
        if not self._state.joins:
            raise ConfigurationError("on() requires a preceding join()")

        self._state.joins[-1].on.append((self._column(c1, True), op, self._column(c2, True)))
        return self

    def _condition(
        self, stack: list[ConditionGroup], logic: Logic, column: Any, op: str, value: Any
    ) -> Builder[T]:
        stack[-1].children.append(Condition(logic, column, op, value))
        return self

    def _open(self, stack: list[ConditionGroup], logic: Logic) -> Builder[T]:
        group = ConditionGroup(logic)
        stack[-1].children.append(group)
        stack.append(group)
        return self

    def _close(self, stack: list[ConditionGroup]) -> Builder[T]:
        if len(stack) == 1:
            raise ConfigurationError("No condition group is open")

        stack.pop()
        return self

    def where(self, column: ColumnArg, op: str, value: Any) -> Builder[T]:
        """Alias of :meth:`and_where`."""
        return self.and_where(column, op, value)

    def and_where(self, column: ColumnArg, op: str, value: Any) -> Builder[T]:
        """Add an ``AND`` condition. *value* is bound, never resolved."""
        return self._condition(self._where_stack, "AND", self._column(column, True), op, value)

    def or_where(self, column: ColumnArg, op: str, value: Any) -> Builder[T]:
        return self._condition(self._where_stack, "OR", self._column(column, True), op, value)

    def where_open(self) -> Builder[T]:
        return self.and_where_open()

    def and_where_open(self) -> Builder[T]:
        return self._open(self._where_stack, "AND")

    def or_where_open(self) -> Builder[T]:
        return self._open(self._where_stack, "OR")

    def where_close(self) -> Builder[T]:
        return self._close(self._where_stack)

    and_where_close = where_close
    or_where_close = where_close

    def having(self, column: ColumnArg, op: str, value: Any = None) -> Builder[T]:
        return self.and_having(column, op, value)

    def and_having(self, column: ColumnArg, op: str, value: Any = None) -> Builder[T]:
        return self._condition(self._having_stack, "AND", self._column(column), op, value)

    def or_having(self, column: ColumnArg, op: str, value: Any = None) -> Builder[T]:
        return self._condition(self._having_stack, "OR", self._column(column), op, value)

    def having_open(self) -> Builder[T]:
        return self.and_having_open()

    def and_having_open(self) -> Builder[T]:
        return self._open(self._having_stack, "AND")

    def or_having_open(self) -> Builder[T]:
        return self._open(self._having_stack, "OR")

    def having_close(self) -> Builder[T]:
        return self._close(self._having_stack)

    and_having_close = having_close
    or_having_close = having_close

    def group_by(self, *columns: Any) -> Builder[T]:
        """Add ``GROUP BY`` entries; each is resolved as a model reference."""
        self._state.group_by.extend(self._table(column) for column in columns)
        return self

    def order_by(self, column: ColumnArg, direction: str | None = None) -> Builder[T]:
        self._state.order_by.append((self._column(column), direction))
        return self

    def limit(self, number: int | None) -> Builder[T]:
        self._state.limit = number
        return self

    def offset(self, number: int | None) -> Builder[T]:
        self._state.offset = number
        return self

    def set(self, pairs: Mapping[Any, Any], alias: bool = True) -> Builder[T]:
        """Set UPDATE assignments from a ``{column: value}`` mapping."""
        for column, value in pairs.items():
            self.value(column, value, alias)

        return self

    def value(self, column: Any, value: Any, alias: bool = True) -> Builder[T]:
        """Set a single UPDATE assignment; the last write for a column wins."""
        if alias:
            column = self._column(column)

        self._state.set[column] = value
        return self

    def columns(self, columns: Sequence[Any], alias: bool = True) -> Builder[T]:
        """Set the INSERT column list."""
        self._state.columns = [self._column(c) if alias else c for c in columns]
        return self

    def values(self, *rows: Sequence[Any]) -> Builder[T]:
        """Append INSERT value rows, one per argument."""
        self._state.values.extend(tuple(row) for row in rows)
        return self

    def with_(self, relationship: str) -> Builder[T]:
        """Eager-join a ``:``-separated relationship chain.

        The canonical model's columns are selected, then every hop adds the
        related model's columns, aliased ``<model>:<hop>:...:<field>``, and
        the JOIN emitted by the relationship field. The chain stops silently
        at the first segment that is not a relationship.

        Calls are cumulative: requesting the same chain twice joins it
        twice.

        Example:
            >>> Builder("post", Kind.SELECT, registry=registry).with_("author:organization")
        """
        if self._meta is None:
            warnings.warn(
                f"with_({relationship!r}) ignored: {self._model!r} is not a registered model",
                stacklevel=2,
            )
            return self

        self.select("*")

        parent = self._meta
        chain = parent.model
        for segment in relationship.split(":"):
            field = parent.get_field(segment)
            if field is None or not field.joinable:
                logger.debug(
                    "Relationship chain %r stops at %r on model %r",
                    relationship,
                    segment,
                    parent.model,
                )
                break

            foreign = self._registry.lookup(field.foreign_model)
            if foreign is None:
                logger.debug("Relationship %r targets unregistered model %r", segment, field.foreign_model)
                break

            chain = f"{chain}:{field.name}"
            self._state.select.extend(
                (f"{foreign.table}.{f.column}", f"{chain}:{f.name}") for f in foreign.in_db_fields()
            )
            field.emit_join(self)  # type: ignore[attr-defined]
            parent = foreign

        return self

    # -- compile & execute ---------------------------------------------------

    @overload
    def kind(self, kind: None = None) -> Kind: ...

    @overload
    def kind(self, kind: Kind | str) -> Builder[T]: ...

    def kind(self, kind: Kind | str | None = None) -> Kind | Builder[T]:
        """Get the statement kind, or set it and return the builder."""
        if kind is None:
            return self._kind

        self._kind = coerce_kind(kind)
        return self

    def build(self, kind: Kind | str | None = None) -> sa.Executable:
        """Compile the accumulated state into a SQLAlchemy statement.

        Args:
            kind: Statement kind; defaults to the builder's kind.

        Raises:
            ConfigurationError: If *kind* is not a statement kind.
        """
        return compile_statement(self._state, self._kind if kind is None else kind)

    def compile(
        self, dialect: Dialect | None = None, kind: Kind | str | None = None
    ) -> sa.sql.compiler.Compiled:
        """Render the statement for *dialect* (SQLAlchemy's default if omitted)."""
        return self.build(kind).compile(dialect=dialect)

    def _get_database(self) -> Database:
        if self._database is None:
            raise ConfigurationError(f"{type(self).__name__} has no database to execute against")

        return self._database

    def _build_with_defaults(self, meta: ModelMeta) -> sa.Executable:
        """Build a SELECT with the canonical model's sorting and ``load_with``.

        The defaults are applied to a copy of the state; the builder keeps
        its own clauses.
        """
        state = self._state
        self._state = replace(
            state,
            select=list(state.select),
            joins=list(state.joins),
            order_by=list(state.order_by),
        )
        try:
            # Qualified: eager joins may bring in same-named columns.
            self._state.order_by.extend(
                (self._column(column, True), direction) for column, direction in meta.sorting
            )

            for relationship in meta.load_with:
                self.with_(relationship)

            return self.build()
        finally:
            self._state = state

    def execute(self, db: str = DEFAULT_DB_GROUP) -> Any:
        """Run the statement once and return its result.

        SELECTs return a :class:`~sqla_builder.collection.Collection` of
        records, or a single record (``None`` if missing) when ``limit(1)``
        was requested. Other kinds return the database's raw result.

        The canonical model's connection group overrides *db*; for SELECTs
        its default sorting and ``load_with`` relationships are added to the
        executed statement. The builder's own clauses are left as they are.
        """
        if self._result is not _NO_RESULT:
            logger.debug("Returning cached result for %r", self)
            return self._result

        database = self._get_database()

        if self._meta is not None:
            db = self._meta.db

        if self._meta is not None and self._kind is Kind.SELECT:
            statement = self._build_with_defaults(self._meta)
        else:
            statement = self.build()

        logger.debug("Executing %r on group %r", self, db)
        result = database.execute(statement, db)

        if self._kind is Kind.SELECT:
            result = Collection(self._meta, result, self._registry)  # type: ignore[arg-type]
            if self._state.limit == 1:
                result = result.current()

        self._result = result
        return result

    def count(self) -> int:
        """Count the rows matching the current FROM, JOIN and WHERE clauses.

        Runs immediately and leaves the builder (and its cached result)
        untouched.
        """
        db = self._meta.db if self._meta is not None else DEFAULT_DB_GROUP
        rows = self._get_database().execute(compile_count(self._state), db)
        return int(rows[0][COUNT_LABEL])  # type: ignore[index]

    def reset(self) -> Builder[T]:
        """Clear every clause and the cached result, keeping model and kind."""
        self._state = QueryState()
        self._where_stack = [self._state.where]
        self._having_stack = [self._state.having]
        self._result = _NO_RESULT
        self._register_model()

        return self


class _BuilderParamsType(TypedDict, total=False):
    model: Required[Any]
    registry: Required[Registry]
    kind: Kind | str
    database: Database | None


def sqla_query(**params: Unpack[_BuilderParamsType]) -> Builder[Any]:
    """Create a :class:`Builder`; the kind defaults to SELECT.

    Examples:
        Select with an eager-loaded relationship::

            posts = sqla_query(model="post", registry=registry, database=db).with_("author")

        Update::

            (
                sqla_query(model="post", kind="update", registry=registry, database=db)
                .set({"status": "draft"})
                .where("id", "=", 1)
                .execute()
            )
    """
    return Builder(
        params["model"],
        params.get("kind", Kind.SELECT),
        registry=params["registry"],
        database=params.get("database"),
    )
