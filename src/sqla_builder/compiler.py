"""Compile accumulated builder state into SQLAlchemy Core statements.

:func:`compile_statement` is a pure function of a :class:`QueryState` and a
:class:`~sqla_builder.datastructures.Kind`. Only the clauses that make sense
for the kind are carried over: a SELECT uses everything, UPDATE uses its
assignments and WHERE, INSERT its columns and value rows, DELETE only WHERE.

Identifiers in the state are already resolved strings (``table.column``,
``column``, relationship aliases or raw expressions). Tables are emitted as
lightweight :func:`sqlalchemy.table` constructs carrying exactly the columns
the statement references, so the result compiles for any dialect without a
``MetaData``.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Final, Literal, Union

import sqlalchemy as sa

from .datastructures import Kind
from .exceptions import ConfigurationError


COUNT_LABEL: Final[str] = "total"

_QUOTED: Final[re.Pattern[str]] = re.compile(r'"(.+?)"')
_RAW_MARKERS: Final[tuple[str, ...]] = ('"', "(", " ", "*")

_COMPARISONS: Final[dict[str, Callable[[Any, Any], Any]]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_JOIN_TYPES: Final[dict[str | None, dict[str, bool]]] = {
    None: {},
    "INNER": {},
    "LEFT": {"isouter": True},
    "LEFT OUTER": {"isouter": True},
    "FULL": {"full": True},
    "FULL OUTER": {"full": True},
}

Logic = Literal["AND", "OR"]


@dataclass(slots=True)
class Condition:
    logic: Logic
    column: Any
    op: str
    value: Any


@dataclass(slots=True)
class ConditionGroup:
    logic: Logic = "AND"
    children: list[Union[Condition, ConditionGroup]] = field(default_factory=list)


@dataclass(slots=True)
class JoinClause:
    table: str
    alias: str | None = None
    type: str | None = None
    on: list[tuple[Any, str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class QueryState:
    """Kind-agnostic clauses of one statement in progress."""

    select: list[tuple[Any, str | None]] = field(default_factory=list)
    distinct: bool = False
    from_: list[tuple[str, str | None]] = field(default_factory=list)
    joins: list[JoinClause] = field(default_factory=list)
    where: ConditionGroup = field(default_factory=ConditionGroup)
    having: ConditionGroup = field(default_factory=ConditionGroup)
    group_by: list[Any] = field(default_factory=list)
    order_by: list[tuple[Any, str | None]] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    columns: list[Any] = field(default_factory=list)
    values: list[tuple[Any, ...]] = field(default_factory=list)
    set: dict[Any, Any] = field(default_factory=dict)


def coerce_kind(kind: Any) -> Kind:
    """Return *kind* as a :class:`Kind`, raising ``ConfigurationError`` if it is not one."""
    if isinstance(kind, Kind):
        return kind

    try:
        return Kind(kind.lower() if isinstance(kind, str) else kind)
    except ValueError:
        raise ConfigurationError(
            f"Builder compiled without a statement kind specified (got {kind!r})"
        ) from None


def _is_raw(ref: str) -> bool:
    return any(marker in ref for marker in _RAW_MARKERS)


def _split(ref: Any) -> tuple[str | None, str] | None:
    """Split ``table.column`` into its parts; ``None`` for anything not a plain column."""
    if not isinstance(ref, str) or _is_raw(ref) or ":" in ref:
        return None

    table, sep, column = ref.rpartition(".")
    return (table if sep else None), column


def _value(value: Any) -> Any:
    """Turn a Python value into a bound literal; expressions pass through."""
    if hasattr(value, "__clause_element__"):
        value = value.__clause_element__()

    if isinstance(value, sa.Select):
        return value.scalar_subquery()

    if isinstance(value, sa.sql.ClauseElement):
        return value

    if value is None:
        return sa.null()

    return sa.literal(value)


class _Catalog:
    """The tables and aliases of one compile, with every referenced column."""

    __slots__ = ("_aliases", "_columns", "_tables")

    def __init__(self) -> None:
        self._columns: dict[str, dict[str, None]] = {}
        self._aliases: dict[str, str] = {}
        self._tables: dict[str, sa.FromClause] = {}

    def add_table(self, table: str, alias: str | None = None) -> None:
        self._columns.setdefault(table, {})
        if alias:
            self._aliases[alias] = table

    def add_column(self, table: str, column: str) -> None:
        self._columns.setdefault(self._aliases.get(table, table), {})[column] = None

    def freeze(self) -> None:
        for name, columns in self._columns.items():
            self._tables[name] = sa.table(name, *(sa.column(c) for c in columns))

        for alias, name in self._aliases.items():
            self._tables[alias] = self._tables[name].alias(alias)

    def table(self, name: str) -> sa.FromClause:
        return self._tables[name]

    def column(self, ref: Any) -> Any:
        """Turn a resolved column reference into a SQLAlchemy expression."""
        if hasattr(ref, "__clause_element__"):
            ref = ref.__clause_element__()

        if not isinstance(ref, str):
            return ref

        if ref == "*" or ref.endswith(".*"):
            return sa.literal_column(ref)

        if _is_raw(ref):
            return sa.literal_column(_QUOTED.sub(lambda m: m.group(1), ref))

        # relationship alias from with_(); quoted as the select label is
        if ":" in ref:
            return sa.column(ref)

        table, _, column = ref.rpartition(".")
        if table and table in self._tables:
            return self._tables[table].c[column]

        return sa.column(column)


class _Compiler:
    __slots__ = ("catalog", "kind", "state")

    def __init__(self, state: QueryState, kind: Kind) -> None:
        self.state = state
        self.kind = kind
        self.catalog = _Catalog()

        for table, alias in state.from_:
            self.catalog.add_table(table, alias)

        for join in state.joins:
            self.catalog.add_table(join.table, join.alias)

        for ref in self._references():
            if (parts := _split(ref)) is not None and parts[0] is not None:
                self.catalog.add_column(parts[0], parts[1])

        if state.from_ and kind in (Kind.INSERT, Kind.UPDATE):
            target, _ = state.from_[0]
            for ref in (*state.columns, *state.set):
                if (parts := _split(ref)) is not None:
                    self.catalog.add_column(target, parts[1])

        self.catalog.freeze()

    def _references(self) -> Iterator[Any]:
        state = self.state
        yield from (ref for ref, _ in state.select)
        yield from (ref for ref, _ in state.order_by)
        yield from state.group_by
        yield from _condition_columns(state.where)
        yield from _condition_columns(state.having)
        for join in state.joins:
            for left, _, right in join.on:
                yield left
                yield right

    # -- clauses -------------------------------------------------------------

    def target(self) -> sa.TableClause:
        if not self.state.from_:
            raise ConfigurationError(f"Cannot compile {self.kind} without a table")

        table, _ = self.state.from_[0]
        return self.catalog.table(table)  # type: ignore[return-value]

    def from_clause(self) -> list[sa.FromClause]:
        froms = [self.catalog.table(alias or table) for table, alias in self.state.from_]
        if not froms:
            return froms

        joined = froms[0]
        for join in self.state.joins:
            try:
                flags = _JOIN_TYPES[join.type.upper() if join.type else None]
            except KeyError:
                raise ConfigurationError(f"Unsupported join type: {join.type!r}") from None

            on = [
                self.compare(self.catalog.column(left), op, self.catalog.column(right))
                for left, op, right in join.on
            ]
            onclause = sa.and_(*on) if on else sa.true()
            joined = joined.join(self.catalog.table(join.alias or join.table), onclause, **flags)

        return [joined, *froms[1:]]

    def compare(self, column: Any, op: str, value: Any) -> sa.ColumnElement[bool]:
        op = op.strip().upper()
        match op:
            case "=" | "==":
                return column.is_(None) if value is None else column == _value(value)
            case "!=" | "<>":
                return column.is_not(None) if value is None else column != _value(value)
            case "IS":
                return column.is_(_value(value))
            case "IS NOT":
                return column.is_not(_value(value))
            case "IN" | "NOT IN":
                values = _in_values(value)
                return column.in_(values) if op == "IN" else column.not_in(values)
            case "LIKE":
                return column.like(_value(value))
            case "NOT LIKE":
                return column.not_like(_value(value))
            case "BETWEEN":
                low, high = value
                return column.between(_value(low), _value(high))
            case _ if op in _COMPARISONS:
                return _COMPARISONS[op](column, _value(value))
            case _:
                return column.op(op)(_value(value))

    def conditions(self, group: ConditionGroup) -> sa.ColumnElement[bool] | None:
        expr: sa.ColumnElement[bool] | None = None
        for node in group.children:
            if isinstance(node, ConditionGroup):
                clause = self.conditions(node)
            else:
                clause = self.compare(self.catalog.column(node.column), node.op, node.value)

            if clause is None:
                continue

            if expr is None:
                expr = clause
            elif node.logic == "OR":
                expr = sa.or_(expr, clause)
            else:
                expr = sa.and_(expr, clause)

        return expr

    def order(self, ref: Any, direction: str | None) -> Any:
        column = self.catalog.column(ref)
        match (direction or "").strip().upper():
            case "":
                return column
            case "ASC":
                return column.asc()
            case "DESC":
                return column.desc()
            case other:
                raise ConfigurationError(f"Unknown sort direction: {other!r}")

    def assignment_key(self, ref: Any) -> Any:
        if (parts := _split(ref)) is None:
            return self.catalog.column(ref)

        return self.target().c[parts[1]]

    # -- statements ----------------------------------------------------------

    def select(self) -> sa.Select[Any]:
        state = self.state
        columns = [
            self.catalog.column(ref).label(alias) if alias else self.catalog.column(ref)
            for ref, alias in state.select
        ] or [sa.literal_column("*")]

        query = sa.select(*columns)
        if froms := self.from_clause():
            query = query.select_from(*froms)

        if (where := self.conditions(state.where)) is not None:
            query = query.where(where)

        if state.group_by:
            query = query.group_by(*(self.catalog.column(ref) for ref in state.group_by))

        if (having := self.conditions(state.having)) is not None:
            query = query.having(having)

        if state.order_by:
            query = query.order_by(*(self.order(ref, d) for ref, d in state.order_by))

        if state.distinct:
            query = query.distinct()

        if state.limit is not None:
            query = query.limit(state.limit)

        if state.offset is not None:
            query = query.offset(state.offset)

        return query

    def update(self) -> sa.Update:
        query = sa.update(self.target())
        if (where := self.conditions(self.state.where)) is not None:
            query = query.where(where)

        if self.state.set:
            query = query.values(
                {self.assignment_key(ref): _value(v) for ref, v in self.state.set.items()}
            )

        return query

    def insert(self) -> sa.Insert:
        query = sa.insert(self.target())
        if self.state.columns and self.state.values:
            keys = [self.assignment_key(ref) for ref in self.state.columns]
            query = query.values(
                [{k: _value(v) for k, v in zip(keys, row)} for row in self.state.values]
            )

        return query

    def delete(self) -> sa.Delete:
        query = sa.delete(self.target())
        if (where := self.conditions(self.state.where)) is not None:
            query = query.where(where)

        return query

    def count(self) -> sa.Select[Any]:
        query = sa.select(sa.func.count().label(COUNT_LABEL))
        if froms := self.from_clause():
            query = query.select_from(*froms)

        if (where := self.conditions(self.state.where)) is not None:
            query = query.where(where)

        return query


def _condition_columns(group: ConditionGroup) -> Iterator[Any]:
    for node in group.children:
        if isinstance(node, ConditionGroup):
            yield from _condition_columns(node)
        else:
            yield node.column


def _in_values(value: Any) -> Any:
    if hasattr(value, "__clause_element__"):
        value = value.__clause_element__()

    if isinstance(value, sa.sql.ClauseElement):
        return value

    return [_value(v) for v in value]


def compile_statement(state: QueryState, kind: Kind | str) -> sa.Executable:
    """Compile *state* into a statement of the given kind.

    Raises:
        ConfigurationError: If *kind* is not a statement kind.
    """
    match coerce_kind(kind):
        case Kind.SELECT:
            return _Compiler(state, Kind.SELECT).select()
        case Kind.UPDATE:
            return _Compiler(state, Kind.UPDATE).update()
        case Kind.INSERT:
            return _Compiler(state, Kind.INSERT).insert()
        case Kind.DELETE:
            return _Compiler(state, Kind.DELETE).delete()


def compile_count(state: QueryState) -> sa.Select[Any]:
    """Compile ``SELECT COUNT(*) AS total`` over the FROM, JOIN and WHERE of *state*."""
    return _Compiler(state, Kind.SELECT).count()
