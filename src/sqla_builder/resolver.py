"""Identifier resolution.

Every identifier handed to a :class:`~sqla_builder.core.Builder` goes through
:func:`resolve_column` or :func:`resolve_table`. Identifiers arrive either as
strings, using a small grammar, or as the tagged types from
:mod:`sqla_builder.datastructures`:

==========================  ==================  =========================
string                      tagged type         resolved as
==========================  ==================  =========================
``name``                    ``BareField``       field of the canonical model
``post.name``               ``QualifiedField``  field of model ``post``
``post:author:name``        ``ResolvedAlias``   returned unchanged
``COUNT("post.id")``        ``RawExpression``   quoted parts only
==========================  ==================  =========================

Unknown models and fields are never errors; they pass through as written.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Final

import sqlalchemy as sa

from .datastructures import BareField, Identifier, QualifiedField, RawExpression, ResolvedAlias


if TYPE_CHECKING:
    from .registry import ModelMeta, Registry

_QUOTED: Final[re.Pattern[str]] = re.compile(r'"(.+?)"')

_IDENTIFIER_TYPES: Final = (BareField, QualifiedField, ResolvedAlias, RawExpression)


def parse_identifier(identifier: str) -> Identifier:
    """Classify a string identifier.

    Example:
        >>> parse_identifier("post.title")
        QualifiedField(model='post', field='title')
        >>> parse_identifier('COUNT("*")')
        RawExpression(expression='COUNT("*")')
    """
    if '"' in identifier:
        return RawExpression(identifier)

    if ":" in identifier:
        return ResolvedAlias(identifier)

    if "." in identifier:
        model, _, field = identifier.partition(".")
        return QualifiedField(model, field)

    return BareField(identifier)


def resolve_column(
    identifier: str | Identifier | sa.ColumnElement[Any],
    meta: ModelMeta | None,
    registry: Registry,
    qualify: bool | None = None,
) -> Any:
    """Resolve a column identifier to ``table.column`` or ``column``.

    Args:
        identifier: Identifier to resolve. SQLAlchemy expressions are
            returned as-is.
        meta: Canonical model of the statement, if any.
        registry: Registry used to look up models and fields.
        qualify: ``True`` forces ``table.column``, ``False`` forces a bare
            column. ``None`` qualifies only identifiers that arrived
            qualified.

    Returns:
        The resolved identifier.

    Example:
        >>> resolve_column("author", post_meta, registry, qualify=True)
        'posts.author_id'
        >>> resolve_column("ghost.column", post_meta, registry)
        'ghost.column'
    """
    if isinstance(identifier, str):
        identifier = parse_identifier(identifier)
    elif not isinstance(identifier, _IDENTIFIER_TYPES):
        return identifier

    qualifier: str | None = None
    match identifier:
        case RawExpression(expression):
            return _QUOTED.sub(
                lambda m: f'"{resolve_column(m.group(1), meta, registry)}"', expression
            )
        case ResolvedAlias(alias):
            return alias
        case QualifiedField(model, field):
            qualifier = model
            if qualify is None:
                qualify = True
        case BareField(field):
            pass

    if meta is not None and (qualifier is None or qualifier == meta.table):
        qualifier = meta.model

    table, column = qualifier, field
    if (target := registry.lookup(qualifier)) is not None:
        table = target.table
        if (descriptor := target.get_field(field)) is not None:
            column = descriptor.column

    if qualify and table:
        return f"{table}.{column}"

    return column


def resolve_table(identifier: Any, registry: Registry) -> Any:
    """Resolve a model name to its table; anything else is returned unchanged."""
    if (meta := registry.lookup(identifier)) is not None:
        return meta.table

    return identifier
