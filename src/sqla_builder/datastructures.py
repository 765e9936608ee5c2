from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union


class Kind(str, enum.Enum):
    """Statement kind a :class:`~sqla_builder.core.Builder` compiles into."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class BareField:
    """A field (or column) name with no qualifier, e.g. ``name``."""

    field: str


@dataclass(slots=True, frozen=True)
class QualifiedField:
    """A ``model.field`` (or ``table.column``) reference."""

    model: str
    field: str


@dataclass(slots=True, frozen=True)
class ResolvedAlias:
    """A relationship alias produced by ``with_()``, e.g. ``post:author:name``.

    Never resolved again.
    """

    alias: str


@dataclass(slots=True, frozen=True)
class RawExpression:
    """SQL text whose double-quoted parts are identifiers, e.g. ``COUNT("*")``."""

    expression: str


Identifier = Union[BareField, QualifiedField, ResolvedAlias, RawExpression]
