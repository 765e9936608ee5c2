from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import sqlalchemy as sa

from .exceptions import ConfigurationError


if TYPE_CHECKING:
    from .settings import DatabaseSettings

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MutationResult:
    """Outcome of an INSERT, UPDATE or DELETE."""

    rowcount: int
    lastrowid: Any = None


@runtime_checkable
class Database(Protocol):
    """Runs compiled statements against a named connection group.

    SELECT-like statements return a sequence of row mappings (column label
    to value); anything else returns a :class:`MutationResult`.
    """

    def execute(
        self, statement: sa.Executable, group: str
    ) -> Sequence[Mapping[str, Any]] | MutationResult: ...


class EngineDatabase:
    """:class:`Database` backed by one SQLAlchemy ``Engine`` per group.

    Every call runs in its own transaction (``Engine.begin()``); rows are
    fully fetched before the connection is returned to the pool.

    Example:
        >>> db = EngineDatabase({"default": sa.create_engine("sqlite://")})
        >>> db.execute(sa.select(sa.literal(1).label("one")), "default")
        [{'one': 1}]
    """

    __slots__ = ("_engines",)

    def __init__(self, engines: Mapping[str, sa.Engine]) -> None:
        self._engines = dict(engines)

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> EngineDatabase:
        """Create one engine per group configured in *settings*."""
        return cls({
            group: sa.create_engine(url, echo=settings.echo)
            for group, url in settings.groups.items()
        })

    @property
    def groups(self) -> Sequence[str]:
        return tuple(self._engines)

    def engine(self, group: str) -> sa.Engine:
        """Return the engine for *group*.

        Raises:
            ConfigurationError: If *group* is not configured.
        """
        try:
            return self._engines[group]
        except KeyError:
            raise ConfigurationError(
                f"Unknown connection group {group!r}. Available: {list(self._engines)}"
            ) from None

    def execute(
        self, statement: sa.Executable, group: str
    ) -> Sequence[Mapping[str, Any]] | MutationResult:
        engine = self.engine(group)
        logger.debug("Executing %s on group %r", type(statement).__name__, group)

        with engine.begin() as conn:
            result = conn.execute(statement)
            if result.returns_rows:
                return [dict(row) for row in result.mappings()]

            lastrowid = result.lastrowid if isinstance(statement, sa.Insert) else None
            return MutationResult(rowcount=result.rowcount, lastrowid=lastrowid)

    def dispose(self) -> None:
        """Dispose every engine's connection pool."""
        for engine in self._engines.values():
            engine.dispose()
