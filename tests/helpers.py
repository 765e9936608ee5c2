from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import OperationalError

from sqla_builder import EngineDatabase, MutationResult


class RecordingDatabase:
    """In-memory ``Database`` returning canned rows and recording every call.

    The first *failures* calls raise ``OperationalError`` after being recorded.
    """

    def __init__(
        self,
        rows: Sequence[Mapping[str, Any]] = (),
        mutation: MutationResult | None = None,
        failures: int = 0,
    ) -> None:
        self.rows = list(rows)
        self.mutation = mutation or MutationResult(rowcount=0)
        self.failures = failures
        self.calls: list[tuple[sa.Executable, str]] = []

    def execute(
        self, statement: sa.Executable, group: str
    ) -> Sequence[Mapping[str, Any]] | MutationResult:
        self.calls.append((statement, group))
        if self.failures:
            self.failures -= 1
            raise OperationalError(str(statement), {}, Exception("database is locked"))

        if isinstance(statement, sa.Select):
            return list(self.rows)

        return self.mutation


class CountingDatabase:
    """Wraps a real database and counts round-trips."""

    def __init__(self, inner: EngineDatabase) -> None:
        self.inner = inner
        self.calls = 0

    def execute(
        self, statement: sa.Executable, group: str
    ) -> Sequence[Mapping[str, Any]] | MutationResult:
        self.calls += 1
        return self.inner.execute(statement, group)


def render(statement: Any, dialect: Any = None) -> str:
    """Compile *statement* with bound values inlined."""
    return str(statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))
