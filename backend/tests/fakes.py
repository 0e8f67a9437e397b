"""In-memory connection double for tests.

``RecordingConnection`` implements ``ConnectionProtocol`` without a
database: it records every statement in order, answers queries from
scripted ``(fragment, rows)`` responses (first matching fragment wins),
and raises ``StatementError`` for statements containing a configured
failure fragment.
"""

from __future__ import annotations

from typing import Any

from pgspatial.core import errors
from pgspatial.utils import sql_helpers


class RecordingConnection:
    """Records statements and answers queries from scripted responses."""

    def __init__(
        self,
        responses: list[tuple[str, list[tuple[Any, ...]]]] | None = None,
        fail_on: list[str] | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.fail_on = list(fail_on or [])
        self.statements: list[str] = []
        self.executed: list[str] = []
        self.queries: list[str] = []

    def respond(
        self, fragment: str, rows: list[tuple[Any, ...]]
    ) -> RecordingConnection:
        self.responses.append((fragment, rows))
        return self

    def _maybe_fail(self, statement: str) -> None:
        for fragment in self.fail_on:
            if fragment in statement:
                raise errors.StatementError(
                    f"simulated failure on {fragment!r}", statement
                )

    def execute(self, statement: str) -> int:
        self.statements.append(statement)
        self.executed.append(statement)
        self._maybe_fail(statement)
        return 1

    def query(self, statement: str) -> list[tuple[Any, ...]]:
        self.statements.append(statement)
        self.queries.append(statement)
        self._maybe_fail(statement)
        for fragment, rows in self.responses:
            if fragment in statement:
                return rows
        return []

    def quote_ident(self, name: str) -> str:
        return sql_helpers.quote_ident(name)

    def quote_literal(self, value: object) -> str:
        return sql_helpers.quote_literal(value)

    def executed_matching(self, fragment: str) -> list[str]:
        return [s for s in self.executed if fragment in s]


def postgis_connection(
    exists: bool = False,
    max_row_id: int = 0,
    srid: int | None = 4326,
    fail_on: list[str] | None = None,
) -> RecordingConnection:
    """Connection answering the queries of a typical raster write."""
    conn = RecordingConnection(fail_on=fail_on)
    conn.respond("FROM pg_extension", [("postgis",)])
    conn.respond("to_regtype('raster')", [(True,)])
    conn.respond("to_regclass(", [(exists,)])
    conn.respond("max(row_id)", [(max_row_id if max_row_id else None,)])
    conn.respond("ST_UpperLeftX", [(-180.0, 90.0)])
    if srid is not None:
        conn.respond("auth_srid", [(srid,)])
    return conn
