"""Database connection protocol and PostgreSQL/PostGIS helpers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import psycopg2
import psycopg2.extensions

from pgspatial.core import errors

if TYPE_CHECKING:
    import types

    from pgspatial.core import config
    from pgspatial.db import models as db_models

logger = logging.getLogger(__name__)


class ConnectionProtocol(Protocol):
    """Protocol for the single session every write runs on.

    Implementations execute statements serially and must quote identifiers
    and literals for embedding into generated SQL. ``PostgresConnection``
    is the production implementation; tests use a recording fake.
    """

    def execute(self, statement: str) -> int: ...

    def query(self, statement: str) -> list[tuple[Any, ...]]: ...

    def quote_ident(self, name: str) -> str: ...

    def quote_literal(self, value: object) -> str: ...


class PostgresConnection(ConnectionProtocol):
    """psycopg2-backed connection committing after every statement.

    Each statement is its own transaction, so tiles written before a
    failure stay in the table.
    """

    def __init__(self, conn: psycopg2.extensions.connection) -> None:
        """Wrap an open psycopg2 connection.

        Args:
            conn: Connection to a database with PostGIS installed.
        """
        self._conn = conn

    def __enter__(self) -> PostgresConnection:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def execute(self, statement: str) -> int:
        """Run a statement and commit it.

        Args:
            statement: Complete SQL text (no driver parameters).

        Returns:
            Number of rows affected, as reported by the driver.

        Raises:
            StatementError: If the database rejects the statement.
        """
        try:
            with self._conn.cursor() as cur:
                cur.execute(statement)
                rowcount = cur.rowcount
            self._conn.commit()
        except psycopg2.Error as exc:
            self._conn.rollback()
            raise errors.StatementError(
                str(exc).strip(), statement, exc
            ) from exc
        return rowcount

    def query(self, statement: str) -> list[tuple[Any, ...]]:
        """Run a query and return all rows.

        Raises:
            StatementError: If the database rejects the statement.
        """
        try:
            with self._conn.cursor() as cur:
                cur.execute(statement)
                rows = cur.fetchall()
            self._conn.commit()
        except psycopg2.Error as exc:
            self._conn.rollback()
            raise errors.StatementError(
                str(exc).strip(), statement, exc
            ) from exc
        return [tuple(row) for row in rows]

    def quote_ident(self, name: str) -> str:
        return psycopg2.extensions.quote_ident(name, self._conn)

    def quote_literal(self, value: object) -> str:
        if value is None:
            return "NULL"
        adapter = psycopg2.extensions.adapt(str(value))
        adapter.prepare(self._conn)  # type: ignore[attr-defined]
        return adapter.getquoted().decode("utf-8")


def get_connection(settings: config.Settings) -> PostgresConnection:
    """Open a connection from settings.

    Args:
        settings: Application settings containing database connection URL.

    Returns:
        PostgresConnection wrapping a new psycopg2 connection.
    """
    return PostgresConnection(psycopg2.connect(str(settings.database_url)))


def qualified_name(
    conn: ConnectionProtocol, table: db_models.TableName
) -> str:
    """Return ``"schema"."table"`` quoted through the connection."""
    return f"{conn.quote_ident(table.schema)}.{conn.quote_ident(table.table)}"


def postgis_enabled(conn: ConnectionProtocol) -> bool:
    """Check whether the PostGIS extension is installed."""
    rows = conn.query(
        "SELECT extname FROM pg_extension WHERE extname = 'postgis';"
    )
    return bool(rows)


def raster_supported(conn: ConnectionProtocol) -> bool:
    """Check whether the ``raster`` type from postgis_raster is available."""
    rows = conn.query("SELECT to_regtype('raster') IS NOT NULL;")
    return bool(rows and rows[0][0])


def table_exists(conn: ConnectionProtocol, table: db_models.TableName) -> bool:
    """Check whether a table (or view) exists."""
    rows = conn.query(
        "SELECT to_regclass("
        f"{conn.quote_literal(qualified_name(conn, table))}) IS NOT NULL;"
    )
    return bool(rows and rows[0][0])


def column_names(
    conn: ConnectionProtocol, table: db_models.TableName
) -> list[str]:
    """Return the columns of a table in their ordinal order."""
    rows = conn.query(
        "SELECT column_name FROM information_schema.columns "
        f"WHERE table_schema = {conn.quote_literal(table.schema)} "
        f"AND table_name = {conn.quote_literal(table.table)} "
        "ORDER BY ordinal_position;"
    )
    return [str(row[0]) for row in rows]


def max_row_id(conn: ConnectionProtocol, table: db_models.TableName) -> int:
    """Return the largest ``row_id`` in a raster table, 0 when empty."""
    rows = conn.query(
        f"SELECT max(row_id) FROM {qualified_name(conn, table)};"
    )
    if not rows or rows[0][0] is None:
        return 0
    return int(rows[0][0])
