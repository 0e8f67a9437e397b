"""Destination raster table: provisioning before upload, finalizing after.

The table has a fixed schema, one row per spatial tile:

    row_id             serial primary key
    band_names         text[]
    source_class       text
    source_projection  text
    tile               raster

Provisioning creates it (or validates/prepares an existing one for
appending) and returns the row id the upload must continue from.
Finalizing re-synchronizes the ``row_id`` sequence, builds the convex-hull
GiST index, and optionally registers PostGIS raster constraints.

Example:
    >>> from pgspatial.db import models as db_models
    >>> from pgspatial.services import raster_table
    >>> table = db_models.TableName.parse("rasters.elevation")
    >>> result = raster_table.ensure_table(conn, table, overwrite=True)
    >>> result.base_row_id, result.created
    (0, True)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

from pgspatial.core import errors
from pgspatial.db import database

if TYPE_CHECKING:
    from pgspatial.db import models as db_models

logger = logging.getLogger(__name__)

TILE_COLUMN = "tile"
INDEX_SUFFIX = "_tile_st_conhull_idx"
# DropRasterConstraints flags: srid, scale_x, scale_y, blocksize_x,
# blocksize_y, same_alignment, regular_blocking, num_bands, pixel_types,
# nodata_values, out_db, extent.
_DROP_CONSTRAINT_FLAGS = 12

CREATE_TABLE_SQL = """
CREATE TABLE {table} (
  row_id serial PRIMARY KEY,
  band_names text[],
  source_class text,
  source_projection text,
  tile raster
);
"""


class ProvisionResult(NamedTuple):
    base_row_id: int
    created: bool
    warnings: list[str]


def drop_table(conn: database.ConnectionProtocol, table: db_models.TableName) -> None:
    conn.execute(f"DROP TABLE IF EXISTS {database.qualified_name(conn, table)};")


def create_table(
    conn: database.ConnectionProtocol, table: db_models.TableName
) -> None:
    """Create the raster table.

    Raises:
        ExtensionMissing: If creation failed because the ``raster`` type
            is unavailable.
        StatementError: For any other failure.
    """
    statement = CREATE_TABLE_SQL.format(
        table=database.qualified_name(conn, table)
    ).strip()
    try:
        conn.execute(statement)
    except errors.StatementError as exc:
        if not database.raster_supported(conn):
            raise errors.ExtensionMissing(
                "Cannot create raster table: check that the postgis_raster "
                "extension is created in the database."
            ) from exc
        raise
    logger.info("Created raster table %s", table.qualified)


def drop_constraints(
    conn: database.ConnectionProtocol, table: db_models.TableName
) -> None:
    flags = ",".join(["TRUE"] * _DROP_CONSTRAINT_FLAGS)
    conn.execute(
        f"SELECT DropRasterConstraints({conn.quote_literal(table.schema)}::name,"
        f"{conn.quote_literal(table.table)}::name,"
        f"{conn.quote_literal(TILE_COLUMN)}::name,{flags});"
    )


def ensure_table(
    conn: database.ConnectionProtocol,
    table: db_models.TableName,
    overwrite: bool = False,
    append: bool = False,
) -> ProvisionResult:
    """Make sure the destination table can receive tiles.

    Args:
        conn: Open connection.
        table: Destination table.
        overwrite: Drop the table first if it exists.
        append: Allow adding tiles to an existing table.

    Returns:
        ProvisionResult with the largest existing row id (0 for a new
        table), whether the table was created, and non-fatal warnings.

    Raises:
        DestinationExists: If the table exists and neither flag is set.
        ExtensionMissing: If the raster type is unavailable.
    """
    if overwrite:
        drop_table(conn, table)

    if not database.table_exists(conn, table):
        create_table(conn, table)
        return ProvisionResult(base_row_id=0, created=True, warnings=[])

    if not append:
        raise errors.DestinationExists(table.qualified)

    logger.info(
        "Appending to existing table %s. Dropping any existing raster "
        "constraints...",
        table.qualified,
    )
    warnings = []
    try:
        drop_constraints(conn, table)
    except errors.StatementError as exc:
        message = f"Could not drop raster constraints on {table.qualified}: {exc}"
        logger.warning(message)
        warnings.append(message)
    return ProvisionResult(
        base_row_id=database.max_row_id(conn, table),
        created=False,
        warnings=warnings,
    )


def index_name(table: db_models.TableName) -> str:
    return f"{table.table}{INDEX_SUFFIX}"


def sync_row_id_sequence(
    conn: database.ConnectionProtocol, table: db_models.TableName
) -> None:
    """Move the ``row_id`` sequence past the explicitly written ids."""
    qualified = database.qualified_name(conn, table)
    conn.execute(
        f"SELECT setval(pg_get_serial_sequence({conn.quote_literal(qualified)}, "
        "'row_id'), COALESCE(max(row_id), 1), max(row_id) IS NOT NULL) "
        f"FROM {qualified};"
    )


def build_index(
    conn: database.ConnectionProtocol,
    table: db_models.TableName,
    replace: bool = False,
) -> None:
    """Create the GiST index over the tiles' convex hulls.

    Args:
        conn: Open connection.
        table: Destination table.
        replace: Drop an existing index of the same name first.
    """
    name = index_name(table)
    if replace:
        conn.execute(
            f"DROP INDEX IF EXISTS {conn.quote_ident(table.schema)}."
            f"{conn.quote_ident(name)};"
        )
    conn.execute(
        f"CREATE INDEX {conn.quote_ident(name)} ON "
        f"{database.qualified_name(conn, table)} "
        f"USING gist (ST_ConvexHull({TILE_COLUMN}));"
    )


def add_constraints(
    conn: database.ConnectionProtocol, table: db_models.TableName
) -> None:
    """Register PostGIS raster constraints on the tile column.

    Raises:
        ConstraintRegistrationFailed: If AddRasterConstraints fails.
    """
    try:
        conn.execute(
            f"SELECT AddRasterConstraints({conn.quote_literal(table.schema)}::name,"
            f"{conn.quote_literal(table.table)}::name,"
            f"{conn.quote_literal(TILE_COLUMN)}::name);"
        )
    except errors.StatementError as exc:
        raise errors.ConstraintRegistrationFailed(
            table.qualified, str(exc)
        ) from exc
