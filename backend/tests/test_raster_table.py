"""Tests for raster table provisioning and finalization.

Covers the overwrite/append/exists decision table, raster-type detection
on create failure, the row_id sequence resync, the convex-hull index, and
constraint registration.

See Also:
    - backend/pgspatial/services/raster_table.py for the implementation.
"""

from __future__ import annotations

import pytest

import fakes
from pgspatial.core import errors
from pgspatial.db import models as db_models
from pgspatial.services import raster_table

TABLE = db_models.TableName("rasters", "dem")


def test_new_table_is_created() -> None:
    """Test that a missing table is created with the fixed schema."""
    conn = fakes.postgis_connection()
    result = raster_table.ensure_table(conn, TABLE)
    assert result == raster_table.ProvisionResult(0, True, [])
    (create,) = conn.executed
    assert create.startswith('CREATE TABLE "rasters"."dem"')
    for column in (
        "row_id serial PRIMARY KEY",
        "band_names text[]",
        "source_class text",
        "source_projection text",
        "tile raster",
    ):
        assert column in create


def test_existing_table_without_flags() -> None:
    """Test that an existing table is left untouched without flags."""
    conn = fakes.postgis_connection(exists=True)
    with pytest.raises(errors.DestinationExists) as excinfo:
        raster_table.ensure_table(conn, TABLE)
    assert excinfo.value.table == "rasters.dem"
    assert conn.executed == []


def test_overwrite_drops_first() -> None:
    """Test that overwrite drops the table before creating it."""
    conn = fakes.postgis_connection()
    result = raster_table.ensure_table(conn, TABLE, overwrite=True)
    assert result.created
    assert conn.executed[0] == 'DROP TABLE IF EXISTS "rasters"."dem";'
    assert conn.executed[1].startswith("CREATE TABLE")


def test_append_to_existing_table() -> None:
    """Test that appending drops constraints and returns the max row id."""
    conn = fakes.postgis_connection(exists=True, max_row_id=8)
    result = raster_table.ensure_table(conn, TABLE, append=True)
    assert result == raster_table.ProvisionResult(8, False, [])
    (drop,) = conn.executed
    assert drop.startswith(
        "SELECT DropRasterConstraints('rasters'::name,'dem'::name,'tile'::name,"
    )
    assert drop.count("TRUE") == 12


def test_append_constraint_drop_failure_is_warning() -> None:
    """Test that failing to drop constraints only warns."""
    conn = fakes.postgis_connection(
        exists=True, max_row_id=2, fail_on=["DropRasterConstraints"]
    )
    result = raster_table.ensure_table(conn, TABLE, append=True)
    assert result.base_row_id == 2
    assert not result.created
    assert len(result.warnings) == 1
    assert "Could not drop raster constraints" in result.warnings[0]


def test_append_creates_missing_table() -> None:
    """Test that append creates the table when it does not exist."""
    conn = fakes.postgis_connection()
    result = raster_table.ensure_table(conn, TABLE, append=True)
    assert result.created
    assert result.base_row_id == 0


def test_create_without_raster_type() -> None:
    """Test that create failures without raster support are explained."""
    conn = fakes.RecordingConnection(fail_on=["CREATE TABLE"])
    conn.respond("to_regclass(", [(False,)])
    conn.respond("to_regtype('raster')", [(False,)])
    with pytest.raises(errors.ExtensionMissing, match="postgis_raster"):
        raster_table.ensure_table(conn, TABLE)


def test_create_failure_with_raster_type() -> None:
    """Test that other create failures propagate unchanged."""
    conn = fakes.postgis_connection(fail_on=["CREATE TABLE"])
    with pytest.raises(errors.StatementError):
        raster_table.ensure_table(conn, TABLE)


def test_sync_row_id_sequence() -> None:
    """Test the setval statement resyncing the serial sequence."""
    conn = fakes.RecordingConnection()
    raster_table.sync_row_id_sequence(conn, TABLE)
    (statement,) = conn.executed
    assert "setval(pg_get_serial_sequence('\"rasters\".\"dem\"', 'row_id')" in statement
    assert statement.endswith('FROM "rasters"."dem";')


def test_build_index() -> None:
    """Test the convex-hull GiST index."""
    conn = fakes.RecordingConnection()
    raster_table.build_index(conn, TABLE)
    assert conn.executed == [
        'CREATE INDEX "dem_tile_st_conhull_idx" ON "rasters"."dem" '
        "USING gist (ST_ConvexHull(tile));"
    ]


def test_build_index_replace() -> None:
    """Test that an existing index is dropped before rebuilding."""
    conn = fakes.RecordingConnection()
    raster_table.build_index(conn, TABLE, replace=True)
    assert conn.executed[0] == (
        'DROP INDEX IF EXISTS "rasters"."dem_tile_st_conhull_idx";'
    )
    assert len(conn.executed) == 2


def test_add_constraints() -> None:
    """Test AddRasterConstraints on the tile column."""
    conn = fakes.RecordingConnection()
    raster_table.add_constraints(conn, TABLE)
    assert conn.executed == [
        "SELECT AddRasterConstraints('rasters'::name,'dem'::name,'tile'::name);"
    ]


def test_add_constraints_failure() -> None:
    """Test that constraint failures raise ConstraintRegistrationFailed."""
    conn = fakes.RecordingConnection(fail_on=["AddRasterConstraints"])
    with pytest.raises(errors.ConstraintRegistrationFailed) as excinfo:
        raster_table.add_constraints(conn, TABLE)
    assert excinfo.value.table == "rasters.dem"
