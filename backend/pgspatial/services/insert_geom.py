"""Format a GeoDataFrame as a PostGIS INSERT.

``format_geometry_insert`` turns every record of a ``geopandas``
GeoDataFrame into a ``(value, ..., ST_GeomFromText(wkt, srid))`` tuple.
Geometries are serialized to WKT by shapely. The result can optionally
carry the statements creating a matching table, or be reconciled against
the columns of an existing table. ``insert_geometries`` executes it.

Example:
    Format points for an existing table and insert them:
        >>> import geopandas as gpd
        >>> from shapely.geometry import Point
        >>> from pgspatial.services import insert_geom

        >>> frame = gpd.GeoDataFrame(
        ...     {"name": ["a", "b"]},
        ...     geometry=[Point(0, 0), Point(1, 1)],
        ...     crs="EPSG:4326",
        ... )
        >>> pgi = insert_geom.format_geometry_insert(frame, geom="point_geom")
        >>> pgi.insert_columns
        ['name', 'point_geom']
        >>> pgi.insert_values_sql
        "('a',ST_GeomFromText('POINT (0 0)',4326)),('b',ST_GeomFromText('POINT (1 1)',4326))"
        >>> insert_geom.insert_geometries(conn, pgi, table="public.places")
        2
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

import geopandas as gpd
import pandas as pd

from pgspatial.core import errors
from pgspatial.db import database
from pgspatial.db import models as db_models
from pgspatial.utils import sql_helpers

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

_NON_COMPLIANT = re.compile(r"[+\-.,!@$%^&*();/|<>]")
_GEOMETRY_TYPES = {
    "Point": "Point",
    "MultiPoint": "Point",
    "LineString": "LineString",
    "MultiLineString": "LineString",
    "Polygon": "Polygon",
    "MultiPolygon": "Polygon",
}


def compliant_name(name: str) -> str:
    """Lower-case a column name and replace special characters with '_'."""
    return _NON_COMPLIANT.sub("_", name).lower()


def column_type(dtype: Any) -> str:
    """PostgreSQL column type for a pandas dtype."""
    if pd.api.types.is_bool_dtype(dtype):
        return "boolean"
    if pd.api.types.is_integer_dtype(dtype):
        return "integer" if pd.api.types.pandas_dtype(dtype).itemsize <= 4 else "bigint"
    if pd.api.types.is_float_dtype(dtype):
        return "double precision"
    if pd.api.types.is_datetime64_any_dtype(dtype):
        return "timestamp"
    return "text"


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    return bool(pd.api.types.is_scalar(value) and pd.isna(value))


def _geometry_type(frame: gpd.GeoDataFrame, multi: bool) -> str:
    present = frame.geometry.dropna()
    kind = present.iloc[0].geom_type if len(present) else None
    pgtype = _GEOMETRY_TYPES.get(kind, "Geometry")
    if multi and pgtype != "Geometry":
        pgtype = f"Multi{pgtype}"
    return pgtype


def _create_table_sql(
    data: pd.DataFrame,
    table: db_models.TableName,
    geom: str,
    geometry_type: str,
    srid: int | None,
    quote_ident: Callable[[str], str],
) -> str:
    qualified = f"{quote_ident(table.schema)}.{quote_ident(table.table)}"
    columns = ", ".join(
        f"{quote_ident(str(name))} {column_type(dtype)}"
        for name, dtype in data.dtypes.items()
    )
    typmod = geometry_type if srid is None else f"{geometry_type},{srid}"
    return (
        f"CREATE TABLE {qualified} ({columns}); "
        f"ALTER TABLE {qualified} ADD COLUMN {quote_ident(geom)} "
        f"geometry({typmod});"
    )


def format_geometry_insert(
    frame: gpd.GeoDataFrame,
    geom: str = "geom",
    create_table: str | Sequence[str] | None = None,
    multi: bool = False,
    force_match: str | Sequence[str] | None = None,
    conn: database.ConnectionProtocol | None = None,
) -> db_models.GeometryInsert:
    """Format a GeoDataFrame for insertion into a PostGIS table.

    Args:
        frame: Records to insert; its active geometry column is written to
            ``geom``.
        geom: Name of the geometry column in the database table.
        create_table: Table to create; column names are made DB-compliant
            and the create statements are included in the result.
        multi: Wrap geometries in ST_Multi (for Multi* columns).
        force_match: Existing table to reconcile against. Only frame
            columns present in the table are kept, in table order.
        conn: Connection, required with ``force_match``; also used for
            quoting when given.

    Returns:
        GeometryInsert with target table, optional create SQL, insert
        columns (geometry last), and the formatted values.

    Raises:
        ValueError: If both ``create_table`` and ``force_match`` are given,
            or ``force_match`` is given without ``conn``.
        ColumnMismatch: If ``geom`` is not a column of ``force_match``.
        UnsupportedInputKind: If ``frame`` is not a GeoDataFrame.
    """
    if not isinstance(frame, gpd.GeoDataFrame):
        raise errors.UnsupportedInputKind(
            f"Expected a GeoDataFrame, got {type(frame).__name__}"
        )
    if create_table is not None and force_match is not None:
        raise ValueError("Either create_table or force_match must be None.")
    if force_match is not None and conn is None:
        raise ValueError("A connection is required with force_match.")

    quote = conn.quote_literal if conn is not None else sql_helpers.quote_literal
    ident = conn.quote_ident if conn is not None else sql_helpers.quote_ident

    data = pd.DataFrame(frame.drop(columns=frame.geometry.name))
    data.columns = [str(name) for name in data.columns]
    wkt = [None if shape is None else shape.wkt for shape in frame.geometry]

    srid = frame.crs.to_epsg() if frame.crs is not None else None
    if srid is None:
        logger.warning(
            "Spatial projection is unknown/unreadable; geometries will be "
            "inserted with SRID 0."
        )

    target_table = None
    create_sql = None
    if create_table is not None:
        logger.info(
            "Making column names DB-compliant "
            "(replacing special characters with '_')."
        )
        data.columns = [compliant_name(name) for name in data.columns]
        table = db_models.TableName.parse(create_table)
        target_table = table.qualified
        create_sql = _create_table_sql(
            data, table, geom, _geometry_type(frame, multi), srid, ident
        )

    if force_match is not None:
        table = db_models.TableName.parse(force_match)
        db_columns = database.column_names(conn, table)  # type: ignore[arg-type]
        if geom not in db_columns:
            raise errors.ColumnMismatch(geom, table.qualified)
        matched = [c for c in db_columns if c in data.columns and c != geom]
        logger.info(
            "%d out of %d columns of the data frame match database table "
            "columns and will be formatted.",
            len(matched),
            len(data.columns),
        )
        data = data[matched]
        target_table = table.qualified

    srid_arg = f",{srid}" if srid is not None else ""
    if len(data.columns):
        rows = list(data.itertuples(index=False, name=None))
    else:
        rows = [()] * len(data)
    records = []
    for values, shape in zip(rows, wkt, strict=True):
        fields = [quote(None if _is_missing(v) else v) for v in values]
        if shape is None:
            geometry = "NULL"
        else:
            geometry = f"ST_GeomFromText({quote(shape)}{srid_arg})"
            if multi:
                geometry = f"ST_Multi({geometry})"
        records.append("(" + ",".join([*fields, geometry]) + ")")

    return db_models.GeometryInsert(
        target_table=target_table,
        create_table_sql=create_sql,
        insert_columns=[*data.columns, geom],
        insert_values_sql=",".join(records),
    )


def insert_geometries(
    conn: database.ConnectionProtocol,
    pgi: db_models.GeometryInsert,
    table: str | Sequence[str] | None = None,
) -> int:
    """Execute a formatted geometry insert.

    Runs ``pgi.create_table_sql`` first when present.

    Args:
        conn: Open connection.
        pgi: Output of ``format_geometry_insert``.
        table: Destination; defaults to ``pgi.target_table``.

    Returns:
        Number of inserted rows.

    Raises:
        ValueError: If no destination table is known.
        StatementError: If a statement fails.
    """
    target = table if table is not None else pgi.target_table
    if target is None:
        raise ValueError("No destination table: pass table=...")
    if pgi.create_table_sql:
        conn.execute(pgi.create_table_sql)
    if not pgi.insert_values_sql:
        return 0
    qualified = database.qualified_name(conn, db_models.TableName.parse(target))
    columns = ",".join(conn.quote_ident(name) for name in pgi.insert_columns)
    return conn.execute(
        f"INSERT INTO {qualified} ({columns}) VALUES {pgi.insert_values_sql};"
    )
