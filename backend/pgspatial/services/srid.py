"""Resolve a coordinate reference system to a PostGIS SRID.

Lookup order: the EPSG code in ``spatial_ref_sys``, then a row with the
same PROJ definition, then (optionally) a newly registered custom SRID.
Custom SRIDs are numbered from 880001, above the range used by EPSG.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import rasterio.crs

if TYPE_CHECKING:
    from pgspatial.db import database

logger = logging.getLogger(__name__)

UNDEFINED_SRID = 0
CUSTOM_SRID_START = 880001
CUSTOM_AUTH_NAME = "pgspatial_custom"


def _as_crs(crs: object) -> rasterio.crs.CRS | None:
    if crs is None:
        return None
    if not isinstance(crs, rasterio.crs.CRS):
        crs = rasterio.crs.CRS.from_user_input(crs)
    return crs if crs else None


def resolve_srid(
    conn: database.ConnectionProtocol,
    crs: object,
    create: bool = True,
) -> int:
    """Find (or register) the SRID for a CRS.

    Args:
        conn: Open connection.
        crs: ``rasterio.crs.CRS`` or anything ``CRS.from_user_input``
            accepts (``"EPSG:4326"``, WKT, PROJ string...). None means
            undefined.
        create: Register a custom SRID when no match exists.

    Returns:
        The SRID, or 0 when the CRS is undefined or unmatched and
        ``create`` is False.

    Raises:
        rasterio.errors.CRSError: If ``crs`` cannot be parsed.
        StatementError: If a lookup or the registration fails.
    """
    parsed = _as_crs(crs)
    if parsed is None:
        return UNDEFINED_SRID

    epsg = parsed.to_epsg()
    if epsg is not None:
        rows = conn.query(
            "SELECT srid FROM spatial_ref_sys "
            f"WHERE upper(auth_name) = 'EPSG' AND auth_srid = {int(epsg)};"
        )
        if rows:
            return int(rows[0][0])

    proj4 = parsed.to_proj4()
    if proj4:
        rows = conn.query(
            "SELECT srid FROM spatial_ref_sys "
            f"WHERE trim(proj4text) = {conn.quote_literal(proj4.strip())} "
            "ORDER BY srid LIMIT 1;"
        )
        if rows:
            return int(rows[0][0])

    if not create:
        logger.warning("No SRID matches CRS %s", proj4 or parsed.to_wkt())
        return UNDEFINED_SRID

    rows = conn.query("SELECT max(srid) FROM spatial_ref_sys;")
    current = rows[0][0] if rows and rows[0][0] is not None else 0
    srid = max(CUSTOM_SRID_START, int(current) + 1)
    conn.execute(
        "INSERT INTO spatial_ref_sys (srid, auth_name, auth_srid, srtext, "
        f"proj4text) VALUES ({srid}, {conn.quote_literal(CUSTOM_AUTH_NAME)}, "
        f"{srid}, {conn.quote_literal(parsed.to_wkt())}, "
        f"{conn.quote_literal(proj4)});"
    )
    logger.info("Registered custom SRID %d for %s", srid, proj4)
    return srid
