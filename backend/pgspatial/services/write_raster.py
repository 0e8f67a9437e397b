"""Write an in-memory raster to a PostGIS raster table, block by block.

The raster is normalized, the destination table provisioned, the grid split
into blocks, and every (band, block) work unit uploaded with plain SQL over
a single connection. For the first band of a spatial tile the uploader:

    1. inserts the row with an empty raster of the tile's size and extent,
    2. reads back the tile's upper-left corner,
    3. adds every band (pixel type, nodata) and snaps the tile to that
       corner so adjacent tiles share the same pixel grid;

then, for every band, it sets the pixel values with ST_SetValues. Finally
the convex-hull index is built and raster constraints are registered.

The write is serial. A failing statement stops the upload with
``UploadFailed``; tiles written before it stay in the table.

Example:
    Write a global one-degree raster:
        >>> import numpy as np
        >>> import rasterio.crs
        >>> from pgspatial.db import database
        >>> from pgspatial.db import models as db_models
        >>> from pgspatial.services import write_raster

        >>> raster = db_models.CanonicalRaster.from_array(
        ...     np.ones((180, 360)),
        ...     db_models.Extent(-180, 180, -90, 90),
        ...     crs=rasterio.crs.CRS.from_epsg(4326),
        ... )
        >>> with database.get_connection(settings) as conn:
        ...     result = write_raster.write_raster(
        ...         conn, "rasters.test", raster, overwrite=True
        ...     )
        >>> result.row_count, result.srid
        (1, 4326)
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import TYPE_CHECKING, Any

import rasterio.errors
import tqdm

from pgspatial.core import config, errors
from pgspatial.db import database
from pgspatial.db import models as db_models
from pgspatial.services import blocks, normalize, raster_table, srid
from pgspatial.utils import sql_helpers

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

RESOLUTION_DIGITS = 10


class WriteState(enum.Enum):
    START = "start"
    PROVISIONED = "provisioned"
    PLANNED = "planned"
    UPLOADING = "uploading"
    INDEXED = "indexed"
    CONSTRAINED = "constrained"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[WriteState, frozenset[WriteState]] = {
    WriteState.START: frozenset({WriteState.PROVISIONED}),
    WriteState.PROVISIONED: frozenset({WriteState.PLANNED}),
    WriteState.PLANNED: frozenset({WriteState.UPLOADING}),
    WriteState.UPLOADING: frozenset({WriteState.INDEXED}),
    WriteState.INDEXED: frozenset({WriteState.CONSTRAINED, WriteState.DONE}),
    WriteState.CONSTRAINED: frozenset({WriteState.DONE}),
    WriteState.DONE: frozenset(),
    WriteState.FAILED: frozenset(),
}


class BlockUploader:
    """Issues the SQL for every work unit of a plan, in plan order."""

    def __init__(
        self,
        conn: database.ConnectionProtocol,
        table: db_models.TableName,
        raster: db_models.CanonicalRaster,
        plan: db_models.TilePlan,
        srid: int,
        pixel_type: db_models.PixelType,
    ) -> None:
        self.conn = conn
        self.table = table
        self.raster = raster
        self.plan = plan
        self.srid = srid
        self.pixel_type = pixel_type
        self.res = tuple(round(v, RESOLUTION_DIGITS) for v in raster.res)
        self._qualified = database.qualified_name(conn, table)
        self._band_names = conn.quote_literal(
            sql_helpers.text_array_literal(raster.band_names)
        )
        self._source_class = conn.quote_literal(raster.source_class)
        self._projection = conn.quote_literal(raster.crs_text)

    def create_row(self, tile: db_models.Tile) -> None:
        """Insert the row holding an empty raster sized to the tile."""
        res_x, res_y = self.res
        number = sql_helpers.format_number
        self.conn.execute(
            f"INSERT INTO {self._qualified} "
            "(row_id, band_names, source_class, source_projection, tile) "
            f"VALUES ({tile.unit.row_id}, {self._band_names}, "
            f"{self._source_class}, {self._projection}, "
            f"ST_MakeEmptyRaster({tile.cols}, {tile.rows}, "
            f"{number(tile.extent.xmin)}, {number(tile.extent.ymax)}, "
            f"{number(res_x)}, {number(-res_y)}, 0, 0, {self.srid}));"
        )

    def read_anchor(self, row_id: int) -> tuple[float, float]:
        """Read the upper-left corner of a tile as stored by PostGIS."""
        rows = self.conn.query(
            f"SELECT ST_UpperLeftX({raster_table.TILE_COLUMN}), "
            f"ST_UpperLeftY({raster_table.TILE_COLUMN}) "
            f"FROM {self._qualified} WHERE row_id = {row_id};"
        )
        if not rows:
            raise errors.StatementError(
                f"Row {row_id} not found after insert", "ST_UpperLeftX"
            )
        x, y = rows[0]
        return float(x), float(y)

    def add_bands(self, row_id: int, anchor: tuple[float, float]) -> None:
        """Add every band to the tile and snap it to ``anchor``."""
        number = sql_helpers.format_number
        pixel_type = self.conn.quote_literal(self.pixel_type.value)
        band_args = ",".join(
            f"ROW({index},{pixel_type}::text,0,{number(self.raster.nodata)})"
            for index in range(1, self.raster.band_count + 1)
        )
        res_x, res_y = self.res
        scale = f", {number(res_x)}, {number(-res_y)}" if res_x != res_y else ""
        self.conn.execute(
            f"UPDATE {self._qualified} SET tile = ST_SnapToGrid("
            f"ST_AddBand(tile, ARRAY[{band_args}]::addbandarg[]), "
            f"{number(anchor[0])}, {number(anchor[1])}{scale}) "
            f"WHERE row_id = {row_id};"
        )

    def set_values(self, tile: db_models.Tile) -> None:
        """Write one band's pixel values into the tile's row."""
        self.conn.execute(
            f"UPDATE {self._qualified} SET tile = ST_SetValues(tile, "
            f"{tile.unit.band}, 1, 1, "
            f"{sql_helpers.matrix_literal(tile.values)}::double precision[][]) "
            f"WHERE row_id = {tile.unit.row_id};"
        )

    def upload(self, unit: db_models.WorkUnit) -> None:
        """Upload one work unit.

        Raises:
            UploadFailed: If any statement for the unit fails.
        """
        tile = blocks.extract_tile(self.raster, self.plan, unit)
        try:
            if unit.band == 1:
                self.create_row(tile)
                self.add_bands(unit.row_id, self.read_anchor(unit.row_id))
            self.set_values(tile)
        except errors.StatementError as exc:
            raise errors.UploadFailed(
                unit.band, unit.tile_row, unit.tile_col, unit.row_id, str(exc)
            ) from exc

    def run(self, progress: bool = True) -> int:
        """Upload every unit of the plan; returns the number uploaded."""
        units = tqdm.tqdm(
            self.plan.units, desc="Writing blocks", disable=not progress
        )
        for unit in units:
            self.upload(unit)
        return len(self.plan.units)


class RasterWriter:
    """Single-use driver for one raster write.

    Moves through ``WriteState`` from START to DONE; any failure leaves it
    in FAILED. Instances cannot be re-run.
    """

    def __init__(
        self,
        conn: database.ConnectionProtocol,
        table: db_models.TableName | str | Sequence[str],
        source: object,
        options: db_models.RasterWriteOptions,
        settings: config.Settings,
    ) -> None:
        self.conn = conn
        self.table = db_models.TableName.parse(table)
        self.source = source
        self.options = options
        self.settings = settings
        self.state = WriteState.START
        self.warnings: list[str] = []

    def _advance(self, new_state: WriteState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid raster write transition {self.state.value} -> "
                f"{new_state.value}"
            )
        self.state = new_state

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def _resolve_srid(self, raster: db_models.CanonicalRaster) -> int:
        if raster.crs is None:
            self._warn("The raster has no CRS specified.")
            return srid.UNDEFINED_SRID
        try:
            value = srid.resolve_srid(self.conn, raster.crs, create=True)
        except (errors.StatementError, rasterio.errors.CRSError) as exc:
            self._warn(f"Could not resolve SRID, writing with SRID 0: {exc}")
            return srid.UNDEFINED_SRID
        if value == srid.UNDEFINED_SRID:
            self._warn("The raster has no CRS specified.")
        return value

    def run(self) -> db_models.RasterWriteResult:
        """Execute the write.

        Returns:
            RasterWriteResult describing the upload.

        Raises:
            ExtensionMissing: PostGIS or raster support is absent.
            UnsupportedInputKind: The source cannot be normalized.
            InvalidBlockSpec: The block override is degenerate.
            DestinationExists: The table exists without append/overwrite.
            UploadFailed: A statement failed during the upload.
            RuntimeError: The writer has already been run.
        """
        if self.state is not WriteState.START:
            raise RuntimeError("RasterWriter instances are single-use")
        try:
            return self._run()
        except Exception:
            self.state = WriteState.FAILED
            raise

    def _run(self) -> db_models.RasterWriteResult:
        options = self.options
        if not database.postgis_enabled(self.conn):
            raise errors.ExtensionMissing("PostGIS is not enabled on this database.")

        raster = normalize.normalize_raster(
            self.source, nodata=self.settings.nodata_value
        )
        pixel_type = (
            db_models.PixelType.parse(options.bit_depth)
            if options.bit_depth is not None
            else raster.detect_pixel_type()
        )
        if not raster.nodata_fits(pixel_type):
            self._warn(
                f"Nodata value {raster.nodata:g} is outside the range of "
                f"pixel type {pixel_type.value}; PostGIS will clamp it. "
                "Pass a signed bit_depth to keep missing cells distinct."
            )
        # Validate the block layout before touching the destination.
        blocks.plan_windows(
            raster,
            options.blocks,
            self.settings.max_block_copies,
            self.settings.block_memory_bytes,
        )

        provisioned = raster_table.ensure_table(
            self.conn, self.table, options.overwrite, options.append
        )
        self.warnings.extend(provisioned.warnings)
        self._advance(WriteState.PROVISIONED)

        srid_value = self._resolve_srid(raster)
        plan = blocks.plan_blocks(
            raster,
            options.blocks,
            base_row_id=provisioned.base_row_id,
            max_copies=self.settings.max_block_copies,
            memory_bytes=self.settings.block_memory_bytes,
        )
        self._advance(WriteState.PLANNED)

        self._advance(WriteState.UPLOADING)
        uploader = BlockUploader(
            self.conn, self.table, raster, plan, srid_value, pixel_type
        )
        tile_count = uploader.run(progress=options.progress)

        raster_table.sync_row_id_sequence(self.conn, self.table)
        raster_table.build_index(
            self.conn, self.table, replace=not provisioned.created
        )
        self._advance(WriteState.INDEXED)

        constraints_registered = False
        if options.constraints:
            try:
                raster_table.add_constraints(self.conn, self.table)
            except errors.ConstraintRegistrationFailed as exc:
                self._warn(str(exc))
            else:
                constraints_registered = True
                self._advance(WriteState.CONSTRAINED)
        self._advance(WriteState.DONE)

        return db_models.RasterWriteResult(
            table=self.table.qualified,
            base_row_id=provisioned.base_row_id,
            row_count=len(plan.row_ids),
            tile_count=tile_count,
            srid=srid_value,
            pixel_type=pixel_type,
            constraints_registered=constraints_registered,
            warnings=list(self.warnings),
        )


def write_raster(
    conn: database.ConnectionProtocol,
    table: db_models.TableName | str | Sequence[str],
    raster: object,
    options: db_models.RasterWriteOptions | None = None,
    settings: config.Settings | None = None,
    **overrides: Any,
) -> db_models.RasterWriteResult:
    """Write a raster to a PostGIS table.

    Args:
        conn: Open connection (a ``PostgresConnection`` in production).
        table: ``"table"``, ``"schema.table"`` or ``("schema", "table")``.
        raster: ``CanonicalRaster`` or any input ``normalize_raster``
            accepts.
        options: Write options; keyword overrides such as
            ``overwrite=True`` are applied on top.
        settings: Settings providing nodata and block defaults.

    Returns:
        RasterWriteResult; non-fatal problems are in ``warnings``.

    Raises:
        ExtensionMissing, UnsupportedInputKind, InvalidBlockSpec,
        DestinationExists, UploadFailed: see ``RasterWriter.run``.
        ValueError: If ``bit_depth`` is not a PostGIS pixel type.
    """
    options = dataclasses.replace(
        options or db_models.RasterWriteOptions(), **overrides
    )
    writer = RasterWriter(
        conn, table, raster, options, settings or config.get_settings()
    )
    return writer.run()
