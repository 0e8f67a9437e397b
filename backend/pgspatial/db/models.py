"""Data models for rasters, tile plans and write results.

This module defines the core data structures shared by the normalizer,
the block planner, the uploader and the geometry formatter. The central
one is ``CanonicalRaster``: a regular, north-up, multi-band grid backed by
a masked ``numpy`` array, which every supported input kind is converted
into before it is split into blocks.

Example:
    Build a canonical raster directly from an array:
        >>> import numpy as np
        >>> from pgspatial.db.models import CanonicalRaster, Extent
        >>> raster = CanonicalRaster.from_array(
        ...     np.ones((180, 360)),
        ...     Extent(xmin=-180, xmax=180, ymin=-90, ymax=90),
        ... )
        >>> raster.rows, raster.cols, raster.res
        (180, 360, (1.0, 1.0))
"""

from __future__ import annotations

import dataclasses
import enum
import math
from typing import TYPE_CHECKING, Any, NamedTuple

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rasterio import crs as rio_crs

DEFAULT_SCHEMA = "public"
DEFAULT_NODATA = -99999.0
_GRID_TOLERANCE = 1e-6


class Extent(NamedTuple):
    """West/east/south/north bounds of a raster or tile."""

    xmin: float
    xmax: float
    ymin: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin


class PixelType(enum.StrEnum):
    """PostGIS band pixel types (see ST_BandPixelType)."""

    BOOL_1 = "1BB"
    UINT_2 = "2BUI"
    UINT_4 = "4BUI"
    INT_8 = "8BSI"
    UINT_8 = "8BUI"
    INT_16 = "16BSI"
    UINT_16 = "16BUI"
    INT_32 = "32BSI"
    UINT_32 = "32BUI"
    FLOAT_32 = "32BF"
    FLOAT_64 = "64BF"

    @classmethod
    def parse(cls, value: PixelType | str) -> PixelType:
        """Return the pixel type matching a PostGIS spelling such as '32BF'.

        Raises:
            ValueError: If ``value`` is not a PostGIS pixel type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise ValueError(
                f"Unknown pixel type {value!r}; expected one of {allowed}"
            ) from None


@dataclasses.dataclass(frozen=True)
class CanonicalRaster:
    """Regular north-up grid with one or more bands.

    Attributes:
        values: Masked array shaped ``(bands, rows, cols)``; row 0 is the
            northern edge and masked cells are missing values.
        extent: Bounds of the whole grid.
        res: ``(x, y)`` cell size, both positive.
        band_names: One name per band; empty or duplicate names are kept.
        crs: Coordinate reference system, or None when undefined.
        source_class: Tag naming the kind of object the raster came from.
        nodata: Sentinel substituted for missing cells on upload.
    """

    values: np.ma.MaskedArray
    extent: Extent
    res: tuple[float, float]
    band_names: list[str]
    crs: rio_crs.CRS | None = None
    source_class: str = "CanonicalRaster"
    nodata: float = DEFAULT_NODATA

    def __post_init__(self) -> None:
        if self.values.ndim != 3:
            raise ValueError(
                f"Raster values must be 3-D (bands, rows, cols), "
                f"got {self.values.ndim}-D"
            )
        if self.band_count < 1:
            raise ValueError("Raster must have at least one band")
        if len(self.band_names) != self.band_count:
            raise ValueError(
                f"Got {len(self.band_names)} band names "
                f"for {self.band_count} bands"
            )
        res_x, res_y = self.res
        if res_x <= 0 or res_y <= 0:
            raise ValueError(f"Resolution must be positive, got {self.res}")
        if not math.isclose(
            self.extent.width / res_x, self.cols, rel_tol=_GRID_TOLERANCE
        ) or not math.isclose(
            self.extent.height / res_y, self.rows, rel_tol=_GRID_TOLERANCE
        ):
            raise ValueError(
                f"Extent {tuple(self.extent)} and resolution {self.res} "
                f"do not describe a {self.rows}x{self.cols} grid"
            )

    @classmethod
    def from_array(
        cls,
        data: Any,
        extent: Extent | Sequence[float],
        crs: rio_crs.CRS | None = None,
        band_names: Sequence[str] | None = None,
        source_class: str = "ndarray",
        nodata: float = DEFAULT_NODATA,
    ) -> CanonicalRaster:
        """Build a raster from a 2-D or 3-D array and its bounds.

        NaN cells (and cells already masked) are treated as missing.

        Args:
            data: Array-like shaped ``(rows, cols)`` or
                ``(bands, rows, cols)``, row 0 at the north.
            extent: ``Extent`` or ``(xmin, xmax, ymin, ymax)``.
            crs: Optional coordinate reference system.
            band_names: Optional names; defaults to ``band1``, ``band2``...
            source_class: Tag stored in the ``source_class`` column.
            nodata: Sentinel for missing cells.

        Returns:
            A validated ``CanonicalRaster``.
        """
        values = np.ma.asarray(data)
        if values.ndim == 2:
            values = values[np.newaxis, :, :]
        if np.issubdtype(values.dtype, np.floating):
            values = np.ma.masked_invalid(values)
        extent = Extent(*extent)
        _, rows, cols = values.shape
        if rows == 0 or cols == 0:
            raise ValueError("Raster must have at least one row and column")
        res = (extent.width / cols, extent.height / rows)
        names = (
            list(band_names)
            if band_names is not None
            else [f"band{i}" for i in range(1, values.shape[0] + 1)]
        )
        return cls(
            values=values,
            extent=extent,
            res=res,
            band_names=names,
            crs=crs,
            source_class=source_class,
            nodata=nodata,
        )

    @property
    def band_count(self) -> int:
        return int(self.values.shape[0])

    @property
    def rows(self) -> int:
        return int(self.values.shape[1])

    @property
    def cols(self) -> int:
        return int(self.values.shape[2])

    @property
    def crs_text(self) -> str:
        """PROJ string of the CRS, or an empty string when undefined."""
        if self.crs is None:
            return ""
        return self.crs.to_proj4() or self.crs.to_wkt()

    def detect_pixel_type(self) -> PixelType:
        """Pick a 32-bit pixel type from the data.

        Integer data becomes unsigned when its smallest value is
        non-negative and signed otherwise; anything else is 32-bit float.
        The nodata sentinel is not considered: a negative sentinel on an
        unsigned band is clamped by PostGIS (see ``nodata_fits``).
        """
        dtype = self.values.dtype
        if np.issubdtype(dtype, np.integer) or np.issubdtype(dtype, np.bool_):
            valid = self.values.compressed()
            if valid.size == 0 or valid.min() >= 0:
                return PixelType.UINT_32
            return PixelType.INT_32
        return PixelType.FLOAT_32

    def nodata_fits(self, pixel_type: PixelType) -> bool:
        """Whether the nodata sentinel is representable in ``pixel_type``."""
        unsigned = pixel_type is PixelType.BOOL_1 or pixel_type.value.endswith(
            "BUI"
        )
        return not (unsigned and self.nodata < 0)

    def with_nodata(self, nodata: float) -> CanonicalRaster:
        return dataclasses.replace(self, nodata=nodata)


class WorkUnit(NamedTuple):
    """One (band, spatial tile) upload step and its destination row."""

    band: int
    tile_row: int
    tile_col: int
    row_id: int


class Window(NamedTuple):
    offset: int
    size: int


@dataclasses.dataclass(frozen=True)
class BlockSize:
    """Explicit tile geometry in pixels; edge tiles may be smaller."""

    rows: int
    cols: int


@dataclasses.dataclass(frozen=True)
class TilePlan:
    """Deterministic upload order for a raster.

    Attributes:
        row_windows: ``(offset, size)`` of every row block.
        col_windows: ``(offset, size)`` of every column block.
        units: Work units in upload order.
        base_row_id: Largest row id present before the upload.
        next_row_id: Row-id counter value once the plan is written.
    """

    row_windows: tuple[Window, ...]
    col_windows: tuple[Window, ...]
    units: tuple[WorkUnit, ...]
    base_row_id: int
    next_row_id: int

    @property
    def row_block_count(self) -> int:
        return len(self.row_windows)

    @property
    def col_block_count(self) -> int:
        return len(self.col_windows)

    @property
    def row_ids(self) -> list[int]:
        return sorted({unit.row_id for unit in self.units})


@dataclasses.dataclass(frozen=True)
class Tile:
    """Pixel sub-window of one band, ready to be uploaded."""

    unit: WorkUnit
    row_offset: int
    col_offset: int
    rows: int
    cols: int
    extent: Extent
    values: np.ndarray


@dataclasses.dataclass(frozen=True)
class TableName:
    """Schema-qualified table name.

    Example:
        >>> TableName.parse("rasters.elevation")
        TableName(schema='rasters', table='elevation')
        >>> TableName.parse(("rasters", "elevation")).qualified
        'rasters.elevation'
    """

    schema: str
    table: str

    @classmethod
    def parse(cls, name: TableName | str | Sequence[str]) -> TableName:
        if isinstance(name, TableName):
            return name
        if isinstance(name, str):
            parts = name.split(".", 1) if "." in name else [name]
        else:
            parts = list(name)
        if len(parts) == 1:
            return cls(DEFAULT_SCHEMA, parts[0])
        if len(parts) == 2:
            return cls(parts[0], parts[1])
        raise ValueError(f"Invalid table name: {name!r}")

    @property
    def qualified(self) -> str:
        return f"{self.schema}.{self.table}"


@dataclasses.dataclass
class RasterWriteOptions:
    """Options accepted by ``write_raster``.

    Attributes:
        bit_depth: Pixel type override; detected from the data when None.
        blocks: Block count as ``n`` or ``(columns, rows)``, or an explicit
            ``BlockSize``. Chosen from the memory budget when None.
        constraints: Register AddRasterConstraints after the upload.
        overwrite: Drop an existing table first.
        append: Add tiles to an existing table.
        progress: Show a progress bar while writing blocks.
    """

    bit_depth: PixelType | str | None = None
    blocks: int | tuple[int, ...] | BlockSize | None = None
    constraints: bool = True
    overwrite: bool = False
    append: bool = False
    progress: bool = True


@dataclasses.dataclass
class RasterWriteResult:
    """Outcome of a successful raster write.

    Non-fatal problems (undefined CRS, constraint failures) are listed in
    ``warnings``.
    """

    table: str
    base_row_id: int
    row_count: int
    tile_count: int
    srid: int
    pixel_type: PixelType
    constraints_registered: bool
    warnings: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class GeometryInsert:
    """Formatted insert for a geometry data frame.

    Attributes:
        target_table: Table the rows are meant for, if known.
        create_table_sql: Statements creating the table, when requested.
        insert_columns: Column names, geometry column last.
        insert_values_sql: Comma-separated ``(...)`` value tuples.
    """

    target_table: str | None
    create_table_sql: str | None
    insert_columns: list[str]
    insert_values_sql: str

    def __str__(self) -> str:
        rule = "*" * 36
        lines = [
            "GeometryInsert: formatted PostgreSQL insert. "
            "Use with insert_geometries() to write it to the database.",
            rule,
        ]
        if self.target_table is not None:
            lines += [f"Insert table: {self.target_table}", rule]
        if self.create_table_sql is not None:
            lines += [f"SQL to create new table: {self.create_table_sql}", rule]
        lines += [f"Columns to insert into: {','.join(self.insert_columns)}", rule]
        preview = f"Formatted insert data: {self.insert_values_sql[:1000]}"
        if len(self.insert_values_sql) > 1000:
            preview += "........Only the first 1000 characters shown"
        lines.append(preview)
        return "\n".join(lines)
