"""Block planning: splitting a raster into tiles and assigning row ids.

Rows and columns are split independently, so the tile grid is the
Cartesian product of row blocks and column blocks. Every band of a spatial
tile is written to the same destination row; row ids are assigned on the
first band only, continuing from the largest id already in the table.

Upload order is band-major: all band-1 units (which create the rows) come
first, each band walks row blocks and then column blocks.

Example:
    Plan a 180x360 single-band raster in 4 x 2 blocks:
        >>> from pgspatial.services import blocks
        >>> plan = blocks.plan_blocks(raster, blocks=(4, 2))
        >>> plan.col_block_count, plan.row_block_count
        (4, 2)
        >>> plan.row_ids
        [1, 2, 3, 4, 5, 6, 7, 8]
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from pgspatial.core import errors
from pgspatial.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

BYTES_PER_CELL = 8
DEFAULT_MAX_COPIES = 100
DEFAULT_MEMORY_BYTES = 256 * 1024 * 1024

BlockSpec = int | tuple[int, ...] | db_models.BlockSize | None


def _as_positive_int(value: object, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise errors.InvalidBlockSpec(
            f"{label} must be an integer, got {value!r}"
        )
    if value < 1:
        raise errors.InvalidBlockSpec(f"{label} must be at least 1, got {value}")
    return int(value)


def windows_by_size(total: int, size: int) -> tuple[db_models.Window, ...]:
    """Cover ``total`` pixels with windows of ``size``; the last may be smaller."""
    return tuple(
        db_models.Window(offset, min(size, total - offset))
        for offset in range(0, total, size)
    )


def windows_by_count(
    total: int, count: int, axis: str
) -> tuple[db_models.Window, ...]:
    """Split ``total`` pixels into exactly ``count`` contiguous windows.

    Window sizes differ by at most one pixel; the larger ones come first.

    Raises:
        InvalidBlockSpec: If ``count`` exceeds ``total``, which would
            leave zero-sized windows.
    """
    if count > total:
        raise errors.InvalidBlockSpec(
            f"Cannot split {total} {axis} into {count} blocks"
        )
    base, extra = divmod(total, count)
    windows = []
    offset = 0
    for index in range(count):
        size = base + 1 if index < extra else base
        windows.append(db_models.Window(offset, size))
        offset += size
    return tuple(windows)


def default_chunk(
    other_axis_length: int,
    max_copies: int = DEFAULT_MAX_COPIES,
    memory_bytes: int = DEFAULT_MEMORY_BYTES,
) -> int:
    """Pixels per block along one axis under the memory budget.

    ``max_copies`` block-sized copies of the data, each spanning the whole
    other axis, must fit into ``memory_bytes``.
    """
    per_line = max_copies * BYTES_PER_CELL * other_axis_length
    return max(1, memory_bytes // per_line)


def _block_counts(blocks: Sequence[int] | int) -> tuple[int, int]:
    if isinstance(blocks, (list, tuple)):
        if len(blocks) == 1:
            count = _as_positive_int(blocks[0], "blocks")
            return count, count
        if len(blocks) == 2:
            return (
                _as_positive_int(blocks[0], "column blocks"),
                _as_positive_int(blocks[1], "row blocks"),
            )
        raise errors.InvalidBlockSpec(
            f"blocks must have one or two values, got {len(blocks)}"
        )
    count = _as_positive_int(blocks, "blocks")
    return count, count


def plan_windows(
    raster: db_models.CanonicalRaster,
    blocks: BlockSpec = None,
    max_copies: int = DEFAULT_MAX_COPIES,
    memory_bytes: int = DEFAULT_MEMORY_BYTES,
) -> tuple[tuple[db_models.Window, ...], tuple[db_models.Window, ...]]:
    """Compute row and column windows for a raster.

    Args:
        raster: Raster to split.
        blocks: ``None`` for the memory-based default, a block count ``n``
            or ``(columns, rows)``, or an explicit ``BlockSize``.
        max_copies: Copies of a block assumed to be held at once.
        memory_bytes: Memory budget for the default layout.

    Returns:
        ``(row_windows, col_windows)``.

    Raises:
        InvalidBlockSpec: If ``blocks`` is malformed or degenerate.
    """
    if blocks is None:
        row_size = default_chunk(raster.cols, max_copies, memory_bytes)
        col_size = default_chunk(raster.rows, max_copies, memory_bytes)
        return (
            windows_by_size(raster.rows, row_size),
            windows_by_size(raster.cols, col_size),
        )
    if isinstance(blocks, db_models.BlockSize):
        row_size = _as_positive_int(blocks.rows, "block rows")
        col_size = _as_positive_int(blocks.cols, "block columns")
        return (
            windows_by_size(raster.rows, row_size),
            windows_by_size(raster.cols, col_size),
        )
    col_count, row_count = _block_counts(blocks)
    return (
        windows_by_count(raster.rows, row_count, "rows"),
        windows_by_count(raster.cols, col_count, "columns"),
    )


def plan_blocks(
    raster: db_models.CanonicalRaster,
    blocks: BlockSpec = None,
    base_row_id: int = 0,
    max_copies: int = DEFAULT_MAX_COPIES,
    memory_bytes: int = DEFAULT_MEMORY_BYTES,
) -> db_models.TilePlan:
    """Build the ordered upload plan for a raster.

    Args:
        raster: Raster to split.
        blocks: Block override, see ``plan_windows``.
        base_row_id: Largest row id already in the destination table.
        max_copies: Copies of a block assumed to be held at once.
        memory_bytes: Memory budget for the default layout.

    Returns:
        TilePlan with ``rows x cols x bands`` units and ``rows x cols``
        row ids starting at ``base_row_id + 1``.

    Raises:
        InvalidBlockSpec: If ``blocks`` is malformed or degenerate.
    """
    if base_row_id < 0:
        raise ValueError(f"base_row_id must not be negative, got {base_row_id}")
    row_windows, col_windows = plan_windows(
        raster, blocks, max_copies, memory_bytes
    )
    logger.info(
        "Splitting %d band(s) into %d x %d blocks...",
        raster.band_count,
        len(col_windows),
        len(row_windows),
    )

    spatial_ids: dict[tuple[int, int], int] = {}
    next_row_id = base_row_id
    units = []
    for band in range(1, raster.band_count + 1):
        for tile_row in range(len(row_windows)):
            for tile_col in range(len(col_windows)):
                key = (tile_row, tile_col)
                if band == 1:
                    next_row_id += 1
                    spatial_ids[key] = next_row_id
                units.append(
                    db_models.WorkUnit(band, tile_row, tile_col, spatial_ids[key])
                )

    return db_models.TilePlan(
        row_windows=row_windows,
        col_windows=col_windows,
        units=tuple(units),
        base_row_id=base_row_id,
        next_row_id=next_row_id,
    )


def window_bounds(
    raster: db_models.CanonicalRaster,
    row_offset: int,
    col_offset: int,
    rows: int,
    cols: int,
) -> db_models.Extent:
    """Bounding extent of a pixel window."""
    res_x, res_y = raster.res
    xmin = raster.extent.xmin + col_offset * res_x
    ymax = raster.extent.ymax - row_offset * res_y
    return db_models.Extent(
        xmin=xmin,
        xmax=xmin + cols * res_x,
        ymin=ymax - rows * res_y,
        ymax=ymax,
    )


def extract_tile(
    raster: db_models.CanonicalRaster,
    plan: db_models.TilePlan,
    unit: db_models.WorkUnit,
) -> db_models.Tile:
    """Cut the pixel window of one work unit out of the raster.

    Missing cells (masked or NaN) are replaced with the raster's nodata
    sentinel.
    """
    row_offset, rows = plan.row_windows[unit.tile_row]
    col_offset, cols = plan.col_windows[unit.tile_col]
    window = raster.values[
        unit.band - 1,
        row_offset : row_offset + rows,
        col_offset : col_offset + cols,
    ]
    values = np.ma.filled(window.astype("float64"), raster.nodata)
    values = np.where(np.isnan(values), raster.nodata, values)
    return db_models.Tile(
        unit=unit,
        row_offset=row_offset,
        col_offset=col_offset,
        rows=rows,
        cols=cols,
        extent=window_bounds(raster, row_offset, col_offset, rows, cols),
        values=values,
    )
