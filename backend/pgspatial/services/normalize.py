"""Conversion of supported raster inputs into a ``CanonicalRaster``.

Each supported input kind has an adapter implementing ``SourceRaster``.
``normalize_raster`` picks the adapter for an object and returns the
canonical raster it produces, so the rest of the write path only ever
deals with one representation.

Supported inputs:
    - ``CanonicalRaster`` (returned unchanged)
    - open ``rasterio`` datasets
    - ``rio_tiler.models.ImageData`` (what rio-tiler readers return)
    - ``xarray.DataArray`` with ``y``/``x`` (or ``lat``/``lon``) dimensions
      and an optional band dimension
    - ``xarray.Dataset``, one band per 2-D data variable; a dataset holding
      only coordinates is a bare grid and gets a single constant band

Example:
    Normalize an open GeoTIFF:
        >>> import rasterio
        >>> from pgspatial.services import normalize
        >>> with rasterio.open("elevation.tif") as dataset:
        ...     raster = normalize.normalize_raster(dataset)
        >>> raster.band_count, raster.res
        (1, (30.0, 30.0))
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
import rasterio.crs
import rasterio.errors
import rasterio.io
import xarray as xr
from rio_tiler import models as rio_tiler_models

from pgspatial.core import errors
from pgspatial.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Sequence

_X_DIMS = ("x", "lon", "longitude")
_Y_DIMS = ("y", "lat", "latitude")
BARE_GRID_BAND = "value"
BARE_GRID_FILL = 0


class SourceRaster(Protocol):
    """Anything that can produce a canonical raster."""

    def to_canonical(self) -> db_models.CanonicalRaster: ...


def _masked(data: Any) -> np.ma.MaskedArray:
    values = np.ma.asarray(data)
    if np.issubdtype(values.dtype, np.floating):
        values = np.ma.masked_invalid(values)
    return values


def _band_names(
    names: Sequence[str | None] | None, count: int
) -> list[str]:
    if not names or len(names) != count:
        return [f"band{i}" for i in range(1, count + 1)]
    return [str(name) if name is not None else "" for name in names]


def _build(
    values: np.ma.MaskedArray,
    extent: db_models.Extent,
    res: tuple[float, float],
    band_names: list[str],
    crs: rasterio.crs.CRS | None,
    source_class: str,
    nodata: float,
) -> db_models.CanonicalRaster:
    try:
        return db_models.CanonicalRaster(
            values=values,
            extent=extent,
            res=res,
            band_names=band_names,
            crs=crs,
            source_class=source_class,
            nodata=nodata,
        )
    except ValueError as exc:
        raise errors.UnsupportedInputKind(
            f"{source_class} is not a regular grid: {exc}"
        ) from exc


class RasterioSource(SourceRaster):
    """Adapter for an open rasterio dataset."""

    def __init__(
        self,
        dataset: rasterio.io.DatasetReader,
        nodata: float = db_models.DEFAULT_NODATA,
    ) -> None:
        self.dataset = dataset
        self.nodata = nodata

    def to_canonical(self) -> db_models.CanonicalRaster:
        transform = self.dataset.transform
        if transform.b != 0 or transform.d != 0:
            raise errors.UnsupportedInputKind(
                "Rotated or sheared rasters cannot be written as a regular grid"
            )
        if transform.a <= 0 or transform.e >= 0:
            raise errors.UnsupportedInputKind(
                "Only north-up rasters (positive x and negative y scale) "
                "are supported"
            )
        values = _masked(self.dataset.read(masked=True))
        bounds = self.dataset.bounds
        return _build(
            values,
            db_models.Extent(
                bounds.left, bounds.right, bounds.bottom, bounds.top
            ),
            (transform.a, -transform.e),
            _band_names(self.dataset.descriptions, self.dataset.count),
            self.dataset.crs,
            type(self.dataset).__name__,
            self.nodata,
        )


class ImageDataSource(SourceRaster):
    """Adapter for rio-tiler ``ImageData`` (reader ``read()`` output)."""

    def __init__(
        self,
        image: rio_tiler_models.ImageData,
        nodata: float = db_models.DEFAULT_NODATA,
    ) -> None:
        self.image = image
        self.nodata = nodata

    def to_canonical(self) -> db_models.CanonicalRaster:
        if self.image.bounds is None:
            raise errors.UnsupportedInputKind(
                "ImageData without bounds cannot be georeferenced"
            )
        minx, miny, maxx, maxy = self.image.bounds
        values = _masked(self.image.array)
        if values.ndim == 2:
            values = values[np.newaxis, :, :]
        _, rows, cols = values.shape
        if rows == 0 or cols == 0:
            raise errors.UnsupportedInputKind("ImageData holds no pixels")
        return _build(
            values,
            db_models.Extent(minx, maxx, miny, maxy),
            ((maxx - minx) / cols, (maxy - miny) / rows),
            _band_names(getattr(self.image, "band_names", None), values.shape[0]),
            self.image.crs,
            type(self.image).__name__,
            self.nodata,
        )


class XarraySource(SourceRaster):
    """Adapter for xarray ``DataArray`` and ``Dataset`` grids."""

    def __init__(
        self,
        data: xr.DataArray | xr.Dataset,
        nodata: float = db_models.DEFAULT_NODATA,
    ) -> None:
        self.data = data
        self.nodata = nodata

    @staticmethod
    def _dim(obj: xr.DataArray | xr.Dataset, candidates: tuple[str, ...]) -> str:
        for name in candidates:
            if name in obj.dims:
                return name
        raise errors.UnsupportedInputKind(
            f"No spatial dimension among {candidates}; found {tuple(obj.dims)}"
        )

    def _axis(self, coords: np.ndarray, fallback: float | None) -> float:
        if coords.size >= 2:
            steps = np.diff(coords.astype("float64"))
            step = float(steps[0])
            if step == 0 or not np.allclose(steps, step, rtol=1e-6, atol=0):
                raise errors.UnsupportedInputKind(
                    "Coordinates are not regularly spaced"
                )
            return abs(step)
        if fallback is None:
            raise errors.UnsupportedInputKind(
                "Cannot infer resolution from a single coordinate; "
                "set a 'res' attribute"
            )
        return float(fallback)

    def _attr_res(self) -> tuple[float | None, float | None]:
        res = self.data.attrs.get("res")
        if res is None:
            return None, None
        if np.ndim(res) == 0:
            return float(res), float(res)
        return float(res[0]), float(res[1])

    def _crs(self) -> rasterio.crs.CRS | None:
        crs = self.data.attrs.get("crs")
        if crs is None and "spatial_ref" in self.data.coords:
            crs = self.data.coords["spatial_ref"].attrs.get("crs_wkt")
        if crs is None:
            return None
        try:
            return rasterio.crs.CRS.from_user_input(crs)
        except rasterio.errors.CRSError as exc:
            raise errors.UnsupportedInputKind(
                f"Unreadable crs attribute {crs!r}"
            ) from exc

    def _stack(self) -> tuple[xr.DataArray, list[str]]:
        """Return a (band, y, x) array and the band names."""
        data = self.data
        y_dim, x_dim = self._dim(data, _Y_DIMS), self._dim(data, _X_DIMS)
        if isinstance(data, xr.Dataset):
            if not data.data_vars:
                grid = xr.DataArray(
                    np.full(
                        (data.sizes[y_dim], data.sizes[x_dim]), BARE_GRID_FILL
                    ),
                    dims=(y_dim, x_dim),
                    coords={y_dim: data[y_dim], x_dim: data[x_dim]},
                )
                return grid.expand_dims("band"), [BARE_GRID_BAND]
            names = [str(name) for name in data.data_vars]
            for name in names:
                if set(data[name].dims) != {y_dim, x_dim}:
                    raise errors.UnsupportedInputKind(
                        f"Variable {name!r} is not a 2-D ({y_dim}, {x_dim}) grid"
                    )
            stacked = xr.concat(
                [data[name].transpose(y_dim, x_dim) for name in names],
                dim="band",
            )
            return stacked, names
        if data.ndim == 2:
            return data.transpose(y_dim, x_dim).expand_dims("band"), (
                [str(data.name)] if data.name is not None else ["band1"]
            )
        if data.ndim == 3:
            band_dim = next(d for d in data.dims if d not in (y_dim, x_dim))
            stacked = data.transpose(band_dim, y_dim, x_dim)
            if band_dim in data.coords:
                names = [str(v) for v in data.coords[band_dim].values]
            else:
                names = _band_names(None, data.sizes[band_dim])
            return stacked, names
        raise errors.UnsupportedInputKind(
            f"Expected a 2-D or 3-D DataArray, got {data.ndim} dimensions"
        )

    def to_canonical(self) -> db_models.CanonicalRaster:
        stacked, names = self._stack()
        _, y_dim, x_dim = stacked.dims
        x = np.asarray(stacked[x_dim].values)
        y = np.asarray(stacked[y_dim].values)
        if x.size == 0 or y.size == 0:
            raise errors.UnsupportedInputKind(
                f"{type(self.data).__name__} holds no pixels"
            )
        res_x_attr, res_y_attr = self._attr_res()
        res_x = self._axis(x, res_x_attr)
        res_y = self._axis(y, res_y_attr)

        values = _masked(stacked.values)
        if x.size >= 2 and x[1] < x[0]:
            values = values[:, :, ::-1]
        if y.size >= 2 and y[1] > y[0]:
            values = values[:, ::-1, :]

        extent = db_models.Extent(
            float(x.min()) - res_x / 2,
            float(x.max()) + res_x / 2,
            float(y.min()) - res_y / 2,
            float(y.max()) + res_y / 2,
        )
        return _build(
            values,
            extent,
            (res_x, res_y),
            names,
            self._crs(),
            type(self.data).__name__,
            self.nodata,
        )


_ADAPTERS: tuple[tuple[type, type[SourceRaster]], ...] = (
    (rasterio.io.DatasetReader, RasterioSource),
    (rio_tiler_models.ImageData, ImageDataSource),
    (xr.DataArray, XarraySource),
    (xr.Dataset, XarraySource),
)


def normalize_raster(
    source: object, nodata: float = db_models.DEFAULT_NODATA
) -> db_models.CanonicalRaster:
    """Convert a supported raster input into a ``CanonicalRaster``.

    Args:
        source: A canonical raster or one of the supported input kinds.
        nodata: Sentinel assigned to rasters built by an adapter; a
            canonical raster keeps its own.

    Returns:
        The canonical raster.

    Raises:
        UnsupportedInputKind: If ``source`` has no adapter or cannot be
            mapped to a regular grid with at least one band.
    """
    if isinstance(source, db_models.CanonicalRaster):
        return source
    for kind, adapter in _ADAPTERS:
        if isinstance(source, kind):
            return adapter(source, nodata=nodata).to_canonical()  # type: ignore[call-arg]
    if hasattr(source, "to_canonical"):
        return source.to_canonical()  # type: ignore[no-any-return]
    raise errors.UnsupportedInputKind(
        f"Cannot write objects of type {type(source).__name__} as a raster"
    )
