"""Tests for raster input normalization.

Each supported input kind (rasterio datasets, rio-tiler ImageData, xarray
DataArray and Dataset) is converted into a CanonicalRaster with the
expected extent, resolution, band names and orientation; unsupported
objects and irregular grids raise UnsupportedInputKind.

See Also:
    - backend/pgspatial/services/normalize.py for the adapters.
"""

from __future__ import annotations

import types

import numpy as np
import pytest
import rasterio.io
import xarray as xr
from rasterio import crs as rio_crs
from rasterio import transform as rio_transform
from rasterio.transform import Affine
from rio_tiler import models as rio_tiler_models

from pgspatial.core import errors
from pgspatial.db import models as db_models
from pgspatial.services import normalize


def test_canonical_raster_passes_through() -> None:
    """Test that a canonical raster is returned unchanged."""
    raster = db_models.CanonicalRaster.from_array(np.ones((2, 2)), (0, 2, 0, 2))
    assert normalize.normalize_raster(raster) is raster


def test_unsupported_object() -> None:
    """Test that objects without an adapter are rejected."""
    with pytest.raises(errors.UnsupportedInputKind, match="list"):
        normalize.normalize_raster([[1, 2], [3, 4]])


def test_to_canonical_fallback() -> None:
    """Test that objects implementing to_canonical are accepted."""
    raster = db_models.CanonicalRaster.from_array(np.ones((2, 2)), (0, 2, 0, 2))
    source = types.SimpleNamespace(to_canonical=lambda: raster)
    assert normalize.normalize_raster(source) is raster


def test_rasterio_dataset() -> None:
    """Test normalization of an open rasterio dataset."""
    data = np.array(
        [
            [[1, 2, 3, 4], [5, 6, -1, 8]],
            [[0, 0, 0, 0], [1, 1, 1, 1]],
        ],
        dtype="float32",
    )
    with rasterio.io.MemoryFile() as memfile:
        with memfile.open(
            driver="GTiff",
            width=4,
            height=2,
            count=2,
            dtype="float32",
            crs="EPSG:4326",
            transform=rio_transform.from_origin(10, 50, 0.5, 0.5),
            nodata=-1,
        ) as dst:
            dst.write(data)
            dst.set_band_description(1, "red")
        with memfile.open() as dataset:
            raster = normalize.normalize_raster(dataset, nodata=-9999)

    assert raster.band_count == 2
    assert (raster.rows, raster.cols) == (2, 4)
    assert raster.extent == db_models.Extent(10, 12, 49, 50)
    assert raster.res == (0.5, 0.5)
    assert raster.band_names == ["red", ""]
    assert raster.crs is not None
    assert raster.crs.to_epsg() == 4326
    assert raster.source_class == "DatasetReader"
    assert raster.nodata == -9999
    assert bool(raster.values.mask[0, 1, 2])


def test_rasterio_rotated_transform_rejected() -> None:
    """Test that rotated rasters are rejected."""
    dataset = types.SimpleNamespace(transform=Affine(1, 0.2, 0, 0.1, -1, 0))
    with pytest.raises(errors.UnsupportedInputKind, match="Rotated"):
        normalize.RasterioSource(dataset).to_canonical()  # type: ignore[arg-type]


def test_rasterio_south_up_rejected() -> None:
    """Test that south-up rasters are rejected."""
    dataset = types.SimpleNamespace(transform=Affine(1, 0, 0, 0, 1, 0))
    with pytest.raises(errors.UnsupportedInputKind, match="north-up"):
        normalize.RasterioSource(dataset).to_canonical()  # type: ignore[arg-type]


def test_image_data() -> None:
    """Test normalization of rio-tiler ImageData."""
    image = rio_tiler_models.ImageData(
        np.ma.MaskedArray(np.arange(8, dtype="uint8").reshape(1, 2, 4)),
        bounds=(0, 0, 4, 2),
        crs=rio_crs.CRS.from_epsg(3857),
    )
    raster = normalize.normalize_raster(image)
    assert raster.band_count == 1
    assert raster.extent == db_models.Extent(0, 4, 0, 2)
    assert raster.res == (1.0, 1.0)
    assert raster.source_class == "ImageData"
    assert raster.crs is not None
    assert raster.crs.to_epsg() == 3857


def test_xarray_data_array() -> None:
    """Test a named 2-D DataArray with north-to-south coordinates."""
    array = xr.DataArray(
        np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]),
        dims=("y", "x"),
        coords={"y": [1.5, 0.5], "x": [0.5, 1.5, 2.5]},
        name="elevation",
        attrs={"crs": "EPSG:4326"},
    )
    raster = normalize.normalize_raster(array)
    assert raster.band_names == ["elevation"]
    assert raster.extent == db_models.Extent(0, 3, 0, 2)
    assert raster.res == (1.0, 1.0)
    assert raster.values[0].tolist() == [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]
    assert raster.crs is not None
    assert raster.crs.to_epsg() == 4326
    assert raster.source_class == "DataArray"


def test_xarray_ascending_latitude_is_flipped() -> None:
    """Test that south-to-north rows are flipped so row 0 is north."""
    array = xr.DataArray(
        np.array([[1.0, 2.0], [3.0, 4.0]]),
        dims=("lat", "lon"),
        coords={"lat": [0.5, 1.5], "lon": [0.5, 1.5]},
    )
    raster = normalize.normalize_raster(array)
    assert raster.values[0].tolist() == [[3.0, 4.0], [1.0, 2.0]]
    assert raster.band_names == ["band1"]
    assert raster.crs is None


def test_xarray_band_dimension() -> None:
    """Test a 3-D DataArray with named bands."""
    array = xr.DataArray(
        np.zeros((2, 2, 3)),
        dims=("band", "y", "x"),
        coords={"band": ["red", "nir"], "y": [1.5, 0.5], "x": [0.5, 1.5, 2.5]},
    )
    raster = normalize.normalize_raster(array)
    assert raster.band_names == ["red", "nir"]
    assert (raster.band_count, raster.rows, raster.cols) == (2, 2, 3)


def test_xarray_dataset_variables_become_bands() -> None:
    """Test that each data variable of a Dataset becomes a band."""
    coords = {"y": [1.5, 0.5], "x": [0.5, 1.5]}
    dataset = xr.Dataset(
        {
            "red": (("y", "x"), np.ones((2, 2))),
            "nir": (("x", "y"), np.zeros((2, 2))),
        },
        coords=coords,
    )
    raster = normalize.normalize_raster(dataset)
    assert raster.band_names == ["red", "nir"]
    assert raster.source_class == "Dataset"


def test_xarray_bare_grid_gets_constant_band() -> None:
    """Test that a coordinate-only Dataset gets one constant band."""
    dataset = xr.Dataset(coords={"y": [2.5, 1.5, 0.5], "x": [0.5, 1.5]})
    raster = normalize.normalize_raster(dataset)
    assert raster.band_names == [normalize.BARE_GRID_BAND]
    assert (raster.rows, raster.cols) == (3, 2)
    assert raster.values.sum() == 0


def test_xarray_single_coordinate_uses_res_attribute() -> None:
    """Test that a one-pixel axis takes its size from the res attribute."""
    array = xr.DataArray(
        np.ones((1, 2)),
        dims=("y", "x"),
        coords={"y": [0.5], "x": [0.5, 1.5]},
        attrs={"res": (1.0, 1.0)},
    )
    raster = normalize.normalize_raster(array)
    assert raster.extent == db_models.Extent(0, 2, 0, 1)


def test_xarray_single_coordinate_without_res() -> None:
    """Test that a one-pixel axis without res is rejected."""
    array = xr.DataArray(
        np.ones((1, 2)), dims=("y", "x"), coords={"y": [0.5], "x": [0.5, 1.5]}
    )
    with pytest.raises(errors.UnsupportedInputKind, match="res"):
        normalize.normalize_raster(array)


def test_xarray_irregular_grid_rejected() -> None:
    """Test that irregular coordinate spacing is rejected."""
    array = xr.DataArray(
        np.ones((2, 3)),
        dims=("y", "x"),
        coords={"y": [1.5, 0.5], "x": [0.5, 1.5, 4.0]},
    )
    with pytest.raises(errors.UnsupportedInputKind, match="regularly spaced"):
        normalize.normalize_raster(array)


def test_xarray_missing_spatial_dims() -> None:
    """Test that arrays without spatial dimensions are rejected."""
    array = xr.DataArray(np.ones((2, 2)), dims=("a", "b"))
    with pytest.raises(errors.UnsupportedInputKind, match="No spatial dimension"):
        normalize.normalize_raster(array)


@pytest.mark.parametrize(
    "source",
    [
        xr.DataArray(
            np.zeros((0, 2)),
            dims=("y", "x"),
            coords={"y": [], "x": [0.5, 1.5]},
            attrs={"res": 1.0},
        ),
        xr.Dataset(coords={"y": [0.5, 1.5], "x": []}, attrs={"res": 1.0}),
    ],
)
def test_xarray_empty_axis_rejected(source: xr.DataArray | xr.Dataset) -> None:
    """Test that grids with a zero-length spatial axis are rejected."""
    with pytest.raises(errors.UnsupportedInputKind, match="holds no pixels"):
        normalize.normalize_raster(source)
