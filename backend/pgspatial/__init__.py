"""pgspatial: write in-memory rasters and geometries to PostGIS.

This package formats spatial data as SQL and issues it over an existing
PostgreSQL/PostGIS connection. It does not implement storage, indexing or
reprojection; those belong to the database and its PostGIS extension.

- Rasters (rasterio datasets, rio-tiler ImageData, xarray grids) are
  normalized to one canonical grid, split into blocks, and written tile by
  tile into a PostGIS raster table (``services.write_raster``)
- GeoDataFrames are formatted as INSERT statements with WKT geometries
  (``services.insert_geom``)
- A small FastAPI app accepts raster uploads and writes them to PostGIS

See the module docstrings for details.
"""
