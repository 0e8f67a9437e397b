"""API router subpackage for the pgspatial service.

Submodules:
    - rasters: Endpoints for uploading raster files and writing them into
      PostGIS raster tables.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
