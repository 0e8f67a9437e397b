"""Raster upload and PostGIS write API endpoints.

This module provides REST API endpoints for uploading raster files and
writing them into PostGIS raster tables. The upload endpoint accepts
multipart file uploads and stores them temporarily. The write endpoint
reads a previously uploaded file with rio-tiler and writes it, block by
block, into the requested table.

Example:
    Upload and write a GeoTIFF:
        >>> # Step 1: Upload file
        >>> response = client.post(
        ...     "/api/rasters/upload",
        ...     files={"file": ("dem.tif", open("dem.tif", "rb"))}
        ... )
        >>> upload_id = response.json()["upload_id"]

        >>> # Step 2: Write it to rasters.dem, replacing any existing table
        >>> response = client.post(
        ...     f"/api/rasters/write/{upload_id}",
        ...     params={"table_name": "rasters.dem", "overwrite": True}
        ... )
        >>> response.json()["row_count"]
        4
"""

from __future__ import annotations

import dataclasses
import pathlib
import shutil
import tempfile
import uuid
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from typing_extensions import TypedDict

import fastapi
import rasterio.errors
import rio_tiler.io as rio_tiler_io

from pgspatial.core import config, errors
from pgspatial.db import database
from pgspatial.db import models as db_models
from pgspatial.services import write_raster

if TYPE_CHECKING:
    from rio_tiler import models as rio_tiler_models

router = fastapi.APIRouter(prefix="/api/rasters", tags=["rasters"])

_upload_cache: dict[str, pathlib.Path] = {}

_ERROR_STATUS: dict[type[errors.PgSpatialError], int] = {
    errors.UnsupportedInputKind: 400,
    errors.InvalidBlockSpec: 400,
    errors.DestinationExists: 409,
    errors.ExtensionMissing: 503,
    errors.UploadFailed: 500,
    errors.StatementError: 500,
}


class UploadResponse(TypedDict):
    upload_id: str
    filename: str | None
    path: str | None


def _get_connection(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> Iterator[database.ConnectionProtocol]:
    """Open a connection for the request and close it afterwards."""
    conn = database.get_connection(settings)
    try:
        yield conn
    finally:
        conn.close()


def _validate_table_name(name: str) -> db_models.TableName:
    """Validate ``table`` or ``schema.table`` and parse it.

    Only alphanumeric characters and underscores are allowed in each part.

    Raises:
        HTTPException: If the name contains invalid characters.
    """
    parts = name.split(".")
    if len(parts) > 2 or not all(
        part and part.replace("_", "").isalnum() for part in parts
    ):
        raise fastapi.HTTPException(
            status_code=400,
            detail="Invalid table name",
        )

    return db_models.TableName.parse(parts)


def _save_upload(
    file: fastapi.UploadFile,
    storage_dir: pathlib.Path,
    max_size: int,
) -> pathlib.Path:
    """Persist an uploaded file to disk with size validation.

    Args:
        file: FastAPI UploadFile object containing the file data.
        storage_dir: Directory where the file should be saved.
        max_size: Maximum allowed file size in bytes.

    Returns:
        Path to the saved file.

    Raises:
        HTTPException: If the file exceeds the maximum size limit.
    """
    storage_dir.mkdir(parents=True, exist_ok=True)
    target_path = storage_dir / f"{uuid.uuid4()}_{file.filename or 'raster'}"
    with tempfile.NamedTemporaryFile(delete=False, dir=storage_dir) as tmp:
        size = 0
        for chunk in iter(lambda: file.file.read(1024 * 1024), b""):
            size += len(chunk)
            if size > max_size:
                tmp.close()
                pathlib.Path(tmp.name).unlink(missing_ok=True)
                raise fastapi.HTTPException(
                    status_code=413,
                    detail="Upload too large",
                )

            tmp.write(chunk)

        tmp.flush()

    shutil.move(tmp.name, target_path)

    return target_path


def _read_raster(path: pathlib.Path) -> rio_tiler_models.ImageData:
    """Read every band of an uploaded raster at native resolution."""
    with rio_tiler_io.Reader(str(path)) as reader:
        return reader.read()


def _result_to_dict(result: db_models.RasterWriteResult) -> dict[str, Any]:
    payload = dataclasses.asdict(result)
    payload["pixel_type"] = result.pixel_type.value
    return payload


@router.post("/upload")
async def upload_raster(
    file: fastapi.UploadFile,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> UploadResponse:
    """Accept a multipart raster upload and store it temporarily.

    Args:
        file: Uploaded file from multipart form data.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Dictionary containing upload_id, filename, and storage path.

    Raises:
        HTTPException: If the file exceeds the maximum upload size.
    """
    saved_path = _save_upload(
        file,
        settings.storage_dir,
        settings.max_upload_size_bytes,
    )

    upload_id = str(uuid.uuid4())

    _upload_cache[upload_id] = saved_path

    return UploadResponse(
        upload_id=upload_id,
        filename=file.filename,
        path=str(saved_path),
    )


@router.post("/write/{upload_id}")
def write_uploaded_raster(
    upload_id: str,
    table_name: str,
    overwrite: bool = False,
    append: bool = False,
    constraints: bool = True,
    bit_depth: str | None = None,
    blocks: list[int] | None = fastapi.Query(default=None),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    conn: database.ConnectionProtocol = fastapi.Depends(_get_connection),  # noqa: B008
) -> dict[str, Any]:
    """Write a previously uploaded raster into a PostGIS raster table.

    Args:
        upload_id: ID returned from the upload endpoint.
        table_name: Destination ``table`` or ``schema.table``.
        overwrite: Replace an existing table.
        append: Add tiles to an existing table.
        constraints: Register raster constraints after the upload.
        bit_depth: PostGIS pixel type such as ``32BF``; detected if unset.
        blocks: One or two block counts (columns, rows).
        settings: Application settings (injected via FastAPI Depends).
        conn: Database connection (injected via FastAPI Depends).

    Returns:
        The write result: table, row and tile counts, SRID, pixel type,
        constraint status, and warnings.

    Raises:
        HTTPException: 404 for an unknown upload, 400 for invalid
            parameters or input, 409 if the table exists, 503 if PostGIS
            raster support is missing, 500 if the upload fails.
    """
    source_path = _upload_cache.get(upload_id)
    if not source_path:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Upload not found",
        )

    table = _validate_table_name(table_name)
    options = db_models.RasterWriteOptions(
        bit_depth=bit_depth,
        blocks=tuple(blocks) if blocks else None,
        constraints=constraints,
        overwrite=overwrite,
        append=append,
        progress=False,
    )
    try:
        image = _read_raster(source_path)
    except rasterio.errors.RasterioIOError as exc:
        raise fastapi.HTTPException(
            status_code=400,
            detail="Unreadable raster file",
        ) from exc

    try:
        result = write_raster.write_raster(conn, table, image, options, settings)
    except errors.PgSpatialError as exc:
        status = next(
            (code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)),
            500,
        )
        raise fastapi.HTTPException(status_code=status, detail=str(exc)) from exc
    except ValueError as exc:
        raise fastapi.HTTPException(status_code=400, detail=str(exc)) from exc

    return _result_to_dict(result)
