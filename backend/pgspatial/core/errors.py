"""Error taxonomy for raster and geometry writes.

Every failure raised by pgspatial derives from ``PgSpatialError`` so callers
can catch the whole family at once. Fatal conditions abort a write before
(or during) destination mutation; ``ConstraintRegistrationFailed`` is the
only kind the raster writer downgrades to a warning.

Example:
    Handle an existing destination table:
        >>> from pgspatial.core import errors
        >>> try:
        ...     write_raster(conn, "elevation", raster)
        ... except errors.DestinationExists as exc:
        ...     print(f"{exc.table} exists, pass append=True")
"""

from __future__ import annotations


class PgSpatialError(Exception):
    """Base class for every pgspatial failure."""


class UnsupportedInputKind(PgSpatialError):
    """The source cannot be mapped to a regular grid with at least one band."""


class ExtensionMissing(PgSpatialError):
    """The database lacks PostGIS or its raster support."""


class DestinationExists(PgSpatialError):
    """The destination table exists and neither overwrite nor append is set.

    Attributes:
        table: Qualified name of the existing table.
    """

    def __init__(self, table: str) -> None:
        super().__init__(
            f"Table {table} already exists; "
            "pass append=True to add to it or overwrite=True to replace it."
        )
        self.table = table


class InvalidBlockSpec(PgSpatialError):
    """Requested blocks would produce degenerate or non-covering tiles."""


class ColumnMismatch(PgSpatialError):
    """The geometry column is absent from the force-matched table.

    Attributes:
        column: Name of the missing geometry column.
        table: Qualified name of the destination table.
    """

    def __init__(self, column: str, table: str) -> None:
        super().__init__(
            f"Geometry column {column!r} not found in database table {table}."
        )
        self.column = column
        self.table = table


class StatementError(PgSpatialError):
    """A SQL statement failed on the database side.

    Attributes:
        statement: The SQL text that failed.
        original_exception: The driver exception, if any.
    """

    def __init__(
        self,
        message: str,
        statement: str,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.statement = statement
        self.original_exception = original_exception


class UploadFailed(PgSpatialError):
    """A statement failed while uploading one tile.

    Tiles written before the failure are left in place.

    Attributes:
        band: 1-based band index of the failing work unit.
        tile_row: 0-based row block index.
        tile_col: 0-based column block index.
        row_id: Destination row id of the spatial tile.
    """

    def __init__(
        self,
        band: int,
        tile_row: int,
        tile_col: int,
        row_id: int,
        reason: str = "",
    ) -> None:
        message = (
            f"Upload failed at band {band}, tile ({tile_row}, {tile_col}), "
            f"row_id {row_id}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.band = band
        self.tile_row = tile_row
        self.tile_col = tile_col
        self.row_id = row_id


class ConstraintRegistrationFailed(PgSpatialError):
    """AddRasterConstraints failed; the uploaded tiles are still valid.

    Attributes:
        table: Qualified name of the destination table.
    """

    def __init__(self, table: str, reason: str = "") -> None:
        message = f"Could not register raster constraints on {table}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.table = table
