"""Database connection protocol, helpers, and data models.

``database`` holds the ``ConnectionProtocol`` every write runs on, its
psycopg2 implementation, and small capability and catalog queries.
``models`` holds the raster, tile-plan, and result data structures.

Example:
    Open a connection from settings:
        >>> from pgspatial.db import database
        >>> with database.get_connection(settings) as conn:
        ...     database.postgis_enabled(conn)
        True
"""
