"""FastAPI application entrypoint and configuration.

This module provides the application factory that sets up CORS middleware,
logging, the raster API router, and a health check endpoint.

Example:
    The application can be run with uvicorn:
        $ uvicorn pgspatial.main:app --reload

    Or imported and used programmatically:
        >>> from pgspatial.main import app
        >>> # Use app in ASGI server
"""

import fastapi
from fastapi.middleware import cors

from pgspatial.api import rasters
from pgspatial.core import config


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging from settings, includes the raster router, and adds
    a health check endpoint. CORS origins are configured from settings.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    config.configure_logging(settings.log_level)
    app = fastapi.FastAPI(title="pgspatial", version="0.1.0")

    app.include_router(rasters.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
