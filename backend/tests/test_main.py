"""Tests for the FastAPI main application factory and health checks.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The raster routes are registered,
    - The /health endpoint returns the expected response.

See Also:
    - backend/pgspatial/main.py for the application factory.
"""

from __future__ import annotations

from fastapi import testclient

from pgspatial import main


def test_create_app() -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app()
    assert app.title == "pgspatial"
    assert app.version == "0.1.0"


def test_raster_routes_registered() -> None:
    """Test that the raster upload and write routes are mounted."""
    app = main.create_app()
    paths = {getattr(route, "path", None) for route in app.routes}
    assert "/api/rasters/upload" in paths
    assert "/api/rasters/write/{upload_id}" in paths
    assert "/health" in paths


def test_health_endpoint() -> None:
    """Test the health check endpoint returns ok status."""
    client = testclient.TestClient(main.create_app())
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
