"""Tests for the FastAPI main application factory and health checks.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The ride, ingestion and static artifact routes are registered,
    - The /health endpoint returns the expected response.

See Also:
    - backend/ridemap/main.py for the application factory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

from fastapi import testclient

from ridemap import main

if TYPE_CHECKING:
    from ridemap.core import config


def test_create_app(settings: config.Settings) -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app()
    assert app is not None
    assert app.title == "Ride Map"
    assert app.version == "0.1.0"


def test_health_endpoint(settings: config.Settings) -> None:
    """Test the health check endpoint returns ok status."""
    app = main.create_app()
    client = testclient.TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_app_includes_routers(settings: config.Settings) -> None:
    """Test that all API routers and the artifact mount are included."""
    app = main.create_app()
    routes: list[str] = [
        cast(str, getattr(route, "path", ""))
        for route in app.routes  # type: ignore[attr-defined]
        if hasattr(route, "path")
    ]
    assert "/health" in routes
    assert "/api/rides" in routes
    assert "/api/rides/{ride_id}/{resolution}" in routes
    assert "/api/rides/upload" in routes
    assert "/api/rides/ingest/{upload_id}" in routes
    assert "/processed" in routes


def test_processed_artifacts_are_served(settings: config.Settings) -> None:
    (settings.processed_dir / "5_coarse.geojson").write_text(
        '{"type": "FeatureCollection", "features": []}', encoding="utf-8"
    )
    client = testclient.TestClient(main.create_app())
    response = client.get("/processed/5_coarse.geojson")
    assert response.status_code == 200
    assert response.json()["type"] == "FeatureCollection"
    assert client.get("/processed/missing.geojson").status_code == 404
