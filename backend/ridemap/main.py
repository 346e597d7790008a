"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
CORS middleware, includes the ride and ingestion routers, mounts the
processed GeoJSON artifacts under ``/processed`` and exposes a health
check endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn ridemap.main:app --reload

    Or imported and used programmatically:
        >>> from ridemap.main import app
        >>> # Use app in ASGI server
"""

import fastapi
from fastapi import staticfiles
from fastapi.middleware import cors

from ridemap.api import ingest, rides
from ridemap.core import config


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Sets up CORS middleware, includes the ride and ingestion routers,
    serves tier artifacts from ``settings.processed_dir`` and adds a health
    check endpoint.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    app = fastapi.FastAPI(title="Ride Map", version="0.1.0")

    app.include_router(ingest.router)
    app.include_router(rides.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.mount(
        rides.PROCESSED_URL_PREFIX,
        staticfiles.StaticFiles(directory=settings.processed_dir, check_dir=False),
        name="processed",
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
