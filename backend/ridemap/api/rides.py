"""Ride metadata query and artifact retrieval API endpoints.

This module provides REST API endpoints for listing rides filtered by
viewport and attributes, for reading a single ride, and for resolving the
GeoJSON artifact of one geometry tier. Bounding boxes are (lon, lat)
degrees in WGS84.

Example:
    List rides intersecting a viewport and carrying a tag:
        >>> response = client.get(
        ...     "/api/rides",
        ...     params={"bbox": "24.8,60.1,25.2,60.3", "tags": "training"},
        ... )
        >>> rides = response.json()
        >>> # Returns: [{"id": "331424522", "bbox": [...],
        >>> #            "urls": {"full": "/processed/331424522_full.geojson",
        >>> #                     ...}, ...}, ...]

    Resolve the medium tier of a ride:
        >>> response = client.get("/api/rides/331424522/medium")
        >>> # 307 redirect to /processed/331424522_medium.geojson
"""

from __future__ import annotations

import datetime
import pathlib
from typing import Any

import fastapi
from fastapi import responses

from ridemap.core import config
from ridemap.db import database
from ridemap.db import models as db_models
from ridemap.services import filters, geometry

router = fastapi.APIRouter(prefix="/api/rides", tags=["rides"])

PROCESSED_URL_PREFIX = "/processed"


def _get_repo(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.RideRepositoryProtocol:
    """Resolve the ride repository dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        RideRepositoryProtocol implementation
            (PostgresRideRepository in production).
    """
    return database.get_ride_repository(settings)


def _artifact_url(path: str) -> str | None:
    if not path:
        return None
    return f"{PROCESSED_URL_PREFIX}/{pathlib.Path(path).name}"


def ride_to_dict(ride: db_models.RideMeta) -> dict[str, Any]:
    """Convert a RideMeta to the JSON shape returned by the API."""
    return {
        "id": ride.id,
        "name": ride.name,
        "departed_at": ride.departed_at.isoformat()
        if ride.departed_at
        else None,
        "distance_km": ride.distance_km,
        "duration_sec": ride.duration_sec,
        "elevation_gain_m": ride.elevation_gain_m,
        "tags": sorted(ride.tags),
        "bbox": list(ride.bbox) if ride.bbox else None,
        "geometry_available": ride.geometry_available,
        "urls": {
            tier: _artifact_url(ride.paths.for_tier(tier))
            for tier in db_models.TIERS
        },
    }


def _parse_bbox(value: str | None) -> db_models.BoundingBox | None:
    if value is None:
        return None
    try:
        return db_models.BoundingBox.parse(value)
    except ValueError as exc:
        raise fastapi.HTTPException(
            status_code=400,
            detail=f"Invalid bbox: {exc}",
        ) from exc


def _parse_instant(name: str, value: str | None) -> datetime.datetime | None:
    if value is None:
        return None
    try:
        return filters.as_utc(datetime.datetime.fromisoformat(value))
    except ValueError as exc:
        raise fastapi.HTTPException(
            status_code=400,
            detail=f"Invalid {name}: expected an ISO-8601 date",
        ) from exc


def _parse_tags(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(tag.strip() for tag in value.split(",") if tag.strip())


@router.get("")
async def list_rides(  # noqa: PLR0913
    bbox: str | None = None,
    departed_after: str | None = fastapi.Query(None, alias="departedAfter"),
    departed_before: str | None = fastapi.Query(None, alias="departedBefore"),
    min_distance: float | None = fastapi.Query(None, alias="minDistance"),
    max_distance: float | None = fastapi.Query(None, alias="maxDistance"),
    min_duration: float | None = fastapi.Query(None, alias="minDuration"),
    max_duration: float | None = fastapi.Query(None, alias="maxDuration"),
    min_elevation: float | None = fastapi.Query(None, alias="minElevation"),
    max_elevation: float | None = fastapi.Query(None, alias="maxElevation"),
    tags: str | None = None,
    repo: database.RideRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> list[dict[str, Any]]:
    """List rides, optionally restricted to a viewport and attribute filter.

    Args:
        bbox: Viewport as ``minLon,minLat,maxLon,maxLat``; rides whose
            bounding box touches or overlaps it are returned.
        departed_after: Inclusive lower bound on the departure time.
        departed_before: Inclusive upper bound on the departure time.
        min_distance: Minimum distance in kilometres.
        max_distance: Maximum distance in kilometres.
        min_duration: Minimum duration in seconds.
        max_duration: Maximum duration in seconds.
        min_elevation: Minimum elevation gain in meters.
        max_elevation: Maximum elevation gain in meters.
        tags: Comma separated tags; a ride must carry all of them.
        repo: Ride repository (injected via FastAPI Depends).

    Returns:
        Matching rides ordered by departure time (newest first).

    Raises:
        HTTPException: If ``bbox`` or a date is malformed (400).
    """
    viewport = _parse_bbox(bbox)
    ride_filter = db_models.RideFilter(
        start_date_from=_parse_instant("departedAfter", departed_after),
        start_date_to=_parse_instant("departedBefore", departed_before),
        min_distance_km=min_distance,
        max_distance_km=max_distance,
        min_duration_sec=min_duration,
        max_duration_sec=max_duration,
        min_elevation_gain_m=min_elevation,
        max_elevation_gain_m=max_elevation,
        required_tags=_parse_tags(tags),
    )

    matches = []
    for ride in repo.all():
        if viewport is not None and (
            ride.bbox is None
            or not geometry.bbox_intersects(ride.bbox, viewport)
        ):
            continue
        if filters.ride_matches_filter(ride, ride_filter):
            matches.append(ride_to_dict(ride))
    return matches


@router.get("/{ride_id}")
async def get_ride(
    ride_id: str,
    repo: database.RideRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Get one ride by id.

    Raises:
        HTTPException: If the ride is not found (404 status code).
    """
    ride = repo.get(ride_id)
    if ride is None:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Ride not found",
        )

    return ride_to_dict(ride)


@router.get("/{ride_id}/{resolution}")
async def get_ride_geometry(
    ride_id: str,
    resolution: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> responses.RedirectResponse:
    """Redirect to the static GeoJSON artifact of one tier.

    Args:
        ride_id: Ride identifier.
        resolution: One of ``full``, ``medium`` or ``coarse``.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Redirect to ``/processed/<ride_id>_<resolution>.geojson``.

    Raises:
        HTTPException: If the resolution is unknown (400) or the artifact
            does not exist (404).
    """
    if resolution not in db_models.TIERS:
        raise fastapi.HTTPException(
            status_code=400,
            detail="Invalid resolution",
        )

    file_name = f"{ride_id}_{resolution}.geojson"
    if pathlib.Path(file_name).name != file_name or not (
        settings.processed_dir / file_name
    ).is_file():
        raise fastapi.HTTPException(
            status_code=404,
            detail="GeoJSON not found",
        )

    return responses.RedirectResponse(f"{PROCESSED_URL_PREFIX}/{file_name}")
