"""Track geometry helpers: cleaning, adaptive tolerance and simplification.

This module turns raw GPS point feeds into clean tracks and reduces them
with Douglas-Peucker simplification. Tolerances are expressed in degrees
so they can be applied directly to (lon, lat) coordinates, but are derived
from a target resolution in meters using a planar equirectangular
approximation around the track's centre latitude.

Example:
    Clean and simplify a RideWithGPS track:
        >>> from ridemap.services import geometry
        >>> track = geometry.sanitize_coordinates(trip["track_points"])
        >>> tolerance = geometry.tolerance_for_resolution(track, 100)
        >>> coarse = geometry.safe_simplify(track, tolerance)
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from shapely.geometry import LineString

from ridemap.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

METERS_PER_DEGREE_LAT = 111_132.0
METERS_PER_DEGREE_LON_EQUATOR = 111_320.0
MAX_TOLERANCE_DEG = 0.01

_KEY_PAIRS = (("x", "y"), ("lon", "lat"), ("lng", "lat"))


def _extract_pair(point: object) -> tuple[object, object] | None:
    if isinstance(point, Mapping):
        for lon_key, lat_key in _KEY_PAIRS:
            if lon_key in point and lat_key in point:
                return point[lon_key], point[lat_key]
        return None
    if isinstance(point, Sequence) and not isinstance(point, (str, bytes)):
        if len(point) >= 2:
            return point[0], point[1]
    return None


def _to_float(value: object) -> float | None:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def iter_coordinates(raw: Iterable[object]) -> Iterator[db_models.Coordinate]:
    """Yield the (lon, lat) pairs of every readable point, in input order.

    Points of an unsupported shape are skipped, as are points whose values
    are NaN, infinite or not numeric at all.
    """
    for point in raw:
        pair = _extract_pair(point)
        if pair is None:
            continue
        lon = _to_float(pair[0])
        lat = _to_float(pair[1])
        if lon is None or lat is None:
            continue
        yield lon, lat


def sanitize_coordinates(raw: Iterable[object]) -> db_models.Track:
    """Normalize a raw point feed into a clean track.

    Accepts ``[lon, lat, ...]`` pairs and mappings carrying ``x``/``y``
    (or ``lon``/``lat``, ``lng``/``lat``). Points with a NaN, infinite or
    non-numeric value are dropped, as are points equal to the previously
    kept one. Later repeats of an earlier point are kept.

    Args:
        raw: Point sequence in any of the supported shapes.

    Returns:
        List of (lon, lat) tuples in input order.
    """
    cleaned: db_models.Track = []
    for coordinate in iter_coordinates(raw):
        if cleaned and cleaned[-1] == coordinate:
            continue
        cleaned.append(coordinate)
    return cleaned


def compute_bbox(
    points: Iterable[db_models.Coordinate],
) -> db_models.BoundingBox | None:
    """Return the min/max box of the finite points, or None if there are none."""
    min_lon = min_lat = math.inf
    max_lon = max_lat = -math.inf
    for lon, lat in points:
        if not (math.isfinite(lon) and math.isfinite(lat)):
            continue
        min_lon = min(min_lon, lon)
        max_lon = max(max_lon, lon)
        min_lat = min(min_lat, lat)
        max_lat = max(max_lat, lat)
    if min_lon > max_lon:
        return None
    return db_models.BoundingBox(min_lon, min_lat, max_lon, max_lat)


def bbox_intersects(
    a: db_models.BoundingBox,
    b: db_models.BoundingBox,
) -> bool:
    """Rectangle intersection test; boxes sharing an edge intersect."""
    return (
        a.min_lon <= b.max_lon
        and a.max_lon >= b.min_lon
        and a.min_lat <= b.max_lat
        and a.max_lat >= b.min_lat
    )


def tolerance_for_resolution(
    track: Sequence[db_models.Coordinate],
    target_meters: float,
) -> float:
    """Convert a target resolution in meters to a tolerance in degrees.

    The conversion uses the smaller of the meters-per-degree factors for
    latitude and for longitude at the track's centre latitude, and the
    result is capped at ``MAX_TOLERANCE_DEG`` (about 1 km).

    Args:
        track: Sanitized track. An empty track yields 0.
        target_meters: Desired simplification resolution in meters.

    Returns:
        Tolerance in degrees, between 0 and ``MAX_TOLERANCE_DEG``.

    Raises:
        ValueError: If ``target_meters`` is negative.
    """
    if target_meters < 0:
        raise ValueError("target_meters must not be negative")
    bbox = compute_bbox(track)
    if bbox is None:
        return 0.0

    center_lat = (bbox.min_lat + bbox.max_lat) / 2
    meters_per_degree_lon = METERS_PER_DEGREE_LON_EQUATOR * math.cos(
        math.radians(center_lat)
    )
    meters_per_degree = min(METERS_PER_DEGREE_LAT, meters_per_degree_lon)
    if meters_per_degree <= 0:
        return MAX_TOLERANCE_DEG

    return min(target_meters / meters_per_degree, MAX_TOLERANCE_DEG)


def safe_simplify(
    track: db_models.Track,
    tolerance_deg: float,
) -> db_models.Track:
    """Simplify a track while never collapsing it to a bare segment.

    Runs Douglas-Peucker simplification (endpoints always kept). Tracks of
    two or fewer points are returned as is, and when simplification would
    leave two or fewer points the input track is returned instead.

    Args:
        track: Track to simplify.
        tolerance_deg: Maximum deviation in degrees.

    Returns:
        The simplified track, or ``track`` itself when simplification does
        not apply.
    """
    if len(track) <= 2:
        return track

    line = LineString(track)
    simplified = line.simplify(tolerance_deg, preserve_topology=False)
    result = [(float(lon), float(lat)) for lon, lat, *_ in simplified.coords]
    return result if len(result) > 2 else track
