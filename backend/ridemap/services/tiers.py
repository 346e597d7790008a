"""Multi-resolution GeoJSON tier generation for ride tracks.

Every ride is stored as three GeoJSON documents: the sanitized track at
full resolution, a medium tier simplified to roughly 10 m and a coarse
tier simplified to roughly 100 m. Each tier is simplified from the full
track independently. Artifacts are named after the ride id and tier label
so regenerating a ride overwrites its previous files.

Example:
    Generate the tiers for a parsed RideWithGPS trip:
        >>> from pathlib import Path
        >>> from ridemap.services import tiers
        >>> result = tiers.generate_tiers(
        ...     ride_id="331424522",
        ...     raw_points=trip["track_points"],
        ...     output_dir=Path("processed"),
        ... )
        >>> result.paths.medium
        'processed/331424522_medium.geojson'
"""

from __future__ import annotations

import dataclasses
import json
import math
import os
import tempfile
from typing import TYPE_CHECKING, Any

from ridemap.db import models as db_models
from ridemap.services import geometry

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable, Mapping

DEFAULT_MEDIUM_RESOLUTION_M = 10.0
DEFAULT_COARSE_RESOLUTION_M = 100.0

_CORNER_FIELDS = ("sw_lng", "sw_lat", "ne_lng", "ne_lat")


@dataclasses.dataclass(frozen=True)
class TierResult:
    """Artifact references and coordinates produced for one ride."""

    paths: db_models.TierPaths
    full: db_models.Track
    medium: db_models.Track
    coarse: db_models.Track


def tier_artifact_name(ride_id: str, tier: db_models.Tier) -> str:
    return f"{ride_id}_{tier}.geojson"


def line_feature_collection(track: db_models.Track) -> dict[str, Any]:
    """Wrap a track in a FeatureCollection holding one LineString feature."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {},
                "geometry": {
                    "type": "LineString",
                    "coordinates": [[lon, lat] for lon, lat in track],
                },
            }
        ],
    }


def write_geojson(
    ride_id: str,
    track: db_models.Track,
    tier: db_models.Tier,
    output_dir: pathlib.Path,
) -> pathlib.Path:
    """Write one tier artifact and return its path.

    The document is written to a temporary file in ``output_dir`` and
    renamed into place, so readers never observe a partial file.

    Args:
        ride_id: Ride identifier used in the file name.
        track: Coordinates of the tier.
        tier: Tier label used in the file name.
        output_dir: Destination directory (created if needed).

    Returns:
        Path of the written artifact.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    target_path = output_dir / tier_artifact_name(ride_id, tier)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=output_dir,
        suffix=".tmp",
        delete=False,
    ) as tmp:
        json.dump(line_feature_collection(track), tmp)
    os.replace(tmp.name, target_path)
    return target_path


def generate_tiers(
    ride_id: str,
    raw_points: Iterable[object] | None,
    output_dir: pathlib.Path,
    *,
    medium_resolution_m: float = DEFAULT_MEDIUM_RESOLUTION_M,
    coarse_resolution_m: float = DEFAULT_COARSE_RESOLUTION_M,
) -> TierResult:
    """Sanitize a raw point feed and write its full/medium/coarse tiers.

    When no usable point survives sanitization nothing is written, stale
    artifacts of an earlier run are removed, and the result carries
    placeholder (empty) references, which callers must treat as "geometry
    unavailable".

    Args:
        ride_id: Ride identifier.
        raw_points: Raw track points, or None when the ride has none.
        output_dir: Directory receiving the GeoJSON artifacts.
        medium_resolution_m: Target resolution of the medium tier.
        coarse_resolution_m: Target resolution of the coarse tier.

    Returns:
        TierResult with artifact paths and the coordinates of each tier.
    """
    full = geometry.sanitize_coordinates(raw_points or [])
    if not full:
        for tier in db_models.TIERS:
            (output_dir / tier_artifact_name(ride_id, tier)).unlink(
                missing_ok=True
            )
        return TierResult(
            paths=db_models.TierPaths.placeholder(),
            full=[],
            medium=[],
            coarse=[],
        )

    medium = geometry.safe_simplify(
        full, geometry.tolerance_for_resolution(full, medium_resolution_m)
    )
    coarse = geometry.safe_simplify(
        full, geometry.tolerance_for_resolution(full, coarse_resolution_m)
    )
    tracks: dict[db_models.Tier, db_models.Track] = {
        "full": full,
        "medium": medium,
        "coarse": coarse,
    }
    written = {
        tier: str(write_geojson(ride_id, track, tier, output_dir))
        for tier, track in tracks.items()
    }
    return TierResult(
        paths=db_models.TierPaths(**written),
        full=full,
        medium=medium,
        coarse=coarse,
    )


def _is_real_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def bbox_from_trip(trip: Mapping[str, Any]) -> db_models.BoundingBox | None:
    """Derive a ride's bounding box from a RideWithGPS trip payload.

    The provider's ``sw_*``/``ne_*`` corner fields are authoritative when all
    four are present. Otherwise the raw ``track_points`` are scanned,
    skipping points that are missing or not finite.

    Args:
        trip: The ``trip`` object of a RideWithGPS payload.

    Returns:
        BoundingBox, or None when neither source yields a usable box.
    """
    corners = [trip.get(field) for field in _CORNER_FIELDS]
    if all(_is_real_number(value) for value in corners):
        sw_lng, sw_lat, ne_lng, ne_lat = (float(v) for v in corners)
        return db_models.BoundingBox(
            min(sw_lng, ne_lng),
            min(sw_lat, ne_lat),
            max(sw_lng, ne_lng),
            max(sw_lat, ne_lat),
        )

    points = trip.get("track_points")
    if not isinstance(points, list):
        return None
    return geometry.compute_bbox(geometry.iter_coordinates(points))
