"""Data models for ride metadata and viewport filtering.

This module defines the core data structures shared by the ingestion
pipeline, the metadata store, the HTTP API and the viewport sync engine.
All coordinates are (longitude, latitude) pairs in WGS84 degrees.

Example:
    Creating a RideMeta for a processed ride:
        >>> from ridemap.db.models import BoundingBox, RideMeta, TierPaths
        >>> ride = RideMeta(
        ...     id="331424522",
        ...     bbox=BoundingBox(24.90, 60.15, 25.05, 60.25),
        ...     paths=TierPaths(
        ...         full="processed/331424522_full.geojson",
        ...         medium="processed/331424522_medium.geojson",
        ...         coarse="processed/331424522_coarse.geojson",
        ...     ),
        ...     distance_km=42.17,
        ...     tags=frozenset({"training"}),
        ... )

    Filtering rides by attributes:
        >>> from ridemap.db.models import RideFilter
        >>> ride_filter = RideFilter(
        ...     min_distance_km=20,
        ...     required_tags=frozenset({"training"}),
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Literal, NamedTuple

Coordinate = tuple[float, float]
Track = list[Coordinate]
Tier = Literal["full", "medium", "coarse"]

TIERS: tuple[Tier, ...] = ("full", "medium", "coarse")


class BoundingBox(NamedTuple):
    """Axis-aligned rectangle in (lon, lat) degrees."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def placeholder(cls) -> BoundingBox:
        """Return the explicit all-zero placeholder box."""
        return cls(0.0, 0.0, 0.0, 0.0)

    @classmethod
    def parse(cls, value: str) -> BoundingBox:
        """Parse a ``minLon,minLat,maxLon,maxLat`` string.

        Raises:
            ValueError: If the string does not hold four numbers or the
                corners are inverted.
        """
        parts = [part.strip() for part in value.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected four bbox values, got {len(parts)}")
        bbox = cls(*(float(part) for part in parts))
        if bbox.min_lon > bbox.max_lon or bbox.min_lat > bbox.max_lat:
            raise ValueError("Bounding box corners are inverted")
        return bbox

    def to_string(self) -> str:
        return f"{self.min_lon},{self.min_lat},{self.max_lon},{self.max_lat}"


@dataclasses.dataclass(frozen=True)
class TierPaths:
    """Artifact references for the three geometry tiers of a ride.

    An empty string marks a tier as unavailable. Rides whose track had
    no usable points carry three empty references.
    """

    full: str
    medium: str
    coarse: str

    @classmethod
    def placeholder(cls) -> TierPaths:
        return cls(full="", medium="", coarse="")

    @property
    def available(self) -> bool:
        """Whether all three tiers point at real artifacts."""
        return bool(self.full and self.medium and self.coarse)

    def for_tier(self, tier: Tier) -> str:
        return str(getattr(self, tier))


@dataclasses.dataclass
class RideMeta:
    """Represents one ingested ride and the attributes users filter by.

    Attributes:
        id: Stable external identifier (RideWithGPS trip id).
        bbox: Bounding box of the track, None when it could not be derived.
        paths: References to the full/medium/coarse GeoJSON artifacts.
        departed_at: Timezone-aware start timestamp.
        distance_km: Ride distance in kilometres.
        duration_sec: Moving duration in seconds.
        elevation_gain_m: Total ascent in meters.
        tags: Tag names attached to the ride.
        name: Human-readable ride name.
        updated_at: Timestamp of the last upsert.
    """

    id: str
    bbox: BoundingBox | None
    paths: TierPaths
    departed_at: datetime.datetime | None = None
    distance_km: float | None = None
    duration_sec: float | None = None
    elevation_gain_m: float | None = None
    tags: frozenset[str] = frozenset()
    name: str | None = None
    updated_at: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )

    @property
    def geometry_available(self) -> bool:
        return self.paths.available


@dataclasses.dataclass(frozen=True)
class RideFilter:
    """Sparse attribute filter; a field left as None is unconstrained.

    All bounds are inclusive. ``required_tags`` lists tags a ride must
    carry, matched case-sensitively.
    """

    start_date_from: datetime.datetime | None = None
    start_date_to: datetime.datetime | None = None
    min_distance_km: float | None = None
    max_distance_km: float | None = None
    min_duration_sec: float | None = None
    max_duration_sec: float | None = None
    min_elevation_gain_m: float | None = None
    max_elevation_gain_m: float | None = None
    required_tags: frozenset[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return self == RideFilter()
