"""Batch ingestion of raw RideWithGPS payloads into ride metadata.

Each raw payload (``{"type": "trip", "trip": {...}}``) is turned into three
GeoJSON tier artifacts and one RideMeta row. Rides are processed
independently: a malformed payload is logged, reported as a ``failed``
outcome and skipped, while store and filesystem errors propagate to the
caller. A ride whose track has no usable points is still stored, with
placeholder tier references, and reported as ``no_geometry``.

Example:
    Preprocess every downloaded ride:
        >>> from ridemap.core.config import get_settings
        >>> from ridemap.db import database
        >>> from ridemap.services import ingest_rides

        >>> settings = get_settings()
        >>> repo = database.get_ride_repository(settings)
        >>> outcomes = ingest_rides.ingest_directory(
        ...     settings.raw_rides_dir, repo, settings
        ... )
        >>> ingest_rides.summarize(outcomes)
        {'ok': 41, 'no_geometry': 1, 'failed': 0}
"""

from __future__ import annotations

import collections
import concurrent.futures
import contextlib
import dataclasses
import datetime
import json
import logging
import math
import pathlib
import threading
from typing import TYPE_CHECKING, Any, Literal, get_args

from ridemap.db import models as db_models
from ridemap.services import tiers

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from ridemap.core import config
    from ridemap.db import database

logger = logging.getLogger(__name__)

LAST_RUN_KEY = "last_run_ts"

Status = Literal["ok", "no_geometry", "failed"]


class MalformedRideError(ValueError):
    """Raised when a raw ride payload cannot be turned into a RideMeta."""


@dataclasses.dataclass(frozen=True)
class IngestOutcome:
    """Result of processing one raw ride payload."""

    ride_id: str | None
    source: str
    status: Status
    detail: str | None = None


class _RideLocks:
    """Per ride id locks serializing tier writes and the store upsert.

    An entry lives only while some worker holds or waits on it, so the
    registry stays empty between batches.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextlib.contextmanager
    def hold(self, ride_id: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(ride_id, (threading.Lock(), 0))
            self._locks[ride_id] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                lock, users = self._locks[ride_id]
                if users == 1:
                    del self._locks[ride_id]
                else:
                    self._locks[ride_id] = (lock, users - 1)


_ride_locks = _RideLocks()


def parse_trip(payload: object) -> dict[str, Any]:
    """Return the ``trip`` object of a raw payload.

    The ride id names the tier artifacts, so it must be usable as a single
    file name component.

    Raises:
        MalformedRideError: If the trip object or its id is missing, or the
            id is not a plain file name.
    """
    if not isinstance(payload, dict):
        raise MalformedRideError("Payload is not a JSON object")
    trip = payload.get("trip")
    if not isinstance(trip, dict):
        raise MalformedRideError('Payload missing "trip" object')
    if trip.get("id") in (None, ""):
        raise MalformedRideError("Trip has no id")
    ride_id = str(trip["id"])
    if (
        ride_id.startswith(".")
        or any(sep in ride_id for sep in ("/", "\\", "\0"))
        or pathlib.PurePath(ride_id).name != ride_id
    ):
        raise MalformedRideError(f"Invalid ride id {ride_id!r}")
    return trip


def _optional_number(
    source: Mapping[str, Any],
    key: str,
) -> float | None:
    value = source.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedRideError(f"Field {key!r} is not numeric")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRideError(f"Field {key!r} is not numeric") from exc
    return number if math.isfinite(number) else None


def _parse_departed_at(value: object) -> datetime.datetime | None:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise MalformedRideError("departed_at is not a string")
    try:
        departed_at = datetime.datetime.fromisoformat(value)
    except ValueError as exc:
        raise MalformedRideError(f"Invalid departed_at {value!r}") from exc
    if departed_at.tzinfo is None:
        departed_at = departed_at.replace(tzinfo=datetime.UTC)
    return departed_at


def _parse_tags(value: object) -> frozenset[str]:
    if value is None:
        return frozenset()
    if not isinstance(value, list):
        raise MalformedRideError("tag_names is not a list")
    return frozenset(str(tag) for tag in value)


def build_ride(
    trip: Mapping[str, Any],
    settings: config.Settings,
) -> db_models.RideMeta:
    """Generate tier artifacts for a trip and assemble its RideMeta.

    Attribute values are validated before any artifact is written.

    Args:
        trip: The ``trip`` object of a RideWithGPS payload.
        settings: Settings providing the output directory and tier targets.

    Returns:
        RideMeta referencing the freshly written artifacts.

    Raises:
        MalformedRideError: If an attribute has an unusable value.
    """
    ride_id = str(trip["id"])
    metrics = trip.get("metrics") or {}
    if not isinstance(metrics, dict):
        raise MalformedRideError("metrics is not an object")

    distance_m = _optional_number(trip, "distance")
    duration_sec = _optional_number(metrics, "duration")
    elevation_gain_m = _optional_number(metrics, "ele_gain")
    departed_at = _parse_departed_at(trip.get("departed_at"))
    tags = _parse_tags(trip.get("tag_names"))
    name = trip.get("name")
    track_points = trip.get("track_points")
    if track_points is not None and not isinstance(track_points, list):
        raise MalformedRideError("track_points is not a list")

    result = tiers.generate_tiers(
        ride_id,
        track_points,
        settings.processed_dir,
        medium_resolution_m=settings.medium_resolution_m,
        coarse_resolution_m=settings.coarse_resolution_m,
    )

    return db_models.RideMeta(
        id=ride_id,
        name=str(name) if name is not None else None,
        bbox=tiers.bbox_from_trip(trip),
        paths=result.paths,
        departed_at=departed_at,
        distance_km=round(distance_m / 1000, 2)
        if distance_m is not None
        else None,
        duration_sec=duration_sec,
        elevation_gain_m=round(elevation_gain_m, 2)
        if elevation_gain_m is not None
        else None,
        tags=tags,
    )


def ingest_payload(
    payload: object,
    repo: database.RideRepositoryProtocol,
    settings: config.Settings,
    *,
    source: str = "<payload>",
) -> IngestOutcome:
    """Run the pipeline for one decoded payload and upsert the result.

    Raises:
        MalformedRideError: If the payload cannot be processed.
    """
    trip = parse_trip(payload)
    ride_id = str(trip["id"])
    with _ride_locks.hold(ride_id):
        ride = build_ride(trip, settings)
        repo.upsert(ride)

    if not ride.geometry_available:
        logger.warning("Ride %s has no usable track points", ride_id)
        return IngestOutcome(
            ride_id, source, "no_geometry", "geometry unavailable"
        )
    logger.info("Processed ride %s", ride_id)
    return IngestOutcome(ride_id, source, "ok")


def ingest_file(
    path: pathlib.Path,
    repo: database.RideRepositoryProtocol,
    settings: config.Settings,
) -> IngestOutcome:
    """Process one raw ride file, turning input problems into an outcome.

    Args:
        path: Raw RideWithGPS JSON file.
        repo: Destination metadata store.
        settings: Application settings.

    Returns:
        IngestOutcome describing what happened to the file.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Skipping %s: invalid JSON (%s)", path.name, exc)
        return IngestOutcome(None, path.name, "failed", f"invalid JSON: {exc}")

    try:
        return ingest_payload(payload, repo, settings, source=path.name)
    except MalformedRideError as exc:
        logger.warning("Skipping %s: %s", path.name, exc)
        ride_id = None
        if isinstance(payload, dict) and isinstance(payload.get("trip"), dict):
            raw_id = payload["trip"].get("id")
            ride_id = str(raw_id) if raw_id not in (None, "") else None
        return IngestOutcome(ride_id, path.name, "failed", str(exc))


def ingest_files(
    paths: Iterable[pathlib.Path],
    repo: database.RideRepositoryProtocol,
    settings: config.Settings,
) -> list[IngestOutcome]:
    """Process raw ride files with bounded concurrency.

    Outcomes are returned in input order regardless of completion order.
    """
    path_list = list(paths)
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=settings.ingest_workers
    ) as executor:
        return list(
            executor.map(
                lambda path: ingest_file(path, repo, settings),
                path_list,
            )
        )


def ingest_directory(
    source_dir: pathlib.Path,
    repo: database.RideRepositoryProtocol,
    settings: config.Settings,
) -> list[IngestOutcome]:
    """Process every ``*.json`` file in ``source_dir``.

    Records the completion time under the ``last_run_ts`` store key.

    Args:
        source_dir: Directory of raw RideWithGPS payloads.
        repo: Destination metadata store.
        settings: Application settings.

    Returns:
        One IngestOutcome per file, sorted by file name.
    """
    paths = sorted(
        path for path in source_dir.glob("*.json") if path.is_file()
    )
    logger.info("Found %d ride JSON file(s) to process", len(paths))
    outcomes = ingest_files(paths, repo, settings)
    repo.set_meta(
        LAST_RUN_KEY, datetime.datetime.now(tz=datetime.UTC).isoformat()
    )
    return outcomes


def summarize(outcomes: Iterable[IngestOutcome]) -> dict[str, int]:
    counts = collections.Counter(outcome.status for outcome in outcomes)
    return {status: counts.get(status, 0) for status in get_args(Status)}
