"""Pytest configuration to expose the ridemap package for imports."""

from __future__ import annotations

import pathlib
import sys
from collections.abc import Callable, Iterator
from typing import Any

import pytest

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from ridemap.core import config  # noqa: E402

TripFactory = Callable[..., dict[str, Any]]


@pytest.fixture
def settings(
    tmp_path: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[config.Settings]:
    """Cached settings pointing every working directory into tmp_path."""
    monkeypatch.setenv("RAW_RIDES_DIR", str(tmp_path / "original_rides"))
    monkeypatch.setenv("PROCESSED_DIR", str(tmp_path / "processed"))
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("INGEST_WORKERS", "2")
    monkeypatch.setenv("FETCH_RETRY_DELAY_SECONDS", "0")
    config.get_settings.cache_clear()
    yield config.get_settings()
    config.get_settings.cache_clear()


def _corner_track(
    start: tuple[float, float] = (24.90, 60.20),
    steps: int = 50,
) -> list[dict[str, float]]:
    """East leg then north leg, each with a few meters of zigzag noise."""
    lon0, lat0 = start
    points = []
    for i in range(steps):
        noise = (-1) ** i * 0.000005
        points.append({"x": lon0 + i * 0.001, "y": lat0 + noise})
    corner_lon = lon0 + (steps - 1) * 0.001
    for i in range(1, steps):
        noise = (-1) ** i * 0.000005
        points.append({"x": corner_lon + noise, "y": lat0 + i * 0.001})
    return points


@pytest.fixture
def make_trip() -> TripFactory:
    """Factory for raw RideWithGPS ``{"type": "trip", "trip": {...}}`` payloads."""

    def factory(ride_id: str | int = "1001", **overrides: Any) -> dict[str, Any]:
        trip: dict[str, Any] = {
            "id": ride_id,
            "name": f"Ride {ride_id}",
            "departed_at": "2024-05-04T08:30:00+03:00",
            "distance": 42_170.4,
            "metrics": {"duration": 5400, "ele_gain": 312.4567},
            "tag_names": ["training"],
            "track_points": _corner_track(),
        }
        trip.update(overrides)
        return {"type": "trip", "trip": trip}

    return factory
