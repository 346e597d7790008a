"""Tests for track sanitizing, tolerance derivation and simplification."""

from __future__ import annotations

import math

import pytest

from ridemap.db import models as db_models
from ridemap.services import geometry


def test_sanitize_drops_consecutive_duplicates() -> None:
    raw = [[0, 0], [0, 0], [1, 1], [2, 2], [2, 2]]
    assert geometry.sanitize_coordinates(raw) == [(0, 0), (1, 1), (2, 2)]


def test_sanitize_keeps_non_consecutive_repeats() -> None:
    """A loop returning to its start keeps the closing point."""
    raw = [[0, 0], [1, 0], [1, 1], [0, 0]]
    assert geometry.sanitize_coordinates(raw) == [
        (0, 0),
        (1, 0),
        (1, 1),
        (0, 0),
    ]


def test_sanitize_accepts_point_mappings() -> None:
    """RideWithGPS x/y points and lon/lat or lng/lat mappings are read."""
    raw = [
        {"x": 24.9, "y": 60.2, "e": 12.0, "t": 1700000000},
        {"lon": 24.91, "lat": 60.21},
        {"lng": "24.92", "lat": "60.22"},
    ]
    assert geometry.sanitize_coordinates(raw) == [
        (24.9, 60.2),
        (24.91, 60.21),
        (24.92, 60.22),
    ]


def test_sanitize_drops_unusable_points() -> None:
    """Missing, non-numeric and non-finite values are dropped."""
    raw = [
        [0, 0],
        [math.nan, 1],
        [1, math.inf],
        ["east", 1],
        [5],
        {"x": 1},
        None,
        "1,1",
        [1, 1, 230.5],
    ]
    assert geometry.sanitize_coordinates(raw) == [(0, 0), (1, 1)]


def test_iter_coordinates_drops_infinities_keeps_duplicates() -> None:
    raw = [
        [-math.inf, 60.0],
        ["24.9", "60.2"],
        [24.9, 60.2],
        {"lng": 25, "lat": 61},
    ]
    assert list(geometry.iter_coordinates(raw)) == [
        (24.9, 60.2),
        (24.9, 60.2),
        (25.0, 61.0),
    ]


def test_sanitize_duplicate_after_dropped_point() -> None:
    """Equality is checked against the last kept point."""
    raw = [[0, 0], [math.nan, math.nan], [0, 0], [1, 1]]
    assert geometry.sanitize_coordinates(raw) == [(0, 0), (1, 1)]


def test_compute_bbox() -> None:
    points = [(1.0, 5.0), (-2.0, 3.0), (math.nan, 0.0), (4.0, -1.0)]
    assert geometry.compute_bbox(points) == db_models.BoundingBox(
        -2.0, -1.0, 4.0, 5.0
    )
    assert geometry.compute_bbox([]) is None


def test_bbox_intersects_symmetric_and_touching() -> None:
    """Boxes sharing an edge or a corner intersect, in either order."""
    a = db_models.BoundingBox(0, 0, 1, 1)
    touching_edge = db_models.BoundingBox(1, 0, 2, 1)
    touching_corner = db_models.BoundingBox(1, 1, 2, 2)
    inside = db_models.BoundingBox(0.25, 0.25, 0.75, 0.75)
    disjoint = db_models.BoundingBox(1.0001, 0, 2, 1)

    for other, expected in [
        (touching_edge, True),
        (touching_corner, True),
        (inside, True),
        (disjoint, False),
    ]:
        assert geometry.bbox_intersects(a, other) is expected
        assert geometry.bbox_intersects(other, a) is expected


def test_tolerance_equatorial_track() -> None:
    track = [(10.0, -0.01), (10.02, 0.01)]
    tolerance = geometry.tolerance_for_resolution(track, 10)
    assert tolerance == pytest.approx(8.98e-5, rel=1e-2)


def test_tolerance_non_decreasing_in_target() -> None:
    track = [(24.9, 60.2), (25.0, 60.3)]
    targets = [0, 1, 10, 100, 1_000, 10_000, 100_000]
    tolerances = [
        geometry.tolerance_for_resolution(track, target) for target in targets
    ]
    assert tolerances[0] == 0
    assert tolerances == sorted(tolerances)
    assert max(tolerances) == geometry.MAX_TOLERANCE_DEG


@pytest.mark.parametrize("latitude", [45.0, 70.0, 89.0, 89.9999, -80.0])
def test_tolerance_high_latitude(latitude: float) -> None:
    """Tolerance grows away from the equator and never exceeds the cap."""
    equatorial = [(10.0, 0.0), (10.01, 0.0)]
    polar = [(10.0, latitude), (10.01, latitude)]
    for target in (10, 100):
        polar_tolerance = geometry.tolerance_for_resolution(polar, target)
        assert polar_tolerance >= geometry.tolerance_for_resolution(
            equatorial, target
        )
        assert polar_tolerance <= geometry.MAX_TOLERANCE_DEG


def test_tolerance_at_pole_is_capped() -> None:
    track = [(0.0, 90.0), (1.0, 90.0)]
    assert geometry.tolerance_for_resolution(track, 10) == pytest.approx(
        geometry.MAX_TOLERANCE_DEG
    )


def test_tolerance_edge_cases() -> None:
    assert geometry.tolerance_for_resolution([], 10) == 0.0
    with pytest.raises(ValueError):
        geometry.tolerance_for_resolution([(0.0, 0.0)], -1)


@pytest.mark.parametrize(
    "track",
    [[], [(1.0, 2.0)], [(0.0, 0.0), (1.0, 1.0)]],
)
def test_safe_simplify_short_tracks_unchanged(
    track: db_models.Track,
) -> None:
    for tolerance in (0.0, 0.001, 10.0):
        assert geometry.safe_simplify(track, tolerance) is track


def test_safe_simplify_falls_back_when_collapsing() -> None:
    """Simplification to a bare segment returns the input instead."""
    track = [(0.0, 0.0), (1.0, 0.0001), (2.0, 0.0)]
    assert geometry.safe_simplify(track, 0.01) is track


def test_safe_simplify_reduces_points() -> None:
    track = [(0.0, 0.0), (1.0, 0.001), (2.0, 0.0), (3.0, 1.0)]
    assert geometry.safe_simplify(track, 0.01) == [
        (0.0, 0.0),
        (2.0, 0.0),
        (3.0, 1.0),
    ]


def test_safe_simplify_keeps_endpoints_and_order() -> None:
    track = [(float(i), float(i % 2)) for i in range(10)]
    simplified = geometry.safe_simplify(track, 0.1)
    assert simplified == track
    assert simplified[0] == track[0]
    assert simplified[-1] == track[-1]
