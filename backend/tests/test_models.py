"""Tests for ride metadata models and bounding box parsing."""

from __future__ import annotations

import datetime

import pytest

from ridemap.db import models as db_models


def test_bounding_box_parse() -> None:
    """Test parsing a minLon,minLat,maxLon,maxLat string."""
    bbox = db_models.BoundingBox.parse("24.8, 60.1,25.2,60.3")
    assert bbox == db_models.BoundingBox(24.8, 60.1, 25.2, 60.3)
    assert bbox.min_lon == 24.8
    assert bbox.max_lat == 60.3
    assert db_models.BoundingBox.parse(bbox.to_string()) == bbox


@pytest.mark.parametrize(
    "value",
    ["1,2,3", "1,2,3,4,5", "a,b,c,d", "3,0,1,1", "0,3,1,1"],
)
def test_bounding_box_parse_invalid(value: str) -> None:
    """Wrong arity, non-numeric values and inverted corners are rejected."""
    with pytest.raises(ValueError):
        db_models.BoundingBox.parse(value)


def test_bounding_box_placeholder() -> None:
    assert db_models.BoundingBox.placeholder() == (0.0, 0.0, 0.0, 0.0)


def test_tier_paths_placeholder_unavailable() -> None:
    """Placeholder references mark geometry as unavailable."""
    paths = db_models.TierPaths.placeholder()
    assert paths.available is False
    assert [paths.for_tier(tier) for tier in db_models.TIERS] == ["", "", ""]


def test_tier_paths_partial_is_unavailable() -> None:
    paths = db_models.TierPaths(full="a.geojson", medium="", coarse="c.geojson")
    assert paths.available is False


def test_ride_meta_geometry_available() -> None:
    """Test RideMeta reflects the availability of its tier artifacts."""
    paths = db_models.TierPaths(
        full="processed/7_full.geojson",
        medium="processed/7_medium.geojson",
        coarse="processed/7_coarse.geojson",
    )
    ride = db_models.RideMeta(
        id="7",
        bbox=db_models.BoundingBox(0, 0, 1, 1),
        paths=paths,
    )
    assert ride.geometry_available is True
    assert ride.paths.for_tier("medium") == "processed/7_medium.geojson"
    assert ride.tags == frozenset()
    assert ride.updated_at.tzinfo is not None


def test_ride_filter_is_empty() -> None:
    assert db_models.RideFilter().is_empty is True
    assert db_models.RideFilter(min_distance_km=0).is_empty is False
    assert (
        db_models.RideFilter(
            start_date_from=datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)
        ).is_empty
        is False
    )
