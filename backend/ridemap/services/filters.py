"""Attribute filtering of rides.

``ride_matches_filter`` is a pure predicate shared by the HTTP API and the
viewport sync engine. A ride matches when it passes every constraint set on
the filter; an empty filter matches every ride.

Missing ride attributes never act as wildcards for date bounds: a ride
without a departure time fails any date constraint. A missing numeric
attribute is compared as positive infinity, so it satisfies a minimum bound
and fails a maximum bound.
"""

from __future__ import annotations

import datetime
import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ridemap.db import models as db_models


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Return an aware datetime, reading naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


def _value_or_inf(value: float | None) -> float:
    if value is None or math.isnan(value):
        return math.inf
    return value


def _within(
    value: float | None,
    lower: float | None,
    upper: float | None,
) -> bool:
    current = _value_or_inf(value)
    if lower is not None and current < lower:
        return False
    if upper is not None and current > upper:
        return False
    return True


def _departed_within(
    departed_at: datetime.datetime | None,
    start: datetime.datetime | None,
    end: datetime.datetime | None,
) -> bool:
    if start is None and end is None:
        return True
    if departed_at is None:
        return False
    departed = as_utc(departed_at)
    if start is not None and departed < as_utc(start):
        return False
    if end is not None and departed > as_utc(end):
        return False
    return True


def ride_matches_filter(
    ride: db_models.RideMeta,
    ride_filter: db_models.RideFilter,
) -> bool:
    """Return True iff ``ride`` satisfies every constraint in ``ride_filter``.

    Args:
        ride: Ride to test.
        ride_filter: Sparse filter; None fields are unconstrained.

    Returns:
        Whether the ride passes all active constraints.
    """
    if not _departed_within(
        ride.departed_at,
        ride_filter.start_date_from,
        ride_filter.start_date_to,
    ):
        return False

    if not _within(
        ride.distance_km,
        ride_filter.min_distance_km,
        ride_filter.max_distance_km,
    ):
        return False

    if not _within(
        ride.duration_sec,
        ride_filter.min_duration_sec,
        ride_filter.max_duration_sec,
    ):
        return False

    if not _within(
        ride.elevation_gain_m,
        ride_filter.min_elevation_gain_m,
        ride_filter.max_elevation_gain_m,
    ):
        return False

    return set(ride_filter.required_tags) <= set(ride.tags)
