"""Database helpers and repositories for ride metadata."""

from __future__ import annotations

import datetime
import threading
from typing import TYPE_CHECKING, Protocol, TypeVar, cast

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from ridemap.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ridemap.core import config


T = TypeVar("T")


def _cast(value: object, dtype: type[T]) -> T | None:  # type: ignore[misc]
    """Cast a value to a specific type, returning None if value is None."""
    if value is None:
        return None

    return cast(T, value)


def _float(value: object) -> float | None:
    return float(cast(float, value)) if value is not None else None


class RideRepositoryProtocol(Protocol):
    """Protocol interface for storing and retrieving ride metadata.

    Implementations persist RideMeta rows keyed by ride id plus a small
    key/value table for run markers. ``upsert`` replaces every field of
    the ride, including all three tier references, in one step.
    """

    def upsert(self, ride: db_models.RideMeta) -> db_models.RideMeta: ...

    def get(self, ride_id: str) -> db_models.RideMeta | None: ...

    def all(self) -> Iterable[db_models.RideMeta]: ...

    def existing_ids(self) -> set[str]: ...

    def get_meta(self, key: str) -> str | None: ...

    def set_meta(self, key: str, value: str) -> None: ...


class InMemoryRideRepository(RideRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Stores ride metadata in a dictionary. Data is lost when the process exits.
    Writes are guarded by a lock so batch ingestion may call it from worker
    threads.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._store: dict[str, db_models.RideMeta] = {}
        self._meta: dict[str, str] = {}
        self._lock = threading.Lock()

    def upsert(self, ride: db_models.RideMeta) -> db_models.RideMeta:
        """Add or replace a ride in the repository.

        Args:
            ride: Ride metadata to store.

        Returns:
            The stored ride metadata.
        """
        with self._lock:
            self._store[ride.id] = ride
        return ride

    def get(self, ride_id: str) -> db_models.RideMeta | None:
        return self._store.get(ride_id)

    def all(self) -> Iterable[db_models.RideMeta]:
        """Get all stored rides, newest departure first."""
        with self._lock:
            rides = list(self._store.values())
        return sorted(rides, key=_departure_sort_key, reverse=True)

    def existing_ids(self) -> set[str]:
        with self._lock:
            return set(self._store)

    def get_meta(self, key: str) -> str | None:
        return self._meta.get(key)

    def set_meta(self, key: str, value: str) -> None:
        with self._lock:
            self._meta[key] = value


def _departure_sort_key(ride: db_models.RideMeta) -> datetime.datetime:
    return ride.departed_at or datetime.datetime.min.replace(
        tzinfo=datetime.UTC
    )


class PostgresRideRepository(RideRepositoryProtocol):
    """PostgreSQL-backed repository for ride metadata.

    Persists ride metadata to a ``rides`` table and run markers to a
    ``ride_meta`` key/value table. Both tables are created on
    initialization.
    """

    CREATE_TABLES_SQL = """
    CREATE TABLE IF NOT EXISTS rides (
      id TEXT PRIMARY KEY,
      name TEXT,
      bbox_min_lon DOUBLE PRECISION,
      bbox_min_lat DOUBLE PRECISION,
      bbox_max_lon DOUBLE PRECISION,
      bbox_max_lat DOUBLE PRECISION,
      path_full TEXT NOT NULL DEFAULT '',
      path_medium TEXT NOT NULL DEFAULT '',
      path_coarse TEXT NOT NULL DEFAULT '',
      departed_at TIMESTAMPTZ,
      distance_km DOUBLE PRECISION,
      duration_sec DOUBLE PRECISION,
      elevation_gain_m DOUBLE PRECISION,
      tags TEXT[] NOT NULL DEFAULT '{}',
      updated_at TIMESTAMPTZ DEFAULT now()
    );

    CREATE TABLE IF NOT EXISTS ride_meta (
      key TEXT PRIMARY KEY,
      value TEXT
    );
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize repository with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        return psycopg2.connect(self.settings.database_url)

    def _ensure_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(self.CREATE_TABLES_SQL)
            conn.commit()

    def upsert(self, ride: db_models.RideMeta) -> db_models.RideMeta:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO rides (
                    id, name, bbox_min_lon, bbox_min_lat, bbox_max_lon,
                    bbox_max_lat, path_full, path_medium, path_coarse,
                    departed_at, distance_km, duration_sec, elevation_gain_m,
                    tags, updated_at
                ) VALUES (%(id)s, %(name)s, %(bbox_min_lon)s,
                    %(bbox_min_lat)s, %(bbox_max_lon)s, %(bbox_max_lat)s,
                    %(path_full)s, %(path_medium)s, %(path_coarse)s,
                    %(departed_at)s, %(distance_km)s, %(duration_sec)s,
                    %(elevation_gain_m)s, %(tags)s, %(updated_at)s)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    bbox_min_lon = EXCLUDED.bbox_min_lon,
                    bbox_min_lat = EXCLUDED.bbox_min_lat,
                    bbox_max_lon = EXCLUDED.bbox_max_lon,
                    bbox_max_lat = EXCLUDED.bbox_max_lat,
                    path_full = EXCLUDED.path_full,
                    path_medium = EXCLUDED.path_medium,
                    path_coarse = EXCLUDED.path_coarse,
                    departed_at = EXCLUDED.departed_at,
                    distance_km = EXCLUDED.distance_km,
                    duration_sec = EXCLUDED.duration_sec,
                    elevation_gain_m = EXCLUDED.elevation_gain_m,
                    tags = EXCLUDED.tags,
                    updated_at = EXCLUDED.updated_at;
                """,
                self._to_row(ride),
            )
            conn.commit()
        return ride

    def get(self, ride_id: str) -> db_models.RideMeta | None:
        with (
            self._connection() as conn,
            conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur,
        ):
            cur.execute("SELECT * FROM rides WHERE id = %s", (ride_id,))
            row = cur.fetchone()
            if row is None:
                return None
            else:
                return self._from_row(cast(dict[str, object], row))

    def all(self) -> Iterable[db_models.RideMeta]:
        with (
            self._connection() as conn,
            conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur,
        ):
            cur.execute(
                "SELECT * FROM rides ORDER BY departed_at DESC NULLS LAST"
            )
            for row in cur.fetchall():
                yield self._from_row(cast(dict[str, object], row))

    def existing_ids(self) -> set[str]:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("SELECT id FROM rides")
            return {str(row[0]) for row in cur.fetchall()}

    def get_meta(self, key: str) -> str | None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("SELECT value FROM ride_meta WHERE key = %s", (key,))
            row = cur.fetchone()
            return _cast(row[0], str) if row is not None else None

    def set_meta(self, key: str, value: str) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO ride_meta (key, value) VALUES (%s, %s)
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value;
                """,
                (key, value),
            )
            conn.commit()

    @staticmethod
    def _to_row(ride: db_models.RideMeta) -> dict[str, object]:
        """Convert RideMeta to database row dictionary.

        Args:
            ride: Ride metadata to convert.

        Returns:
            Dictionary suitable for parameterized SQL insertion.
        """
        bbox = ride.bbox or (None, None, None, None)
        return {
            "id": ride.id,
            "name": ride.name,
            "bbox_min_lon": bbox[0],
            "bbox_min_lat": bbox[1],
            "bbox_max_lon": bbox[2],
            "bbox_max_lat": bbox[3],
            "path_full": ride.paths.full,
            "path_medium": ride.paths.medium,
            "path_coarse": ride.paths.coarse,
            "departed_at": ride.departed_at,
            "distance_km": ride.distance_km,
            "duration_sec": ride.duration_sec,
            "elevation_gain_m": ride.elevation_gain_m,
            "tags": sorted(ride.tags),
            "updated_at": ride.updated_at,
        }

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.RideMeta:
        """Convert database row dictionary to RideMeta.

        Args:
            row: Dictionary from database query result.

        Returns:
            RideMeta object with all fields populated.
        """
        corners = (
            row.get("bbox_min_lon"),
            row.get("bbox_min_lat"),
            row.get("bbox_max_lon"),
            row.get("bbox_max_lat"),
        )
        if any(v is None for v in corners):
            bbox = None
        else:
            bbox = db_models.BoundingBox(
                *(float(cast(float, v)) for v in corners)
            )
        tags_value = row.get("tags") or []
        updated_at = _cast(
            row.get("updated_at"), datetime.datetime
        ) or datetime.datetime.now(datetime.UTC)

        return db_models.RideMeta(
            id=str(row["id"]),
            name=_cast(row.get("name"), str),
            bbox=bbox,
            paths=db_models.TierPaths(
                full=str(row.get("path_full") or ""),
                medium=str(row.get("path_medium") or ""),
                coarse=str(row.get("path_coarse") or ""),
            ),
            departed_at=_cast(row.get("departed_at"), datetime.datetime),
            distance_km=_float(row.get("distance_km")),
            duration_sec=_float(row.get("duration_sec")),
            elevation_gain_m=_float(row.get("elevation_gain_m")),
            tags=frozenset(str(tag) for tag in cast(list[str], tags_value)),
            updated_at=updated_at,
        )


def get_ride_repository(settings: config.Settings) -> RideRepositoryProtocol:
    """Factory function to create a ride repository.

    Args:
        settings: Application settings for database connection.

    Returns:
        PostgresRideRepository instance for production use.
    """
    return PostgresRideRepository(settings)
