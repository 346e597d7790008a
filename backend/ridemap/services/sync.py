"""Viewport, zoom and filter synchronization of rendered rides.

The engine keeps the map widget's ride sources in step with three inputs:
the current viewport, the current zoom and the active attribute filter.
Every pass recomputes, for each ride of the loaded snapshot, whether it
should be shown, and compares that with what is currently drawn:

    * Hidden -> Visible: the ride is added with the tier for the zoom.
    * Visible -> Hidden: the ride is removed.
    * Visible -> Visible: the ride's source is re-pointed at the tier for
      the zoom (a no-op for the widget when the tier did not change).
    * Hidden -> Hidden: nothing happens.

Navigation events are debounced on the running asyncio loop: each event
cancels the pending pass and schedules a new one, so bursts of pans and
zooms collapse into one pass that reads the final view.

Example:
    Drive a widget from navigation events:
        >>> engine = ViewportSyncEngine(widget, debounce_seconds=0.15)
        >>> engine.attach()
        >>> engine.load(list(repo.all()))
        >>> engine.set_filter(RideFilter(required_tags=frozenset({"gravel"})))
        >>> await engine.drain()
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING

from ridemap.db import models as db_models
from ridemap.services import filters, geometry

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from ridemap.services import map_widget

logger = logging.getLogger(__name__)

FULL_TIER_MIN_ZOOM = 15.0
MEDIUM_TIER_MIN_ZOOM = 12.0
DEFAULT_DEBOUNCE_SECONDS = 0.15


def select_tier(zoom: float) -> db_models.Tier:
    """Pick the geometry tier for a zoom level (lower bounds inclusive)."""
    if zoom >= FULL_TIER_MIN_ZOOM:
        return "full"
    if zoom >= MEDIUM_TIER_MIN_ZOOM:
        return "medium"
    return "coarse"


def should_show(
    ride: db_models.RideMeta,
    viewport: db_models.BoundingBox,
    ride_filter: db_models.RideFilter,
) -> bool:
    """Whether a ride belongs on the map for the given view and filter."""
    if not ride.geometry_available or ride.bbox is None:
        return False
    return geometry.bbox_intersects(
        ride.bbox, viewport
    ) and filters.ride_matches_filter(ride, ride_filter)


def _log_sync_failure(task: asyncio.Task[SyncReport]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Debounced sync pass failed", exc_info=exc)


@dataclasses.dataclass
class SyncReport:
    """Widget operations issued by one synchronization pass."""

    viewport: db_models.BoundingBox
    zoom: float
    tier: db_models.Tier
    added: list[str] = dataclasses.field(default_factory=list)
    removed: list[str] = dataclasses.field(default_factory=list)
    refreshed: list[str] = dataclasses.field(default_factory=list)


class ViewportSyncEngine:
    """Owns the per-ride render state and reconciles it with the widget.

    Render state maps each visible ride id to the tier currently drawn;
    rides absent from the mapping are hidden. The mapping is replaced in a
    single assignment at the end of a pass, so ``visible_ids`` never
    reflects a half-applied pass.
    """

    def __init__(
        self,
        widget: map_widget.MapWidgetProtocol,
        *,
        ride_filter: db_models.RideFilter | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.widget = widget
        self.debounce_seconds = debounce_seconds
        self._filter = ride_filter or db_models.RideFilter()
        self._rides: list[db_models.RideMeta] = []
        self._render_state: dict[str, db_models.Tier] = {}
        self._pending: asyncio.Task[SyncReport] | None = None
        self.passes = 0

    @property
    def ride_filter(self) -> db_models.RideFilter:
        return self._filter

    @property
    def visible_ids(self) -> frozenset[str]:
        return frozenset(self._render_state)

    @property
    def render_state(self) -> Mapping[str, db_models.Tier]:
        return dict(self._render_state)

    def attach(self) -> None:
        """Subscribe to the widget's navigation-settled events."""
        self.widget.on_navigation_settled(self.schedule_sync)

    def load(self, rides: Iterable[db_models.RideMeta]) -> SyncReport:
        """Replace the ride snapshot and synchronize immediately."""
        self._rides = list(rides)
        logger.info("Loaded %d ride(s) into the sync engine", len(self._rides))
        return self.sync()

    def set_filter(self, ride_filter: db_models.RideFilter) -> None:
        """Replace the active filter and schedule a pass."""
        self._filter = ride_filter
        self.schedule_sync()

    def sync(self) -> SyncReport:
        """Run one synchronization pass against the widget's current view."""
        viewport = self.widget.current_viewport()
        zoom = self.widget.current_zoom()
        tier = select_tier(zoom)
        report = SyncReport(viewport=viewport, zoom=zoom, tier=tier)

        next_state: dict[str, db_models.Tier] = {}
        for ride in self._rides:
            if should_show(ride, viewport, self._filter):
                self._show(ride, tier, report)
                next_state[ride.id] = tier
            elif ride.id in self._render_state:
                self.widget.remove_source(ride.id)
                report.removed.append(ride.id)

        loaded_ids = {ride.id for ride in self._rides}
        for ride_id in self._render_state:
            if ride_id not in loaded_ids:
                self.widget.remove_source(ride_id)
                report.removed.append(ride_id)

        self._render_state = next_state
        self.passes += 1
        logger.debug(
            "Sync pass at zoom %.2f (%s): +%d -%d ~%d",
            zoom,
            tier,
            len(report.added),
            len(report.removed),
            len(report.refreshed),
        )
        return report

    def _show(
        self,
        ride: db_models.RideMeta,
        tier: db_models.Tier,
        report: SyncReport,
    ) -> None:
        artifact_ref = ride.paths.for_tier(tier)
        # The widget may already hold a source we did not record, e.g. one
        # left over from a previous engine on the same map.
        if self.widget.has_source(ride.id):
            self.widget.update_source_data(ride.id, artifact_ref)
        else:
            self.widget.add_source(ride.id, artifact_ref)

        if ride.id in self._render_state:
            report.refreshed.append(ride.id)
        else:
            report.added.append(ride.id)

    def schedule_sync(self) -> asyncio.Task[SyncReport]:
        """Debounce a pass: cancel any pending one and start a new timer.

        Must be called from a running event loop.
        """
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        task = asyncio.get_running_loop().create_task(self._debounced_sync())
        task.add_done_callback(_log_sync_failure)
        self._pending = task
        return task

    async def _debounced_sync(self) -> SyncReport:
        await asyncio.sleep(self.debounce_seconds)
        return self.sync()

    async def drain(self) -> SyncReport | None:
        """Wait for the pending pass, if any, and return its report."""
        while self._pending is not None:
            pending = self._pending
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # Superseded by a newer navigation event.
                continue
            finally:
                if pending is self._pending and pending.done():
                    self._pending = None
        return None

    def close(self) -> None:
        """Cancel the pending pass without running it."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
