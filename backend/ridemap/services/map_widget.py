"""Map widget contract used by the viewport sync engine.

The rendering widget (MapLibre in the browser, or any other map view) is an
external collaborator. The sync engine only needs to draw, undraw and
re-point a ride's GeoJSON source, sample the current view, and be told when
navigation settles. ``InMemoryMapWidget`` implements the contract without a
display and records every call, which makes it suitable for tests and for
headless dry runs.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from typing import Literal, Protocol

from ridemap.db import models as db_models

NavigationCallback = Callable[[], object]
Operation = Literal["add", "remove", "update"]


class MapWidgetProtocol(Protocol):
    """Drawing and view-sampling capabilities of a map widget."""

    def add_source(self, ride_id: str, artifact_ref: str) -> None: ...

    def remove_source(self, ride_id: str) -> None: ...

    def update_source_data(self, ride_id: str, artifact_ref: str) -> None: ...

    def has_source(self, ride_id: str) -> bool: ...

    def current_viewport(self) -> db_models.BoundingBox: ...

    def current_zoom(self) -> float: ...

    def on_navigation_settled(self, callback: NavigationCallback) -> None: ...


@dataclasses.dataclass(frozen=True)
class WidgetCall:
    operation: Operation
    ride_id: str
    artifact_ref: str | None = None


class InMemoryMapWidget(MapWidgetProtocol):
    """Headless map widget keeping sources in a dictionary.

    Attributes:
        sources: Ride id to the artifact reference currently drawn.
        calls: Every add/remove/update call in the order received.
    """

    def __init__(
        self,
        viewport: db_models.BoundingBox,
        zoom: float,
    ) -> None:
        self.viewport = viewport
        self.zoom = zoom
        self.sources: dict[str, str] = {}
        self.calls: list[WidgetCall] = []
        self._listeners: list[NavigationCallback] = []

    def add_source(self, ride_id: str, artifact_ref: str) -> None:
        if ride_id in self.sources:
            raise ValueError(f"Source for ride {ride_id} already exists")
        self.sources[ride_id] = artifact_ref
        self.calls.append(WidgetCall("add", ride_id, artifact_ref))

    def remove_source(self, ride_id: str) -> None:
        self.sources.pop(ride_id, None)
        self.calls.append(WidgetCall("remove", ride_id))

    def update_source_data(self, ride_id: str, artifact_ref: str) -> None:
        if ride_id not in self.sources:
            raise KeyError(ride_id)
        self.sources[ride_id] = artifact_ref
        self.calls.append(WidgetCall("update", ride_id, artifact_ref))

    def has_source(self, ride_id: str) -> bool:
        return ride_id in self.sources

    def current_viewport(self) -> db_models.BoundingBox:
        return self.viewport

    def current_zoom(self) -> float:
        return self.zoom

    def on_navigation_settled(self, callback: NavigationCallback) -> None:
        self._listeners.append(callback)

    def navigate(
        self,
        viewport: db_models.BoundingBox | None = None,
        zoom: float | None = None,
    ) -> None:
        """Move the view and notify navigation listeners."""
        if viewport is not None:
            self.viewport = viewport
        if zoom is not None:
            self.zoom = zoom
        for callback in list(self._listeners):
            callback()

    def operations(self, ride_id: str) -> list[Operation]:
        return [call.operation for call in self.calls if call.ride_id == ride_id]
