from __future__ import annotations

from typing import Any, Callable, Dict, List, Protocol

from treasuremap.domain.shapes import LatLng, Ring

Style = Dict[str, Any]
RenderHandle = Any


class MapRenderer(Protocol):
    """The map widget that draws primitives and reports interactions on them."""

    def render_circle(self, center: LatLng, radius_meters: float, style: Style) -> RenderHandle:
        ...

    def render_polygon(self, rings: List[Ring], style: Style) -> RenderHandle:
        ...

    def remove_handle(self, handle: RenderHandle) -> None:
        ...

    def on_event(self, handle: RenderHandle, event: str, callback: Callable[[], None]) -> None:
        ...
