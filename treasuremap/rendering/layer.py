from __future__ import annotations

from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from treasuremap.domain.shapes import Circle, MultiPolygonCoords, Shape
from treasuremap.domain.sharing import AcceptedShareView
from treasuremap.rendering.protocols import MapRenderer, RenderHandle, Style


# Shapes are drawn as outlines only; the unified fills below carry the colour
# so overlapping translucent fills do not stack.
INSIDE_STROKE: Style = {"color": "green", "weight": 2, "fillOpacity": 0}
OUTSIDE_STROKE: Style = {"color": "darkgrey", "weight": 2, "fillOpacity": 0}
INSIDE_FILL: Style = {"color": "transparent", "fillColor": "lightgreen", "fillOpacity": 0.4, "interactive": False}
OUTSIDE_FILL: Style = {"color": "transparent", "fillColor": "lightgrey", "fillOpacity": 0.4, "interactive": False}
SOLUTION_STYLE: Style = {"color": "#228B22", "fillColor": "#32CD32", "fillOpacity": 0.5, "weight": 3, "interactive": False}
SHARED_STYLE: Style = {"color": "#9370DB", "fillColor": "#9370DB", "fillOpacity": 0.1, "dashArray": "10, 10", "weight": 2}

FILL_INSIDE = "fill:inside"
FILL_OUTSIDE = "fill:outside"
SOLUTION = "solution"

ShapeCallback = Callable[[int], None]


class RenderLayer:
    """
    Keep the map widget in step with the registry.

    The layer owns the ``shape id -> render handles`` side-table; entities
    never reference their handles. Overlays (unified fills, the solution
    highlight and accepted shares) are keyed by name and replaced wholesale.
    """

    def __init__(
        self,
        renderer: MapRenderer,
        on_select: Optional[ShapeCallback] = None,
        on_context_menu: Optional[ShapeCallback] = None,
    ) -> None:
        self._renderer = renderer
        self._on_select = on_select
        self._on_context_menu = on_context_menu
        self._handles: Dict[int, List[RenderHandle]] = {}
        self._drawn: Dict[int, Hashable] = {}
        self._overlays: Dict[str, List[RenderHandle]] = {}

    def handles_for(self, shape_id: int) -> List[RenderHandle]:
        return list(self._handles.get(shape_id, []))

    def overlay_handles(self, key: str) -> List[RenderHandle]:
        return list(self._overlays.get(key, []))

    @property
    def drawn_ids(self) -> List[int]:
        return sorted(self._handles)

    def sync(self, shapes: Sequence[Shape]) -> None:
        """Draw visible shapes, drop hidden or removed ones, redraw changed ones."""
        visible = {s.id: s for s in shapes if s.visible}
        for shape_id in list(self._handles):
            if shape_id not in visible:
                self._remove_shape(shape_id)

        for shape_id, shape in visible.items():
            fingerprint = _fingerprint(shape)
            if self._drawn.get(shape_id) == fingerprint:
                continue
            self._remove_shape(shape_id)
            self._draw_shape(shape)
            self._drawn[shape_id] = fingerprint

    def set_overlay(self, key: str, parts: MultiPolygonCoords, style: Style) -> None:
        """Replace the overlay ``key`` with one polygon per part."""
        self.remove_overlay(key)
        if parts:
            self._overlays[key] = [self._renderer.render_polygon(part, dict(style)) for part in parts]

    def update_fills(self, inside_fill: MultiPolygonCoords, outside_fill: MultiPolygonCoords) -> None:
        self.set_overlay(FILL_INSIDE, inside_fill, INSIDE_FILL)
        self.set_overlay(FILL_OUTSIDE, outside_fill, OUTSIDE_FILL)

    def update_solution(self, solution: MultiPolygonCoords) -> None:
        self.set_overlay(SOLUTION, solution, SOLUTION_STYLE)

    def show_accepted_shares(self, shares: Sequence[AcceptedShareView]) -> None:
        """Draw visible accepted shares with a dashed outline naming their owner."""
        wanted = {f"share:{s.share_id}": s for s in shares if s.visible}
        for key in [k for k in self._overlays if k.startswith("share:")]:
            if key not in wanted:
                self.remove_overlay(key)

        for key, share in wanted.items():
            self.remove_overlay(key)
            style = {**SHARED_STYLE, "tooltip": f"Shared by {share.owner_username}"}
            self._overlays[key] = [
                self._renderer.render_circle(circle.center, circle.radius, dict(style))
                for circle in share.circles
            ]

    def remove_overlay(self, key: str) -> None:
        for handle in self._overlays.pop(key, []):
            self._renderer.remove_handle(handle)

    def clear(self) -> None:
        for shape_id in list(self._handles):
            self._remove_shape(shape_id)
        for key in list(self._overlays):
            self.remove_overlay(key)

    def _draw_shape(self, shape: Shape) -> None:
        style = dict(INSIDE_STROKE if shape.inside else OUTSIDE_STROKE)
        if isinstance(shape, Circle):
            handles = [self._renderer.render_circle(shape.center, shape.radius_meters, style)]
        else:
            handles = [self._renderer.render_polygon(part, dict(style)) for part in shape.parts]
        for handle in handles:
            self._attach_listeners(handle, shape.id)
        self._handles[shape.id] = handles

    def _attach_listeners(self, handle: RenderHandle, shape_id: int) -> None:
        if self._on_select is not None:
            self._renderer.on_event(handle, "click", lambda: self._on_select(shape_id))
        if self._on_context_menu is not None:
            self._renderer.on_event(handle, "contextmenu", lambda: self._on_context_menu(shape_id))

    def _remove_shape(self, shape_id: int) -> None:
        for handle in self._handles.pop(shape_id, []):
            self._renderer.remove_handle(handle)
        self._drawn.pop(shape_id, None)


def _fingerprint(shape: Shape) -> Tuple:
    if isinstance(shape, Circle):
        return ("circle", shape.center, shape.radius_meters, shape.inside)
    # Region geometry is fixed at creation; only the class can change
    return ("region", shape.inside)
