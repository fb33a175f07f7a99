from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from treasuremap.domain.geometry import DEFAULT_STEPS, bounds, zoom_for_radius
from treasuremap.domain.registry import RegistryChange, ShapeNotFoundError, ShapeRegistry
from treasuremap.domain.shapes import Circle, LatLng, Marker
from treasuremap.domain.sharing import AcceptedShareView
from treasuremap.rendering.layer import RenderLayer
from treasuremap.rendering.protocols import MapRenderer
from treasuremap.services.intersection_resolver import IntersectionResolver, ResolveReport
from treasuremap.services.map_persistence import MapPersistence
from treasuremap.services.persistence_codec import DecodedMap, PersistenceError, encode
from treasuremap.services.region_algebra import GeometryResult, RegionAlgebra

logger = logging.getLogger(__name__)

DEFAULT_REWARD_THRESHOLD = 8


@dataclass(frozen=True)
class ShapeView:
    """Where to point the map to show one shape."""

    center: LatLng
    zoom: Optional[int] = None
    bounds: Optional[Tuple[LatLng, LatLng]] = None


class MapWorkspace:
    """
    One player's map session.

    Every registry mutation runs the same pipeline: merge overlapping
    same-class shapes, recompute the unified fills and the solution region,
    redraw, then schedule a debounced save.
    """

    def __init__(
        self,
        registry: Optional[ShapeRegistry] = None,
        renderer: Optional[MapRenderer] = None,
        persistence: Optional[MapPersistence] = None,
        steps: int = DEFAULT_STEPS,
        reward_threshold: int = DEFAULT_REWARD_THRESHOLD,
    ) -> None:
        self.registry = registry if registry is not None else ShapeRegistry()
        self._resolver = IntersectionResolver(self.registry, steps)
        self._algebra = RegionAlgebra(self.registry, steps)
        self._layer = (
            RenderLayer(renderer, on_select=self.select, on_context_menu=self.open_context_menu)
            if renderer is not None
            else None
        )
        self._persistence = persistence
        self._reward_threshold = reward_threshold

        self._markers: List[Marker] = []
        self.circle_count = 0
        self.earned_reward = False
        self._selected: Optional[int] = None
        self._context_menu: Optional[int] = None

        self._inside_fill = GeometryResult([])
        self._outside_fill = GeometryResult([])
        self._solution = GeometryResult([])
        self.last_report = ResolveReport()
        self._reconciling = False
        self._unsubscribe = self.registry.subscribe(self.on_registry_changed)

    # Pipeline

    def on_registry_changed(self, change: RegistryChange) -> None:
        # Merges issued by the resolver land here too; the resolver already
        # runs to a fixed point, so they need no second pass.
        if self._reconciling:
            return
        self._reconciling = True
        try:
            self.last_report = self._resolver.resolve()
            self._recompute()
        finally:
            self._reconciling = False
        logger.debug("Registry %s %s reconciled", change.kind, list(change.ids))
        self._schedule_save()

    def _recompute(self) -> None:
        self._inside_fill = self._algebra.unified_fill(True)
        self._outside_fill = self._algebra.unified_fill(False)
        self._solution = self._algebra.solution()
        if self._layer is not None:
            self._layer.sync(self.registry.entries())
            self._layer.update_fills(self._inside_fill.value, self._outside_fill.value)
            self._layer.update_solution(self._solution.value)

    @property
    def inside_fill(self) -> GeometryResult:
        return self._inside_fill

    @property
    def outside_fill(self) -> GeometryResult:
        return self._outside_fill

    @property
    def solution(self) -> GeometryResult:
        return self._solution

    @property
    def render_layer(self) -> Optional[RenderLayer]:
        return self._layer

    # Shapes

    def add_circle(self, center: LatLng, radius_meters: float, inside: bool) -> int:
        """
        Draw a new circle and return its id.

        The id is retired straight away when the circle overlaps a shape of
        the same class; ``last_report`` names the region that absorbed it.
        Raises ValueError for a circle that cannot be drawn, without counting it.
        """
        circle_id = self.registry.add_circle(center, radius_meters, inside)
        self.circle_count += 1
        if not self.earned_reward and self.circle_count >= self._reward_threshold:
            self.earned_reward = True
            logger.info("Reward earned after %d circles", self.circle_count)
        return circle_id

    def delete_shape(self, shape_id: int) -> None:
        self.registry.remove_shape(shape_id)
        self.circle_count = max(0, self.circle_count - 1)
        if self._selected == shape_id:
            self._selected = None
        if self._context_menu == shape_id:
            self._context_menu = None

    def set_inside(self, shape_id: int, inside: bool) -> None:
        self.registry.set_inside(shape_id, inside)

    def set_visible(self, shape_id: int, visible: bool) -> None:
        self.registry.set_visible(shape_id, visible)

    def toggle_visibility(self, shape_id: int) -> bool:
        visible = not self.registry.get(shape_id).visible
        self.registry.set_visible(shape_id, visible)
        return visible

    def clear(self) -> None:
        """Remove every shape and marker and reset the counters."""
        self._markers = []
        self.circle_count = 0
        self.earned_reward = False
        self._selected = None
        self._context_menu = None
        self.registry.clear()

    # Markers

    @property
    def markers(self) -> List[Marker]:
        return list(self._markers)

    def add_marker(self, lat: float, lng: float) -> int:
        marker = Marker(id=self.registry.allocate_id(), lat=float(lat), lng=float(lng))
        self._markers.append(marker)
        self._schedule_save()
        return marker.id

    def remove_marker(self, marker_id: int) -> None:
        remaining = [m for m in self._markers if m.id != marker_id]
        if len(remaining) == len(self._markers):
            raise ShapeNotFoundError(f"Marker with id {marker_id} not found")
        self._markers = remaining
        self._schedule_save()

    # Selection and context menu

    def select(self, shape_id: Optional[int]) -> None:
        if shape_id is not None and not self.registry.contains(shape_id):
            raise ShapeNotFoundError(f"Shape with id {shape_id} not found")
        self._selected = shape_id

    @property
    def selected(self) -> Optional[int]:
        if self._selected is not None and not self.registry.contains(self._selected):
            return None
        return self._selected

    def open_context_menu(self, shape_id: int) -> None:
        self._context_menu = shape_id

    def close_context_menu(self) -> None:
        self._context_menu = None

    @property
    def context_menu_target(self) -> Optional[int]:
        """The shape the open menu acts on, or None once that shape is gone."""
        if self._context_menu is not None and not self.registry.contains(self._context_menu):
            return None
        return self._context_menu

    def view_for_shape(self, shape_id: int) -> ShapeView:
        shape = self.registry.get(shape_id)
        if isinstance(shape, Circle):
            return ShapeView(center=shape.center, zoom=zoom_for_radius(shape.radius_meters))
        box = bounds(shape.parts)
        if box is None:
            raise ShapeNotFoundError(f"Region {shape_id} has no area to show")
        (south, west), (north, east) = box
        return ShapeView(center=((south + north) / 2, (west + east) / 2), bounds=box)

    def show_accepted_shares(self, shares: Sequence[AcceptedShareView]) -> None:
        if self._layer is not None:
            self._layer.show_accepted_shares(shares)

    # Persistence

    def load(self) -> DecodedMap:
        if self._persistence is None:
            raise PersistenceError("No map persistence configured")
        decoded = self._persistence.load(self.registry)
        self._markers = list(decoded.markers)
        self.circle_count = decoded.circle_count
        self.earned_reward = decoded.earned_reward
        return decoded

    def snapshot(self, revision: Optional[int] = None) -> Dict[str, Any]:
        circles, regions = self.registry.all()
        return encode(circles, regions, list(self._markers), self.circle_count, self.earned_reward, revision)

    def flush(self) -> Optional[int]:
        if self._persistence is None:
            return None
        return self._persistence.flush()

    def close(self) -> None:
        self._unsubscribe()
        if self._persistence is not None:
            self._persistence.cancel()
        if self._layer is not None:
            self._layer.clear()

    def _schedule_save(self) -> None:
        if self._persistence is not None:
            self._persistence.schedule_save(self.snapshot)
