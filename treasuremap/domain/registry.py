from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from treasuremap.domain.shapes import (
    Circle,
    LatLng,
    MergedRegion,
    MultiPolygonCoords,
    Shape,
    check_circle,
    copy_parts,
    copy_region,
)

logger = logging.getLogger(__name__)


class ShapeNotFoundError(Exception):
    """Raised when an id is absent from both the circle and the region lists."""


@dataclass(frozen=True)
class RegistryChange:
    """Notification sent to listeners after every registry mutation."""

    kind: str
    ids: Tuple[int, ...] = ()


RegistryListener = Callable[[RegistryChange], None]


class ShapeRegistry:
    """
    Canonical list of circles and merged regions for one map.

    Ids are unique across both lists and allocated from a monotonic counter
    that never hands out an id twice, so stale references (an open context
    menu, a selection) can always be detected.

    Mutations and ``all()`` hold a lock so a debounced save running on a timer
    thread always reads a consistent snapshot. Listeners are called after the
    lock is released.
    """

    def __init__(self, next_id: int = 1) -> None:
        self._circles: List[Circle] = []
        self._regions: List[MergedRegion] = []
        self._next_id = next_id
        self._listeners: List[RegistryListener] = []
        self._lock = threading.RLock()

    @property
    def next_id(self) -> int:
        return self._next_id

    def allocate_id(self) -> int:
        """Reserve and return the next id."""
        with self._lock:
            allocated = self._next_id
            self._next_id += 1
            return allocated

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Queries

    def all(self) -> Tuple[List[Circle], List[MergedRegion]]:
        """Return copies of the circle and region lists."""
        with self._lock:
            return (
                [replace(c) for c in self._circles],
                [copy_region(r) for r in self._regions],
            )

    def entries(self) -> List[Shape]:
        circles, regions = self.all()
        return [*circles, *regions]

    def contains(self, shape_id: int) -> bool:
        return self._find(shape_id) is not None

    def get(self, shape_id: int) -> Shape:
        with self._lock:
            shape = self._find(shape_id)
            if shape is None:
                raise ShapeNotFoundError(f"Shape with id {shape_id} not found")
            if isinstance(shape, MergedRegion):
                return copy_region(shape)
            return replace(shape)

    def ids(self) -> List[int]:
        with self._lock:
            return [c.id for c in self._circles] + [r.id for r in self._regions]

    def __len__(self) -> int:
        return len(self._circles) + len(self._regions)

    # Mutations

    def add_circle(self, center: LatLng, radius_meters: float, inside: bool) -> int:
        """
        Append a visible circle and return its id.

        Raises:
            ValueError: If the centre or radius is not a drawable circle
        """
        center = (float(center[0]), float(center[1]))
        radius_meters = float(radius_meters)
        check_circle(center, radius_meters)
        with self._lock:
            circle = Circle(
                id=self.allocate_id(),
                center=center,
                radius_meters=radius_meters,
                inside=bool(inside),
            )
            self._circles.append(circle)
        self._notify(RegistryChange("added", (circle.id,)))
        return circle.id

    def add_region(
        self,
        parts: MultiPolygonCoords,
        inside: bool,
        visible: bool = True,
        sources: Optional[Sequence[MultiPolygonCoords]] = None,
    ) -> int:
        with self._lock:
            region = MergedRegion(
                id=self.allocate_id(),
                inside=bool(inside),
                parts=copy_parts(parts),
                visible=visible,
                sources=[copy_parts(s) for s in sources or []],
            )
            self._regions.append(region)
        self._notify(RegistryChange("added", (region.id,)))
        return region.id

    def merge(
        self,
        member_ids: Sequence[int],
        parts: MultiPolygonCoords,
        inside: bool,
        visible: bool = True,
        sources: Optional[Sequence[MultiPolygonCoords]] = None,
    ) -> int:
        """
        Replace ``member_ids`` with a single merged region.

        The members are removed and the region is appended with a fresh id in
        one step, so listeners observe a single ``merged`` change.
        """
        with self._lock:
            missing = [i for i in member_ids if not self.contains(i)]
            if missing:
                raise ShapeNotFoundError(f"Cannot merge unknown shapes {missing}")

            retired = set(member_ids)
            self._circles = [c for c in self._circles if c.id not in retired]
            self._regions = [r for r in self._regions if r.id not in retired]
            region = MergedRegion(
                id=self.allocate_id(),
                inside=bool(inside),
                parts=copy_parts(parts),
                visible=visible,
                sources=[copy_parts(s) for s in sources or []],
            )
            self._regions.append(region)
        self._notify(RegistryChange("merged", (*sorted(retired), region.id)))
        return region.id

    def remove_shape(self, shape_id: int) -> Shape:
        """Remove a circle or region and return it."""
        with self._lock:
            shape = self._find(shape_id)
            if shape is None:
                logger.warning("Attempted to remove unknown shape %s", shape_id)
                raise ShapeNotFoundError(f"Shape with id {shape_id} not found")
            if isinstance(shape, Circle):
                self._circles.remove(shape)
            else:
                self._regions.remove(shape)
        self._notify(RegistryChange("removed", (shape_id,)))
        return shape

    def remove_many(self, shape_ids: Iterable[int]) -> None:
        doomed = set(shape_ids)
        with self._lock:
            missing = [i for i in doomed if not self.contains(i)]
            if missing:
                raise ShapeNotFoundError(f"Shapes {sorted(missing)} not found")
            if not doomed:
                return
            self._circles = [c for c in self._circles if c.id not in doomed]
            self._regions = [r for r in self._regions if r.id not in doomed]
        self._notify(RegistryChange("removed", tuple(sorted(doomed))))

    def set_inside(self, shape_id: int, inside: bool) -> None:
        with self._lock:
            shape = self._require(shape_id)
            if shape.inside == bool(inside):
                return
            shape.inside = bool(inside)
        self._notify(RegistryChange("updated", (shape_id,)))

    def set_visible(self, shape_id: int, visible: bool) -> None:
        with self._lock:
            shape = self._require(shape_id)
            if shape.visible == bool(visible):
                return
            shape.visible = bool(visible)
        self._notify(RegistryChange("updated", (shape_id,)))

    def clear(self) -> None:
        """Drop every shape. The id counter keeps counting up."""
        with self._lock:
            removed = tuple(self.ids())
            self._circles = []
            self._regions = []
        self._notify(RegistryChange("cleared", removed))

    def restore(
        self,
        circles: Sequence[Circle],
        regions: Sequence[MergedRegion],
        next_id: Optional[int] = None,
    ) -> None:
        """Replace the whole content, e.g. after loading persisted map data."""
        ids = [c.id for c in circles] + [r.id for r in regions]
        if len(ids) != len(set(ids)):
            raise ValueError("Shape ids must be unique across circles and regions")
        floor = max(ids, default=0) + 1
        if next_id is None:
            next_id = floor
        if next_id < floor:
            raise ValueError(f"next_id {next_id} must be greater than every existing id")

        with self._lock:
            self._circles = [replace(c) for c in circles]
            self._regions = [copy_region(r) for r in regions]
            self._next_id = next_id
        self._notify(RegistryChange("restored", tuple(ids)))

    def _find(self, shape_id: int) -> Optional[Shape]:
        with self._lock:
            for circle in self._circles:
                if circle.id == shape_id:
                    return circle
            for region in self._regions:
                if region.id == shape_id:
                    return region
            return None

    def _require(self, shape_id: int) -> Shape:
        shape = self._find(shape_id)
        if shape is None:
            raise ShapeNotFoundError(f"Shape with id {shape_id} not found")
        return shape

    def _notify(self, change: RegistryChange) -> None:
        for listener in list(self._listeners):
            listener(change)
