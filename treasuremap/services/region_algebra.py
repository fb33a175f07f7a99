from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry

from treasuremap.domain.geometry import (
    DEFAULT_STEPS,
    GeometryError,
    difference,
    from_shapely,
    intersection,
    sources_of,
    to_shapely,
    union,
)
from treasuremap.domain.registry import ShapeRegistry
from treasuremap.domain.shapes import MultiPolygonCoords, Shape

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeometryResult:
    """
    Outcome of a multi-step region computation.

    ``value`` always holds the best-effort geometry: a step that failed is
    treated as "no change" and its error is collected in ``errors``. Callers
    that cannot tolerate degraded output check ``ok``.
    """

    value: MultiPolygonCoords
    errors: Tuple[GeometryError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def is_empty(self) -> bool:
        return not self.value

    def unwrap(self) -> MultiPolygonCoords:
        """Return the value, raising the first error if any step failed."""
        if self.errors:
            raise self.errors[0]
        return self.value


class RegionAlgebra:
    """Derive the unified fill layers and the solution region from the registry."""

    def __init__(self, registry: ShapeRegistry, steps: int = DEFAULT_STEPS) -> None:
        self._registry = registry
        self._steps = steps

    def unified_fill(self, inside: bool) -> GeometryResult:
        """Union of every visible entry of one class, for a single flat-opacity fill."""
        entries = [s for s in self._registry.entries() if s.visible and s.inside == inside]
        if not entries:
            return GeometryResult([])

        errors = []
        current: BaseGeometry = Polygon()
        for entry in entries:
            try:
                step = union([current, to_shapely(entry, self._steps)])
            except GeometryError as exc:
                logger.error("Unified %s fill skipped shape %s: %s", _label(inside), entry.id, exc)
                errors.append(exc)
                continue
            current = to_shapely(step)
        return GeometryResult(from_shapely(current), tuple(errors))

    def solution_region(
        self,
        inside_entries: Sequence[Shape],
        outside_entries: Sequence[Shape],
    ) -> GeometryResult:
        """
        Intersection of the inside circles minus the union of the outside entries.

        A merged inside region contributes each circle it absorbed rather than
        their union. With no inside entries the solution is empty, not the
        whole map.
        """
        if not inside_entries:
            return GeometryResult([])

        errors = []
        current = None
        for entry in inside_entries:
            try:
                sources = sources_of(entry, self._steps)
            except GeometryError as exc:
                logger.error("Solution region skipped inside shape %s: %s", entry.id, exc)
                errors.append(exc)
                continue
            for source in sources:
                try:
                    geometry = to_shapely(source)
                    current = geometry if current is None else to_shapely(intersection([current, geometry]))
                except GeometryError as exc:
                    logger.error("Solution region skipped inside shape %s: %s", entry.id, exc)
                    errors.append(exc)
                    continue
                if current.is_empty:
                    return GeometryResult([], tuple(errors))

        if current is None:
            return GeometryResult([], tuple(errors))

        for entry in outside_entries:
            try:
                current = to_shapely(difference(current, [to_shapely(entry, self._steps)]))
            except GeometryError as exc:
                logger.error("Solution region skipped outside shape %s: %s", entry.id, exc)
                errors.append(exc)
                continue
            if current.is_empty:
                return GeometryResult([], tuple(errors))

        return GeometryResult(from_shapely(current), tuple(errors))

    def solution(self) -> GeometryResult:
        """Solution region over every entry currently in the registry."""
        entries = self._registry.entries()
        return self.solution_region(
            [s for s in entries if s.inside],
            [s for s in entries if not s.inside],
        )


def _label(inside: bool) -> str:
    return "inside" if inside else "outside"
