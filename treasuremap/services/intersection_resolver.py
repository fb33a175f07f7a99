from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from shapely.geometry.base import BaseGeometry

from treasuremap.domain.geometry import (
    DEFAULT_STEPS,
    GeometryError,
    overlaps,
    sources_of,
    to_shapely,
    union,
)
from treasuremap.domain.registry import ShapeRegistry
from treasuremap.domain.shapes import MergedRegion, Shape

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeRecord:
    """One component of overlapping shapes collapsed into a merged region."""

    member_ids: Tuple[int, ...]
    region_id: int
    inside: bool


@dataclass
class ResolveReport:
    merges: List[MergeRecord] = field(default_factory=list)
    pruned_ids: List[int] = field(default_factory=list)
    failed_components: List[Tuple[int, ...]] = field(default_factory=list)
    passes: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.merges or self.pruned_ids)


class IntersectionResolver:
    """
    Keep same-class shapes from overlapping.

    Each pass partitions the registry by ``inside`` flag, builds the overlap
    graph of every class and replaces every connected component with two or
    more members by the union of its members. Passes repeat until one merges
    nothing, so the outcome does not depend on the order shapes were drawn in.
    """

    def __init__(self, registry: ShapeRegistry, steps: int = DEFAULT_STEPS) -> None:
        self._registry = registry
        self._steps = steps

    def resolve(self) -> ResolveReport:
        report = ResolveReport()
        report.pruned_ids = self._prune_empty_regions()

        failed: set = set()
        # A successful pass shrinks the registry, so this bounds the loop
        max_passes = len(self._registry) + 1
        while report.passes < max_passes:
            report.passes += 1
            merged_this_pass = False
            for inside in (True, False):
                for component in self.find_components(inside):
                    if component in failed:
                        continue
                    record = self._merge_component(component, inside)
                    if record is None:
                        failed.add(component)
                        report.failed_components.append(component)
                        continue
                    report.merges.append(record)
                    merged_this_pass = True
            if not merged_this_pass:
                break
        else:
            logger.warning("Intersection resolver stopped after %d passes", report.passes)

        if report.changed:
            logger.debug(
                "Resolved shapes: %d merges, %d pruned in %d passes",
                len(report.merges), len(report.pruned_ids), report.passes,
            )
        return report

    def find_components(self, inside: bool) -> List[Tuple[int, ...]]:
        """Return the overlapping components (size >= 2) of one class, sorted by lowest id."""
        pool = sorted(
            (s for s in self._registry.entries() if s.inside == inside),
            key=lambda s: s.id,
        )
        geometries: Dict[int, BaseGeometry] = {}
        for shape in pool:
            try:
                geometries[shape.id] = to_shapely(shape, self._steps)
            except GeometryError as exc:
                logger.error("Skipping shape %s with invalid geometry: %s", shape.id, exc)

        ids = [s.id for s in pool if s.id in geometries]
        adjacency: Dict[int, List[int]] = {i: [] for i in ids}
        for index, a in enumerate(ids):
            for b in ids[index + 1:]:
                try:
                    touching = overlaps(geometries[a], geometries[b])
                except GeometryError as exc:
                    logger.error("Overlap test between %s and %s failed: %s", a, b, exc)
                    continue
                if touching:
                    adjacency[a].append(b)
                    adjacency[b].append(a)

        components: List[Tuple[int, ...]] = []
        seen: set = set()
        for start in ids:
            if start in seen:
                continue
            stack = [start]
            members = []
            seen.add(start)
            while stack:
                current = stack.pop()
                members.append(current)
                for neighbour in adjacency[current]:
                    if neighbour not in seen:
                        seen.add(neighbour)
                        stack.append(neighbour)
            if len(members) > 1:
                components.append(tuple(sorted(members)))
        return components

    def _merge_component(self, component: Sequence[int], inside: bool):
        members: List[Shape] = [self._registry.get(i) for i in component]
        try:
            parts = union([to_shapely(m, self._steps) for m in members])
        except GeometryError as exc:
            logger.error("Could not merge shapes %s: %s", list(component), exc)
            return None

        visible = any(m.visible for m in members)
        sources = [s for m in members for s in sources_of(m, self._steps)]
        region_id = self._registry.merge(
            component, parts, inside, visible=visible, sources=sources
        )
        logger.info("Merged shapes %s into region %s", list(component), region_id)
        return MergeRecord(member_ids=tuple(component), region_id=region_id, inside=inside)

    def _prune_empty_regions(self) -> List[int]:
        _, regions = self._registry.all()
        empty = [r.id for r in regions if _is_empty(r)]
        if empty:
            self._registry.remove_many(empty)
            logger.info("Pruned empty regions %s", empty)
        return empty


def _is_empty(region: MergedRegion) -> bool:
    try:
        return to_shapely(region).is_empty
    except GeometryError:
        return False
