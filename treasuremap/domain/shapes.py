"""
Domain models for the shapes a player draws on the map.

Coordinates are ``(lat, lng)`` tuples. Entities carry no reference to the
rendering layer; render handles are kept in a side-table by
``treasuremap.rendering.layer.RenderLayer``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import List, Tuple, Union

LatLng = Tuple[float, float]
Ring = List[LatLng]
PolygonPart = List[Ring]
MultiPolygonCoords = List[PolygonPart]


@dataclass
class Circle:
    """A circle drawn by the player, classified as inside or outside the target zone."""

    id: int
    center: LatLng
    radius_meters: float
    inside: bool
    visible: bool = True

    @property
    def lat(self) -> float:
        return self.center[0]

    @property
    def lng(self) -> float:
        return self.center[1]


@dataclass
class MergedRegion:
    """
    Consolidated polygon replacing two or more overlapping same-class shapes.

    Each element of ``parts`` is one disjoint polygon: the outer ring first,
    followed by any hole rings. ``sources`` keeps the geometry of every circle
    the region absorbed, so the solution can still intersect them one by one.
    """

    id: int
    inside: bool
    parts: MultiPolygonCoords = field(default_factory=list)
    visible: bool = True
    sources: List[MultiPolygonCoords] = field(default_factory=list)


@dataclass(frozen=True)
class Marker:
    """A pin dropped on the map. Shares the id space with shapes."""

    id: int
    lat: float
    lng: float


Shape = Union[Circle, MergedRegion]


def copy_parts(parts: MultiPolygonCoords) -> MultiPolygonCoords:
    """Return a deep copy of polygon parts with tuple vertices."""
    return [[[(float(lat), float(lng)) for lat, lng in ring] for ring in part] for part in parts]


def copy_region(region: MergedRegion) -> MergedRegion:
    return replace(
        region,
        parts=copy_parts(region.parts),
        sources=[copy_parts(s) for s in region.sources],
    )


def check_circle(center: LatLng, radius_meters: float) -> None:
    """
    Reject a circle that cannot be drawn.

    Raises:
        ValueError: If a coordinate or the radius is not finite or out of range
    """
    lat, lng = center
    if not all(math.isfinite(v) for v in (lat, lng, radius_meters)):
        raise ValueError("Circle coordinates and radius must be finite numbers")
    if not -90 <= lat <= 90:
        raise ValueError(f"Latitude {lat} out of range")
    if not -180 <= lng <= 180:
        raise ValueError(f"Longitude {lng} out of range")
    if radius_meters <= 0:
        raise ValueError(f"Radius must be positive, got {radius_meters}")
