"""
Planar geometry kernel for map shapes.

Circles are approximated as polygons with a local planar projection that is
only valid for small areas away from the poles and the antimeridian. All
clipping is delegated to shapely; polygons are exchanged as
``MultiPolygonCoords`` (parts -> rings -> ``(lat, lng)`` vertices).
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from shapely.errors import ShapelyError
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.ops import unary_union
from shapely.validation import make_valid

from treasuremap.domain.shapes import (
    Circle,
    LatLng,
    MergedRegion,
    MultiPolygonCoords,
    PolygonPart,
    Ring,
)

METERS_PER_DEGREE_LAT = 111320.0
DEFAULT_STEPS = 64

# Web-mercator scale at zoom 0: earth circumference over a 256px tile.
METERS_PER_PIXEL_AT_ZOOM_0 = 40075000.0 / 256
TARGET_DIAMETER_PIXELS = 400
MIN_ZOOM = 1
MAX_ZOOM = 19

_AREA_EPSILON = 1e-14

GeometryLike = Union[Circle, MergedRegion, MultiPolygonCoords, BaseGeometry]


class GeometryError(Exception):
    """Raised when a clipping operation fails on malformed or degenerate input."""


def circle_to_polygon(center: LatLng, radius_meters: float, steps: int = DEFAULT_STEPS) -> Ring:
    """
    Approximate a circle as a closed ring of ``steps`` vertices.

    Args:
        center: ``(lat, lng)`` of the circle centre
        radius_meters: Radius in meters, must be positive
        steps: Number of distinct vertices (the closing vertex is added)

    Returns:
        List of ``(lat, lng)`` tuples whose last element equals the first
    """
    if steps < 3:
        raise GeometryError(f"A circle needs at least 3 steps, got {steps}")
    if radius_meters <= 0:
        raise GeometryError(f"Circle radius must be positive, got {radius_meters}")

    lat, lng = center
    lat_rad = math.radians(lat)
    meters_per_degree_lng = METERS_PER_DEGREE_LAT * math.cos(lat_rad)
    if meters_per_degree_lng <= 0:
        raise GeometryError(f"Latitude {lat} is outside the planar approximation")

    ring: Ring = []
    for i in range(steps):
        angle = (i / steps) * 2 * math.pi
        ring.append((
            lat + (radius_meters / METERS_PER_DEGREE_LAT) * math.sin(angle),
            lng + (radius_meters / meters_per_degree_lng) * math.cos(angle),
        ))
    ring.append(ring[0])
    return ring


def geometry_of(shape: Union[Circle, MergedRegion], steps: int = DEFAULT_STEPS) -> MultiPolygonCoords:
    """Return the polygon approximation of a circle or the parts of a merged region."""
    if isinstance(shape, Circle):
        return [[circle_to_polygon(shape.center, shape.radius_meters, steps)]]
    return shape.parts


def sources_of(shape: Union[Circle, MergedRegion], steps: int = DEFAULT_STEPS) -> List[MultiPolygonCoords]:
    """
    Return the separate circle geometries a shape stands for.

    A circle is its own single source. A merged region returns the circles it
    absorbed, or its own parts when it was built without any.
    """
    if isinstance(shape, Circle):
        return [geometry_of(shape, steps)]
    return list(shape.sources) or [shape.parts]


def to_shapely(value: GeometryLike, steps: int = DEFAULT_STEPS) -> BaseGeometry:
    """Convert a shape or coordinate structure into a valid shapely geometry."""
    if isinstance(value, BaseGeometry):
        return value
    if isinstance(value, (Circle, MergedRegion)):
        value = geometry_of(value, steps)

    polygons = []
    try:
        for part in value:
            if not part or not part[0]:
                continue
            polygons.append(_polygon_from_part(part))
    except (ShapelyError, ValueError, TypeError) as exc:
        raise GeometryError(f"Invalid polygon coordinates: {exc}") from exc

    if not polygons:
        return Polygon()
    if len(polygons) == 1:
        return polygons[0]
    return _run(lambda: unary_union(polygons), "union of polygon parts")


def from_shapely(geometry: BaseGeometry) -> MultiPolygonCoords:
    """Convert a shapely geometry back into ``(lat, lng)`` polygon parts."""
    parts: MultiPolygonCoords = []
    for polygon in _polygons_of(geometry):
        if polygon.area <= _AREA_EPSILON:
            continue
        polygon = orient(polygon, sign=1.0)
        rings = [polygon.exterior] + list(polygon.interiors)
        parts.append([[(y, x) for x, y in ring.coords] for ring in rings])
    return parts


def overlaps(a: GeometryLike, b: GeometryLike, steps: int = DEFAULT_STEPS) -> bool:
    """Return True when ``a`` and ``b`` share a non-empty area (not just a boundary)."""
    geom_a = to_shapely(a, steps)
    geom_b = to_shapely(b, steps)
    if geom_a.is_empty or geom_b.is_empty:
        return False
    if not _run(lambda: geom_a.intersects(geom_b), "intersects test"):
        return False
    shared = _run(lambda: geom_a.intersection(geom_b), "overlap test")
    return shared.area > _AREA_EPSILON


def union(polys: Iterable[GeometryLike]) -> MultiPolygonCoords:
    """Union all operands. An empty input yields an empty result."""
    geometries = [g for g in (to_shapely(p) for p in polys) if not g.is_empty]
    if not geometries:
        return []
    return from_shapely(_run(lambda: unary_union(geometries), "union"))


def intersection(polys: Sequence[GeometryLike]) -> MultiPolygonCoords:
    """Intersect all operands, short-circuiting to empty on the first empty result."""
    if not polys:
        return []
    current = to_shapely(polys[0])
    for poly in polys[1:]:
        if current.is_empty:
            return []
        other = to_shapely(poly)
        current = _run(lambda: current.intersection(other), "intersection")
    return from_shapely(current)


def difference(base: GeometryLike, subtract: Iterable[GeometryLike]) -> MultiPolygonCoords:
    """Subtract every operand of ``subtract`` from ``base``."""
    current = to_shapely(base)
    for poly in subtract:
        if current.is_empty:
            return []
        other = to_shapely(poly)
        if other.is_empty:
            continue
        current = _run(lambda: current.difference(other), "difference")
    return from_shapely(current)


def area(value: GeometryLike) -> float:
    """Planar area in square degrees. Only meaningful for comparisons."""
    return to_shapely(value).area


def bounds(value: GeometryLike) -> Optional[Tuple[LatLng, LatLng]]:
    """Return ``((south, west), (north, east))`` or None for an empty geometry."""
    geometry = to_shapely(value)
    if geometry.is_empty:
        return None
    min_x, min_y, max_x, max_y = geometry.bounds
    return (min_y, min_x), (max_y, max_x)


def zoom_for_radius(radius_meters: float) -> int:
    """Zoom level at which a circle of ``radius_meters`` spans roughly 400 pixels."""
    if radius_meters <= 0:
        return MAX_ZOOM
    diameter = radius_meters * 2
    zoom = math.log2((METERS_PER_PIXEL_AT_ZOOM_0 * TARGET_DIAMETER_PIXELS) / diameter)
    return max(MIN_ZOOM, min(MAX_ZOOM, round(zoom)))


def _polygon_from_part(part: PolygonPart) -> BaseGeometry:
    shell = [(lng, lat) for lat, lng in part[0]]
    holes = [[(lng, lat) for lat, lng in ring] for ring in part[1:] if ring]
    polygon = Polygon(shell, holes)
    if not polygon.is_valid:
        polygon = make_valid(polygon)
    return polygon


def _polygons_of(geometry: BaseGeometry) -> List[Polygon]:
    if geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, (MultiPolygon, GeometryCollection)):
        found: List[Polygon] = []
        for child in geometry.geoms:
            found.extend(_polygons_of(child))
        return found
    # Points and lines left over from clipping carry no area
    return []


def _run(operation, label: str):
    try:
        return operation()
    except (ShapelyError, ValueError) as exc:
        raise GeometryError(f"Geometry {label} failed: {exc}") from exc
