"""
Domain models package.

Shapes, the geometry kernel and the shape registry. Nothing in here touches
Flask or the rendering layer.
"""

from treasuremap.domain.geometry import (
    GeometryError,
    circle_to_polygon,
    difference,
    intersection,
    overlaps,
    union,
)
from treasuremap.domain.registry import (
    RegistryChange,
    ShapeNotFoundError,
    ShapeRegistry,
)
from treasuremap.domain.shapes import (
    Circle,
    Marker,
    MergedRegion,
)

__all__ = [
    'Circle',
    'MergedRegion',
    'Marker',
    'GeometryError',
    'circle_to_polygon',
    'overlaps',
    'union',
    'intersection',
    'difference',
    'ShapeRegistry',
    'RegistryChange',
    'ShapeNotFoundError',
]
