"""
GeoJSON codec for a player's map.

The persisted document is a ``FeatureCollection``. Circles are stored as
``Point`` features carrying their radius, merged regions as ``MultiPolygon``
features and markers as ``Point`` features. A region may carry a ``sources``
property holding the MultiPolygon coordinates of every circle it absorbed.
Counters travel in a top-level ``metadata`` object:

    {
        "type": "FeatureCollection",
        "metadata": {"circleCount": 3, "earnedReward": false, "revision": 7},
        "features": [...]
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from treasuremap.domain.shapes import (
    Circle,
    Marker,
    MergedRegion,
    MultiPolygonCoords,
    Shape,
    check_circle,
    copy_parts,
)


class PersistenceError(Exception):
    """Raised when map data cannot be encoded, decoded, saved or loaded."""


@dataclass
class DecodedMap:
    circles: List[Circle] = field(default_factory=list)
    regions: List[MergedRegion] = field(default_factory=list)
    markers: List[Marker] = field(default_factory=list)
    next_id: int = 1
    circle_count: int = 0
    earned_reward: bool = False
    revision: Optional[int] = None


AttachCallback = Callable[[Shape], None]


def encode(
    circles: Sequence[Circle],
    regions: Sequence[MergedRegion],
    markers: Sequence[Marker],
    circle_count: int,
    earned_reward: bool,
    revision: Optional[int] = None,
) -> Dict[str, Any]:
    """Serialize registry content into a FeatureCollection."""
    features: List[Dict[str, Any]] = []
    features.extend(_circle_feature(c) for c in circles)
    features.extend(_region_feature(r) for r in regions)
    features.extend(_marker_feature(m) for m in markers)

    metadata: Dict[str, Any] = {
        "circleCount": int(circle_count),
        "earnedReward": bool(earned_reward),
    }
    if revision is not None:
        metadata["revision"] = int(revision)

    return {
        "type": "FeatureCollection",
        "metadata": metadata,
        "features": features,
    }


def decode(collection: Dict[str, Any], attach: Optional[AttachCallback] = None) -> DecodedMap:
    """
    Rebuild circles, regions and markers from a FeatureCollection.

    Args:
        collection: Parsed GeoJSON document
        attach: Called once per reconstructed circle or region so the caller
            can recreate render handles and interaction listeners

    Returns:
        DecodedMap whose ``next_id`` is one past the highest id in the document

    Raises:
        PersistenceError: If the document is not a well-formed map FeatureCollection
    """
    if not isinstance(collection, dict) or collection.get("type") != "FeatureCollection":
        raise PersistenceError("Invalid GeoJSON format: expected a FeatureCollection")

    features = collection.get("features") or []
    if not isinstance(features, list):
        raise PersistenceError("Invalid GeoJSON format: features must be a list")

    decoded = DecodedMap()
    regions_by_id: Dict[int, MergedRegion] = {}
    seen_ids: set = set()
    max_id = 0

    for index, feature in enumerate(features):
        properties, geometry = _unpack(feature, index)
        feature_type = properties.get("type")
        feature_id = _feature_id(properties, index)
        max_id = max(max_id, feature_id)

        # Parts of one region may be spread over several polygon features
        if feature_type == "polygon" and feature_id in regions_by_id:
            region = regions_by_id[feature_id]
            region.parts.extend(_parts_from(geometry, index))
            region.sources.extend(_sources_from(properties, index))
            continue
        if feature_id in seen_ids:
            raise PersistenceError(f"Duplicate id {feature_id} in feature {index}")
        seen_ids.add(feature_id)

        if feature_type == "circle":
            decoded.circles.append(_circle_from(properties, geometry, feature_id, index))
        elif feature_type == "polygon":
            region = MergedRegion(
                id=feature_id,
                inside=_flag(properties, "inside", False, index),
                parts=_parts_from(geometry, index),
                visible=_flag(properties, "visible", True, index),
                sources=_sources_from(properties, index),
            )
            regions_by_id[feature_id] = region
            decoded.regions.append(region)
        elif feature_type == "marker":
            lat, lng = _point_from(geometry, index)
            decoded.markers.append(Marker(id=feature_id, lat=lat, lng=lng))
        else:
            raise PersistenceError(f"Unknown feature type {feature_type!r} in feature {index}")

    metadata = collection.get("metadata") or {}
    decoded.circle_count = int(metadata.get("circleCount", collection.get("circleCount", 0)) or 0)
    earned_reward = metadata.get("earnedReward", collection.get("earnedReward"))
    if earned_reward is not None and not isinstance(earned_reward, bool):
        raise PersistenceError(f"earnedReward must be a boolean, got {earned_reward!r}")
    decoded.earned_reward = bool(earned_reward)
    revision = metadata.get("revision")
    decoded.revision = int(revision) if revision is not None else None
    decoded.next_id = max_id + 1

    if attach is not None:
        for shape in [*decoded.circles, *decoded.regions]:
            attach(shape)
    return decoded


def _circle_feature(circle: Circle) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "properties": {
            "type": "circle",
            "id": circle.id,
            "inside": circle.inside,
            "visible": circle.visible,
            "radius": circle.radius_meters,
        },
        "geometry": {
            "type": "Point",
            "coordinates": [circle.lng, circle.lat],
        },
    }


def _region_feature(region: MergedRegion) -> Dict[str, Any]:
    properties: Dict[str, Any] = {
        "type": "polygon",
        "id": region.id,
        "inside": region.inside,
        "visible": region.visible,
    }
    if region.sources:
        properties["sources"] = [_lng_lat(source) for source in region.sources]
    return {
        "type": "Feature",
        "properties": properties,
        "geometry": {
            "type": "MultiPolygon",
            "coordinates": _lng_lat(region.parts),
        },
    }


def _lng_lat(parts: MultiPolygonCoords) -> List[Any]:
    return [[[[lng, lat] for lat, lng in ring] for ring in part] for part in parts]


def _marker_feature(marker: Marker) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "properties": {"type": "marker", "id": marker.id},
        "geometry": {"type": "Point", "coordinates": [marker.lng, marker.lat]},
    }


def _unpack(feature: Any, index: int):
    if not isinstance(feature, dict):
        raise PersistenceError(f"Feature {index} is not an object")
    properties = feature.get("properties")
    geometry = feature.get("geometry")
    if not isinstance(properties, dict) or not isinstance(geometry, dict):
        raise PersistenceError(f"Feature {index} is missing properties or geometry")
    return properties, geometry


def _feature_id(properties: Dict[str, Any], index: int) -> int:
    raw = properties.get("id")
    if isinstance(raw, bool) or raw is None:
        raise PersistenceError(f"Feature {index} has no id")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Feature {index} has a non-integer id {raw!r}") from exc


def _flag(properties: Dict[str, Any], key: str, default: bool, index: int) -> bool:
    value = properties.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise PersistenceError(f"Feature {index} has a non-boolean {key!r} value {value!r}")
    return value


def _point_from(geometry: Dict[str, Any], index: int):
    if geometry.get("type") != "Point":
        raise PersistenceError(f"Feature {index} must have Point geometry")
    try:
        lng, lat = geometry["coordinates"][:2]
        return float(lat), float(lng)
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Feature {index} has invalid point coordinates") from exc


def _circle_from(properties: Dict[str, Any], geometry: Dict[str, Any], feature_id: int, index: int) -> Circle:
    lat, lng = _point_from(geometry, index)
    try:
        radius = float(properties["radius"])
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Circle feature {index} has no valid radius") from exc
    try:
        check_circle((lat, lng), radius)
    except ValueError as exc:
        raise PersistenceError(f"Circle feature {index} is invalid: {exc}") from exc
    return Circle(
        id=feature_id,
        center=(lat, lng),
        radius_meters=radius,
        inside=_flag(properties, "inside", False, index),
        visible=_flag(properties, "visible", True, index),
    )


def _parts_from(geometry: Dict[str, Any], index: int):
    geometry_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if geometry_type == "Polygon":
        coordinates = [coordinates]
    elif geometry_type != "MultiPolygon":
        raise PersistenceError(f"Feature {index} must have MultiPolygon geometry")
    try:
        parts = [[[(pt[1], pt[0]) for pt in ring] for ring in part] for part in coordinates]
        return copy_parts(parts)
    except (TypeError, IndexError, ValueError) as exc:
        raise PersistenceError(f"Feature {index} has invalid polygon coordinates") from exc


def _sources_from(properties: Dict[str, Any], index: int) -> List[MultiPolygonCoords]:
    raw = properties.get("sources")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise PersistenceError(f"Feature {index} sources must be a list")
    return [_parts_from({"type": "MultiPolygon", "coordinates": source}, index) for source in raw]
