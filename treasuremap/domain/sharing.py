"""Read-only views exchanged by the circle sharing endpoints."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from treasuremap.domain.shapes import Circle


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class CircleSnapshot:
    """Position, radius and class of a circle, without its registry id."""

    latitude: float
    longitude: float
    radius: float
    is_inside: bool

    @classmethod
    def from_circle(cls, circle: Circle) -> "CircleSnapshot":
        return cls(
            latitude=circle.lat,
            longitude=circle.lng,
            radius=circle.radius_meters,
            is_inside=circle.inside,
        )

    @classmethod
    def from_frontend_json(cls, data: Dict[str, Any]) -> "CircleSnapshot":
        """
        Parse ``{latitude, longitude, radius, isInside}``.

        Raises:
            ValueError: If a field is missing or out of range
        """
        if not isinstance(data, dict):
            raise ValueError("Circle must be an object")
        try:
            latitude = float(data["latitude"])
            longitude = float(data["longitude"])
            radius = float(data["radius"])
        except KeyError as exc:
            raise ValueError(f"Circle is missing {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Circle has a non-numeric field: {exc}") from exc

        if not all(math.isfinite(v) for v in (latitude, longitude, radius)):
            raise ValueError("Circle coordinates must be finite numbers")
        if not -90 <= latitude <= 90:
            raise ValueError(f"Latitude {latitude} out of range")
        if not -180 <= longitude <= 180:
            raise ValueError(f"Longitude {longitude} out of range")
        if radius <= 0:
            raise ValueError(f"Radius must be positive, got {radius}")
        return cls(latitude, longitude, radius, bool(data.get("isInside", True)))

    def to_frontend_json(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "radius": self.radius,
            "isInside": self.is_inside,
        }


@dataclass(frozen=True)
class SharedCircleView:
    id: int
    latitude: float
    longitude: float
    radius: float
    is_inside: bool
    owner_username: str
    created_at: datetime

    @property
    def center(self) -> Tuple[float, float]:
        return self.latitude, self.longitude

    def to_frontend_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "radius": self.radius,
            "isInside": self.is_inside,
            "ownerUsername": self.owner_username,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass(frozen=True)
class AcceptedShareView:
    """
    A share as seen by one viewer.

    ``id`` and ``accepted_at`` are None for a preview of a share that has not
    been accepted yet.
    """

    share_id: str
    owner_username: str
    circles: Tuple[SharedCircleView, ...]
    visible: bool = True
    id: Optional[int] = None
    accepted_at: Optional[datetime] = None

    def to_frontend_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shareId": self.share_id,
            "ownerUsername": self.owner_username,
            "acceptedAt": _isoformat(self.accepted_at),
            "visible": self.visible,
            "circles": [c.to_frontend_json() for c in self.circles],
        }


@dataclass(frozen=True)
class ShareCreated:
    share_id: str
    share_url: str
    message: str = "Circles shared successfully."

    def to_frontend_json(self) -> Dict[str, Any]:
        return {
            "shareId": self.share_id,
            "shareUrl": self.share_url,
            "message": self.message,
        }
