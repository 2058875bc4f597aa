"""
Relocalization data models
Saved anchor records, pending placements and committed anchors
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .errors import InvalidAnchorRecordError, LocationUnavailableError
from .geometry import transform_from_column_major, transform_to_column_major, translation_of


@dataclass(frozen=True)
class GeoLocation:
    """Geolocation captured when the anchor was saved"""
    latitude: float
    longitude: float
    altitude: float = 0.0
    horizontal_accuracy: float = -1.0
    vertical_accuracy: float = -1.0
    timestamp: float = 0.0

    def __post_init__(self):
        if not (math.isfinite(self.latitude) and -90.0 <= self.latitude <= 90.0):
            raise LocationUnavailableError(f"Invalid latitude: {self.latitude}")
        if not (math.isfinite(self.longitude) and -180.0 <= self.longitude <= 180.0):
            raise LocationUnavailableError(f"Invalid longitude: {self.longitude}")

    def to_dict(self) -> Dict[str, float]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "horizontalAccuracy": self.horizontal_accuracy,
            "verticalAccuracy": self.vertical_accuracy,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class AnchorContent:
    """Content shown at an anchor, with entity-local scale and orientation"""
    content_id: str
    scale: Optional[Tuple[float, float, float]] = None
    orientation: Optional[Tuple[float, float, float, float]] = None  # [x, y, z, w]


@dataclass(frozen=True, eq=False)
class SavedAnchorRecord:
    """Anchor as loaded from the remote store; immutable once loaded"""
    id: str
    transform: np.ndarray
    content: AnchorContent
    location: GeoLocation
    plane_geometry: Optional[Dict[str, List[float]]] = None
    user_id: Optional[str] = None
    is_public: bool = False

    @property
    def origin(self) -> np.ndarray:
        """Saved anchor position in the session frame it was captured in"""
        return translation_of(self.transform)

    @property
    def content_id(self) -> str:
        return self.content.content_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SavedAnchorRecord':
        """
        Parse the storage collaborator's document format

        Args:
            data: document with ``id``, ``transform`` (16 floats, column-major),
                ``name``, geolocation fields and optional ``scale`` /
                ``orientation`` / ``planeGeometry``

        Raises:
            InvalidAnchorRecordError: missing id/name or malformed optional fields
            CorruptTransformError: transform is missing or not rigid
            LocationUnavailableError: geolocation fields are missing
        """
        anchor_id = data.get("id")
        if not isinstance(anchor_id, str) or not anchor_id:
            raise InvalidAnchorRecordError("Anchor record is missing an id")

        content_id = data.get("name")
        if not isinstance(content_id, str) or not content_id:
            raise InvalidAnchorRecordError(
                f"Anchor {anchor_id} is missing a content name",
                details={"anchor_id": anchor_id}
            )

        if "transform" not in data:
            raise InvalidAnchorRecordError(
                f"Anchor {anchor_id} is missing a transform",
                details={"anchor_id": anchor_id}
            )
        transform = transform_from_column_major(data["transform"])

        latitude = data.get("latitude")
        longitude = data.get("longitude")
        if latitude is None or longitude is None:
            raise LocationUnavailableError(
                f"Anchor {anchor_id} has no geolocation",
                details={"anchor_id": anchor_id}
            )

        try:
            location = GeoLocation(
                latitude=float(latitude),
                longitude=float(longitude),
                altitude=float(data.get("altitude", 0.0)),
                horizontal_accuracy=float(data.get("horizontalAccuracy", -1.0)),
                vertical_accuracy=float(data.get("verticalAccuracy", -1.0)),
                timestamp=float(data.get("timestamp", 0.0)),
            )
        except (TypeError, ValueError) as e:
            raise LocationUnavailableError(
                f"Anchor {anchor_id} has malformed geolocation: {e}",
                details={"anchor_id": anchor_id}
            )

        scale = _optional_vector(data.get("scale"), 3, "scale", anchor_id)
        orientation = _optional_vector(data.get("orientation"), 4, "orientation", anchor_id)

        return cls(
            id=anchor_id,
            transform=transform,
            content=AnchorContent(content_id=content_id, scale=scale, orientation=orientation),
            location=location,
            plane_geometry=data.get("planeGeometry"),
            user_id=data.get("userId"),
            is_public=bool(data.get("isPublic", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Encode back to the storage document format"""
        data: Dict[str, Any] = {
            "id": self.id,
            "transform": transform_to_column_major(self.transform),
            "name": self.content.content_id,
            "isPublic": self.is_public,
            **self.location.to_dict(),
        }
        if self.content.scale is not None:
            data["scale"] = list(self.content.scale)
        if self.content.orientation is not None:
            data["orientation"] = list(self.content.orientation)
        if self.plane_geometry is not None:
            data["planeGeometry"] = self.plane_geometry
        if self.user_id is not None:
            data["userId"] = self.user_id
        return data


def _optional_vector(value: Any, length: int, name: str, anchor_id: str) -> Optional[Tuple[float, ...]]:
    if value is None:
        return None
    try:
        vector = tuple(float(v) for v in value)
    except (TypeError, ValueError):
        raise InvalidAnchorRecordError(
            f"Anchor {anchor_id} has a non-numeric {name}",
            details={"anchor_id": anchor_id}
        )
    if len(vector) != length or not all(math.isfinite(v) for v in vector):
        raise InvalidAnchorRecordError(
            f"Anchor {anchor_id} {name} must have {length} finite values",
            details={"anchor_id": anchor_id}
        )
    return vector


@dataclass(frozen=True, eq=False)
class PlacementCandidate:
    """Best surface intersection found near a saved point"""
    transform: np.ndarray
    confidence: float
    source: str  # raycast, mesh
    surface_id: Optional[str] = None

    @property
    def position(self) -> np.ndarray:
        return translation_of(self.transform)


@dataclass(frozen=True)
class PlacementAttempt:
    """Search result scored against the saved point"""
    candidate: PlacementCandidate
    confidence: float


class PendingState(str, Enum):
    """Retry state of a pending placement"""
    QUEUED = "queued"
    ATTEMPTING = "attempting"


@dataclass
class PendingPlacement:
    """Saved record waiting for a confident placement"""
    record: SavedAnchorRecord
    last_attempt_timestamp: Optional[float] = None
    attempts_so_far: int = 0
    best_confidence_seen: float = 0.0
    state: PendingState = PendingState.QUEUED

    @property
    def anchor_id(self) -> str:
        return self.record.id

    def record_attempt(self, confidence: float, now: float) -> None:
        self.attempts_so_far += 1
        self.last_attempt_timestamp = now
        self.best_confidence_seen = max(self.best_confidence_seen, confidence)

    def is_due(self, now: float, interval: float) -> bool:
        if self.state != PendingState.QUEUED:
            return False
        if self.last_attempt_timestamp is None:
            return True
        return now - self.last_attempt_timestamp >= interval

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "content_id": self.record.content_id,
            "attempts": self.attempts_so_far,
            "best_confidence": self.best_confidence_seen,
            "last_attempt": self.last_attempt_timestamp,
            "state": self.state.value,
        }


@dataclass(eq=False)
class PlacedAnchor:
    """Committed, visible anchor entity"""
    anchor_id: str
    transform: np.ndarray
    content: AnchorContent
    confidence: float
    placed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def position(self) -> np.ndarray:
        return translation_of(self.transform)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "content_id": self.content.content_id,
            "transform": transform_to_column_major(self.transform),
            "scale": list(self.content.scale) if self.content.scale else None,
            "orientation": list(self.content.orientation) if self.content.orientation else None,
            "confidence": self.confidence,
            "placed_at": self.placed_at.isoformat(),
        }
