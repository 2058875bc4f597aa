"""
Relocalization errors
Unrecoverable input failures reported once and dropped
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ErrorPayload:
    """Structured error payload returned to API clients and listeners"""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error_code": self.code,
            "error": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class RelocalizationError(Exception):
    """Base exception for relocalization failures"""

    code: str = "RELOCALIZATION_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return ErrorPayload(self.code, self.message, self.details or None).to_dict()


class InvalidAnchorRecordError(RelocalizationError):
    code = "INVALID_ANCHOR_RECORD"


class CorruptTransformError(InvalidAnchorRecordError):
    code = "CORRUPT_TRANSFORM"


class LocationUnavailableError(RelocalizationError):
    code = "LOCATION_UNAVAILABLE"

    def __init__(self, message: str = "Geolocation is not available", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class ContentAssetMissingError(RelocalizationError):
    code = "CONTENT_ASSET_MISSING"


class AnchorLoadError(RelocalizationError):
    code = "ANCHOR_LOAD_FAILED"
