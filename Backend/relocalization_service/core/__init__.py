"""
Core relocalization components for the anchor relocalization service
"""

from .errors import (
    RelocalizationError,
    InvalidAnchorRecordError,
    CorruptTransformError,
    LocationUnavailableError,
    ContentAssetMissingError,
    AnchorLoadError,
)
from .geometry import MeshChunk, SensedFrame, SensedPlane
from .models import GeoLocation, AnchorContent, SavedAnchorRecord, PendingPlacement, PlacedAnchor
from .plane_tracker import PlaneConfidenceTracker
from .mapping_state import EnvironmentMappingStateMachine, MappingPhase, MappingState
from .placement_search import PlacementSearchEngine
from .placement_validator import PlacementValidator
from .orientation import OrientationReconciler
from .retry_queue import PersistenceRetryQueue
from .entity_store import AnchorEntityStore
from .events import RelocalizationListener
from .relocalization_manager import AnchorRelocalizationManager

__all__ = [
    'RelocalizationError', 'InvalidAnchorRecordError', 'CorruptTransformError',
    'LocationUnavailableError', 'ContentAssetMissingError', 'AnchorLoadError',
    'MeshChunk', 'SensedFrame', 'SensedPlane',
    'GeoLocation', 'AnchorContent', 'SavedAnchorRecord', 'PendingPlacement', 'PlacedAnchor',
    'PlaneConfidenceTracker', 'EnvironmentMappingStateMachine', 'MappingPhase', 'MappingState',
    'PlacementSearchEngine', 'PlacementValidator', 'OrientationReconciler',
    'PersistenceRetryQueue', 'AnchorEntityStore', 'RelocalizationListener',
    'AnchorRelocalizationManager',
]
