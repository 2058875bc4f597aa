"""
Relocalization Service API Routes
Sensor updates, saved anchor submission and session control
"""

import logging
from typing import Any, Dict, List, Optional

import numpy as np
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from ..core.errors import RelocalizationError
from ..core.events import RelocalizationListener
from ..core.geometry import MeshChunk, SensedPlane, make_transform, rotation_from_quaternion
from ..core.relocalization_manager import AnchorRelocalizationManager

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["Relocalization"])


# Pydantic models
class SurfaceRequest(BaseModel):
    """Detected plane added or updated by the sensing subsystem"""
    identifier: str = Field(..., description="Surface identifier")
    center: List[float] = Field(..., description="Plane center [x, y, z]")
    extent_x: float = Field(..., gt=0, description="Side length along local x in meters")
    extent_z: float = Field(..., gt=0, description="Side length along local z in meters")
    rotation: Optional[List[float]] = Field(None, description="Quaternion rotation [x, y, z, w]")

    @field_validator('center')
    @classmethod
    def validate_center(cls, v):
        if len(v) != 3:
            raise ValueError('Center must have exactly 3 coordinates [x, y, z]')
        return v

    @field_validator('rotation')
    @classmethod
    def validate_rotation(cls, v):
        if v is not None and len(v) != 4:
            raise ValueError('Rotation must be quaternion [x, y, z, w]')
        return v


class MeshRequest(BaseModel):
    """Dense mesh chunk from a depth-assisted sensing mode"""
    identifier: str = Field(..., description="Mesh chunk identifier")
    origin: List[float] = Field(default=[0.0, 0.0, 0.0], description="Chunk origin [x, y, z]")
    rotation: Optional[List[float]] = Field(None, description="Quaternion rotation [x, y, z, w]")
    vertices: List[List[float]] = Field(..., description="Chunk-local vertices")
    normals: List[List[float]] = Field(..., description="Chunk-local vertex normals")

    @field_validator('origin')
    @classmethod
    def validate_origin(cls, v):
        if len(v) != 3:
            raise ValueError('Origin must have exactly 3 coordinates [x, y, z]')
        return v


class TrackingRequest(BaseModel):
    ready: bool = Field(..., description="Whether world tracking is healthy")


class SubmitAnchorsRequest(BaseModel):
    """Saved anchor records in the storage document format"""
    records: List[Dict[str, Any]] = Field(..., description="Anchor documents")


class SubmitAnchorsResponse(BaseModel):
    success: bool
    placed: int
    queued: int
    rejected: int
    skipped: int
    errors: List[Dict[str, Any]] = []


class MappingStateResponse(BaseModel):
    phase: str
    progress: float


class PlacedAnchorResponse(BaseModel):
    anchor_id: str
    content_id: str
    transform: List[float]
    scale: Optional[List[float]] = None
    orientation: Optional[List[float]] = None
    confidence: float
    placed_at: str


class PendingPlacementResponse(BaseModel):
    anchor_id: str
    content_id: str
    attempts: int
    best_confidence: float
    last_attempt: Optional[float] = None
    state: str


class _ErrorCollector(RelocalizationListener):
    """Captures errors reported while handling a single request"""

    def __init__(self):
        self.errors: List[Dict[str, Any]] = []

    def on_error(self, error: RelocalizationError) -> None:
        self.errors.append(error.to_payload())


# Global manager reference (injected from main.py)
relocalization_manager: Optional[AnchorRelocalizationManager] = None


def set_manager(manager: Optional[AnchorRelocalizationManager]):
    """Set the manager used by the routes"""
    global relocalization_manager
    relocalization_manager = manager


def get_manager() -> AnchorRelocalizationManager:
    """Get relocalization manager dependency"""
    if not relocalization_manager:
        raise HTTPException(status_code=503, detail="Relocalization manager not available")
    return relocalization_manager


def _pose(position: List[float], rotation: Optional[List[float]]) -> np.ndarray:
    try:
        matrix = rotation_from_quaternion(rotation) if rotation is not None else np.eye(3)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid rotation: {e}")
    return make_transform(matrix, position)


# Sensor updates

@router.post("/surfaces", response_model=MappingStateResponse)
async def update_surface(request: SurfaceRequest, manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Add or update a detected surface"""
    transform = _pose(request.center, request.rotation)
    plane = SensedPlane(request.identifier, transform, request.extent_x, request.extent_z)

    state = manager.update_surface(plane)
    return MappingStateResponse(**state.to_dict())


@router.delete("/surfaces/{surface_id}", response_model=MappingStateResponse)
async def remove_surface(surface_id: str, manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Remove a surface that is no longer tracked"""
    state = manager.remove_surface(surface_id)
    return MappingStateResponse(**state.to_dict())


@router.put("/mesh")
async def update_mesh(request: MeshRequest, manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Add or update a dense mesh chunk"""
    transform = _pose(request.origin, request.rotation)
    try:
        chunk = MeshChunk(
            identifier=request.identifier,
            transform=transform,
            vertices=np.asarray(request.vertices, dtype=float).reshape(-1, 3),
            normals=np.asarray(request.normals, dtype=float).reshape(-1, 3)
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid mesh: {e}")

    manager.update_mesh(chunk)
    return {
        "success": True,
        "mesh_id": chunk.identifier,
        "precision_mode": manager.precision_mode,
        "mapping_state": manager.mapping.state.to_dict()
    }


@router.post("/tracking")
async def set_tracking(request: TrackingRequest, manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Report world tracking health"""
    manager.set_tracking_ready(request.ready)
    return {"success": True, "tracking_ready": request.ready, "ready_for_placement": manager.is_ready()}


# Anchors

@router.post("/anchors", response_model=SubmitAnchorsResponse)
async def submit_anchors(request: SubmitAnchorsRequest, manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Submit saved anchor records for relocalization"""
    collector = _ErrorCollector()
    manager.add_listener(collector)
    try:
        summary = manager.submit_records(request.records)
    except Exception as e:
        logger.error(f"Failed to submit anchors: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to submit anchors: {e}")
    finally:
        manager.remove_listener(collector)

    return SubmitAnchorsResponse(success=True, errors=collector.errors, **summary)


@router.get("/anchors", response_model=List[PlacedAnchorResponse])
async def list_anchors(manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Anchors placed in the current session"""
    return [PlacedAnchorResponse(**placed.to_dict()) for placed in manager.entity_store.placed()]


@router.delete("/anchors/{anchor_id}")
async def delete_anchor(anchor_id: str, manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Remove a placed or pending anchor"""
    if not manager.clear_anchor(anchor_id):
        raise HTTPException(status_code=404, detail="Anchor not found")
    return {"success": True, "message": f"Anchor {anchor_id} removed"}


@router.get("/pending", response_model=List[PendingPlacementResponse])
async def list_pending(manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Anchors waiting for a confident placement"""
    return [PendingPlacementResponse(**pending.to_dict()) for pending in manager.retry_queue.pending()]


# Session

@router.get("/state")
async def get_state(manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Mapping state and session summary"""
    return manager.get_status()


@router.post("/session/reset")
async def reset_session(manager: AnchorRelocalizationManager = Depends(get_manager)):
    """Drop all tracked, pending and placed state"""
    manager.reset()
    return {"success": True, "mapping_state": manager.mapping.state.to_dict()}
