"""
Sensed geometry and rigid transform helpers
Snapshot model of the live planes and mesh chunks of a sensing session
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .errors import CorruptTransformError

logger = logging.getLogger(__name__)

UP = np.array([0.0, 1.0, 0.0])

_EPSILON = 1e-9
_ORTHONORMAL_TOLERANCE = 1e-3


def make_transform(rotation: np.ndarray, translation: Sequence[float]) -> np.ndarray:
    """Build a 4x4 rigid transform from a 3x3 rotation and a translation"""
    T = np.eye(4)
    T[:3, :3] = rotation
    T[:3, 3] = np.asarray(translation, dtype=float)
    return T


def translation_of(transform: np.ndarray) -> np.ndarray:
    """Translation column of a 4x4 transform"""
    return np.array(transform[:3, 3], dtype=float)


def quaternion_from_transform(transform: np.ndarray) -> np.ndarray:
    """Rotation part of a transform as an [x, y, z, w] quaternion"""
    return Rotation.from_matrix(transform[:3, :3]).as_quat()


def rotation_from_quaternion(quaternion: Sequence[float]) -> np.ndarray:
    """3x3 rotation matrix from an [x, y, z, w] quaternion"""
    return Rotation.from_quat(np.asarray(quaternion, dtype=float)).as_matrix()


def transform_from_column_major(values: Sequence[float]) -> np.ndarray:
    """
    Decode the storage format: 16 floats, column-major

    Raises:
        CorruptTransformError: if the values do not form a rigid transform
    """
    try:
        flat = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise CorruptTransformError(f"Transform values are not numeric: {e}")

    if flat.shape != (16,):
        raise CorruptTransformError(
            f"Transform must have 16 values, got {flat.size}",
            details={"count": int(flat.size)}
        )

    # Each group of four values is one column
    transform = flat.reshape(4, 4).T
    validate_rigid_transform(transform)
    return transform


def transform_to_column_major(transform: np.ndarray) -> List[float]:
    """Encode a 4x4 transform as 16 floats, column-major"""
    return [float(v) for v in np.asarray(transform, dtype=float).T.reshape(-1)]


def validate_rigid_transform(transform: np.ndarray) -> None:
    """Reject transforms that are not finite rotation + translation matrices"""
    if transform.shape != (4, 4):
        raise CorruptTransformError(f"Transform must be 4x4, got {transform.shape}")

    if not np.all(np.isfinite(transform)):
        raise CorruptTransformError("Transform contains non-finite values")

    if not np.allclose(transform[3], [0.0, 0.0, 0.0, 1.0], atol=_ORTHONORMAL_TOLERANCE):
        raise CorruptTransformError("Transform bottom row must be [0, 0, 0, 1]")

    rotation = transform[:3, :3]
    if not np.allclose(rotation.T @ rotation, np.eye(3), atol=_ORTHONORMAL_TOLERANCE):
        raise CorruptTransformError("Transform rotation is not orthonormal")

    if abs(np.linalg.det(rotation) - 1.0) > _ORTHONORMAL_TOLERANCE:
        raise CorruptTransformError("Transform rotation is a reflection")


def rotation_aligned_to_normal(normal: Sequence[float]) -> np.ndarray:
    """Rotation whose local y axis points along the given surface normal"""
    y_axis = np.asarray(normal, dtype=float)
    norm = np.linalg.norm(y_axis)
    if norm < _EPSILON:
        return np.eye(3)
    y_axis = y_axis / norm

    # Pick the world axis least parallel to the normal as the reference
    reference = np.array([0.0, 0.0, 1.0]) if abs(y_axis[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
    x_axis = np.cross(y_axis, reference)
    x_axis /= np.linalg.norm(x_axis)
    z_axis = np.cross(x_axis, y_axis)

    return np.column_stack([x_axis, y_axis, z_axis])


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two points"""
    return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))


@dataclass(frozen=True, eq=False)
class RaycastHit:
    """A ray intersection with a sensed plane"""
    point: np.ndarray
    transform: np.ndarray
    surface_id: str
    ray_distance: float


@dataclass(frozen=True, eq=False)
class SensedPlane:
    """
    A detected flat surface

    The plane lies in the local x/z plane of ``transform``; its normal is the
    local y axis and ``extent_x`` / ``extent_z`` are the full side lengths.
    """
    identifier: str
    transform: np.ndarray
    extent_x: float
    extent_z: float

    @classmethod
    def from_pose(cls, identifier: str, center: Sequence[float], extent_x: float, extent_z: float,
                  rotation: Optional[Sequence[float]] = None) -> 'SensedPlane':
        """Create a plane from a center point and an optional [x, y, z, w] orientation"""
        matrix = rotation_from_quaternion(rotation) if rotation is not None else np.eye(3)
        return cls(identifier, make_transform(matrix, center), float(extent_x), float(extent_z))

    @property
    def center(self) -> np.ndarray:
        return translation_of(self.transform)

    @property
    def normal(self) -> np.ndarray:
        return np.array(self.transform[:3, 1], dtype=float)

    @property
    def area(self) -> float:
        return float(self.extent_x * self.extent_z)

    @property
    def up_alignment(self) -> float:
        """How closely the plane faces up (1.0 floor/table, 0.0 wall)"""
        return float(min(1.0, abs(np.dot(self.normal, UP))))

    def intersect(self, origin: np.ndarray, direction: np.ndarray) -> Optional[RaycastHit]:
        """Intersect a ray with the bounded plane"""
        rotation = self.transform[:3, :3]
        local_origin = rotation.T @ (origin - self.center)
        local_direction = rotation.T @ direction

        if abs(local_direction[1]) < _EPSILON:
            return None

        t = -local_origin[1] / local_direction[1]
        if t < 0:
            return None

        local_hit = local_origin + t * local_direction
        if abs(local_hit[0]) > self.extent_x / 2.0 + _EPSILON:
            return None
        if abs(local_hit[2]) > self.extent_z / 2.0 + _EPSILON:
            return None

        point = origin + t * direction
        return RaycastHit(
            point=point,
            transform=make_transform(rotation, point),
            surface_id=self.identifier,
            ray_distance=float(t)
        )


@dataclass(frozen=True, eq=False)
class MeshChunk:
    """Dense mesh geometry reported by a depth-assisted sensing mode"""
    identifier: str
    transform: np.ndarray
    vertices: np.ndarray  # (N, 3) in chunk-local coordinates
    normals: np.ndarray   # (N, 3) in chunk-local coordinates

    def __post_init__(self):
        if self.vertices.ndim != 2 or self.vertices.shape[1] != 3:
            raise ValueError("Mesh vertices must be an (N, 3) array")
        if self.normals.shape != self.vertices.shape:
            raise ValueError("Mesh normals must match vertices")

    @property
    def origin(self) -> np.ndarray:
        return translation_of(self.transform)

    def nearest_vertex(self, point: Sequence[float]) -> Optional[Tuple[np.ndarray, np.ndarray, float]]:
        """Nearest vertex to a world point as (world vertex, world normal, distance)"""
        if len(self.vertices) == 0:
            return None

        rotation = self.transform[:3, :3]
        local_point = rotation.T @ (np.asarray(point, dtype=float) - self.origin)

        distances = np.linalg.norm(self.vertices - local_point, axis=1)
        index = int(np.argmin(distances))

        world_vertex = rotation @ self.vertices[index] + self.origin
        world_normal = rotation @ self.normals[index]
        return world_vertex, world_normal, float(distances[index])


@dataclass(frozen=True)
class SensedFrame:
    """Point-in-time snapshot of the sensed environment"""
    planes: Tuple[SensedPlane, ...] = ()
    meshes: Tuple[MeshChunk, ...] = ()
    timestamp: float = 0.0

    @property
    def has_mesh(self) -> bool:
        return len(self.meshes) > 0

    def raycast(self, origin: Sequence[float], direction: Sequence[float]) -> Optional[RaycastHit]:
        """Nearest plane hit along a ray, if any"""
        origin = np.asarray(origin, dtype=float)
        direction = np.asarray(direction, dtype=float)

        nearest: Optional[RaycastHit] = None
        for plane in self.planes:
            hit = plane.intersect(origin, direction)
            if hit is not None and (nearest is None or hit.ray_distance < nearest.ray_distance):
                nearest = hit
        return nearest

    def meshes_by_distance(self, point: Sequence[float]) -> List[MeshChunk]:
        """Mesh chunks ordered by origin distance to a point"""
        return sorted(self.meshes, key=lambda chunk: distance(chunk.origin, point))
