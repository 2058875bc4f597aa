"""
Placement Search
Multi-ray, multi-offset sweep of the sensed geometry around a saved point
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .geometry import SensedFrame, make_transform, rotation_aligned_to_normal, distance
from .models import PlacementCandidate

logger = logging.getLogger(__name__)

DEFAULT_MAX_DISTANCE = 3.0
DEFAULT_MESH_SNAP_DISTANCE = 0.1
# Ray origins sit this far above the saved point, tried in this order
DEFAULT_VERTICAL_OFFSETS = (0.3, 0.1, 0.5)


@dataclass(frozen=True, eq=False)
class SearchRay:
    """A weighted search direction"""
    label: str
    direction: np.ndarray
    weight: float


def _tilted(angle_degrees: float, dx: float, dz: float) -> np.ndarray:
    angle = math.radians(angle_degrees)
    return np.array([math.sin(angle) * dx, -math.cos(angle), math.sin(angle) * dz])


def build_search_rays() -> Tuple[SearchRay, ...]:
    """Fixed ray list: straight down, four at 25 degrees, four at 45 degrees"""
    cardinal = (('+x', 1.0, 0.0), ('-x', -1.0, 0.0), ('+z', 0.0, 1.0), ('-z', 0.0, -1.0))

    rays = [SearchRay('down', np.array([0.0, -1.0, 0.0]), 1.0)]
    rays += [SearchRay(f'25{name}', _tilted(25.0, dx, dz), 0.8) for name, dx, dz in cardinal]
    rays += [SearchRay(f'45{name}', _tilted(45.0, dx, dz), 0.6) for name, dx, dz in cardinal]
    return tuple(rays)


SEARCH_RAYS = build_search_rays()


class PlacementSearchEngine:
    """
    Finds the best surface near a saved point

    A single straight-down ray frequently misses thin or angled surfaces, so
    every ray is cast from every vertical offset and the best weighted hit is
    kept. The sweep is bounded by the fixed ray and offset lists.
    """

    def __init__(self, max_distance: float = DEFAULT_MAX_DISTANCE,
                 vertical_offsets: Sequence[float] = DEFAULT_VERTICAL_OFFSETS,
                 mesh_snap_distance: float = DEFAULT_MESH_SNAP_DISTANCE,
                 rays: Sequence[SearchRay] = SEARCH_RAYS):
        self.max_distance = max_distance
        self.vertical_offsets = tuple(vertical_offsets)
        self.mesh_snap_distance = mesh_snap_distance
        self.rays = tuple(rays)

        self.stats = {
            'searches': 0,
            'raycast_hits': 0,
            'mesh_hits': 0,
            'misses': 0
        }

    def search(self, near_point: Sequence[float], frame: SensedFrame) -> Optional[PlacementCandidate]:
        """
        Best candidate surface near a point

        Args:
            near_point: saved anchor position
            frame: snapshot of the sensed environment

        Returns:
            The highest-confidence candidate, or None when nothing is hit
        """
        near_point = np.asarray(near_point, dtype=float)
        self.stats['searches'] += 1

        best = self._search_raycasts(near_point, frame)

        if frame.has_mesh:
            mesh_candidate = self._search_mesh(near_point, frame)
            if mesh_candidate is not None and (best is None or mesh_candidate.confidence > best.confidence):
                best = mesh_candidate

        if best is None:
            self.stats['misses'] += 1
            logger.debug(f"No surface found near {near_point.tolist()}")
        elif best.source == 'mesh':
            self.stats['mesh_hits'] += 1
        else:
            self.stats['raycast_hits'] += 1

        return best

    def _search_raycasts(self, near_point: np.ndarray, frame: SensedFrame) -> Optional[PlacementCandidate]:
        best: Optional[PlacementCandidate] = None

        for offset in self.vertical_offsets:
            origin = near_point + np.array([0.0, offset, 0.0])

            for ray in self.rays:
                hit = frame.raycast(origin, ray.direction)
                if hit is None:
                    continue

                hit_distance = distance(hit.point, near_point)
                confidence = ray.weight * max(0.0, 1.0 - hit_distance / self.max_distance)

                logger.debug(f"Ray {ray.label} from +{offset:.2f} hit {hit.surface_id} "
                             f"at {hit_distance:.3f} (confidence {confidence:.3f})")

                # Strict comparison keeps the first hit on ties
                if best is None or confidence > best.confidence:
                    best = PlacementCandidate(
                        transform=hit.transform,
                        confidence=confidence,
                        source='raycast',
                        surface_id=hit.surface_id
                    )

        return best

    def _search_mesh(self, near_point: np.ndarray, frame: SensedFrame) -> Optional[PlacementCandidate]:
        chunks = frame.meshes_by_distance(near_point)
        if not chunks:
            return None

        nearest = None
        for chunk in chunks:
            result = chunk.nearest_vertex(near_point)
            if result is None:
                continue
            if nearest is None or result[2] < nearest[2]:
                nearest = (chunk.identifier, *result)

        if nearest is None:
            return None

        chunk_id, vertex, normal, vertex_distance = nearest
        confidence = max(0.0, 1.0 - vertex_distance / self.mesh_snap_distance)
        if confidence <= 0.0:
            return None

        return PlacementCandidate(
            transform=make_transform(rotation_aligned_to_normal(normal), vertex),
            confidence=confidence,
            source='mesh',
            surface_id=chunk_id
        )
