"""
Plane Confidence Tracking
Running quality score per detected surface
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Quality score weights and saturation points
AREA_WEIGHT = 0.4
ORIENTATION_WEIGHT = 0.3
STABILITY_WEIGHT = 0.2
TIME_SEEN_WEIGHT = 0.1

AREA_SATURATION = 0.3       # square meters
STABILITY_SATURATION = 10   # consecutive updates
TIME_SEEN_SATURATION = 3.0  # seconds


@dataclass
class SurfaceObservation:
    """Tracked state of one detected surface"""
    surface_id: str
    area: float
    orientation_alignment: float
    stability: int = 1
    time_seen: float = 0.0
    first_seen: float = 0.0

    @property
    def quality_score(self) -> float:
        """Weighted quality in [0, 1]"""
        return surface_quality(self.area, self.orientation_alignment, self.stability, self.time_seen)

    def to_dict(self) -> Dict[str, float]:
        data = asdict(self)
        data['quality_score'] = self.quality_score
        return data


def surface_quality(area: float, orientation_alignment: float, stability: int, time_seen: float) -> float:
    """
    Quality of a surface observation

    Each term saturates, so the score never exceeds the sum of the weights.
    """
    area_term = min(max(area, 0.0) / AREA_SATURATION, 1.0)
    orientation_term = min(max(orientation_alignment, 0.0), 1.0)
    stability_term = min(max(stability, 0), STABILITY_SATURATION) / STABILITY_SATURATION
    time_term = min(max(time_seen, 0.0), TIME_SEEN_SATURATION) / TIME_SEEN_SATURATION

    return (AREA_WEIGHT * area_term +
            ORIENTATION_WEIGHT * orientation_term +
            STABILITY_WEIGHT * stability_term +
            TIME_SEEN_WEIGHT * time_term)


class PlaneConfidenceTracker:
    """
    Maintains a quality score per detected surface

    Mutations never trigger placement; callers re-evaluate the mapping
    state after each call.
    """

    def __init__(self):
        self._observations: Dict[str, SurfaceObservation] = {}

    def observe(self, surface_id: str, area: float, orientation_alignment: float, now: float) -> SurfaceObservation:
        """Create or update the observation for a surface"""
        observation = self._observations.get(surface_id)

        if observation is None:
            observation = SurfaceObservation(
                surface_id=surface_id,
                area=area,
                orientation_alignment=orientation_alignment,
                stability=1,
                time_seen=0.0,
                first_seen=now
            )
            self._observations[surface_id] = observation
            logger.debug(f"Tracking new surface {surface_id} ({area:.2f}m²)")
        else:
            observation.area = area
            observation.orientation_alignment = orientation_alignment
            observation.stability += 1
            observation.time_seen = max(0.0, now - observation.first_seen)

        return observation

    def remove(self, surface_id: str) -> bool:
        """Stop tracking a surface"""
        removed = self._observations.pop(surface_id, None)
        if removed is not None:
            logger.debug(f"Stopped tracking surface {surface_id}")
        return removed is not None

    def clear(self):
        self._observations.clear()

    def total_tracked_area(self) -> float:
        return float(sum(o.area for o in self._observations.values()))

    def tracked_count(self) -> int:
        return len(self._observations)

    def get(self, surface_id: str) -> Optional[SurfaceObservation]:
        return self._observations.get(surface_id)

    def quality(self, surface_id: str) -> float:
        observation = self._observations.get(surface_id)
        return observation.quality_score if observation else 0.0

    def average_quality(self) -> float:
        if not self._observations:
            return 0.0
        return sum(o.quality_score for o in self._observations.values()) / len(self._observations)

    def observations(self) -> List[SurfaceObservation]:
        """Snapshot of current observations"""
        return [SurfaceObservation(**asdict(o)) for o in self._observations.values()]
