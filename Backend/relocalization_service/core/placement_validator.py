"""
Placement Validation
Scores a candidate surface intersection against the saved point
"""

import logging
from typing import Sequence

import numpy as np

from .geometry import translation_of

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTANCE_THRESHOLD = 0.7
DEFAULT_MAX_DISTANCE = 3.0
DEFAULT_MAX_VERTICAL_DIFFERENCE = 0.5

DISTANCE_WEIGHT = 0.7
VERTICAL_WEIGHT = 0.3


class PlacementValidator:
    """
    Single confidence value for a candidate placement

    The acceptance threshold trades false placements (an anchor stuck to an
    unrelated surface) against excessive deferral.
    """

    def __init__(self, max_distance: float = DEFAULT_MAX_DISTANCE,
                 max_vertical_difference: float = DEFAULT_MAX_VERTICAL_DIFFERENCE,
                 acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD):
        self.max_distance = max_distance
        self.max_vertical_difference = max_vertical_difference
        self.acceptance_threshold = acceptance_threshold

    def validate(self, candidate_transform: np.ndarray, target_point: Sequence[float]) -> float:
        """Confidence in [0, 1]; 0 for hard rejects"""
        candidate = translation_of(candidate_transform)
        target = np.asarray(target_point, dtype=float)

        offset_distance = float(np.linalg.norm(candidate - target))
        vertical_difference = float(abs(candidate[1] - target[1]))

        if offset_distance > self.max_distance:
            logger.debug(f"Rejected candidate {offset_distance:.3f} from target")
            return 0.0
        if vertical_difference > self.max_vertical_difference:
            logger.debug(f"Rejected candidate with height difference {vertical_difference:.3f}")
            return 0.0

        confidence = (DISTANCE_WEIGHT * (1.0 - offset_distance / self.max_distance) +
                      VERTICAL_WEIGHT * (1.0 - vertical_difference / self.max_vertical_difference))
        return float(min(1.0, max(0.0, confidence)))

    def is_acceptable(self, confidence: float) -> bool:
        return confidence >= self.acceptance_threshold
