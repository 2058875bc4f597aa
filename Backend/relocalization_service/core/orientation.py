"""
Orientation Reconciliation
Keeps the saved orientation on the newly found surface
"""

import logging

import numpy as np

from .geometry import make_transform, quaternion_from_transform, rotation_from_quaternion, translation_of

logger = logging.getLogger(__name__)

DEFAULT_HEIGHT_TOLERANCE = 0.3


class OrientationReconciler:
    """
    Final transform for an accepted candidate

    The orientation of a flat, sticker-like object is a deliberate user
    choice, so the original rotation always survives. Translation follows the
    new surface unless the height change is small enough to be noise.
    """

    def __init__(self, height_tolerance: float = DEFAULT_HEIGHT_TOLERANCE):
        self.height_tolerance = height_tolerance

    def reconcile(self, candidate_transform: np.ndarray, original_transform: np.ndarray) -> np.ndarray:
        rotation = rotation_from_quaternion(quaternion_from_transform(original_transform))

        original_position = translation_of(original_transform)
        position = translation_of(candidate_transform)

        height_difference = abs(position[1] - original_position[1])
        if height_difference <= self.height_tolerance:
            position[1] = original_position[1]
        else:
            logger.debug(f"Height changed by {height_difference:.3f}, following the new surface")

        return make_transform(rotation, position)
