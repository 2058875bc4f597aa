"""
Anchor Entity Store
Deduplicates and owns committed anchor entities
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Set

import numpy as np

from .models import AnchorContent, PlacedAnchor

logger = logging.getLogger(__name__)


class AnchorEntityStore:
    """
    Committed anchors keyed by record id

    Both the immediate placement path and the retry path commit through
    ``commit``, which is the only dedup check. Mutate from the scene-owning
    context only.
    """

    def __init__(self):
        self._entities: Dict[str, PlacedAnchor] = OrderedDict()

        self.stats = {
            'total_committed': 0,
            'duplicate_commits': 0,
            'total_removed': 0
        }

    def commit(self, anchor_id: str, transform: np.ndarray, content: AnchorContent,
               confidence: float = 1.0) -> Optional[PlacedAnchor]:
        """
        Create the placed entity for an id

        Returns:
            The new PlacedAnchor, or None if the id is already placed
        """
        if anchor_id in self._entities:
            self.stats['duplicate_commits'] += 1
            logger.warning(f"⚠️ Anchor {anchor_id} already loaded, skipping")
            return None

        placed = PlacedAnchor(
            anchor_id=anchor_id,
            transform=np.array(transform, dtype=float),
            content=content,
            confidence=confidence
        )
        self._entities[anchor_id] = placed
        self.stats['total_committed'] += 1

        logger.info(f"✅ Placed anchor {anchor_id} ({content.content_id}) with confidence {confidence:.2f}")
        return placed

    def remove(self, anchor_id: str) -> bool:
        placed = self._entities.pop(anchor_id, None)
        if placed is None:
            return False

        self.stats['total_removed'] += 1
        logger.info(f"🗑️ Removed anchor: {anchor_id}")
        return True

    def clear(self) -> int:
        count = len(self._entities)
        self._entities.clear()
        self.stats['total_removed'] += count
        logger.info(f"🧹 Cleared {count} anchors")
        return count

    def contains(self, anchor_id: str) -> bool:
        return anchor_id in self._entities

    def get(self, anchor_id: str) -> Optional[PlacedAnchor]:
        return self._entities.get(anchor_id)

    def placed(self) -> List[PlacedAnchor]:
        return list(self._entities.values())

    def loaded_ids(self) -> Set[str]:
        return set(self._entities)

    def __len__(self) -> int:
        return len(self._entities)
