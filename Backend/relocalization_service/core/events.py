"""
Relocalization notifications
Listener interface and in-order dispatch
"""

import logging
import threading
from typing import List

from .errors import RelocalizationError
from .mapping_state import MappingState
from .models import PendingPlacement, PlacedAnchor

logger = logging.getLogger(__name__)


class RelocalizationListener:
    """Override the notifications you care about"""

    def on_mapping_state_changed(self, state: MappingState) -> None:
        pass

    def on_anchor_placed(self, placed: PlacedAnchor) -> None:
        pass

    def on_error(self, error: RelocalizationError) -> None:
        pass

    def on_loading_state_changed(self, is_loading: bool) -> None:
        pass

    def on_placement_abandoned(self, pending: PendingPlacement) -> None:
        pass


class EventDispatcher(RelocalizationListener):
    """
    Fans notifications out to registered listeners

    Emission is serialized so listeners observe transitions in the order
    they happened. A failing listener is logged and does not stop delivery
    to the others.
    """

    def __init__(self):
        self._listeners: List[RelocalizationListener] = []
        self._lock = threading.RLock()

    def add_listener(self, listener: RelocalizationListener):
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: RelocalizationListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, method: str, *args):
        with self._lock:
            for listener in list(self._listeners):
                try:
                    getattr(listener, method)(*args)
                except Exception as e:
                    logger.error(f"Listener {type(listener).__name__}.{method} failed: {e}")

    def on_mapping_state_changed(self, state: MappingState) -> None:
        self._emit('on_mapping_state_changed', state)

    def on_anchor_placed(self, placed: PlacedAnchor) -> None:
        self._emit('on_anchor_placed', placed)

    def on_error(self, error: RelocalizationError) -> None:
        self._emit('on_error', error)

    def on_loading_state_changed(self, is_loading: bool) -> None:
        self._emit('on_loading_state_changed', is_loading)

    def on_placement_abandoned(self, pending: PendingPlacement) -> None:
        self._emit('on_placement_abandoned', pending)
