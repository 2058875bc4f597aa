"""
Environment Mapping State
Aggregates tracked surfaces into a coarse readiness signal
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Any, Optional

logger = logging.getLogger(__name__)


class MappingPhase(str, Enum):
    """Coarse environment readiness"""
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    READY = "ready"
    INSUFFICIENT_FEATURES = "insufficient_features"


@dataclass(frozen=True)
class MappingState:
    """Environment mapping state; progress is only meaningful while scanning"""
    phase: MappingPhase
    progress: float = 0.0

    @classmethod
    def initializing(cls) -> 'MappingState':
        return cls(MappingPhase.INITIALIZING)

    @classmethod
    def scanning(cls, progress: float) -> 'MappingState':
        return cls(MappingPhase.SCANNING, progress)

    @classmethod
    def ready(cls) -> 'MappingState':
        return cls(MappingPhase.READY, 1.0)

    @classmethod
    def insufficient_features(cls) -> 'MappingState':
        return cls(MappingPhase.INSUFFICIENT_FEATURES)

    @property
    def is_ready(self) -> bool:
        return self.phase == MappingPhase.READY

    def to_dict(self) -> Dict[str, Any]:
        return {'phase': self.phase.value, 'progress': self.progress}


@dataclass(frozen=True)
class ScanningStrategy:
    """Thresholds for declaring the environment mapped"""
    name: str
    min_surfaces: int
    required_coverage: float  # total square meters
    # Guidance reported to clients; readiness only uses the two fields above
    minimum_plane_area: float  # square meters

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'min_surfaces': self.min_surfaces,
            'required_coverage': self.required_coverage,
            'minimum_plane_area': self.minimum_plane_area,
        }


STANDARD_STRATEGY = ScanningStrategy('standard', min_surfaces=3, required_coverage=1.0, minimum_plane_area=0.5)
PRECISION_STRATEGY = ScanningStrategy('precision', min_surfaces=1, required_coverage=0.5, minimum_plane_area=0.2)


def evaluate_mapping_state(tracked_count: int, total_area: float,
                           strategy: ScanningStrategy, precision_mode: bool) -> MappingState:
    """Pure mapping evaluation from surface count and total area"""
    if tracked_count == 0:
        return MappingState.insufficient_features()

    if tracked_count >= strategy.min_surfaces and (total_area >= strategy.required_coverage or precision_mode):
        return MappingState.ready()

    if precision_mode:
        progress = min(1.0, tracked_count / strategy.min_surfaces)
    else:
        progress = min(1.0, total_area / strategy.required_coverage)
    return MappingState.scanning(progress)


class EnvironmentMappingStateMachine:
    """
    Re-evaluated after every surface add, update or removal

    There is no hysteresis: removing surfaces near the thresholds moves the
    state out of Ready again. Entering Ready from any other state fires
    ``on_ready`` once per entry.
    """

    def __init__(self, strategy: ScanningStrategy, precision_mode: bool = False,
                 on_state_changed: Optional[Callable[[MappingState], None]] = None,
                 on_ready: Optional[Callable[[], None]] = None):
        self.strategy = strategy
        self.precision_mode = precision_mode
        self.on_state_changed = on_state_changed
        self.on_ready = on_ready

        self._state = MappingState.initializing()
        # Read from the retry scheduler context
        self._mapped = threading.Event()

    @property
    def state(self) -> MappingState:
        return self._state

    @property
    def is_mapped(self) -> bool:
        return self._mapped.is_set()

    def set_strategy(self, strategy: ScanningStrategy, precision_mode: bool):
        self.strategy = strategy
        self.precision_mode = precision_mode
        logger.info(f"Scanning strategy set to {strategy.name}")

    def update(self, tracked_count: int, total_area: float) -> MappingState:
        """Recompute the state and announce it"""
        previous = self._state
        state = evaluate_mapping_state(tracked_count, total_area, self.strategy, self.precision_mode)
        self._state = state

        if state.is_ready:
            self._mapped.set()
        else:
            self._mapped.clear()

        logger.debug(f"📊 Environment - Surfaces: {tracked_count}, Area: {total_area:.2f}m², State: {state.phase.value}")

        if self.on_state_changed:
            self.on_state_changed(state)

        if state.is_ready and not previous.is_ready:
            logger.info("✅ Environment mapping complete")
            if self.on_ready:
                self.on_ready()
        elif previous.is_ready and not state.is_ready:
            logger.warning(f"Environment left ready state ({state.phase.value})")

        return state

    def reset(self):
        self._state = MappingState.initializing()
        self._mapped.clear()
