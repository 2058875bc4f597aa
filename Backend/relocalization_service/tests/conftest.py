"""
Shared fixtures for relocalization tests
"""

from typing import List, Optional, Sequence

import numpy as np
import pytest

from relocalization_service.core.events import RelocalizationListener
from relocalization_service.core.geometry import SensedPlane, make_transform, rotation_from_quaternion, transform_to_column_major
from relocalization_service.core.models import SavedAnchorRecord
from relocalization_service.core.relocalization_manager import AnchorRelocalizationManager
from relocalization_service.core.scheduling import ImmediateSceneContext, PeriodicTask
from relocalization_service.utils.config import Settings
from relocalization_service.utils.metrics import metrics


class FakePeriodicTask(PeriodicTask):
    """Periodic task fired by hand"""

    def __init__(self):
        self.callback = None
        self.interval = None
        self.started = 0
        self.cancelled = 0

    def start(self, callback, interval):
        self.callback = callback
        self.interval = interval
        self.started += 1

    def cancel(self):
        self.callback = None
        self.cancelled += 1

    @property
    def is_running(self):
        return self.callback is not None

    def fire(self, times: int = 1):
        for _ in range(times):
            if self.callback is not None:
                self.callback()


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingListener(RelocalizationListener):
    def __init__(self):
        self.events = []
        self.states = []
        self.placed = []
        self.errors = []
        self.loading = []
        self.abandoned = []

    def on_mapping_state_changed(self, state):
        self.states.append(state)
        self.events.append(('state', state.phase.value))

    def on_anchor_placed(self, placed):
        self.placed.append(placed)
        self.events.append(('placed', placed.anchor_id))

    def on_error(self, error):
        self.errors.append(error)
        self.events.append(('error', error.code))

    def on_loading_state_changed(self, is_loading):
        self.loading.append(is_loading)

    def on_placement_abandoned(self, pending):
        self.abandoned.append(pending)


def make_plane(identifier: str, center: Sequence[float], extent_x: float = 1.0,
               extent_z: Optional[float] = None, rotation: Optional[Sequence[float]] = None) -> SensedPlane:
    return SensedPlane.from_pose(identifier, center, extent_x, extent_z if extent_z is not None else extent_x, rotation)


def make_record_dict(anchor_id: str, position: Sequence[float], name: str = "sticker_star",
                     rotation: Optional[Sequence[float]] = None, **extra) -> dict:
    matrix = rotation_from_quaternion(rotation) if rotation is not None else np.eye(3)
    data = {
        "id": anchor_id,
        "transform": transform_to_column_major(make_transform(matrix, position)),
        "name": name,
        "latitude": 37.7749,
        "longitude": -122.4194,
        "altitude": 12.0,
        "horizontalAccuracy": 5.0,
        "verticalAccuracy": 3.0,
        "timestamp": 1700000000.0,
    }
    data.update(extra)
    return data


def make_record(anchor_id: str, position: Sequence[float], **kwargs) -> SavedAnchorRecord:
    return SavedAnchorRecord.from_dict(make_record_dict(anchor_id, position, **kwargs))


def map_environment(manager: AnchorRelocalizationManager) -> List[SensedPlane]:
    """Three planes totalling 1.5 m², enough for the standard strategy"""
    planes = [
        make_plane("floor", [0.0, 1.0, 0.0], 1.0),
        make_plane("side_left", [-3.0, 0.0, 0.0], 0.5),
        make_plane("side_right", [3.0, 0.0, 0.0], 0.5),
    ]
    for plane in planes:
        manager.update_surface(plane)
    return planes


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def scheduler():
    return FakePeriodicTask()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def standard_settings():
    return Settings(SCANNING_STRATEGY="standard")


@pytest.fixture
def manager(standard_settings, scheduler, clock, listener):
    manager = AnchorRelocalizationManager(
        settings=standard_settings,
        scheduler=scheduler,
        scene_context=ImmediateSceneContext(),
        clock=clock
    )
    manager.add_listener(listener)
    return manager
