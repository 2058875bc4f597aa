import asyncio
import threading
import time

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from relocalization_service.core.collaborators import StaticAssetResolver
from relocalization_service.core.errors import (
    AnchorLoadError,
    ContentAssetMissingError,
    CorruptTransformError,
    InvalidAnchorRecordError,
    LocationUnavailableError,
)
from relocalization_service.core.geometry import MeshChunk
from relocalization_service.core.mapping_state import MappingPhase
from relocalization_service.core.models import GeoLocation
from relocalization_service.core.relocalization_manager import AnchorRelocalizationManager
from relocalization_service.core.scheduling import ImmediateSceneContext, QueuedSceneContext, ThreadPeriodicTask
from relocalization_service.utils.config import Settings
from relocalization_service.utils.metrics import metrics

from .conftest import RecordingListener, map_environment, make_plane, make_record_dict


class FakeRecordSource:
    def __init__(self, records=None, error=None):
        self.records = records or []
        self.error = error
        self.locations = []

    async def fetch_records(self, location):
        self.locations.append(location)
        if self.error is not None:
            raise self.error
        return list(self.records)


LOCATION = GeoLocation(latitude=37.7749, longitude=-122.4194)


class TestDeferredPlacement:

    def test_records_wait_until_environment_is_mapped(self, manager, scheduler, listener):
        summary = manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0])])

        assert summary == {'placed': 0, 'queued': 1, 'rejected': 0, 'skipped': 0}
        assert "a1" in manager.retry_queue
        assert scheduler.is_running
        assert listener.placed == []

    def test_mapping_ready_flushes_pending(self, manager, scheduler, listener):
        rotation = Rotation.from_euler('y', 45, degrees=True)
        manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0], rotation=rotation.as_quat())])

        map_environment(manager)

        assert manager.mapping.state.phase == MappingPhase.READY
        assert [p.anchor_id for p in listener.placed] == ["a1"]

        placed = listener.placed[0]
        assert placed.confidence == pytest.approx(1.0)
        assert np.allclose(placed.position, [0.0, 1.0, 0.0])
        assert np.allclose(placed.transform[:3, :3], rotation.as_matrix(), atol=1e-9)

        assert len(manager.retry_queue) == 0
        assert not scheduler.is_running

    def test_state_notification_precedes_placement(self, manager, listener):
        manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0])])
        map_environment(manager)

        assert listener.events[-2:] == [('state', 'ready'), ('placed', 'a1')]
        assert [s.phase for s in listener.states[:2]] == [MappingPhase.SCANNING, MappingPhase.SCANNING]

    def test_ticks_do_nothing_before_mapping(self, manager, scheduler, clock):
        manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0])])

        clock.advance(2.0)
        scheduler.fire(3)

        assert manager.retry_queue.get("a1").attempts_so_far == 0
        assert manager.retry_queue.stats['skipped_ticks'] == 3


class TestImmediatePlacement:

    def test_places_when_ready(self, manager, listener):
        map_environment(manager)
        summary = manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0])])

        assert summary['placed'] == 1
        assert manager.entity_store.contains("a1")
        assert metrics.get_metrics()['counters']['placements_committed'] == 1
        assert metrics.get_metrics()['summaries']['placement_confidence']['mean'] == pytest.approx(1.0)

    def test_small_height_drift_keeps_saved_height(self, manager):
        map_environment(manager)
        manager.submit_records([make_record_dict("a1", [0.0, 1.2, 0.0])])

        placed = manager.entity_store.get("a1")
        assert placed is not None
        assert np.allclose(placed.position, [0.0, 1.2, 0.0])

    def test_already_loaded_ids_are_skipped(self, manager, listener):
        map_environment(manager)
        manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0])])
        summary = manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0])])

        assert summary['skipped'] == 1
        assert len(listener.placed) == 1
        assert manager.entity_store.stats['duplicate_commits'] == 0

    def test_no_surface_nearby_queues_after_attempt(self, manager, scheduler, clock, listener):
        map_environment(manager)
        summary = manager.submit_records([make_record_dict("far", [10.0, 1.0, 10.0])])

        assert summary['queued'] == 1
        pending = manager.retry_queue.get("far")
        assert pending.attempts_so_far == 1
        assert scheduler.is_running

        manager.update_surface(make_plane("far_table", [10.0, 1.0, 10.0], 1.0))
        clock.advance(2.0)
        scheduler.fire()

        assert [p.anchor_id for p in listener.placed] == ["far"]
        assert not scheduler.is_running

    def test_scale_and_orientation_carried(self, manager):
        map_environment(manager)
        manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0], scale=[0.5, 0.5, 0.5],
                                                 orientation=[0.0, 0.0, 0.0, 1.0])])

        placed = manager.entity_store.get("a1")
        assert placed.content.scale == (0.5, 0.5, 0.5)
        assert placed.content.orientation == (0.0, 0.0, 0.0, 1.0)


class TestRejectedRecords:

    def test_invalid_records_are_reported_and_dropped(self, manager, listener):
        map_environment(manager)
        bad = make_record_dict("bad", [0.0, 1.0, 0.0])
        bad["transform"] = bad["transform"][:12]
        nameless = make_record_dict("nameless", [0.0, 1.0, 0.0])
        del nameless["name"]

        summary = manager.submit_records([bad, nameless, make_record_dict("good", [0.0, 1.0, 0.0]), 42])

        assert summary['rejected'] == 3
        assert summary['placed'] == 1
        assert isinstance(listener.errors[0], CorruptTransformError)
        assert isinstance(listener.errors[1], InvalidAnchorRecordError)
        assert "bad" not in manager.retry_queue

    def test_missing_content_asset(self, standard_settings, scheduler, clock, listener):
        manager = AnchorRelocalizationManager(
            settings=standard_settings,
            scheduler=scheduler,
            asset_resolver=StaticAssetResolver(["sticker_star"]),
            clock=clock
        )
        manager.add_listener(listener)

        summary = manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0], name="sticker_moon")])

        assert summary['rejected'] == 1
        assert isinstance(listener.errors[0], ContentAssetMissingError)
        assert len(manager.retry_queue) == 0


class TestTrackingGate:

    def test_limited_tracking_defers_placement(self, manager, listener):
        map_environment(manager)
        manager.set_tracking_ready(False)

        manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0])])
        assert listener.placed == []
        assert not manager.is_ready()

        manager.set_tracking_ready(True)
        assert [p.anchor_id for p in listener.placed] == ["a1"]


class TestLoading:

    def test_load_places_fetched_records(self, manager, listener):
        map_environment(manager)
        source = FakeRecordSource([make_record_dict("a1", [0.0, 1.0, 0.0])])

        summary = asyncio.run(manager.load_saved_anchors(source, LOCATION))

        assert summary['placed'] == 1
        assert source.locations == [LOCATION]
        assert listener.loading == [True, False]

    def test_missing_location_is_reported(self, manager, listener):
        source = FakeRecordSource()
        asyncio.run(manager.load_saved_anchors(source, None))

        assert isinstance(listener.errors[0], LocationUnavailableError)
        assert source.locations == []
        assert listener.loading == []

    def test_fetch_failure_is_reported(self, manager, listener):
        source = FakeRecordSource(error=ConnectionError("store unreachable"))
        summary = asyncio.run(manager.load_saved_anchors(source, LOCATION))

        assert summary['placed'] == 0
        assert isinstance(listener.errors[0], AnchorLoadError)
        assert listener.loading == [True, False]


class TestSessionLifecycle:

    def test_reset_clears_everything(self, manager, scheduler, listener):
        manager.submit_records([make_record_dict("queued", [10.0, 1.0, 10.0])])
        map_environment(manager)
        manager.submit_records([make_record_dict("placed", [0.0, 1.0, 0.0])])

        manager.reset()

        assert len(manager.retry_queue) == 0
        assert len(manager.entity_store) == 0
        assert manager.tracker.tracked_count() == 0
        assert manager.current_frame().planes == ()
        assert not scheduler.is_running
        assert listener.states[-1].phase == MappingPhase.INITIALIZING

    def test_removing_surfaces_leaves_ready(self, manager):
        planes = map_environment(manager)
        state = manager.remove_surface(planes[0].identifier)

        assert state.phase == MappingPhase.SCANNING
        assert not manager.is_ready()

    def test_clear_anchor(self, manager):
        map_environment(manager)
        manager.submit_records([make_record_dict("a1", [0.0, 1.0, 0.0]), make_record_dict("a2", [0.0, 1.0, 0.0])])

        assert manager.clear_anchor("a1") is True
        assert manager.clear_anchor("a1") is False
        assert manager.clear_anchors() == 1

    def test_abandoned_placement_is_reported(self, scheduler, clock, listener):
        manager = AnchorRelocalizationManager(
            settings=Settings(SCANNING_STRATEGY="standard", RETRY_MAX_ATTEMPTS=2),
            scheduler=scheduler,
            scene_context=ImmediateSceneContext(),
            clock=clock
        )
        manager.add_listener(listener)
        map_environment(manager)

        manager.submit_records([make_record_dict("far", [10.0, 1.0, 10.0])])
        clock.advance(2.0)
        scheduler.fire()

        assert [p.anchor_id for p in listener.abandoned] == ["far"]
        assert len(manager.retry_queue) == 0

    def test_status_report(self, manager):
        map_environment(manager)
        status = manager.get_status()

        assert status['mapping_state']['phase'] == 'ready'
        assert status['tracked_surfaces'] == 3
        assert status['total_area'] == pytest.approx(1.5)
        assert manager.health_check()


class TestScanningStrategy:

    def _manager(self, strategy, scheduler, clock):
        return AnchorRelocalizationManager(
            settings=Settings(SCANNING_STRATEGY=strategy),
            scheduler=scheduler,
            clock=clock
        )

    def test_auto_switches_to_precision_on_mesh(self, scheduler, clock):
        manager = self._manager("auto", scheduler, clock)
        manager.update_surface(make_plane("table", [0.0, 1.0, 0.0], 0.3))
        assert not manager.is_ready()

        vertices = np.array([[0.0, 1.0, 0.0]])
        manager.update_mesh(MeshChunk("chunk", np.eye(4), vertices, np.array([[0.0, 1.0, 0.0]])))

        assert manager.precision_mode
        assert manager.strategy.name == 'precision'
        assert manager.is_ready()

    def test_standard_ignores_mesh_for_strategy(self, scheduler, clock):
        manager = self._manager("standard", scheduler, clock)
        vertices = np.array([[0.0, 1.0, 0.0]])
        manager.update_mesh(MeshChunk("chunk", np.eye(4), vertices, np.array([[0.0, 1.0, 0.0]])))

        assert not manager.precision_mode
        assert manager.current_frame().has_mesh

    def test_precision_configured_up_front(self, scheduler, clock):
        manager = self._manager("precision", scheduler, clock)
        manager.update_surface(make_plane("table", [0.0, 1.0, 0.0], 0.3))
        assert manager.is_ready()


class ThreadRecordingListener(RecordingListener):
    def __init__(self):
        super().__init__()
        self.placed_on = []

    def on_anchor_placed(self, placed):
        super().on_anchor_placed(placed)
        self.placed_on.append(threading.current_thread().name)


class TestBackgroundTimer:

    def test_default_timer_leaves_commits_to_scene_owner(self):
        manager = AnchorRelocalizationManager(
            settings=Settings(SCANNING_STRATEGY="standard", RETRY_INTERVAL_SECONDS=0.01)
        )
        listener = ThreadRecordingListener()
        manager.add_listener(listener)
        assert isinstance(manager.scene_context, QueuedSceneContext)

        try:
            map_environment(manager)
            manager.submit_records([make_record_dict("far", [10.0, 1.0, 10.0])])
            manager.update_surface(make_plane("far_table", [10.0, 1.0, 10.0], 1.0))

            deadline = time.monotonic() + 2.0
            while len(manager.scene_context) == 0 and time.monotonic() < deadline:
                time.sleep(0.01)

            assert len(manager.scene_context) == 1
            assert listener.placed == []

            assert manager.process_scene_work() == 1
            assert [p.anchor_id for p in listener.placed] == ["far"]
            assert listener.placed_on == [threading.current_thread().name]
        finally:
            manager.shutdown()

    def test_thread_timer_rejects_inline_scene_context(self):
        with pytest.raises(ValueError):
            AnchorRelocalizationManager(
                settings=Settings(SCANNING_STRATEGY="standard"),
                scheduler=ThreadPeriodicTask(name="test-retry"),
                scene_context=ImmediateSceneContext()
            )

    def test_process_scene_work_is_noop_without_queue(self, manager):
        assert manager.process_scene_work() == 0
