"""
Anchor Relocalization Manager
Re-establishes saved anchors inside a live sensing session
"""

import logging
import threading
import time
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .collaborators import AnchorRecordSource, AssetResolver, RawOrParsedRecord, StaticAssetResolver
from .entity_store import AnchorEntityStore
from .errors import (
    AnchorLoadError,
    ContentAssetMissingError,
    InvalidAnchorRecordError,
    LocationUnavailableError,
    RelocalizationError,
)
from .events import EventDispatcher, RelocalizationListener
from .geometry import MeshChunk, SensedFrame, SensedPlane
from .mapping_state import (
    PRECISION_STRATEGY,
    STANDARD_STRATEGY,
    EnvironmentMappingStateMachine,
    MappingState,
    ScanningStrategy,
)
from .models import GeoLocation, PendingPlacement, PlacedAnchor, PlacementAttempt, SavedAnchorRecord
from .orientation import OrientationReconciler
from .placement_search import PlacementSearchEngine
from .placement_validator import PlacementValidator
from .plane_tracker import PlaneConfidenceTracker
from .retry_queue import PersistenceRetryQueue
from .scheduling import ImmediateSceneContext, PeriodicTask, QueuedSceneContext, SceneContext, ThreadPeriodicTask
from ..utils.config import Settings, get_settings
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)


class AnchorRelocalizationManager:
    """
    Owns the relocalization pipeline for one sensing session

    Sensor callbacks and inbound records enter here. Records are
    deferred to the retry queue while the environment is not mapped, else
    searched, validated and either committed or queued.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 scheduler: Optional[PeriodicTask] = None,
                 scene_context: Optional[SceneContext] = None,
                 asset_resolver: Optional[AssetResolver] = None,
                 precision_available: bool = False,
                 clock=time.monotonic):
        self.settings = settings or get_settings()
        self.clock = clock
        self.asset_resolver = asset_resolver or StaticAssetResolver()

        if scheduler is None:
            scheduler = ThreadPeriodicTask(name="anchor-retry")
        if scene_context is None:
            # Timer threads only enqueue; the owner runs the work in process_scene_work
            if isinstance(scheduler, ThreadPeriodicTask):
                scene_context = QueuedSceneContext()
            else:
                scene_context = ImmediateSceneContext()
        elif isinstance(scheduler, ThreadPeriodicTask) and isinstance(scene_context, ImmediateSceneContext):
            raise ValueError("A thread scheduler needs a scene context that leaves the timer thread")
        self.scene_context = scene_context

        self.dispatcher = EventDispatcher()
        self.tracker = PlaneConfidenceTracker()

        strategy, precision_mode = self._select_strategy(precision_available)
        self.mapping = EnvironmentMappingStateMachine(
            strategy,
            precision_mode=precision_mode,
            on_state_changed=self.dispatcher.on_mapping_state_changed,
            on_ready=self._on_environment_ready
        )

        self.search_engine = PlacementSearchEngine(
            max_distance=self.settings.MAX_SEARCH_DISTANCE,
            mesh_snap_distance=self.settings.MESH_SNAP_DISTANCE
        )
        self.validator = PlacementValidator(
            max_distance=self.settings.MAX_SEARCH_DISTANCE,
            max_vertical_difference=self.settings.MAX_VERTICAL_DIFFERENCE,
            acceptance_threshold=self.settings.ACCEPTANCE_THRESHOLD
        )
        self.reconciler = OrientationReconciler(height_tolerance=self.settings.HEIGHT_PRESERVE_TOLERANCE)
        self.entity_store = AnchorEntityStore()

        retry_config = self.settings.get_retry_config()
        self.retry_queue = PersistenceRetryQueue(
            pipeline=self,
            scheduler=scheduler,
            scene_context=self.scene_context,
            interval=retry_config['interval'],
            batch_size=retry_config['batch_size'],
            acceptance_threshold=retry_config['acceptance_threshold'],
            max_attempts=retry_config['max_attempts'],
            on_abandoned=self._on_placement_abandoned,
            clock=clock
        )

        # Live geometry, read only from the scene context
        self._planes: Dict[str, SensedPlane] = OrderedDict()
        self._meshes: Dict[str, MeshChunk] = OrderedDict()
        self._tracking_ready = threading.Event()
        self._tracking_ready.set()

        self.stats = {
            'records_submitted': 0,
            'records_rejected': 0,
            'records_skipped': 0,
            'immediate_placements': 0,
            'deferred_placements': 0,
            'session_resets': 0
        }

        logger.info(f"Anchor relocalization manager ready (strategy: {strategy.name})")

    # Listeners

    def add_listener(self, listener: RelocalizationListener):
        self.dispatcher.add_listener(listener)

    def remove_listener(self, listener: RelocalizationListener):
        self.dispatcher.remove_listener(listener)

    # Strategy

    @property
    def strategy(self) -> ScanningStrategy:
        return self.mapping.strategy

    @property
    def precision_mode(self) -> bool:
        return self.mapping.precision_mode

    def _select_strategy(self, precision_available: bool):
        choice = self.settings.SCANNING_STRATEGY
        if choice == "precision" or (choice == "auto" and precision_available):
            return PRECISION_STRATEGY, True
        return STANDARD_STRATEGY, False

    def enable_precision_mode(self) -> MappingState:
        """Switch to the depth-assisted strategy and re-evaluate"""
        if self.settings.SCANNING_STRATEGY == "standard" or self.precision_mode:
            return self.mapping.state
        self.mapping.set_strategy(PRECISION_STRATEGY, True)
        return self._evaluate_mapping()

    # Sensor callbacks

    def update_surface(self, plane: SensedPlane, now: Optional[float] = None) -> MappingState:
        """Surface added or updated; also runs retry work queued since the last frame"""
        self.process_scene_work()
        now = self.clock() if now is None else now
        self._planes[plane.identifier] = plane
        self.tracker.observe(plane.identifier, plane.area, plane.up_alignment, now)
        return self._evaluate_mapping()

    def remove_surface(self, surface_id: str) -> MappingState:
        """Surface removed from the session"""
        self._planes.pop(surface_id, None)
        if self.tracker.remove(surface_id):
            logger.info(f"Surface removed: {surface_id}")
        return self._evaluate_mapping()

    def update_mesh(self, chunk: MeshChunk):
        """Dense mesh geometry added or updated"""
        self._meshes[chunk.identifier] = chunk
        if self.settings.SCANNING_STRATEGY == "auto" and not self.precision_mode:
            logger.info("📱 Dense mesh reported, switching to precision scanning")
            self.enable_precision_mode()

    def remove_mesh(self, mesh_id: str) -> bool:
        return self._meshes.pop(mesh_id, None) is not None

    def set_tracking_ready(self, is_ready: bool):
        """Tracking health signal from the sensing subsystem"""
        was_ready = self._tracking_ready.is_set()
        if is_ready:
            self._tracking_ready.set()
        else:
            self._tracking_ready.clear()

        if is_ready and not was_ready:
            logger.info("✅ Tracking normal")
            if self.mapping.is_mapped:
                self.retry_queue.flush()
        elif was_ready and not is_ready:
            logger.warning("⚠️ Tracking limited, deferring placements")

    def process_scene_work(self) -> int:
        """Run retry attempts queued by a background timer; call from the scene owner"""
        if isinstance(self.scene_context, QueuedSceneContext):
            return self.scene_context.drain()
        return 0

    def current_frame(self) -> SensedFrame:
        """Snapshot of the sensed environment"""
        return SensedFrame(
            planes=tuple(self._planes.values()),
            meshes=tuple(self._meshes.values()),
            timestamp=self.clock()
        )

    def _evaluate_mapping(self) -> MappingState:
        metrics.set_gauge('tracked_surfaces', self.tracker.tracked_count())
        return self.mapping.update(self.tracker.tracked_count(), self.tracker.total_tracked_area())

    def _on_environment_ready(self):
        if self._tracking_ready.is_set():
            self.retry_queue.flush()

    # Inbound records

    async def load_saved_anchors(self, source: AnchorRecordSource,
                                 location: Optional[GeoLocation]) -> Dict[str, int]:
        """Fetch nearby records from the remote store and place them"""
        if location is None:
            logger.warning("🔍 Location not available for loading anchors")
            self._report_error(LocationUnavailableError())
            return self._empty_summary()

        logger.info(f"🔍 Loading anchors at ({location.latitude:.6f}, {location.longitude:.6f})")
        self.dispatcher.on_loading_state_changed(True)
        try:
            try:
                records = await source.fetch_records(location)
            except Exception as e:
                self._report_error(AnchorLoadError(f"Failed to load anchors: {e}"))
                return self._empty_summary()

            logger.info(f"📍 Loaded {len(records)} anchors from the anchor store")
            return self.submit_records(records)
        finally:
            self.dispatcher.on_loading_state_changed(False)

    def submit_records(self, records: Iterable[RawOrParsedRecord]) -> Dict[str, int]:
        """Place or queue each record; unusable records are reported and dropped"""
        summary = self._empty_summary()

        for raw in records:
            self.stats['records_submitted'] += 1
            metrics.increment_counter('records_submitted')

            record = self._accept_record(raw)
            if record is None:
                summary['rejected'] += 1
                continue

            if self.entity_store.contains(record.id) or record.id in self.retry_queue:
                self.stats['records_skipped'] += 1
                summary['skipped'] += 1
                continue

            if self.place_record(record) is not None:
                summary['placed'] += 1
            else:
                summary['queued'] += 1

        self._update_gauges()
        return summary

    def place_record(self, record: SavedAnchorRecord) -> Optional[PlacedAnchor]:
        """Single immediate placement attempt, queuing on failure"""
        if not self.is_ready():
            logger.info(f"⏳ Environment not mapped, queuing anchor {record.id}")
            self._defer(record)
            return None

        attempt = self.attempt(record)
        if attempt is not None and self.validator.is_acceptable(attempt.confidence):
            placed = self.commit(record, attempt)
            if placed is not None:
                self.stats['immediate_placements'] += 1
            return placed

        logger.info(f"⚠️ No suitable surface found for {record.id}, queueing anchor for retry")
        self._defer(record, confidence=attempt.confidence if attempt else 0.0, attempted=True)
        return None

    def _accept_record(self, raw: RawOrParsedRecord) -> Optional[SavedAnchorRecord]:
        try:
            if isinstance(raw, SavedAnchorRecord):
                record = raw
            elif isinstance(raw, dict):
                record = SavedAnchorRecord.from_dict(raw)
            else:
                raise InvalidAnchorRecordError(f"Unsupported anchor record type: {type(raw).__name__}")

            if not self.asset_resolver.exists(record.content_id):
                raise ContentAssetMissingError(
                    f"Content asset '{record.content_id}' not found for anchor {record.id}",
                    details={"anchor_id": record.id, "content_id": record.content_id}
                )
            return record

        except RelocalizationError as e:
            self.stats['records_rejected'] += 1
            metrics.increment_counter('records_rejected')
            self._report_error(e)
            return None

    def _defer(self, record: SavedAnchorRecord, confidence: float = 0.0, attempted: bool = False):
        self.stats['deferred_placements'] += 1
        metrics.increment_counter('placements_deferred')
        self.retry_queue.enqueue(record, confidence=confidence, attempted=attempted)

    # Placement pipeline (also driven by the retry queue)

    def is_ready(self) -> bool:
        """Environment mapped and tracking healthy; safe from any context"""
        return self.mapping.is_mapped and self._tracking_ready.is_set()

    def is_committed(self, anchor_id: str) -> bool:
        return self.entity_store.contains(anchor_id)

    def attempt(self, record: SavedAnchorRecord) -> Optional[PlacementAttempt]:
        """Search near the saved point and score the best candidate"""
        metrics.increment_counter('placement_attempts')

        candidate = self.search_engine.search(record.origin, self.current_frame())
        if candidate is None:
            return None

        confidence = self.validator.validate(candidate.transform, record.origin)
        logger.info(f"🎯 Anchor {record.id}: {candidate.source} candidate on {candidate.surface_id} "
                    f"(search {candidate.confidence:.2f}, validated {confidence:.2f})")
        return PlacementAttempt(candidate=candidate, confidence=confidence)

    def commit(self, record: SavedAnchorRecord, attempt: PlacementAttempt) -> Optional[PlacedAnchor]:
        """Reconcile orientation and hand the anchor to the entity store"""
        transform = self.reconciler.reconcile(attempt.candidate.transform, record.transform)
        placed = self.entity_store.commit(record.id, transform, record.content, attempt.confidence)

        if placed is None:
            metrics.increment_counter('duplicate_commits')
            return None

        metrics.increment_counter('placements_committed')
        metrics.observe('placement_confidence', attempt.confidence)
        self._update_gauges()
        self.dispatcher.on_anchor_placed(placed)
        return placed

    def _on_placement_abandoned(self, pending: PendingPlacement):
        metrics.increment_counter('placements_abandoned')
        self.dispatcher.on_placement_abandoned(pending)

    # Anchor lifecycle

    def clear_anchor(self, anchor_id: str) -> bool:
        removed = self.entity_store.remove(anchor_id)
        removed = self.retry_queue.remove(anchor_id) or removed
        self._update_gauges()
        return removed

    def clear_anchors(self) -> int:
        count = self.entity_store.clear()
        self._update_gauges()
        return count

    def reset(self):
        """Session reset: cancel retries and drop all queued, placed and tracked state"""
        logger.info("🔄 Resetting relocalization session...")
        self.retry_queue.clear()
        self.entity_store.clear()
        self.tracker.clear()
        self._planes.clear()
        self._meshes.clear()
        self.mapping.reset()
        self.stats['session_resets'] += 1

        self._update_gauges()
        metrics.set_gauge('tracked_surfaces', 0)
        self.dispatcher.on_mapping_state_changed(self.mapping.state)

    def shutdown(self):
        self.retry_queue.clear()
        logger.info("Relocalization manager shutdown complete")

    # Reporting

    def _report_error(self, error: RelocalizationError):
        logger.error(f"❌ {error.code}: {error.message}")
        self.dispatcher.on_error(error)

    def _update_gauges(self):
        metrics.set_gauge('pending_placements', len(self.retry_queue))
        metrics.set_gauge('placed_anchors', len(self.entity_store))

    @staticmethod
    def _empty_summary() -> Dict[str, int]:
        return {'placed': 0, 'queued': 0, 'rejected': 0, 'skipped': 0}

    def get_status(self) -> Dict[str, Any]:
        return {
            'mapping_state': self.mapping.state.to_dict(),
            'strategy': self.strategy.to_dict(),
            'precision_mode': self.precision_mode,
            'tracking_ready': self._tracking_ready.is_set(),
            'tracked_surfaces': self.tracker.tracked_count(),
            'total_area': self.tracker.total_tracked_area(),
            'average_surface_quality': self.tracker.average_quality(),
            'pending_placements': len(self.retry_queue),
            'placed_anchors': len(self.entity_store),
            'retry_timer_running': self.retry_queue.timer_running
        }

    def get_metrics(self) -> Dict[str, Any]:
        return {
            'statistics': self.stats,
            'search': self.search_engine.stats,
            'retry_queue': self.retry_queue.stats,
            'entity_store': self.entity_store.stats,
            'configuration': self.settings.get_retry_config(),
            'active_state': self.get_status(),
            'timestamp': datetime.utcnow().isoformat()
        }

    def health_check(self) -> bool:
        return self.mapping is not None and self.retry_queue is not None
