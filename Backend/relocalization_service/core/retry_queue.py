"""
Persistence Retry Queue
Deferred placements retried on a fixed cadence in bounded batches
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Protocol

from .models import PendingPlacement, PendingState, PlacedAnchor, PlacementAttempt, SavedAnchorRecord
from .scheduling import ImmediateSceneContext, PeriodicTask, SceneContext
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_RETRY_INTERVAL = 2.0
DEFAULT_BATCH_SIZE = 3


class PlacementPipeline(Protocol):
    """Placement operations the queue drives; all run on the scene context"""

    def is_ready(self) -> bool:
        ...

    def is_committed(self, anchor_id: str) -> bool:
        ...

    def attempt(self, record: SavedAnchorRecord) -> Optional[PlacementAttempt]:
        ...

    def commit(self, record: SavedAnchorRecord, attempt: PlacementAttempt) -> Optional[PlacedAnchor]:
        ...


class PersistenceRetryQueue:
    """
    Holds anchors that could not be confidently placed yet

    Entries move Queued -> Attempting -> (removed on commit | Queued). The
    timer is started on first enqueue and cancelled as soon as the queue is
    empty. Selection (drain) happens on the timer context under the lock;
    attempts run on the scene context, which refills failed entries.
    """

    def __init__(self, pipeline: PlacementPipeline, scheduler: PeriodicTask,
                 scene_context: Optional[SceneContext] = None,
                 interval: float = DEFAULT_RETRY_INTERVAL,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 acceptance_threshold: float = 0.7,
                 max_attempts: Optional[int] = None,
                 on_abandoned: Optional[Callable[[PendingPlacement], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.scene_context = scene_context or ImmediateSceneContext()
        self.interval = interval
        self.batch_size = batch_size
        self.acceptance_threshold = acceptance_threshold
        self.max_attempts = max_attempts
        self.on_abandoned = on_abandoned
        self.clock = clock

        self._lock = threading.RLock()
        self._entries: Dict[str, PendingPlacement] = OrderedDict()

        self.stats = {
            'total_enqueued': 0,
            'total_attempts': 0,
            'total_committed': 0,
            'total_abandoned': 0,
            'ticks': 0,
            'skipped_ticks': 0
        }

    def enqueue(self, record: SavedAnchorRecord, confidence: float = 0.0, attempted: bool = False) -> PendingPlacement:
        """
        Queue a record that failed immediate placement

        Args:
            record: the saved anchor record
            confidence: best confidence from the failed attempt
            attempted: whether an immediate attempt already ran
        """
        with self._lock:
            pending = self._entries.get(record.id)
            if pending is None:
                pending = PendingPlacement(record=record)
                self._entries[record.id] = pending
                self.stats['total_enqueued'] += 1
                logger.info(f"⏳ Queued anchor {record.id} for retry")

            if attempted:
                pending.record_attempt(confidence, self.clock())

            self._ensure_timer()
            return pending

    def tick(self):
        """Timer callback: attempt at most one batch of due entries"""
        with self._lock:
            self.stats['ticks'] += 1

            if not self._entries:
                self._stop_timer()
                return

            if not self.pipeline.is_ready():
                self.stats['skipped_ticks'] += 1
                logger.debug(f"Environment not ready, deferring {len(self._entries)} pending anchors")
                return

            now = self.clock()
            batch = self._drain(lambda p: p.is_due(now, self.interval), limit=self.batch_size)

        for pending in batch:
            self.scene_context.run(lambda pending=pending: self._attempt(pending))

    def flush(self):
        """Attempt every queued entry once, ignoring interval and batch size

        Runs the attempts inline, so call it from the scene context.
        """
        with self._lock:
            if not self._entries:
                return
            batch = self._drain(lambda p: p.state == PendingState.QUEUED)

        if batch:
            logger.info(f"⏳ Processing {len(batch)} pending anchors")

        for pending in batch:
            self._attempt(pending)

    def remove(self, anchor_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(anchor_id, None) is not None
            if not self._entries:
                self._stop_timer()
            return removed

    def clear(self):
        """Cancel the timer and drop every entry"""
        with self._lock:
            self._entries.clear()
            self._stop_timer()

    def pending(self) -> List[PendingPlacement]:
        with self._lock:
            return list(self._entries.values())

    def get(self, anchor_id: str) -> Optional[PendingPlacement]:
        with self._lock:
            return self._entries.get(anchor_id)

    def __contains__(self, anchor_id: str) -> bool:
        with self._lock:
            return anchor_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def timer_running(self) -> bool:
        return self.scheduler.is_running

    def _drain(self, predicate: Callable[[PendingPlacement], bool], limit: Optional[int] = None) -> List[PendingPlacement]:
        """Mark matching entries as attempting; caller holds the lock"""
        batch = []
        for pending in self._entries.values():
            if limit is not None and len(batch) >= limit:
                break
            if predicate(pending):
                pending.state = PendingState.ATTEMPTING
                batch.append(pending)
        return batch

    def _attempt(self, pending: PendingPlacement):
        """Runs on the scene context"""
        record = pending.record

        with self._lock:
            if self._entries.get(record.id) is not pending:
                # Cleared or removed while in flight
                return

        if self.pipeline.is_committed(record.id):
            logger.info(f"Anchor {record.id} already placed, dropping from retry queue")
            self.remove(record.id)
            return

        try:
            attempt = self.pipeline.attempt(record)
        except Exception as e:
            logger.error(f"Retry attempt for anchor {record.id} failed: {e}")
            attempt = None

        confidence = attempt.confidence if attempt else 0.0
        previous_best = pending.best_confidence_seen

        with self._lock:
            if self._entries.get(record.id) is not pending:
                return

            self.stats['total_attempts'] += 1
            metrics.increment_counter('retry_attempts')
            pending.record_attempt(confidence, self.clock())

            succeeded = (attempt is not None and
                         confidence >= self.acceptance_threshold and
                         confidence > previous_best)

            if succeeded:
                self._entries.pop(record.id, None)
                self.stats['total_committed'] += 1
            elif self.max_attempts is not None and pending.attempts_so_far >= self.max_attempts:
                self._entries.pop(record.id, None)
                self.stats['total_abandoned'] += 1
                logger.warning(f"Abandoning anchor {record.id} after {pending.attempts_so_far} attempts "
                               f"(best confidence {pending.best_confidence_seen:.2f})")
                if self.on_abandoned:
                    self.on_abandoned(pending)
            else:
                pending.state = PendingState.QUEUED
                self._entries.move_to_end(record.id)
                logger.debug(f"Anchor {record.id} still unplaced after {pending.attempts_so_far} attempts "
                             f"(confidence {confidence:.2f})")

            if not self._entries:
                self._stop_timer()

        if succeeded:
            self.pipeline.commit(record, attempt)

    def _ensure_timer(self):
        if not self.scheduler.is_running:
            self.scheduler.start(self.tick, self.interval)
            logger.debug(f"Retry timer started ({self.interval}s interval)")

    def _stop_timer(self):
        if self.scheduler.is_running:
            self.scheduler.cancel()
            logger.debug("Retry timer stopped")
