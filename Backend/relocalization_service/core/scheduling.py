"""
Scheduling primitives
Cancellable periodic tasks and scene-context marshalling
"""

import asyncio
import logging
import threading
from collections import deque
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask(ABC):
    """Interval-based, cancellable task independent of the concurrency runtime"""

    @abstractmethod
    def start(self, callback: Callable[[], None], interval: float) -> None:
        """Run ``callback`` every ``interval`` seconds until cancelled"""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the task; safe to call from inside the callback"""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether the task is scheduled"""


class AsyncioPeriodicTask(PeriodicTask):
    """Periodic task backed by an asyncio sleep loop; start from the loop thread"""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._task: Optional[asyncio.Task] = None

    def start(self, callback: Callable[[], None], interval: float) -> None:
        if self.is_running:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._task = loop.create_task(self._run(callback, interval))

    async def _run(self, callback: Callable[[], None], interval: float):
        while True:
            try:
                await asyncio.sleep(interval)
                callback()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Periodic task error: {e}")

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()


class ThreadPeriodicTask(PeriodicTask):
    """Periodic task backed by a daemon thread"""

    def __init__(self, name: str = "periodic-task"):
        self.name = name
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def start(self, callback: Callable[[], None], interval: float) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set():
                return

            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(callback, interval, stop_event),
                name=self.name,
                daemon=True
            )
            self._thread.start()

    def _run(self, callback: Callable[[], None], interval: float, stop_event: threading.Event):
        while not stop_event.wait(interval):
            try:
                callback()
            except Exception as e:
                logger.error(f"Periodic task error: {e}")

    def cancel(self) -> None:
        # Returns without joining; an in-flight callback finishes on its own
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
            self._thread = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return (self._thread is not None and self._thread.is_alive()
                    and not self._stop_event.is_set())


class SceneContext(ABC):
    """The single context allowed to read sensed frames and mutate placed anchors"""

    @abstractmethod
    def run(self, fn: Callable[[], None]) -> None:
        """Execute ``fn`` on the scene-owning context"""


class ImmediateSceneContext(SceneContext):
    """Runs work inline; for callers that already own the scene"""

    def run(self, fn: Callable[[], None]) -> None:
        fn()


class LoopSceneContext(SceneContext):
    """Marshals work onto an asyncio event loop from any thread"""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    def run(self, fn: Callable[[], None]) -> None:
        if self._loop.is_closed():
            logger.warning("Scene loop closed, dropping scheduled work")
            return
        self._loop.call_soon_threadsafe(fn)


class QueuedSceneContext(SceneContext):
    """
    Collects work from any thread for the scene owner to run

    Pairs with background schedulers such as ``ThreadPeriodicTask``: the
    timer thread only enqueues, and nothing touches scene state until the
    owner calls ``drain`` from its own thread.
    """

    def __init__(self):
        self._pending = deque()

    def run(self, fn: Callable[[], None]) -> None:
        self._pending.append(fn)

    def drain(self) -> int:
        """Run queued work on the calling thread; returns how many ran"""
        count = 0
        while True:
            try:
                fn = self._pending.popleft()
            except IndexError:
                return count
            fn()
            count += 1

    def __len__(self) -> int:
        return len(self._pending)
