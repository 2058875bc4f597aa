import asyncio
import threading
import time

from relocalization_service.core.scheduling import (
    AsyncioPeriodicTask,
    ImmediateSceneContext,
    LoopSceneContext,
    QueuedSceneContext,
    ThreadPeriodicTask,
)


def test_immediate_scene_context_runs_inline():
    calls = []
    ImmediateSceneContext().run(lambda: calls.append(1))
    assert calls == [1]


def test_loop_scene_context_marshals_from_other_thread():
    calls = []

    async def scenario():
        context = LoopSceneContext(asyncio.get_running_loop())
        worker = threading.Thread(target=context.run, args=(lambda: calls.append(threading.current_thread().name),))
        worker.start()
        worker.join()
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert calls == [threading.main_thread().name]


def test_asyncio_task_can_cancel_itself():
    calls = []

    async def scenario():
        task = AsyncioPeriodicTask()

        def callback():
            calls.append(1)
            if len(calls) == 3:
                task.cancel()

        task.start(callback, 0.001)
        assert task.is_running
        await asyncio.sleep(0.1)
        assert not task.is_running

    asyncio.run(scenario())
    assert len(calls) == 3


def test_thread_task_runs_until_cancelled():
    fired = threading.Event()
    calls = []

    def callback():
        calls.append(1)
        if len(calls) >= 2:
            fired.set()

    task = ThreadPeriodicTask(name="test-periodic")
    task.start(callback, 0.001)
    assert fired.wait(timeout=2.0)

    thread = task._thread
    task.cancel()
    assert not task.is_running

    thread.join(timeout=1.0)
    assert not thread.is_alive()
    count = len(calls)
    time.sleep(0.05)
    assert len(calls) == count


def test_thread_task_cancel_does_not_wait_for_callback():
    entered = threading.Event()
    release = threading.Event()

    def callback():
        entered.set()
        release.wait(timeout=2.0)

    task = ThreadPeriodicTask(name="test-blocked")
    task.start(callback, 0.001)
    assert entered.wait(timeout=2.0)

    started = time.monotonic()
    task.cancel()
    elapsed = time.monotonic() - started
    release.set()

    assert elapsed < 0.5
    assert not task.is_running


def test_queued_scene_context_runs_on_draining_thread():
    context = QueuedSceneContext()
    ran_on = []

    worker = threading.Thread(target=context.run, args=(lambda: ran_on.append(threading.current_thread().name),))
    worker.start()
    worker.join()

    assert ran_on == []
    assert len(context) == 1

    assert context.drain() == 1
    assert ran_on == [threading.current_thread().name]
    assert context.drain() == 0
