"""Tests for sync/scheduler.py -- debounced single-flight runs."""

import asyncio
import logging
import threading

from cms_sync.sync.scheduler import ChangeScheduler, Phase

DEBOUNCE = 0.02


class TestDebounce:
    """Bursts of notifications collapse into one run."""

    async def test_burst_runs_pipeline_once(self):
        calls = []
        scheduler = ChangeScheduler(lambda: calls.append(1), debounce=DEBOUNCE)

        for _ in range(5):
            scheduler.notify()
        assert scheduler.phase is Phase.DEBOUNCING

        await scheduler.wait_idle()

        assert calls == [1]
        assert scheduler.phase is Phase.IDLE
        assert scheduler.state.runs == 1

    async def test_notify_restarts_timer(self):
        calls = []
        scheduler = ChangeScheduler(lambda: calls.append(1), debounce=0.05)

        scheduler.notify()
        await asyncio.sleep(0.03)
        scheduler.notify()
        await asyncio.sleep(0.03)

        # 60ms after the first notify but only 30ms after the second.
        assert calls == []
        await scheduler.wait_idle()
        assert calls == [1]

    async def test_separate_bursts_run_separately(self):
        calls = []
        scheduler = ChangeScheduler(lambda: calls.append(1), debounce=DEBOUNCE)

        scheduler.notify()
        await scheduler.wait_idle()
        scheduler.notify()
        await scheduler.wait_idle()

        assert len(calls) == 2


class TestSingleFlight:
    """Notifications during a run queue exactly one more run."""

    async def test_notifications_during_run_queue_one_rerun(self):
        started = asyncio.Event()
        release = asyncio.Event()
        runs = 0

        async def pipeline():
            nonlocal runs
            runs += 1
            started.set()
            await release.wait()

        scheduler = ChangeScheduler(pipeline, debounce=DEBOUNCE)
        scheduler.notify()
        await started.wait()

        assert scheduler.phase is Phase.RUNNING
        for _ in range(3):
            scheduler.notify()
        assert scheduler.state.queued
        assert scheduler.state.timer is None

        release.set()
        await scheduler.wait_idle()

        assert runs == 2
        assert not scheduler.state.queued
        assert scheduler.phase is Phase.IDLE

    async def test_runs_never_overlap(self):
        active = 0
        peak = 0

        async def pipeline():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1

        scheduler = ChangeScheduler(pipeline, debounce=0.005)
        for _ in range(4):
            scheduler.notify()
            await asyncio.sleep(0.01)
        await scheduler.wait_idle()

        assert peak == 1

    async def test_failed_run_returns_to_idle(self, caplog):
        calls = []

        def pipeline():
            calls.append(1)
            raise RuntimeError("boom")

        scheduler = ChangeScheduler(pipeline, debounce=DEBOUNCE)

        with caplog.at_level(logging.ERROR):
            scheduler.notify()
            await scheduler.wait_idle()

        assert scheduler.phase is Phase.IDLE
        assert "Sync run #1 failed" in caplog.text

        scheduler.notify()
        await scheduler.wait_idle()
        assert len(calls) == 2


class TestReset:
    async def test_reset_cancels_pending_timer(self):
        calls = []
        scheduler = ChangeScheduler(lambda: calls.append(1), debounce=DEBOUNCE)

        scheduler.notify()
        scheduler.reset()
        await asyncio.sleep(DEBOUNCE * 3)

        assert calls == []
        assert scheduler.phase is Phase.IDLE
        assert scheduler.state.runs == 0

    async def test_close_cancels_running_pipeline(self):
        started = asyncio.Event()
        cancelled = False

        async def pipeline():
            nonlocal cancelled
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled = True
                raise

        scheduler = ChangeScheduler(pipeline, debounce=DEBOUNCE)
        scheduler.notify()
        await started.wait()

        await scheduler.close()

        assert cancelled
        assert scheduler.phase is Phase.IDLE

    async def test_close_waits_for_blocking_pipeline(self):
        started = threading.Event()
        release = threading.Event()
        finished = []

        def pipeline():
            started.set()
            release.wait(5)
            finished.append(1)

        scheduler = ChangeScheduler(pipeline, debounce=DEBOUNCE)
        scheduler.notify()
        await asyncio.to_thread(started.wait, 5)

        closing = asyncio.create_task(scheduler.close())
        await asyncio.sleep(DEBOUNCE * 2)
        assert not closing.done()

        release.set()
        await closing

        assert finished == [1]
        assert scheduler.phase is Phase.IDLE

    async def test_run_after_reset_waits_for_abandoned_thread(self):
        lock = threading.Lock()
        first_started = threading.Event()
        release = threading.Event()
        active = 0
        max_active = 0
        calls = 0

        def pipeline():
            nonlocal active, max_active, calls
            with lock:
                calls += 1
                active += 1
                max_active = max(max_active, active)
            first_started.set()
            release.wait(5)
            with lock:
                active -= 1

        scheduler = ChangeScheduler(pipeline, debounce=DEBOUNCE)
        scheduler.notify()
        await asyncio.to_thread(first_started.wait, 5)

        scheduler.reset()
        scheduler.notify()
        await asyncio.sleep(DEBOUNCE * 3)
        assert calls == 1

        release.set()
        await scheduler.wait_idle()

        assert calls == 2
        assert max_active == 1
