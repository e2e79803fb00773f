"""Debounced, single-flight scheduling of sync runs.

Change notifications arrive in bursts.  ``ChangeScheduler`` collapses a
burst into one pipeline run and never runs the pipeline twice at once:

* IDLE or DEBOUNCING + ``notify()`` -> DEBOUNCING, timer restarted.
* Timer fires -> RUNNING.
* RUNNING + ``notify()`` -> a re-run is queued.
* Run finishes -> the queued re-run starts immediately, else IDLE.

All state lives in one ``SchedulerState`` owned by the scheduler so a
test can inspect or reset it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..core.async_utils import call_maybe_async

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.3


class Phase(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    RUNNING = "running"


@dataclass
class SchedulerState:
    phase: Phase = Phase.IDLE
    queued: bool = False
    timer: asyncio.TimerHandle | None = None
    runs: int = 0


class ChangeScheduler:
    """Coalesce notifications into serialised pipeline runs.

    Args:
        pipeline: Callable run for each sync.  Coroutine functions are
            awaited; plain callables run in a worker thread.
        debounce: Quiet period in seconds before a run starts.

    A worker thread cannot be interrupted.  When ``reset()`` abandons a
    blocking run, the next run waits for that thread to finish and
    ``close()`` returns only after it has.
    """

    def __init__(
        self,
        pipeline: Callable[[], Any],
        debounce: float = DEFAULT_DEBOUNCE,
    ) -> None:
        self.pipeline = pipeline
        self.debounce = debounce
        self.state = SchedulerState()
        self._task: asyncio.Task | None = None
        self._inflight: asyncio.Future | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def notify(self) -> None:
        """Record a change notification.  Must be called on the loop thread."""
        state = self.state
        if state.phase is Phase.RUNNING:
            if not state.queued:
                logger.debug("Sync in progress, queueing another run")
            state.queued = True
            return

        if state.timer is not None:
            state.timer.cancel()
        loop = asyncio.get_running_loop()
        state.timer = loop.call_later(self.debounce, self._on_timer)
        state.phase = Phase.DEBOUNCING
        self._idle.clear()

    def _on_timer(self) -> None:
        self.state.timer = None
        self.state.phase = Phase.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run_loop())

    async def _run_loop(self) -> None:
        state = self.state
        try:
            while True:
                state.runs += 1
                logger.info("Starting sync run #%d", state.runs)
                try:
                    await self._run_pipeline()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Sync run #%d failed", state.runs)
                if not state.queued:
                    break
                state.queued = False
                logger.debug("Changes arrived during the run, syncing again")
        finally:
            if self._task is asyncio.current_task():
                state.phase = Phase.IDLE
                self._task = None
                self._idle.set()

    async def _run_pipeline(self) -> None:
        previous = self._inflight
        if previous is not None and not previous.done():
            logger.debug("Waiting for the abandoned sync run to finish")
            await asyncio.wait([previous])
        self._inflight = asyncio.ensure_future(call_maybe_async(self.pipeline))
        await asyncio.shield(self._inflight)

    async def wait_idle(self) -> None:
        """Wait until no run is pending or in flight."""
        while not self._idle.is_set():
            await self._idle.wait()

    def reset(self) -> None:
        """Cancel any pending timer or run and return to IDLE.

        A coroutine pipeline is cancelled.  A pipeline running in a worker
        thread keeps running until it returns.
        """
        if self.state.timer is not None:
            self.state.timer.cancel()
        inflight = self._inflight
        if (
            inflight is not None
            and not inflight.done()
            and inspect.iscoroutinefunction(self.pipeline)
        ):
            inflight.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.state = SchedulerState()
        self._idle.set()

    async def close(self) -> None:
        """Cancel pending work and wait until no pipeline is running."""
        task = self._task
        inflight = self._inflight
        self.reset()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if inflight is not None and not inflight.done():
            await asyncio.wait([inflight])
