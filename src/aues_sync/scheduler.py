"""Fixed-interval and adaptive-interval schedulers for sync tasks.

Both schedulers invoke their task once immediately on ``start()`` and then
re-arm themselves with ``loop.call_later`` timers:

    FixedIntervalScheduler    : ticks every ``interval_seconds`` from the
                                previous tick, whatever the outcome.
    AdaptiveIntervalScheduler : after each attempt sequence resolves, arms a
                                single-shot timer for the delay suggested by
                                the endpoint (``nextCheckInSeconds``) or the
                                task's default interval.

``stop()`` cancels pending timers only.  An attempt sequence already in
flight runs to completion, bounded by the executor's request timeout.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Any, Callable, Coroutine

from aues_sync.exceptions import UnhandledTaskError
from aues_sync.executor import BackoffRetryExecutor
from aues_sync.tasks import AttemptOutcome, Success, SyncTask

logger = logging.getLogger("aues_sync.scheduler")

NEXT_CHECK_IN_FIELD = "nextCheckInSeconds"

ErrorCallback = Callable[[BaseException], None]


def next_delay(outcome: AttemptOutcome | None, default_seconds: float) -> float:
    """Compute the adaptive delay (seconds) following ``outcome``.

    The endpoint's suggestion is used only when the outcome is a Success
    whose body is a JSON object carrying a finite, strictly positive number
    under ``nextCheckInSeconds``.  Everything else falls back to the default.
    """
    if isinstance(outcome, Success) and isinstance(outcome.data, dict):
        value = outcome.data.get(NEXT_CHECK_IN_FIELD)
        if (
            isinstance(value, (int, float))
            and not isinstance(value, bool)
            and math.isfinite(value)
            and value > 0
        ):
            return float(value)
    return float(default_seconds)


class _TaskScheduler:
    """Shared plumbing: timer handle, in-flight tracking, error reporting."""

    def __init__(
        self,
        task: SyncTask,
        executor: BackoffRetryExecutor,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._task = task
        self._executor = executor
        self._on_error = on_error
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: set[asyncio.Task] = set()
        self.invocations = 0
        self.last_outcome: AttemptOutcome | None = None

    @property
    def task(self) -> SyncTask:
        return self._task

    @property
    def in_flight(self) -> bool:
        return bool(self._in_flight)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.cancelled()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        job = asyncio.get_running_loop().create_task(coro, name=f"sync-{self._task.label}")
        self._in_flight.add(job)
        job.add_done_callback(self._job_done)
        return job

    def _job_done(self, job: asyncio.Task) -> None:
        self._in_flight.discard(job)
        if job.cancelled():
            return
        exc = job.exception()
        if exc is None:
            return
        error = UnhandledTaskError(self._task.label, exc)
        if self._on_error is not None:
            self._on_error(error)
        else:
            asyncio.get_running_loop().call_exception_handler(
                {"message": str(error), "exception": exc, "task": job}
            )

    async def _invoke(self) -> AttemptOutcome:
        self.invocations += 1
        logger.debug("%s: invocation #%d starting", self._task.label, self.invocations)
        outcome = await self._executor.attempt(self._task)
        self.last_outcome = outcome
        return outcome

    async def wait_idle(self) -> None:
        """Wait for every in-flight invocation to finish (used on shutdown and in tests)."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def cancel_in_flight(self) -> None:
        """Abort in-flight invocations.  Only the process shutdown path uses this."""
        jobs = list(self._in_flight)
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)


class FixedIntervalScheduler(_TaskScheduler):
    """Invoke a task immediately and then every ``task.interval_seconds``.

    Ticks are anchored to the previous tick, not to the end of the previous
    attempt sequence.  If an invocation is still running (retries included)
    when the next tick fires, that tick is skipped so the same task never
    runs twice concurrently.
    """

    def __init__(
        self,
        task: SyncTask,
        executor: BackoffRetryExecutor,
        on_error: ErrorCallback | None = None,
    ) -> None:
        super().__init__(task, executor, on_error)
        self._running = False
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            raise RuntimeError(f"Scheduler for '{self._task.label}' already started")
        self._running = True
        logger.info(
            "%s: fixed schedule every %.0fs", self._task.label, self._task.interval_seconds
        )
        self._tick()

    def _tick(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._task.interval_seconds, self._tick)
        if self.in_flight:
            self.skipped_ticks += 1
            logger.warning(
                "%s: previous sync still running; skipping this tick", self._task.label
            )
            return
        self._spawn(self._invoke())

    def stop(self) -> None:
        self._running = False
        self._cancel_timer()


class AdaptiveState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ARMED = "armed"
    STOPPED = "stopped"


class AdaptiveIntervalScheduler(_TaskScheduler):
    """Invoke a task, then wait for a server-suggested delay before the next run.

    State machine::

        IDLE --start--> RUNNING --attempt resolved--> ARMED(delay)
        ARMED --timer fires--> RUNNING
        any --stop--> STOPPED

    Only the most recent delay is kept (``next_delay_seconds``).
    """

    def __init__(
        self,
        task: SyncTask,
        executor: BackoffRetryExecutor,
        on_error: ErrorCallback | None = None,
    ) -> None:
        super().__init__(task, executor, on_error)
        self._state = AdaptiveState.IDLE
        self.next_delay_seconds: float | None = None

    @property
    def state(self) -> AdaptiveState:
        return self._state

    @property
    def next_delay_ms(self) -> int | None:
        if self.next_delay_seconds is None:
            return None
        return int(round(self.next_delay_seconds * 1000))

    def start(self) -> None:
        if self._state is not AdaptiveState.IDLE:
            raise RuntimeError(
                f"Scheduler for '{self._task.label}' cannot start from state {self._state.value}"
            )
        logger.info(
            "%s: adaptive schedule (default %.0fs)",
            self._task.label,
            self._task.interval_seconds,
        )
        self._fire()

    def _fire(self) -> None:
        self._timer = None
        self._state = AdaptiveState.RUNNING
        self._spawn(self._cycle())

    async def _cycle(self) -> AttemptOutcome | None:
        if self._state is AdaptiveState.STOPPED:
            return None
        outcome = await self._invoke()

        delay = next_delay(outcome, self._task.interval_seconds)
        self.next_delay_seconds = delay
        if self._state is AdaptiveState.STOPPED:
            logger.debug("%s: stopped during sync; not re-arming", self._task.label)
            return outcome

        self._timer = asyncio.get_running_loop().call_later(delay, self._fire)
        self._state = AdaptiveState.ARMED
        logger.info("%s: next sync in %.0fs", self._task.label, delay)
        return outcome

    def stop(self) -> None:
        self._state = AdaptiveState.STOPPED
        self._cancel_timer()
