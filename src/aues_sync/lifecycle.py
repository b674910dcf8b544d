"""Process lifecycle: task wiring, signal shutdown and the fail-fast error boundary.

``SyncService.run()`` is the top-level error boundary.  It resolves to an
``ExitCode``:

    SIGINT / SIGTERM                       -> ExitCode.OK
    error escaping a scheduled invocation  -> ExitCode.FAILURE
    error reaching the loop exception hook -> ExitCode.FAILURE

Endpoint failures never reach this module; the executor absorbs them.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from enum import IntEnum
from typing import Any

import httpx

from aues_sync.config import Settings
from aues_sync.exceptions import SyncError
from aues_sync.executor import BackoffRetryExecutor
from aues_sync.failure_tracker import FailureTracker
from aues_sync.scheduler import AdaptiveIntervalScheduler, FixedIntervalScheduler
from aues_sync.tasks import SchedulePolicy, SyncTask

logger = logging.getLogger("aues_sync.lifecycle")

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ExitCode(IntEnum):
    OK = 0
    FAILURE = 1


def build_tasks(settings: Settings) -> list[SyncTask]:
    """Return the process's sync tasks, in start order."""
    return [
        SyncTask(
            label="orders",
            url=settings.dashboard_url,
            policy=SchedulePolicy.FIXED,
            interval_seconds=settings.orders_sync_interval_seconds,
        ),
        SyncTask(
            label="members",
            url=settings.member_sync_url,
            policy=SchedulePolicy.ADAPTIVE,
            interval_seconds=settings.member_sync_default_seconds,
        ),
    ]


class SyncService:
    """Run every sync task until a shutdown signal or an unexpected error.

    Usage::

        exit_code = asyncio.run(SyncService(settings).run())
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        tasks: list[SyncTask] | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings:    Validated process settings.
            http_client: Optional pre-configured httpx client (for testing).
                         When omitted the service creates and closes its own.
            tasks:       Override the default task list (for testing).
        """
        self._settings = settings
        self._http_client = http_client
        self.tasks = tasks if tasks is not None else build_tasks(settings)
        self.schedulers: list[FixedIntervalScheduler | AdaptiveIntervalScheduler] = []
        self._stop_event = asyncio.Event()
        self._exit_code = ExitCode.OK
        self._previous_signal_handlers: dict[signal.Signals, Any] = {}
        self._loop_signal_handlers: list[signal.Signals] = []

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def _make_scheduler(
        self, task: SyncTask, executor: BackoffRetryExecutor
    ) -> FixedIntervalScheduler | AdaptiveIntervalScheduler:
        if task.policy is SchedulePolicy.ADAPTIVE:
            return AdaptiveIntervalScheduler(task, executor, on_error=self.report_error)
        return FixedIntervalScheduler(task, executor, on_error=self.report_error)

    # ------------------------------------------------------------------
    # Stop requests
    # ------------------------------------------------------------------

    def request_shutdown(self, sig: signal.Signals) -> None:
        """Graceful stop on a termination signal."""
        if self.stopping:
            return
        logger.info("Received %s; shutting down", sig.name)
        self._stop_event.set()

    def report_error(self, exc: BaseException) -> None:
        """Fail fast on an error that escaped task-level handling."""
        if self.stopping:
            logger.debug("Ignoring error reported during shutdown: %r", exc)
            return
        logger.critical("Unhandled error; exiting: %s", exc, exc_info=exc)
        self._exit_code = ExitCode.FAILURE
        self._stop_event.set()

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        if exc is None:
            exc = SyncError(context.get("message", "unhandled event loop error"))
        self.report_error(exc)

    # ------------------------------------------------------------------
    # Signal wiring
    # ------------------------------------------------------------------

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
                self._loop_signal_handlers.append(sig)
            except (NotImplementedError, RuntimeError):
                # Event loops without add_signal_handler (e.g. Windows proactor).
                self._previous_signal_handlers[sig] = signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(
                        self.request_shutdown, signal.Signals(signum)
                    ),
                )

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self._loop_signal_handlers:
            loop.remove_signal_handler(sig)
        for sig, handler in self._previous_signal_handlers.items():
            signal.signal(sig, handler)
        self._loop_signal_handlers.clear()
        self._previous_signal_handlers.clear()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> ExitCode:
        """Start every scheduler and block until a stop is requested.

        Returns:
            ExitCode.OK after a signal, ExitCode.FAILURE after an unexpected error.
        """
        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._exit_code = ExitCode.OK

        client = self._http_client or httpx.AsyncClient(follow_redirects=True)
        tracker = FailureTracker(threshold=self._settings.failure_warning_threshold)
        executor = BackoffRetryExecutor(
            self._settings.cron_secret,
            client,
            tracker,
            max_retries=self._settings.sync_max_retries,
            request_timeout=self._settings.sync_request_timeout_seconds,
        )
        self.schedulers = [self._make_scheduler(task, executor) for task in self.tasks]

        previous_exception_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_exception)
        self._install_signal_handlers(loop)
        try:
            for scheduler in self.schedulers:
                scheduler.start()
            logger.info("Sync trigger running with %d task(s)", len(self.schedulers))
            await self._stop_event.wait()
        finally:
            for scheduler in self.schedulers:
                scheduler.stop()
            for scheduler in self.schedulers:
                await scheduler.cancel_in_flight()
            self._remove_signal_handlers(loop)
            loop.set_exception_handler(previous_exception_handler)
            if self._http_client is None:
                await client.aclose()

        logger.info("Sync trigger stopped (exit code %d)", self._exit_code)
        return self._exit_code
