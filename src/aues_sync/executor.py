"""Backoff-retry executor: one logical sync attempt against an endpoint.

Each attempt sequence makes up to ``max_retries`` POST requests:

    2xx (redirects followed) -> Success, counter reset, stop
    400/401/403/429          -> Failure(retryable=False), counted, stop
    anything else / error    -> wait 2**attempt seconds and retry;
                                on the last try Failure(retryable=True), counted

Endpoint errors are always converted into an outcome and never propagate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from aues_sync.failure_tracker import FailureTracker
from aues_sync.tasks import (
    NON_RETRYABLE_STATUSES,
    AttemptOutcome,
    Failure,
    Success,
    SyncTask,
)

logger = logging.getLogger("aues_sync.executor")

DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUEST_TIMEOUT_S = 30.0


def backoff_seconds(attempt: int) -> float:
    """Return the wait after failed try number ``attempt`` (counted from 1)."""
    return float(2 ** attempt)


def parse_body(response: httpx.Response) -> Any | None:
    """Best-effort JSON decode.  Empty or malformed bodies yield None."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        logger.debug("Response body from %s is not JSON; ignoring", response.url)
        return None


class BackoffRetryExecutor:
    """Run attempt sequences for sync tasks.

    Usage::

        async with httpx.AsyncClient() as client:
            executor = BackoffRetryExecutor(secret, client, FailureTracker())
            outcome = await executor.attempt(task)
    """

    def __init__(
        self,
        secret: str,
        http_client: httpx.AsyncClient,
        tracker: FailureTracker,
        max_retries: int = DEFAULT_MAX_RETRIES,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            secret:          Shared bearer token for every endpoint.
            http_client:     httpx client used for all requests.
            tracker:         Failure tracker updated on terminal outcomes.
            max_retries:     Maximum tries per attempt sequence.
            request_timeout: Per-request timeout in seconds.
            sleep:           Awaitable sleep used for backoff waits (for testing).
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self._secret = secret
        self._http_client = http_client
        self._tracker = tracker
        self._max_retries = max_retries
        self._timeout = request_timeout
        self._sleep = sleep

    @property
    def tracker(self) -> FailureTracker:
        return self._tracker

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._secret}",
        }

    async def _post(self, task: SyncTask) -> httpx.Response:
        return await self._http_client.post(
            task.url,
            json=task.build_payload(),
            headers=self._build_headers(),
            timeout=self._timeout,
            follow_redirects=True,
        )

    async def attempt(self, task: SyncTask) -> AttemptOutcome:
        """Run one attempt sequence for ``task``.

        Args:
            task: The sync task to trigger.

        Returns:
            Success with the parsed response body, or Failure.
        """
        status_code: int | None = None
        error = ""

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._post(task)
            except httpx.InvalidURL as exc:
                count = self._tracker.record_failure(task)
                logger.error(
                    "%s sync URL is invalid (%s); not retrying (consecutive failures: %d)",
                    task.label, exc, count,
                )
                return Failure(retryable=False, error=f"InvalidURL: {exc}")
            except httpx.HTTPError as exc:
                status_code = None
                error = f"{type(exc).__name__}: {exc}"
            else:
                status_code = response.status_code
                if response.is_success:
                    data = parse_body(response)
                    self._tracker.record_success(task)
                    logger.info(
                        "%s synced successfully (HTTP %d, attempt %d)",
                        task.label, status_code, attempt,
                    )
                    return Success(data=data)

                error = f"HTTP {status_code} {response.reason_phrase}".rstrip()
                if status_code in NON_RETRYABLE_STATUSES:
                    count = self._tracker.record_failure(task)
                    logger.error(
                        "%s sync rejected with %s; not retrying (consecutive failures: %d)",
                        task.label, error, count,
                    )
                    return Failure(retryable=False, status_code=status_code, error=error)

            if attempt < self._max_retries:
                wait = backoff_seconds(attempt)
                logger.warning(
                    "%s sync attempt %d/%d failed (%s); retrying in %.0fs",
                    task.label, attempt, self._max_retries, error, wait,
                )
                await self._sleep(wait)

        count = self._tracker.record_failure(task)
        logger.error(
            "%s sync failed after %d attempts (%s); consecutive failures: %d",
            task.label, self._max_retries, error, count,
        )
        return Failure(retryable=True, status_code=status_code, error=error)
