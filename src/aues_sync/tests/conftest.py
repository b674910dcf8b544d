"""Shared fixtures for sync trigger tests."""

from __future__ import annotations

import json
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from aues_sync.executor import BackoffRetryExecutor
from aues_sync.failure_tracker import FailureTracker
from aues_sync.tasks import AttemptOutcome, SchedulePolicy, SyncTask

TEST_SECRET = "test-cron-secret"
ORDERS_URL = "https://dashboard.example.test/api/cron/sync-orders"
MEMBERS_URL = "https://dashboard.example.test/api/cron/sync-members"


# ---------------------------------------------------------------------------
# Task fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def orders_task() -> SyncTask:
    return SyncTask(
        label="orders",
        url=ORDERS_URL,
        policy=SchedulePolicy.FIXED,
        interval_seconds=600,
    )


@pytest.fixture
def members_task() -> SyncTask:
    return SyncTask(
        label="members",
        url=MEMBERS_URL,
        policy=SchedulePolicy.ADAPTIVE,
        interval_seconds=300,
    )


@pytest.fixture
def tracker() -> FailureTracker:
    return FailureTracker(threshold=5)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


class RecordingTransport(httpx.MockTransport):
    """MockTransport that replays scripted responses and records requests.

    Each script item is either an ``httpx.Response`` or an exception class /
    instance to raise for that request.  The last item repeats once the
    script runs out.
    """

    def __init__(self, script: list) -> None:
        self.script = list(script)
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.script)) - 1
        item = self.script[index]
        if isinstance(item, type) and issubclass(item, Exception):
            raise item("scripted failure", request=request)
        if isinstance(item, Exception):
            raise item
        # Fresh response per request; a Response is bound to one request.
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def make_executor(tracker: FailureTracker) -> Callable:
    """Build an executor around a scripted transport.

    Returns a factory ``(script) -> (executor, transport, sleep_mock)``.
    """
    def _factory(script: list, **kwargs):
        transport = RecordingTransport(script)
        client = httpx.AsyncClient(transport=transport)
        sleep = AsyncMock()
        executor = BackoffRetryExecutor(
            TEST_SECRET, client, tracker, sleep=sleep, **kwargs
        )
        return executor, transport, sleep

    return _factory


def fake_executor(*outcomes: AttemptOutcome, side_effect=None) -> MagicMock:
    """An executor double whose ``attempt`` returns the given outcomes in order."""
    executor = MagicMock(spec=BackoffRetryExecutor)
    if side_effect is not None:
        executor.attempt = AsyncMock(side_effect=side_effect)
    elif len(outcomes) == 1:
        executor.attempt = AsyncMock(return_value=outcomes[0])
    else:
        executor.attempt = AsyncMock(side_effect=list(outcomes))
    return executor
