"""Tests for the service error boundary, signal shutdown and the entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from aues_sync import main as main_module
from aues_sync.config import Settings, get_settings
from aues_sync.lifecycle import ExitCode, SyncService, build_tasks
from aues_sync.scheduler import AdaptiveIntervalScheduler, FixedIntervalScheduler
from aues_sync.tasks import SchedulePolicy, SyncTask
from aues_sync.tests.conftest import MEMBERS_URL, ORDERS_URL, TEST_SECRET, RecordingTransport


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        cron_secret=TEST_SECRET,
        dashboard_url=ORDERS_URL,
        member_sync_url=MEMBERS_URL,
    )


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport([httpx.Response(200, json={"nextCheckInSeconds": 120})])


async def _run_until(service: SyncService, condition, timeout: float = 2.0) -> asyncio.Task:
    runner = asyncio.create_task(service.run())
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            runner.cancel()
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)
    return runner


class TestBuildTasks:
    def test_orders_fixed_members_adaptive(self, settings: Settings) -> None:
        orders, members = build_tasks(settings)
        assert (orders.label, orders.policy, orders.interval_seconds) == (
            "orders", SchedulePolicy.FIXED, 600,
        )
        assert (members.label, members.policy, members.interval_seconds) == (
            "members", SchedulePolicy.ADAPTIVE, 300,
        )
        assert orders.failure_state is not members.failure_state


class TestSyncService:
    def test_shutdown_request_before_run(self, settings) -> None:
        service = SyncService(settings)
        assert not service.stopping
        service.request_shutdown(signal.SIGTERM)
        assert service.stopping

    @pytest.mark.asyncio
    async def test_first_invocation_fires_immediately(self, settings, transport) -> None:
        async with httpx.AsyncClient(transport=transport) as client:
            service = SyncService(settings, http_client=client)
            runner = await _run_until(service, lambda: len(transport.requests) >= 2)

            urls = sorted(str(r.url) for r in transport.requests)
            assert urls == sorted([ORDERS_URL, MEMBERS_URL])
            assert isinstance(service.schedulers[0], FixedIntervalScheduler)
            assert isinstance(service.schedulers[1], AdaptiveIntervalScheduler)

            service.request_shutdown(signal.SIGTERM)
            assert await runner == ExitCode.OK

    @pytest.mark.asyncio
    async def test_signal_stops_schedulers(self, settings, transport, caplog) -> None:
        caplog.set_level(logging.INFO, logger="aues_sync.lifecycle")
        async with httpx.AsyncClient(transport=transport) as client:
            service = SyncService(settings, http_client=client)
            runner = await _run_until(service, lambda: len(transport.requests) >= 2)

            service.request_shutdown(signal.SIGINT)
            assert await runner == ExitCode.OK

        assert all(not s.timer_armed for s in service.schedulers)
        assert any("SIGINT" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_real_sigterm_delivery(self, settings, transport) -> None:
        async with httpx.AsyncClient(transport=transport) as client:
            service = SyncService(settings, http_client=client)
            runner = await _run_until(service, lambda: len(transport.requests) >= 2)

            signal.raise_signal(signal.SIGTERM)
            assert await asyncio.wait_for(runner, timeout=2) == ExitCode.OK

    @pytest.mark.asyncio
    async def test_task_error_fails_fast(self, settings, transport) -> None:
        def broken_payload(label: str):
            raise RuntimeError("payload builder bug")

        tasks = [
            SyncTask(
                label="orders",
                url=ORDERS_URL,
                policy=SchedulePolicy.FIXED,
                interval_seconds=600,
                payload_builder=broken_payload,
            )
        ]
        async with httpx.AsyncClient(transport=transport) as client:
            service = SyncService(settings, http_client=client, tasks=tasks)
            exit_code = await asyncio.wait_for(service.run(), timeout=2)

        assert exit_code == ExitCode.FAILURE
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_loop_callback_error_fails_fast(self, settings, transport) -> None:
        async with httpx.AsyncClient(transport=transport) as client:
            service = SyncService(settings, http_client=client)
            runner = await _run_until(service, lambda: len(transport.requests) >= 2)

            asyncio.get_running_loop().call_soon(lambda: 1 / 0)
            assert await asyncio.wait_for(runner, timeout=2) == ExitCode.FAILURE

    @pytest.mark.asyncio
    async def test_endpoint_failures_do_not_stop_process(self, settings) -> None:
        transport = RecordingTransport([httpx.Response(401)])
        async with httpx.AsyncClient(transport=transport) as client:
            service = SyncService(settings, http_client=client)
            runner = await _run_until(service, lambda: len(transport.requests) >= 2)
            await asyncio.sleep(0.02)

            assert not runner.done()
            assert all(t.consecutive_failures == 1 for t in service.tasks)

            service.request_shutdown(signal.SIGTERM)
            assert await runner == ExitCode.OK

    @pytest.mark.asyncio
    async def test_first_error_wins(self, settings, transport) -> None:
        async with httpx.AsyncClient(transport=transport) as client:
            service = SyncService(settings, http_client=client)
            runner = await _run_until(service, lambda: len(transport.requests) >= 2)

            service.report_error(RuntimeError("boom"))
            service.request_shutdown(signal.SIGTERM)
            assert await runner == ExitCode.FAILURE


class TestMain:
    @pytest.fixture
    def env(self, monkeypatch: pytest.MonkeyPatch, tmp_path):
        get_settings.cache_clear()
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CRON_SECRET", TEST_SECRET)
        monkeypatch.setenv("DASHBOARD_URL", ORDERS_URL)
        monkeypatch.setenv("MEMBER_SYNC_URL", MEMBERS_URL)
        yield monkeypatch
        get_settings.cache_clear()

    def test_missing_secret_exits_before_any_request(self, env, caplog) -> None:
        env.delenv("CRON_SECRET")
        service_cls = MagicMock()
        env.setattr(main_module, "SyncService", service_cls)

        assert main_module.main() == 1
        service_cls.assert_not_called()
        assert any(
            "CRON_SECRET is not set" in r.getMessage() for r in caplog.records
        )

    def test_each_missing_value_logged(self, env, caplog) -> None:
        env.delenv("DASHBOARD_URL")
        env.delenv("MEMBER_SYNC_URL")
        env.setattr(main_module, "SyncService", MagicMock())

        assert main_module.main() == 1
        messages = [r.getMessage() for r in caplog.records]
        assert any("DASHBOARD_URL is not set" in m for m in messages)
        assert any("MEMBER_SYNC_URL is not set" in m for m in messages)

    def test_missing_and_invalid_values_both_logged(self, env, caplog) -> None:
        env.delenv("CRON_SECRET")
        env.setenv("DASHBOARD_URL", "http://[::1")
        service_cls = MagicMock()
        env.setattr(main_module, "SyncService", service_cls)

        assert main_module.main() == 1
        service_cls.assert_not_called()
        messages = [r.getMessage() for r in caplog.records]
        assert any("CRON_SECRET is not set" in m for m in messages)
        assert any("Invalid configuration value DASHBOARD_URL" in m for m in messages)

    def test_returns_service_exit_code(self, env) -> None:
        service_cls = MagicMock()
        service_cls.return_value.run = AsyncMock(return_value=ExitCode.OK)
        env.setattr(main_module, "SyncService", service_cls)

        assert main_module.main() == 0
        service_cls.assert_called_once()

    def test_uncaught_error_exits_with_failure(self, env) -> None:
        service_cls = MagicMock()
        service_cls.return_value.run = AsyncMock(side_effect=RuntimeError("boom"))
        env.setattr(main_module, "SyncService", service_cls)

        assert main_module.main() == 1
