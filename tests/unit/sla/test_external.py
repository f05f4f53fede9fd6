"""Unit tests for SLA external integrations.

Tests:
- Slack sink message building, retries and failure reporting
- Circuit breaker state transitions
- Composite sink fan-out
- Monitor config loading and hot reload
- View invalidation
- Scheduler job registration
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from src.config import SLAState
from src.core import ConfigurationException, SinkDeliveryException
from src.sla.application import StaticMonitorConfigProvider
from src.sla.domain import EscalationEvent, SLAMonitorConfig
from src.sla.infrastructure import (
    CircuitBreaker,
    CompositeEscalationSink,
    SLAMonitorConfigManager,
    SlackEscalationSink,
    SLAScheduler,
    ViewInvalidator,
)
from tests.helpers.fakes import RecordingSink


def make_event(status: str = SLAState.BREACHED) -> EscalationEvent:
    return EscalationEvent(
        thread_id="thr-1",
        tenant_id="tenant-1",
        status=status,
        previous_status=None,
        minutes_elapsed=65,
        minutes_remaining=-5,
        policy_id="pol-1",
        first_response_minutes=60,
        assignee_id="agent-1",
        contact_name="Jane Doe",
        triggered_at=datetime(2024, 1, 15, 11, 5, tzinfo=timezone.utc),
    )


def slack_sink(handler, **kwargs) -> SlackEscalationSink:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SlackEscalationSink(
        webhook_url="https://hooks.slack.test/T000/B000",
        app_base_url="https://inbox.test",
        backoff_base_seconds=0,
        http_client=client,
        **kwargs,
    )


class TestSlackEscalationSink:

    async def test_posts_block_message(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        sink = slack_sink(handler)
        await sink.notify(make_event())

        assert len(requests) == 1
        body = requests[0].read().decode()
        assert "SLA Breached" in body
        assert "https://inbox.test/app/tenant-1/inbox/thr-1" in body
        assert "5m overdue" in body

    async def test_channels_follow_monitor_config(self) -> None:
        channels = []

        def handler(request: httpx.Request) -> httpx.Response:
            channels.append(json.loads(request.read())["channel"])
            return httpx.Response(200)

        config = SLAMonitorConfig(escalation_channels={"warning": ["#a"], "breached": ["#b", "#c"]})
        sink = slack_sink(handler, config_provider=StaticMonitorConfigProvider(config))

        await sink.notify(make_event(SLAState.BREACHED))

        assert channels == ["#b", "#c"]

    async def test_failing_channel_does_not_stop_the_rest(self) -> None:
        delivered = []

        def handler(request: httpx.Request) -> httpx.Response:
            channel = json.loads(request.read())["channel"]
            if channel == "#b":
                return httpx.Response(500)
            delivered.append(channel)
            return httpx.Response(200)

        config = SLAMonitorConfig(escalation_channels={"breached": ["#b", "#c"]})
        sink = slack_sink(handler, config_provider=StaticMonitorConfigProvider(config), max_retries=1)

        with pytest.raises(SinkDeliveryException) as exc_info:
            await sink.notify(make_event(SLAState.BREACHED))

        assert delivered == ["#c"]
        assert "#b: webhook returned 500" in str(exc_info.value)

    async def test_retries_then_succeeds(self) -> None:
        responses = iter([httpx.Response(500), httpx.Response(200)])
        sink = slack_sink(lambda request: next(responses))

        await sink.notify(make_event())

    async def test_exhausted_retries_raise(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        sink = slack_sink(handler, max_retries=3)

        with pytest.raises(SinkDeliveryException) as exc_info:
            await sink.notify(make_event())

        assert len(calls) == 3
        assert "503" in str(exc_info.value)

    async def test_transport_errors_raise(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        sink = slack_sink(handler, max_retries=2)

        with pytest.raises(SinkDeliveryException):
            await sink.notify(make_event())

    async def test_no_webhook_is_a_no_op(self) -> None:
        sink = SlackEscalationSink(webhook_url="")

        await sink.notify(make_event())


class TestCircuitBreaker:

    def test_opens_after_threshold_and_half_opens_after_timeout(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=lambda: now[0])

        breaker.record_failure()
        assert breaker.allow_request() is True
        breaker.record_failure()
        assert breaker.allow_request() is False

        now[0] = 31.0
        assert breaker.state == "half_open"
        assert breaker.allow_request() is True

        breaker.record_success()
        assert breaker.state == "closed"


class TestCompositeEscalationSink:

    async def test_all_sinks_attempted_and_failures_reported(self) -> None:
        failing = RecordingSink(fail=True)
        working = RecordingSink()
        composite = CompositeEscalationSink([failing, working])

        with pytest.raises(SinkDeliveryException):
            await composite.notify(make_event())

        assert failing.attempts == 1
        assert len(working.events) == 1

    async def test_hanging_slack_does_not_hold_back_in_app(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        in_app = RecordingSink()
        composite = CompositeEscalationSink([slack_sink(handler), in_app])

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(composite.notify(make_event()), timeout=0.05)

        assert len(in_app.events) == 1


class TestSLAMonitorConfigManager:

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        manager = SLAMonitorConfigManager()

        config = manager.load(tmp_path / "absent.yaml")

        assert config.warning_ratio == 0.2
        assert manager.get_config() is config

    def test_loads_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "sla_monitor.yaml"
        path.write_text("warning_ratio: 0.25\nmax_concurrent_tenants: 2\n")

        config = SLAMonitorConfigManager().load(path)

        assert config.warning_ratio == 0.25
        assert config.max_concurrent_tenants == 2

    def test_invalid_initial_config_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "sla_monitor.yaml"
        path.write_text("warning_ratio: 3\n")

        with pytest.raises(ConfigurationException):
            SLAMonitorConfigManager().load(path)

    def test_bad_reload_keeps_previous_config(self, tmp_path: Path) -> None:
        path = tmp_path / "sla_monitor.yaml"
        path.write_text("warning_ratio: 0.3\n")
        manager = SLAMonitorConfigManager()
        manager.load(path)

        path.write_text("warning_ratio: [not, a, number\n")

        assert manager.reload() is False
        assert manager.get_config().warning_ratio == 0.3

    def test_reload_picks_up_changes(self, tmp_path: Path) -> None:
        path = tmp_path / "sla_monitor.yaml"
        path.write_text("warning_ratio: 0.3\n")
        manager = SLAMonitorConfigManager()
        manager.load(path)

        path.write_text("warning_ratio: 0.1\n")

        assert manager.reload() is True
        assert manager.get_config().warning_ratio == 0.1


class TestViewInvalidator:

    def test_settings_path(self) -> None:
        assert ViewInvalidator.settings_path("tenant-1") == "/app/tenant-1/settings/sla"

    async def test_without_endpoint_only_logs(self) -> None:
        await ViewInvalidator().invalidate("tenant-1")


class TestSLAScheduler:

    async def test_start_registers_single_instance_job(self) -> None:
        scheduler = SLAScheduler(interval_seconds=30)
        job = AsyncMock()

        await scheduler.start(job)
        try:
            registered = scheduler._scheduler.get_job("sla_monitor")
            assert scheduler.is_running is True
            assert registered.max_instances == 1
            assert registered.trigger.interval.total_seconds() == 30
        finally:
            await scheduler.stop()

        assert scheduler.is_running is False

    async def test_stop_without_start_is_noop(self) -> None:
        await SLAScheduler().stop()
