"""
Pytest configuration and shared fixtures for SLA service tests.

Testing Standards:
- Async tests run under pytest-asyncio (auto mode enabled in pyproject.toml)
- Ports are replaced by the in-memory fakes in tests/helpers/fakes.py
- Unit tests go in tests/unit/
- Integration tests go in tests/integration/
"""

import pytest

from src.sla.application import SLAMonitor, StaticMonitorConfigProvider
from src.sla.domain import SLAMonitorConfig
from src.sla.infrastructure import InMemoryEscalationStateStore
from tests.helpers.fakes import (
    Clock,
    FakeThreadRepository,
    FakePolicyRepository,
    FakeMembershipRepository,
    FakeUnitOfWork,
    RecordingSink,
)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def thread_repo() -> FakeThreadRepository:
    return FakeThreadRepository()


@pytest.fixture
def policy_repo() -> FakePolicyRepository:
    return FakePolicyRepository()


@pytest.fixture
def membership_repo() -> FakeMembershipRepository:
    return FakeMembershipRepository()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def state_store() -> InMemoryEscalationStateStore:
    return InMemoryEscalationStateStore()


@pytest.fixture
def monitor_config() -> SLAMonitorConfig:
    return SLAMonitorConfig(
        thread_timeout_seconds=1.0,
        sink_timeout_seconds=1.0,
        tenant_load_timeout_seconds=1.0,
    )


@pytest.fixture
def monitor(thread_repo, policy_repo, sink, state_store, monitor_config, clock) -> SLAMonitor:
    return SLAMonitor(
        unit_of_work_factory=lambda: FakeUnitOfWork(thread_repo, policy_repo),
        escalation_sink=sink,
        state_store=state_store,
        config_provider=StaticMonitorConfigProvider(monitor_config),
        clock=clock,
    )
