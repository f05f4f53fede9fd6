"""Integration tests for the SQLAlchemy repositories on SQLite (aiosqlite).

Tests:
- Thread loading with ordered messages and open-status filtering
- Tenant default policy, local/channel assignments and business hours round trip
- Conditional INSERT/UPDATE escalation state
- Notification sink rows
- Full monitor run against the database
"""

from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import MessageDirection, PolicyScope, Role, SLAState, ThreadStatus, NotificationType
from src.infrastructure.database import build_session_maker, create_tables
from src.sla.application import SLAMonitor, StaticMonitorConfigProvider
from src.sla.domain import BusinessHours
from src.sla.infrastructure import (
    MembershipModel,
    MessageModel,
    NotificationModel,
    SLAPolicyModel,
    SQLAlchemyEscalationStateStore,
    SQLAlchemyMembershipRepository,
    SQLAlchemyNotificationSink,
    SQLAlchemySLAPolicyRepository,
    SQLAlchemyThreadRepository,
    SQLAlchemyUnitOfWork,
    TenantModel,
    ThreadModel,
)
from tests.helpers.fakes import T0, Clock, RecordingSink

pytestmark = pytest.mark.integration


@pytest.fixture
async def session_maker(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
async def seeded(session_maker):
    """Tenant with one overdue open thread, one answered thread and one closed thread."""
    async with session_maker() as session:
        session.add(TenantModel(id="tenant-1", name="Acme"))
        session.add(MembershipModel(user_id="admin", tenant_id="tenant-1", role=Role.ADMIN))
        session.add(ThreadModel(
            id="open-late", tenant_id="tenant-1", status=ThreadStatus.OPEN,
            contact_name="Jane", assignee_id="agent-1", created_at=T0,
            channel_type="WHATSAPP", local_id="branch-1",
            messages=[MessageModel(direction=MessageDirection.INBOUND, sent_at=T0)]
        ))
        session.add(ThreadModel(
            id="answered", tenant_id="tenant-1", status=ThreadStatus.PENDING, created_at=T0,
            messages=[
                MessageModel(direction=MessageDirection.OUTBOUND, sent_at=T0 + timedelta(minutes=30)),
                MessageModel(direction=MessageDirection.INBOUND, sent_at=T0),
            ]
        ))
        session.add(ThreadModel(id="closed", tenant_id="tenant-1", status=ThreadStatus.CLOSED, created_at=T0))
        session.add(SLAPolicyModel(
            id="pol-new", tenant_id="tenant-1", name="Later", first_response_minutes=240,
            created_at=T0 + timedelta(days=1)
        ))
        session.add(SLAPolicyModel(
            id="pol-old", tenant_id="tenant-1", name="First", first_response_minutes=60,
            created_at=T0 - timedelta(days=1)
        ))
        await session.commit()
    return session_maker


class TestThreadRepository:

    async def test_list_open_excludes_closed(self, seeded) -> None:
        async with seeded() as session:
            threads = await SQLAlchemyThreadRepository(session).list_open("tenant-1")

        assert sorted(t.id for t in threads) == ["answered", "open-late"]

    async def test_messages_are_ordered_and_first_response_found(self, seeded) -> None:
        async with seeded() as session:
            thread = await SQLAlchemyThreadRepository(session).get_by_id("answered")

        assert [m.direction for m in thread.messages] == [MessageDirection.INBOUND, MessageDirection.OUTBOUND]
        assert thread.first_response is not None

    async def test_tenants_with_open_threads(self, seeded) -> None:
        async with seeded() as session:
            tenant_ids = await SQLAlchemyThreadRepository(session).list_tenant_ids_with_open_threads()

        assert tenant_ids == ["tenant-1"]


class TestPolicyRepository:

    async def test_oldest_policy_is_tenant_default(self, seeded) -> None:
        async with seeded() as session:
            policy_set = await SQLAlchemySLAPolicyRepository(session).get_policy_set("tenant-1")

        assert policy_set.default.id == "pol-old"

    async def test_assign_update_and_unassign(self, seeded) -> None:
        async with seeded() as session:
            repo = SQLAlchemySLAPolicyRepository(session)
            created = await repo.assign("tenant-1", PolicyScope.CHANNEL, "WHATSAPP", "pol-new")
            updated = await repo.assign("tenant-1", PolicyScope.CHANNEL, "WHATSAPP", "pol-old")

            assert updated.id == created.id
            assert [(a.scope_key, a.policy_id) for a in await repo.list_assignments("tenant-1")] == [
                ("WHATSAPP", "pol-old")
            ]

            assert await repo.assign("tenant-1", PolicyScope.CHANNEL, "WHATSAPP", None) is None
            assert await repo.list_assignments("tenant-1") == []

    async def test_local_assignment_governs_thread(self, seeded) -> None:
        async with seeded() as session:
            repo = SQLAlchemySLAPolicyRepository(session)
            await repo.assign("tenant-1", PolicyScope.LOCAL, "branch-1", "pol-new")
            policy_set = await repo.get_policy_set("tenant-1")
            thread = await SQLAlchemyThreadRepository(session).get_by_id("open-late")

        assert (thread.channel_type, thread.local_id) == ("WHATSAPP", "branch-1")
        policy, source = policy_set.resolve(thread)
        assert (policy.id, source) == ("pol-new", PolicyScope.LOCAL)

    async def test_deleting_policy_removes_its_assignments(self, seeded) -> None:
        async with seeded() as session:
            repo = SQLAlchemySLAPolicyRepository(session)
            await repo.assign("tenant-1", PolicyScope.LOCAL, "branch-1", "pol-new")
            await repo.assign("tenant-1", PolicyScope.CHANNEL, "SMS", "pol-old")

            assert await repo.delete("pol-new") is True

            assert [a.policy_id for a in await repo.list_assignments("tenant-1")] == ["pol-old"]

    async def test_create_and_delete(self, seeded) -> None:
        hours = BusinessHours(timezone="Europe/Berlin", windows=[{"day": 1, "start_time": "09:00", "end_time": "17:00"}])

        async with seeded() as session:
            repo = SQLAlchemySLAPolicyRepository(session)
            created = await repo.create("tenant-1", "Weekdays", 120, hours)

        async with seeded() as session:
            repo = SQLAlchemySLAPolicyRepository(session)
            loaded = await repo.get_by_id(created.id)
            assert loaded.business_hours == hours
            assert await repo.delete(created.id) is True
            assert await repo.delete(created.id) is False

    async def test_membership_role(self, seeded) -> None:
        async with seeded() as session:
            repo = SQLAlchemyMembershipRepository(session)

            assert await repo.get_role("admin", "tenant-1") == Role.ADMIN
            assert await repo.get_role("admin", "tenant-2") is None


class TestSQLAlchemyEscalationStateStore:

    async def test_compare_and_set(self, session_maker) -> None:
        store = SQLAlchemyEscalationStateStore(session_maker)

        assert await store.compare_and_set("t1", "tenant-1", None, SLAState.WARNING) is True
        assert await store.compare_and_set("t1", "tenant-1", None, SLAState.WARNING) is False
        assert await store.compare_and_set("t1", "tenant-1", SLAState.OK, SLAState.BREACHED) is False
        assert await store.compare_and_set("t1", "tenant-1", SLAState.WARNING, SLAState.BREACHED) is True
        assert await store.get("t1") == SLAState.BREACHED

    async def test_prune_discard_and_tenant_ids(self, session_maker) -> None:
        store = SQLAlchemyEscalationStateStore(session_maker)
        for thread_id in ("a", "b"):
            await store.compare_and_set(thread_id, "tenant-1", None, SLAState.WARNING)
        await store.compare_and_set("c", "tenant-2", None, SLAState.BREACHED)

        assert await store.prune("tenant-1", ["b"]) == 1
        assert await store.get("a") is None

        await store.discard("c")
        assert await store.tenant_ids() == ["tenant-1"]

        assert await store.prune("tenant-1", []) == 1
        assert await store.tenant_ids() == []


class TestNotificationSinkAndMonitor:

    async def test_monitor_run_against_database(self, seeded) -> None:
        sink = RecordingSink()
        clock = Clock(T0 + timedelta(minutes=90))
        monitor = SLAMonitor(
            unit_of_work_factory=lambda: SQLAlchemyUnitOfWork(seeded),
            escalation_sink=sink,
            state_store=SQLAlchemyEscalationStateStore(seeded),
            config_provider=StaticMonitorConfigProvider(),
            clock=clock,
        )

        first = await monitor.monitor_all()
        second = await monitor.monitor_all()

        assert first.escalations_sent == 1
        assert second.escalations_sent == 0
        assert sink.events[0].thread_id == "open-late"
        assert sink.events[0].policy_id == "pol-old"
        assert sink.events[0].minutes_remaining == -30

    async def test_notification_sink_writes_row(self, seeded) -> None:
        from src.sla.domain import EscalationEvent

        sink = SQLAlchemyNotificationSink(seeded, "https://inbox.test")
        await sink.notify(EscalationEvent(
            thread_id="open-late",
            tenant_id="tenant-1",
            status=SLAState.BREACHED,
            previous_status=SLAState.WARNING,
            minutes_elapsed=90,
            minutes_remaining=-30,
            policy_id="pol-old",
            first_response_minutes=60,
            assignee_id="agent-1",
            contact_name="Jane",
        ))

        async with seeded() as session:
            rows = (await session.execute(select(NotificationModel))).scalars().all()

        assert len(rows) == 1
        assert rows[0].user_id == "agent-1"
        assert rows[0].type == NotificationType.SLA_EXPIRED
        assert rows[0].link == "https://inbox.test/app/tenant-1/inbox/open-late"
        assert rows[0].tenant_id == "tenant-1"
        assert rows[0].read is False
