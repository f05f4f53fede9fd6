"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.sla.application import (
    IThreadRepository, ISLAPolicyRepository, IMembershipRepository,
    IEscalationStateStore, IEscalationSink, ISLAUnitOfWork
)
from src.sla.domain import (
    Thread, Message, SLAPolicy, SLAPolicyAssignment, EscalationEvent, BusinessHours, format_sla_time
)
from src.sla.infrastructure.models import (
    SLAPolicyModel, SLAPolicyAssignmentModel, ThreadModel, MembershipModel,
    EscalationStateModel, NotificationModel
)
from src.config import OPEN_THREAD_STATUSES, NotificationType
from src.core import RepositoryException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Mapping ==========

def thread_from_model(model: ThreadModel) -> Thread:
    return Thread(
        id=model.id,
        tenant_id=model.tenant_id,
        status=model.status,
        created_at=model.created_at,
        messages=[
            Message(id=m.id, direction=m.direction, sent_at=m.sent_at)
            for m in model.messages
        ],
        assignee_id=model.assignee_id,
        contact_name=model.contact_name,
        subject=model.subject,
        channel_type=model.channel_type,
        local_id=model.local_id
    )


def policy_from_model(model: SLAPolicyModel) -> SLAPolicy:
    try:
        business_hours = (
            BusinessHours.model_validate(model.business_hours)
            if model.business_hours else None
        )
    except ValueError as e:
        raise RepositoryException(f"SLA policy {model.id} has invalid business hours: {e}")

    return SLAPolicy(
        id=model.id,
        tenant_id=model.tenant_id,
        name=model.name,
        first_response_minutes=model.first_response_minutes,
        business_hours=business_hours,
        created_at=model.created_at
    )


def assignment_from_model(model: SLAPolicyAssignmentModel) -> SLAPolicyAssignment:
    return SLAPolicyAssignment(
        id=model.id,
        tenant_id=model.tenant_id,
        scope=model.scope,
        scope_key=model.scope_key,
        policy_id=model.policy_id
    )


# ========== Repositories ==========

class SQLAlchemyThreadRepository(IThreadRepository):
    """
    SQLAlchemy implementation of thread repository.

    Messages are eager-loaded in send order with each thread.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, thread_id: str) -> Optional[Thread]:
        """Get thread by ID."""
        stmt = select(ThreadModel).where(ThreadModel.id == thread_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return thread_from_model(model) if model else None

    async def list_open(self, tenant_id: str) -> List[Thread]:
        """List a tenant's OPEN and PENDING threads, oldest first."""
        stmt = (
            select(ThreadModel)
            .where(
                ThreadModel.tenant_id == tenant_id,
                ThreadModel.status.in_(OPEN_THREAD_STATUSES)
            )
            .order_by(ThreadModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [thread_from_model(m) for m in result.scalars().all()]

    async def list_tenant_ids_with_open_threads(self) -> List[str]:
        stmt = (
            select(ThreadModel.tenant_id)
            .where(ThreadModel.status.in_(OPEN_THREAD_STATUSES))
            .distinct()
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemySLAPolicyRepository(ISLAPolicyRepository):
    """
    SQLAlchemy implementation of SLA policy repository.

    Writes are committed immediately; a policy change is a single statement.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, policy_id: str) -> Optional[SLAPolicy]:
        """Get policy by ID."""
        model = await self._session.get(SLAPolicyModel, policy_id)
        return policy_from_model(model) if model else None

    async def list_for_tenant(self, tenant_id: str) -> List[SLAPolicy]:
        stmt = (
            select(SLAPolicyModel)
            .where(SLAPolicyModel.tenant_id == tenant_id)
            .order_by(SLAPolicyModel.created_at.asc(), SLAPolicyModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [policy_from_model(m) for m in result.scalars().all()]

    async def create(
        self,
        tenant_id: str,
        name: str,
        first_response_minutes: int,
        business_hours: Optional[BusinessHours] = None
    ) -> SLAPolicy:
        """Create new policy."""
        model = SLAPolicyModel(
            tenant_id=tenant_id,
            name=name,
            first_response_minutes=first_response_minutes,
            business_hours=business_hours.model_dump(mode="json") if business_hours else None,
            created_at=_utcnow()
        )

        self._session.add(model)
        await self._session.commit()

        return policy_from_model(model)

    async def delete(self, policy_id: str) -> bool:
        """Delete policy by ID, together with the assignments pointing at it."""
        await self._session.execute(
            delete(SLAPolicyAssignmentModel).where(SLAPolicyAssignmentModel.policy_id == policy_id)
        )
        stmt = delete(SLAPolicyModel).where(SLAPolicyModel.id == policy_id)
        result = await self._session.execute(stmt)
        await self._session.commit()
        return result.rowcount == 1

    async def list_assignments(self, tenant_id: str) -> List[SLAPolicyAssignment]:
        stmt = (
            select(SLAPolicyAssignmentModel)
            .where(SLAPolicyAssignmentModel.tenant_id == tenant_id)
            .order_by(SLAPolicyAssignmentModel.scope, SLAPolicyAssignmentModel.scope_key)
        )
        result = await self._session.execute(stmt)
        return [assignment_from_model(m) for m in result.scalars().all()]

    async def assign(
        self,
        tenant_id: str,
        scope: str,
        scope_key: str,
        policy_id: Optional[str]
    ) -> Optional[SLAPolicyAssignment]:
        """Upsert the assignment for (tenant, scope, key); policy_id None deletes it."""
        stmt = select(SLAPolicyAssignmentModel).where(
            SLAPolicyAssignmentModel.tenant_id == tenant_id,
            SLAPolicyAssignmentModel.scope == scope,
            SLAPolicyAssignmentModel.scope_key == scope_key
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()

        if policy_id is None:
            if model is not None:
                await self._session.delete(model)
                await self._session.commit()
            return None

        if model is None:
            model = SLAPolicyAssignmentModel(
                tenant_id=tenant_id,
                scope=scope,
                scope_key=scope_key,
                policy_id=policy_id,
                created_at=_utcnow(),
                updated_at=_utcnow()
            )
            self._session.add(model)
        else:
            model.policy_id = policy_id
            model.updated_at = _utcnow()

        await self._session.commit()
        return assignment_from_model(model)


class SQLAlchemyMembershipRepository(IMembershipRepository):
    """SQLAlchemy implementation of membership lookups."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_role(self, user_id: str, tenant_id: str) -> Optional[str]:
        stmt = select(MembershipModel.role).where(
            MembershipModel.user_id == user_id,
            MembershipModel.tenant_id == tenant_id
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class SQLAlchemyUnitOfWork(ISLAUnitOfWork):
    """
    One read-only session scope.

    Each tenant evaluated by the monitor gets its own instance, so
    concurrently evaluated tenants never share a session.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._session = self._session_factory()
        self.threads = SQLAlchemyThreadRepository(self._session)
        self.policies = SQLAlchemySLAPolicyRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


# ========== Escalation State ==========

class InMemoryEscalationStateStore(IEscalationStateStore):
    """
    Process-local escalation state.

    Only suitable for a single process; state is lost on restart.
    """

    def __init__(self):
        self._states: Dict[str, Tuple[str, str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, thread_id: str) -> Optional[str]:
        entry = self._states.get(thread_id)
        return entry[1] if entry else None

    async def compare_and_set(
        self,
        thread_id: str,
        tenant_id: str,
        expected: Optional[str],
        new: str
    ) -> bool:
        async with self._lock:
            entry = self._states.get(thread_id)
            current = entry[1] if entry else None
            if current != expected:
                return False
            self._states[thread_id] = (tenant_id, new)
            return True

    async def prune(self, tenant_id: str, keep_thread_ids: Iterable[str]) -> int:
        keep = set(keep_thread_ids)
        async with self._lock:
            stale = [
                thread_id for thread_id, (owner, _) in self._states.items()
                if owner == tenant_id and thread_id not in keep
            ]
            for thread_id in stale:
                del self._states[thread_id]
        return len(stale)

    async def discard(self, thread_id: str) -> None:
        async with self._lock:
            self._states.pop(thread_id, None)

    async def tenant_ids(self) -> List[str]:
        return sorted({owner for owner, _ in self._states.values()})


class SQLAlchemyEscalationStateStore(IEscalationStateStore):
    """
    Escalation state shared by every process using the database.

    compare_and_set is a conditional INSERT/UPDATE: the primary key makes
    concurrent first writes collide, and later writes only match the row
    while it still holds the expected status.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def get(self, thread_id: str) -> Optional[str]:
        async with self._session_factory() as session:
            stmt = select(EscalationStateModel.last_status).where(
                EscalationStateModel.thread_id == thread_id
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def compare_and_set(
        self,
        thread_id: str,
        tenant_id: str,
        expected: Optional[str],
        new: str
    ) -> bool:
        async with self._session_factory() as session:
            if expected is None:
                session.add(EscalationStateModel(
                    thread_id=thread_id,
                    tenant_id=tenant_id,
                    last_status=new,
                    updated_at=_utcnow()
                ))
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                return True

            stmt = (
                update(EscalationStateModel)
                .where(
                    EscalationStateModel.thread_id == thread_id,
                    EscalationStateModel.last_status == expected
                )
                .values(last_status=new, tenant_id=tenant_id, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def prune(self, tenant_id: str, keep_thread_ids: Iterable[str]) -> int:
        keep = list(keep_thread_ids)
        async with self._session_factory() as session:
            stmt = delete(EscalationStateModel).where(EscalationStateModel.tenant_id == tenant_id)
            if keep:
                stmt = stmt.where(EscalationStateModel.thread_id.not_in(keep))
            result = await session.execute(stmt.execution_options(synchronize_session=False))
            await session.commit()
            return result.rowcount or 0

    async def discard(self, thread_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(EscalationStateModel)
                .where(EscalationStateModel.thread_id == thread_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def tenant_ids(self) -> List[str]:
        async with self._session_factory() as session:
            stmt = select(EscalationStateModel.tenant_id).distinct()
            result = await session.execute(stmt)
            return list(result.scalars().all())


# ========== Notifications ==========

class SQLAlchemyNotificationSink(IEscalationSink):
    """
    Escalation sink that raises an in-app notification for the assignee.

    Threads without an assignee have nobody to notify and are skipped.
    """

    def __init__(self, session_factory: SessionFactory, app_base_url: str = ""):
        self._session_factory = session_factory
        self._app_base_url = app_base_url.rstrip("/")

    async def notify(self, event: EscalationEvent) -> None:
        if not event.assignee_id:
            logger.debug("Thread has no assignee, skipping in-app notification", extra={"thread_id": event.thread_id})
            return

        contact = event.contact_name or "a contact"
        if event.is_breach:
            notification_type = NotificationType.SLA_EXPIRED
            title = "SLA breached"
            body = f"First response to {contact} is {format_sla_time(event.minutes_remaining)}"
        else:
            notification_type = NotificationType.SLA_WARNING
            title = "SLA at risk"
            body = f"First response to {contact}: {format_sla_time(event.minutes_remaining)}"

        async with self._session_factory() as session:
            session.add(NotificationModel(
                tenant_id=event.tenant_id,
                user_id=event.assignee_id,
                type=notification_type,
                title=title,
                body=body,
                link=f"{self._app_base_url}/app/{event.tenant_id}/inbox/{event.thread_id}",
                created_at=_utcnow()
            ))
            await session.commit()
