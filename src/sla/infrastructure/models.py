"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import String, DateTime, Integer, Boolean, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.infrastructure.database import Base
from src.config import ThreadStatus, MessageDirection, SLAState, Role, PolicyScope


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantModel(Base):
    """
    Database model for a tenant (workspace).

    Maps to the 'tenants' table.
    """
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MembershipModel(Base):
    """
    Database model for a user's role on a tenant.

    Maps to the 'memberships' table.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", name="uq_membership_user_tenant"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    role: Mapped[Role] = mapped_column(String(20), nullable=False, default=Role.VIEWER)


class SLAPolicyModel(Base):
    """
    Database model for SLA policy.

    Maps to the 'sla_policies' table. The oldest row per tenant is the
    tenant default; local and channel assignments override it.
    """
    __tablename__ = "sla_policies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_response_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Serialized BusinessHours; NULL means wall-clock time
    business_hours: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLAPolicyAssignmentModel(Base):
    """
    Local or channel override of a tenant's default SLA policy.

    Maps to the 'sla_policy_assignments' table. One row per
    (tenant, scope, scope_key).
    """
    __tablename__ = "sla_policy_assignments"
    __table_args__ = (
        UniqueConstraint("tenant_id", "scope", "scope_key", name="uq_sla_assignment_scope"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    scope: Mapped[PolicyScope] = mapped_column(String(20), nullable=False)
    scope_key: Mapped[str] = mapped_column(String(100), nullable=False)
    policy_id: Mapped[str] = mapped_column(ForeignKey("sla_policies.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ThreadModel(Base):
    """
    Database model for a conversation thread.

    Maps to the 'threads' table.
    """
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[ThreadStatus] = mapped_column(String(20), nullable=False, default=ThreadStatus.OPEN, index=True)
    subject: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    channel_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    local_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    messages: Mapped[List["MessageModel"]] = relationship(
        back_populates="thread",
        order_by="MessageModel.sent_at",
        cascade="all, delete-orphan",
        lazy="selectin"
    )


class MessageModel(Base):
    """
    Database model for a message on a thread.

    Maps to the 'messages' table.
    """
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    thread_id: Mapped[str] = mapped_column(ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    direction: Mapped[MessageDirection] = mapped_column(String(20), nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    thread: Mapped[ThreadModel] = relationship(back_populates="messages")


class EscalationStateModel(Base):
    """
    Last escalated SLA state per thread.

    Maps to the 'sla_escalation_states' table. Written only through
    compare-and-set updates.
    """
    __tablename__ = "sla_escalation_states"

    thread_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    last_status: Mapped[SLAState] = mapped_column(String(20), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class NotificationModel(Base):
    """
    In-app notification for a user.

    Maps to the 'notifications' table.
    """
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
