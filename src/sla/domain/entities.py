"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from src.config import (
    MessageDirection, SLAState, ThreadStatus, PolicyScope, OPEN_THREAD_STATUSES
)
from src.sla.domain.value_objects import BusinessHours


@dataclass(frozen=True)
class Message:
    """A message recorded on a thread. Immutable once recorded."""

    id: str
    direction: MessageDirection
    sent_at: datetime

    @property
    def is_outbound(self) -> bool:
        return self.direction == MessageDirection.OUTBOUND


@dataclass
class Thread:
    """
    Conversation thread with a contact.

    Belongs to exactly one tenant. Messages are kept ordered by send time.
    """

    id: str
    tenant_id: str
    status: ThreadStatus
    created_at: datetime
    messages: List[Message] = field(default_factory=list)

    assignee_id: Optional[str] = None
    contact_name: Optional[str] = None
    subject: Optional[str] = None
    channel_type: Optional[str] = None
    local_id: Optional[str] = None

    def __post_init__(self):
        self.messages = sorted(self.messages, key=lambda m: m.sent_at)

    @property
    def is_open(self) -> bool:
        """Check if thread still counts for SLA monitoring."""
        return self.status in OPEN_THREAD_STATUSES

    @property
    def first_response(self) -> Optional[Message]:
        """Earliest outbound message, if an agent has replied."""
        outbound = [m for m in self.messages if m.is_outbound]
        if not outbound:
            return None
        return min(outbound, key=lambda m: m.sent_at)


@dataclass(frozen=True)
class SLAPolicy:
    """Tenant-scoped first-response SLA policy."""

    id: str
    tenant_id: str
    name: str
    first_response_minutes: int
    business_hours: Optional[BusinessHours] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.first_response_minutes <= 0:
            raise ValueError("first_response_minutes must be positive")


@dataclass(frozen=True)
class SLAPolicyAssignment:
    """
    Binds a tenant policy to a local (branch) or a channel type.

    scope_key is the local id for PolicyScope.LOCAL and the channel type
    for PolicyScope.CHANNEL.
    """

    id: str
    tenant_id: str
    scope: str
    scope_key: str
    policy_id: str


@dataclass
class TenantPolicySet:
    """
    Every policy that can govern a tenant's threads.

    Resolution order is Local > Channel > Tenant: a thread's local
    assignment wins over its channel assignment, which wins over the
    tenant default (the tenant's oldest policy).
    """

    tenant_id: str
    default: Optional[SLAPolicy] = None
    by_local: Dict[str, SLAPolicy] = field(default_factory=dict)
    by_channel: Dict[str, SLAPolicy] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        tenant_id: str,
        policies: Iterable[SLAPolicy],
        assignments: Iterable[SLAPolicyAssignment]
    ) -> "TenantPolicySet":
        ordered = sorted(
            (p for p in policies if p.tenant_id == tenant_id),
            key=lambda p: (p.created_at is None, p.created_at, p.id)
        )
        by_id = {p.id: p for p in ordered}
        policy_set = cls(tenant_id=tenant_id, default=ordered[0] if ordered else None)

        for assignment in assignments:
            policy = by_id.get(assignment.policy_id)
            if policy is None or assignment.tenant_id != tenant_id:
                continue
            if assignment.scope == PolicyScope.LOCAL:
                policy_set.by_local[assignment.scope_key] = policy
            elif assignment.scope == PolicyScope.CHANNEL:
                policy_set.by_channel[assignment.scope_key] = policy

        return policy_set

    @property
    def is_empty(self) -> bool:
        return self.default is None and not self.by_local and not self.by_channel

    def resolve(self, thread: Thread) -> Tuple[Optional[SLAPolicy], Optional[str]]:
        """Policy governing a thread and the level it came from."""
        if thread.local_id and thread.local_id in self.by_local:
            return self.by_local[thread.local_id], PolicyScope.LOCAL
        if thread.channel_type and thread.channel_type in self.by_channel:
            return self.by_channel[thread.channel_type], PolicyScope.CHANNEL
        if self.default is not None:
            return self.default, PolicyScope.TENANT
        return None, None


@dataclass(frozen=True)
class EscalationEvent:
    """
    Record handed to escalation sinks on a transition into a more
    severe SLA state.
    """

    thread_id: str
    tenant_id: str
    status: SLAState
    previous_status: Optional[SLAState]
    minutes_elapsed: int
    minutes_remaining: int
    policy_id: str
    first_response_minutes: int
    policy_source: str = PolicyScope.TENANT
    assignee_id: Optional[str] = None
    contact_name: Optional[str] = None
    triggered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_breach(self) -> bool:
        return self.status == SLAState.BREACHED


@dataclass
class MonitorRunSummary:
    """Aggregate outcome of one monitor run."""

    tenant_id: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    tenants_scanned: int = 0
    tenant_failures: int = 0
    threads_evaluated: int = 0
    threads_skipped: int = 0
    escalations_sent: int = 0
    evaluation_failures: int = 0
    delivery_failures: int = 0
    states_pruned: int = 0

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def finish(self) -> "MonitorRunSummary":
        self.finished_at = datetime.now(timezone.utc)
        return self

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "tenants_scanned": self.tenants_scanned,
            "tenant_failures": self.tenant_failures,
            "threads_evaluated": self.threads_evaluated,
            "threads_skipped": self.threads_skipped,
            "escalations_sent": self.escalations_sent,
            "evaluation_failures": self.evaluation_failures,
            "delivery_failures": self.delivery_failures,
            "states_pruned": self.states_pruned,
            "duration_ms": self.duration_ms,
        }
