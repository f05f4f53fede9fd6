"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and escalation state stores
- External: External service integrations (Slack, config watcher, scheduler)
"""

from src.sla.infrastructure.models import (
    TenantModel,
    MembershipModel,
    SLAPolicyModel,
    SLAPolicyAssignmentModel,
    ThreadModel,
    MessageModel,
    EscalationStateModel,
    NotificationModel,
)
from src.sla.infrastructure.repositories import (
    SQLAlchemyThreadRepository,
    SQLAlchemySLAPolicyRepository,
    SQLAlchemyMembershipRepository,
    SQLAlchemyUnitOfWork,
    SQLAlchemyEscalationStateStore,
    SQLAlchemyNotificationSink,
    InMemoryEscalationStateStore,
)
from src.sla.infrastructure.external import (
    SLAMonitorConfigManager,
    SlackEscalationSink,
    CompositeEscalationSink,
    ViewInvalidator,
    CircuitBreaker,
    SLAScheduler,
)

__all__ = [
    "TenantModel",
    "MembershipModel",
    "SLAPolicyModel",
    "SLAPolicyAssignmentModel",
    "ThreadModel",
    "MessageModel",
    "EscalationStateModel",
    "NotificationModel",
    "SQLAlchemyThreadRepository",
    "SQLAlchemySLAPolicyRepository",
    "SQLAlchemyMembershipRepository",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemyEscalationStateStore",
    "SQLAlchemyNotificationSink",
    "InMemoryEscalationStateStore",
    "SLAMonitorConfigManager",
    "SlackEscalationSink",
    "CompositeEscalationSink",
    "ViewInvalidator",
    "CircuitBreaker",
    "SLAScheduler",
]
