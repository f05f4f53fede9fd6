"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: Core business objects with identity (Thread, Message, SLAPolicy, TenantPolicySet)
- Value Objects: Immutable objects defined by attributes (SLAStatus, BusinessHours)
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import (
    Message,
    Thread,
    SLAPolicy,
    SLAPolicyAssignment,
    TenantPolicySet,
    EscalationEvent,
    MonitorRunSummary,
)
from src.sla.domain.value_objects import (
    SLACalculator,
    SLAStatus,
    SLAMonitorConfig,
    BusinessHours,
    BusinessHoursWindow,
    format_sla_time,
)

__all__ = [
    # Entities
    "Message",
    "Thread",
    "SLAPolicy",
    "SLAPolicyAssignment",
    "TenantPolicySet",
    "EscalationEvent",
    "MonitorRunSummary",
    # Value Objects & Services
    "SLACalculator",
    "SLAStatus",
    "SLAMonitorConfig",
    "BusinessHours",
    "BusinessHoursWindow",
    "format_sla_time",
]
