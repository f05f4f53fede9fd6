"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import (
    MonitorRequest,
    MonitorResponse,
    PolicyCreateRequest,
    SLAPolicyCreateDTO,
    PolicyAssignmentRequest,
    SLAPolicyAssignmentDTO,
    PolicyResponse,
    PolicyAssignmentResponse,
    PolicyActionResult,
    ThreadSLAResponse,
    OverviewSummary,
    TenantOverviewResponse,
)
from src.sla.application.services import (
    SLAPolicyService,
    SLAService,
    SLAMonitor,
    StaticMonitorConfigProvider,
    require_tenant_role,
    IThreadRepository,
    ISLAPolicyRepository,
    IMembershipRepository,
    IEscalationStateStore,
    IEscalationSink,
    IViewInvalidator,
    ISLAMonitorConfigProvider,
    ISLAUnitOfWork,
)

__all__ = [
    # DTOs
    "MonitorRequest",
    "MonitorResponse",
    "PolicyCreateRequest",
    "SLAPolicyCreateDTO",
    "PolicyAssignmentRequest",
    "SLAPolicyAssignmentDTO",
    "PolicyResponse",
    "PolicyAssignmentResponse",
    "PolicyActionResult",
    "ThreadSLAResponse",
    "OverviewSummary",
    "TenantOverviewResponse",
    # Services
    "SLAPolicyService",
    "SLAService",
    "SLAMonitor",
    "StaticMonitorConfigProvider",
    "require_tenant_role",
    # Repository Interfaces
    "IThreadRepository",
    "ISLAPolicyRepository",
    "IMembershipRepository",
    "IEscalationStateStore",
    "IEscalationSink",
    "IViewInvalidator",
    "ISLAMonitorConfigProvider",
    "ISLAUnitOfWork",
]
