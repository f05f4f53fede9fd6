"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring and policy management.

Controllers are thin - they delegate to application services.
"""

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Role, settings
from src.core import AuthorizationException, ResourceNotFoundException, EvaluationException
from src.infrastructure.database import get_session
from src.sla.application import (
    SLAMonitor,
    SLAPolicyService,
    SLAService,
    MonitorRequest,
    MonitorResponse,
    PolicyCreateRequest,
    PolicyAssignmentRequest,
    PolicyResponse,
    PolicyAssignmentResponse,
    PolicyActionResult,
    ThreadSLAResponse,
    TenantOverviewResponse,
)
from src.sla.infrastructure import (
    SQLAlchemySLAPolicyRepository,
    SQLAlchemyThreadRepository,
    SQLAlchemyMembershipRepository,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])

MONITOR_FAILED_MESSAGE = "Failed to monitor SLAs"

ERROR_KIND_STATUS = {
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "authorization": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "internal": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ========== Example payloads for Swagger ==========

POLICY_CREATE_EXAMPLE = {
    "tenantId": "tenant_123",
    "name": "Standard support",
    "firstResponseMinutes": "60",
    "businessHours": {
        "timezone": "Europe/Berlin",
        "windows": [{"day": d, "start_time": "09:00", "end_time": "17:00"} for d in range(1, 6)],
        "holidays": ["2024-12-25"]
    }
}

THREAD_SLA_RESPONSE_EXAMPLE = {
    "thread_id": "thr_123",
    "tenant_id": "tenant_123",
    "status": "warning",
    "minutes_elapsed": 50,
    "minutes_remaining": 10,
    "responded": False,
    "display": "10m remaining",
    "first_response_minutes": 60,
    "policy_id": "pol_123",
    "policy_source": "tenant",
    "assignee_id": "user_42",
    "contact_name": "Jane Doe"
}


# ========== Dependencies ==========

async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID")
) -> str:
    """Authenticated caller, as forwarded by the gateway."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
    return x_user_id


def get_sla_monitor(request: Request) -> SLAMonitor:
    """SLA monitor built during application startup."""
    monitor = getattr(request.app.state, "sla_monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA monitor not available"
        )
    return monitor


async def get_policy_service(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> SLAPolicyService:
    """Get SLA policy service instance."""
    return SLAPolicyService(
        SQLAlchemySLAPolicyRepository(session),
        SQLAlchemyMembershipRepository(session),
        getattr(request.app.state, "view_invalidator", None)
    )


async def get_sla_service(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> SLAService:
    """Get SLA read service instance."""
    return SLAService(
        SQLAlchemyThreadRepository(session),
        SQLAlchemySLAPolicyRepository(session),
        SQLAlchemyMembershipRepository(session),
        getattr(request.app.state, "sla_config_manager", None)
    )


def _result_response(result: PolicyActionResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    status_code = success_status if result.success else ERROR_KIND_STATUS[result.error_kind or "internal"]
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json", exclude_none=True)
    )


# ========== Route Handlers ==========

@router.post(
    "/monitor",
    response_model=MonitorResponse,
    summary="Run SLA monitoring",
    description="""
    Evaluate open threads and escalate SLA transitions.

    With `tenantId` only that tenant is evaluated; otherwise every tenant.
    Runs are idempotent: a transition already escalated by an overlapping
    run (scheduled or manual) is not escalated again.
    """,
    responses={
        200: {"content": {"application/json": {"example": {"success": True}}}},
        500: {"content": {"application/json": {"example": {"success": False, "error": MONITOR_FAILED_MESSAGE}}}}
    }
)
async def run_monitor(
    body: Optional[MonitorRequest] = Body(default=None),
    monitor: SLAMonitor = Depends(get_sla_monitor)
):
    tenant_id = body.tenant_id if body else None

    try:
        if tenant_id:
            run = monitor.monitor_tenant(tenant_id)
        else:
            run = monitor.monitor_all()
        await asyncio.wait_for(run, timeout=settings.sla_monitor_request_timeout_seconds)
    except Exception as e:
        logger.error(
            "SLA monitor request failed",
            extra={"tenant_id": tenant_id, "error": str(e) or type(e).__name__}
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=MonitorResponse(success=False, error=MONITOR_FAILED_MESSAGE).model_dump()
        )

    return MonitorResponse(success=True)


@router.post(
    "/policies",
    response_model=PolicyActionResult,
    status_code=status.HTTP_201_CREATED,
    summary="Create SLA policy",
    description="""
    Create a first-response SLA policy for a tenant. Requires ADMIN or OWNER.

    `firstResponseMinutes` accepts an integer or a string of digits (1-10080).
    `businessHours` is optional; without it the deadline counts wall-clock time.
    The tenant's oldest policy governs threads that no local or channel
    assignment covers.

    **Example Request**:
    ```json
    {"tenantId": "tenant_123", "name": "Standard support", "firstResponseMinutes": "60"}
    ```
    """,
    responses={
        403: {"description": "Caller lacks ADMIN role on the tenant"},
        422: {"description": "Invalid fields"}
    }
)
async def create_policy(
    request: PolicyCreateRequest = Body(..., openapi_examples={"default": {"value": POLICY_CREATE_EXAMPLE}}),
    user_id: str = Depends(get_current_user_id),
    service: SLAPolicyService = Depends(get_policy_service)
):
    result = await service.create_policy(user_id, request)
    return _result_response(result, success_status=status.HTTP_201_CREATED)


@router.delete(
    "/policies/{policy_id}",
    response_model=PolicyActionResult,
    summary="Delete SLA policy",
    responses={
        403: {"description": "Caller lacks ADMIN role on the tenant"},
        404: {"description": "SLA not found"}
    }
)
async def delete_policy(
    policy_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SLAPolicyService = Depends(get_policy_service)
):
    result = await service.delete_policy(user_id, policy_id)
    return _result_response(result)


@router.get(
    "/tenants/{tenant_id}/policies",
    response_model=List[PolicyResponse],
    summary="List a tenant's SLA policies",
    description="Policies oldest first; the first one is the tenant default."
)
async def list_policies(
    tenant_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SLAPolicyService = Depends(get_policy_service)
):
    try:
        return await service.list_policies(user_id, tenant_id)
    except AuthorizationException:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


@router.post(
    "/assignments",
    response_model=PolicyActionResult,
    summary="Assign SLA policy to a local or channel",
    description="""
    Point a local (`scope: "local"`, key = local id) or a channel type
    (`scope: "channel"`, key such as `WHATSAPP`) at one of the tenant's
    policies. Requires ADMIN or OWNER. A null `policyId` removes the
    assignment.

    Threads resolve their policy Local > Channel > Tenant, where the
    tenant level is the tenant's oldest policy.

    **Example Request**:
    ```json
    {"tenantId": "tenant_123", "scope": "channel", "key": "WHATSAPP", "policyId": "pol_456"}
    ```
    """,
    responses={
        403: {"description": "Caller lacks ADMIN role on the tenant"},
        404: {"description": "SLA not found"},
        422: {"description": "Invalid fields"}
    }
)
async def assign_policy(
    request: PolicyAssignmentRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    service: SLAPolicyService = Depends(get_policy_service)
):
    result = await service.assign_policy(user_id, request)
    return _result_response(result)


@router.get(
    "/tenants/{tenant_id}/assignments",
    response_model=List[PolicyAssignmentResponse],
    summary="List a tenant's local and channel SLA assignments"
)
async def list_assignments(
    tenant_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SLAPolicyService = Depends(get_policy_service)
):
    try:
        return await service.list_assignments(user_id, tenant_id)
    except AuthorizationException:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


@router.get(
    "/threads/{thread_id}",
    response_model=ThreadSLAResponse,
    summary="Get thread SLA status",
    description="""
    First-response SLA status of one thread, for the inbox badge.

    The policy is resolved Local > Channel > Tenant and reported in
    `policy_source`. When none applies a 60 minute display default is used
    (`policy_source: "default"`); the monitor never escalates on it.
    """,
    responses={
        200: {"content": {"application/json": {"example": THREAD_SLA_RESPONSE_EXAMPLE}}},
        404: {"description": "Thread not found"}
    }
)
async def get_thread_sla(
    thread_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SLAService = Depends(get_sla_service)
):
    try:
        return await service.get_thread_sla(user_id, thread_id)
    except ResourceNotFoundException:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Thread {thread_id} not found")
    except AuthorizationException:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    except EvaluationException as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.reason)


@router.post(
    "/threads/{thread_id}/reset",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset thread SLA tracking",
    description="""
    Forget the SLA state recorded for a thread. Called by the inbox when a
    thread is closed or reopened, so a reopened thread escalates again
    without waiting for the next monitor run to prune it. Requires AGENT
    or higher on the thread's tenant.
    """,
    responses={
        403: {"description": "Caller lacks AGENT role on the tenant"},
        404: {"description": "Thread not found"}
    }
)
async def reset_thread_sla(
    thread_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SLAService = Depends(get_sla_service),
    monitor: SLAMonitor = Depends(get_sla_monitor)
):
    try:
        await service.get_thread_for(user_id, thread_id, min_role=Role.AGENT)
    except ResourceNotFoundException:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Thread {thread_id} not found")
    except AuthorizationException:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    await monitor.forget_thread(thread_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/tenants/{tenant_id}/overview",
    response_model=TenantOverviewResponse,
    summary="Get tenant SLA overview",
    description="""
    Counts of open threads per SLA state, breach rate, and the at-risk
    threads (warning and breached) ordered most urgent first.
    """
)
async def get_tenant_overview(
    tenant_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SLAService = Depends(get_sla_service)
):
    try:
        return await service.tenant_overview(user_id, tenant_id)
    except AuthorizationException:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


# Export router for inclusion in main app
sla_router = router
