"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from typing import Any, Dict, List, Literal, Optional, Union
from datetime import datetime

from src.config import (
    MIN_POLICY_NAME_LENGTH, MAX_POLICY_NAME_LENGTH, MAX_FIRST_RESPONSE_MINUTES,
    MAX_SCOPE_KEY_LENGTH, PolicyScope
)
from src.sla.domain import BusinessHours


# ========== Type Aliases for Literals ==========
SLAStateStr = Literal["ok", "warning", "breached"]
PolicySourceStr = Literal["local", "channel", "tenant", "default"]
AssignableScopeStr = Literal["local", "channel"]
ErrorKindStr = Literal["validation", "authorization", "not_found", "internal"]


# ========== Request DTOs ==========

class MonitorRequest(BaseModel):
    """Body of the monitor trigger. Omitting tenantId monitors every tenant."""
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: Optional[str] = Field(None, alias="tenantId", description="Tenant to scope the run to")


class PolicyCreateRequest(BaseModel):
    """
    Raw create-policy input as submitted by the settings form.

    Deliberately lenient: field validation happens in the service so that
    bad input comes back as field errors instead of a framework 422.
    """
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: Optional[str] = Field(None, alias="tenantId")
    name: Optional[str] = None
    first_response_minutes: Optional[Union[str, int]] = Field(None, alias="firstResponseMinutes")
    business_hours: Optional[Dict[str, Any]] = Field(None, alias="businessHours")


class SLAPolicyCreateDTO(BaseModel):
    """Validated policy creation data."""
    tenant_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=MIN_POLICY_NAME_LENGTH, max_length=MAX_POLICY_NAME_LENGTH)
    first_response_minutes: int = Field(..., ge=1, le=MAX_FIRST_RESPONSE_MINUTES)
    business_hours: Optional[BusinessHours] = None

    @field_validator("first_response_minutes", mode="before")
    @classmethod
    def parse_minutes(cls, v: Any) -> int:
        """Accept an int or a string of decimal digits, nothing else."""
        if isinstance(v, bool):
            raise ValueError("must be a whole number of minutes")
        if isinstance(v, int):
            return v
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        raise ValueError("must be a whole number of minutes")

    @classmethod
    def from_request(cls, request: PolicyCreateRequest) -> "SLAPolicyCreateDTO":
        return cls.model_validate({
            "tenant_id": request.tenant_id,
            "name": request.name,
            "first_response_minutes": request.first_response_minutes,
            "business_hours": request.business_hours,
        })


class PolicyAssignmentRequest(BaseModel):
    """
    Raw assign/unassign input. A null policyId removes the assignment.

    Lenient for the same reason as PolicyCreateRequest.
    """
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: Optional[str] = Field(None, alias="tenantId")
    scope: Optional[str] = None
    key: Optional[str] = Field(None, description="Local id, or channel type such as WHATSAPP")
    policy_id: Optional[str] = Field(None, alias="policyId")


class SLAPolicyAssignmentDTO(BaseModel):
    """Validated assignment data."""
    tenant_id: str = Field(..., min_length=1)
    scope: AssignableScopeStr
    key: str = Field(..., min_length=1, max_length=MAX_SCOPE_KEY_LENGTH)
    policy_id: Optional[str] = None

    @field_validator("key", mode="before")
    @classmethod
    def normalize_key(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("key")
    @classmethod
    def uppercase_channel(cls, v: str, info: ValidationInfo) -> str:
        # channel types are stored upper-case (WHATSAPP, INSTAGRAM, ...)
        if info.data.get("scope") == PolicyScope.CHANNEL:
            return v.upper()
        return v

    @classmethod
    def from_request(cls, request: PolicyAssignmentRequest) -> "SLAPolicyAssignmentDTO":
        return cls.model_validate({
            "tenant_id": request.tenant_id,
            "scope": request.scope,
            "key": request.key,
            "policy_id": request.policy_id or None,
        })


def field_errors_from(exc: ValidationError) -> Dict[str, str]:
    """Flatten pydantic errors into {top-level field: first message}."""
    errors: Dict[str, str] = {}
    for error in exc.errors():
        loc = error.get("loc") or ("__root__",)
        field = str(loc[0])
        if field in errors:
            continue
        nested = ".".join(str(part) for part in loc[1:])
        message = error.get("msg", "Invalid value")
        errors[field] = f"{nested}: {message}" if nested else message
    return errors


# ========== Response DTOs ==========

class PolicyResponse(BaseModel):
    """Response model for an SLA policy."""
    id: str
    tenant_id: str
    name: str
    first_response_minutes: int
    business_hours: Optional[BusinessHours] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, policy: Any) -> "PolicyResponse":
        return cls(
            id=policy.id,
            tenant_id=policy.tenant_id,
            name=policy.name,
            first_response_minutes=policy.first_response_minutes,
            business_hours=policy.business_hours,
            created_at=policy.created_at
        )


class PolicyAssignmentResponse(BaseModel):
    """Response model for a local or channel policy assignment."""
    tenant_id: str
    scope: AssignableScopeStr
    key: str
    policy_id: str

    @classmethod
    def from_domain(cls, assignment: Any) -> "PolicyAssignmentResponse":
        return cls(
            tenant_id=assignment.tenant_id,
            scope=assignment.scope,
            key=assignment.scope_key,
            policy_id=assignment.policy_id
        )


class PolicyActionResult(BaseModel):
    """Outcome of a policy management action: a success marker or an error."""
    success: bool
    policy: Optional[PolicyResponse] = None
    assignment: Optional[PolicyAssignmentResponse] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKindStr] = None
    field_errors: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        policy: Optional[PolicyResponse] = None,
        assignment: Optional[PolicyAssignmentResponse] = None
    ) -> "PolicyActionResult":
        return cls(success=True, policy=policy, assignment=assignment)

    @classmethod
    def failed(
        cls,
        error: str,
        error_kind: str,
        field_errors: Optional[Dict[str, str]] = None
    ) -> "PolicyActionResult":
        return cls(success=False, error=error, error_kind=error_kind, field_errors=field_errors or {})


class MonitorResponse(BaseModel):
    """Coarse acknowledgment of a monitor run."""
    success: bool = True
    error: Optional[str] = None


class ThreadSLAResponse(BaseModel):
    """First-response SLA status of one thread, for the inbox badge."""
    thread_id: str
    tenant_id: str
    status: SLAStateStr
    minutes_elapsed: int
    minutes_remaining: int
    responded: bool
    display: str = Field(..., description="Human readable remaining/overdue time")
    first_response_minutes: int
    policy_id: Optional[str] = None
    policy_source: PolicySourceStr = "tenant"
    assignee_id: Optional[str] = None
    contact_name: Optional[str] = None


class OverviewSummary(BaseModel):
    """Counts of open threads per SLA state."""
    total_threads: int
    ok_count: int
    warning_count: int
    breached_count: int
    breach_rate: float = Field(..., description="Percentage of open threads breached")


class TenantOverviewResponse(BaseModel):
    """Response model for a tenant's SLA overview."""
    tenant_id: str
    policy_id: Optional[str] = None
    policy_source: PolicySourceStr = "tenant"
    summary: OverviewSummary
    at_risk: List[ThreadSLAResponse] = Field(
        default_factory=list,
        description="Warning and breached threads, most urgent first"
    )
