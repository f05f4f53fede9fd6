"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from src.config import (
    Role, SLAState, PolicyScope, ROLE_HIERARCHY, SLA_STATE_SEVERITY,
    DISPLAY_DEFAULT_FIRST_RESPONSE_MINUTES
)
from src.core import (
    AuthorizationException,
    ResourceNotFoundException,
    ValidationException,
    EvaluationException,
)
from src.sla.domain import (
    Thread, SLAPolicy, SLAPolicyAssignment, TenantPolicySet, SLAStatus, EscalationEvent,
    MonitorRunSummary, SLACalculator, SLAMonitorConfig, BusinessHours, format_sla_time
)
from src.sla.application.dto import (
    PolicyCreateRequest, SLAPolicyCreateDTO, PolicyAssignmentRequest, SLAPolicyAssignmentDTO,
    PolicyResponse, PolicyAssignmentResponse, PolicyActionResult,
    ThreadSLAResponse, TenantOverviewResponse, OverviewSummary, field_errors_from
)
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IThreadRepository(ABC):
    """Interface for thread and message data access."""

    @abstractmethod
    async def get_by_id(self, thread_id: str) -> Optional[Thread]:
        """Get a thread with its ordered messages."""

    @abstractmethod
    async def list_open(self, tenant_id: str) -> List[Thread]:
        """List a tenant's open threads with their ordered messages."""

    @abstractmethod
    async def list_tenant_ids_with_open_threads(self) -> List[str]:
        """Tenants that currently have at least one open thread."""


class ISLAPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def get_by_id(self, policy_id: str) -> Optional[SLAPolicy]:
        """Get policy by ID."""

    @abstractmethod
    async def list_for_tenant(self, tenant_id: str) -> List[SLAPolicy]:
        """List a tenant's policies, oldest first."""

    @abstractmethod
    async def list_assignments(self, tenant_id: str) -> List[SLAPolicyAssignment]:
        """Local and channel assignments of a tenant."""

    @abstractmethod
    async def assign(
        self,
        tenant_id: str,
        scope: str,
        scope_key: str,
        policy_id: Optional[str]
    ) -> Optional[SLAPolicyAssignment]:
        """Set (or with policy_id None, remove) the policy of a local or channel."""

    async def get_policy_set(self, tenant_id: str) -> TenantPolicySet:
        """Everything needed to resolve the policy of any of the tenant's threads."""
        policies = await self.list_for_tenant(tenant_id)
        assignments = await self.list_assignments(tenant_id)
        return TenantPolicySet.build(tenant_id, policies, assignments)

    @abstractmethod
    async def create(
        self,
        tenant_id: str,
        name: str,
        first_response_minutes: int,
        business_hours: Optional[BusinessHours] = None
    ) -> SLAPolicy:
        """Create new policy."""

    @abstractmethod
    async def delete(self, policy_id: str) -> bool:
        """Delete policy. Returns False if it did not exist."""


class IMembershipRepository(ABC):
    """Interface for tenant membership lookups."""

    @abstractmethod
    async def get_role(self, user_id: str, tenant_id: str) -> Optional[str]:
        """Role of a user on a tenant, or None if not a member."""


class IEscalationStateStore(ABC):
    """
    Last escalated SLA state per thread.

    All writes go through compare_and_set so that overlapping monitor
    runs cannot both record (and escalate) the same transition.
    """

    @abstractmethod
    async def get(self, thread_id: str) -> Optional[str]:
        """Last recorded state, or None if the thread was never recorded."""

    @abstractmethod
    async def compare_and_set(
        self,
        thread_id: str,
        tenant_id: str,
        expected: Optional[str],
        new: str
    ) -> bool:
        """Atomically replace expected with new. False if the stored value differs."""

    @abstractmethod
    async def prune(self, tenant_id: str, keep_thread_ids: Iterable[str]) -> int:
        """Drop a tenant's entries not in keep_thread_ids. Returns number dropped."""

    @abstractmethod
    async def discard(self, thread_id: str) -> None:
        """Drop one thread's entry if present."""

    @abstractmethod
    async def tenant_ids(self) -> List[str]:
        """Tenants with at least one recorded entry."""


class IEscalationSink(ABC):
    """Receives escalation events. Raises SinkDeliveryException on failure."""

    @abstractmethod
    async def notify(self, event: EscalationEvent) -> None:
        """Deliver one escalation."""


class IViewInvalidator(ABC):
    """Signals the presentation layer that a tenant's SLA settings view is stale."""

    @abstractmethod
    async def invalidate(self, tenant_id: str) -> None:
        """Fire the refresh signal."""


class ISLAMonitorConfigProvider(ABC):
    """Interface for SLA monitor configuration access."""

    @abstractmethod
    def get_config(self) -> SLAMonitorConfig:
        """Get current monitor configuration."""


class ISLAUnitOfWork(ABC):
    """
    Read scope for one tenant evaluation.

    Used as an async context manager; repositories are only valid inside it.
    """

    threads: IThreadRepository
    policies: ISLAPolicyRepository

    @abstractmethod
    async def __aenter__(self) -> "ISLAUnitOfWork":
        """Open the scope."""

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Close the scope."""


class StaticMonitorConfigProvider(ISLAMonitorConfigProvider):
    """Fixed configuration, for tests and serverless deployments."""

    def __init__(self, config: Optional[SLAMonitorConfig] = None):
        self._config = config or SLAMonitorConfig()

    def get_config(self) -> SLAMonitorConfig:
        return self._config


async def require_tenant_role(
    membership_repository: IMembershipRepository,
    user_id: Optional[str],
    tenant_id: str,
    min_role: str
) -> str:
    """
    Ensure the user holds at least min_role on the tenant.

    Returns:
        The user's role

    Raises:
        AuthorizationException: not a member, or role too low
    """
    role = None
    if user_id:
        role = await membership_repository.get_role(user_id, tenant_id)
    if role is None or ROLE_HIERARCHY.get(role, 0) < ROLE_HIERARCHY[min_role]:
        raise AuthorizationException(user_id, tenant_id, min_role)
    return role


# ========== Application Services ==========

class SLAPolicyService:
    """
    Tenant SLA policy management.

    Every outcome is returned as a PolicyActionResult; nothing raised by
    validation, authorization or lookup escapes to the caller.
    """

    def __init__(
        self,
        policy_repository: ISLAPolicyRepository,
        membership_repository: IMembershipRepository,
        view_invalidator: Optional[IViewInvalidator] = None
    ):
        self._policy_repo = policy_repository
        self._membership_repo = membership_repository
        self._view_invalidator = view_invalidator

    async def create_policy(
        self,
        user_id: Optional[str],
        request: PolicyCreateRequest
    ) -> PolicyActionResult:
        """
        Create a policy for a tenant. Requires ADMIN or higher.

        Args:
            user_id: Authenticated caller
            request: Raw form input

        Returns:
            PolicyActionResult with the created policy or the error
        """
        try:
            try:
                data = SLAPolicyCreateDTO.from_request(request)
            except ValidationError as e:
                raise ValidationException("Invalid fields", field_errors_from(e))

            await require_tenant_role(self._membership_repo, user_id, data.tenant_id, Role.ADMIN)

            policy = await self._policy_repo.create(
                tenant_id=data.tenant_id,
                name=data.name,
                first_response_minutes=data.first_response_minutes,
                business_hours=data.business_hours
            )
        except ValidationException as e:
            return PolicyActionResult.failed(e.message, "validation", e.field_errors)
        except AuthorizationException as e:
            logger.warning(
                "SLA policy creation denied",
                extra={"user_id": user_id, "tenant_id": e.tenant_id}
            )
            return PolicyActionResult.failed("Insufficient permissions", "authorization")
        except Exception as e:
            logger.error(
                "Failed to create SLA policy",
                extra={"user_id": user_id, "tenant_id": request.tenant_id, "error": str(e)}
            )
            return PolicyActionResult.failed("Failed to create SLA", "internal")

        logger.info(
            "SLA policy created",
            extra={
                "policy_id": policy.id,
                "tenant_id": policy.tenant_id,
                "first_response_minutes": policy.first_response_minutes
            }
        )
        await self._invalidate(policy.tenant_id)
        return PolicyActionResult.ok(PolicyResponse.from_domain(policy))

    async def delete_policy(
        self,
        user_id: Optional[str],
        policy_id: str
    ) -> PolicyActionResult:
        """
        Delete a policy. Requires ADMIN or higher on the owning tenant.

        Escalation state already recorded for the tenant's threads is left
        untouched.
        """
        try:
            policy = await self._policy_repo.get_by_id(policy_id)
            if policy is None:
                raise ResourceNotFoundException("SLA", policy_id)

            await require_tenant_role(self._membership_repo, user_id, policy.tenant_id, Role.ADMIN)

            if not await self._policy_repo.delete(policy_id):
                raise ResourceNotFoundException("SLA", policy_id)
        except ResourceNotFoundException:
            return PolicyActionResult.failed("SLA not found", "not_found")
        except AuthorizationException as e:
            logger.warning(
                "SLA policy deletion denied",
                extra={"user_id": user_id, "tenant_id": e.tenant_id, "policy_id": policy_id}
            )
            return PolicyActionResult.failed("Insufficient permissions", "authorization")
        except Exception as e:
            logger.error(
                "Failed to delete SLA policy",
                extra={"user_id": user_id, "policy_id": policy_id, "error": str(e)}
            )
            return PolicyActionResult.failed("Failed to delete SLA", "internal")

        logger.info("SLA policy deleted", extra={"policy_id": policy_id, "tenant_id": policy.tenant_id})
        await self._invalidate(policy.tenant_id)
        return PolicyActionResult.ok()

    async def list_policies(self, user_id: Optional[str], tenant_id: str) -> List[PolicyResponse]:
        """List a tenant's policies. Any member may read."""
        await require_tenant_role(self._membership_repo, user_id, tenant_id, Role.VIEWER)
        policies = await self._policy_repo.list_for_tenant(tenant_id)
        return [PolicyResponse.from_domain(p) for p in policies]

    async def assign_policy(
        self,
        user_id: Optional[str],
        request: PolicyAssignmentRequest
    ) -> PolicyActionResult:
        """
        Point a local or a channel type at one of the tenant's policies.

        A null policy_id removes the assignment, so the thread falls back
        to the next level of the hierarchy. Requires ADMIN or higher.
        """
        try:
            try:
                data = SLAPolicyAssignmentDTO.from_request(request)
            except ValidationError as e:
                raise ValidationException("Invalid fields", field_errors_from(e))

            await require_tenant_role(self._membership_repo, user_id, data.tenant_id, Role.ADMIN)

            if data.policy_id is not None:
                policy = await self._policy_repo.get_by_id(data.policy_id)
                if policy is None or policy.tenant_id != data.tenant_id:
                    raise ResourceNotFoundException("SLA", data.policy_id)

            assignment = await self._policy_repo.assign(
                tenant_id=data.tenant_id,
                scope=data.scope,
                scope_key=data.key,
                policy_id=data.policy_id
            )
        except ValidationException as e:
            return PolicyActionResult.failed(e.message, "validation", e.field_errors)
        except ResourceNotFoundException:
            return PolicyActionResult.failed("SLA not found", "not_found")
        except AuthorizationException as e:
            logger.warning(
                "SLA policy assignment denied",
                extra={"user_id": user_id, "tenant_id": e.tenant_id}
            )
            return PolicyActionResult.failed("Insufficient permissions", "authorization")
        except Exception as e:
            logger.error(
                "Failed to assign SLA policy",
                extra={"user_id": user_id, "tenant_id": request.tenant_id, "error": str(e)}
            )
            return PolicyActionResult.failed("Failed to assign SLA", "internal")

        logger.info(
            "SLA policy assignment changed",
            extra={
                "tenant_id": data.tenant_id,
                "scope": data.scope,
                "scope_key": data.key,
                "policy_id": data.policy_id
            }
        )
        await self._invalidate(data.tenant_id)
        return PolicyActionResult.ok(
            assignment=PolicyAssignmentResponse.from_domain(assignment) if assignment else None
        )

    async def list_assignments(self, user_id: Optional[str], tenant_id: str) -> List[PolicyAssignmentResponse]:
        """Local and channel assignments of a tenant. Any member may read."""
        await require_tenant_role(self._membership_repo, user_id, tenant_id, Role.VIEWER)
        assignments = await self._policy_repo.list_assignments(tenant_id)
        return [PolicyAssignmentResponse.from_domain(a) for a in assignments]

    async def _invalidate(self, tenant_id: str) -> None:
        if self._view_invalidator is None:
            return
        try:
            await self._view_invalidator.invalidate(tenant_id)
        except Exception as e:
            logger.warning(
                "SLA settings view invalidation failed",
                extra={"tenant_id": tenant_id, "error": str(e)}
            )


class SLAService:
    """
    Read-side SLA status for the inbox.

    Falls back to a display-only default deadline when a tenant has no
    policy; the monitor never uses that fallback.
    """

    def __init__(
        self,
        thread_repository: IThreadRepository,
        policy_repository: ISLAPolicyRepository,
        membership_repository: IMembershipRepository,
        config_provider: Optional[ISLAMonitorConfigProvider] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._thread_repo = thread_repository
        self._policy_repo = policy_repository
        self._membership_repo = membership_repository
        self._config_provider = config_provider or StaticMonitorConfigProvider()
        self._clock = clock

    async def get_thread_for(
        self,
        user_id: Optional[str],
        thread_id: str,
        min_role: str = Role.VIEWER
    ) -> Thread:
        """
        Load a thread the caller may access.

        Raises:
            ResourceNotFoundException: unknown thread
            AuthorizationException: caller lacks min_role on the thread's tenant
        """
        thread = await self._thread_repo.get_by_id(thread_id)
        if thread is None:
            raise ResourceNotFoundException("Thread", thread_id)

        await require_tenant_role(self._membership_repo, user_id, thread.tenant_id, min_role)
        return thread

    async def get_thread_sla(self, user_id: Optional[str], thread_id: str) -> ThreadSLAResponse:
        """
        SLA status of a single thread under the policy that governs it.

        Raises:
            ResourceNotFoundException: unknown thread
            AuthorizationException: caller is not a tenant member
            EvaluationException: thread data is inconsistent
        """
        thread = await self.get_thread_for(user_id, thread_id)

        policy_set = await self._policy_repo.get_policy_set(thread.tenant_id)
        policy, source = self._display_policy(policy_set, thread)
        status = SLACalculator.evaluate(
            thread, policy, self._clock(), self._config_provider.get_config().warning_ratio
        )
        return self._to_response(thread, policy, source, status)

    async def tenant_overview(self, user_id: Optional[str], tenant_id: str) -> TenantOverviewResponse:
        """Counts per state and the list of at-risk open threads."""
        await require_tenant_role(self._membership_repo, user_id, tenant_id, Role.VIEWER)

        policy_set = await self._policy_repo.get_policy_set(tenant_id)
        threads = await self._thread_repo.list_open(tenant_id)
        now = self._clock()
        ratio = self._config_provider.get_config().warning_ratio

        counts = {SLAState.OK: 0, SLAState.WARNING: 0, SLAState.BREACHED: 0}
        at_risk: List[ThreadSLAResponse] = []

        for thread in threads:
            policy, source = self._display_policy(policy_set, thread)
            try:
                status = SLACalculator.evaluate(thread, policy, now, ratio)
            except EvaluationException as e:
                logger.warning(
                    "Skipping thread in SLA overview",
                    extra={"thread_id": thread.id, "tenant_id": tenant_id, "error": e.reason}
                )
                continue

            counts[status.state] += 1
            if status.is_escalatable:
                at_risk.append(self._to_response(thread, policy, source, status))

        at_risk.sort(key=lambda r: r.minutes_remaining)
        total = sum(counts.values())
        breach_rate = (counts[SLAState.BREACHED] / total * 100) if total > 0 else 0.0

        return TenantOverviewResponse(
            tenant_id=tenant_id,
            policy_id=policy_set.default.id if policy_set.default else None,
            policy_source=PolicyScope.TENANT if policy_set.default else "default",
            summary=OverviewSummary(
                total_threads=total,
                ok_count=counts[SLAState.OK],
                warning_count=counts[SLAState.WARNING],
                breached_count=counts[SLAState.BREACHED],
                breach_rate=breach_rate
            ),
            at_risk=at_risk
        )

    @staticmethod
    def _display_policy(policy_set: TenantPolicySet, thread: Thread) -> Tuple[SLAPolicy, str]:
        policy, source = policy_set.resolve(thread)
        if policy is not None:
            return policy, source
        return SLAPolicy(
            id="default",
            tenant_id=thread.tenant_id,
            name="Default",
            first_response_minutes=DISPLAY_DEFAULT_FIRST_RESPONSE_MINUTES
        ), "default"

    @staticmethod
    def _to_response(
        thread: Thread,
        policy: SLAPolicy,
        source: str,
        status: SLAStatus
    ) -> ThreadSLAResponse:
        return ThreadSLAResponse(
            thread_id=thread.id,
            tenant_id=thread.tenant_id,
            status=status.state,
            minutes_elapsed=status.minutes_elapsed,
            minutes_remaining=status.minutes_remaining,
            responded=status.responded,
            display=format_sla_time(status.minutes_remaining),
            first_response_minutes=policy.first_response_minutes,
            policy_id=None if source == "default" else policy.id,
            policy_source=source,
            assignee_id=thread.assignee_id,
            contact_name=thread.contact_name
        )


class SLAMonitor:
    """
    Periodic / on-demand SLA evaluation with escalation.

    Evaluates every open thread under the policy that governs it (Local >
    Channel > Tenant) and notifies the escalation sink once per transition
    into a more severe state. Safe to run concurrently with itself:
    transitions are claimed through the state store's compare-and-set,
    and only the claimant escalates.
    """

    def __init__(
        self,
        unit_of_work_factory: Callable[[], ISLAUnitOfWork],
        escalation_sink: IEscalationSink,
        state_store: IEscalationStateStore,
        config_provider: Optional[ISLAMonitorConfigProvider] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._unit_of_work_factory = unit_of_work_factory
        self._sink = escalation_sink
        self._state_store = state_store
        self._config_provider = config_provider or StaticMonitorConfigProvider()
        self._clock = clock

    async def monitor_all(self) -> MonitorRunSummary:
        """
        Evaluate every tenant.

        A tenant that fails to load is counted and skipped. Only failing to
        enumerate tenants aborts the run.
        """
        summary = MonitorRunSummary()
        config = self._config_provider.get_config()

        async with self._unit_of_work_factory() as uow:
            tenant_ids: Set[str] = set(await uow.threads.list_tenant_ids_with_open_threads())
        # tenants whose threads all closed still need their entries pruned
        tenant_ids.update(await self._state_store.tenant_ids())

        semaphore = asyncio.Semaphore(config.max_concurrent_tenants)

        async def run_tenant(tenant_id: str) -> None:
            async with semaphore:
                try:
                    await self._monitor_tenant(tenant_id, config, summary)
                except asyncio.TimeoutError:
                    summary.tenant_failures += 1
                    logger.error("Timed out loading tenant for SLA monitoring", extra={"tenant_id": tenant_id})
                except Exception as e:
                    summary.tenant_failures += 1
                    logger.error(
                        "SLA monitoring failed for tenant",
                        extra={"tenant_id": tenant_id, "error": str(e)}
                    )

        with log_latency(logger, "sla_monitor_run", scope="all", tenants=len(tenant_ids)):
            await asyncio.gather(*(run_tenant(t) for t in sorted(tenant_ids)))

        summary.finish()
        logger.info("SLA monitor run complete", extra=summary.to_dict())
        return summary

    async def monitor_tenant(self, tenant_id: str) -> MonitorRunSummary:
        """
        Evaluate one tenant.

        Raises whatever prevented the tenant from loading; per-thread
        failures are recorded in the summary instead.
        """
        summary = MonitorRunSummary(tenant_id=tenant_id)
        config = self._config_provider.get_config()

        with log_latency(logger, "sla_monitor_run", scope="tenant", tenant_id=tenant_id):
            await self._monitor_tenant(tenant_id, config, summary)

        summary.finish()
        logger.info("SLA monitor run complete", extra=summary.to_dict())
        return summary

    async def forget_thread(self, thread_id: str) -> None:
        """
        Drop tracking for a thread whose status changed outside a run.

        A reopened thread then escalates again from a clean slate instead
        of waiting for the next prune.
        """
        await self._state_store.discard(thread_id)
        logger.info("SLA tracking reset", extra={"thread_id": thread_id})

    async def _monitor_tenant(
        self,
        tenant_id: str,
        config: SLAMonitorConfig,
        summary: MonitorRunSummary
    ) -> None:
        policy_set, threads = await asyncio.wait_for(
            self._load_tenant(tenant_id),
            timeout=config.tenant_load_timeout_seconds
        )
        open_threads = [t for t in threads if t.is_open]
        summary.tenants_scanned += 1
        summary.states_pruned += await self._state_store.prune(tenant_id, {t.id for t in open_threads})

        if policy_set.is_empty:
            summary.threads_skipped += len(open_threads)
            if open_threads:
                logger.debug(
                    "No SLA policy configured, skipping tenant threads",
                    extra={"tenant_id": tenant_id, "threads": len(open_threads)}
                )
            return

        for thread in open_threads:
            policy, source = policy_set.resolve(thread)
            if policy is None:
                summary.threads_skipped += 1
                continue
            await self._monitor_thread(thread, policy, source, config, summary)

    async def _load_tenant(self, tenant_id: str) -> Tuple[TenantPolicySet, List[Thread]]:
        async with self._unit_of_work_factory() as uow:
            policy_set = await uow.policies.get_policy_set(tenant_id)
            threads = await uow.threads.list_open(tenant_id)
        return policy_set, threads

    async def _monitor_thread(
        self,
        thread: Thread,
        policy: SLAPolicy,
        source: str,
        config: SLAMonitorConfig,
        summary: MonitorRunSummary
    ) -> None:
        try:
            event = await asyncio.wait_for(
                self._claim_transition(thread, policy, source, config),
                timeout=config.thread_timeout_seconds
            )
        except asyncio.TimeoutError:
            summary.evaluation_failures += 1
            logger.warning(
                "SLA evaluation timed out",
                extra={"thread_id": thread.id, "tenant_id": thread.tenant_id}
            )
            return
        except EvaluationException as e:
            summary.evaluation_failures += 1
            logger.warning(
                "SLA evaluation skipped thread",
                extra={"thread_id": thread.id, "tenant_id": thread.tenant_id, "error": e.reason}
            )
            return
        except Exception as e:
            summary.evaluation_failures += 1
            logger.error(
                "SLA evaluation failed",
                extra={"thread_id": thread.id, "tenant_id": thread.tenant_id, "error": str(e)}
            )
            return

        summary.threads_evaluated += 1
        if event is None:
            return

        try:
            await asyncio.wait_for(self._sink.notify(event), timeout=config.sink_timeout_seconds)
            summary.escalations_sent += 1
            logger.info(
                "SLA escalation sent",
                extra={
                    "thread_id": event.thread_id,
                    "tenant_id": event.tenant_id,
                    "status": event.status,
                    "previous_status": event.previous_status,
                    "policy_source": event.policy_source,
                    "minutes_remaining": event.minutes_remaining
                }
            )
        except Exception as e:
            # the recorded transition stands; redelivery belongs to the sink
            summary.delivery_failures += 1
            logger.error(
                "SLA escalation delivery failed",
                extra={
                    "thread_id": event.thread_id,
                    "tenant_id": event.tenant_id,
                    "status": event.status,
                    "error": str(e) or type(e).__name__
                }
            )

    async def _claim_transition(
        self,
        thread: Thread,
        policy: SLAPolicy,
        source: str,
        config: SLAMonitorConfig
    ) -> Optional[EscalationEvent]:
        """
        Evaluate and record the thread's state.

        Returns an event only when this call won the compare-and-set and
        the new state is more severe than the recorded one.
        """
        # read per thread: a queued tenant must not be judged at the run's start time
        now = self._clock()
        status = SLACalculator.evaluate(thread, policy, now, config.warning_ratio)
        previous = await self._state_store.get(thread.id)
        recorded = previous or SLAState.OK

        if recorded == status.state:
            return None

        # an unanswered thread only gets worse with time; a lower state comes
        # from an older clock or a relaxed policy and the recorded state stands
        if SLA_STATE_SEVERITY[status.state] < SLA_STATE_SEVERITY[recorded] and not status.responded:
            logger.debug(
                "Ignoring SLA downgrade of an unanswered thread",
                extra={"thread_id": thread.id, "status": status.state, "previous_status": previous}
            )
            return None

        claimed = await self._state_store.compare_and_set(
            thread.id, thread.tenant_id, previous, status.state
        )
        if not claimed:
            logger.debug(
                "SLA transition already recorded by a concurrent run",
                extra={"thread_id": thread.id, "status": status.state}
            )
            return None

        if not SLACalculator.should_escalate(status.state, previous):
            return None

        return EscalationEvent(
            thread_id=thread.id,
            tenant_id=thread.tenant_id,
            status=status.state,
            previous_status=previous,
            minutes_elapsed=status.minutes_elapsed,
            minutes_remaining=status.minutes_remaining,
            policy_id=policy.id,
            first_response_minutes=policy.first_response_minutes,
            policy_source=source,
            assignee_id=thread.assignee_id,
            contact_name=thread.contact_name,
            triggered_at=now
        )
