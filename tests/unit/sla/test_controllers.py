"""Unit tests for the SLA HTTP routes.

Services are swapped through FastAPI dependency overrides; the lifespan
(database, scheduler) is not started.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.config import PolicyScope, Role
from src.main import app
from src.sla.application import SLAPolicyService, SLAService
from src.sla.domain import MonitorRunSummary
from src.sla.interfaces.controllers import get_policy_service, get_sla_service
from tests.helpers.fakes import (
    T0,
    Clock,
    FakeMembershipRepository,
    FakePolicyRepository,
    FakeThreadRepository,
    make_policy,
    make_thread,
)

ADMIN = {"X-User-ID": "admin"}
AGENT = {"X-User-ID": "agent"}
VIEWER = {"X-User-ID": "viewer"}


@pytest.fixture
def policies() -> FakePolicyRepository:
    return FakePolicyRepository()


@pytest.fixture
def threads() -> FakeThreadRepository:
    return FakeThreadRepository()


@pytest.fixture
def client(policies, threads):
    memberships = FakeMembershipRepository({
        ("admin", "tenant-1"): Role.ADMIN,
        ("agent", "tenant-1"): Role.AGENT,
        ("viewer", "tenant-1"): Role.VIEWER,
    })
    app.dependency_overrides[get_policy_service] = lambda: SLAPolicyService(policies, memberships)
    app.dependency_overrides[get_sla_service] = lambda: SLAService(
        threads, policies, memberships, clock=Clock(T0 + timedelta(minutes=65))
    )
    app.state.sla_monitor = AsyncMock()
    app.state.sla_monitor.monitor_all.return_value = MonitorRunSummary()
    app.state.sla_monitor.monitor_tenant.return_value = MonitorRunSummary(tenant_id="tenant-1")

    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.sla_monitor = None


class TestMonitorRoute:

    def test_monitor_all(self, client) -> None:
        response = client.post("/sla/monitor")

        assert response.status_code == 200
        assert response.json()["success"] is True
        app.state.sla_monitor.monitor_all.assert_awaited_once()

    def test_monitor_single_tenant(self, client) -> None:
        response = client.post("/sla/monitor", json={"tenantId": "tenant-1"})

        assert response.status_code == 200
        app.state.sla_monitor.monitor_tenant.assert_awaited_once_with("tenant-1")

    def test_empty_body_monitors_everything(self, client) -> None:
        response = client.post("/sla/monitor", json={})

        assert response.status_code == 200
        app.state.sla_monitor.monitor_all.assert_awaited_once()

    def test_failure_returns_500(self, client) -> None:
        app.state.sla_monitor.monitor_all.side_effect = RuntimeError("db down")

        response = client.post("/sla/monitor")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to monitor SLAs"}


class TestPolicyRoutes:

    def test_create_requires_user(self, client) -> None:
        response = client.post("/sla/policies", json={"tenantId": "tenant-1", "name": "Std", "firstResponseMinutes": "60"})

        assert response.status_code == 401

    def test_create_policy(self, client, policies) -> None:
        response = client.post(
            "/sla/policies",
            json={"tenantId": "tenant-1", "name": "Standard", "firstResponseMinutes": "30"},
            headers=ADMIN,
        )

        assert response.status_code == 201
        assert response.json()["success"] is True
        assert response.json()["policy"]["first_response_minutes"] == 30
        assert len(policies.policies) == 1

    def test_create_invalid_returns_field_errors(self, client) -> None:
        response = client.post(
            "/sla/policies",
            json={"tenantId": "tenant-1", "name": "S", "firstResponseMinutes": "x"},
            headers=ADMIN,
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Invalid fields"
        assert set(body["field_errors"]) == {"name", "first_response_minutes"}

    def test_create_forbidden_for_viewer(self, client) -> None:
        response = client.post(
            "/sla/policies",
            json={"tenantId": "tenant-1", "name": "Standard", "firstResponseMinutes": "30"},
            headers=VIEWER,
        )

        assert response.status_code == 403

    def test_delete_unknown_policy(self, client) -> None:
        response = client.delete("/sla/policies/nope", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["error"] == "SLA not found"

    def test_delete_policy(self, client, policies) -> None:
        policies.policies.append(make_policy())

        response = client.delete("/sla/policies/pol-1", headers=ADMIN)

        assert response.status_code == 200
        assert policies.policies == []

    def test_list_policies(self, client, policies) -> None:
        policies.policies.append(make_policy())

        response = client.get("/sla/tenants/tenant-1/policies", headers=VIEWER)

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["pol-1"]

    def test_list_policies_of_foreign_tenant(self, client) -> None:
        response = client.get("/sla/tenants/tenant-9/policies", headers=VIEWER)

        assert response.status_code == 403


class TestAssignmentRoutes:

    def test_assign_channel_policy(self, client, policies) -> None:
        policies.policies.append(make_policy(policy_id="pol-wa"))

        response = client.post(
            "/sla/assignments",
            json={"tenantId": "tenant-1", "scope": "channel", "key": "whatsapp", "policyId": "pol-wa"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        assert response.json()["assignment"] == {
            "tenant_id": "tenant-1", "scope": "channel", "key": "WHATSAPP", "policy_id": "pol-wa"
        }
        assert [(a.scope, a.scope_key) for a in policies.assignments] == [(PolicyScope.CHANNEL, "WHATSAPP")]

    def test_assign_unknown_scope(self, client) -> None:
        response = client.post(
            "/sla/assignments",
            json={"tenantId": "tenant-1", "scope": "tenant", "key": "x", "policyId": "pol-1"},
            headers=ADMIN,
        )

        assert response.status_code == 422
        assert "scope" in response.json()["field_errors"]

    def test_assign_forbidden_for_viewer(self, client, policies) -> None:
        policies.policies.append(make_policy())

        response = client.post(
            "/sla/assignments",
            json={"tenantId": "tenant-1", "scope": "local", "key": "branch-1", "policyId": "pol-1"},
            headers=VIEWER,
        )

        assert response.status_code == 403
        assert policies.assignments == []

    def test_list_assignments(self, client, policies) -> None:
        policies.policies.append(make_policy())
        client.post(
            "/sla/assignments",
            json={"tenantId": "tenant-1", "scope": "local", "key": "branch-1", "policyId": "pol-1"},
            headers=ADMIN,
        )

        response = client.get("/sla/tenants/tenant-1/assignments", headers=VIEWER)

        assert response.status_code == 200
        assert [(a["scope"], a["key"]) for a in response.json()] == [("local", "branch-1")]

    def test_list_assignments_of_foreign_tenant(self, client) -> None:
        response = client.get("/sla/tenants/tenant-9/assignments", headers=VIEWER)

        assert response.status_code == 403



class TestReadRoutes:

    def test_thread_sla(self, client, threads, policies) -> None:
        threads.add(make_thread())
        policies.policies.append(make_policy(minutes=60))

        response = client.get("/sla/threads/thr-1", headers=VIEWER)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "breached"
        assert body["minutes_remaining"] == -5
        assert body["display"] == "5m overdue"

    def test_unknown_thread(self, client) -> None:
        response = client.get("/sla/threads/missing", headers=VIEWER)

        assert response.status_code == 404

    def test_thread_sla_reports_channel_policy(self, client, threads, policies) -> None:
        threads.add(make_thread(channel_type="WHATSAPP"))
        policies.policies.append(make_policy(minutes=240, policy_id="tenant"))
        policies.policies.append(make_policy(minutes=60, policy_id="whatsapp", created_at=T0 + timedelta(days=1)))
        client.post(
            "/sla/assignments",
            json={"tenantId": "tenant-1", "scope": "channel", "key": "WHATSAPP", "policyId": "whatsapp"},
            headers=ADMIN,
        )

        body = client.get("/sla/threads/thr-1", headers=VIEWER).json()

        assert body["policy_id"] == "whatsapp"
        assert body["policy_source"] == "channel"
        assert body["status"] == "breached"

    def test_reset_thread_tracking(self, client, threads) -> None:
        threads.add(make_thread())

        response = client.post("/sla/threads/thr-1/reset", headers=AGENT)

        assert response.status_code == 204
        app.state.sla_monitor.forget_thread.assert_awaited_once_with("thr-1")

    def test_reset_requires_agent(self, client, threads) -> None:
        threads.add(make_thread())

        response = client.post("/sla/threads/thr-1/reset", headers=VIEWER)

        assert response.status_code == 403
        app.state.sla_monitor.forget_thread.assert_not_awaited()

    def test_reset_unknown_thread(self, client) -> None:
        response = client.post("/sla/threads/missing/reset", headers=AGENT)

        assert response.status_code == 404

    def test_overview(self, client, threads, policies) -> None:
        threads.add(make_thread())
        policies.policies.append(make_policy(minutes=60))

        response = client.get("/sla/tenants/tenant-1/overview", headers=VIEWER)

        assert response.status_code == 200
        assert response.json()["summary"]["breached_count"] == 1


class TestServiceRoutes:

    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_correlation_id_is_echoed(self, client) -> None:
        response = client.get("/", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"
