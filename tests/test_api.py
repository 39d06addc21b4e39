from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import Env, run
from workorder_engine.api import app, get_engine
from workorder_engine.config import get_settings
from workorder_engine.models import PMFrequency, PMSchedule, Priority, Role, Ticket, utcnow
from workorder_engine.repository import InMemoryRepository
from workorder_engine.services import DependencyFailure


@pytest.fixture
def client(env):
    app.dependency_overrides[get_engine] = lambda: env.engine
    app.dependency_overrides[get_settings] = lambda: env.settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers(env, role):
    return {"X-Tenant-Id": str(env.tenant_id), "X-User-Id": str(env.users[role].id)}


CRON = {"Authorization": "Bearer test-secret"}


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


# =============================================================================
# Cron triggers
# =============================================================================

@pytest.mark.parametrize("auth", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic test-secret"}])
def test_cron_requires_secret(env, client, auth):
    response = client.post("/cron/ticket-escalation", params={"tenant_id": str(env.tenant_id)}, headers=auth)
    assert response.status_code == 401


def test_cron_escalation_returns_summary(env, client):
    env.aged_ticket(5, Priority.HIGH)

    response = client.post("/cron/ticket-escalation", params={"tenant_id": str(env.tenant_id)}, headers=CRON)

    assert response.status_code == 200
    body = response.json()
    assert body["job"] == "ticket-escalation"
    assert body["escalated"] == 1
    assert "5 hours" in body["results"][0]["reason"]
    assert "sample_size" not in body


def test_cron_pm_generate_returns_summary(env, client):
    run(env.repos.schedules.create(PMSchedule(
        tenant_id=env.tenant_id,
        name="Roof drain check",
        frequency=PMFrequency.MONTHLY,
        next_due_date=utcnow().date(),
        location_id=uuid4(),
        assigned_to=env.users[Role.STAFF].id,
    )))

    response = client.post("/cron/pm-generate", params={"tenant_id": str(env.tenant_id)}, headers=CRON)

    assert response.status_code == 200
    assert response.json()["job"] == "pm-generate"
    assert response.json()["generated"] == 1


# =============================================================================
# Ticket lifecycle over HTTP
# =============================================================================

def test_ticket_round_trip(env, client):
    created = client.post(
        "/tickets",
        json={"title": "Door closer broken", "priority": "high"},
        headers=headers(env, Role.REQUESTER),
    )
    assert created.status_code == 201
    ticket_id = created.json()["id"]

    manager = headers(env, Role.MANAGER)
    assert client.post(f"/tickets/{ticket_id}/start", headers=manager).json()["status"] == "in_progress"
    assert client.post(f"/tickets/{ticket_id}/complete", json={}, headers=manager).json()["status"] == "completed"
    closed = client.post(f"/tickets/{ticket_id}/close", json={"notes": "Closer replaced"}, headers=manager)
    assert closed.json()["status"] == "closed"
    assert closed.json()["resolution_notes"] == "Closer replaced"


def test_unknown_ticket_is_404(env, client):
    response = client.get(f"/tickets/{uuid4()}", headers=headers(env, Role.MANAGER))
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_invalid_transition_is_409(env, client):
    ticket = env.submit()
    response = client.post(f"/tickets/{ticket.id}/complete", json={}, headers=headers(env, Role.MANAGER))
    assert response.status_code == 409


def test_forbidden_is_403(env, client):
    ticket = env.submit()
    response = client.put(
        f"/tickets/{ticket.id}/status",
        json={"status": "closed"},
        headers=headers(env, Role.REQUESTER),
    )
    assert response.status_code == 403


def test_unknown_user_is_403(env, client):
    response = client.get(
        "/tickets",
        headers={"X-Tenant-Id": str(env.tenant_id), "X-User-Id": str(uuid4())},
    )
    assert response.status_code == 403


def test_short_reason_is_422(env, client):
    ticket = env.submit()
    response = client.post(
        f"/tickets/{ticket.id}/reject",
        json={"reason": "nope"},
        headers=headers(env, Role.MANAGER),
    )
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


def test_approval_flow(env, client):
    ticket = env.submit()
    requested = client.post(
        f"/tickets/{ticket.id}/approvals",
        json={"estimated_cost": 900.0},
        headers=headers(env, Role.MANAGER),
    )
    assert requested.status_code == 201

    approval_id = requested.json()["id"]
    approved = client.post(f"/approvals/{approval_id}/approve", headers=headers(env, Role.ADMIN))
    again = client.post(f"/approvals/{approval_id}/approve", headers=headers(env, Role.ADMIN))

    assert approved.json()["status"] == "approved"
    assert again.status_code == 409


def test_resolve_emergency_without_notes_is_422(env, client):
    ticket = run(env.engine.tickets.create_emergency_ticket(env.staff, "Fire alarm fault"))
    response = client.post(
        f"/tickets/{ticket.id}/emergency/resolve",
        json={"notes": " "},
        headers=headers(env, Role.STAFF),
    )
    assert response.status_code == 422


def test_schedule_admin(env, client):
    manager = headers(env, Role.MANAGER)
    created = client.post(
        "/pm-schedules",
        json={"name": "Elevator service", "frequency": "quarterly", "asset_id": str(uuid4())},
        headers=manager,
    )
    assert created.status_code == 201
    schedule_id = created.json()["id"]

    paused = client.post(f"/pm-schedules/{schedule_id}/deactivate", headers=manager)
    assert paused.json()["is_active"] is False

    assert client.delete(f"/pm-schedules/{schedule_id}", headers=manager).status_code == 204
    assert client.get(f"/pm-schedules/{schedule_id}", headers=manager).status_code == 404


class _UnavailableTickets(InMemoryRepository):
    async def find_by_id(self, tenant_id, record_id, include_deleted=False):
        raise DependencyFailure("database unavailable", dependency="tickets")


def test_dependency_failure_is_502(client):
    env = Env()
    env.engine.tickets.tickets = _UnavailableTickets(Ticket)
    app.dependency_overrides[get_engine] = lambda: env.engine

    response = client.get(f"/tickets/{uuid4()}", headers=headers(env, Role.MANAGER))

    assert response.status_code == 502
    assert response.json()["error"] == "DependencyFailure"


def test_cron_refused_without_configured_secret():
    env = Env(cron_secret=None)
    app.dependency_overrides[get_engine] = lambda: env.engine
    app.dependency_overrides[get_settings] = lambda: env.settings
    try:
        client = TestClient(app)
        for path in ("/cron/ticket-escalation", "/cron/pm-generate"):
            for token in ("change-me", "None", ""):
                response = client.post(
                    path,
                    params={"tenant_id": str(env.tenant_id)},
                    headers={"Authorization": f"Bearer {token}"},
                )
                assert response.status_code == 401
    finally:
        app.dependency_overrides.clear()


@pytest.mark.parametrize("body", [
    {"next_due_date": None},
    {"frequency": None},
    {"name": None},
    {"day_of_week": 9},
])
def test_bad_schedule_patch_is_422_and_sweep_survives(env, client, body):
    today = utcnow().date()
    schedules = [
        run(env.repos.schedules.create(PMSchedule(
            tenant_id=env.tenant_id,
            name=name,
            frequency=PMFrequency.WEEKLY,
            next_due_date=today,
            location_id=uuid4(),
            assigned_to=env.users[Role.STAFF].id,
        )))
        for name in ("Broken", "Healthy")
    ]

    response = client.patch(f"/pm-schedules/{schedules[0].id}", json=body, headers=headers(env, Role.MANAGER))
    assert response.status_code == 422

    cron = client.post("/cron/pm-generate", params={"tenant_id": str(env.tenant_id)}, headers=CRON)
    assert cron.status_code == 200
    assert cron.json()["generated"] == 2
    assert cron.json()["failed"] == 0
