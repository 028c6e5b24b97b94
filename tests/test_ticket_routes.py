from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from helpdesk.dependencies import tickets as ticket_deps
from helpdesk.main import create_app
from helpdesk.tickets import IdempotencyCache, IdempotentConflictError, TicketService

USER_HEADERS = {"Authorization": "Bearer user-token"}
AGENT_HEADERS = {"Authorization": "Bearer agent-token"}
ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}
SECOND_USER_HEADERS = {"Authorization": "Bearer second-user-token"}


@pytest.fixture
def service(store, users, metrics):
    # Responses project SLA against wall-clock time, so the service must use it too.
    return TicketService(store, users, metrics=metrics)


@pytest.fixture
def client(service):
    app = create_app()
    app.state.ticket_service = service
    app.state.idempotency_cache = IdempotencyCache(ttl_seconds=60)
    return TestClient(app)


def _create(client, **payload):
    body = {"title": "Printer jam", "description": "Tray 2 keeps jamming", **payload}
    response = client.post("/tickets", json=body, headers=USER_HEADERS)
    assert response.status_code == 201
    return response.json()


def test_create_ticket_returns_created(client):
    ticket = _create(client)

    assert ticket["version"] == 1
    assert ticket["status"] == "open"
    assert ticket["created_by"] == "user-1"
    assert ticket["sla_status"] == "active"
    assert [entry["action"] for entry in ticket["timeline"]] == ["created"]


def test_create_ticket_requires_title(client):
    response = client.post("/tickets", json={"description": "No title"}, headers=USER_HEADERS)

    assert response.status_code == 400
    assert response.json()["error"] == {
        "code": "FIELD_REQUIRED",
        "field": "title",
        "message": "Title is required",
    }


def test_create_ticket_rejects_staff_and_anonymous(client):
    assert client.post("/tickets", json={"title": "a", "description": "b"}, headers=AGENT_HEADERS).status_code == 403
    response = client.post("/tickets", json={"title": "a", "description": "b"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


def test_idempotency_key_replays_first_ticket(client, store):
    headers = {**USER_HEADERS, "Idempotency-Key": "create-42"}
    body = {"title": "Printer jam", "description": "Tray 2"}

    first = client.post("/tickets", json=body, headers=headers)
    second = client.post("/tickets", json=body, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    listing = client.get("/tickets", headers=USER_HEADERS).json()
    assert listing["total"] == 1


def test_idempotency_keys_are_scoped_to_submitter(client):
    body = {"title": "Payroll question", "description": "Private details"}

    first = client.post("/tickets", json=body, headers={**USER_HEADERS, "Idempotency-Key": "k1"})
    second = client.post(
        "/tickets",
        json={"title": "VPN down", "description": "Cannot connect"},
        headers={**SECOND_USER_HEADERS, "Idempotency-Key": "k1"},
    )

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["created_by"] == "user-1"
    assert second.json()["created_by"] == "user-2"
    assert second.json()["title"] == "VPN down"
    assert second.json()["id"] != first.json()["id"]


def test_comment_idempotency_key_replays_first_comment(client):
    ticket = _create(client)
    url = f"/tickets/{ticket['id']}/comments"
    headers = {**AGENT_HEADERS, "Idempotency-Key": "c1"}

    first = client.post(url, json={"text": "Looking into it"}, headers=headers)
    second = client.post(url, json={"text": "Looking into it"}, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    detail = client.get(f"/tickets/{ticket['id']}", headers=USER_HEADERS).json()
    assert len(detail["comments"]) == 1
    assert [entry["action"] for entry in detail["timeline"]] == ["created", "commented"]


def test_comment_idempotency_key_is_scoped_to_ticket(client):
    first_ticket = _create(client)
    second_ticket = _create(client, title="Scanner")
    headers = {**AGENT_HEADERS, "Idempotency-Key": "c1"}

    first = client.post(f"/tickets/{first_ticket['id']}/comments", json={"text": "On it"}, headers=headers)
    second = client.post(f"/tickets/{second_ticket['id']}/comments", json={"text": "On it"}, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["ticket_id"] == second_ticket["id"]


def test_in_flight_idempotency_key_conflicts():
    app = create_app()
    service = AsyncMock()
    cache = AsyncMock()

    class _BusyClaim:
        async def __aenter__(self):
            raise IdempotentConflictError("create-42")

        async def __aexit__(self, exc_type, exc, tb):
            return False

    cache.claim = lambda key, **_: _BusyClaim()
    app.dependency_overrides[ticket_deps.get_ticket_service] = lambda: service
    app.dependency_overrides[ticket_deps.get_idempotency_cache] = lambda: cache
    client = TestClient(app)

    response = client.post(
        "/tickets",
        json={"title": "Printer jam", "description": "Tray 2"},
        headers={**USER_HEADERS, "Idempotency-Key": "create-42"},
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "IDEMPOTENT_CONFLICT"
    service.create_ticket.assert_not_awaited()


def test_status_change_and_stale_version_conflict(client):
    ticket = _create(client)
    url = f"/tickets/{ticket['id']}/status"

    ok = client.patch(url, json={"version": 1, "status": "in_progress"}, headers=AGENT_HEADERS)
    stale = client.patch(url, json={"version": 1, "status": "resolved"}, headers=AGENT_HEADERS)

    assert ok.status_code == 200
    assert ok.json()["version"] == 2
    assert stale.status_code == 409
    assert stale.json()["error"]["code"] == "VERSION_CONFLICT"
    assert stale.json()["error"]["current_version"] == 2


def test_status_change_requires_staff(client):
    ticket = _create(client)

    response = client.patch(
        f"/tickets/{ticket['id']}/status", json={"version": 1, "status": "resolved"}, headers=USER_HEADERS
    )

    assert response.status_code == 403


def test_status_change_rejects_unknown_status(client):
    ticket = _create(client)

    response = client.patch(
        f"/tickets/{ticket['id']}/status", json={"version": 1, "status": "archived"}, headers=AGENT_HEADERS
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_STATUS"


def test_patch_requires_version(client):
    ticket = _create(client)

    response = client.patch(f"/tickets/{ticket['id']}", json={"title": "New"}, headers=ADMIN_HEADERS)

    assert response.status_code == 400
    assert response.json()["error"]["field"] == "version"


def test_patch_applies_allowed_fields(client):
    ticket = _create(client)

    response = client.patch(
        f"/tickets/{ticket['id']}",
        json={"version": 1, "title": "Printer on fire", "assigned_to": "agent-1"},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Printer on fire"
    assert body["assigned_to"] == "agent-1"
    assert body["timeline"][-1]["details"] == "Updated fields: title, assigned_to"


def test_assign_endpoint_validates_agent(client):
    ticket = _create(client)
    url = f"/tickets/{ticket['id']}/assign"

    invalid = client.patch(url, json={"version": 1, "agent_id": "user-1"}, headers=ADMIN_HEADERS)
    assigned = client.patch(url, json={"version": 1, "agent_id": "agent-1"}, headers=ADMIN_HEADERS)

    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "INVALID_AGENT"
    assert assigned.status_code == 200
    assert assigned.json()["timeline"][-1]["details"] == "Assigned to Alex Agent"


def test_self_edit_gated_on_open_status(client):
    ticket = _create(client)
    client.patch(f"/tickets/{ticket['id']}/status", json={"version": 1, "status": "resolved"}, headers=AGENT_HEADERS)

    response = client.patch(f"/tickets/{ticket['id']}/self", json={"version": 2, "title": "x"}, headers=USER_HEADERS)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_OPERATION"


def test_comment_and_detail(client):
    ticket = _create(client)

    created = client.post(
        f"/tickets/{ticket['id']}/comments", json={"text": "Looking into it"}, headers=AGENT_HEADERS
    )
    detail = client.get(f"/tickets/{ticket['id']}", headers=USER_HEADERS)

    assert created.status_code == 201
    assert created.json()["parent_comment"] is None
    body = detail.json()
    assert body["version"] == 1
    assert body["comments"][0]["text"] == "Looking into it"
    assert body["timeline"][-1]["action"] == "commented"
    assert body["sla_time_remaining_seconds"] > 0


def test_get_missing_ticket(client):
    response = client.get("/tickets/missing", headers=ADMIN_HEADERS)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_delete_ticket(client):
    ticket = _create(client)

    response = client.delete(f"/tickets/{ticket['id']}", headers=USER_HEADERS)

    assert response.status_code == 204
    assert client.get(f"/tickets/{ticket['id']}", headers=ADMIN_HEADERS).status_code == 404


def test_list_tickets_paginates(client):
    for index in range(3):
        _create(client, title=f"Ticket {index}")

    response = client.get("/tickets", params={"limit": 2}, headers=ADMIN_HEADERS)

    body = response.json()
    assert body["total"] == 3
    assert len(body["items"]) == 2
    assert body["next_offset"] == 2


def test_store_failure_maps_to_service_unavailable():
    app = create_app()
    service = AsyncMock()
    service.get_ticket = AsyncMock(side_effect=OSError("connection refused"))
    app.dependency_overrides[ticket_deps.get_ticket_service] = lambda: service
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/tickets/t-1", headers=ADMIN_HEADERS)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"


def test_ping_and_metrics(client):
    assert client.get("/ping").json() == {"status": "ok"}
    assert client.get("/ping/secure", headers=AGENT_HEADERS).json()["role"] == "agent"
    _create(client)

    metrics = client.get("/metrics")

    assert metrics.status_code == 200
    assert "helpdesk_tickets_created_total" in metrics.text
