from datetime import datetime
from uuid import UUID

import httpx
import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_enqueue, get_executor, get_nuvemshop_client, get_session, get_session_factory
from app.main import app
from app.models.sync_run import SyncRun, SyncRunStatus
from app.repositories.sync_cursor_repository import SyncCursorRepository
from app.services.sync.executor import SyncExecutor
from app.services.sync.locks import SyncLockManager, resource_key_for

from conftest import (
    ADMIN_HEADERS,
    FakeNuvemshopClient,
    FakeWebhookApi,
    mock_nuvemshop_client,
    order_record,
    webhook_request,
)


class RecordingEnqueue:
    def __init__(self):
        self.runs = []
        self.fail = False

    def __call__(self, run):
        if self.fail:
            raise ConnectionError("broker down")
        self.runs.append(run)
        return f"task-{len(self.runs)}"


@pytest.fixture
def enqueue():
    return RecordingEnqueue()


@pytest.fixture
def nuvemshop():
    return FakeNuvemshopClient(pages=[[order_record(1), order_record(2)]])


@pytest.fixture
def client(session_factory, enqueue, nuvemshop):
    def override_session():
        with session_factory() as session:
            yield session

    def override_executor():
        return SyncExecutor(session_factory, client_factory=lambda: nuvemshop)

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_enqueue] = lambda: enqueue
    app.dependency_overrides[get_executor] = override_executor
    yield TestClient(app)
    app.dependency_overrides.clear()


def post_webhook(client, collection, event, entity_id, **kwargs):
    raw, headers = webhook_request(event, entity_id, **kwargs)
    return client.post(f"/api/webhooks/{collection}", content=raw, headers=headers)


def test_status(client):
    assert client.get("/status").json()["status"] == "ok"


def test_webhook_accepted_then_duplicate(client, enqueue):
    first = post_webhook(client, "orders", "order/created", 1, event_id="evt-api-1")
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["duplicate"] is False
    assert body["sync_run_id"] == str(enqueue.runs[0].id)

    second = post_webhook(client, "orders", "order/created", 1, event_id="evt-api-1")
    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert len(enqueue.runs) == 1


def test_webhook_bad_signature(client, enqueue):
    response = post_webhook(client, "orders", "order/created", 1, secret="wrong")
    assert response.status_code == 401
    assert response.json()["error_code"] == "UNAUTHORIZED"
    assert enqueue.runs == []


def test_webhook_malformed(client):
    response = post_webhook(client, "orders", "product/created", 1)
    assert response.status_code == 400
    assert response.json()["error_code"] == "MALFORMED_PAYLOAD"


def test_webhook_unknown_collection(client):
    response = post_webhook(client, "invoices", "order/created", 1)
    assert response.status_code == 404
    assert response.json()["error_code"] == "UNKNOWN_COLLECTION"


def test_webhook_wrong_store(client):
    response = post_webhook(client, "orders", "order/created", 1, store_id="999")
    assert response.status_code == 401


def test_webhook_handoff_failure(client, enqueue):
    enqueue.fail = True
    response = post_webhook(client, "orders", "order/created", 2, event_id="evt-api-2")
    assert response.status_code == 500
    assert response.json()["error_code"] == "HANDOFF_FAILED"

    enqueue.fail = False
    retried = post_webhook(client, "orders", "order/created", 2, event_id="evt-api-2")
    assert retried.status_code == 200
    assert retried.json()["duplicate"] is False


def test_webhook_health(client):
    post_webhook(client, "orders", "order/created", 1)
    response = client.get("/api/webhooks/health")
    assert response.status_code == 200
    assert response.json()["deliveries_last_hour"] == 1


def test_deliveries_require_admin(client):
    assert client.get("/api/webhooks/deliveries").status_code == 401
    assert client.get("/api/webhooks/deliveries", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_admin_key_header_is_accepted(client):
    response = client.get("/api/webhooks/deliveries", headers={"X-Admin-Key": "test-admin-key"})
    assert response.status_code == 200
    assert client.get("/api/webhooks/deliveries", headers={"X-Admin-Key": "nope"}).status_code == 401


def test_deliveries_total_counts_all_matching_rows(client):
    for entity_id in (1, 2, 3):
        post_webhook(client, "orders", "order/updated", entity_id)
    post_webhook(client, "products", "product/updated", 4)

    page = client.get(
        "/api/webhooks/deliveries", params={"collection": "orders", "limit": 2}, headers=ADMIN_HEADERS
    ).json()
    assert page["total"] == 3
    assert len(page["deliveries"]) == 2


def test_list_and_retry_deliveries(client, enqueue):
    enqueue.fail = True
    post_webhook(client, "products", "product/updated", 3, event_id="evt-api-3")
    enqueue.fail = False

    listed = client.get("/api/webhooks/deliveries", params={"status": "failed"}, headers=ADMIN_HEADERS)
    assert listed.status_code == 200
    [delivery] = listed.json()["deliveries"]
    assert delivery["event_id"] == "evt-api-3"

    retried = client.post(f"/api/webhooks/deliveries/{delivery['id']}/retry", headers=ADMIN_HEADERS)
    assert retried.status_code == 200
    assert retried.json()["sync_run_id"] == str(enqueue.runs[0].id)

    again = client.post(f"/api/webhooks/deliveries/{delivery['id']}/retry", headers=ADMIN_HEADERS)
    assert again.status_code == 409

    missing = client.post(
        "/api/webhooks/deliveries/00000000-0000-0000-0000-000000000000/retry", headers=ADMIN_HEADERS
    )
    assert missing.status_code == 404


def test_last_update(client, session):
    response = client.get("/api/sync/orders/last-update")
    assert response.status_code == 200
    assert response.json()["last_update"] is None

    SyncCursorRepository(session).record_success("orders", datetime(2025, 9, 1, 12, 0))
    body = client.get("/api/sync/orders/last-update").json()
    assert body["last_update"]["last_synced_at"] == "2025-09-01T12:00:00"

    overview = client.get("/api/sync/last-update").json()
    assert overview["last_update"] == "2025-09-01T12:00:00"
    assert overview["collections"]["products"] is None

    assert client.get("/api/sync/invoices/last-update").status_code == 404


def test_force_sync(client, session, nuvemshop):
    response = client.post("/api/sync/orders/force", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["details"]["records_upserted"] == 2
    run = session.get(SyncRun, UUID(body["run_id"]))
    assert run.triggered_by == "manual"
    assert run.status == SyncRunStatus.COMMITTED.value
    assert len(nuvemshop.calls) == 1


def test_force_sync_requires_admin(client):
    assert client.post("/api/sync/orders/force").status_code == 401


def test_force_sync_busy(client, session_factory, session):
    SyncLockManager(session_factory).acquire(resource_key_for("orders"))

    response = client.post("/api/sync/orders/force", headers=ADMIN_HEADERS)
    assert response.status_code == 409
    assert response.json()["error_code"] == "BUSY"

    runs = client.get("/api/sync/runs", params={"collection": "orders"}, headers=ADMIN_HEADERS).json()["runs"]
    assert runs[0]["status"] == SyncRunStatus.FAILED.value


def test_force_sync_busy_queued(client, session_factory, enqueue):
    SyncLockManager(session_factory).acquire(resource_key_for("orders"))

    response = client.post("/api/sync/orders/force", params={"queue": "true"}, headers=ADMIN_HEADERS)
    assert response.status_code == 202
    body = response.json()
    assert body["details"]["queued"] is True
    assert body["details"]["task_id"] == "task-1"
    assert body["run_id"] == str(enqueue.runs[0].id)


def test_lock_status_and_reset(client, session_factory):
    key = resource_key_for("orders")
    token = SyncLockManager(session_factory).acquire(key)

    status = client.get("/api/sync/orders/lock", headers=ADMIN_HEADERS).json()
    assert status["resource_key"] == key
    assert status["lock"]["owner_token"] == token

    reset = client.post(
        "/api/sync/orders/lock/reset",
        headers={**ADMIN_HEADERS, "X-Admin-Actor": "ops@example.com"},
    ).json()
    assert reset["success"] is True
    assert reset["details"]["removed"] is True
    assert reset["details"]["actor"] == "ops@example.com"

    assert client.get("/api/sync/orders/lock", headers=ADMIN_HEADERS).json()["lock"] is None
    assert client.post("/api/sync/orders/force", headers=ADMIN_HEADERS).status_code == 200


@pytest.fixture
def webhook_api(client):
    api = FakeWebhookApi()
    app.dependency_overrides[get_nuvemshop_client] = lambda: mock_nuvemshop_client(api)
    return api


def test_register_webhooks_endpoint(client, webhook_api):
    assert client.post("/api/webhooks/register").status_code == 401

    response = client.post("/api/webhooks/register", json={"events": ["order/paid"]}, headers=ADMIN_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["registered"] == 1
    assert body["items"][0]["url"] == "https://sync.example.com/api/webhooks/orders"

    listed = client.get("/api/webhooks/registrations", headers=ADMIN_HEADERS).json()
    assert [w["event"] for w in listed["webhooks"]] == ["order/paid"]


def test_register_webhooks_defaults_to_essential_events(client, webhook_api):
    body = client.post("/api/webhooks/register", headers=ADMIN_HEADERS).json()
    assert body["success"] is True
    assert body["registered"] == len(webhook_api.webhooks) == 10


def test_register_webhooks_rejects_unknown_event(client, webhook_api):
    response = client.post("/api/webhooks/register", json={"events": ["category/created"]}, headers=ADMIN_HEADERS)
    assert response.status_code == 400
    assert response.json()["error_code"] == "MALFORMED_PAYLOAD"
    assert webhook_api.requests == []


def test_register_webhooks_upstream_failure(client):
    app.dependency_overrides[get_nuvemshop_client] = lambda: mock_nuvemshop_client(
        lambda request: httpx.Response(503, text="unavailable")
    )
    response = client.post("/api/webhooks/register", headers=ADMIN_HEADERS)
    assert response.status_code == 502
    assert response.json()["error_code"] == "UPSTREAM_UNAVAILABLE"
