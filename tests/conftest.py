"""
Общие фикстуры тестов синхронизации NuvemShop.
Окружение задаётся до импорта app: настройки и движок читаются при импорте.
"""
import hashlib
import hmac
import json
import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

_tmp_dir = tempfile.mkdtemp(prefix="nuvemshop-sync-tests-")
os.environ["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{_tmp_dir}/app.db"
os.environ["LOG_PATH"] = os.path.join(_tmp_dir, "logs")
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["NUVEMSHOP_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["NUVEMSHOP_STORE_ID"] = "12345"
os.environ["NUVEMSHOP_ACCESS_TOKEN"] = "test-access-token"
os.environ["SYNC_WEBHOOK_RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["WEBHOOK_PUBLIC_BASE_URL"] = "https://sync.example.com"

import httpx  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

import app.models  # noqa: F401,E402
from app.core.exceptions import UpstreamUnavailable  # noqa: E402
from app.database import build_engine  # noqa: E402
from app.services.nuvemshop.client import NuvemshopClient  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"
STORE_ID = "12345"
ADMIN_HEADERS = {"Authorization": "Bearer test-admin-key"}


class FakeClock:
    """Управляемые часы для аренды блокировок и водяных знаков."""

    def __init__(self, now: datetime = datetime(2025, 9, 1, 12, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeNuvemshopClient:
    """
    Подменяет NuvemshopClient в SyncExecutor.
    fail_after_pages: после скольких страниц выбросить UpstreamUnavailable.
    """

    def __init__(self, pages=None, fail_after_pages=None):
        self.pages = pages or []
        self.fail_after_pages = fail_after_pages
        self.calls = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def iter_pages(self, collection, updated_at_min=None, per_page=None, max_pages=None):
        self.calls.append({"collection": collection, "updated_at_min": updated_at_min})
        for index, page in enumerate(self.pages):
            if self.fail_after_pages is not None and index >= self.fail_after_pages:
                raise UpstreamUnavailable(collection, 503, "Service Unavailable")
            yield page
        if self.fail_after_pages is not None and self.fail_after_pages >= len(self.pages):
            raise UpstreamUnavailable(collection, 503, "Service Unavailable")


class FakeWebhookApi:
    """
    Обработчик httpx.MockTransport для /{store_id}/webhooks.
    fail_events: события, регистрация которых отвечает 422.
    """

    def __init__(self, webhooks=None, fail_events=()):
        self.webhooks = {str(w["id"]): dict(w) for w in (webhooks or [])}
        self.fail_events = set(fail_events)
        self.requests = []
        self.next_id = 100

    def __call__(self, request):
        self.requests.append((request.method, request.url.path))
        parts = request.url.path.rstrip("/").split("/")
        webhook_id = parts[-1] if parts[-1] != "webhooks" else None
        if request.method == "GET":
            return httpx.Response(200, json=list(self.webhooks.values()))
        if request.method == "POST":
            body = json.loads(request.content)
            if body["event"] in self.fail_events:
                return httpx.Response(422, json={"code": 422, "message": "Unprocessable Entity"})
            self.next_id += 1
            webhook = {"id": self.next_id, "created_at": "2025-09-01T12:00:00+0000", **body}
            self.webhooks[str(self.next_id)] = webhook
            return httpx.Response(201, json=webhook)
        if webhook_id not in self.webhooks:
            return httpx.Response(404, json={"code": 404, "message": "Not Found"})
        if request.method == "PUT":
            self.webhooks[webhook_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.webhooks[webhook_id])
        if request.method == "DELETE":
            del self.webhooks[webhook_id]
            return httpx.Response(200, json={})
        return httpx.Response(405)

    def calls(self, method):
        return [path for m, path in self.requests if m == method]


def mock_nuvemshop_client(handler, **kwargs):
    """NuvemshopClient поверх httpx.MockTransport без задержек между повторами."""
    params = {"base_url": "https://api.test/v1", "store_id": STORE_ID, "access_token": "tok", "max_retries": 2}
    params.update(kwargs)
    return NuvemshopClient(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _: None,
        **params,
    )


def order_record(order_id, updated_at="2025-09-01T10:00:00+0000", **extra):
    record = {
        "id": order_id,
        "number": 1000 + int(order_id),
        "contact_name": f"Cliente {order_id}",
        "status": "open",
        "payment_status": "paid",
        "shipping_status": "unpacked",
        "subtotal": "100.00",
        "total": "110.50",
        "updated_at": updated_at,
        "created_at": "2025-09-01T09:00:00+0000",
    }
    record.update(extra)
    return record


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def webhook_request(event: str, entity_id, store_id=STORE_ID, event_id=None, secret=WEBHOOK_SECRET):
    """Тело и заголовки подписанного вебхука."""
    body = json.dumps({"store_id": store_id, "event": event, "id": entity_id}).encode("utf-8")
    headers = {"x-linkedstore-hmac-sha256": sign(body, secret), "content-type": "application/json"}
    if event_id:
        headers["x-event-id"] = event_id
    return body, headers


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'sync.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()
