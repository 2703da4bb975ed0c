import pytest

from app.core.exceptions import MalformedPayload
from app.services.nuvemshop.webhook_registration import (
    ESSENTIAL_WEBHOOK_EVENTS,
    callback_url,
    sync_webhook_registrations,
)

from conftest import FakeWebhookApi, mock_nuvemshop_client

BASE_URL = "https://sync.example.com/"


def test_callback_url_points_at_collection_endpoint():
    assert callback_url(BASE_URL, "order/paid") == "https://sync.example.com/api/webhooks/orders"
    assert callback_url(BASE_URL, "customer/deleted") == "https://sync.example.com/api/webhooks/customers"
    with pytest.raises(MalformedPayload):
        callback_url(BASE_URL, "category/created")


def test_registers_essential_events_on_empty_store():
    api = FakeWebhookApi()
    result = sync_webhook_registrations(mock_nuvemshop_client(api), BASE_URL)

    assert result.success is True
    assert result.registered == len(ESSENTIAL_WEBHOOK_EVENTS)
    assert sorted(w["event"] for w in api.webhooks.values()) == sorted(ESSENTIAL_WEBHOOK_EVENTS)
    assert all("coupon" not in w["event"] for w in api.webhooks.values())


def test_second_pass_changes_nothing():
    api = FakeWebhookApi()
    client = mock_nuvemshop_client(api)
    sync_webhook_registrations(client, BASE_URL)

    result = sync_webhook_registrations(client, BASE_URL)
    assert result.unchanged == len(ESSENTIAL_WEBHOOK_EVENTS)
    assert result.registered == 0
    assert len(api.calls("POST")) == len(ESSENTIAL_WEBHOOK_EVENTS)


def test_stale_url_is_updated_in_place():
    api = FakeWebhookApi(webhooks=[{"id": 5, "event": "order/paid", "url": "https://old.example.com/hook"}])
    result = sync_webhook_registrations(mock_nuvemshop_client(api), BASE_URL, events=["order/paid"])

    assert result.updated == 1
    assert result.items[0].webhook_id == "5"
    assert api.webhooks["5"]["url"] == "https://sync.example.com/api/webhooks/orders"
    assert api.calls("POST") == []


def test_one_failed_event_does_not_stop_others():
    api = FakeWebhookApi(fail_events={"order/paid"})
    result = sync_webhook_registrations(
        mock_nuvemshop_client(api), BASE_URL, events=["order/paid", "product/updated"]
    )

    assert result.success is False
    assert result.errors == 1
    assert result.registered == 1
    [failed] = [i for i in result.items if i.action == "error"]
    assert failed.event == "order/paid"


def test_prune_removes_only_own_unwanted_hooks():
    api = FakeWebhookApi(webhooks=[
        {"id": 1, "event": "product/created", "url": "https://sync.example.com/api/webhooks/products"},
        {"id": 2, "event": "category/created", "url": "https://other-app.example.com/hooks"},
        {"id": 3, "event": "order/paid", "url": "https://sync.example.com/api/webhooks/orders"},
    ])
    result = sync_webhook_registrations(mock_nuvemshop_client(api), BASE_URL, events=["order/paid"], prune=True)

    assert result.unchanged == 1
    assert result.deleted == 1
    assert sorted(api.webhooks) == ["2", "3"]


def test_unknown_event_is_rejected_before_any_request():
    api = FakeWebhookApi()
    with pytest.raises(MalformedPayload):
        sync_webhook_registrations(mock_nuvemshop_client(api), BASE_URL, events=["invoice/created"])
    assert api.requests == []
