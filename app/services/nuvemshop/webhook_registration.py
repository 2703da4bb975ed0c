"""
 * @file: webhook_registration.py
 * @description: Регистрация вебхуков NuvemShop, указывающих на эндпоинты приёма сервиса
 * @dependencies: NuvemshopClient, settings
 * @created: 2025-09-04
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from app.core.config import settings
from app.core.exceptions import MalformedPayload, UpstreamUnavailable
from app.schemas.webhooks import WebhookRegistrationItem, WebhookRegistrationResult
from app.services.nuvemshop.client import NuvemshopClient
from app.services.nuvemshop.webhook_security import EVENT_RESOURCE_COLLECTIONS

logger = logging.getLogger("nuvemshop.webhooks")

# У купонов нет событий в API NuvemShop, они приходят вместе с заказами
ESSENTIAL_WEBHOOK_EVENTS = (
    "order/created",
    "order/updated",
    "order/paid",
    "order/cancelled",
    "product/created",
    "product/updated",
    "product/deleted",
    "customer/created",
    "customer/updated",
    "customer/deleted",
)


def callback_url(base_url: str, event: str) -> str:
    """URL эндпоинта приёма для события, например https://host/api/webhooks/orders."""
    resource = event.split("/", 1)[0]
    collection = EVENT_RESOURCE_COLLECTIONS.get(resource)
    if "/" not in event or collection is None:
        raise MalformedPayload(f"unsupported webhook event: {event}", field_name="events")
    return f"{base_url.rstrip('/')}{settings.API_V1_STR}/webhooks/{collection}"


def sync_webhook_registrations(
    client: NuvemshopClient,
    base_url: str,
    events: Optional[Iterable[str]] = None,
    prune: bool = False,
) -> WebhookRegistrationResult:
    """
    Приводит вебхуки магазина к ожидаемому набору.

    Для каждого события: вебхук с нужным URL оставляется, с чужим URL обновляется,
    отсутствующий регистрируется. Ошибка по одному событию не прерывает остальные.
    С prune=True удаляются вебхуки на адреса сервиса для событий вне набора.

    Raises:
        MalformedPayload: неизвестное событие в events
        UpstreamUnavailable: не удалось получить список вебхуков
    """
    wanted = {event: callback_url(base_url, event) for event in (events or ESSENTIAL_WEBHOOK_EVENTS)}
    remote = client.list_webhooks()
    by_event: Dict[str, List[Dict[str, Any]]] = {}
    for webhook in remote:
        by_event.setdefault(webhook.get("event"), []).append(webhook)

    items: List[WebhookRegistrationItem] = []
    for event, url in wanted.items():
        existing = by_event.get(event, [])
        matching = next((w for w in existing if w.get("url") == url), None)
        try:
            if matching is not None:
                items.append(WebhookRegistrationItem(
                    event=event, url=url, webhook_id=str(matching.get("id")), action="unchanged",
                ))
            elif existing:
                webhook_id = str(existing[0].get("id"))
                client.update_webhook(webhook_id, url=url)
                items.append(WebhookRegistrationItem(event=event, url=url, webhook_id=webhook_id, action="updated"))
            else:
                created = client.register_webhook(event, url)
                items.append(WebhookRegistrationItem(
                    event=event, url=url, webhook_id=str(created.get("id")), action="registered",
                ))
        except UpstreamUnavailable as e:
            logger.error(f"Не удалось зарегистрировать вебхук {event}: {e.status_code} {e.response_text}")
            items.append(WebhookRegistrationItem(event=event, url=url, action="error", error=e.message))

    if prune:
        own_prefix = f"{base_url.rstrip('/')}{settings.API_V1_STR}/webhooks/"
        for webhook in remote:
            if webhook.get("event") in wanted or not str(webhook.get("url", "")).startswith(own_prefix):
                continue
            webhook_id = str(webhook.get("id"))
            try:
                client.delete_webhook(webhook_id)
                items.append(WebhookRegistrationItem(
                    event=webhook.get("event"), url=webhook.get("url"), webhook_id=webhook_id, action="deleted",
                ))
            except UpstreamUnavailable as e:
                logger.error(f"Не удалось удалить вебхук {webhook_id}: {e.status_code} {e.response_text}")
                items.append(WebhookRegistrationItem(
                    event=webhook.get("event"), url=webhook.get("url"), webhook_id=webhook_id,
                    action="error", error=e.message,
                ))

    result = WebhookRegistrationResult.from_items(items)
    logger.info(
        f"Регистрация вебхуков: новых {result.registered}, обновлено {result.updated}, "
        f"без изменений {result.unchanged}, удалено {result.deleted}, ошибок {result.errors}"
    )
    return result
