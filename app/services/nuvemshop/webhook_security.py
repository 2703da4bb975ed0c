"""
 * @file: webhook_security.py
 * @description: Проверка подписи, разбор и ограничение частоты вебхуков NuvemShop
 * @dependencies: hmac, hashlib, redis, WebhookEnvelope
 * @created: 2025-09-02
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Mapping, Optional

import redis

from app.core.config import settings
from app.core.exceptions import MalformedPayload, Unauthorized
from app.schemas.webhooks import WebhookEnvelope

logger = logging.getLogger("nuvemshop.webhooks")

SIGNATURE_HEADERS = ("x-linkedstore-hmac-sha256", "x-nuvemshop-hmac-sha256")
EVENT_ID_HEADER = "x-event-id"

# Ресурс события -> коллекция синхронизации
EVENT_RESOURCE_COLLECTIONS = {
    "order": "orders",
    "product": "products",
    "coupon": "coupons",
    "customer": "customers",
}

# События удаления: инкрементальная выборка по updated_at их не вернёт
DELETION_EVENTS = {"product/deleted", "coupon/deleted", "customer/deleted"}


def signature_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADERS:
        if lowered.get(name):
            return lowered[name]
    return None


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """
    Проверяет HMAC-SHA256 (hex) тела запроса.

    Raises:
        Unauthorized: секрет не настроен, подпись отсутствует или не совпадает
    """
    if not secret:
        raise Unauthorized("webhook secret is not configured")
    if not signature:
        raise Unauthorized("missing signature header")

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise Unauthorized("signature mismatch")


def derive_event_id(store_id: str, event_type: str, entity_id: str, raw_body: bytes) -> str:
    """
    Детерминированный ID доставки, если платформа его не передала.
    Тело NuvemShop содержит только store_id, event и id, поэтому ID совпадает
    и у повторной доставки, и у нового события того же ресурса.
    """
    digest = hashlib.sha256()
    digest.update(f"{store_id}|{event_type}|{entity_id}|".encode("utf-8"))
    digest.update(raw_body)
    return digest.hexdigest()


def parse_envelope(
    raw_body: bytes,
    entity_collection: str,
    headers: Optional[Mapping[str, str]] = None,
    expected_store_id: Optional[str] = None,
) -> WebhookEnvelope:
    """
    Разбирает тело вебхука.

    Args:
        raw_body: Тело запроса как пришло
        entity_collection: Коллекция из URL
        headers: Заголовки запроса (X-Event-Id)
        expected_store_id: ID магазина, если проверка магазина включена

    Raises:
        MalformedPayload: тело не соответствует схеме
        Unauthorized: вебхук пришёл от другого магазина
    """
    try:
        payload: Any = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPayload(f"invalid JSON: {e}")
    if not isinstance(payload, dict):
        raise MalformedPayload("payload must be a JSON object")

    event_type = payload.get("event")
    if not isinstance(event_type, str) or event_type.count("/") != 1:
        raise MalformedPayload("event must look like <resource>/<action>", field_name="event")
    resource, action = event_type.split("/")
    if not resource or not action:
        raise MalformedPayload("event must look like <resource>/<action>", field_name="event")

    collection = EVENT_RESOURCE_COLLECTIONS.get(resource)
    if collection is None:
        raise MalformedPayload(f"unsupported event resource: {resource}", field_name="event")
    if collection != entity_collection:
        raise MalformedPayload(
            f"event {event_type} does not belong to collection {entity_collection}", field_name="event"
        )

    entity_id = payload.get("id")
    if entity_id is None or entity_id == "" or isinstance(entity_id, (dict, list, bool)):
        raise MalformedPayload("id is required", field_name="id")
    store_id = payload.get("store_id")
    if store_id is None or store_id == "" or isinstance(store_id, (dict, list, bool)):
        raise MalformedPayload("store_id is required", field_name="store_id")
    entity_id, store_id = str(entity_id), str(store_id)

    if expected_store_id and store_id != str(expected_store_id):
        raise Unauthorized("unexpected store", store_id=store_id)

    lowered = {k.lower(): v for k, v in (headers or {}).items()}
    event_id = lowered.get(EVENT_ID_HEADER) or payload.get("event_id")
    if event_id is not None and not isinstance(event_id, (str, int)):
        raise MalformedPayload("event_id must be a string", field_name="event_id")
    event_id = str(event_id).strip() if event_id is not None else ""
    derived = not event_id
    if derived:
        event_id = derive_event_id(store_id, event_type, entity_id, raw_body)
    if len(event_id) > 255:
        raise MalformedPayload("event_id is too long", field_name="event_id")

    return WebhookEnvelope(
        event_id=event_id,
        event_type=event_type,
        entity_collection=collection,
        entity_id=entity_id,
        store_id=store_id,
        deleted_entity_id=entity_id if event_type in DELETION_EVENTS else None,
        event_id_derived=derived,
    )


class WebhookRateLimiter:
    """
    Ограничение частоты вебхуков: фиксированное окно в минуту на ключ store_id:client_ip.
    При недоступности Redis запросы пропускаются.
    """

    def __init__(self, requests_per_minute: int, redis_client: Optional[redis.Redis] = None):
        self.requests_per_minute = requests_per_minute
        self._redis = redis_client

    @property
    def redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.Redis.from_url(settings.REDIS_URL)
        return self._redis

    def allow(self, key: str) -> bool:
        if self.requests_per_minute <= 0:
            return True
        redis_key = f"nuvemshop:webhooks:rate:{key}"
        try:
            count = self.redis.incr(redis_key)
            if count == 1:
                self.redis.expire(redis_key, 60)
        except redis.RedisError as e:
            logger.warning(f"Rate limiter недоступен, запрос пропущен: {e}")
            return True
        return int(count) <= self.requests_per_minute
