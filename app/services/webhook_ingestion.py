"""
 * @file: webhook_ingestion.py
 * @description: Приём вебхуков NuvemShop: подпись, разбор, дедупликация, передача задачи синхронизации
 * @dependencies: webhook_security, ProcessedEventRepository, WebhookDeliveryRepository, SyncExecutor, sync_tasks
 * @created: 2025-09-02
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional
from uuid import UUID

from sqlmodel import Session

from app.core.config import settings
from app.core.exceptions import (
    DeliveryNotRetryable,
    HandoffFailed,
    MalformedPayload,
    RateLimited,
    StorageFailure,
    Unauthorized,
)
from app.core.sync_config import sync_config
from app.database import SessionLocal
from app.models.processed_event import DeliveryStatus, WebhookDelivery
from app.models.sync_run import SyncRun, SyncTrigger
from app.repositories.processed_event_repository import IdempotencyResult, ProcessedEventRepository
from app.repositories.webhook_delivery_repository import WebhookDeliveryRepository
from app.schemas.webhooks import WebhookAcceptResponse, WebhookEnvelope
from app.services.nuvemshop.sync_tasks import enqueue_sync_run
from app.services.nuvemshop.webhook_security import (
    DELETION_EVENTS,
    WebhookRateLimiter,
    parse_envelope,
    signature_from_headers,
    verify_signature,
)
from app.services.sync.executor import SyncExecutor
from app.utils.date_utils import utcnow
from app.utils.logging_config import log_business_event

logger = logging.getLogger("nuvemshop.webhooks")


def _decode_payload(raw_body: bytes) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


class WebhookIngestionPipeline:
    """
    Обработка входящего вебхука:
    подпись -> разбор -> лимит частоты -> журнал -> идемпотентность -> запуск синхронизации.

    Ответ 200 отдаётся только после того, как задача передана в очередь.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        executor: Optional[SyncExecutor] = None,
        enqueue: Callable[[SyncRun], str] = enqueue_sync_run,
        rate_limiter: Optional[WebhookRateLimiter] = None,
        webhook_secret: Optional[str] = None,
        expected_store_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.executor = executor or SyncExecutor(session_factory)
        self.enqueue = enqueue
        self.rate_limiter = rate_limiter or WebhookRateLimiter(sync_config.webhook_rate_limit_per_minute)
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.NUVEMSHOP_WEBHOOK_SECRET
        self.expected_store_id = expected_store_id if expected_store_id is not None else settings.NUVEMSHOP_STORE_ID

    def handle(
        self,
        entity_collection: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        client_ip: Optional[str] = None,
    ) -> WebhookAcceptResponse:
        """
        Принимает вебхук.

        Raises:
            Unauthorized: подпись не прошла проверку (401)
            MalformedPayload: тело не соответствует схеме (400)
            RateLimited: превышен лимит частоты (429)
            HandoffFailed: задача не передана, отправитель должен повторить (500)
        """
        delivery = WebhookDelivery(
            entity_collection=entity_collection,
            client_ip=client_ip,
            status=DeliveryStatus.RECEIVED.value,
            payload=_decode_payload(raw_body),
        )

        try:
            verify_signature(raw_body, signature_from_headers(headers), self.webhook_secret)
            delivery.signature_verified = True
            envelope = parse_envelope(raw_body, entity_collection, headers, self.expected_store_id)
        except (Unauthorized, MalformedPayload) as e:
            self._reject(delivery, e.message)
            logger.warning(f"Вебхук {entity_collection} от {client_ip} отклонён: {e.message}")
            raise

        delivery.event_id = envelope.event_id
        delivery.event_type = envelope.event_type
        delivery.entity_id = envelope.entity_id
        delivery.store_id = envelope.store_id

        rate_key = f"{envelope.store_id}:{client_ip or 'unknown'}"
        if not self.rate_limiter.allow(rate_key):
            self._reject(delivery, "rate limited")
            raise RateLimited(rate_key, self.rate_limiter.requests_per_minute)

        with self.session_factory() as session:
            deliveries = WebhookDeliveryRepository(session)
            events = ProcessedEventRepository(session, clock=self.clock)
            delivery = deliveries.add(delivery)

            reclaim_before = None
            if envelope.event_id_derived:
                reclaim_before = self.clock() - sync_config.derived_event_dedup_window
            outcome = events.record_if_new(
                envelope.event_id,
                envelope.event_type,
                envelope.entity_collection,
                envelope.entity_id,
                reclaim_received_before=reclaim_before,
            )
            if outcome == IdempotencyResult.DUPLICATE:
                events.note_duplicate(envelope.event_id)
                deliveries.update_status(delivery, DeliveryStatus.DUPLICATE)
                logger.info(f"Вебхук {envelope.event_type} {envelope.event_id} уже принят ранее")
                return WebhookAcceptResponse(
                    duplicate=True,
                    event_id=envelope.event_id,
                    message="Event already processed",
                )

            run = self._hand_off(envelope, events, deliveries, delivery)

        log_business_event(
            "webhook_accepted",
            f"Вебхук {envelope.event_type} принят",
            event_id=envelope.event_id,
            entity_id=envelope.entity_id,
            run_id=run.id,
        )
        return WebhookAcceptResponse(
            event_id=envelope.event_id,
            sync_run_id=run.id,
            message="Sync task queued",
        )

    def retry_delivery(self, delivery_id: UUID) -> Optional[WebhookAcceptResponse]:
        """
        Повторно ставит в очередь неудачную доставку.

        Returns:
            WebhookAcceptResponse или None, если доставка не найдена

        Raises:
            DeliveryNotRetryable: доставка не в статусе failed или исчерпан лимит повторов
            HandoffFailed: задача не передана
        """
        with self.session_factory() as session:
            deliveries = WebhookDeliveryRepository(session)
            events = ProcessedEventRepository(session, clock=self.clock)
            delivery = deliveries.get(delivery_id)
            if delivery is None:
                return None
            if delivery.status != DeliveryStatus.FAILED.value:
                raise DeliveryNotRetryable(str(delivery_id), f"status is {delivery.status}")
            if delivery.retry_count >= sync_config.delivery_max_manual_retries:
                raise DeliveryNotRetryable(str(delivery_id), "max retries reached")
            if not delivery.event_id or not delivery.event_type:
                raise DeliveryNotRetryable(str(delivery_id), "delivery was never parsed")

            delivery.retry_count += 1
            delivery = deliveries.add(delivery)

            envelope = WebhookEnvelope(
                event_id=delivery.event_id,
                event_type=delivery.event_type,
                entity_collection=delivery.entity_collection,
                entity_id=delivery.entity_id or "",
                store_id=delivery.store_id or "",
                deleted_entity_id=delivery.entity_id if delivery.event_type in DELETION_EVENTS else None,
            )
            outcome = events.record_if_new(
                envelope.event_id,
                envelope.event_type,
                envelope.entity_collection,
                envelope.entity_id,
            )
            if outcome == IdempotencyResult.DUPLICATE:
                deliveries.update_status(delivery, DeliveryStatus.DUPLICATE)
                return WebhookAcceptResponse(
                    duplicate=True,
                    event_id=envelope.event_id,
                    message="Event was accepted by a later delivery",
                )

            run = self._hand_off(envelope, events, deliveries, delivery)

        logger.info(f"Доставка {delivery_id} повторно поставлена в очередь (повтор {delivery.retry_count})")
        return WebhookAcceptResponse(
            event_id=envelope.event_id,
            sync_run_id=run.id,
            message="Sync task re-queued",
        )

    def _hand_off(
        self,
        envelope: WebhookEnvelope,
        events: ProcessedEventRepository,
        deliveries: WebhookDeliveryRepository,
        delivery: WebhookDelivery,
    ) -> SyncRun:
        run = None
        try:
            run = self.executor.create_run(
                envelope.entity_collection,
                triggered_by=SyncTrigger.WEBHOOK,
                event_id=envelope.event_id,
                event_type=envelope.event_type,
                deleted_entity_id=envelope.deleted_entity_id,
            )
            self.enqueue(run)
        except Exception as e:
            logger.error(f"Не удалось передать задачу для события {envelope.event_id}: {e}")
            events.mark_failed(envelope.event_id, str(e))
            if run is not None:
                self.executor.mark_failed(run.id, f"handoff failed: {e}")
            deliveries.update_status(
                delivery,
                DeliveryStatus.FAILED,
                error_message=str(e),
                sync_run_id=run.id if run is not None else None,
            )
            raise HandoffFailed(envelope.event_id, str(e)) from e

        deliveries.update_status(delivery, DeliveryStatus.QUEUED, sync_run_id=run.id)
        return run

    def _reject(self, delivery: WebhookDelivery, reason: str) -> None:
        delivery.status = DeliveryStatus.REJECTED.value
        delivery.error_message = reason[:1000]
        try:
            with self.session_factory() as session:
                WebhookDeliveryRepository(session).add(delivery)
        except StorageFailure as e:
            logger.error(f"Не удалось записать отклонённую доставку в журнал: {e.message}")
