import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from app.api.deps import error_response, get_nuvemshop_client, get_pipeline, get_session, require_admin
from app.core.config import settings
from app.core.exceptions import SyncBaseException, UnknownCollection
from app.repositories.webhook_delivery_repository import WebhookDeliveryRepository
from app.schemas.webhooks import (
    RemoteWebhookList,
    WebhookAcceptResponse,
    WebhookDeliveryList,
    WebhookDeliveryRead,
    WebhookHealth,
    WebhookRegisterRequest,
    WebhookRegistrationResult,
)
from app.services.nuvemshop.client import NuvemshopClient
from app.services.nuvemshop.reconciler import SUPPORTED_COLLECTIONS
from app.services.nuvemshop.webhook_registration import sync_webhook_registrations
from app.services.webhook_ingestion import WebhookIngestionPipeline
from app.utils.date_utils import utcnow

logger = logging.getLogger("nuvemshop.webhooks")

router = APIRouter()


@router.get("/health", response_model=WebhookHealth)
def webhook_health_check(session: Session = Depends(get_session)) -> WebhookHealth:
    """
    Проверка здоровья вебхук-эндпоинта.

    Returns:
        WebhookHealth: Статус и количество доставок за последний час
    """
    since = utcnow() - timedelta(hours=1)
    recent = WebhookDeliveryRepository(session).count(since=since)
    return WebhookHealth(
        status="healthy",
        deliveries_last_hour=recent,
        details={"collections": list(SUPPORTED_COLLECTIONS), "checked_at": utcnow().isoformat()},
    )


@router.get("/deliveries", response_model=WebhookDeliveryList)
def list_webhook_deliveries(
    collection: Optional[str] = Query(None, description="orders, products, coupons, customers"),
    status: Optional[str] = Query(None, description="received, rejected, duplicate, queued, failed"),
    since: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    actor: str = Depends(require_admin),
) -> WebhookDeliveryList:
    """Журнал доставок вебхуков, новые сверху."""
    repo = WebhookDeliveryRepository(session)
    deliveries = repo.list(collection, status, since, limit, offset)
    return WebhookDeliveryList(
        total=repo.count(collection, status, since),
        deliveries=[WebhookDeliveryRead.model_validate(d) for d in deliveries],
    )


@router.post("/deliveries/{delivery_id}/retry", response_model=WebhookAcceptResponse)
def retry_webhook_delivery(
    delivery_id: UUID,
    pipeline: WebhookIngestionPipeline = Depends(get_pipeline),
    actor: str = Depends(require_admin),
):
    """Повторная постановка в очередь неудачной доставки."""
    logger.info(f"Повтор доставки {delivery_id} по запросу {actor}")
    try:
        result = pipeline.retry_delivery(delivery_id)
    except SyncBaseException as e:
        logger.error(f"Не удалось повторить доставку {delivery_id}: {e.message}")
        return error_response(e)

    if result is None:
        raise HTTPException(status_code=404, detail=f"Delivery {delivery_id} not found")
    return result


@router.get("/registrations", response_model=RemoteWebhookList)
def list_webhook_registrations(
    client: NuvemshopClient = Depends(get_nuvemshop_client),
    actor: str = Depends(require_admin),
):
    """Вебхуки, зарегистрированные в магазине NuvemShop."""
    try:
        return RemoteWebhookList(webhooks=client.list_webhooks())
    except SyncBaseException as e:
        return error_response(e)


@router.post("/register", response_model=WebhookRegistrationResult)
def register_webhooks(
    body: Optional[WebhookRegisterRequest] = None,
    client: NuvemshopClient = Depends(get_nuvemshop_client),
    actor: str = Depends(require_admin),
):
    """
    Регистрирует вебхуки NuvemShop на эндпоинты приёма этого сервиса.

    По умолчанию регистрирует события заказов, товаров и покупателей
    на адрес WEBHOOK_PUBLIC_BASE_URL.
    """
    body = body or WebhookRegisterRequest()
    base_url = body.base_url or settings.WEBHOOK_PUBLIC_BASE_URL
    if not base_url:
        raise HTTPException(status_code=400, detail="WEBHOOK_PUBLIC_BASE_URL is not configured")

    logger.info(f"Регистрация вебхуков на {base_url} по запросу {actor}")
    try:
        return sync_webhook_registrations(client, base_url, body.events, body.prune)
    except SyncBaseException as e:
        logger.error(f"Регистрация вебхуков не выполнена: {e.message}")
        return error_response(e)


@router.post("/{collection}", response_model=WebhookAcceptResponse)
async def receive_nuvemshop_webhook(
    collection: str,
    request: Request,
    pipeline: WebhookIngestionPipeline = Depends(get_pipeline),
):
    """
    Приём вебхука NuvemShop для коллекции.

    200: событие принято или уже было принято ранее (duplicate=true),
    401: подпись не прошла проверку, 400: некорректное тело,
    429: превышен лимит частоты, 500: задача не передана (отправитель повторит доставку).
    """
    client_ip = request.client.host if request.client else "unknown"
    if collection not in SUPPORTED_COLLECTIONS:
        return error_response(UnknownCollection(collection))

    raw_body = await request.body()
    logger.info(f"Получен вебхук {collection} от {client_ip}, {len(raw_body)} байт")

    try:
        return await run_in_threadpool(
            pipeline.handle, collection, raw_body, dict(request.headers), client_ip
        )
    except SyncBaseException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Непредвиденная ошибка обработки вебхука {collection}: {str(e)}")
        raise HTTPException(
            status_code=500,
            detail=f"Unexpected error processing webhook: {str(e)}"
        )
