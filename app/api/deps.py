import hmac
import logging
from typing import Callable, Generator, Optional

from fastapi import Depends, HTTPException, status, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app.core.config import settings
from app.core.exceptions import (
    Busy,
    DeliveryNotRetryable,
    HandoffFailed,
    LeaseLost,
    MalformedPayload,
    RateLimited,
    SyncBaseException,
    Unauthorized,
    UnknownCollection,
    UpstreamUnavailable,
)
from app.database import get_db, SessionLocal
from app.models.sync_run import SyncRun
from app.services.nuvemshop.client import NuvemshopClient
from app.services.nuvemshop.sync_tasks import enqueue_sync_run
from app.services.sync.executor import SyncExecutor
from app.services.sync.locks import SyncLockManager
from app.services.webhook_ingestion import WebhookIngestionPipeline

logger = logging.getLogger(__name__)

# Код ответа для исключений синхронизации
ERROR_STATUS_CODES = {
    Unauthorized: status.HTTP_401_UNAUTHORIZED,
    MalformedPayload: status.HTTP_400_BAD_REQUEST,
    UnknownCollection: status.HTTP_404_NOT_FOUND,
    RateLimited: status.HTTP_429_TOO_MANY_REQUESTS,
    Busy: status.HTTP_409_CONFLICT,
    DeliveryNotRetryable: status.HTTP_409_CONFLICT,
    LeaseLost: status.HTTP_409_CONFLICT,
    UpstreamUnavailable: status.HTTP_502_BAD_GATEWAY,
    HandoffFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(exc: SyncBaseException) -> JSONResponse:
    """JSON-ответ с полями success/error/details для исключения синхронизации."""
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": exc.message,
            "error_code": exc.error_code,
            "details": jsonable_details(exc),
        },
    )


def jsonable_details(exc: SyncBaseException) -> dict:
    return {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in exc.details.items()}


def get_session() -> Generator[Session, None, None]:
    yield from get_db()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_enqueue() -> Callable[[SyncRun], str]:
    return enqueue_sync_run


def get_lock_manager(
    session_factory: Callable[[], Session] = Depends(get_session_factory)
) -> SyncLockManager:
    return SyncLockManager(session_factory)


def get_executor(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    lock_manager: SyncLockManager = Depends(get_lock_manager),
) -> SyncExecutor:
    return SyncExecutor(session_factory, lock_manager=lock_manager)


def get_pipeline(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    executor: SyncExecutor = Depends(get_executor),
    enqueue: Callable[[SyncRun], str] = Depends(get_enqueue),
) -> WebhookIngestionPipeline:
    return WebhookIngestionPipeline(session_factory, executor=executor, enqueue=enqueue)


def get_nuvemshop_client() -> Generator[NuvemshopClient, None, None]:
    client = NuvemshopClient()
    try:
        yield client
    finally:
        client.close()


def get_token_from_header(request: Request) -> Optional[str]:
    """Extract token from Authorization header."""
    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """
    Проверка ключа администратора: Authorization: Bearer <ADMIN_API_KEY> или X-Admin-Key.

    Returns:
        str: Идентификатор администратора для журнала
    """
    token = get_token_from_header(request) or request.headers.get("X-Admin-Key")
    if not settings.ADMIN_API_KEY or not token or not hmac.compare_digest(token.encode(), settings.ADMIN_API_KEY.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    client_ip = request.client.host if request.client else "unknown"
    return request.headers.get("X-Admin-Actor") or f"admin-api@{client_ip}"
