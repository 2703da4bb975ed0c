"""
API endpoints для управления синхронизацией коллекций NuvemShop.
"""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app.api.deps import (
    error_response,
    get_enqueue,
    get_executor,
    get_lock_manager,
    get_session,
    require_admin,
)
from app.core.exceptions import Busy, SyncBaseException, UnknownCollection
from app.core.sync_config import sync_config
from app.models.sync_run import SyncRun, SyncRunStatus, SyncTrigger
from app.repositories.sync_cursor_repository import SyncCursorRepository
from app.repositories.sync_run_repository import SyncRunRepository
from app.schemas.sync import (
    LastUpdateOverview,
    LastUpdateResponse,
    LockStatusResponse,
    SyncCursorRead,
    SyncLockRead,
    SyncResult,
    SyncRunList,
    SyncRunRead,
)
from app.services.nuvemshop.reconciler import SUPPORTED_COLLECTIONS
from app.services.sync.executor import SyncExecutor
from app.services.sync.locks import SyncLockManager, resource_key_for

logger = logging.getLogger("nuvemshop.sync")

router = APIRouter()


@router.get("/last-update", response_model=LastUpdateOverview)
def get_last_update_overview(session: Session = Depends(get_session)) -> LastUpdateOverview:
    """Последнее обновление по всем коллекциям."""
    cursors = {c.entity_collection: c for c in SyncCursorRepository(session).list_all()}
    collections = {
        name: SyncCursorRead.model_validate(cursors[name]) if name in cursors else None
        for name in SUPPORTED_COLLECTIONS
    }
    latest = max((c.last_synced_at for c in cursors.values()), default=None)
    return LastUpdateOverview(last_update=latest, collections=collections)


@router.get("/runs", response_model=SyncRunList)
def list_sync_runs(
    collection: Optional[str] = Query(None),
    run_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    session: Session = Depends(get_session),
    actor: str = Depends(require_admin),
) -> SyncRunList:
    """Последние запуски синхронизации."""
    runs = SyncRunRepository(session).list_recent(collection, run_status, limit)
    return SyncRunList(runs=[SyncRunRead.model_validate(r) for r in runs])


@router.get("/{collection}/last-update", response_model=LastUpdateResponse)
def get_collection_last_update(collection: str, session: Session = Depends(get_session)):
    """Отметка последней успешной синхронизации коллекции (null, если синхронизации не было)."""
    if collection not in SUPPORTED_COLLECTIONS:
        return error_response(UnknownCollection(collection))
    cursor = SyncCursorRepository(session).get_optional(collection)
    return LastUpdateResponse(
        collection=collection,
        last_update=SyncCursorRead.model_validate(cursor) if cursor else None,
    )


@router.get("/{collection}/lock", response_model=LockStatusResponse)
def get_collection_lock(
    collection: str,
    locks: SyncLockManager = Depends(get_lock_manager),
    actor: str = Depends(require_admin),
):
    """Текущая неистёкшая блокировка коллекции."""
    if collection not in SUPPORTED_COLLECTIONS:
        return error_response(UnknownCollection(collection))
    resource_key = resource_key_for(collection)
    lock = locks.get(resource_key)
    return LockStatusResponse(
        resource_key=resource_key,
        lock=SyncLockRead.model_validate(lock) if lock else None,
    )


@router.post("/{collection}/lock/reset", response_model=SyncResult)
def reset_collection_lock(
    collection: str,
    locks: SyncLockManager = Depends(get_lock_manager),
    actor: str = Depends(require_admin),
):
    """
    Принудительный сброс блокировки коллекции.
    Используется, когда запуск завис и ждать истечения аренды нельзя.
    """
    if collection not in SUPPORTED_COLLECTIONS:
        return error_response(UnknownCollection(collection))
    resource_key = resource_key_for(collection)
    try:
        removed = locks.force_reset(resource_key, actor)
    except SyncBaseException as e:
        return error_response(e)
    return SyncResult(
        success=True,
        details={
            "resource_key": resource_key,
            "removed": removed,
            "actor": actor,
            "message": "Lock reset" if removed else "No lock was held",
        },
    )


@router.post("/{collection}/force", response_model=SyncResult)
def force_collection_sync(
    collection: str,
    queue: bool = Query(False, description="Поставить в очередь, если коллекция уже синхронизируется"),
    executor: SyncExecutor = Depends(get_executor),
    enqueue: Callable[[SyncRun], str] = Depends(get_enqueue),
    actor: str = Depends(require_admin),
):
    """
    Ручная синхронизация коллекции.

    Выполняется сразу под той же блокировкой, что и запуски из вебхуков.
    409: коллекция уже синхронизируется; при queue=true запуск ставится в очередь (202).
    """
    if collection not in SUPPORTED_COLLECTIONS:
        return error_response(UnknownCollection(collection))

    logger.info(f"[NuvemshopSync] Ручная синхронизация {collection} запрошена {actor}")
    try:
        run = executor.create_run(collection, triggered_by=SyncTrigger.MANUAL, supersede=False)
        result = executor.run(run.id)
    except Busy as e:
        if queue or sync_config.force_sync_queue_on_busy:
            return _queue_forced_run(executor, enqueue, run, e)
        executor.mark_failed(run.id, e.message)
        return error_response(e)
    except SyncBaseException as e:
        return error_response(e)

    return SyncResult(success=result.status == SyncRunStatus.COMMITTED.value, run_id=result.id, details=result.stats())


def _queue_forced_run(executor: SyncExecutor, enqueue: Callable[[SyncRun], str], run: SyncRun, busy: Busy):
    try:
        task_id = enqueue(run)
    except Exception as e:
        logger.error(f"[NuvemshopSync] Не удалось поставить запуск {run.id} в очередь: {e}")
        executor.mark_failed(run.id, f"handoff failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Failed to queue sync run", "details": {"run_id": str(run.id)}},
        )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "success": True,
            "run_id": str(run.id),
            "error": None,
            "details": {
                "queued": True,
                "task_id": task_id,
                "reason": busy.message,
            },
        },
    )
