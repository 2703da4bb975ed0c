"""
Celery задачи синхронизации коллекций NuvemShop.
Включают выполнение запуска с отложенными повторами, очистку записей идемпотентности
и уборку истёкших блокировок.
"""

import logging
from typing import Any, Dict
from uuid import UUID

from app.celery_shared import celery
from app.core.exceptions import Busy, LeaseLost, StorageFailure, UpstreamUnavailable
from app.core.sync_config import sync_config
from app.database import SessionLocal
from app.models.sync_run import SyncRun, SyncTrigger
from app.repositories.processed_event_repository import ProcessedEventRepository
from app.services.alerts import alert_service
from app.services.sync.executor import SyncExecutor
from app.services.sync.locks import SyncLockManager
from app.utils.logging_config import log_error_with_context

logger = logging.getLogger("nuvemshop.sync")


def enqueue_sync_run(run: SyncRun, countdown: int = 0) -> str:
    """
    Передаёт запуск воркеру.

    Returns:
        str: ID задачи Celery
    """
    result = run_collection_sync.apply_async(args=[str(run.id)], countdown=countdown)
    logger.info(f"[NuvemshopSync] Запуск {run.id} ({run.entity_collection}) поставлен в очередь, задача {result.id}")
    return result.id


def _exhausted(executor: SyncExecutor, run_id: UUID, reason: str) -> Dict[str, Any]:
    run = executor.mark_failed(run_id, reason)
    stats = run.stats() if run else {"run_id": str(run_id)}
    alert_service.sync_failed(stats, reason)
    log_error_with_context(RuntimeError(reason), "Исчерпаны попытки синхронизации", run_id=run_id)
    return {"status": "failed", **stats}


@celery.task(
    bind=True,
    name="app.services.nuvemshop.sync_tasks.run_collection_sync",
    max_retries=sync_config.retry_max_attempts,
)
def run_collection_sync(self, run_id: str):
    """
    Выполняет запуск синхронизации.

    Busy: запуск остаётся pending и повторяется с экспоненциальной задержкой.
    UpstreamUnavailable: запуск failed, создаётся новый запуск (triggered_by=retry) с той же задержкой.
    LeaseLost: так же, как UpstreamUnavailable; новый запуск дождётся освобождения блокировки.
    StorageFailure: запуск failed без повторов, отправляется оповещение.

    Args:
        run_id: ID запуска SyncRun

    Returns:
        Dict: Статистика запуска
    """
    executor = SyncExecutor()
    run_uuid = UUID(run_id)
    attempt = self.request.retries + 1
    exhausted = self.request.retries >= self.max_retries

    try:
        run = executor.run(run_uuid)
    except Busy as e:
        if exhausted:
            return _exhausted(executor, run_uuid, e.message)
        delay = sync_config.retry_delay(attempt)
        executor.defer(run_uuid, delay, e.message)
        logger.info(f"[NuvemshopSync] {e.resource_key} занят, повтор запуска {run_id} через {delay}с")
        raise self.retry(exc=e, countdown=delay)
    except (UpstreamUnavailable, LeaseLost) as e:
        failed = executor.get_run(run_uuid)
        if exhausted:
            return _exhausted(executor, run_uuid, e.message)
        delay = sync_config.retry_delay(attempt)
        retry_run = executor.create_run(
            failed.entity_collection,
            triggered_by=SyncTrigger.RETRY,
            event_id=failed.event_id,
            event_type=failed.event_type,
            deleted_entity_id=failed.deleted_entity_id,
            attempts=failed.attempts,
            supersede=False,
        )
        executor.defer(retry_run.id, delay, e.message)
        logger.warning(
            f"[NuvemshopSync] {failed.entity_collection}: {e.error_code}, "
            f"повтор запуском {retry_run.id} через {delay}с"
        )
        raise self.retry(exc=e, countdown=delay, args=[str(retry_run.id)])
    except StorageFailure as e:
        failed = executor.get_run(run_uuid)
        stats = failed.stats() if failed else {"run_id": run_id}
        alert_service.sync_failed(stats, e.message)
        log_error_with_context(e, "Ошибка хранилища при синхронизации", run_id=run_id)
        raise

    if run is None:
        return {"status": "not_found", "run_id": run_id, "task_id": self.request.id}
    return {"status": run.status, **run.stats(), "task_id": self.request.id}


@celery.task(
    bind=True,
    name="app.services.nuvemshop.sync_tasks.purge_processed_events",
    autoretry_for=(StorageFailure,),
    retry_kwargs={'max_retries': 3, 'countdown': 60}
)
def purge_processed_events(self):
    """Удаляет записи идемпотентности старше горизонта хранения."""
    horizon = sync_config.idempotency_horizon
    with SessionLocal() as session:
        deleted = ProcessedEventRepository(session).purge_older_than(horizon)
    return {
        "status": "success",
        "deleted": deleted,
        "horizon_hours": horizon.total_seconds() / 3600,
        "task_id": self.request.id
    }


@celery.task(
    bind=True,
    name="app.services.nuvemshop.sync_tasks.sweep_expired_locks",
    autoretry_for=(StorageFailure,),
    retry_kwargs={'max_retries': 3, 'countdown': 60}
)
def sweep_expired_locks(self):
    """Удаляет строки блокировок с истёкшей арендой."""
    removed = SyncLockManager().sweep_expired()
    return {"status": "success", "removed": removed, "task_id": self.request.id}
