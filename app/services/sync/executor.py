"""
 * @file: executor.py
 * @description: Выполнение запуска синхронизации коллекции NuvemShop под блокировкой
 * @dependencies: SyncLockManager, NuvemshopClient, CollectionReconciler, SyncCursorRepository, SyncRunRepository
 * @created: 2025-09-02
"""

import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from sqlmodel import Session

from app.core.exceptions import (
    NotOwner,
    StorageFailure,
    SyncBaseException,
)
from app.core.sync_config import sync_config
from app.database import SessionLocal
from app.models.sync_cursor import CursorStatus
from app.models.sync_run import SyncRun, SyncRunStatus, SyncTrigger
from app.repositories.sync_cursor_repository import SyncCursorRepository
from app.repositories.sync_run_repository import SyncRunRepository
from app.services.nuvemshop.client import NuvemshopClient
from app.services.nuvemshop.reconciler import CollectionReconciler, get_collection_mapping
from app.services.sync.locks import SyncLockManager, resource_key_for
from app.utils.date_utils import utcnow
from app.utils.logging_config import log_business_event

logger = logging.getLogger("nuvemshop.sync")


class SyncExecutor:
    """
    Запуск синхронизации: pending -> locked -> reconciling -> committed | failed.

    Busy пробрасывается вызывающему без изменения статуса запуска (запуск остаётся pending),
    UpstreamUnavailable и StorageFailure переводят запуск в failed и пробрасываются.
    Аренда продлевается перед записью каждой страницы; при её потере запуск прерывается.
    Курсор сдвигается только при успешном завершении.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        lock_manager: Optional[SyncLockManager] = None,
        client_factory: Callable[[], NuvemshopClient] = NuvemshopClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = lock_manager or SyncLockManager(session_factory)
        self.client_factory = client_factory
        self.clock = clock

    def create_run(
        self,
        entity_collection: str,
        triggered_by: SyncTrigger = SyncTrigger.WEBHOOK,
        event_id: Optional[str] = None,
        event_type: Optional[str] = None,
        deleted_entity_id: Optional[str] = None,
        attempts: int = 0,
        supersede: bool = True,
    ) -> SyncRun:
        """
        Создаёт запуск в pending. При supersede=True отменяет более старые
        ожидающие запуски той же коллекции.
        """
        get_collection_mapping(entity_collection)
        run = SyncRun(
            entity_collection=entity_collection,
            triggered_by=triggered_by.value,
            event_id=event_id,
            event_type=event_type,
            deleted_entity_id=deleted_entity_id,
            attempts=attempts,
        )
        with self.session_factory() as session:
            repo = SyncRunRepository(session)
            run = repo.save(run)
            if supersede:
                superseded = repo.supersede_pending(entity_collection, exclude_run_id=run.id, created_before=run.created_at)
                if superseded:
                    logger.info(f"[NuvemshopSync] {entity_collection}: отменено ожидающих запусков: {superseded}")
        return run

    def get_run(self, run_id: UUID) -> Optional[SyncRun]:
        with self.session_factory() as session:
            return SyncRunRepository(session).get(run_id)

    def defer(self, run_id: UUID, delay_seconds: int, reason: str) -> Optional[SyncRun]:
        """Отмечает отложенную попытку запуска, оставшегося в pending."""
        with self.session_factory() as session:
            repo = SyncRunRepository(session)
            run = repo.get(run_id)
            if run is None or run.status != SyncRunStatus.PENDING.value:
                return run
            run.schedule_retry(delay_seconds)
            run.error_message = reason[:1000]
            return repo.save(run)

    def mark_failed(self, run_id: UUID, reason: str) -> Optional[SyncRun]:
        """Переводит незавершённый запуск в failed (исчерпаны попытки, ошибка передачи задачи)."""
        with self.session_factory() as session:
            repo = SyncRunRepository(session)
            run = repo.get(run_id)
            if run is None or run.is_terminal:
                return run
            run.status = SyncRunStatus.FAILED.value
            run.error_message = reason[:1000]
            run.completed_at = utcnow()
            return repo.save(run)

    def run(self, run_id: UUID) -> Optional[SyncRun]:
        """
        Выполняет запуск.

        Returns:
            SyncRun: запуск в конечном статусе или None, если запуск не найден

        Raises:
            Busy: блокировка коллекции занята, запуск остаётся pending
            UpstreamUnavailable: ошибка API, запуск failed, курсор не сдвинут
            LeaseLost: аренда истекла во время сверки, запуск failed, курсор не сдвинут
            StorageFailure: ошибка БД, запуск failed
        """
        run = self.get_run(run_id)
        if run is None:
            logger.error(f"[NuvemshopSync] Запуск {run_id} не найден")
            return None
        if run.status != SyncRunStatus.PENDING.value:
            logger.info(f"[NuvemshopSync] Запуск {run_id} уже в статусе {run.status}, пропускаем")
            return run

        collection = run.entity_collection
        resource_key = resource_key_for(collection)
        owner_token = self.locks.acquire(resource_key)

        try:
            with self.session_factory() as session:
                claimed = SyncRunRepository(session).claim(run_id, owner_token)
        except StorageFailure:
            self._release(resource_key, owner_token)
            raise

        if not claimed:
            self._release(resource_key, owner_token)
            run = self.get_run(run_id)
            logger.info(f"[NuvemshopSync] Запуск {run_id} отменён до захвата блокировки ({run.status})")
            return run

        try:
            run = self._reconcile(run_id, resource_key, owner_token)
        except SyncBaseException as e:
            self._fail(run_id, resource_key, owner_token, e.message)
            log_business_event(
                "sync_failed",
                f"Синхронизация {collection} завершилась ошибкой",
                run_id=run_id,
                error_code=e.error_code,
            )
            raise
        except Exception as e:
            self._fail(run_id, resource_key, owner_token, str(e))
            raise

        self._release(resource_key, owner_token)
        log_business_event(
            "sync_committed",
            f"Синхронизация {collection} завершена",
            run_id=run_id,
            upserted=run.records_upserted,
            deleted=run.records_deleted,
        )
        return run

    def _reconcile(self, run_id: UUID, resource_key: str, owner_token: str) -> SyncRun:
        with self.session_factory() as session:
            runs = SyncRunRepository(session)
            cursors = SyncCursorRepository(session)
            run = runs.get(run_id)
            collection = run.entity_collection
            reconciler = CollectionReconciler(session, collection)

            # Более старые ожидающие запуски покрываются этой выборкой
            runs.supersede_pending(collection, exclude_run_id=run.id, created_before=run.started_at)

            cursor = cursors.get_optional(collection)
            run.cursor_from = cursor.last_synced_at if cursor else None
            run.watermark = self.clock()
            run.status = SyncRunStatus.RECONCILING.value
            run = runs.save(run)
            logger.info(
                f"[NuvemshopSync] {collection}: сверка с {run.cursor_from.isoformat() if run.cursor_from else 'начала'}"
            )

            if run.deleted_entity_id:
                run.records_deleted = reconciler.mark_deleted(run.deleted_entity_id)

            page_size = sync_config.page_size
            max_pages = sync_config.max_pages_per_run
            last_page_size = 0
            with self.client_factory() as client:
                self.locks.extend(resource_key, owner_token)
                for records in client.iter_pages(collection, run.cursor_from, page_size, max_pages):
                    # Страница записывается только под действующей арендой
                    self.locks.extend(resource_key, owner_token)
                    run.pages_fetched += 1
                    run.records_fetched += len(records)
                    run.records_upserted += reconciler.upsert_records(records)
                    last_page_size = len(records)
                    run = runs.save(run)

            truncated = run.pages_fetched >= max_pages and last_page_size >= page_size
            if truncated:
                logger.warning(
                    f"[NuvemshopSync] {collection}: выборка обрезана на {max_pages} страницах, курсор не сдвигается"
                )
            else:
                self.locks.extend(resource_key, owner_token)
                status = CursorStatus.DELETED if run.deleted_entity_id else CursorStatus.SYNCED
                cursors.record_success(collection, run.watermark, status)

            run.status = SyncRunStatus.COMMITTED.value
            run.completed_at = utcnow()
            run.error_message = None
            run = runs.save(run)

        logger.info(
            f"[NuvemshopSync] {collection}: завершено, страниц {run.pages_fetched}, "
            f"записей {run.records_upserted}, удалено {run.records_deleted}"
        )
        return run

    def _finish(self, run_id: UUID, status: SyncRunStatus, error: Optional[str] = None) -> None:
        with self.session_factory() as session:
            repo = SyncRunRepository(session)
            run = repo.get(run_id)
            if run is None:
                return
            run.status = status.value
            run.error_message = error[:1000] if error else None
            run.completed_at = utcnow()
            repo.save(run)
        logger.error(f"[NuvemshopSync] Запуск {run_id} ({run.entity_collection}) -> {status.value}: {error}")

    def _fail(self, run_id: UUID, resource_key: str, owner_token: str, error: str) -> None:
        """Переводит запуск в failed и снимает блокировку; ошибка учёта не заменяет исходную."""
        try:
            self._finish(run_id, SyncRunStatus.FAILED, error=error)
        except StorageFailure as e:
            logger.error(f"[NuvemshopSync] Не удалось записать failed для запуска {run_id}: {e.message}")
        try:
            self._release(resource_key, owner_token)
        except StorageFailure as e:
            logger.error(f"[NuvemshopSync] Не удалось снять блокировку {resource_key}: {e.message}")

    def _release(self, resource_key: str, owner_token: str) -> None:
        try:
            self.locks.release(resource_key, owner_token)
        except NotOwner:
            logger.warning(f"[NuvemshopSync] Блокировка {resource_key} уже не принадлежит запуску (аренда истекла)")

