"""
 * @file: sync_run_repository.py
 * @description: Репозиторий запусков синхронизации коллекций NuvemShop
 * @dependencies: SQLModel, Session, SyncRun
 * @created: 2025-09-02
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.exceptions import StorageFailure
from app.models.sync_run import SyncRun, SyncRunStatus
from app.utils.date_utils import utcnow


class SyncRunRepository:
    def __init__(self, session: Session):
        self.session = session

    def save(self, run: SyncRun) -> SyncRun:
        run.updated_at = utcnow()
        try:
            self.session.add(run)
            self.session.commit()
            self.session.refresh(run)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("save_sync_run", str(e)) from e
        return run

    def get(self, run_id: UUID) -> Optional[SyncRun]:
        return self.session.get(SyncRun, run_id)

    def supersede_pending(
        self,
        entity_collection: str,
        exclude_run_id: Optional[UUID] = None,
        created_before: Optional[datetime] = None,
    ) -> int:
        """
        Отменяет ожидающие запуски коллекции, которые ещё не захватили блокировку.
        Запуски с признаком удаления не отменяются: их нельзя восстановить инкрементальной выборкой.

        Returns:
            int: Количество отменённых запусков
        """
        table = SyncRun.__table__
        now = utcnow()
        stmt = (
            update(table)
            .where(
                table.c.entity_collection == entity_collection,
                table.c.status == SyncRunStatus.PENDING.value,
                table.c.deleted_entity_id.is_(None),
            )
            .values(status=SyncRunStatus.SUPERSEDED.value, completed_at=now, updated_at=now)
        )
        if exclude_run_id is not None:
            stmt = stmt.where(table.c.id != exclude_run_id)
        if created_before is not None:
            stmt = stmt.where(table.c.created_at <= created_before)
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("supersede_pending_runs", str(e)) from e
        return result.rowcount

    def claim(self, run_id: UUID, owner_token: str) -> bool:
        """
        Переводит запуск pending -> locked условным UPDATE.

        Returns:
            bool: False, если запуск уже не в pending (например, superseded)
        """
        table = SyncRun.__table__
        now = utcnow()
        stmt = (
            update(table)
            .where(table.c.id == run_id, table.c.status == SyncRunStatus.PENDING.value)
            .values(
                status=SyncRunStatus.LOCKED.value,
                owner_token=owner_token,
                started_at=now,
                next_attempt_at=None,
                updated_at=now,
            )
        )
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("claim_sync_run", str(e)) from e
        return result.rowcount == 1

    def list_recent(
        self,
        entity_collection: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[SyncRun]:
        statement = select(SyncRun)
        if entity_collection:
            statement = statement.where(SyncRun.entity_collection == entity_collection)
        if status:
            statement = statement.where(SyncRun.status == status)
        statement = statement.order_by(SyncRun.created_at.desc()).limit(limit)
        return list(self.session.exec(statement).all())
