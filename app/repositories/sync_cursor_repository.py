"""
 * @file: sync_cursor_repository.py
 * @description: Репозиторий курсоров последней синхронизации коллекций
 * @dependencies: SQLModel, Session, SyncCursor
 * @created: 2025-09-02
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.exceptions import CursorNotFound, StorageFailure
from app.models.sync_cursor import SyncCursor, CursorStatus
from app.utils.date_utils import utcnow, to_naive_utc
from app.utils.db_utils import dialect_insert

logger = logging.getLogger("sync.cursor")


class SyncCursorRepository:
    def __init__(self, session: Session):
        self.session = session

    def record_success(
        self,
        entity_collection: str,
        observed_at: datetime,
        status: CursorStatus = CursorStatus.SYNCED,
    ) -> bool:
        """
        Сдвигает курсор коллекции на observed_at.
        Курсор только растёт: более старая отметка не перезаписывает более новую.

        Returns:
            bool: True, если курсор изменился
        """
        table = SyncCursor.__table__
        observed_at = to_naive_utc(observed_at)
        now = utcnow()
        stmt = dialect_insert(self.session, table).values(
            entity_collection=entity_collection,
            last_synced_at=observed_at,
            last_status=status.value,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.entity_collection],
            set_={
                "last_synced_at": stmt.excluded.last_synced_at,
                "last_status": stmt.excluded.last_status,
                "updated_at": stmt.excluded.updated_at,
            },
            where=table.c.last_synced_at < stmt.excluded.last_synced_at,
        ).returning(table.c.entity_collection)

        try:
            moved = self.session.execute(stmt).first() is not None
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("record_success", str(e)) from e

        if moved:
            logger.info(f"Курсор {entity_collection} -> {observed_at.isoformat()} ({status.value})")
        else:
            logger.info(f"Курсор {entity_collection} не сдвинут: {observed_at.isoformat()} не новее текущего")
        return moved

    def get_optional(self, entity_collection: str) -> Optional[SyncCursor]:
        return self.session.get(SyncCursor, entity_collection)

    def get(self, entity_collection: str) -> SyncCursor:
        cursor = self.get_optional(entity_collection)
        if cursor is None:
            raise CursorNotFound(entity_collection)
        return cursor

    def list_all(self) -> List[SyncCursor]:
        statement = select(SyncCursor).order_by(SyncCursor.entity_collection)
        return list(self.session.exec(statement).all())
