"""
 * @file: processed_event_repository.py
 * @description: Репозиторий идемпотентности вебхуков NuvemShop
 * @dependencies: SQLModel, Session, ProcessedEvent
 * @created: 2025-09-02
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.exceptions import StorageFailure
from app.models.processed_event import ProcessedEvent, ProcessedEventStatus
from app.utils.date_utils import utcnow
from app.utils.db_utils import dialect_insert

logger = logging.getLogger("sync.idempotency")


class IdempotencyResult(str, Enum):
    FRESH = "fresh"
    DUPLICATE = "duplicate"


class ProcessedEventRepository:
    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    def record_if_new(
        self,
        event_id: str,
        event_type: str,
        entity_collection: Optional[str] = None,
        entity_id: Optional[str] = None,
        reclaim_received_before: Optional[datetime] = None,
    ) -> IdempotencyResult:
        """
        Атомарно регистрирует событие.

        Ровно один из конкурентных вызовов с одинаковым event_id получает FRESH.
        Запись в статусе failed (передача задачи не удалась) может быть повторно
        захвачена следующей доставкой. При reclaim_received_before так же
        захватывается запись, впервые принятая раньше этой границы: для ID,
        вычисленных из тела, одинаковое тело позже окна дедупликации означает новое событие.

        Returns:
            IdempotencyResult: FRESH или DUPLICATE
        """
        table = ProcessedEvent.__table__
        now = self.clock()
        reclaimable = table.c.status == ProcessedEventStatus.FAILED.value
        if reclaim_received_before is not None:
            reclaimable = or_(reclaimable, table.c.received_at < reclaim_received_before)

        stmt = dialect_insert(self.session, table).values(
            event_id=event_id,
            event_type=event_type,
            entity_collection=entity_collection,
            entity_id=entity_id,
            status=ProcessedEventStatus.ACCEPTED.value,
            delivery_count=1,
            received_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.event_id],
            set_={
                "status": ProcessedEventStatus.ACCEPTED.value,
                "delivery_count": table.c.delivery_count + 1,
                "last_error": None,
                "received_at": now,
                "updated_at": now,
            },
            where=reclaimable,
        ).returning(table.c.event_id)

        try:
            claimed = self.session.execute(stmt).first()
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("record_if_new", str(e)) from e

        if claimed is None:
            logger.info(f"Событие {event_id} ({event_type}) уже обработано, дубликат")
            return IdempotencyResult.DUPLICATE

        logger.info(f"Событие {event_id} ({event_type}) зарегистрировано")
        return IdempotencyResult.FRESH

    def note_duplicate(self, event_id: str) -> None:
        """Увеличивает счётчик доставок для аудита."""
        table = ProcessedEvent.__table__
        stmt = (
            update(table)
            .where(table.c.event_id == event_id)
            .values(delivery_count=table.c.delivery_count + 1, updated_at=self.clock())
        )
        try:
            self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("note_duplicate", str(e)) from e

    def mark_failed(self, event_id: str, error: str) -> None:
        """Помечает событие как failed, если передача задачи не подтвердилась."""
        table = ProcessedEvent.__table__
        stmt = (
            update(table)
            .where(table.c.event_id == event_id)
            .values(status=ProcessedEventStatus.FAILED.value, last_error=error[:1000], updated_at=self.clock())
        )
        try:
            self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("mark_failed", str(e)) from e
        logger.warning(f"Событие {event_id} помечено как failed: {error}")

    def get(self, event_id: str) -> Optional[ProcessedEvent]:
        return self.session.get(ProcessedEvent, event_id)

    def purge_older_than(self, horizon: timedelta) -> int:
        """
        Удаляет записи старше горизонта хранения.

        Args:
            horizon: Горизонт хранения, не короче окна повторной доставки платформы

        Returns:
            int: Количество удалённых записей
        """
        cutoff = self.clock() - horizon
        stmt = delete(ProcessedEvent.__table__).where(ProcessedEvent.__table__.c.received_at < cutoff)
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("purge_processed_events", str(e)) from e

        if result.rowcount:
            logger.info(f"Удалено {result.rowcount} записей идемпотентности старше {cutoff.isoformat()}")
        return result.rowcount
