from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4
from enum import Enum

from sqlmodel import SQLModel, Field

from app.utils.date_utils import utcnow


class SyncRunStatus(str, Enum):
    """Состояния запуска синхронизации."""
    PENDING = "pending"
    LOCKED = "locked"
    RECONCILING = "reconciling"
    COMMITTED = "committed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


TERMINAL_STATUSES = (
    SyncRunStatus.COMMITTED.value,
    SyncRunStatus.FAILED.value,
    SyncRunStatus.SUPERSEDED.value,
)


class SyncTrigger(str, Enum):
    """Источник запуска."""
    WEBHOOK = "webhook"
    MANUAL = "manual"
    RETRY = "retry"


class SyncRun(SQLModel, table=True):
    """
    Запуск синхронизации одной коллекции NuvemShop.

    Переходы: pending -> locked -> reconciling -> committed | failed.
    Запуск в pending может быть отменён (superseded) более новым запуском той же коллекции,
    пока блокировка не захвачена.
    """
    __tablename__ = "sync_runs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    entity_collection: str = Field(index=True, max_length=32, description="Коллекция: orders, products, coupons, customers")
    triggered_by: str = Field(default=SyncTrigger.WEBHOOK.value, max_length=16, description="webhook, manual, retry")
    status: str = Field(default=SyncRunStatus.PENDING.value, index=True, max_length=16)

    # Источник запуска
    event_id: Optional[str] = Field(default=None, index=True, max_length=255, description="Событие вебхука, породившее запуск")
    event_type: Optional[str] = Field(default=None, max_length=64)
    deleted_entity_id: Optional[str] = Field(default=None, max_length=64, description="ID ресурса, удалённого на платформе")

    # Retry механизм
    attempts: int = Field(default=0, description="Количество отложенных попыток (Busy/UpstreamUnavailable)")
    next_attempt_at: Optional[datetime] = Field(default=None, description="Время следующей попытки")

    # Ход сверки
    owner_token: Optional[str] = Field(default=None, max_length=64)
    cursor_from: Optional[datetime] = Field(default=None, description="Водяной знак, с которого загружались изменения")
    watermark: Optional[datetime] = Field(default=None, description="Время начала загрузки, станет новым курсором")
    pages_fetched: int = Field(default=0)
    records_fetched: int = Field(default=0)
    records_upserted: int = Field(default=0)
    records_deleted: int = Field(default=0)

    # Метаданные
    error_message: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def schedule_retry(self, delay_seconds: int) -> None:
        """Увеличивает счётчик попыток и планирует следующую попытку."""
        self.attempts += 1
        self.updated_at = utcnow()
        self.next_attempt_at = self.updated_at + timedelta(seconds=delay_seconds)

    def stats(self) -> dict:
        duration = None
        if self.started_at and self.completed_at:
            duration = round((self.completed_at - self.started_at).total_seconds(), 3)
        return {
            "run_id": str(self.id),
            "collection": self.entity_collection,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "attempts": self.attempts,
            "cursor_from": self.cursor_from.isoformat() if self.cursor_from else None,
            "watermark": self.watermark.isoformat() if self.watermark else None,
            "pages_fetched": self.pages_fetched,
            "records_fetched": self.records_fetched,
            "records_upserted": self.records_upserted,
            "records_deleted": self.records_deleted,
            "duration_seconds": duration,
            "error": self.error_message,
        }
