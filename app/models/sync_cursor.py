"""
 * @file: sync_cursor.py
 * @description: Модель курсора последней успешной синхронизации коллекции NuvemShop
 * @dependencies: SQLModel, datetime
 * @created: 2025-09-02
"""

from datetime import datetime
from enum import Enum
from sqlmodel import SQLModel, Field

from app.utils.date_utils import utcnow


class CursorStatus(str, Enum):
    SYNCED = "synced"
    DELETED = "deleted"
    ERROR = "error"


class SyncCursor(SQLModel, table=True):
    """
    Отметка времени последней успешной сверки по коллекции.
    Изменяется только успешным запуском синхронизации, last_synced_at монотонен.
    """
    __tablename__ = "sync_cursors"

    entity_collection: str = Field(primary_key=True, max_length=32)
    last_synced_at: datetime
    last_status: str = Field(default=CursorStatus.SYNCED.value, max_length=16)
    updated_at: datetime = Field(default_factory=utcnow)
