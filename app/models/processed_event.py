"""
 * @file: processed_event.py
 * @description: Модели идемпотентности вебхуков и журнала доставок NuvemShop
 * @dependencies: SQLModel, datetime
 * @created: 2025-09-02
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from app.utils.date_utils import utcnow


class ProcessedEventStatus(str, Enum):
    """Статусы записи идемпотентности."""
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class ProcessedEvent(SQLModel, table=True):
    """
    Запись о принятом внешнем событии.
    event_id уникален в пределах окна хранения; повторная доставка классифицируется как дубликат.
    """
    __tablename__ = "processed_events"

    event_id: str = Field(primary_key=True, max_length=255, description="Идентификатор события/доставки")
    event_type: str = Field(index=True, max_length=64, description="Событие NuvemShop, например order/created")
    entity_collection: Optional[str] = Field(default=None, max_length=32, description="Коллекция: orders, products, ...")
    entity_id: Optional[str] = Field(default=None, max_length=64, description="ID ресурса в NuvemShop")
    status: str = Field(default=ProcessedEventStatus.ACCEPTED.value, max_length=16, description="accepted, duplicate, failed")
    delivery_count: int = Field(default=1, description="Сколько раз событие было доставлено")
    last_error: Optional[str] = Field(default=None, description="Ошибка передачи задачи, если была")
    received_at: datetime = Field(default_factory=utcnow, index=True, description="Время первой доставки")
    updated_at: datetime = Field(default_factory=utcnow, description="Время последнего изменения")


class DeliveryStatus(str, Enum):
    """Статусы доставки вебхука в журнале."""
    RECEIVED = "received"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    QUEUED = "queued"
    FAILED = "failed"


class WebhookDelivery(SQLModel, table=True):
    """
    Журнал всех доставок вебхуков, включая дубликаты и отклонённые.
    """
    __tablename__ = "webhook_deliveries"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: Optional[str] = Field(default=None, index=True, max_length=255)
    event_type: Optional[str] = Field(default=None, index=True, max_length=64)
    entity_collection: str = Field(index=True, max_length=32)
    entity_id: Optional[str] = Field(default=None, max_length=64)
    store_id: Optional[str] = Field(default=None, max_length=64)
    status: str = Field(default=DeliveryStatus.RECEIVED.value, index=True, max_length=16)
    signature_verified: bool = Field(default=False)
    client_ip: Optional[str] = Field(default=None, max_length=64)
    sync_run_id: Optional[UUID] = Field(default=None, index=True)
    retry_count: int = Field(default=0, description="Ручные повторы неудачной доставки")
    error_message: Optional[str] = Field(default=None)
    payload: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    received_at: datetime = Field(default_factory=utcnow, index=True)
