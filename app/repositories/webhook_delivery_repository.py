"""
 * @file: webhook_delivery_repository.py
 * @description: Журнал доставок вебхуков NuvemShop
 * @dependencies: SQLModel, Session, WebhookDelivery
 * @created: 2025-09-02
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.exceptions import StorageFailure
from app.models.processed_event import WebhookDelivery, DeliveryStatus


class WebhookDeliveryRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, delivery: WebhookDelivery) -> WebhookDelivery:
        try:
            self.session.add(delivery)
            self.session.commit()
            self.session.refresh(delivery)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure("log_webhook_delivery", str(e)) from e
        return delivery

    def update_status(
        self,
        delivery: WebhookDelivery,
        status: DeliveryStatus,
        error_message: Optional[str] = None,
        sync_run_id: Optional[UUID] = None,
    ) -> WebhookDelivery:
        delivery.status = status.value
        if error_message is not None:
            delivery.error_message = error_message[:1000]
        if sync_run_id is not None:
            delivery.sync_run_id = sync_run_id
        return self.add(delivery)

    def get(self, delivery_id: UUID) -> Optional[WebhookDelivery]:
        return self.session.get(WebhookDelivery, delivery_id)

    @staticmethod
    def _filtered(statement, entity_collection: Optional[str], status: Optional[str], since: Optional[datetime]):
        if entity_collection:
            statement = statement.where(WebhookDelivery.entity_collection == entity_collection)
        if status:
            statement = statement.where(WebhookDelivery.status == status)
        if since:
            statement = statement.where(WebhookDelivery.received_at >= since)
        return statement

    def list(
        self,
        entity_collection: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[WebhookDelivery]:
        """Список доставок, новые сверху."""
        statement = self._filtered(select(WebhookDelivery), entity_collection, status, since)
        statement = statement.order_by(WebhookDelivery.received_at.desc()).offset(offset).limit(limit)
        return list(self.session.exec(statement).all())

    def count(
        self,
        entity_collection: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> int:
        """Количество доставок под теми же фильтрами, что и list."""
        statement = self._filtered(select(func.count()).select_from(WebhookDelivery), entity_collection, status, since)
        return self.session.exec(statement).one()
