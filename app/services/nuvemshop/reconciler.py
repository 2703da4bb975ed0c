"""
 * @file: reconciler.py
 * @description: Запись загруженных из NuvemShop данных в локальные таблицы
 * @dependencies: SQLModel, transformers, nuvemshop models
 * @created: 2025-09-02
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.exceptions import MalformedPayload, StorageFailure, UnknownCollection
from app.models.nuvemshop import NuvemshopOrder, NuvemshopProduct, NuvemshopCoupon, NuvemshopCustomer
from app.services.nuvemshop.transformers import (
    transform_order,
    transform_product,
    transform_coupon,
    transform_customer,
)
from app.utils.date_utils import utcnow
from app.utils.db_utils import dialect_insert

logger = logging.getLogger("nuvemshop.sync")


@dataclass(frozen=True)
class CollectionMapping:
    name: str
    model: type
    key: str
    transform: Callable[[Dict[str, Any]], Dict[str, Any]]

    @property
    def table(self):
        return self.model.__table__


COLLECTIONS: Dict[str, CollectionMapping] = {
    "orders": CollectionMapping("orders", NuvemshopOrder, "order_id", transform_order),
    "products": CollectionMapping("products", NuvemshopProduct, "product_id", transform_product),
    "coupons": CollectionMapping("coupons", NuvemshopCoupon, "coupon_id", transform_coupon),
    "customers": CollectionMapping("customers", NuvemshopCustomer, "customer_id", transform_customer),
}

SUPPORTED_COLLECTIONS = tuple(COLLECTIONS)


def get_collection_mapping(entity_collection: str) -> CollectionMapping:
    mapping = COLLECTIONS.get(entity_collection)
    if mapping is None:
        raise UnknownCollection(entity_collection)
    return mapping


class CollectionReconciler:
    """Идемпотентная запись записей коллекции по ключу платформы."""

    def __init__(self, session: Session, entity_collection: str):
        self.session = session
        self.mapping = get_collection_mapping(entity_collection)

    def upsert_records(self, records: List[Dict[str, Any]]) -> int:
        """
        Вставляет или обновляет записи одной страницы API и фиксирует транзакцию.

        Returns:
            int: Количество записанных строк
        """
        if not records:
            return 0
        rows = {}
        for record in records:
            try:
                row = self.mapping.transform(record)
            except MalformedPayload as e:
                logger.warning(f"[NuvemshopSync] {self.mapping.name}: запись пропущена: {e.message}")
                continue
            # дубликаты ключа в одной странице: побеждает последняя запись
            rows[row[self.mapping.key]] = row
        if not rows:
            return 0

        table = self.mapping.table
        stmt = dialect_insert(self.session, table).values(list(rows.values()))
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c[self.mapping.key]],
            set_={
                column.name: stmt.excluded[column.name]
                for column in table.columns
                if column.name != self.mapping.key
            },
        )
        try:
            self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure(f"upsert_{self.mapping.name}", str(e)) from e
        return len(rows)

    def mark_deleted(self, entity_id: str) -> int:
        """Помечает локальную запись как удалённую на платформе."""
        table = self.mapping.table
        stmt = (
            update(table)
            .where(table.c[self.mapping.key] == str(entity_id))
            .values(sync_status="deleted", last_synced_at=utcnow())
        )
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageFailure(f"mark_deleted_{self.mapping.name}", str(e)) from e

        if result.rowcount:
            logger.info(f"[NuvemshopSync] {self.mapping.name}: запись {entity_id} помечена как удалённая")
        else:
            logger.info(f"[NuvemshopSync] {self.mapping.name}: запись {entity_id} отсутствует локально")
        return result.rowcount
