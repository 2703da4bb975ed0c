"""
Все модели проекта.
Импорт нужен alembic и create_all для регистрации таблиц в метаданных.
"""

from .sync_lock import SyncLock
from .processed_event import ProcessedEvent, ProcessedEventStatus, WebhookDelivery, DeliveryStatus
from .sync_cursor import SyncCursor, CursorStatus
from .sync_run import SyncRun, SyncRunStatus, SyncTrigger
from .nuvemshop import NuvemshopOrder, NuvemshopProduct, NuvemshopCoupon, NuvemshopCustomer

__all__ = [
    "SyncLock",
    "ProcessedEvent",
    "ProcessedEventStatus",
    "WebhookDelivery",
    "DeliveryStatus",
    "SyncCursor",
    "CursorStatus",
    "SyncRun",
    "SyncRunStatus",
    "SyncTrigger",
    "NuvemshopOrder",
    "NuvemshopProduct",
    "NuvemshopCoupon",
    "NuvemshopCustomer",
]
