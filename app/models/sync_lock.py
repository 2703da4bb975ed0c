"""
 * @file: sync_lock.py
 * @description: Модель арендуемой блокировки синхронизации коллекции NuvemShop
 * @dependencies: SQLModel, datetime
 * @created: 2025-09-02
"""
from datetime import datetime
from sqlmodel import SQLModel, Field


class SyncLock(SQLModel, table=True):
    """
    Не более одной неистёкшей записи на resource_key.
    Истёкшая запись считается отсутствующей и перехватывается следующим acquire.
    """
    __tablename__ = "sync_locks"

    resource_key: str = Field(primary_key=True, max_length=128, description="Ключ защищаемого ресурса, например nuvemshop-orders-sync")
    owner_token: str = Field(max_length=64, description="Случайный токен владельца, выдаётся при захвате")
    acquired_at: datetime = Field(description="Время захвата блокировки")
    expires_at: datetime = Field(index=True, description="Время истечения аренды")

    def is_live(self, now: datetime) -> bool:
        return self.expires_at >= now
