"""
 * @file: locks.py
 * @description: Арендуемые блокировки синхронизации коллекций NuvemShop
 * @dependencies: SyncLock, SessionLocal, SQLAlchemy
 * @created: 2025-09-02
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.exceptions import Busy, LeaseLost, NotOwner, StorageFailure
from app.core.sync_config import sync_config
from app.database import SessionLocal
from app.models.sync_lock import SyncLock
from app.utils.date_utils import utcnow
from app.utils.db_utils import dialect_insert
from app.utils.logging_config import log_business_event

logger = logging.getLogger("sync.locks")


def resource_key_for(entity_collection: str) -> str:
    """Ключ блокировки коллекции, например nuvemshop-orders-sync."""
    return f"nuvemshop-{entity_collection}-sync"


class SyncLockManager:
    """
    Взаимное исключение запусков синхронизации через таблицу sync_locks.

    Захват выполняется одним условным upsert: строка создаётся, если её нет,
    или перехватывается, если аренда истекла. Владелец определяется по токену,
    возвращённому из того же запроса.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        lease: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.lease = lease or sync_config.lock_lease

    def acquire(self, resource_key: str, lease_duration: Optional[timedelta] = None) -> str:
        """
        Захватывает блокировку.

        Returns:
            str: owner_token нового владельца

        Raises:
            Busy: блокировка удерживается и аренда не истекла
            StorageFailure: ошибка БД
        """
        table = SyncLock.__table__
        token = secrets.token_hex(16)
        now = self.clock()
        expires_at = now + (lease_duration or self.lease)

        with self.session_factory() as session:
            stmt = dialect_insert(session, table).values(
                resource_key=resource_key,
                owner_token=token,
                acquired_at=now,
                expires_at=expires_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.resource_key],
                set_={
                    "owner_token": stmt.excluded.owner_token,
                    "acquired_at": stmt.excluded.acquired_at,
                    "expires_at": stmt.excluded.expires_at,
                },
                where=table.c.expires_at < now,
            ).returning(table.c.owner_token)
            try:
                row = session.execute(stmt).first()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageFailure("acquire_lock", str(e)) from e

            if row is not None and row[0] == token:
                logger.info(f"Блокировка {resource_key} захвачена до {expires_at.isoformat()}")
                return token

            current = session.get(SyncLock, resource_key)
            held_until = current.expires_at if current else None

        logger.info(f"Блокировка {resource_key} занята до {held_until.isoformat() if held_until else '?'}")
        raise Busy(resource_key, held_until)

    def extend(self, resource_key: str, owner_token: str, lease_duration: Optional[timedelta] = None) -> datetime:
        """
        Продлевает аренду, если она ещё действует и принадлежит owner_token.

        Returns:
            datetime: новое время истечения

        Raises:
            LeaseLost: аренда истекла или строка перехвачена другим владельцем
        """
        table = SyncLock.__table__
        now = self.clock()
        expires_at = now + (lease_duration or self.lease)
        stmt = (
            update(table)
            .where(
                table.c.resource_key == resource_key,
                table.c.owner_token == owner_token,
                table.c.expires_at >= now,
            )
            .values(expires_at=expires_at)
        )
        with self.session_factory() as session:
            try:
                result = session.execute(stmt)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageFailure("extend_lock", str(e)) from e

        if result.rowcount == 0:
            logger.warning(f"Аренда {resource_key} потеряна владельцем {owner_token}")
            raise LeaseLost(resource_key, owner_token)
        logger.debug(f"Аренда {resource_key} продлена до {expires_at.isoformat()}")
        return expires_at

    def release(self, resource_key: str, owner_token: str) -> None:
        """
        Снимает блокировку, только если её держит owner_token.

        Raises:
            NotOwner: строка отсутствует или принадлежит другому владельцу
        """
        table = SyncLock.__table__
        stmt = delete(table).where(table.c.resource_key == resource_key, table.c.owner_token == owner_token)
        with self.session_factory() as session:
            try:
                result = session.execute(stmt)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageFailure("release_lock", str(e)) from e

        if result.rowcount == 0:
            raise NotOwner(resource_key, owner_token)
        logger.info(f"Блокировка {resource_key} снята")

    def force_reset(self, resource_key: str, actor: str) -> bool:
        """
        Безусловно удаляет блокировку (административная операция).

        Returns:
            bool: True, если строка была удалена
        """
        table = SyncLock.__table__
        with self.session_factory() as session:
            previous = session.get(SyncLock, resource_key)
            previous_owner = previous.owner_token if previous else None
            try:
                result = session.execute(delete(table).where(table.c.resource_key == resource_key))
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageFailure("force_reset_lock", str(e)) from e

        removed = result.rowcount > 0
        logger.warning(f"Принудительный сброс блокировки {resource_key} пользователем {actor}, удалено: {removed}")
        log_business_event(
            "lock_reset",
            f"Блокировка {resource_key} сброшена",
            actor=actor,
            previous_owner=previous_owner,
            removed=removed,
        )
        return removed

    def get(self, resource_key: str) -> Optional[SyncLock]:
        """Текущая неистёкшая блокировка или None."""
        with self.session_factory() as session:
            lock = session.get(SyncLock, resource_key)
        if lock is None or not lock.is_live(self.clock()):
            return None
        return lock

    def sweep_expired(self) -> int:
        """Удаляет строки с истёкшей арендой."""
        table = SyncLock.__table__
        with self.session_factory() as session:
            try:
                result = session.execute(delete(table).where(table.c.expires_at < self.clock()))
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageFailure("sweep_expired_locks", str(e)) from e
        if result.rowcount:
            logger.info(f"Удалено истёкших блокировок: {result.rowcount}")
        return result.rowcount
