"""
 * @file: db_utils.py
 * @description: Диалектно-зависимый INSERT для атомарных upsert (ON CONFLICT) в Postgres и SQLite
 * @dependencies: sqlalchemy.dialects.postgresql, sqlalchemy.dialects.sqlite
 * @created: 2025-09-02
"""

from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session


def dialect_insert(session: Session, table):
    """
    Возвращает конструкцию INSERT с поддержкой on_conflict_do_update / on_conflict_do_nothing
    для диалекта текущего соединения сессии.

    Raises:
        NotImplementedError: если диалект не поддерживает ON CONFLICT
    """
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"ON CONFLICT is not supported for dialect {dialect_name}")
