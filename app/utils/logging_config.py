"""
 * @file: logging_config.py
 * @description: Логирование сервиса синхронизации NuvemShop: консоль без технического шума, ротируемые файлы
 * @dependencies: logging, os, RotatingFileHandler
 * @created: 2025-09-02
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_PATH = os.getenv("LOG_PATH", os.path.join(os.getcwd(), "logs"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENABLE_SQL_LOGS = os.getenv("ENABLE_SQL_LOGS", "false").lower() == "true"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Библиотеки, чьи сообщения не выводятся в консоль
TECHNICAL_LOGGERS = (
    "sqlalchemy",
    "alembic.runtime",
    "urllib3",
    "httpx",
    "httpcore",
    "asyncio",
    "uvicorn.access",
    "celery.worker",
    "celery.app",
    "kombu",
    "redis",
    "psycopg2",
)

# Логгеры подсистемы синхронизации, всегда на уровне DEBUG в файлах
SYNC_LOGGERS = (
    "nuvemshop.webhooks",
    "nuvemshop.sync",
    "nuvemshop.api",
    "sync.locks",
    "sync.idempotency",
    "sync.cursor",
    "alerts",
    "business",
    "errors",
)

SQL_KEYWORDS = (("SELECT", "FROM"), ("INSERT", "INTO"), ("UPDATE", "SET"), ("DELETE", "FROM"))


class BusinessLogicFilter(logging.Filter):
    """Пропускает в консоль только сообщения приложения, без SQL и транспортных библиотек."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(TECHNICAL_LOGGERS):
            return False
        msg = record.msg
        if isinstance(msg, str):
            if any(a in msg and b in msg for a, b in SQL_KEYWORDS):
                return False
            if msg.strip() in ("BEGIN (implicit)", "COMMIT", "ROLLBACK"):
                return False
        return True


def _rotating_handler(filename: str, max_mb: int, backups: int, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        os.path.join(LOG_PATH, filename),
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.setLevel(level)
    return handler


def setup_project_logging(log_level: Optional[str] = None, enable_sql_logs: Optional[bool] = None) -> logging.Logger:
    """
    Настраивает корневой логгер для API, воркера Celery и beat.

    Консоль: уровень LOG_LEVEL, технические логгеры отфильтрованы.
    Файлы: app.log (всё от DEBUG) и errors.log (только ошибки), с ротацией.

    Args:
        log_level: Уровень консоли (DEBUG, INFO, WARNING, ERROR)
        enable_sql_logs: Показывать SQL в консоли (для отладки)
    """
    level_name = (log_level or LOG_LEVEL).upper()
    sql_logs = ENABLE_SQL_LOGS if enable_sql_logs is None else enable_sql_logs
    console_level = getattr(logging, level_name, logging.INFO)

    os.makedirs(LOG_PATH, exist_ok=True)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    console_handler.setLevel(console_level)
    if not sql_logs:
        console_handler.addFilter(BusinessLogicFilter())

    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler("app.log", 10, 5, logging.DEBUG))
    root_logger.addHandler(_rotating_handler("errors.log", 5, 3, logging.ERROR))

    library_level = logging.WARNING if sql_logs else logging.ERROR
    for name in TECHNICAL_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
    for name in SYNC_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)

    app_logger = logging.getLogger("app")
    app_logger.setLevel(logging.DEBUG)
    return app_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _format_fields(fields: dict) -> str:
    return " | ".join(f"{key}={value}" for key, value in fields.items())


def log_business_event(event_type: str, message: str, **kwargs) -> None:
    """
    Одна строка на бизнес-событие в логгере "business".

    Args:
        event_type: webhook_accepted, sync_committed, sync_failed, lock_reset
        message: Описание события
        **kwargs: Поля события (run_id, event_id, actor, ...)
    """
    line = f"[{event_type.upper()}] {message}"
    if kwargs:
        line = f"{line} | {_format_fields(kwargs)}"
    get_logger("business").info(line)


def log_error_with_context(error: Exception, context: str = "", **kwargs) -> None:
    """Ошибка с контекстом в логгере "errors" (попадает в errors.log)."""
    prefix = f"[ERROR] {context}: " if context else "[ERROR] "
    get_logger("errors").error(f"{prefix}{error} | {_format_fields(kwargs)}")
