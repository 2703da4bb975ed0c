"""
 * @file: celery_shared.py
 * @description: Экземпляр Celery, через который вебхуки и ручные запуски передают sync run воркеру
 * @dependencies: core.config, celery_logging, celery
 * @created: 2025-09-02
"""

from celery import Celery

# config сам подгружает .env и .env.docker
from app.core.config import settings
import app.celery_logging  # noqa: F401

TASK_MODULES = ["app.services.nuvemshop.sync_tasks"]

celery = Celery(
    "nuvemshop_sync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=TASK_MODULES,
)

celery.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Задача подтверждается только после выполнения: упавший воркер не теряет sync run
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # Логи воркера идут через setup_project_logging
    worker_hijack_root_logger=False,
    worker_task_log_format="[%(asctime)s: %(levelname)s][%(task_name)s(%(task_id)s)] %(message)s",
    broker_connection_retry_on_startup=True,
    result_expires=24 * 3600,
)
