import logging

from celery.schedules import crontab

from app.celery_shared import celery

logger = logging.getLogger("celery.beat")

# Настройка периодических задач
celery.conf.beat_schedule = {
    "purge-processed-events": {
        "task": "app.services.nuvemshop.sync_tasks.purge_processed_events",
        "schedule": crontab(minute=15, hour=3),
    },
    "sweep-expired-sync-locks": {
        "task": "app.services.nuvemshop.sync_tasks.sweep_expired_locks",
        "schedule": crontab(minute="*/10"),
    },
}

if __name__ == '__main__':
    logger.info("Запуск Celery Beat")
    celery.start()
