import logging

from celery.signals import setup_logging

from app.utils.logging_config import setup_project_logging

logger = logging.getLogger("celery")


@setup_logging.connect
def configure_celery_logging(**kwargs):
    """Воркер и beat пишут в те же хендлеры, что и основное приложение."""
    setup_project_logging()
    logger.info("Логирование Celery настроено")
