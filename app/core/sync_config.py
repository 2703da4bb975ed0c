from datetime import timedelta

from pydantic_settings import BaseSettings


class SyncConfig(BaseSettings):
    """
    Конфигурация подсистемы синхронизации NuvemShop.

    Настройки можно переопределить через переменные окружения с префиксом SYNC_
    """
    # Аренда блокировки синхронизации
    lock_lease_seconds: int = 300  # 5 минут

    # Хранение записей идемпотентности
    idempotency_retention_days: int = 30
    platform_redelivery_window_hours: int = 48
    # Окно дедупликации событий без ID доставки (ID вычисляется из тела)
    derived_event_dedup_minutes: int = 15

    # Настройки retry механизма
    retry_max_attempts: int = 5
    retry_initial_delay: int = 30  # секунды
    retry_max_delay: int = 1800   # секунды (30 минут)
    retry_exponential_base: float = 2.0

    # Настройки загрузки данных из NuvemShop
    page_size: int = 100
    max_pages_per_run: int = 500
    api_max_retries: int = 3
    api_backoff_base_seconds: float = 1.0
    api_backoff_max_seconds: float = 10.0

    # Ручная синхронизация: ставить в очередь вместо 409, если идёт другой запуск
    force_sync_queue_on_busy: bool = False

    # Ограничение частоты вебхуков (0 = выключено)
    webhook_rate_limit_per_minute: int = 100

    # Повторная обработка неудачных доставок вебхуков
    delivery_max_manual_retries: int = 5

    model_config = {
        "env_prefix": "SYNC_",
        "env_file": ".env",
        "extra": "ignore"  # Игнорировать дополнительные поля из .env
    }

    @property
    def lock_lease(self) -> timedelta:
        return timedelta(seconds=self.lock_lease_seconds)

    @property
    def derived_event_dedup_window(self) -> timedelta:
        return timedelta(minutes=self.derived_event_dedup_minutes)

    @property
    def idempotency_horizon(self) -> timedelta:
        """
        Горизонт хранения записей идемпотентности.
        Никогда не короче окна повторной доставки платформы.
        """
        return max(
            timedelta(days=self.idempotency_retention_days),
            timedelta(hours=self.platform_redelivery_window_hours),
        )

    def retry_delay(self, attempt: int) -> int:
        """Задержка перед попыткой с номером attempt (считая с 1), экспоненциальный backoff."""
        delay = self.retry_initial_delay * (self.retry_exponential_base ** max(attempt - 1, 0))
        return int(min(delay, self.retry_max_delay))


# Глобальный экземпляр конфигурации
sync_config = SyncConfig()

