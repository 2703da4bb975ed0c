import os
import logging
from typing import Any, List, Optional, Union

from pydantic import AnyHttpUrl, Field, PostgresDsn, field_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict

from dotenv import load_dotenv

load_dotenv()

# Затем проверяем, запущено ли приложение в Docker
is_docker = os.path.exists("/.dockerenv") or os.path.exists("/run/.containerenv")

# Если запущено в Docker, перезагружаем переменные из .env.docker
if is_docker:
    load_dotenv(".env.docker", override=True)


class Settings(BaseSettings):
    API_V1_STR: str = "/api"

    PROJECT_NAME: str = "nuvemshop_sync"

    # Ключ для административных эндпоинтов (force sync, сброс блокировки).
    # Если не задан, административные эндпоинты всегда отвечают 401.
    ADMIN_API_KEY: Optional[str] = None

    # BACKEND_CORS_ORIGINS is a JSON-formatted list of origins
    # e.g: '["http://localhost", "http://localhost:3000"]'
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode='before')
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # База данных (Postgres проекта Supabase)
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "postgres"
    SQLALCHEMY_DATABASE_URI: Optional[str] = Field(default=None, validate_default=True)

    # NuvemShop
    NUVEMSHOP_API_URL: str = "https://api.nuvemshop.com.br/v1"
    NUVEMSHOP_STORE_ID: Optional[str] = None
    NUVEMSHOP_ACCESS_TOKEN: Optional[str] = None
    NUVEMSHOP_WEBHOOK_SECRET: Optional[str] = None
    NUVEMSHOP_USER_AGENT: str = "nuvemshop-sync (admin@example.com)"
    NUVEMSHOP_TIMEOUT_SECONDS: float = 30.0
    # Публичный адрес сервиса для регистрации вебхуков, например https://sync.example.com
    WEBHOOK_PUBLIC_BASE_URL: Optional[str] = None

    # Celery / Redis
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/1"
    REDIS_URL: str = "redis://redis:6379/2"

    # Алерты в Telegram
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_ALERT_CHAT_ID: Optional[int] = None

    @field_validator("SQLALCHEMY_DATABASE_URI", mode='before')
    def assemble_db_connection(cls, v: Optional[str], values: ValidationInfo) -> Any:
        if isinstance(v, str) and v:
            return v
        return PostgresDsn.build(
            scheme="postgresql",
            username=values.data.get("POSTGRES_USER"),
            password=values.data.get("POSTGRES_PASSWORD"),
            host=values.data.get("POSTGRES_SERVER"),
            port=values.data.get("POSTGRES_PORT"),
            path=f"{values.data.get('POSTGRES_DB') or ''}",
        ).unicode_string()

    model_config = SettingsConfigDict(case_sensitive=True, extra="ignore")


settings = Settings()
logging.info(f"settings loaded for {settings.PROJECT_NAME}")
