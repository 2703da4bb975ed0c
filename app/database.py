from sqlmodel import create_engine, Session, SQLModel
from sqlalchemy.orm import sessionmaker

from app.core.config import settings


def build_engine(database_uri: str):
    """Создаёт движок с настройками пула под выбранный диалект."""
    if database_uri.startswith("sqlite"):
        return create_engine(
            database_uri,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
    return create_engine(
        database_uri,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,  # Supabase pooler закрывает простаивающие соединения
        echo=False  # Отключаем SQL логирование для производительности
    )


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)
SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)


def create_db_and_tables() -> None:
    # Импорт регистрирует таблицы в метаданных
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


# Dependency
def get_db():
    with SessionLocal() as session:
        yield session
