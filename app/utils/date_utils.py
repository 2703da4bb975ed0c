from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """
    Текущее время в UTC без tzinfo.
    Все временные метки в БД хранятся как naive UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Приводит datetime к naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_api_datetime(value: Any) -> Optional[datetime]:
    """
    Безопасно парсит дату из ответа NuvemShop в naive UTC datetime.

    Args:
        value: Строка ISO 8601 (например "2024-01-01T10:00:00+0000") или None

    Returns:
        datetime или None, если значение пустое или не распознано.

    Example:
        >>> parse_api_datetime("2024-01-01T10:00:00+0000")
        datetime(2024, 1, 1, 10, 0)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # NuvemShop отдаёт смещение без двоеточия: +0000
    if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_api_datetime(value: datetime) -> str:
    """Форматирует naive UTC datetime для параметров запросов NuvemShop."""
    return to_naive_utc(value).replace(microsecond=0).isoformat() + "+00:00"
