"""
 * @file: exceptions.py
 * @description: Исключения подсистемы синхронизации и приёма вебхуков
 * @dependencies: datetime
 * @created: 2025-09-02
"""

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class SyncBaseException(Exception):
    """Базовое исключение для всех ошибок синхронизации"""

    error_code = "SYNC_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: Optional[str] = None):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Конвертирует исключение в словарь для логирования и ответа API"""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
        }


class Unauthorized(SyncBaseException):
    """Неверная или отсутствующая подпись вебхука / ключ администратора. Не повторяется."""

    error_code = "UNAUTHORIZED"

    def __init__(self, reason: str, **details):
        self.reason = reason
        super().__init__(f"Unauthorized: {reason}", {'reason': reason, **details})


class MalformedPayload(SyncBaseException):
    """Нарушение схемы вебхука. Не повторяется, отдаётся как 400."""

    error_code = "MALFORMED_PAYLOAD"

    def __init__(self, reason: str, field_name: Optional[str] = None):
        self.reason = reason
        self.field_name = field_name
        super().__init__(f"Malformed payload: {reason}", {'reason': reason, 'field_name': field_name})


class Busy(SyncBaseException):
    """Блокировка ресурса удерживается другим запуском. Повторяется с backoff."""

    error_code = "BUSY"

    def __init__(self, resource_key: str, expires_at: Optional[datetime] = None):
        self.resource_key = resource_key
        self.expires_at = expires_at
        details = {
            'resource_key': resource_key,
            'expires_at': expires_at.isoformat() if expires_at else None,
        }
        super().__init__(f"Resource {resource_key} is locked by another sync run", details)


class NotOwner(SyncBaseException):
    """Попытка снять блокировку, которой вызывающий не владеет."""

    error_code = "NOT_OWNER"

    def __init__(self, resource_key: str, owner_token: str):
        self.resource_key = resource_key
        self.owner_token = owner_token
        super().__init__(
            f"Lock {resource_key} is not held by token {owner_token}",
            {'resource_key': resource_key, 'owner_token': owner_token},
        )


class UpstreamUnavailable(SyncBaseException):
    """Ошибка запроса к внешней платформе. Повторяется, курсор не двигается."""

    error_code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, endpoint: str, status_code: Optional[int] = None, response_text: Optional[str] = None):
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_text = response_text[:500] + "..." if response_text and len(response_text) > 500 else response_text
        details = {'endpoint': endpoint, 'status_code': status_code, 'response_text': self.response_text}
        super().__init__(f"Upstream request failed: {endpoint}", details)


class StorageFailure(SyncBaseException):
    """Ошибка слоя хранения. Фатальна для текущего запуска."""

    error_code = "STORAGE_FAILURE"

    def __init__(self, operation: str, original_error: Optional[str] = None):
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Storage operation failed: {operation}",
            {'operation': operation, 'original_error': original_error},
        )


class CursorNotFound(SyncBaseException):
    """Курсор синхронизации для коллекции ещё не создан."""

    error_code = "CURSOR_NOT_FOUND"

    def __init__(self, entity_collection: str):
        self.entity_collection = entity_collection
        super().__init__(f"No sync cursor for {entity_collection}", {'entity_collection': entity_collection})


class UnknownCollection(SyncBaseException):
    """Коллекция не поддерживается синхронизацией."""

    error_code = "UNKNOWN_COLLECTION"

    def __init__(self, entity_collection: str):
        self.entity_collection = entity_collection
        super().__init__(f"Unsupported collection: {entity_collection}", {'entity_collection': entity_collection})


class RateLimited(SyncBaseException):
    """Превышен лимит частоты вебхуков. Отдаётся как 429."""

    error_code = "RATE_LIMITED"

    def __init__(self, key: str, limit: int):
        self.key = key
        self.limit = limit
        super().__init__(f"Rate limit exceeded for {key}", {'key': key, 'limit_per_minute': limit})


class HandoffFailed(SyncBaseException):
    """Задача синхронизации не была передана воркеру. Отправитель должен повторить доставку."""

    error_code = "HANDOFF_FAILED"

    def __init__(self, event_id: str, original_error: Optional[str] = None):
        self.event_id = event_id
        self.original_error = original_error
        super().__init__(
            f"Sync task handoff failed for event {event_id}",
            {'event_id': event_id, 'original_error': original_error},
        )


class DeliveryNotRetryable(SyncBaseException):
    """Доставку вебхука нельзя повторить вручную."""

    error_code = "DELIVERY_NOT_RETRYABLE"

    def __init__(self, delivery_id: str, reason: str):
        self.delivery_id = delivery_id
        self.reason = reason
        super().__init__(f"Delivery {delivery_id} cannot be retried: {reason}", {'delivery_id': delivery_id, 'reason': reason})


class LeaseLost(SyncBaseException):
    """Аренда блокировки истекла или перехвачена другим запуском во время сверки. Запуск прерывается."""

    error_code = "LEASE_LOST"

    def __init__(self, resource_key: str, owner_token: str):
        self.resource_key = resource_key
        self.owner_token = owner_token
        super().__init__(
            f"Lease on {resource_key} is no longer held by token {owner_token}",
            {'resource_key': resource_key, 'owner_token': owner_token},
        )
