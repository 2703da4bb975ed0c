from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict
from uuid import UUID
from datetime import datetime


class WebhookEnvelope(BaseModel):
    """Проверенный и разобранный вебхук NuvemShop."""
    event_id: str
    event_type: str
    entity_collection: str
    entity_id: str
    store_id: str
    deleted_entity_id: Optional[str] = None
    # ID вычислен из тела: платформа не передала ID доставки
    event_id_derived: bool = False


class WebhookAcceptResponse(BaseModel):
    """Ответ отправителю вебхука."""
    success: bool = True
    duplicate: bool = False
    event_id: str
    sync_run_id: Optional[UUID] = None
    message: str = ""


class WebhookDeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    entity_collection: str
    entity_id: Optional[str] = None
    store_id: Optional[str] = None
    status: str
    signature_verified: bool
    client_ip: Optional[str] = None
    sync_run_id: Optional[UUID] = None
    retry_count: int = 0
    error_message: Optional[str] = None
    received_at: datetime


class WebhookDeliveryList(BaseModel):
    success: bool = True
    total: int
    deliveries: List[WebhookDeliveryRead]


class WebhookHealth(BaseModel):
    status: str
    deliveries_last_hour: int
    details: Dict[str, Any] = {}


class WebhookRegisterRequest(BaseModel):
    """Запрос регистрации вебхуков; пустые поля берутся из настроек."""
    events: Optional[List[str]] = None
    base_url: Optional[str] = None
    prune: bool = False


class WebhookRegistrationItem(BaseModel):
    event: Optional[str] = None
    url: Optional[str] = None
    webhook_id: Optional[str] = None
    # registered, updated, unchanged, deleted, error
    action: str
    error: Optional[str] = None


class WebhookRegistrationResult(BaseModel):
    success: bool = True
    registered: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    errors: int = 0
    items: List[WebhookRegistrationItem] = []

    @classmethod
    def from_items(cls, items: List[WebhookRegistrationItem]) -> "WebhookRegistrationResult":
        counts = {action: sum(1 for i in items if i.action == action)
                  for action in ("registered", "updated", "unchanged", "deleted")}
        errors = sum(1 for i in items if i.action == "error")
        return cls(success=errors == 0, errors=errors, items=items, **counts)


class RemoteWebhookList(BaseModel):
    success: bool = True
    webhooks: List[Dict[str, Any]]
