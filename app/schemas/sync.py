from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime


class SyncResult(BaseModel):
    """Результат административной операции синхронизации."""
    success: bool
    run_id: Optional[UUID] = None
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class SyncRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_collection: str
    triggered_by: str
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    deleted_entity_id: Optional[str] = None
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    cursor_from: Optional[datetime] = None
    watermark: Optional[datetime] = None
    pages_fetched: int = 0
    records_fetched: int = 0
    records_upserted: int = 0
    records_deleted: int = 0
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SyncLockRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_key: str
    owner_token: str
    acquired_at: datetime
    expires_at: datetime


class SyncCursorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_collection: str
    last_synced_at: datetime
    last_status: str
    updated_at: datetime


class LastUpdateResponse(BaseModel):
    """Последнее обновление коллекции для клиентов, опрашивающих сервис."""
    success: bool = True
    collection: str
    last_update: Optional[SyncCursorRead] = None


class LastUpdateOverview(BaseModel):
    success: bool = True
    last_update: Optional[datetime] = None
    collections: Dict[str, Optional[SyncCursorRead]] = Field(default_factory=dict)


class LockStatusResponse(BaseModel):
    success: bool = True
    resource_key: str
    lock: Optional[SyncLockRead] = None


class SyncRunList(BaseModel):
    success: bool = True
    runs: List[SyncRunRead]
