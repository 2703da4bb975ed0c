from .webhooks import (
    WebhookEnvelope,
    WebhookAcceptResponse,
    WebhookDeliveryRead,
    WebhookDeliveryList,
    WebhookHealth,
)
from .sync import (
    SyncResult,
    SyncRunRead,
    SyncLockRead,
    SyncCursorRead,
    LastUpdateResponse,
    LastUpdateOverview,
    LockStatusResponse,
    SyncRunList,
)

__all__ = [
    "WebhookEnvelope",
    "WebhookAcceptResponse",
    "WebhookDeliveryRead",
    "WebhookDeliveryList",
    "WebhookHealth",
    "SyncResult",
    "SyncRunRead",
    "SyncLockRead",
    "SyncCursorRead",
    "LastUpdateResponse",
    "LastUpdateOverview",
    "LockStatusResponse",
    "SyncRunList",
]
