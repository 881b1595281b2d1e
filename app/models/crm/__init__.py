from app.models.crm.conversation import Message
from app.models.crm.customer import Customer, CustomerPlatform
from app.models.crm.enums import (
    TERMINAL_SYNC_STATUSES,
    ContentType,
    CustomerStatus,
    EventKind,
    MessageDirection,
    PlatformType,
    SyncStatus,
)
from app.models.crm.sync import SyncJob

__all__ = [
    "TERMINAL_SYNC_STATUSES",
    "ContentType",
    "Customer",
    "CustomerPlatform",
    "CustomerStatus",
    "EventKind",
    "Message",
    "MessageDirection",
    "PlatformType",
    "SyncJob",
    "SyncStatus",
]
