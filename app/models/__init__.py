from app.models.crm import (  # noqa: F401
    ContentType,
    Customer,
    CustomerPlatform,
    CustomerStatus,
    EventKind,
    Message,
    MessageDirection,
    PlatformType,
    SyncJob,
    SyncStatus,
)
