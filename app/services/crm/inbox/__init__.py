"""CRM Inbox submodule.

Multi-platform ingestion and reconciliation: webhook and send handling per
platform, and background sync of platform history.

Submodules:
- reconciler: Idempotent customer/message upserts
- connectors: LINE, Facebook and website connectors
- clients: Thin HTTP clients for each platform API
- registry: Live connector per platform type
- sync: Cancellable background sync jobs
- service: Webhook and send entry points for the HTTP layer
"""

from app.services.crm.inbox.connectors import (
    Connector,
    FacebookConnector,
    LineConnector,
    WebhookResult,
    WebsiteConnector,
)
from app.services.crm.inbox.reconciler import EntityReconciler, UpsertOutcome
from app.services.crm.inbox.registry import ConnectorRegistry
from app.services.crm.inbox.service import InboxService
from app.services.crm.inbox.sync import SyncOrchestrator

__all__ = [
    "Connector",
    "ConnectorRegistry",
    "EntityReconciler",
    "FacebookConnector",
    "InboxService",
    "LineConnector",
    "SyncOrchestrator",
    "UpsertOutcome",
    "WebhookResult",
    "WebsiteConnector",
]
