"""Per-platform connectors."""

from app.services.crm.inbox.connectors.base import Connector, NormalizedEvent, RemoteMessage, WebhookResult
from app.services.crm.inbox.connectors.facebook import FacebookConnector
from app.services.crm.inbox.connectors.line import LineConnector
from app.services.crm.inbox.connectors.website import WebsiteConnector

__all__ = [
    "Connector",
    "FacebookConnector",
    "LineConnector",
    "NormalizedEvent",
    "RemoteMessage",
    "WebhookResult",
    "WebsiteConnector",
]
