"""Thin remote clients for each messaging platform."""

from app.services.crm.inbox.clients.base import (
    PlatformAuthError,
    PlatformClientError,
    PlatformHttpClient,
    PlatformRateLimitError,
    PlatformResourceNotFoundError,
    PlatformTransientError,
)
from app.services.crm.inbox.clients.line import LineClient
from app.services.crm.inbox.clients.meta import MetaGraphClient
from app.services.crm.inbox.clients.website import WebsiteClient

__all__ = [
    "LineClient",
    "MetaGraphClient",
    "PlatformAuthError",
    "PlatformClientError",
    "PlatformHttpClient",
    "PlatformRateLimitError",
    "PlatformResourceNotFoundError",
    "PlatformTransientError",
    "WebsiteClient",
]
