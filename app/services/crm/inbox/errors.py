"""Unified error taxonomy for CRM inbox services."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException


@dataclass(frozen=True)
class InboxError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False

    def __str__(self) -> str:
        return self.detail

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.detail)


class InboxValidationError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class InboxNotFoundError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404, retryable=False)


class InboxConfigError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class InvalidWebhookError(InboxError):
    def __init__(self, detail: str, code: str = "invalid_webhook"):
        super().__init__(code=code, detail=detail, status_code=401, retryable=False)


class UnsupportedContentTypeError(InboxValidationError):
    def __init__(self, platform: str, content_type: str):
        super().__init__(
            "unsupported_content_type",
            f"Platform '{platform}' cannot send '{content_type}' content",
        )


class UnregisteredPlatformError(InboxNotFoundError):
    def __init__(self, platform: str):
        super().__init__("unregistered_platform", f"No connector registered for platform '{platform}'")


class PlatformNotFoundError(InboxNotFoundError):
    def __init__(self, platform_link_id: str):
        super().__init__("platform_not_found", f"Platform link not found: {platform_link_id}")


class SyncNotFoundError(InboxNotFoundError):
    def __init__(self, sync_id: str):
        super().__init__("sync_not_found", f"Sync job not found: {sync_id}")


class CustomerNotFoundError(InboxNotFoundError):
    def __init__(self, customer_id: str):
        super().__init__("customer_not_found", f"Customer not found: {customer_id}")


def as_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, InboxError):
        return exc.to_http_exception()
    if isinstance(exc, HTTPException):
        return exc
    return HTTPException(status_code=500, detail=str(exc) or "Inbox error")
