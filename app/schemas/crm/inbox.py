from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.crm.enums import ContentType, PlatformType, SyncStatus

SENDABLE_CONTENT_TYPES = frozenset({ContentType.text, ContentType.image, ContentType.template})


class ContentDescriptor(BaseModel):
    """Canonical outbound content, translated to wire format by each connector."""

    type: ContentType = ContentType.text
    text: str | None = None
    url: str | None = Field(default=None, max_length=2000)
    preview_url: str | None = Field(default=None, max_length=2000)
    template: dict[str, Any] | None = None
    alt_text: str | None = Field(default=None, max_length=400)

    @model_validator(mode="after")
    def _require_payload_for_type(self):
        if self.type not in SENDABLE_CONTENT_TYPES:
            raise ValueError(f"Content type '{self.type.value}' cannot be sent.")
        if self.type == ContentType.text:
            text = (self.text or "").strip()
            if not text:
                raise ValueError("Text content requires a non-empty text.")
            self.text = text
        elif self.type == ContentType.image and not self.url:
            raise ValueError("Image content requires a url.")
        elif self.type == ContentType.template and not self.template:
            raise ValueError("Template content requires a template payload.")
        return self

    def summary(self) -> str | None:
        """Text stored on the local Message row."""
        if self.type == ContentType.text:
            return self.text
        if self.type == ContentType.image:
            return self.url
        return self.alt_text or self.text


class ProfileSnapshot(BaseModel):
    display_name: str | None = None
    avatar_url: str | None = None
    locale: str | None = None
    email: str | None = None
    phone: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Placeholder names ("Website visitor") never replace a real one.
    is_placeholder: bool = False
    # Platform-specific profile data kept on the customer-platform link.
    extra: dict[str, Any] = Field(default_factory=dict)


class DeliveryReceipt(BaseModel):
    platform_type: PlatformType
    recipient_id: str
    external_message_id: str | None = None
    message_id: UUID | None = None
    sent_at: datetime
    raw: dict[str, Any] | None = None


class SendMessageRequest(BaseModel):
    customer_id: UUID
    platform_type: PlatformType
    content: ContentDescriptor


class SendMessageResponse(BaseModel):
    message_id: UUID | None
    external_message_id: str | None
    status: str = "sent"


# --------------------------------------------------------------------------
# Webhook envelopes. Individual events stay raw dicts so one malformed event
# is isolated to its own processing scope.
# --------------------------------------------------------------------------


class LineWebhookPayload(BaseModel):
    destination: str | None = None
    events: list[Any]


class MetaWebhookEntry(BaseModel):
    id: str
    time: int | None = None
    messaging: list[Any] | None = None


class MetaWebhookPayload(BaseModel):
    object: Literal["page"]
    entry: list[MetaWebhookEntry]


class WebsiteWebhookPayload(BaseModel):
    site_id: str | None = None
    events: list[Any]


class WebhookResultRead(BaseModel):
    platform_type: PlatformType
    received: int
    processed: int
    skipped: int
    errors: list[dict[str, Any]]


class SyncStartResponse(BaseModel):
    sync_id: UUID


class SyncJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    platform_link_id: UUID
    platform_type: PlatformType
    status: SyncStatus
    cancelled: bool
    started_at: datetime
    finished_at: datetime | None = None
    customers_processed: int
    customers_created: int
    customers_updated: int
    customers_unchanged: int
    messages_processed: int
    messages_created: int
    messages_updated: int
    messages_unchanged: int
    errors: list[dict[str, Any]] | None = None
    error_message: str | None = None
