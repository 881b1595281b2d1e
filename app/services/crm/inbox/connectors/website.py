"""Website chat widget connector."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.crm.customer import Customer
from app.models.crm.enums import ContentType, EventKind, MessageDirection, PlatformType
from app.schemas.crm.inbox import ContentDescriptor, ProfileSnapshot, WebsiteWebhookPayload
from app.services.crm.inbox.connectors.base import (
    Connector,
    NormalizedEvent,
    RemoteMessage,
    _header,
    _hmac_sha256,
)
from app.services.crm.inbox.normalizers import _coerce_timestamp, _normalize_external_id, _normalize_text

WIDGET_POLL_DELIVERY = {"delivery": "widget_poll"}


def _widget_message(value) -> tuple[EventKind, ContentType, str | None]:
    if isinstance(value, str):
        return EventKind.text, ContentType.text, _normalize_text(value)
    if not isinstance(value, dict):
        return EventKind.other, ContentType.other, None
    if value.get("type") == "image":
        return EventKind.image, ContentType.image, _normalize_text(value.get("url"))
    if value.get("type") == "file":
        return EventKind.message, ContentType.file, _normalize_text(value.get("url") or value.get("name"))
    return EventKind.text, ContentType.text, _normalize_text(value.get("text"))


class WebsiteConnector(Connector):
    """Widget visitors have no fetchable profile; identity comes from what they type in."""

    platform_type = PlatformType.website
    capabilities = frozenset({ContentType.text, ContentType.image})
    placeholder_name = "Website visitor"

    def __init__(self, client, reconciler, webhook_secret: str, ack_text: str | None = None):
        super().__init__(client, reconciler, ack_text=ack_text)
        self.webhook_secret = webhook_secret

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str] | None) -> None:
        expected = ""
        if self.webhook_secret:
            expected = _hmac_sha256(self.webhook_secret, raw_body).hex()
        self._check_hmac(self.webhook_secret, raw_body, _header(headers, "X-Webhook-Signature"), expected)

    def parse_events(self, payload: dict) -> list[dict]:
        return WebsiteWebhookPayload.model_validate(payload).events

    def _profile_hint(self, raw: dict) -> ProfileSnapshot | None:
        name = _normalize_text(raw.get("name"))
        email = _normalize_text(raw.get("email"))
        phone = _normalize_text(raw.get("phone"))
        if not (name or email or phone):
            return None
        return ProfileSnapshot(
            display_name=name or self.placeholder_name,
            email=email,
            phone=phone,
            is_placeholder=name is None,
        )

    def normalize_event(self, raw_event: dict) -> NormalizedEvent | None:
        event_type = raw_event.get("type")
        if not event_type:
            raise ValueError("event has no type")
        event = NormalizedEvent(
            native_sender_id=_normalize_external_id(raw_event.get("visitor_id")),
            event_kind=EventKind.other,
            timestamp=_coerce_timestamp(raw_event.get("timestamp")),
            event_id=_normalize_text(raw_event.get("id")),
            profile_hint=self._profile_hint(raw_event),
            raw=raw_event,
        )
        if raw_event.get("session_id"):
            event.metadata["session_id"] = raw_event["session_id"]
        if isinstance(raw_event.get("metadata"), dict):
            event.metadata.update(raw_event["metadata"])

        if event_type == "message":
            if "message" not in raw_event:
                raise ValueError("message event has no message body")
            event.event_kind, event.content_type, event.content = _widget_message(raw_event["message"])
            event.native_message_id = event.event_id
        elif event_type == "session_end":
            event.metadata["session_event"] = "session_end"
        elif event_type == "session_start":
            event.metadata["session_event"] = "session_start"
        return event

    def on_event(self, db: Session, event: NormalizedEvent, customer: Customer) -> None:
        session_event = event.metadata.get("session_event")
        if not session_event:
            return
        link = self.reconciler.find_link(db, self.platform_type, event.native_sender_id)
        if link is None:
            return
        when = event.timestamp.isoformat() if event.timestamp else None
        values = {"last_session_id": event.metadata.get("session_id")}
        if session_event == "session_end":
            values["session_ended_at"] = when
        else:
            values["session_started_at"] = when
        self.reconciler.update_link_data(db, link, **values)

    def to_wire(self, content: ContentDescriptor) -> dict:
        if content.type == ContentType.image:
            return {"type": "image", "url": content.url, "preview_url": content.preview_url}
        return {"type": "text", "text": content.text}

    def deliver(self, native_recipient_id: str, wire, reply_token: str | None = None) -> tuple[str | None, dict]:
        if self.client is None:
            # No widget backend configured; the widget polls stored outbound messages.
            return None, dict(WIDGET_POLL_DELIVERY)
        response = self.client.send_message(native_recipient_id, wire)
        return response.get("id"), response

    def fetch_profile(self, native_id: str) -> ProfileSnapshot:
        return self.placeholder_profile()

    def iter_customer_batches(self, since: datetime | None, batch_size: int) -> Iterator[list[dict]]:
        if self.client is None:
            return iter(())
        return super().iter_customer_batches(since, batch_size)

    def iter_message_batches(self, since: datetime | None, batch_size: int) -> Iterator[list[dict]]:
        if self.client is None:
            return iter(())
        return super().iter_message_batches(since, batch_size)

    def normalize_remote_customer(self, raw: dict) -> tuple[str, ProfileSnapshot]:
        native_id = _normalize_external_id(raw.get("visitor_id") or raw.get("id"))
        if not native_id:
            raise ValueError("remote visitor has no id")
        profile = self._profile_hint(raw) or self.placeholder_profile()
        if isinstance(raw.get("tags"), list):
            profile.tags = [str(tag) for tag in raw["tags"]]
        if isinstance(raw.get("metadata"), dict):
            profile.metadata = dict(raw["metadata"])
        return native_id, profile

    def normalize_remote_message(self, raw: dict) -> RemoteMessage:
        visitor = _normalize_external_id(raw.get("visitor_id"))
        if not visitor:
            raise ValueError("remote message has no visitor_id")
        _, content_type, content = _widget_message(raw.get("message", raw.get("text")))
        try:
            direction = MessageDirection(raw.get("direction") or "inbound")
        except ValueError as exc:
            raise ValueError(f"unknown message direction {raw.get('direction')!r}") from exc
        metadata = {}
        if raw.get("session_id"):
            metadata["session_id"] = raw["session_id"]
        return RemoteMessage(
            native_message_id=_normalize_external_id(raw.get("id")),
            native_sender_id=visitor,
            direction=direction,
            content=content,
            content_type=content_type,
            timestamp=_coerce_timestamp(raw.get("created_at") or raw.get("timestamp")),
            metadata=metadata,
        )
