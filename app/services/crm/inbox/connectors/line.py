"""LINE Messaging API connector."""

from __future__ import annotations

import base64
from collections.abc import Mapping

from sqlalchemy.orm import Session

from app.models.crm.customer import Customer
from app.models.crm.enums import ContentType, EventKind, MessageDirection, PlatformType
from app.schemas.crm.inbox import ContentDescriptor, LineWebhookPayload, ProfileSnapshot
from app.services.crm.inbox.connectors.base import (
    Connector,
    NormalizedEvent,
    RemoteMessage,
    _header,
    _hmac_sha256,
)
from app.services.crm.inbox.normalizers import _coerce_timestamp, _normalize_external_id, _normalize_text

_MESSAGE_KINDS = {
    "text": (EventKind.text, ContentType.text),
    "image": (EventKind.image, ContentType.image),
    "video": (EventKind.message, ContentType.video),
    "audio": (EventKind.message, ContentType.audio),
    "file": (EventKind.message, ContentType.file),
    "location": (EventKind.message, ContentType.location),
    "sticker": (EventKind.message, ContentType.sticker),
}

_MEMBERSHIP_EVENTS = {"join", "leave", "memberJoined", "memberLeft"}


def _message_content(message: dict) -> str | None:
    message_type = message.get("type")
    if message_type == "text":
        return _normalize_text(message.get("text"))
    if message_type in ("image", "video", "audio"):
        provider = message.get("contentProvider") or {}
        url = provider.get("originalContentUrl")
        return url or f"[{message_type}]"
    if message_type == "file":
        return _normalize_text(message.get("fileName")) or "[file]"
    if message_type == "location":
        parts = [message.get("title"), message.get("address")]
        label = ", ".join(str(part) for part in parts if part)
        return label or f"{message.get('latitude')},{message.get('longitude')}"
    if message_type == "sticker":
        return f"[sticker {message.get('packageId')}/{message.get('stickerId')}]"
    return None


class LineConnector(Connector):
    platform_type = PlatformType.line
    capabilities = frozenset({ContentType.text, ContentType.image, ContentType.template})
    sends_acknowledgement = True
    placeholder_name = "LINE user"

    def __init__(self, client, reconciler, channel_secret: str, ack_text: str | None = None):
        super().__init__(client, reconciler, ack_text=ack_text)
        self.channel_secret = channel_secret

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str] | None) -> None:
        expected = ""
        if self.channel_secret:
            expected = base64.b64encode(_hmac_sha256(self.channel_secret, raw_body)).decode("ascii")
        self._check_hmac(self.channel_secret, raw_body, _header(headers, "X-Line-Signature"), expected)

    def parse_events(self, payload: dict) -> list[dict]:
        return LineWebhookPayload.model_validate(payload).events

    def normalize_event(self, raw_event: dict) -> NormalizedEvent | None:
        event_type = raw_event.get("type")
        if not event_type:
            raise ValueError("event has no type")
        source = raw_event.get("source") or {}
        sender = source.get("userId") or source.get("groupId") or source.get("roomId")
        event = NormalizedEvent(
            native_sender_id=_normalize_external_id(sender),
            event_kind=EventKind.other,
            timestamp=_coerce_timestamp(raw_event.get("timestamp")),
            event_id=raw_event.get("webhookEventId"),
            reply_token=raw_event.get("replyToken"),
            raw=raw_event,
        )
        if source.get("type") in ("group", "room"):
            event.metadata["source"] = {key: value for key, value in source.items() if key != "type"}

        if event_type == "message":
            message = raw_event.get("message")
            if not isinstance(message, dict):
                raise ValueError("message event has no message body")
            event.event_kind, event.content_type = _MESSAGE_KINDS.get(
                message.get("type"), (EventKind.message, ContentType.other)
            )
            event.native_message_id = _normalize_external_id(message.get("id"))
            event.content = _message_content(message)
        elif event_type == "postback":
            event.event_kind = EventKind.postback
            event.content_type = ContentType.postback
            event.content = _normalize_text((raw_event.get("postback") or {}).get("data"))
        elif event_type == "follow":
            event.event_kind = EventKind.follow
        elif event_type == "unfollow":
            event.event_kind = EventKind.unfollow
        elif event_type in _MEMBERSHIP_EVENTS:
            event.event_kind = EventKind.membership
            event.metadata["membership"] = event_type
        return event

    def on_event(self, db: Session, event: NormalizedEvent, customer: Customer) -> None:
        if event.event_kind not in (EventKind.follow, EventKind.unfollow):
            return
        link = self.reconciler.find_link(db, self.platform_type, event.native_sender_id)
        if link is None:
            return
        when = event.timestamp.isoformat() if event.timestamp else None
        self.reconciler.update_link_data(
            db,
            link,
            following=event.event_kind == EventKind.follow,
            follow_changed_at=when,
        )

    def to_wire(self, content: ContentDescriptor) -> dict:
        if content.type == ContentType.image:
            return {
                "type": "image",
                "originalContentUrl": content.url,
                "previewImageUrl": content.preview_url or content.url,
            }
        if content.type == ContentType.template:
            return {
                "type": "template",
                "altText": content.alt_text or content.text or "Template message",
                "template": content.template,
            }
        return {"type": "text", "text": content.text}

    def deliver(self, native_recipient_id: str, wire, reply_token: str | None = None) -> tuple[str | None, dict]:
        if reply_token:
            response = self.client.reply_message(reply_token, [wire])
        else:
            response = self.client.push_message(native_recipient_id, [wire])
        sent = response.get("sentMessages") or []
        native_id = sent[0].get("id") if sent and isinstance(sent[0], dict) else None
        return native_id, response

    def fetch_profile(self, native_id: str) -> ProfileSnapshot:
        data = self.client.get_profile(native_id)
        extra = {}
        if data.get("statusMessage"):
            extra["status_message"] = data["statusMessage"]
        return ProfileSnapshot(
            display_name=_normalize_text(data.get("displayName")),
            avatar_url=_normalize_text(data.get("pictureUrl")),
            locale=_normalize_text(data.get("language")),
            extra=extra,
        )

    def normalize_remote_customer(self, raw: dict) -> tuple[str, ProfileSnapshot]:
        native_id = _normalize_external_id(raw.get("userId"))
        if not native_id:
            raise ValueError("remote customer has no userId")
        return native_id, self.resolve_profile(native_id)

    def normalize_remote_message(self, raw: dict) -> RemoteMessage:
        # LINE exposes no history; stored webhook events are replayed in the same shape.
        event = self.normalize_event(raw)
        if event is None or not event.native_sender_id:
            raise ValueError("remote message has no sender")
        return RemoteMessage(
            native_message_id=event.native_message_id,
            native_sender_id=event.native_sender_id,
            direction=MessageDirection.inbound,
            content=event.content,
            content_type=event.content_type,
            timestamp=event.timestamp,
            metadata={"event_kind": event.event_kind.value, **event.metadata},
        )
