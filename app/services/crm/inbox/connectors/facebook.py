"""Facebook Messenger connector (Meta Graph API)."""

from __future__ import annotations

import hmac
from collections.abc import Mapping

from app.models.crm.enums import ContentType, EventKind, MessageDirection, PlatformType
from app.schemas.crm.inbox import ContentDescriptor, MetaWebhookPayload, ProfileSnapshot
from app.services.crm.inbox.connectors.base import (
    Connector,
    NormalizedEvent,
    RemoteMessage,
    _header,
    _hmac_sha256,
)
from app.services.crm.inbox.errors import InvalidWebhookError
from app.services.crm.inbox.normalizers import _coerce_timestamp, _normalize_external_id, _normalize_text

_ATTACHMENT_KINDS = {
    "image": (EventKind.image, ContentType.image),
    "video": (EventKind.message, ContentType.video),
    "audio": (EventKind.message, ContentType.audio),
    "file": (EventKind.message, ContentType.file),
    "location": (EventKind.message, ContentType.location),
    "template": (EventKind.message, ContentType.template),
}

# Delivery/read receipts and our own echoes carry no customer content.
_IGNORED_EVENTS = ("read", "delivery", "reaction")


def _attachment_content(attachment: dict) -> str | None:
    payload = attachment.get("payload") or {}
    if attachment.get("type") == "location":
        coordinates = payload.get("coordinates") or {}
        if coordinates:
            return f"{coordinates.get('lat')},{coordinates.get('long')}"
    return _normalize_text(payload.get("url")) or f"[{attachment.get('type') or 'attachment'}]"


class FacebookConnector(Connector):
    platform_type = PlatformType.facebook
    capabilities = frozenset({ContentType.text, ContentType.image, ContentType.template})
    sends_acknowledgement = True
    placeholder_name = "Facebook user"

    def __init__(
        self,
        client,
        reconciler,
        app_secret: str,
        verify_token: str,
        page_id: str | None = None,
        ack_text: str | None = None,
    ):
        super().__init__(client, reconciler, ack_text=ack_text)
        self.app_secret = app_secret
        self.verify_token = verify_token
        self.page_id = page_id

    def verify_subscription(self, mode: str | None, token: str | None, challenge: str | None) -> str:
        if mode != "subscribe" or not token or not challenge:
            raise InvalidWebhookError("Webhook verification request is incomplete", code="verification_failed")
        if not self.verify_token:
            raise InvalidWebhookError("Webhook verify token mismatch", code="verification_failed")
        if not hmac.compare_digest(token.encode("utf-8"), self.verify_token.encode("utf-8")):
            raise InvalidWebhookError("Webhook verify token mismatch", code="verification_failed")
        return challenge

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str] | None) -> None:
        expected = ""
        if self.app_secret:
            expected = "sha256=" + _hmac_sha256(self.app_secret, raw_body).hex()
        self._check_hmac(self.app_secret, raw_body, _header(headers, "X-Hub-Signature-256"), expected)

    def parse_events(self, payload: dict) -> list[dict]:
        envelope = MetaWebhookPayload.model_validate(payload)
        events: list = []
        for entry in envelope.entry:
            events.extend(entry.messaging or [])
        return events

    def normalize_event(self, raw_event: dict) -> NormalizedEvent | None:
        if any(key in raw_event for key in _IGNORED_EVENTS):
            return None
        sender = (raw_event.get("sender") or {}).get("id")
        event = NormalizedEvent(
            native_sender_id=_normalize_external_id(sender),
            event_kind=EventKind.other,
            timestamp=_coerce_timestamp(raw_event.get("timestamp")),
            raw=raw_event,
        )

        if "message" in raw_event:
            message = raw_event.get("message")
            if not isinstance(message, dict):
                raise ValueError("message event has no message body")
            if message.get("is_echo"):
                return None
            event.native_message_id = _normalize_external_id(message.get("mid"))
            event.event_id = event.native_message_id
            text = _normalize_text(message.get("text"))
            attachments = [item for item in message.get("attachments") or [] if isinstance(item, dict)]
            quick_reply = message.get("quick_reply") or {}
            if quick_reply.get("payload"):
                event.metadata["quick_reply_payload"] = quick_reply["payload"]
            if text:
                event.event_kind, event.content_type = EventKind.text, ContentType.text
                event.content = text
            elif attachments:
                first = attachments[0]
                event.event_kind, event.content_type = _ATTACHMENT_KINDS.get(
                    first.get("type"), (EventKind.message, ContentType.other)
                )
                event.content = _attachment_content(first)
            if attachments:
                event.metadata["attachments"] = [
                    {"type": item.get("type"), "url": (item.get("payload") or {}).get("url")} for item in attachments
                ]
        elif "postback" in raw_event:
            postback = raw_event.get("postback") or {}
            event.event_kind = EventKind.postback
            event.content_type = ContentType.postback
            event.native_message_id = _normalize_external_id(postback.get("mid"))
            event.event_id = event.native_message_id
            event.content = _normalize_text(postback.get("title")) or _normalize_text(postback.get("payload"))
            if postback.get("payload"):
                event.metadata["postback_payload"] = postback["payload"]
        return event

    def to_wire(self, content: ContentDescriptor) -> dict:
        if content.type == ContentType.image:
            return {"attachment": {"type": "image", "payload": {"url": content.url, "is_reusable": True}}}
        if content.type == ContentType.template:
            return {"attachment": {"type": "template", "payload": content.template}}
        return {"text": content.text}

    def deliver(self, native_recipient_id: str, wire, reply_token: str | None = None) -> tuple[str | None, dict]:
        response = self.client.send_message(native_recipient_id, wire)
        return response.get("message_id"), response

    def fetch_profile(self, native_id: str) -> ProfileSnapshot:
        data = self.client.get_profile(native_id)
        name = _normalize_text(data.get("name"))
        if not name:
            parts = [data.get("first_name"), data.get("last_name")]
            name = _normalize_text(" ".join(str(part) for part in parts if part))
        return ProfileSnapshot(
            display_name=name,
            avatar_url=_normalize_text(data.get("profile_pic")),
            locale=_normalize_text(data.get("locale")),
        )

    def normalize_remote_customer(self, raw: dict) -> tuple[str, ProfileSnapshot]:
        native_id = _normalize_external_id(raw.get("id"))
        if not native_id:
            raise ValueError("conversation participant has no id")
        return native_id, ProfileSnapshot(
            display_name=_normalize_text(raw.get("name")),
            email=_normalize_text(raw.get("email")),
        )

    def normalize_remote_message(self, raw: dict) -> RemoteMessage:
        sender = (raw.get("from") or {}).get("id")
        if not sender:
            raise ValueError("remote message has no sender")
        direction = MessageDirection.inbound
        customer_id = sender
        if self.page_id and str(sender) == str(self.page_id):
            direction = MessageDirection.outbound
            recipients = (raw.get("to") or {}).get("data") or []
            customer_id = recipients[0].get("id") if recipients else None
            if not customer_id:
                raise ValueError("outbound remote message has no recipient")

        content = _normalize_text(raw.get("message"))
        content_type = ContentType.text
        if not content:
            attachments = (raw.get("attachments") or {}).get("data") or []
            if attachments:
                attachment = attachments[0]
                image_url = (attachment.get("image_data") or {}).get("url")
                if image_url:
                    content, content_type = image_url, ContentType.image
                else:
                    content, content_type = attachment.get("file_url") or "[attachment]", ContentType.file

        metadata = {}
        if raw.get("conversation_id"):
            metadata["conversation_id"] = raw["conversation_id"]
        return RemoteMessage(
            native_message_id=_normalize_external_id(raw.get("id")),
            native_sender_id=str(customer_id),
            direction=direction,
            content=content,
            content_type=content_type,
            timestamp=_coerce_timestamp(raw.get("created_time")),
            metadata=metadata,
        )
