"""Connector base: the webhook/send/profile/sync contract shared by every platform.

A platform implementation supplies the wire-level pieces (signature check,
envelope parsing, event normalization, content encoding, delivery) and the
base class runs the pipeline around them.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.models.crm.customer import Customer
from app.models.crm.enums import ContentType, EventKind, MessageDirection, PlatformType
from app.schemas.crm.inbox import ContentDescriptor, DeliveryReceipt, ProfileSnapshot
from app.services.crm.inbox.clients.base import PlatformClientError
from app.services.crm.inbox.context import get_inbox_logger, set_request_id
from app.services.crm.inbox.errors import InvalidWebhookError, UnsupportedContentTypeError
from app.services.crm.inbox.normalizers import _normalize_external_id
from app.services.crm.inbox.observability import INBOUND_EVENTS, MESSAGE_PROCESSING_TIME, OUTBOUND_MESSAGES
from app.services.crm.inbox.reconciler import EntityReconciler

logger = get_inbox_logger(__name__)


@dataclass
class NormalizedEvent:
    native_sender_id: str | None
    event_kind: EventKind
    content: str | None = None
    content_type: ContentType = ContentType.text
    native_message_id: str | None = None
    timestamp: datetime | None = None
    event_id: str | None = None
    reply_token: str | None = None
    profile_hint: ProfileSnapshot | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def has_content(self) -> bool:
        return bool(self.content)


@dataclass
class RemoteMessage:
    native_message_id: str | None
    native_sender_id: str
    direction: MessageDirection
    content: str | None
    content_type: ContentType = ContentType.text
    timestamp: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookResult:
    platform_type: PlatformType
    received: int = 0
    processed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    message_ids: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


def _header(headers: Mapping[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _hmac_sha256(secret: str, body: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


class Connector:
    """One live adapter per platform type."""

    platform_type: PlatformType
    capabilities: frozenset[ContentType] = frozenset({ContentType.text})
    # Conversational platforms answer each inbound message straight away.
    sends_acknowledgement: bool = False
    placeholder_name = "Visitor"

    def __init__(
        self,
        client,
        reconciler: EntityReconciler,
        ack_text: str | None = None,
    ):
        self.client = client
        self.reconciler = reconciler
        self.ack_text = ack_text

    # ------------------------------------------------------------------
    # Platform hooks
    # ------------------------------------------------------------------

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str] | None) -> None:
        raise NotImplementedError

    def parse_events(self, payload: dict) -> list[dict]:
        """Validate the envelope and return the raw events in payload order."""
        raise NotImplementedError

    def normalize_event(self, raw_event: dict) -> NormalizedEvent | None:
        """Return None for events this connector deliberately ignores."""
        raise NotImplementedError

    def to_wire(self, content: ContentDescriptor) -> Any:
        raise NotImplementedError

    def deliver(self, native_recipient_id: str, wire, reply_token: str | None = None) -> tuple[str | None, dict]:
        """Send ``wire`` and return ``(native_message_id, raw_response)``."""
        raise NotImplementedError

    def fetch_profile(self, native_id: str) -> ProfileSnapshot:
        raise NotImplementedError

    def normalize_remote_customer(self, raw: dict) -> tuple[str, ProfileSnapshot]:
        raise NotImplementedError

    def normalize_remote_message(self, raw: dict) -> RemoteMessage:
        raise NotImplementedError

    def on_event(self, db: Session, event: NormalizedEvent, customer: Customer) -> None:
        """Side effects for non-message events (follow state, session end)."""

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def verify_subscription(self, mode: str | None, token: str | None, challenge: str | None) -> str:
        raise InvalidWebhookError(
            f"Platform '{self.platform_type.value}' has no subscription handshake",
            code="verification_unsupported",
        )

    def _check_hmac(self, secret: str | None, body: bytes, provided: str | None, expected: str) -> None:
        if not secret:
            raise InvalidWebhookError("Webhook secret is not configured", code="webhook_secret_missing")
        if not provided:
            raise InvalidWebhookError("Missing webhook signature", code="signature_missing")
        if not hmac.compare_digest(provided.strip().encode("utf-8"), expected.encode("utf-8")):
            raise InvalidWebhookError("Invalid webhook signature", code="signature_invalid")

    def _load_events(self, raw_body: bytes) -> list[dict]:
        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise InvalidWebhookError("Webhook body is not valid JSON", code="invalid_payload") from exc
        if not isinstance(payload, dict):
            raise InvalidWebhookError("Webhook body must be a JSON object", code="invalid_payload")
        try:
            return self.parse_events(payload)
        except ValidationError as exc:
            raise InvalidWebhookError(
                f"Webhook payload does not match the {self.platform_type.value} envelope",
                code="invalid_payload",
            ) from exc

    def handle_webhook(
        self,
        db: Session,
        raw_body: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResult:
        set_request_id()
        start = time.perf_counter()
        platform = self.platform_type.value
        # Rejection happens before any write.
        self.verify_signature(raw_body, headers)
        raw_events = self._load_events(raw_body)

        result = WebhookResult(platform_type=self.platform_type, received=len(raw_events))
        for index, raw_event in enumerate(raw_events):
            event_id = None
            customer_id = None
            try:
                if not isinstance(raw_event, dict):
                    raise ValueError("event is not an object")
                event = self.normalize_event(raw_event)
                if event is None:
                    result.skipped += 1
                    INBOUND_EVENTS.labels(platform_type=platform, status="skipped").inc()
                    continue
                event_id = event.event_id or event.native_message_id
                if not _normalize_external_id(event.native_sender_id):
                    raise ValueError("event has no sender id")
                customer = self._resolve_customer(db, event)
                customer_id = str(customer.id)
                self.on_event(db, event, customer)
                if event.has_content:
                    message = self.reconciler.upsert_message(
                        db,
                        self.platform_type,
                        event.native_message_id,
                        customer.id,
                        MessageDirection.inbound,
                        event.content,
                        timestamp=event.timestamp,
                        content_type=event.content_type,
                        metadata={"event_kind": event.event_kind.value, **event.metadata},
                    )
                    result.message_ids.append(str(message.id))
                result.processed += 1
                INBOUND_EVENTS.labels(platform_type=platform, status="success").inc()
            except Exception as exc:
                db.rollback()
                result.errors.append(
                    {
                        "index": index,
                        "event_id": event_id,
                        "customer_id": customer_id,
                        "reason": str(exc) or exc.__class__.__name__,
                    }
                )
                INBOUND_EVENTS.labels(platform_type=platform, status="error").inc()
                logger.warning(
                    "webhook_event_failed platform=%s index=%s event_id=%s customer_id=%s error=%s",
                    platform,
                    index,
                    event_id,
                    customer_id,
                    exc,
                )
                continue
            if event.has_content and event.event_kind != EventKind.postback:
                self._acknowledge(db, event)

        MESSAGE_PROCESSING_TIME.labels(platform_type=platform, direction="inbound").observe(
            time.perf_counter() - start
        )
        logger.info(
            "webhook_processed platform=%s received=%s processed=%s skipped=%s errors=%s",
            platform,
            result.received,
            result.processed,
            result.skipped,
            len(result.errors),
        )
        return result

    def _resolve_customer(self, db: Session, event: NormalizedEvent) -> Customer:
        link = self.reconciler.find_link(db, self.platform_type, event.native_sender_id)
        if link is not None and event.profile_hint is None:
            return link.customer
        profile = event.profile_hint
        if profile is None:
            profile = self.resolve_profile(event.native_sender_id)
        return self.reconciler.upsert_customer(db, self.platform_type, event.native_sender_id, profile)

    def _acknowledge(self, db: Session, event: NormalizedEvent) -> None:
        if not (self.sends_acknowledgement and self.ack_text):
            return
        try:
            self.send_message(
                db,
                event.native_sender_id,
                ContentDescriptor(text=self.ack_text),
                reply_token=event.reply_token,
            )
        except Exception as exc:
            db.rollback()
            logger.warning(
                "webhook_ack_failed platform=%s event_id=%s error=%s",
                self.platform_type.value,
                event.event_id,
                exc,
            )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def supports(self, content_type: ContentType) -> bool:
        return content_type in self.capabilities

    def send_message(
        self,
        db: Session,
        native_recipient_id: str,
        content: ContentDescriptor,
        reply_token: str | None = None,
    ) -> DeliveryReceipt:
        start = time.perf_counter()
        platform = self.platform_type.value
        if not self.supports(content.type):
            OUTBOUND_MESSAGES.labels(platform_type=platform, status="unsupported").inc()
            raise UnsupportedContentTypeError(platform, content.type.value)

        wire = self.to_wire(content)
        try:
            native_message_id, raw = self.deliver(native_recipient_id, wire, reply_token=reply_token)
        except PlatformClientError:
            OUTBOUND_MESSAGES.labels(platform_type=platform, status="failed").inc()
            raise
        receipt = DeliveryReceipt(
            platform_type=self.platform_type,
            recipient_id=native_recipient_id,
            external_message_id=_normalize_external_id(native_message_id),
            sent_at=datetime.now(UTC),
            raw=raw or None,
        )

        customer = self._resolve_customer(db, NormalizedEvent(native_recipient_id, EventKind.other))
        message = self.reconciler.upsert_message(
            db,
            self.platform_type,
            receipt.external_message_id,
            customer.id,
            MessageDirection.outbound,
            content.summary(),
            timestamp=receipt.sent_at,
            content_type=content.type,
            metadata={"delivery": receipt.model_dump(mode="json", exclude={"message_id"})},
        )
        receipt.message_id = message.id

        OUTBOUND_MESSAGES.labels(platform_type=platform, status="sent").inc()
        MESSAGE_PROCESSING_TIME.labels(platform_type=platform, direction="outbound").observe(
            time.perf_counter() - start
        )
        logger.info(
            "message_sent platform=%s recipient=%s message_id=%s external_id=%s",
            platform,
            native_recipient_id,
            message.id,
            receipt.external_message_id,
        )
        return receipt

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def placeholder_profile(self) -> ProfileSnapshot:
        return ProfileSnapshot(display_name=self.placeholder_name, is_placeholder=True)

    def resolve_profile(self, native_id: str) -> ProfileSnapshot:
        """Best-effort profile; a failed fetch degrades to the placeholder."""
        try:
            return self.fetch_profile(native_id)
        except PlatformClientError as exc:
            logger.warning(
                "profile_fetch_failed platform=%s native_id=%s error=%s",
                self.platform_type.value,
                native_id,
                exc,
            )
            return self.placeholder_profile()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _iter_pages(self, fetch, since: datetime | None, batch_size: int) -> Iterator[list[dict]]:
        cursor = None
        while True:
            items, next_cursor = fetch(since=since, cursor=cursor, limit=batch_size)
            if items:
                yield list(items)
            if not next_cursor or next_cursor == cursor:
                return
            cursor = next_cursor

    def iter_customer_batches(self, since: datetime | None, batch_size: int) -> Iterator[list[dict]]:
        return self._iter_pages(self.client.list_customers, since, batch_size)

    def iter_message_batches(self, since: datetime | None, batch_size: int) -> Iterator[list[dict]]:
        return self._iter_pages(self.client.list_messages, since, batch_size)
