"""Idempotent create-or-update of customers and messages.

Every write to ``Customer``, ``CustomerPlatform`` and ``Message`` made by
webhooks, outbound sends and sync jobs goes through ``EntityReconciler``.
Identity is the ``(platform_type, native_id)`` pair for customers and the
``(platform_type, external_id)`` pair for messages; both are backed by unique
constraints, and a lost insert race is resolved by rolling back and merging
into the row that won.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.crm.customer import Customer, CustomerPlatform
from app.models.crm.conversation import Message
from app.models.crm.enums import ContentType, CustomerStatus, MessageDirection, PlatformType
from app.schemas.crm.inbox import ProfileSnapshot
from app.services.common import coerce_uuid
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.errors import CustomerNotFoundError, InboxValidationError
from app.services.crm.inbox.normalizers import (
    _coerce_timestamp,
    _normalize_email_address,
    _normalize_external_id,
    _normalize_phone_address,
    _normalize_text,
)

logger = get_inbox_logger(__name__)


@dataclass
class UpsertOutcome:
    """Result of a reconcile call; ``changed`` is False for a no-op touch."""

    record: Any
    created: bool = False
    changed: bool = False


def _fallback_display_name(platform_type: PlatformType, native_id: str) -> str:
    return f"{platform_type.value.title()} user {native_id[:8]}"


def _set_if_changed(obj, attr: str, value) -> bool:
    if value is None or getattr(obj, attr) == value:
        return False
    setattr(obj, attr, value)
    return True


class EntityReconciler:
    """Create-or-update logic keyed by platform-native identifiers."""

    def find_link(self, db: Session, platform_type: PlatformType, native_id) -> CustomerPlatform | None:
        native = _normalize_external_id(native_id)
        if not native:
            return None
        return (
            db.query(CustomerPlatform)
            .filter(CustomerPlatform.platform_type == platform_type)
            .filter(CustomerPlatform.native_id == native)
            .first()
        )

    def find_message(self, db: Session, platform_type: PlatformType, native_message_id) -> Message | None:
        external_id = _normalize_external_id(native_message_id)
        if not external_id:
            return None
        return (
            db.query(Message)
            .filter(Message.platform_type == platform_type)
            .filter(Message.external_id == external_id)
            .first()
        )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def upsert_customer(
        self,
        db: Session,
        platform_type: PlatformType,
        native_id,
        profile: ProfileSnapshot | None = None,
    ) -> Customer:
        return self.reconcile_customer(db, platform_type, native_id, profile).record

    def reconcile_customer(
        self,
        db: Session,
        platform_type: PlatformType,
        native_id,
        profile: ProfileSnapshot | None = None,
    ) -> UpsertOutcome:
        native = _normalize_external_id(native_id)
        if not native:
            raise InboxValidationError("invalid_native_id", "Platform native id is required")
        profile = profile or ProfileSnapshot()

        link = self.find_link(db, platform_type, native)
        if link:
            return self._merge_existing(db, link, profile)

        display_name = _normalize_text(profile.display_name) or _fallback_display_name(platform_type, native)
        customer = Customer(
            display_name=display_name,
            email=_normalize_email_address(profile.email),
            phone=_normalize_phone_address(profile.phone),
            tags=list(dict.fromkeys(profile.tags)),
            metadata_=dict(profile.metadata),
            status=CustomerStatus.active,
        )
        link = CustomerPlatform(
            customer=customer,
            platform_type=platform_type,
            native_id=native,
            display_name=None if profile.is_placeholder else _normalize_text(profile.display_name),
            avatar_url=_normalize_text(profile.avatar_url),
            locale=_normalize_text(profile.locale),
            platform_data=dict(profile.extra),
        )
        db.add(customer)
        db.add(link)
        try:
            db.commit()
        except IntegrityError:
            # Another writer created the link first; merge into theirs.
            db.rollback()
            link = self.find_link(db, platform_type, native)
            if link is None:
                raise
            logger.info("customer_link_race platform=%s native_id=%s", platform_type.value, native)
            return self._merge_existing(db, link, profile)
        db.refresh(customer)
        logger.info(
            "customer_created customer_id=%s platform=%s native_id=%s",
            customer.id,
            platform_type.value,
            native,
        )
        return UpsertOutcome(customer, created=True, changed=True)

    def _merge_existing(self, db: Session, link: CustomerPlatform, profile: ProfileSnapshot) -> UpsertOutcome:
        customer = link.customer
        changed = self._merge_profile(customer, link, profile)
        if changed:
            db.commit()
            db.refresh(customer)
        return UpsertOutcome(customer, created=False, changed=changed)

    def _merge_profile(self, customer: Customer, link: CustomerPlatform, profile: ProfileSnapshot) -> bool:
        """Apply non-empty profile fields; an empty incoming value never clears a stored one."""
        changed = False
        name = _normalize_text(profile.display_name)
        if name and not profile.is_placeholder:
            changed |= _set_if_changed(customer, "display_name", name)
            changed |= _set_if_changed(link, "display_name", name)
        elif name and not customer.display_name:
            changed |= _set_if_changed(customer, "display_name", name)
        changed |= _set_if_changed(customer, "email", _normalize_email_address(profile.email))
        changed |= _set_if_changed(customer, "phone", _normalize_phone_address(profile.phone))
        changed |= _set_if_changed(link, "avatar_url", _normalize_text(profile.avatar_url))
        changed |= _set_if_changed(link, "locale", _normalize_text(profile.locale))

        if profile.tags:
            tags = list(dict.fromkeys([*(customer.tags or []), *profile.tags]))
            changed |= _set_if_changed(customer, "tags", tags)
        if profile.metadata:
            # JSON columns are reassigned, never mutated in place.
            changed |= _set_if_changed(customer, "metadata_", {**(customer.metadata_ or {}), **profile.metadata})
        if profile.extra:
            changed |= _set_if_changed(link, "platform_data", {**(link.platform_data or {}), **profile.extra})
        return changed

    def update_link_data(self, db: Session, link: CustomerPlatform, **values) -> bool:
        """Merge ``values`` into the link's platform data."""
        merged = {**(link.platform_data or {}), **values}
        if not _set_if_changed(link, "platform_data", merged):
            return False
        db.commit()
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def upsert_message(
        self,
        db: Session,
        platform_type: PlatformType,
        native_message_id,
        customer_id,
        direction: MessageDirection,
        content: str | None,
        timestamp=None,
        content_type: ContentType = ContentType.text,
        metadata: dict | None = None,
    ) -> Message:
        return self.reconcile_message(
            db,
            platform_type,
            native_message_id,
            customer_id,
            direction,
            content,
            timestamp=timestamp,
            content_type=content_type,
            metadata=metadata,
        ).record

    def reconcile_message(
        self,
        db: Session,
        platform_type: PlatformType,
        native_message_id,
        customer_id,
        direction: MessageDirection,
        content: str | None,
        timestamp=None,
        content_type: ContentType = ContentType.text,
        metadata: dict | None = None,
    ) -> UpsertOutcome:
        try:
            customer = db.get(Customer, coerce_uuid(customer_id))
        except ValueError:
            customer = None
        if customer is None:
            raise CustomerNotFoundError(str(customer_id))

        external_id = _normalize_external_id(native_message_id)
        sent_at = _coerce_timestamp(timestamp) or datetime.now(UTC)

        if external_id:
            existing = self.find_message(db, platform_type, external_id)
            if existing:
                return self._update_message(db, existing, content, content_type, metadata)

        message = Message(
            customer_id=customer.id,
            platform_type=platform_type,
            external_id=external_id,
            direction=direction,
            content_type=content_type,
            content=content,
            is_read=direction == MessageDirection.outbound,
            metadata_=dict(metadata or {}),
            created_at=sent_at,
        )
        db.add(message)
        if direction == MessageDirection.inbound:
            self._touch_interaction(customer, sent_at)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = self.find_message(db, platform_type, external_id)
            if existing is None:
                raise
            return self._update_message(db, existing, content, content_type, metadata)
        db.refresh(message)
        return UpsertOutcome(message, created=True, changed=True)

    def _update_message(
        self,
        db: Session,
        message: Message,
        content: str | None,
        content_type: ContentType,
        metadata: dict | None,
    ) -> UpsertOutcome:
        changed = _set_if_changed(message, "content", content)
        changed |= _set_if_changed(message, "content_type", content_type)
        if metadata:
            changed |= _set_if_changed(message, "metadata_", {**(message.metadata_ or {}), **metadata})
        if changed:
            db.commit()
            db.refresh(message)
        return UpsertOutcome(message, created=False, changed=changed)

    @staticmethod
    def _touch_interaction(customer: Customer, when: datetime) -> None:
        current = _coerce_timestamp(customer.last_interaction_at)
        if current is None or when > current:
            customer.last_interaction_at = when
