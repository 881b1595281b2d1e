"""Inbox entry points used by the HTTP layer."""

from __future__ import annotations

from collections.abc import Mapping

from sqlalchemy.orm import Session

from app.models.crm.customer import Customer, CustomerPlatform
from app.schemas.crm.inbox import ContentDescriptor, DeliveryReceipt
from app.services.common import coerce_uuid
from app.services.crm.inbox.connectors.base import WebhookResult
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.errors import CustomerNotFoundError, InboxNotFoundError
from app.services.crm.inbox.registry import ConnectorRegistry

logger = get_inbox_logger(__name__)


class InboxService:
    def __init__(self, registry: ConnectorRegistry):
        self.registry = registry

    def handle_webhook(
        self,
        db: Session,
        platform_type,
        raw_body: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResult:
        connector = self.registry.get(platform_type)
        return connector.handle_webhook(db, raw_body, headers)

    def verify_subscription(
        self,
        platform_type,
        mode: str | None,
        token: str | None,
        challenge: str | None,
    ) -> str:
        return self.registry.get(platform_type).verify_subscription(mode, token, challenge)

    def send_message(
        self,
        db: Session,
        customer_id,
        platform_type,
        content: ContentDescriptor,
    ) -> DeliveryReceipt:
        """Send to the customer's identity on ``platform_type``."""
        connector = self.registry.get(platform_type)
        try:
            customer = db.get(Customer, coerce_uuid(customer_id))
        except ValueError:
            customer = None
        if customer is None:
            raise CustomerNotFoundError(str(customer_id))
        link = (
            db.query(CustomerPlatform)
            .filter(CustomerPlatform.customer_id == customer.id)
            .filter(CustomerPlatform.platform_type == connector.platform_type)
            .order_by(CustomerPlatform.updated_at.desc())
            .first()
        )
        if link is None:
            raise InboxNotFoundError(
                "customer_platform_not_found",
                f"Customer {customer.id} has no {connector.platform_type.value} identity",
            )
        return connector.send_message(db, link.native_id, content)
