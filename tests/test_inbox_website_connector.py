"""Tests for the website chat widget connector."""

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest

from app.models.crm.conversation import Message
from app.models.crm.customer import Customer
from app.models.crm.enums import ContentType, MessageDirection, PlatformType
from app.schemas.crm.inbox import ContentDescriptor
from app.services.crm.inbox.connectors import WebsiteConnector
from app.services.crm.inbox.errors import InvalidWebhookError, UnsupportedContentTypeError
from tests.conftest import WEBSITE_SECRET


def _body(*events):
    return json.dumps({"site_id": "main", "events": list(events)}).encode("utf-8")


def _sign(body: bytes, secret: str = WEBSITE_SECRET) -> dict:
    return {"X-Webhook-Signature": hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()}


def _message(visitor_id="v-1", event_id="w-1", message="Hello from the site", **extra):
    return {
        "type": "message",
        "id": event_id,
        "visitor_id": visitor_id,
        "session_id": "s-1",
        "timestamp": "2026-01-05T10:00:00Z",
        "message": message,
        **extra,
    }


class TestWebhook:
    def test_bad_signature_is_rejected(self, db_session, website_connector):
        body = _body(_message())
        with pytest.raises(InvalidWebhookError):
            website_connector.handle_webhook(db_session, body, _sign(body, "nope"))
        assert db_session.query(Customer).count() == 0

    def test_missing_secret_rejects_everything(self, db_session, reconciler):
        connector = WebsiteConnector(None, reconciler, webhook_secret="")
        body = _body(_message())
        with pytest.raises(InvalidWebhookError) as exc_info:
            connector.handle_webhook(db_session, body, _sign(body))
        assert exc_info.value.code == "webhook_secret_missing"

    def test_visitor_details_become_the_profile(self, db_session, website_connector):
        body = _body(_message(name="Grace", email="Grace@Example.com"))
        result = website_connector.handle_webhook(db_session, body, _sign(body))

        assert result.processed == 1
        customer = db_session.query(Customer).one()
        assert customer.display_name == "Grace"
        assert customer.email == "grace@example.com"

    def test_anonymous_visitor_gets_placeholder_name(self, db_session, website_connector):
        body = _body(_message())
        website_connector.handle_webhook(db_session, body, _sign(body))
        assert db_session.query(Customer).one().display_name == "Website visitor"

    def test_later_name_replaces_placeholder(self, db_session, website_connector):
        first = _body(_message(email="h@example.com"))
        website_connector.handle_webhook(db_session, first, _sign(first))
        second = _body({"type": "visitor_info", "id": "w-2", "visitor_id": "v-1", "name": "Hana"})
        website_connector.handle_webhook(db_session, second, _sign(second))

        customer = db_session.query(Customer).one()
        assert customer.display_name == "Hana"
        assert customer.email == "h@example.com"

    def test_no_acknowledgement_is_sent(self, db_session, website_connector):
        body = _body(_message())
        website_connector.handle_webhook(db_session, body, _sign(body))
        assert db_session.query(Message).filter(Message.direction == MessageDirection.outbound).count() == 0

    def test_structured_image_message(self, db_session, website_connector):
        body = _body(_message(message={"type": "image", "url": "https://site.example/upload.png"}))
        website_connector.handle_webhook(db_session, body, _sign(body))
        message = db_session.query(Message).one()
        assert message.content_type == ContentType.image
        assert message.content == "https://site.example/upload.png"
        assert message.metadata_["session_id"] == "s-1"

    def test_session_end_is_recorded_on_link(self, db_session, website_connector, reconciler):
        body = _body(
            _message(),
            {"type": "session_end", "id": "w-9", "visitor_id": "v-1", "session_id": "s-1", "timestamp": 1767607200},
        )
        result = website_connector.handle_webhook(db_session, body, _sign(body))

        assert result.processed == 2
        link = reconciler.find_link(db_session, PlatformType.website, "v-1")
        assert link.platform_data["last_session_id"] == "s-1"
        assert link.platform_data["session_ended_at"].startswith("2026-01-05T")

    def test_message_event_without_body_is_an_error(self, db_session, website_connector):
        body = _body({"type": "message", "id": "w-3", "visitor_id": "v-2"}, _message())
        result = website_connector.handle_webhook(db_session, body, _sign(body))
        assert result.processed == 1
        assert result.errors[0]["event_id"] is None
        assert "message body" in result.errors[0]["reason"]

    def test_has_no_subscription_handshake(self, website_connector):
        with pytest.raises(InvalidWebhookError) as exc_info:
            website_connector.verify_subscription("subscribe", "token", "challenge")
        assert exc_info.value.code == "verification_unsupported"


class TestSendMessage:
    def test_template_is_rejected_before_delivery(self, db_session, reconciler):
        client = MagicMock()
        connector = WebsiteConnector(client, reconciler, webhook_secret=WEBSITE_SECRET)
        with pytest.raises(UnsupportedContentTypeError) as exc_info:
            connector.send_message(
                db_session,
                "v-1",
                ContentDescriptor(type=ContentType.template, template={"kind": "card"}),
            )
        assert exc_info.value.code == "unsupported_content_type"
        client.send_message.assert_not_called()
        assert db_session.query(Message).count() == 0
        assert db_session.query(Customer).count() == 0

    def test_without_backend_message_is_stored_for_widget_polling(self, db_session, website_connector):
        receipt = website_connector.send_message(db_session, "v-5", ContentDescriptor(text="We'll be right with you"))

        assert receipt.external_message_id is None
        assert receipt.raw == {"delivery": "widget_poll"}
        message = db_session.get(Message, receipt.message_id)
        assert message.direction == MessageDirection.outbound
        assert message.content == "We'll be right with you"
        assert db_session.query(Customer).one().display_name == "Website visitor"

    def test_backend_delivery_uses_returned_id(self, db_session, reconciler):
        client = MagicMock()
        client.send_message.return_value = {"id": "srv-42"}
        connector = WebsiteConnector(client, reconciler, webhook_secret=WEBSITE_SECRET)
        receipt = connector.send_message(db_session, "v-6", ContentDescriptor(text="ping"))
        client.send_message.assert_called_once_with("v-6", {"type": "text", "text": "ping"})
        assert receipt.external_message_id == "srv-42"

    def test_no_backend_means_nothing_to_sync(self, website_connector):
        assert list(website_connector.iter_customer_batches(None, 10)) == []
        assert list(website_connector.iter_message_batches(None, 10)) == []
