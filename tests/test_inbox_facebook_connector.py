"""Tests for the Facebook Messenger connector."""

import hashlib
import hmac
import json
import uuid

import pytest

from app.models.crm.conversation import Message
from app.models.crm.customer import Customer
from app.models.crm.enums import ContentType, MessageDirection, PlatformType
from app.schemas.crm.inbox import ContentDescriptor
from app.services.crm.inbox.errors import InvalidWebhookError
from tests.conftest import ACK_TEXT, FACEBOOK_APP_SECRET, FACEBOOK_PAGE_ID, FACEBOOK_VERIFY_TOKEN


def _body(*messaging, obj="page"):
    payload = {"object": obj, "entry": [{"id": FACEBOOK_PAGE_ID, "time": 1767225600000, "messaging": list(messaging)}]}
    return json.dumps(payload).encode("utf-8")


def _sign(body: bytes, secret: str = FACEBOOK_APP_SECRET) -> dict:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return {"X-Hub-Signature-256": f"sha256={digest}"}


def _message_event(psid="PSID-1", mid="m_1", text="hi", **message):
    body = {"mid": mid, **message}
    if text is not None:
        body["text"] = text
    return {
        "sender": {"id": psid},
        "recipient": {"id": FACEBOOK_PAGE_ID},
        "timestamp": 1767225600000,
        "message": body,
    }


def _inbound(db):
    return db.query(Message).filter(Message.direction == MessageDirection.inbound).all()


class TestSubscriptionHandshake:
    def test_matching_token_returns_challenge(self, facebook_connector):
        assert facebook_connector.verify_subscription("subscribe", FACEBOOK_VERIFY_TOKEN, "12345") == "12345"

    def test_token_mismatch_is_rejected(self, facebook_connector):
        with pytest.raises(InvalidWebhookError) as exc_info:
            facebook_connector.verify_subscription("subscribe", "wrong", "12345")
        assert exc_info.value.code == "verification_failed"
        assert exc_info.value.status_code == 401

    def test_non_ascii_token_is_rejected(self, facebook_connector):
        with pytest.raises(InvalidWebhookError) as exc_info:
            facebook_connector.verify_subscription("subscribe", "tökén", "12345")
        assert exc_info.value.code == "verification_failed"

    def test_wrong_mode_is_rejected(self, facebook_connector):
        with pytest.raises(InvalidWebhookError):
            facebook_connector.verify_subscription("unsubscribe", FACEBOOK_VERIFY_TOKEN, "12345")


class TestWebhookValidation:
    def test_bad_signature_rejects_without_side_effects(self, db_session, facebook_connector, facebook_client):
        body = _body(_message_event())
        with pytest.raises(InvalidWebhookError):
            facebook_connector.handle_webhook(db_session, body, _sign(body, "other-secret"))
        assert db_session.query(Customer).count() == 0
        facebook_client.send_message.assert_not_called()

    def test_signature_without_prefix_is_rejected(self, db_session, facebook_connector):
        body = _body(_message_event())
        bare = _sign(body)["X-Hub-Signature-256"].removeprefix("sha256=")
        with pytest.raises(InvalidWebhookError):
            facebook_connector.handle_webhook(db_session, body, {"X-Hub-Signature-256": bare})

    def test_non_ascii_signature_is_rejected(self, db_session, facebook_connector):
        body = _body(_message_event())
        with pytest.raises(InvalidWebhookError) as exc_info:
            facebook_connector.handle_webhook(db_session, body, {"X-Hub-Signature-256": "sha256=ßad"})
        assert exc_info.value.code == "signature_invalid"
        assert db_session.query(Customer).count() == 0

    def test_non_page_object_is_rejected(self, db_session, facebook_connector):
        body = _body(_message_event(), obj="instagram")
        with pytest.raises(InvalidWebhookError) as exc_info:
            facebook_connector.handle_webhook(db_session, body, _sign(body))
        assert exc_info.value.code == "invalid_payload"


class TestInboundEvents:
    def test_text_message_creates_customer_from_profile_and_acks(
        self, db_session, facebook_connector, facebook_client
    ):
        body = _body(_message_event())
        result = facebook_connector.handle_webhook(db_session, body, _sign(body))

        assert result.processed == 1
        customer = db_session.query(Customer).one()
        assert customer.display_name == "Bob Builder"
        message = _inbound(db_session)[0]
        assert message.external_id == "m_1"
        assert message.content == "hi"
        facebook_client.send_message.assert_called_once_with("PSID-1", {"text": ACK_TEXT})
        outbound = db_session.query(Message).filter(Message.direction == MessageDirection.outbound).one()
        assert outbound.external_id == "m_out-1"

    def test_echo_and_receipts_are_skipped(self, db_session, facebook_connector, facebook_client):
        echo = _message_event(psid=FACEBOOK_PAGE_ID, mid="m_echo", is_echo=True)
        read = {"sender": {"id": "PSID-1"}, "recipient": {"id": FACEBOOK_PAGE_ID}, "read": {"watermark": 1}}
        delivery = {"sender": {"id": "PSID-1"}, "recipient": {"id": FACEBOOK_PAGE_ID}, "delivery": {"mids": []}}
        body = _body(echo, read, delivery)
        result = facebook_connector.handle_webhook(db_session, body, _sign(body))

        assert result.received == 3
        assert result.skipped == 3
        assert result.processed == 0
        assert db_session.query(Message).count() == 0
        facebook_client.get_profile.assert_not_called()

    def test_entries_are_flattened_in_order(self, db_session, facebook_connector):
        payload = {
            "object": "page",
            "entry": [
                {"id": FACEBOOK_PAGE_ID, "messaging": [_message_event(mid="m_a", text="first")]},
                {"id": FACEBOOK_PAGE_ID, "messaging": [_message_event(mid="m_b", text="second")]},
            ],
        }
        body = json.dumps(payload).encode("utf-8")
        result = facebook_connector.handle_webhook(db_session, body, _sign(body))
        assert result.received == 2
        stored = [db_session.get(Message, uuid.UUID(message_id)).external_id for message_id in result.message_ids]
        assert stored == ["m_a", "m_b"]

    def test_image_attachment_classification(self, db_session, facebook_connector):
        event = _message_event(
            mid="m_img",
            text=None,
            attachments=[{"type": "image", "payload": {"url": "https://fb.example/img.jpg"}}],
        )
        body = _body(event)
        facebook_connector.handle_webhook(db_session, body, _sign(body))
        message = _inbound(db_session)[0]
        assert message.content_type == ContentType.image
        assert message.content == "https://fb.example/img.jpg"
        assert message.metadata_["attachments"][0]["type"] == "image"

    def test_quick_reply_payload_is_kept(self, db_session, facebook_connector):
        event = _message_event(text="Yes", quick_reply={"payload": "CONFIRM_YES"})
        body = _body(event)
        facebook_connector.handle_webhook(db_session, body, _sign(body))
        assert _inbound(db_session)[0].metadata_["quick_reply_payload"] == "CONFIRM_YES"

    def test_postback_uses_title_and_is_not_acknowledged(self, db_session, facebook_connector, facebook_client):
        event = {
            "sender": {"id": "PSID-1"},
            "recipient": {"id": FACEBOOK_PAGE_ID},
            "timestamp": 1767225600000,
            "postback": {"mid": "m_pb", "title": "Get Started", "payload": "GET_STARTED"},
        }
        body = _body(event)
        facebook_connector.handle_webhook(db_session, body, _sign(body))
        message = _inbound(db_session)[0]
        assert message.content == "Get Started"
        assert message.content_type == ContentType.postback
        assert message.metadata_["postback_payload"] == "GET_STARTED"
        facebook_client.send_message.assert_not_called()

    def test_message_without_body_is_isolated(self, db_session, facebook_connector):
        broken = {"sender": {"id": "PSID-2"}, "message": "not-an-object"}
        body = _body(broken, _message_event())
        result = facebook_connector.handle_webhook(db_session, body, _sign(body))
        assert result.processed == 1
        assert result.errors[0]["index"] == 0
        assert len(_inbound(db_session)) == 1


class TestSendMessage:
    def test_image_is_sent_as_attachment(self, db_session, facebook_connector, facebook_client):
        receipt = facebook_connector.send_message(
            db_session,
            "PSID-1",
            ContentDescriptor(type=ContentType.image, url="https://cdn.example/pic.png"),
        )
        facebook_client.send_message.assert_called_once_with(
            "PSID-1",
            {"attachment": {"type": "image", "payload": {"url": "https://cdn.example/pic.png", "is_reusable": True}}},
        )
        assert receipt.platform_type == PlatformType.facebook
        assert receipt.external_message_id == "m_out-1"

    def test_remote_message_from_page_is_outbound(self, facebook_connector):
        remote = facebook_connector.normalize_remote_message(
            {
                "id": "m_hist",
                "message": "We are open 9-5",
                "from": {"id": FACEBOOK_PAGE_ID},
                "to": {"data": [{"id": "PSID-7"}]},
                "created_time": "2026-01-01T08:00:00+0000",
            }
        )
        assert remote.direction == MessageDirection.outbound
        assert remote.native_sender_id == "PSID-7"
