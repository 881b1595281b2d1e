"""Tests for the connector registry."""

from unittest.mock import MagicMock

import pytest

from app.config import Settings
from app.models.crm.enums import PlatformType
from app.services.crm.inbox.clients import LineClient, MetaGraphClient
from app.services.crm.inbox.connectors import FacebookConnector, LineConnector, WebsiteConnector
from app.services.crm.inbox.errors import InboxConfigError, UnregisteredPlatformError
from app.services.crm.inbox.registry import ConnectorRegistry


@pytest.fixture()
def empty_registry(reconciler):
    registry = ConnectorRegistry(reconciler, ack_text="ack")
    yield registry
    registry.reset()


class TestConfigure:
    def test_valid_configs_register_connectors(self, empty_registry):
        registered = empty_registry.configure(
            {
                "line": {"channel_access_token": "token", "channel_secret": "secret"},
                "facebook": {
                    "page_access_token": "page-token",
                    "app_secret": "app-secret",
                    "verify_token": "verify",
                    "page_id": "123",
                },
                "website": {"webhook_secret": "widget"},
            }
        )

        assert registered == [PlatformType.line, PlatformType.facebook, PlatformType.website]
        assert empty_registry.available() == [PlatformType.facebook, PlatformType.line, PlatformType.website]
        line = empty_registry.get(PlatformType.line)
        assert isinstance(line, LineConnector)
        assert isinstance(line.client, LineClient)
        assert line.ack_text == "ack"
        facebook = empty_registry.get("facebook")
        assert isinstance(facebook.client, MetaGraphClient)
        assert facebook.page_id == "123"
        website = empty_registry.get("website")
        assert isinstance(website, WebsiteConnector)
        assert website.client is None

    def test_invalid_config_is_skipped_and_others_still_register(self, empty_registry):
        registered = empty_registry.configure(
            {
                "line": {"channel_access_token": "", "channel_secret": "secret"},
                "website": {"webhook_secret": "widget"},
            }
        )
        assert registered == [PlatformType.website]
        with pytest.raises(UnregisteredPlatformError):
            empty_registry.get(PlatformType.line)

    def test_unknown_platform_is_ignored(self, empty_registry):
        assert empty_registry.configure({"telegram": {"token": "x"}}) == []
        assert empty_registry.available() == []

    def test_build_connector_raises_config_error(self, empty_registry):
        with pytest.raises(InboxConfigError) as exc_info:
            empty_registry.build_connector("line", {"channel_secret": "secret"})
        assert exc_info.value.code == "invalid_connector_config"
        assert exc_info.value.status_code == 400
        assert "channel_access_token" in exc_info.value.detail
        assert empty_registry.available() == []

        with pytest.raises(InboxConfigError) as exc_info:
            empty_registry.build_connector("telegram", {})
        assert exc_info.value.code == "unknown_platform"

    def test_platform_keys_are_case_insensitive(self, empty_registry):
        empty_registry.configure({"WEBSITE": {"webhook_secret": "widget"}})
        assert empty_registry.available() == [PlatformType.website]


class TestLookup:
    def test_get_unregistered_raises(self, empty_registry):
        with pytest.raises(UnregisteredPlatformError) as exc_info:
            empty_registry.get(PlatformType.facebook)
        assert exc_info.value.code == "unregistered_platform"
        assert exc_info.value.status_code == 404

    def test_get_unknown_name_raises(self, empty_registry):
        with pytest.raises(UnregisteredPlatformError):
            empty_registry.get("myspace")

    def test_register_replaces_existing_connector(self, empty_registry, reconciler):
        first = WebsiteConnector(None, reconciler, webhook_secret="a")
        second = WebsiteConnector(None, reconciler, webhook_secret="b")
        empty_registry.register(first)
        empty_registry.register(second)
        assert empty_registry.get(PlatformType.website) is second


class TestRemoveAndReset:
    def test_remove_closes_client(self, empty_registry, reconciler):
        client = MagicMock()
        empty_registry.register(LineConnector(client, reconciler, channel_secret="s"))

        assert empty_registry.remove(PlatformType.line) is True
        client.close.assert_called_once_with()
        assert empty_registry.remove(PlatformType.line) is False
        with pytest.raises(UnregisteredPlatformError):
            empty_registry.get(PlatformType.line)

    def test_reset_closes_every_client(self, empty_registry, reconciler):
        line_client, facebook_client = MagicMock(), MagicMock()
        empty_registry.register(LineConnector(line_client, reconciler, channel_secret="s"))
        empty_registry.register(
            FacebookConnector(facebook_client, reconciler, app_secret="a", verify_token="v")
        )
        empty_registry.register(WebsiteConnector(None, reconciler, webhook_secret="w"))

        empty_registry.reset()

        assert empty_registry.available() == []
        line_client.close.assert_called_once_with()
        facebook_client.close.assert_called_once_with()


class TestFromSettings:
    def _settings(self, **overrides):
        values = {
            "line_channel_access_token": None,
            "line_channel_secret": None,
            "facebook_page_access_token": None,
            "facebook_app_secret": None,
            "facebook_verify_token": None,
            "website_api_key": None,
            "website_webhook_secret": None,
            "website_api_base_url": None,
            "inbox_auto_ack_enabled": True,
            "inbox_ack_text": "Got it",
        }
        values.update(overrides)
        return Settings(**values)

    def test_only_platforms_with_credentials_are_registered(self, reconciler):
        settings = self._settings(line_channel_access_token="t", line_channel_secret="s")
        registry = ConnectorRegistry.from_settings(reconciler, settings)
        try:
            assert registry.available() == [PlatformType.line]
            assert registry.get(PlatformType.line).ack_text == "Got it"
        finally:
            registry.reset()

    def test_partial_credentials_are_skipped(self, reconciler):
        settings = self._settings(facebook_page_access_token="t")
        registry = ConnectorRegistry.from_settings(reconciler, settings)
        assert registry.available() == []

    def test_ack_disabled_leaves_no_ack_text(self, reconciler):
        settings = self._settings(
            line_channel_access_token="t",
            line_channel_secret="s",
            inbox_auto_ack_enabled=False,
        )
        registry = ConnectorRegistry.from_settings(reconciler, settings)
        try:
            assert registry.get(PlatformType.line).ack_text is None
        finally:
            registry.reset()

    def test_website_backend_client_requires_url_and_key(self, reconciler):
        settings = self._settings(
            website_webhook_secret="w",
            website_api_key="k",
            website_api_base_url="https://widget.example",
        )
        registry = ConnectorRegistry.from_settings(reconciler, settings)
        try:
            assert registry.get(PlatformType.website).client is not None
        finally:
            registry.reset()
