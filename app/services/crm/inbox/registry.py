"""Connector registry: one live connector per platform type.

The registry is built explicitly at startup (see ``app.container``) and handed
to the inbox service and the sync orchestrator; there is no module-level
instance.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from pydantic import BaseModel, ValidationError

from app.models.crm.enums import PlatformType
from app.schemas.crm.connectors import FacebookConnectorConfig, LineConnectorConfig, WebsiteConnectorConfig
from app.services.crm.inbox.clients import LineClient, MetaGraphClient, WebsiteClient
from app.services.crm.inbox.connectors import Connector, FacebookConnector, LineConnector, WebsiteConnector
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.errors import InboxConfigError, UnregisteredPlatformError
from app.services.crm.inbox.reconciler import EntityReconciler

logger = get_inbox_logger(__name__)


def _build_line(config: LineConnectorConfig, reconciler: EntityReconciler, ack_text, timeout) -> Connector:
    client = LineClient(config.channel_access_token, base_url=config.api_base_url, timeout=timeout)
    return LineConnector(client, reconciler, channel_secret=config.channel_secret, ack_text=ack_text)


def _build_facebook(config: FacebookConnectorConfig, reconciler: EntityReconciler, ack_text, timeout) -> Connector:
    client = MetaGraphClient(
        config.page_access_token,
        page_id=config.page_id,
        base_url=config.graph_base_url,
        timeout=timeout,
    )
    return FacebookConnector(
        client,
        reconciler,
        app_secret=config.app_secret,
        verify_token=config.verify_token,
        page_id=config.page_id,
        ack_text=ack_text,
    )


def _build_website(config: WebsiteConnectorConfig, reconciler: EntityReconciler, ack_text, timeout) -> Connector:
    client = None
    if config.api_base_url and config.api_key:
        client = WebsiteClient(config.api_key, base_url=config.api_base_url, timeout=timeout)
    return WebsiteConnector(client, reconciler, webhook_secret=config.webhook_secret)


@dataclass(frozen=True)
class _PlatformFactory:
    config_model: type[BaseModel]
    build: Callable[..., Connector]


PLATFORM_FACTORIES: dict[PlatformType, _PlatformFactory] = {
    PlatformType.line: _PlatformFactory(LineConnectorConfig, _build_line),
    PlatformType.facebook: _PlatformFactory(FacebookConnectorConfig, _build_facebook),
    PlatformType.website: _PlatformFactory(WebsiteConnectorConfig, _build_website),
}


def _coerce_platform(value) -> PlatformType | None:
    if isinstance(value, PlatformType):
        return value
    try:
        return PlatformType(str(value).strip().lower())
    except ValueError:
        return None


class ConnectorRegistry:
    def __init__(
        self,
        reconciler: EntityReconciler,
        ack_text: str | None = None,
        http_timeout: float = 15.0,
    ):
        self.reconciler = reconciler
        self.ack_text = ack_text
        self.http_timeout = http_timeout
        self._connectors: dict[PlatformType, Connector] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, reconciler: EntityReconciler, settings) -> ConnectorRegistry:
        registry = cls(
            reconciler,
            ack_text=settings.inbox_ack_text if settings.inbox_auto_ack_enabled else None,
            http_timeout=settings.platform_http_timeout_seconds,
        )
        registry.configure(settings.platform_configs())
        return registry

    def configure(self, configs: Mapping[str, Mapping]) -> list[PlatformType]:
        """Validate and register each platform config; a bad one is logged and skipped."""
        registered: list[PlatformType] = []
        for key, raw_config in configs.items():
            try:
                connector = self.build_connector(key, raw_config)
            except InboxConfigError as exc:
                logger.warning("connector_config_rejected platform=%s code=%s detail=%s", key, exc.code, exc.detail)
                continue
            self.register(connector)
            registered.append(connector.platform_type)
        logger.info("connector_registry_configured platforms=%s", ",".join(p.value for p in registered))
        return registered

    def build_connector(self, platform, raw_config: Mapping | None) -> Connector:
        """Validate one platform's config and build its connector without registering it."""
        platform_type = _coerce_platform(platform)
        if platform_type is None:
            raise InboxConfigError("unknown_platform", f"Unknown platform '{platform}'")
        factory = PLATFORM_FACTORIES[platform_type]
        try:
            config = factory.config_model.model_validate(dict(raw_config or {}))
        except ValidationError as exc:
            fields = ",".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
            raise InboxConfigError(
                "invalid_connector_config",
                f"Invalid {platform_type.value} configuration: {fields}",
            ) from exc
        return factory.build(config, self.reconciler, self.ack_text, self.http_timeout)

    def register(self, connector: Connector) -> None:
        with self._lock:
            self._connectors[connector.platform_type] = connector

    def get(self, platform_type) -> Connector:
        platform = _coerce_platform(platform_type)
        with self._lock:
            connector = self._connectors.get(platform) if platform else None
        if connector is None:
            raise UnregisteredPlatformError(str(getattr(platform_type, "value", platform_type)))
        return connector

    def available(self) -> list[PlatformType]:
        with self._lock:
            return sorted(self._connectors, key=lambda platform: platform.value)

    def remove(self, platform_type) -> bool:
        platform = _coerce_platform(platform_type)
        with self._lock:
            connector = self._connectors.pop(platform, None) if platform else None
        if connector is not None:
            close = getattr(connector.client, "close", None)
            if callable(close):
                close()
        return connector is not None

    def reset(self) -> None:
        with self._lock:
            connectors = list(self._connectors.values())
            self._connectors.clear()
        for connector in connectors:
            close = getattr(connector.client, "close", None)
            if callable(close):
                close()
