"""Dependency injection container.

Builds the inbox object graph once per process: one reconciler, one connector
registry built from settings, one sync orchestrator and one inbox service,
all sharing the same registry and reconciler.

Usage:
    from app.container import container

    # In route dependencies (see app.api.deps)
    service = container.inbox_service()

    # In tests
    with container.connector_registry.override(providers.Object(registry)):
        ...
"""

from __future__ import annotations

from dependency_injector import containers, providers  # type: ignore[import-not-found]

from app.config import settings as app_settings
from app.db import SessionLocal
from app.services.crm.inbox.reconciler import EntityReconciler
from app.services.crm.inbox.registry import ConnectorRegistry
from app.services.crm.inbox.service import InboxService
from app.services.crm.inbox.sync import SyncOrchestrator


class Container(containers.DeclarativeContainer):
    """Application dependency injection container.

    Provides:
    - Settings and the database session factory
    - The connector registry and reconciler
    - The sync orchestrator and inbox service

    All inbox services are singletons; the orchestrator owns the thread pool
    and the active-job table, so there must be exactly one per process.
    """

    settings = providers.Object(app_settings)

    # Overridden at runtime by configure_container
    db_session_factory = providers.Object(SessionLocal)

    reconciler = providers.Singleton(EntityReconciler)

    connector_registry = providers.Singleton(
        ConnectorRegistry.from_settings,
        reconciler=reconciler,
        settings=settings,
    )

    sync_orchestrator = providers.Singleton(
        SyncOrchestrator,
        session_factory=db_session_factory,
        registry=connector_registry,
        reconciler=reconciler,
        batch_size=settings.provided.sync_batch_size,
        max_workers=settings.provided.sync_max_workers,
    )

    inbox_service = providers.Singleton(InboxService, registry=connector_registry)


# Global container instance
container = Container()


def get_container() -> Container:
    """Get the global container instance."""
    return container


def configure_container(db_session_factory) -> Container:
    """Configure the container with runtime dependencies.

    Args:
        db_session_factory: Callable that returns a new database session

    Returns:
        Configured container instance
    """
    container.db_session_factory.override(providers.Object(db_session_factory))
    return container
