from app.db import get_db

# -------------------------------------------------------------------------
# Container-based Dependencies
# -------------------------------------------------------------------------
# These provide services from the DI container for use in route handlers.
# They can be mocked in tests through app.dependency_overrides or by
# overriding the container providers.


def get_inbox_service():
    """Get inbox service from container."""
    from app.container import container

    return container.inbox_service()


def get_sync_orchestrator():
    """Get sync orchestrator from container."""
    from app.container import container

    return container.sync_orchestrator()


__all__ = ["get_db", "get_inbox_service", "get_sync_orchestrator"]
