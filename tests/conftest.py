import itertools
import os
from concurrent.futures import Future
from unittest.mock import MagicMock

import pytest

# Settings are read at import time; keep tests off any real database or platform.
os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest-inbox.db")
os.environ.setdefault("INBOX_AUTO_ACK_ENABLED", "1")
os.environ.setdefault("SYNC_RECOVER_ON_STARTUP", "0")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import app.models  # noqa: E402,F401
from app.db import Base  # noqa: E402
from app.services.crm.inbox.connectors import (  # noqa: E402
    FacebookConnector,
    LineConnector,
    WebsiteConnector,
)
from app.services.crm.inbox.reconciler import EntityReconciler  # noqa: E402
from app.services.crm.inbox.registry import ConnectorRegistry  # noqa: E402
from app.services.crm.inbox.sync import SyncOrchestrator  # noqa: E402

LINE_SECRET = "line-channel-secret"
FACEBOOK_APP_SECRET = "fb-app-secret"
FACEBOOK_VERIFY_TOKEN = "fb-verify-token"
FACEBOOK_PAGE_ID = "PAGE-1"
WEBSITE_SECRET = "widget-secret"
ACK_TEXT = "Thanks, we got your message."


class ManualExecutor:
    """Executor that queues work until ``run_all`` so tests control when jobs run."""

    def __init__(self):
        self.queue = []
        self.is_shutdown = False

    def submit(self, fn, *args, **kwargs):
        if self.is_shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")
        future = Future()
        self.queue.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        while self.queue:
            future, fn, args, kwargs = self.queue.pop(0)
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)

    def shutdown(self, wait=True):
        if wait:
            self.run_all()
        self.is_shutdown = True


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'inbox.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def reconciler():
    return EntityReconciler()


def _sequential_ids(prefix):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


@pytest.fixture()
def line_client():
    client = MagicMock()
    next_id = _sequential_ids("line-out")
    client.get_profile.return_value = {
        "userId": "U1",
        "displayName": "Alice",
        "pictureUrl": "https://cdn.example/alice.png",
        "language": "en",
    }
    client.reply_message.side_effect = lambda token, messages: {"sentMessages": [{"id": next_id()}]}
    client.push_message.side_effect = lambda to, messages: {"sentMessages": [{"id": next_id()}]}
    client.list_messages.return_value = ([], None)
    return client


@pytest.fixture()
def facebook_client():
    client = MagicMock()
    next_id = _sequential_ids("m_out")
    client.get_profile.return_value = {"first_name": "Bob", "last_name": "Builder", "locale": "en_GB"}
    client.send_message.side_effect = lambda recipient, message: {"recipient_id": recipient, "message_id": next_id()}
    return client


@pytest.fixture()
def line_connector(line_client, reconciler):
    return LineConnector(line_client, reconciler, channel_secret=LINE_SECRET, ack_text=ACK_TEXT)


@pytest.fixture()
def facebook_connector(facebook_client, reconciler):
    return FacebookConnector(
        facebook_client,
        reconciler,
        app_secret=FACEBOOK_APP_SECRET,
        verify_token=FACEBOOK_VERIFY_TOKEN,
        page_id=FACEBOOK_PAGE_ID,
        ack_text=ACK_TEXT,
    )


@pytest.fixture()
def website_connector(reconciler):
    return WebsiteConnector(None, reconciler, webhook_secret=WEBSITE_SECRET)


@pytest.fixture()
def registry(reconciler, line_connector, facebook_connector, website_connector):
    registry = ConnectorRegistry(reconciler, ack_text=ACK_TEXT)
    registry.register(line_connector)
    registry.register(facebook_connector)
    registry.register(website_connector)
    yield registry
    registry.reset()


@pytest.fixture()
def manual_executor():
    return ManualExecutor()


@pytest.fixture()
def orchestrator(session_factory, registry, reconciler, manual_executor):
    return SyncOrchestrator(
        session_factory,
        registry,
        reconciler,
        executor=manual_executor,
        batch_size=2,
    )
