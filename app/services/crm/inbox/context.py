"""Structured logging context for CRM inbox."""

from __future__ import annotations

import contextlib
import contextvars
import logging
import uuid

from app.logging import get_logger

request_id: contextvars.ContextVar[str] = contextvars.ContextVar("inbox_request_id", default="")
sync_id: contextvars.ContextVar[str] = contextvars.ContextVar("inbox_sync_id", default="")


def set_request_id(value: str | None = None) -> str:
    if not value:
        value = uuid.uuid4().hex[:8]
    request_id.set(value)
    return value


def get_request_id() -> str:
    return request_id.get()


@contextlib.contextmanager
def sync_context(value: str):
    token = sync_id.set(value)
    try:
        yield
    finally:
        sync_id.reset(token)


class InboxLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        extra = kwargs.get("extra") or {}
        if "request_id" not in extra:
            rid = get_request_id()
            if rid:
                extra["request_id"] = rid
        if "sync_id" not in extra:
            sid = sync_id.get()
            if sid:
                extra["sync_id"] = sid
        kwargs["extra"] = extra
        return msg, kwargs


def get_inbox_logger(name: str) -> logging.LoggerAdapter:
    return InboxLoggerAdapter(get_logger(name), {})
