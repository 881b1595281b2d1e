"""Prometheus metrics for CRM inbox."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

INBOUND_EVENTS = Counter(
    "inbox_inbound_events_total",
    "Total webhook events received",
    ["platform_type", "status"],  # status: success, skipped, error
)

OUTBOUND_MESSAGES = Counter(
    "inbox_outbound_messages_total",
    "Total outbound messages sent",
    ["platform_type", "status"],  # status: sent, failed, unsupported
)

MESSAGE_PROCESSING_TIME = Histogram(
    "inbox_message_processing_seconds",
    "Time to process inbound webhooks and outbound sends",
    ["platform_type", "direction"],
)

SYNC_JOBS = Counter(
    "inbox_sync_jobs_total",
    "Sync jobs by terminal outcome",
    ["platform_type", "status"],  # status: success, failed, cancelled
)

SYNC_RECORDS = Counter(
    "inbox_sync_records_total",
    "Records reconciled by sync jobs",
    ["platform_type", "entity", "outcome"],  # outcome: created, updated, unchanged, error
)
