"""Cancellable background sync jobs that pull platform history into local records.

Each job is one ``SyncJob`` row plus, while it runs, one ``SyncHandle`` in
the orchestrator's in-memory active table. The row is the durable state;
the handle only carries the cancel flag and the future, and may be lost on
restart (``recover_abandoned`` cleans up after that).

Terminal writes are conditional on the row still being pending or running,
so cancel and completion can race without reopening or overwriting a
finished job.
"""

from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.metrics import observe_job
from app.models.crm.customer import CustomerPlatform
from app.models.crm.enums import PlatformType, SyncStatus
from app.models.crm.sync import SyncJob
from app.services.common import apply_pagination, coerce_uuid
from app.services.crm.inbox.connectors.base import Connector
from app.services.crm.inbox.context import get_inbox_logger, sync_context
from app.services.crm.inbox.errors import PlatformNotFoundError, SyncNotFoundError
from app.services.crm.inbox.observability import SYNC_JOBS, SYNC_RECORDS
from app.services.crm.inbox.reconciler import EntityReconciler, UpsertOutcome
from app.services.crm.inbox.registry import ConnectorRegistry

logger = get_inbox_logger(__name__)

CANCELLED_REASON = "cancelled"
ABANDONED_REASON = "abandoned"
_OPEN_STATUSES = (SyncStatus.pending, SyncStatus.running)


class SyncCancelled(Exception):
    """Raised inside a job once its cancel flag is seen at a batch boundary."""


@dataclass
class SyncHandle:
    sync_id: uuid.UUID
    platform_link_id: uuid.UUID
    platform_type: PlatformType
    cancel_event: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass
class SyncStats:
    """Running counters for one job, persisted onto the ``SyncJob`` row."""

    customers_processed: int = 0
    customers_created: int = 0
    customers_updated: int = 0
    customers_unchanged: int = 0
    messages_processed: int = 0
    messages_created: int = 0
    messages_updated: int = 0
    messages_unchanged: int = 0
    errors: list[dict] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def record(self, entity: str, outcome: UpsertOutcome) -> str:
        if outcome.created:
            result = "created"
        elif outcome.changed:
            result = "updated"
        else:
            result = "unchanged"
        setattr(self, f"{entity}_processed", getattr(self, f"{entity}_processed") + 1)
        setattr(self, f"{entity}_{result}", getattr(self, f"{entity}_{result}") + 1)
        return result

    def record_error(self, entity: str, reference, exc: Exception) -> None:
        setattr(self, f"{entity}_processed", getattr(self, f"{entity}_processed") + 1)
        self.errors.append(
            {
                "entity": entity,
                "reference": reference,
                "error": str(exc) or exc.__class__.__name__,
            }
        )

    def as_columns(self) -> dict:
        return {
            "customers_processed": self.customers_processed,
            "customers_created": self.customers_created,
            "customers_updated": self.customers_updated,
            "customers_unchanged": self.customers_unchanged,
            "messages_processed": self.messages_processed,
            "messages_created": self.messages_created,
            "messages_updated": self.messages_updated,
            "messages_unchanged": self.messages_unchanged,
            "errors": list(self.errors),
        }


def _record_reference(raw) -> str | None:
    if not isinstance(raw, dict):
        return None
    for key in ("id", "userId", "visitor_id"):
        if raw.get(key):
            return str(raw[key])
    return None


class SyncOrchestrator:
    def __init__(
        self,
        session_factory,
        registry: ConnectorRegistry,
        reconciler: EntityReconciler,
        executor=None,
        batch_size: int = 100,
        max_workers: int = 4,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.reconciler = reconciler
        self.batch_size = batch_size
        self.executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="inbox-sync")
        self._active: dict[uuid.UUID, SyncHandle] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Active table
    # ------------------------------------------------------------------

    def active_ids(self) -> set[uuid.UUID]:
        with self._lock:
            return set(self._active)

    def is_active(self, sync_id) -> bool:
        try:
            key = coerce_uuid(sync_id)
        except ValueError:
            return False
        with self._lock:
            return key in self._active

    def _release(self, handle: SyncHandle) -> None:
        with self._lock:
            if self._active.get(handle.sync_id) is handle:
                del self._active[handle.sync_id]

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_sync(self, db: Session, platform_link_id) -> uuid.UUID:
        try:
            link = db.get(CustomerPlatform, coerce_uuid(platform_link_id))
        except ValueError:
            link = None
        if link is None:
            raise PlatformNotFoundError(str(platform_link_id))
        # Fail before creating a record when no connector can serve the link.
        self.registry.get(link.platform_type)

        job = SyncJob(
            platform_link_id=link.id,
            platform_type=link.platform_type,
            status=SyncStatus.pending,
            started_at=datetime.now(UTC),
            errors=[],
        )
        db.add(job)
        db.commit()
        db.refresh(job)

        handle = SyncHandle(sync_id=job.id, platform_link_id=link.id, platform_type=link.platform_type)
        with self._lock:
            self._active[job.id] = handle
        try:
            handle.future = self.executor.submit(self._run, handle)
        except RuntimeError as exc:
            self._release(handle)
            self._finish(db, job.id, SyncStatus.failed, error_message=str(exc))
            db.commit()
            raise
        logger.info(
            "sync_started sync_id=%s platform=%s link_id=%s",
            job.id,
            link.platform_type.value,
            link.id,
        )
        return job.id

    def cancel_sync(self, db: Session, sync_id) -> bool:
        try:
            key = coerce_uuid(sync_id)
        except ValueError:
            return False
        with self._lock:
            handle = self._active.pop(key, None)
        if handle is None:
            return False
        handle.cancel_event.set()
        closed = self._finish(db, key, SyncStatus.failed, error_message=CANCELLED_REASON, cancelled=True)
        db.commit()
        if not closed:
            # The job reached a terminal status before the cancel landed.
            logger.info("sync_cancel_too_late sync_id=%s", key)
            return False
        SYNC_JOBS.labels(platform_type=handle.platform_type.value, status="cancelled").inc()
        logger.info("sync_cancelled sync_id=%s", key)
        return True

    def get_sync_status(self, db: Session, sync_id) -> SyncJob:
        try:
            job = db.get(SyncJob, coerce_uuid(sync_id))
        except ValueError:
            job = None
        if job is None:
            raise SyncNotFoundError(str(sync_id))
        return job

    def get_sync_history(self, db: Session, platform_link_id, limit: int = 10, offset: int = 0) -> list[SyncJob]:
        try:
            link_id = coerce_uuid(platform_link_id)
        except ValueError:
            return []
        query = (
            db.query(SyncJob)
            .filter(SyncJob.platform_link_id == link_id)
            .order_by(SyncJob.started_at.desc(), SyncJob.created_at.desc())
        )
        return apply_pagination(query, limit, offset).all()

    def recover_abandoned(self, db: Session) -> int:
        """Fail open records that have no live handle in this process."""
        live = self.active_ids()
        open_ids = [
            row[0]
            for row in db.query(SyncJob.id).filter(SyncJob.status.in_(_OPEN_STATUSES)).all()
            if row[0] not in live
        ]
        recovered = 0
        for sync_id in open_ids:
            recovered += self._finish(db, sync_id, SyncStatus.failed, error_message=ABANDONED_REASON)
        db.commit()
        if recovered:
            logger.warning("sync_abandoned_recovered count=%s", recovered)
        return recovered

    def shutdown(self, wait: bool = True) -> None:
        if not wait:
            with self._lock:
                handles = list(self._active.values())
            for handle in handles:
                handle.cancel_event.set()
        self.executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Record writes
    # ------------------------------------------------------------------

    def _finish(
        self,
        db: Session,
        sync_id: uuid.UUID,
        status: SyncStatus,
        stats: SyncStats | None = None,
        error_message: str | None = None,
        cancelled: bool = False,
    ) -> int:
        values = {
            SyncJob.status: status,
            SyncJob.finished_at: datetime.now(UTC),
            SyncJob.error_message: error_message,
            SyncJob.cancelled: cancelled,
        }
        if stats is not None:
            values.update({getattr(SyncJob, key): value for key, value in stats.as_columns().items()})
        return (
            db.query(SyncJob)
            .filter(SyncJob.id == sync_id)
            .filter(SyncJob.status.in_(_OPEN_STATUSES))
            .update(values, synchronize_session=False)
        )

    def _mark_running(self, db: Session, sync_id: uuid.UUID) -> bool:
        updated = (
            db.query(SyncJob)
            .filter(SyncJob.id == sync_id)
            .filter(SyncJob.status == SyncStatus.pending)
            .update({SyncJob.status: SyncStatus.running}, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    def _save_progress(self, db: Session, handle: SyncHandle, stats: SyncStats) -> None:
        values = {getattr(SyncJob, key): value for key, value in stats.as_columns().items()}
        updated = (
            db.query(SyncJob)
            .filter(SyncJob.id == handle.sync_id)
            .filter(SyncJob.status == SyncStatus.running)
            .update(values, synchronize_session=False)
        )
        db.commit()
        if updated == 0:
            # The row was closed elsewhere (cancel, recovery sweep).
            raise SyncCancelled()

    @staticmethod
    def _check_cancel(handle: SyncHandle) -> None:
        if handle.cancelled:
            raise SyncCancelled()

    # ------------------------------------------------------------------
    # Job body
    # ------------------------------------------------------------------

    def _run(self, handle: SyncHandle) -> None:
        with sync_context(str(handle.sync_id)):
            start = time.monotonic()
            status = "failed"
            stats = SyncStats()
            db = self.session_factory()
            try:
                self._check_cancel(handle)
                if not self._mark_running(db, handle.sync_id):
                    status = "cancelled"
                    logger.info("sync_skipped_not_pending sync_id=%s", handle.sync_id)
                    return
                connector = self.registry.get(handle.platform_type)
                link = db.get(CustomerPlatform, handle.platform_link_id)
                if link is None:
                    raise PlatformNotFoundError(str(handle.platform_link_id))
                since = link.last_sync_at

                self._check_cancel(handle)
                self._sync_customers(db, handle, connector, since, stats)
                self._sync_messages(db, handle, connector, since, stats)
                self._check_cancel(handle)

                finished = self._finish(db, handle.sync_id, SyncStatus.success, stats)
                if finished:
                    link = db.get(CustomerPlatform, handle.platform_link_id)
                    link.last_sync_at = datetime.now(UTC)
                db.commit()
                status = "success" if finished else "cancelled"
                logger.info(
                    "sync_completed sync_id=%s customers=%s messages=%s errors=%s",
                    handle.sync_id,
                    stats.customers_processed,
                    stats.messages_processed,
                    len(stats.errors),
                )
            except SyncCancelled:
                db.rollback()
                status = "cancelled"
                closed = self._finish(db, handle.sync_id, SyncStatus.failed, stats, CANCELLED_REASON, cancelled=True)
                db.commit()
                if closed:
                    SYNC_JOBS.labels(platform_type=handle.platform_type.value, status="cancelled").inc()
                logger.info("sync_stopped_on_cancel sync_id=%s", handle.sync_id)
            except Exception as exc:
                db.rollback()
                status = "failed"
                logger.exception("sync_failed sync_id=%s error=%s", handle.sync_id, exc)
                self._finish(db, handle.sync_id, SyncStatus.failed, stats, str(exc) or exc.__class__.__name__)
                db.commit()
            finally:
                self._release(handle)
                db.close()
                if status != "cancelled":
                    SYNC_JOBS.labels(platform_type=handle.platform_type.value, status=status).inc()
                observe_job("crm_inbox_sync", status, time.monotonic() - start)

    def _sync_customers(
        self,
        db: Session,
        handle: SyncHandle,
        connector: Connector,
        since: datetime | None,
        stats: SyncStats,
    ) -> None:
        platform = handle.platform_type
        for batch in connector.iter_customer_batches(since, self.batch_size):
            self._check_cancel(handle)
            for raw in batch:
                try:
                    native_id, profile = connector.normalize_remote_customer(raw)
                    outcome = self.reconciler.reconcile_customer(db, platform, native_id, profile)
                except Exception as exc:
                    db.rollback()
                    stats.record_error("customers", _record_reference(raw), exc)
                    SYNC_RECORDS.labels(platform_type=platform.value, entity="customer", outcome="error").inc()
                    logger.warning("sync_customer_failed sync_id=%s error=%s", handle.sync_id, exc)
                    continue
                result = stats.record("customers", outcome)
                SYNC_RECORDS.labels(platform_type=platform.value, entity="customer", outcome=result).inc()
            self._save_progress(db, handle, stats)
            self._check_cancel(handle)

    def _sync_messages(
        self,
        db: Session,
        handle: SyncHandle,
        connector: Connector,
        since: datetime | None,
        stats: SyncStats,
    ) -> None:
        platform = handle.platform_type
        for batch in connector.iter_message_batches(since, self.batch_size):
            self._check_cancel(handle)
            for raw in batch:
                try:
                    remote = connector.normalize_remote_message(raw)
                    link = self.reconciler.find_link(db, platform, remote.native_sender_id)
                    if link is not None:
                        customer = link.customer
                    else:
                        customer = self.reconciler.upsert_customer(
                            db,
                            platform,
                            remote.native_sender_id,
                            connector.resolve_profile(remote.native_sender_id),
                        )
                    outcome = self.reconciler.reconcile_message(
                        db,
                        platform,
                        remote.native_message_id,
                        customer.id,
                        remote.direction,
                        remote.content,
                        timestamp=remote.timestamp,
                        content_type=remote.content_type,
                        metadata=remote.metadata,
                    )
                except Exception as exc:
                    db.rollback()
                    stats.record_error("messages", _record_reference(raw), exc)
                    SYNC_RECORDS.labels(platform_type=platform.value, entity="message", outcome="error").inc()
                    logger.warning("sync_message_failed sync_id=%s error=%s", handle.sync_id, exc)
                    continue
                result = stats.record("messages", outcome)
                SYNC_RECORDS.labels(platform_type=platform.value, entity="message", outcome=result).inc()
            self._save_progress(db, handle, stats)
            self._check_cancel(handle)
