import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.crm.enums import PlatformType, SyncStatus


class SyncJob(Base):
    """Status history for one bulk reconciliation run against a platform."""

    __tablename__ = "crm_sync_jobs"
    __table_args__ = (Index("ix_crm_sync_jobs_link_started", "platform_link_id", "started_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    platform_link_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("crm_customer_platforms.id"), nullable=False
    )
    platform_type: Mapped[PlatformType] = mapped_column(Enum(PlatformType), nullable=False)
    status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), default=SyncStatus.pending, nullable=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    customers_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    customers_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    customers_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    customers_unchanged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_unchanged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    errors: Mapped[list | None] = mapped_column(JSON, default=list)
    error_message: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    platform_link = relationship("CustomerPlatform")
