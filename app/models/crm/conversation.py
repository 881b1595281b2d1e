import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.crm.enums import ContentType, MessageDirection, PlatformType


class Message(Base):
    __tablename__ = "crm_messages"
    __table_args__ = (
        # NULL external ids never collide, so locally synthesized rows are unconstrained.
        UniqueConstraint(
            "platform_type",
            "external_id",
            name="uq_crm_messages_platform_external",
        ),
        Index("ix_crm_messages_customer_created", "customer_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crm_customers.id"), nullable=False)
    platform_type: Mapped[PlatformType] = mapped_column(Enum(PlatformType), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(120))
    direction: Mapped[MessageDirection] = mapped_column(Enum(MessageDirection), nullable=False)
    content_type: Mapped[ContentType] = mapped_column(Enum(ContentType), default=ContentType.text)
    content: Mapped[str | None] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    customer = relationship("Customer", back_populates="messages")
