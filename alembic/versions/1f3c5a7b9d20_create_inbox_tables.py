"""Create customer, platform link, message and sync job tables.

Revision ID: 1f3c5a7b9d20
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "1f3c5a7b9d20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    platformtype = sa.Enum("line", "facebook", "website", name="platformtype")
    customerstatus = sa.Enum("active", "inactive", "blocked", name="customerstatus")
    messagedirection = sa.Enum("inbound", "outbound", name="messagedirection")
    contenttype = sa.Enum(
        "text",
        "image",
        "video",
        "audio",
        "file",
        "location",
        "sticker",
        "template",
        "postback",
        "other",
        name="contenttype",
    )
    syncstatus = sa.Enum("pending", "running", "success", "failed", name="syncstatus")

    op.create_table(
        "crm_customers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("display_name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("status", customerstatus, nullable=True),
        sa.Column("last_interaction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "crm_customer_platforms",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("crm_customers.id"), nullable=False),
        sa.Column("platform_type", platformtype, nullable=False),
        sa.Column("native_id", sa.String(length=120), nullable=False),
        sa.Column("display_name", sa.String(length=160), nullable=True),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("locale", sa.String(length=20), nullable=True),
        sa.Column("platform_data", sa.JSON(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("platform_type", "native_id", name="uq_crm_customer_platforms_platform_native"),
    )
    op.create_index("ix_crm_customer_platforms_customer", "crm_customer_platforms", ["customer_id"])

    op.create_table(
        "crm_messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("crm_customers.id"), nullable=False),
        sa.Column("platform_type", platformtype, nullable=False),
        sa.Column("external_id", sa.String(length=120), nullable=True),
        sa.Column("direction", messagedirection, nullable=False),
        sa.Column("content_type", contenttype, nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("platform_type", "external_id", name="uq_crm_messages_platform_external"),
    )
    op.create_index("ix_crm_messages_customer_created", "crm_messages", ["customer_id", "created_at"])

    op.create_table(
        "crm_sync_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "platform_link_id",
            sa.Uuid(),
            sa.ForeignKey("crm_customer_platforms.id"),
            nullable=False,
        ),
        sa.Column("platform_type", platformtype, nullable=False),
        sa.Column("status", syncstatus, nullable=False, server_default="pending"),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customers_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("customers_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("customers_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("customers_unchanged", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_unchanged", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_crm_sync_jobs_link_started", "crm_sync_jobs", ["platform_link_id", "started_at"])


def downgrade() -> None:
    op.drop_index("ix_crm_sync_jobs_link_started", table_name="crm_sync_jobs")
    op.drop_table("crm_sync_jobs")
    op.drop_index("ix_crm_messages_customer_created", table_name="crm_messages")
    op.drop_table("crm_messages")
    op.drop_index("ix_crm_customer_platforms_customer", table_name="crm_customer_platforms")
    op.drop_table("crm_customer_platforms")
    op.drop_table("crm_customers")

    op.execute("DROP TYPE IF EXISTS syncstatus;")
    op.execute("DROP TYPE IF EXISTS contenttype;")
    op.execute("DROP TYPE IF EXISTS messagedirection;")
    op.execute("DROP TYPE IF EXISTS customerstatus;")
    op.execute("DROP TYPE IF EXISTS platformtype;")
