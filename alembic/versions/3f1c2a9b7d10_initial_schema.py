"""initial_schema

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2025-11-03 10:12:41.208311

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names, matching SQLModel's default Enum mapping
plan_enum = sa.Enum("FREE", "BASIC", "PREMIUM", "PRO", name="plan")
subscription_status_enum = sa.Enum(
    "TRIALING", "ACTIVE", "PAST_DUE", "CANCELED", "EXPIRED", name="subscriptionstatus"
)
asset_kind_enum = sa.Enum("SUBJECT", "STYLE", "OUTPUT", name="assetkind")
job_status_enum = sa.Enum(
    "QUEUED", "PROCESSING", "SUCCEEDED", "FAILED", "CANCELLED", name="jobstatus"
)
receipt_state_enum = sa.Enum("RECEIVED", "PROCESSED", "FAILED", name="receiptstate")


def upgrade() -> None:
    """Create users, assets, jobs, work queue, webhook receipts and audit tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("plan", plan_enum, nullable=False),
        sa.Column("subscription_status", subscription_status_enum, nullable=False),
        sa.Column("payment_provider", sa.String(length=50), nullable=True),
        sa.Column("provider_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("provider_customer_id", sa.String(length=255), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("trial_used", sa.Boolean(), nullable=False),
        sa.Column("monthly_quota", sa.Integer(), nullable=False),
        sa.Column("used_this_month", sa.Integer(), nullable=False),
        sa.Column("quota_reset_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index(
        "ix_users_provider_subscription_id", "users", ["provider_subscription_id"], unique=False
    )
    op.create_index(
        "ix_users_provider_customer_id", "users", ["provider_customer_id"], unique=False
    )

    op.create_table(
        "image_assets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("kind", asset_kind_enum, nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("source_job_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("storage_key"),
    )
    op.create_index("ix_image_assets_owner_id", "image_assets", ["owner_id"], unique=False)
    op.create_index("ix_image_assets_kind", "image_assets", ["kind"], unique=False)
    op.create_index(
        "ix_image_assets_source_job_id", "image_assets", ["source_job_id"], unique=False
    )

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("subject_asset_id", sa.Uuid(), nullable=False),
        sa.Column("style_asset_id", sa.Uuid(), nullable=False),
        sa.Column("prompt", sa.String(length=1000), nullable=True),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("status", job_status_enum, nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("external_job_id", sa.String(length=255), nullable=True),
        sa.Column("output_asset_id", sa.Uuid(), nullable=True),
        sa.Column("error", sa.String(length=2000), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("queue_time_ms", sa.Integer(), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["subject_asset_id"], ["image_assets.id"]),
        sa.ForeignKeyConstraint(["style_asset_id"], ["image_assets.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_owner_id", "generation_jobs", ["owner_id"], unique=False)
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"], unique=False)
    op.create_index(
        "ix_generation_jobs_external_job_id", "generation_jobs", ["external_job_id"], unique=False
    )
    op.create_index(
        "ix_generation_jobs_created_at", "generation_jobs", ["created_at"], unique=False
    )

    op.create_table(
        "work_queue_items",
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("available_at", sa.DateTime(), nullable=False),
        sa.Column("leased_until", sa.DateTime(), nullable=True),
        sa.Column("lease_owner", sa.String(length=100), nullable=True),
        sa.Column("last_error", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "ix_work_queue_items_priority", "work_queue_items", ["priority"], unique=False
    )
    op.create_index(
        "ix_work_queue_items_available_at", "work_queue_items", ["available_at"], unique=False
    )
    op.create_index(
        "ix_work_queue_items_leased_until", "work_queue_items", ["leased_until"], unique=False
    )

    op.create_table(
        "webhook_receipts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("webhook_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=True),
        sa.Column("state", receipt_state_enum, nullable=False),
        sa.Column("error", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_webhook_receipts_webhook_id", "webhook_receipts", ["webhook_id"], unique=True
    )
    op.create_index(
        "ix_webhook_receipts_created_at", "webhook_receipts", ["created_at"], unique=False
    )

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("resource_type", sa.String(length=50), nullable=True),
        sa.Column("resource_id", sa.String(length=255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("is_success", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_entries_user_id", "audit_entries", ["user_id"], unique=False)
    op.create_index("ix_audit_entries_type", "audit_entries", ["type"], unique=False)
    op.create_index(
        "ix_audit_entries_created_at", "audit_entries", ["created_at"], unique=False
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_table("audit_entries")
    op.drop_table("webhook_receipts")
    op.drop_table("work_queue_items")
    op.drop_table("generation_jobs")
    op.drop_table("image_assets")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (
        receipt_state_enum,
        job_status_enum,
        asset_kind_enum,
        subscription_status_enum,
        plan_enum,
    ):
        enum_type.drop(bind, checkfirst=True)
