"""Billing profiles, webhook receipts and drawings"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "billing_profiles",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("billing_customer_ref", sa.String(length=255), nullable=True),
        sa.Column("plan_id", sa.String(length=32), nullable=False, server_default="free"),
        sa.Column("quota_remaining", sa.Integer(), nullable=False),
        sa.Column("quota_allowance", sa.Integer(), nullable=False),
        sa.Column("subscription_ref", sa.String(length=255), nullable=True),
        sa.Column("subscription_status", sa.String(length=32), nullable=False, server_default="none"),
        sa.Column("cycle_renews_at", sa.DateTime(), nullable=True),
        sa.Column("subscription_synced_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("quota_remaining >= 0", name="ck_quota_remaining_non_negative"),
        sa.CheckConstraint("quota_remaining <= quota_allowance", name="ck_quota_within_allowance"),
    )
    op.create_index(
        "ix_billing_profiles_billing_customer_ref", "billing_profiles", ["billing_customer_ref"], unique=True
    )
    op.create_index("ix_billing_profiles_subscription_ref", "billing_profiles", ["subscription_ref"])

    op.create_table(
        "webhook_receipts",
        sa.Column("event_id", sa.String(length=255), primary_key=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("subscription_ref", sa.String(length=255), nullable=True),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_webhook_receipts_user_id", "webhook_receipts", ["user_id"])
    op.create_index("ix_webhook_receipts_received_at", "webhook_receipts", ["received_at"])

    op.create_table(
        "drawings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("billing_profiles.user_id"), nullable=False),
        sa.Column("image_url", sa.String(length=2048), nullable=False),
        sa.Column("child_name", sa.String(length=255), nullable=True),
        sa.Column("child_age", sa.Integer(), nullable=True),
        sa.Column(
            "analysis_result",
            postgresql.JSONB().with_variant(sa.JSON(), "sqlite"),
            nullable=True,
        ),
        sa.Column("analyzed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_drawings_user_id", "drawings", ["user_id"])
    op.create_index("ix_drawings_created_at", "drawings", ["created_at"])


def downgrade() -> None:
    op.drop_table("drawings")
    op.drop_table("webhook_receipts")
    op.drop_table("billing_profiles")
