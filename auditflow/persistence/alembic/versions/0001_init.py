"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


# Single-statement increment so concurrent admissions never lose an update.
INCREMENT_QUOTA_USED = """
CREATE OR REPLACE FUNCTION increment_quota_used(user_email text, increment_by integer DEFAULT 1)
RETURNS integer
LANGUAGE sql
AS $$
    UPDATE subscribers
       SET quota_used = COALESCE(quota_used, 0) + increment_by,
           updated_at = now()
     WHERE email = user_email
    RETURNING quota_used;
$$;
"""


def upgrade() -> None:
    op.create_table(
        "subscribers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("subscribed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("subscription_tier", sa.String(), nullable=True, server_default="free"),
        sa.Column("subscription_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("monthly_quota", sa.Integer(), nullable=True),
        sa.Column("quota_used", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("quota_reset_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "subscription_tier IN ('free', 'basic', 'premium', 'enterprise')",
            name="ck_subscribers_subscription_tier",
        ),
    )
    # Indexes are created explicitly rather than through index=True columns.
    op.create_index("ix_subscribers_email", "subscribers", ["email"], unique=True)
    op.create_index("ix_subscribers_user_id", "subscribers", ["user_id"])

    op.create_table(
        "audits",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("org_id", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=True, server_default="pending"),
        sa.Column("audit_type", sa.String(), nullable=True, server_default="manual"),
        sa.Column("results_json", postgresql.JSONB(), nullable=True),
        sa.Column("score_global", sa.Float(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("webhook_id", sa.String(), nullable=True),
        sa.Column("delivery_method", sa.String(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "audit_type IN ('manual', 'bulk', 'discovery')", name="ck_audits_audit_type"
        ),
    )
    op.create_index("ix_audits_user_id", "audits", ["user_id"])
    op.create_index("ix_audits_org_id", "audits", ["org_id"])
    op.create_index("ix_audits_webhook_id", "audits", ["webhook_id"])
    # Status listings are per-organization, newest first.
    op.create_index("ix_audits_org_id_created_at", "audits", ["org_id", "created_at"])

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("company", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"], unique=True)

    op.execute(INCREMENT_QUOTA_USED)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS increment_quota_used(text, integer)")
    op.drop_index("ix_profiles_user_id", table_name="profiles")
    op.drop_table("profiles")
    op.drop_index("ix_audits_org_id_created_at", table_name="audits")
    op.drop_index("ix_audits_webhook_id", table_name="audits")
    op.drop_index("ix_audits_org_id", table_name="audits")
    op.drop_index("ix_audits_user_id", table_name="audits")
    op.drop_table("audits")
    op.drop_index("ix_subscribers_user_id", table_name="subscribers")
    op.drop_index("ix_subscribers_email", table_name="subscribers")
    op.drop_table("subscribers")
