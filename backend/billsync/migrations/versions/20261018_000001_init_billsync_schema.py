"""init billsync schema

Revision ID: 20261018_000001
Revises: 
Create Date: 2026-10-18 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "provider_accounts",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider_id", sa.String(length=32), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("username_masked", sa.String(length=255), nullable=False),
        sa.Column("encrypted_password", sa.Text(), nullable=False),
        sa.Column("encryption_iv", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("status_message", sa.Text()),
        sa.Column("last_sync_at", sa.DateTime(timezone=True)),
        sa.Column("last_sync_success", sa.Boolean()),
        sa.Column("last_sync_bills_found", sa.Integer()),
        sa.Column("next_sync_at", sa.DateTime(timezone=True)),
        sa.Column("sync_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "provider_id", name="uniq_provider_accounts_user_provider"),
        sa.CheckConstraint(
            "status IN ('pending', 'syncing', 'connected', 'error', 'needs_otp')",
            name="chk_provider_accounts_status",
        ),
    )
    op.create_index("idx_provider_accounts_status_next_sync", "provider_accounts", ["status", "next_sync_at"])

    op.create_table(
        "sync_jobs",
        _uuid_pk(),
        sa.Column(
            "provider_account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("provider_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'running'")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("bills_found", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("bills_new", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("bills_updated", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_code", sa.String(length=64)),
        sa.Column("error_message", sa.Text()),
        sa.Column("debug_log", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("evidence_path", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('running', 'completed', 'failed')", name="chk_sync_jobs_status"),
    )
    op.create_index("idx_sync_jobs_account_started", "sync_jobs", ["provider_account_id", "started_at"])
    # At most one running job per account; guards against overlapping syncs.
    op.create_index(
        "uniq_sync_jobs_running_account",
        "sync_jobs",
        ["provider_account_id"],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
    )

    op.create_table(
        "bills",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "provider_account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("provider_accounts.id", ondelete="SET NULL"),
        ),
        sa.Column("provider_id", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default=sa.text("'EUR'")),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("issue_date", sa.Date()),
        sa.Column("period_start", sa.Date()),
        sa.Column("period_end", sa.Date()),
        sa.Column("reference_number", sa.String(length=128), nullable=False),
        sa.Column("bill_type", sa.String(length=32)),
        sa.Column("payment_code", sa.String(length=64)),
        sa.Column("source", sa.String(length=16), nullable=False, server_default=sa.text("'scraped'")),
        sa.Column("scraped_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "provider_id", "reference_number", name="uniq_bills_user_provider_reference"),
        sa.CheckConstraint("amount > 0", name="chk_bills_amount_positive"),
    )
    op.create_index("idx_bills_user_due_date", "bills", ["user_id", "due_date"])

    op.create_table(
        "audit_logs",
        _uuid_pk(),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("old_value", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("new_value", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True)),
        sa.Column("ip_address", postgresql.INET()),
        sa.Column("user_agent", sa.Text()),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_audit_action", "audit_logs", ["action"])
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_timestamp", "audit_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_index("idx_audit_timestamp", table_name="audit_logs")
    op.drop_index("idx_audit_entity", table_name="audit_logs")
    op.drop_index("idx_audit_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_bills_user_due_date", table_name="bills")
    op.drop_table("bills")
    op.drop_index("uniq_sync_jobs_running_account", table_name="sync_jobs")
    op.drop_index("idx_sync_jobs_account_started", table_name="sync_jobs")
    op.drop_table("sync_jobs")
    op.drop_index("idx_provider_accounts_status_next_sync", table_name="provider_accounts")
    op.drop_table("provider_accounts")
