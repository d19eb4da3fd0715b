"""initial_sync_schema

Revision ID: 4f1c2a9d7b3e
Revises:
Create Date: 2026-10-19 09:12:44.118302

"""

from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4f1c2a9d7b3e"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "email_account",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("provider_kind", sa.String(), nullable=False),
        sa.Column("email_address", sa.String(), nullable=False),
        sa.Column("credentials_encrypted", sa.Text(), nullable=False),
        sa.Column("connection_params", sa.JSON(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_last_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("sync_status", sa.String(), nullable=False, server_default="idle"),
        sa.Column("sync_progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("initial_sync_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auth_failure_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_email_account_user_id", "email_account", ["user_id"])
    op.create_index("ix_email_account_email_address", "email_account", ["email_address"])
    op.create_index("ix_email_account_status", "email_account", ["status"])
    op.create_index("ix_email_account_sync_status", "email_account", ["sync_status"])

    op.create_table(
        "email_folder",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("provider_folder_id", sa.String(), nullable=False),
        sa.Column("parent_provider_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("folder_type", sa.String(), nullable=False, server_default="custom"),
        sa.Column("type_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("icon", sa.String(), nullable=False, server_default="folder"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("sync_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sync_frequency_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("sync_days_back", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expected_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sync_cursor", sa.Text(), nullable=True),
        sa.Column("sync_status", sa.String(), nullable=False, server_default="idle"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["email_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "account_id", "provider_folder_id", name="uq_email_folder_account_provider_folder"
        ),
    )
    op.create_index("ix_email_folder_account_id", "email_folder", ["account_id"])
    op.create_index("ix_email_folder_folder_type", "email_folder", ["folder_type"])

    op.create_table(
        "email",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("folder_id", sa.String(), nullable=True),
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("thread_id", sa.String(), nullable=True),
        sa.Column("subject", sa.Text(), nullable=False, server_default=""),
        sa.Column("from_address", sa.JSON(), nullable=True),
        sa.Column("to_addresses", sa.JSON(), nullable=False),
        sa.Column("cc_addresses", sa.JSON(), nullable=False),
        sa.Column("bcc_addresses", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("body_html", sa.Text(), nullable=True),
        sa.Column("body_text", sa.Text(), nullable=True),
        sa.Column("snippet", sa.String(), nullable=True),
        sa.Column("has_attachments", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_category", sa.String(), nullable=False, server_default="inbox"),
        sa.Column("folder_name", sa.String(), nullable=True),
        sa.Column("label_ids", sa.JSON(), nullable=True),
        sa.Column("importance", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["email_account.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["folder_id"], ["email_folder.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "message_id", name="uq_email_account_message_id"),
    )
    op.create_index("ix_email_account_id", "email", ["account_id"])
    op.create_index("ix_email_folder_id", "email", ["folder_id"])
    op.create_index("ix_email_received_at", "email", ["received_at"])
    op.create_index("ix_email_folder_name", "email", ["folder_name"])

    op.create_table(
        "sync_run",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("folder_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("sync_mode", sa.String(), nullable=False),
        sa.Column("trigger", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("total_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_inserted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicates_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("api_calls_made", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rate_limit_hits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON(), nullable=True),
        sa.Column("extra", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["email_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_run_account_id", "sync_run", ["account_id"])
    op.create_index("ix_sync_run_correlation_id", "sync_run", ["correlation_id"])
    op.create_index("ix_sync_run_status", "sync_run", ["status"])
    op.create_index("ix_sync_run_started_at", "sync_run", ["started_at"])

    op.create_table(
        "sync_checkpoint",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("sync_mode", sa.String(), nullable=False),
        sa.Column("trigger", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="running"),
        sa.Column("current_step", sa.String(), nullable=True),
        sa.Column("completed_steps", sa.JSON(), nullable=False),
        sa.Column("completed_folder_ids", sa.JSON(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("emails_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_checkpoint_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["email_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("sync_checkpoint")
    op.drop_index("ix_sync_run_started_at", table_name="sync_run")
    op.drop_index("ix_sync_run_status", table_name="sync_run")
    op.drop_index("ix_sync_run_correlation_id", table_name="sync_run")
    op.drop_index("ix_sync_run_account_id", table_name="sync_run")
    op.drop_table("sync_run")
    op.drop_index("ix_email_folder_name", table_name="email")
    op.drop_index("ix_email_received_at", table_name="email")
    op.drop_index("ix_email_folder_id", table_name="email")
    op.drop_index("ix_email_account_id", table_name="email")
    op.drop_table("email")
    op.drop_index("ix_email_folder_folder_type", table_name="email_folder")
    op.drop_index("ix_email_folder_account_id", table_name="email_folder")
    op.drop_table("email_folder")
    op.drop_index("ix_email_account_sync_status", table_name="email_account")
    op.drop_index("ix_email_account_status", table_name="email_account")
    op.drop_index("ix_email_account_email_address", table_name="email_account")
    op.drop_index("ix_email_account_user_id", table_name="email_account")
    op.drop_table("email_account")
