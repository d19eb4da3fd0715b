"""EmailAccount ORM model. One connected mailbox and its sync state."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import SyncModel


class EmailAccount(SyncModel, Base):
    """Email account credentials and sync state. Table: email_account.

    status is connection health (active/error/disabled); sync_status says
    whether a workflow is running (idle/syncing/error).
    """

    __tablename__ = "email_account"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    provider_kind: Mapped[str] = mapped_column(String, nullable=False)
    email_address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    credentials_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    connection_params: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    token_last_refreshed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active", index=True)
    sync_status: Mapped[str] = mapped_column(String, nullable=False, default="idle", index=True)
    sync_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_successful_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    initial_sync_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auth_failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
