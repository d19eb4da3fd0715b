"""SyncCheckpoint ORM model. Durable state of the latest workflow per account."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import SyncModel


class SyncCheckpoint(SyncModel, Base):
    """Checkpoint written after every orchestrator step. Table: sync_checkpoint.

    One row per account (unique account_id). A retry resumes after
    completed_steps / completed_folder_ids when status is running or failed
    and last_checkpoint_at is recent enough.
    """

    __tablename__ = "sync_checkpoint"

    account_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("email_account.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    run_id: Mapped[str] = mapped_column(String, nullable=False)
    sync_mode: Mapped[str] = mapped_column(String, nullable=False)
    trigger: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="running")
    current_step: Mapped[str | None] = mapped_column(String, nullable=True)
    completed_steps: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    completed_folder_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    emails_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_checkpoint_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
