"""EmailFolder ORM model. Provider folder with canonical type, policy and cursor."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import SyncModel


class EmailFolder(SyncModel, Base):
    """One mailbox folder of an account. Table: email_folder.

    message_count/unread_count are derived from the email table after each
    run. expected_count is what the provider reported at folder sync time
    and is only used to judge sync coverage. sync_cursor is opaque and only
    ever handed back to the adapter that produced it.
    """

    __tablename__ = "email_folder"
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "provider_folder_id",
            name="uq_email_folder_account_provider_folder",
        ),
    )

    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("email_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_folder_id: Mapped[str] = mapped_column(String, nullable=False)
    parent_provider_id: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    folder_type: Mapped[str] = mapped_column(String, nullable=False, default="custom", index=True)
    type_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    icon: Mapped[str] = mapped_column(String, nullable=False, default="folder")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sync_frequency_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    sync_days_back: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_status: Mapped[str] = mapped_column(String, nullable=False, default="idle")
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
