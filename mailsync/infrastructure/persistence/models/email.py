"""Email ORM model. Canonical message row; (account_id, message_id) is the idempotency key."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import SyncModel


class Email(SyncModel, Base):
    """One synced message. Table: email.

    message_id is the stable identifier (RFC 5322 Message-ID when the
    provider exposes it, else the provider id). Addresses are stored as
    {"name": ..., "email": ...} objects.
    """

    __tablename__ = "email"
    __table_args__ = (
        UniqueConstraint("account_id", "message_id", name="uq_email_account_message_id"),
    )

    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("email_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    folder_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("email_folder.id", ondelete="SET NULL"), nullable=True, index=True
    )
    message_id: Mapped[str] = mapped_column(String, nullable=False)
    provider_id: Mapped[str] = mapped_column(String, nullable=False)
    thread_id: Mapped[str | None] = mapped_column(String, nullable=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    from_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    to_addresses: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    cc_addresses: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    bcc_addresses: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    snippet: Mapped[str | None] = mapped_column(String, nullable=True)
    has_attachments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_category: Mapped[str] = mapped_column(String, nullable=False, default="inbox")
    folder_name: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    label_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    importance: Mapped[str | None] = mapped_column(String, nullable=True)
