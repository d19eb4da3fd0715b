"""Sync DTOs: provider-neutral folder/email shapes, typed upsert payloads, requests and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mailsync.domain.enums import EmailCategory, FolderType
from mailsync.domain.exceptions import ValidationException
from mailsync.shared.enums import SyncMode, SyncOutcome, SyncTrigger

SNIPPET_MAX_LENGTH = 200


@dataclass(frozen=True)
class EmailAddress:
    """A mailbox address with optional display name."""

    email: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email}


@dataclass(frozen=True)
class ProviderToken:
    """Access credential returned by an adapter's refresh_token()."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ProviderFolder:
    """Folder as listed by a provider.

    role_hint is the provider's own classification when it has one (Graph
    well-known name, Gmail system label id, IMAP special-use flag).
    """

    id: str
    name: str
    total_messages: int = 0
    unread_messages: int = 0
    role_hint: str | None = None
    parent_id: str | None = None


@dataclass
class ProviderEmail:
    """Email normalized from any provider into one shape."""

    provider_id: str
    message_id: str
    subject: str
    from_address: EmailAddress | None
    to_addresses: list[EmailAddress] = field(default_factory=list)
    cc_addresses: list[EmailAddress] = field(default_factory=list)
    bcc_addresses: list[EmailAddress] = field(default_factory=list)
    received_at: datetime | None = None
    sent_at: datetime | None = None
    is_read: bool = False
    body_html: str | None = None
    body_text: str | None = None
    snippet: str | None = None
    has_attachments: bool = False
    thread_id: str | None = None
    labels: list[str] = field(default_factory=list)
    importance: str | None = None


@dataclass
class FetchResult:
    """One page of emails from fetch_emails.

    next_cursor is passed back unchanged to continue (has_more=True) or, when
    has_more is False, is the resume token for the next incremental run.
    """

    emails: list[ProviderEmail]
    next_cursor: str | None = None
    has_more: bool = False


@dataclass(frozen=True)
class FolderPolicy:
    """Derived classification and default sync policy for a folder."""

    folder_type: FolderType
    is_system: bool
    icon: str
    sort_order: int
    sync_enabled: bool
    sync_frequency_minutes: int
    sync_days_back: int


@dataclass(frozen=True)
class FolderUpsert:
    """Typed folder write. Classification fields are ignored for user-overridden folders."""

    account_id: str
    provider_folder_id: str
    name: str
    policy: FolderPolicy
    expected_count: int = 0
    parent_provider_id: str | None = None

    def __post_init__(self) -> None:
        if not self.account_id:
            raise ValidationException("account_id is required", field="account_id")
        if not self.provider_folder_id:
            raise ValidationException(
                "provider_folder_id is required", field="provider_folder_id"
            )
        if self.expected_count < 0:
            raise ValidationException(
                "expected_count must be >= 0", field="expected_count"
            )


@dataclass(frozen=True)
class EmailUpsert:
    """Typed email write keyed on (account_id, message_id)."""

    account_id: str
    message_id: str
    provider_id: str
    folder_id: str | None
    folder_name: str | None
    email_category: EmailCategory
    subject: str
    from_address: dict[str, Any] | None
    to_addresses: list[dict[str, Any]]
    cc_addresses: list[dict[str, Any]]
    bcc_addresses: list[dict[str, Any]]
    received_at: datetime | None
    sent_at: datetime | None
    is_read: bool
    body_html: str | None
    body_text: str | None
    snippet: str | None
    has_attachments: bool
    thread_id: str | None = None
    label_ids: list[str] | None = None
    importance: str | None = None
    # Set when written from a starred/important/All Mail view; such a write
    # never reassigns the folder of a message that is already stored.
    from_aggregate_view: bool = False

    # Columns overwritten when the row already exists; everything else
    # (id, created_at, addresses, thread) keeps its first value.
    MUTABLE_FIELDS = (
        "subject",
        "received_at",
        "sent_at",
        "is_read",
        "body_html",
        "body_text",
        "snippet",
        "has_attachments",
        "folder_id",
        "folder_name",
        "email_category",
        "label_ids",
    )
    FOLDER_FIELDS = ("folder_id", "folder_name", "email_category")

    def update_fields(self) -> tuple[str, ...]:
        """Columns to overwrite when the message already exists."""
        if self.from_aggregate_view:
            return tuple(name for name in self.MUTABLE_FIELDS if name not in self.FOLDER_FIELDS)
        return self.MUTABLE_FIELDS

    def __post_init__(self) -> None:
        if not self.account_id:
            raise ValidationException("account_id is required", field="account_id")
        if not self.message_id:
            raise ValidationException("message_id is required", field="message_id")
        if self.snippet is not None and len(self.snippet) > SNIPPET_MAX_LENGTH:
            raise ValidationException(
                f"snippet longer than {SNIPPET_MAX_LENGTH} characters", field="snippet"
            )

    def to_row(self) -> dict[str, Any]:
        """Column values for INSERT."""
        return {
            "account_id": self.account_id,
            "message_id": self.message_id,
            "provider_id": self.provider_id,
            "folder_id": self.folder_id,
            "folder_name": self.folder_name,
            "email_category": self.email_category.value,
            "subject": self.subject,
            "from_address": self.from_address,
            "to_addresses": self.to_addresses,
            "cc_addresses": self.cc_addresses,
            "bcc_addresses": self.bcc_addresses,
            "received_at": self.received_at,
            "sent_at": self.sent_at,
            "is_read": self.is_read,
            "body_html": self.body_html,
            "body_text": self.body_text,
            "snippet": self.snippet,
            "has_attachments": self.has_attachments,
            "thread_id": self.thread_id,
            "label_ids": self.label_ids,
            "importance": self.importance,
        }


@dataclass(frozen=True)
class SyncRequest:
    """Trigger event for one account sync."""

    account_id: str
    user_id: str
    sync_mode: SyncMode = SyncMode.INCREMENTAL
    trigger: SyncTrigger = SyncTrigger.MANUAL


@dataclass
class SyncResult:
    """Outcome of a runner/orchestrator invocation."""

    account_id: str
    outcome: SyncOutcome
    run_id: str | None = None
    emails_synced: int = 0
    folders_processed: int = 0
    attempts: int = 0
    error: str | None = None
    retryable: bool = False
    folder_counts: dict[str, int] = field(default_factory=dict)
