"""Email provider protocol and connection config (provider-agnostic)."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from mailsync.application.dtos.sync import FetchResult, ProviderFolder, ProviderToken
from mailsync.shared.enums import SyncMode


@dataclass
class EmailProviderConfig:
    """Decrypted credentials and connection parameters for one account."""

    provider_kind: str
    email_address: str
    credentials: dict[str, Any]
    connection_params: dict[str, Any] = field(default_factory=dict)
    token_expires_at: datetime | None = None


@runtime_checkable
class IEmailProvider(Protocol):
    """Uniform interface over Graph-delta, label-based and IMAP mailboxes.

    fetch_emails(folder_id) with no cursor always means a full listing.
    While has_more is True the returned cursor continues the same listing;
    once has_more is False it is the resume point for the next incremental
    run. Cursors are opaque outside the adapter that produced them.
    """

    provider_kind: str
    api_calls: int

    async def refresh_token(self) -> ProviderToken:
        """Obtain a fresh access credential. Raises ProviderAuthError when rejected."""
        ...

    async def fetch_folders(self) -> list[ProviderFolder]:
        """List every folder (fully paginated)."""
        ...

    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> FetchResult:
        """Fetch one page of emails for folder_id."""
        ...

    def accepts_cursor(self, cursor: str | None, mode: SyncMode) -> bool:
        """Whether a persisted cursor may seed a run in this mode."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...
