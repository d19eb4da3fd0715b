"""In-memory provider adapter and helpers shared by the sync tests."""

from __future__ import annotations

from datetime import timedelta

from mailsync.application.dtos.sync import (
    EmailAddress,
    FetchResult,
    ProviderEmail,
    ProviderFolder,
    ProviderToken,
)
from mailsync.shared.enums import SyncMode
from mailsync.shared.utils.datetime import utc_now


def make_email(
    message_id: str,
    *,
    subject: str = "Quarterly report",
    is_read: bool = False,
    snippet: str | None = "Please find attached",
) -> ProviderEmail:
    received = utc_now() - timedelta(hours=1)
    return ProviderEmail(
        provider_id=f"prov-{message_id}",
        message_id=message_id,
        subject=subject,
        from_address=EmailAddress(email="alice@example.com", name="Alice"),
        to_addresses=[EmailAddress(email="owner@example.com")],
        received_at=received,
        sent_at=received,
        is_read=is_read,
        body_text="Hello",
        snippet=snippet,
    )


def build_mailbox(
    counts: dict[str, int],
) -> tuple[list[ProviderFolder], dict[str, list[ProviderEmail]]]:
    """Folders named after the keys holding that many messages; ids are the lowercased names."""
    folders: list[ProviderFolder] = []
    messages: dict[str, list[ProviderEmail]] = {}
    for name, count in counts.items():
        folder_id = name.lower()
        folders.append(ProviderFolder(id=folder_id, name=name, total_messages=count))
        messages[folder_id] = [make_email(f"<{folder_id}-{i}@example.com>") for i in range(count)]
    return folders, messages


class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeProvider:
    """Provider adapter over in-memory folders.

    Cursors are "page:<folder>:<offset>" while a listing is in progress and
    "delta:<folder>:<offset>" once it is complete; only delta cursors are
    resumable, and only in incremental mode. visible limits how many
    messages of a folder the listing returns, to simulate a short listing.
    fetch_errors holds (folder_id, exception) pairs, each raised once on
    the next fetch of that folder.
    """

    provider_kind = "fake"

    def __init__(
        self,
        folders: list[ProviderFolder],
        messages: dict[str, list[ProviderEmail]],
        *,
        page_size: int = 50,
        visible: dict[str, int] | None = None,
        refresh_error: Exception | None = None,
        fetch_errors: list[tuple[str, Exception]] | None = None,
    ) -> None:
        self.folders = folders
        self.messages = messages
        self.page_size = page_size
        self.visible = visible or {}
        self.refresh_error = refresh_error
        self.fetch_errors = list(fetch_errors or [])
        self.api_calls = 0
        self.refresh_calls = 0
        self.fetch_log: list[tuple[str, str | None]] = []
        self.closed = False

    async def refresh_token(self) -> ProviderToken:
        self.api_calls += 1
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return ProviderToken(
            access_token="fresh-access",
            refresh_token="refresh-2",
            expires_at=utc_now() + timedelta(hours=1),
        )

    async def fetch_folders(self) -> list[ProviderFolder]:
        self.api_calls += 1
        return list(self.folders)

    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> FetchResult:
        self.api_calls += 1
        self.fetch_log.append((folder_id, cursor))
        for index, (failing_folder, error) in enumerate(self.fetch_errors):
            if failing_folder == folder_id:
                del self.fetch_errors[index]
                raise error
        items = self.messages.get(folder_id, [])
        limit = min(self.visible.get(folder_id, len(items)), len(items))
        start = int(cursor.rsplit(":", 1)[1]) if cursor else 0
        end = min(start + self.page_size, limit)
        if end < limit:
            return FetchResult(
                emails=items[start:end], next_cursor=f"page:{folder_id}:{end}", has_more=True
            )
        return FetchResult(
            emails=items[start:end], next_cursor=f"delta:{folder_id}:{end}", has_more=False
        )

    def accepts_cursor(self, cursor: str | None, mode: SyncMode) -> bool:
        return mode == SyncMode.INCREMENTAL and bool(cursor) and cursor.startswith("delta:")

    async def close(self) -> None:
        self.closed = True

    def fetches_for(self, folder_id: str) -> list[str | None]:
        """Cursors passed to fetch_emails for folder_id, in call order."""
        return [cursor for folder, cursor in self.fetch_log if folder == folder_id]
