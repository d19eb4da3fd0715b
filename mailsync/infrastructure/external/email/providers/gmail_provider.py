"""Gmail provider using the Gmail API (labels as folders, history for incremental sync)."""

from __future__ import annotations

import asyncio
import base64
from email.utils import getaddresses
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailsync.application.dtos.sync import (
    EmailAddress,
    FetchResult,
    ProviderEmail,
    ProviderFolder,
    ProviderToken,
)
from mailsync.domain.exceptions import (
    InvalidProviderRequestError,
    MailSyncException,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)
from mailsync.infrastructure.external.email.errors import parse_retry_after
from mailsync.infrastructure.external.email.oauth_drivers import OAuthDriver
from mailsync.infrastructure.external.email.protocols import EmailProviderConfig
from mailsync.shared.enums import SyncMode
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, traced
from mailsync.shared.utils.datetime import from_timestamp_ms_utc, parse_rfc2822

logger = get_logger(__name__)

BATCH_SIZE = 100
SNIPPET_LENGTH = 200
# Pseudo-labels that are message states or duplicate views, not folders.
_SKIPPED_LABELS = frozenset({"UNREAD", "CHAT"})
_RATE_LIMIT_REASONS = ("ratelimitexceeded", "userratelimitexceeded", "quotaexceeded")

# Cursor formats:
#   page:<historyId>:<pageToken>     mid-way through a full listing
#   history:<historyId>              resume point after a completed listing
#   history:<historyId>:<pageToken>  mid-way through a history listing
PAGE_PREFIX = "page:"
HISTORY_PREFIX = "history:"


class HistoryExpiredError(Exception):
    """Raised when the stored history id is too old (404/410); a full listing is needed."""


def _header(headers: list[dict[str, str]], name: str) -> str:
    lowered = name.lower()
    for header in headers:
        if (header.get("name") or "").lower() == lowered:
            return header.get("value") or ""
    return ""


def _parse_addresses(value: str) -> list[EmailAddress]:
    return [
        EmailAddress(email=address, name=name or None)
        for name, address in getaddresses([value])
        if address
    ]


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode()).decode("utf-8", errors="replace")


def _extract_body(part: dict[str, Any] | None, mime_type: str) -> str | None:
    """Depth-first search of the MIME tree for the first part of mime_type."""
    if not part:
        return None
    data = (part.get("body") or {}).get("data")
    if part.get("mimeType") == mime_type and data:
        return _decode_body(data)
    for child in part.get("parts") or []:
        found = _extract_body(child, mime_type)
        if found is not None:
            return found
    return None


def _has_attachments(part: dict[str, Any] | None) -> bool:
    if not part:
        return False
    if part.get("filename"):
        return True
    return any(_has_attachments(child) for child in part.get("parts") or [])


class GmailProvider:
    """Gmail adapter; each label is a folder.

    A full listing pins the mailbox historyId before the first page so the
    resume cursor it ends with covers every change made during the listing.
    """

    provider_kind = "gmail"

    def __init__(
        self,
        config: EmailProviderConfig,
        *,
        oauth_driver: OAuthDriver | None = None,
        service: Any = None,
        page_size: int = 100,
    ) -> None:
        self._config = config
        self._access_token: str | None = config.credentials.get("access_token")
        self._refresh_token: str | None = config.credentials.get("refresh_token")
        self._oauth_driver = oauth_driver
        self._service = service
        self._page_size = page_size
        self.api_calls = 0

    async def _get_service(self) -> Any:
        if self._service is None:
            if not self._access_token:
                raise ProviderAuthError(self.provider_kind, None, "no access token")
            creds = Credentials(token=self._access_token)
            self._service = await asyncio.to_thread(
                build, "gmail", "v1", credentials=creds, cache_discovery=False
            )
        return self._service

    async def _execute(self, request: Any) -> dict[str, Any]:
        self.api_calls += 1
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            raise self._map_http_error(e) from e

    def _map_http_error(self, error: HttpError) -> MailSyncException:
        status = int(getattr(error.resp, "status", 0) or 0)
        detail = str(error)
        if status == 401:
            return ProviderAuthError(self.provider_kind, status, detail)
        if status == 429 or (status == 403 and any(r in detail.lower() for r in _RATE_LIMIT_REASONS)):
            retry_after = error.resp.get("retry-after") if hasattr(error.resp, "get") else None
            return ProviderRateLimitError(self.provider_kind, parse_retry_after(retry_after))
        if status == 400:
            return InvalidProviderRequestError(self.provider_kind, detail)
        return ProviderUnavailableError(self.provider_kind, status, f"Gmail API error {status}: {detail}")

    @traced("gmail.refresh_token")
    async def refresh_token(self) -> ProviderToken:
        if self._oauth_driver is None:
            raise ProviderAuthError(self.provider_kind, None, "no OAuth client configured")
        token = await self._oauth_driver.refresh_access_token(self._refresh_token or "")
        self.api_calls += 1
        self._access_token = token.access_token
        self._refresh_token = token.refresh_token
        self._service = None
        return token

    @traced("gmail.fetch_folders")
    async def fetch_folders(self) -> list[ProviderFolder]:
        """labels.list, then labels.get per label for message counts."""
        service = await self._get_service()
        response = await self._execute(service.users().labels().list(userId="me"))
        folders: list[ProviderFolder] = []
        for label in response.get("labels", []):
            label_id = label["id"]
            if label_id in _SKIPPED_LABELS or label_id.startswith("CATEGORY_"):
                continue
            detail = await self._execute(service.users().labels().get(userId="me", id=label_id))
            folders.append(
                ProviderFolder(
                    id=label_id,
                    name=label.get("name") or label_id,
                    total_messages=int(detail.get("messagesTotal") or 0),
                    unread_messages=int(detail.get("messagesUnread") or 0),
                    role_hint=label_id if label.get("type") == "system" else None,
                )
            )
        add_span_attributes(folder_count=len(folders))
        logger.info("Fetched %s labels from Gmail for %s", len(folders), self._config.email_address)
        return folders

    @traced("gmail.fetch_emails")
    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> FetchResult:
        if cursor and cursor.startswith(HISTORY_PREFIX):
            try:
                return await self._fetch_history_page(folder_id, cursor)
            except HistoryExpiredError:
                logger.warning("Gmail history expired for label %s; falling back to full listing", folder_id)
                return await self._fetch_listing_page(folder_id, None)
        return await self._fetch_listing_page(folder_id, cursor)

    def accepts_cursor(self, cursor: str | None, mode: SyncMode) -> bool:
        """Only a history cursor may seed an incremental run."""
        return mode == SyncMode.INCREMENTAL and bool(cursor) and cursor.startswith(HISTORY_PREFIX)

    async def _fetch_listing_page(self, folder_id: str, cursor: str | None) -> FetchResult:
        service = await self._get_service()
        if cursor and cursor.startswith(PAGE_PREFIX):
            _, history_id, page_token = cursor.split(":", 2)
        else:
            profile = await self._execute(service.users().getProfile(userId="me"))
            history_id, page_token = str(profile.get("historyId", "")), None
        response = await self._execute(
            service.users().messages().list(
                userId="me",
                labelIds=[folder_id],
                maxResults=self._page_size,
                pageToken=page_token,
            )
        )
        ids = [m["id"] for m in response.get("messages", [])]
        emails = await self._get_messages(ids)
        next_page = response.get("nextPageToken")
        if next_page:
            return FetchResult(emails=emails, next_cursor=f"{PAGE_PREFIX}{history_id}:{next_page}", has_more=True)
        return FetchResult(emails=emails, next_cursor=f"{HISTORY_PREFIX}{history_id}", has_more=False)

    async def _fetch_history_page(self, folder_id: str, cursor: str) -> FetchResult:
        parts = cursor[len(HISTORY_PREFIX):].split(":", 1)
        start_history_id = parts[0]
        page_token = parts[1] if len(parts) > 1 else None
        service = await self._get_service()
        try:
            response = await self._execute(
                service.users().history().list(
                    userId="me",
                    startHistoryId=start_history_id,
                    labelId=folder_id,
                    historyTypes=["messageAdded", "labelAdded", "labelRemoved"],
                    maxResults=self._page_size,
                    pageToken=page_token,
                )
            )
        except ProviderUnavailableError as e:
            if e.status_code in (404, 410):
                raise HistoryExpiredError(start_history_id) from e
            raise
        ids: list[str] = []
        for record in response.get("history", []):
            changed = [entry["message"]["id"] for entry in record.get("messagesAdded", [])]
            changed += [entry["message"]["id"] for entry in record.get("labelsAdded", [])]
            changed += [
                entry["message"]["id"]
                for entry in record.get("labelsRemoved", [])
                if folder_id not in (entry.get("labelIds") or [])
            ]
            ids.extend(i for i in changed if i not in ids)
        emails = await self._get_messages(ids)
        next_page = response.get("nextPageToken")
        if next_page:
            return FetchResult(
                emails=emails,
                next_cursor=f"{HISTORY_PREFIX}{start_history_id}:{next_page}",
                has_more=True,
            )
        latest = response.get("historyId") or start_history_id
        return FetchResult(emails=emails, next_cursor=f"{HISTORY_PREFIX}{latest}", has_more=False)

    async def _get_messages(self, message_ids: list[str]) -> list[ProviderEmail]:
        """messages.get(format=full) through the batch API, preserving list order."""
        if not message_ids:
            return []
        service = await self._get_service()
        emails: list[ProviderEmail] = []
        for batch_start in range(0, len(message_ids), BATCH_SIZE):
            batch_ids = message_ids[batch_start : batch_start + BATCH_SIZE]
            results: dict[str, dict[str, Any]] = {}
            failures: dict[str, HttpError] = {}

            def add_callback(msg_id: str):
                def cb(request_id: str, response: dict[str, Any], exception: Exception | None) -> None:
                    if exception is not None:
                        failures[msg_id] = exception
                    else:
                        results[msg_id] = response

                return cb

            batch = service.new_batch_http_request()
            for msg_id in batch_ids:
                batch.add(
                    service.users().messages().get(userId="me", id=msg_id, format="full"),
                    callback=add_callback(msg_id),
                )
            self.api_calls += 1
            await asyncio.to_thread(batch.execute)

            for msg_id, error in failures.items():
                mapped = self._map_http_error(error) if isinstance(error, HttpError) else error
                if isinstance(mapped, (ProviderRateLimitError, ProviderAuthError)):
                    raise mapped
                logger.warning("Gmail message %s could not be fetched: %s", msg_id, error)
            emails.extend(self._parse_message(results[i]) for i in batch_ids if i in results)
        return emails

    def _parse_message(self, message: dict[str, Any]) -> ProviderEmail:
        payload = message.get("payload") or {}
        headers = payload.get("headers") or []
        from_list = _parse_addresses(_header(headers, "From"))
        internal_date = message.get("internalDate")
        received_at = from_timestamp_ms_utc(int(internal_date)) if internal_date else None
        labels = list(message.get("labelIds") or [])
        return ProviderEmail(
            provider_id=message["id"],
            message_id=_header(headers, "Message-ID") or message["id"],
            thread_id=message.get("threadId"),
            subject=_header(headers, "Subject") or "(No Subject)",
            from_address=from_list[0] if from_list else None,
            to_addresses=_parse_addresses(_header(headers, "To")),
            cc_addresses=_parse_addresses(_header(headers, "Cc")),
            bcc_addresses=_parse_addresses(_header(headers, "Bcc")),
            received_at=received_at,
            sent_at=parse_rfc2822(_header(headers, "Date")) or received_at,
            is_read="UNREAD" not in labels,
            body_html=_extract_body(payload, "text/html"),
            body_text=_extract_body(payload, "text/plain"),
            snippet=(message.get("snippet") or "")[:SNIPPET_LENGTH],
            has_attachments=_has_attachments(payload),
            labels=labels,
            importance="high" if "IMPORTANT" in labels else "normal",
        )

    async def close(self) -> None:
        self._service = None
