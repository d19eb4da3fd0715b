"""Outlook/Office 365 provider using Microsoft Graph delta queries."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from mailsync.application.dtos.sync import (
    EmailAddress,
    FetchResult,
    ProviderEmail,
    ProviderFolder,
    ProviderToken,
)
from mailsync.domain.exceptions import ProviderAuthError
from mailsync.infrastructure.external.email.errors import raise_for_provider_status
from mailsync.infrastructure.external.email.oauth_drivers import OAuthDriver
from mailsync.infrastructure.external.email.protocols import EmailProviderConfig
from mailsync.shared.enums import SyncMode
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, traced
from mailsync.shared.utils.datetime import parse_iso8601

logger = get_logger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
MESSAGE_FIELDS = (
    "id,conversationId,subject,from,toRecipients,ccRecipients,bccRecipients,"
    "receivedDateTime,sentDateTime,isRead,body,bodyPreview,hasAttachments,"
    "importance,categories,flag,parentFolderId,internetMessageId"
)
SNIPPET_LENGTH = 200


def _address(entry: dict[str, Any] | None) -> EmailAddress | None:
    if not entry:
        return None
    email_address = entry.get("emailAddress") or {}
    address = email_address.get("address")
    if not address:
        return None
    return EmailAddress(email=address, name=email_address.get("name") or None)


def _addresses(entries: list[dict[str, Any]] | None) -> list[EmailAddress]:
    return [a for a in (_address(e) for e in entries or []) if a is not None]


class OutlookProvider:
    """Microsoft Graph mailbox adapter.

    Paging follows @odata.nextLink; the listing is finished when Graph
    returns @odata.deltaLink instead. A nextLink is only ever returned with
    has_more=True, and only a deltaLink is handed back as the resume cursor.
    """

    provider_kind = "graph"

    def __init__(
        self,
        config: EmailProviderConfig,
        *,
        oauth_driver: OAuthDriver | None = None,
        http_client: httpx.AsyncClient | None = None,
        page_size: int = 100,
        timeout: float = 30.0,
    ) -> None:
        self._config = config
        self._access_token: str | None = config.credentials.get("access_token")
        self._refresh_token: str | None = config.credentials.get("refresh_token")
        self._oauth_driver = oauth_driver
        self._shared_http = http_client
        self._page_size = page_size
        self._timeout = timeout
        self.api_calls = 0

    @asynccontextmanager
    async def _http_cm(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield shared HTTP client or a short-lived one (connection reuse when shared)."""
        if self._shared_http is not None:
            yield self._shared_http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _get(self, url: str, headers: dict[str, str] | None = None) -> dict[str, Any]:
        if not self._access_token:
            raise ProviderAuthError(self.provider_kind, None, "no access token")
        request_headers = {"Authorization": f"Bearer {self._access_token}"}
        if headers:
            request_headers.update(headers)
        async with self._http_cm() as client:
            response = await client.get(url, headers=request_headers)
        self.api_calls += 1
        raise_for_provider_status(response, self.provider_kind)
        return response.json()

    @traced("graph.refresh_token")
    async def refresh_token(self) -> ProviderToken:
        if self._oauth_driver is None:
            raise ProviderAuthError(self.provider_kind, None, "no OAuth client configured")
        token = await self._oauth_driver.refresh_access_token(self._refresh_token or "")
        self.api_calls += 1
        self._access_token = token.access_token
        self._refresh_token = token.refresh_token
        return token

    @traced("graph.fetch_folders")
    async def fetch_folders(self) -> list[ProviderFolder]:
        """List all mail folders, descending into child folders."""
        folders: list[ProviderFolder] = []
        await self._collect_folders(
            f"{GRAPH_URL}/me/mailFolders?$top=100&includeHiddenFolders=false", None, folders
        )
        add_span_attributes(folder_count=len(folders))
        logger.info("Fetched %s folders from Graph for %s", len(folders), self._config.email_address)
        return folders

    async def _collect_folders(
        self, url: str | None, parent_id: str | None, out: list[ProviderFolder]
    ) -> None:
        level: list[dict[str, Any]] = []
        while url:
            data = await self._get(url)
            level.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
        for item in level:
            out.append(
                ProviderFolder(
                    id=item["id"],
                    name=item.get("displayName") or item["id"],
                    total_messages=int(item.get("totalItemCount") or 0),
                    unread_messages=int(item.get("unreadItemCount") or 0),
                    role_hint=item.get("wellKnownName"),
                    parent_id=parent_id,
                )
            )
            if int(item.get("childFolderCount") or 0) > 0:
                await self._collect_folders(
                    f"{GRAPH_URL}/me/mailFolders/{item['id']}/childFolders?$top=100",
                    item["id"],
                    out,
                )

    @traced("graph.fetch_emails")
    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> FetchResult:
        url = cursor or f"{GRAPH_URL}/me/mailFolders/{folder_id}/messages/delta?$select={MESSAGE_FIELDS}"
        data = await self._get(url, headers={"Prefer": f"odata.maxpagesize={self._page_size}"})
        emails = [
            self._parse_message(item)
            for item in data.get("value", [])
            if "@removed" not in item
        ]
        next_link = data.get("@odata.nextLink")
        if next_link:
            return FetchResult(emails=emails, next_cursor=next_link, has_more=True)
        return FetchResult(emails=emails, next_cursor=data.get("@odata.deltaLink"), has_more=False)

    def accepts_cursor(self, cursor: str | None, mode: SyncMode) -> bool:
        """Only a completed deltaLink may seed an incremental run."""
        return mode == SyncMode.INCREMENTAL and bool(cursor) and "deltatoken" in cursor.lower()

    def _parse_message(self, item: dict[str, Any]) -> ProviderEmail:
        body = item.get("body") or {}
        content_type = (body.get("contentType") or "").lower()
        preview = item.get("bodyPreview") or ""
        return ProviderEmail(
            provider_id=item["id"],
            message_id=item.get("internetMessageId") or item["id"],
            thread_id=item.get("conversationId"),
            subject=item.get("subject") or "(No Subject)",
            from_address=_address(item.get("from")),
            to_addresses=_addresses(item.get("toRecipients")),
            cc_addresses=_addresses(item.get("ccRecipients")),
            bcc_addresses=_addresses(item.get("bccRecipients")),
            received_at=parse_iso8601(item.get("receivedDateTime")),
            sent_at=parse_iso8601(item.get("sentDateTime")),
            is_read=bool(item.get("isRead", False)),
            body_html=body.get("content") if content_type == "html" else None,
            body_text=body.get("content") if content_type == "text" else None,
            snippet=preview[:SNIPPET_LENGTH],
            has_attachments=bool(item.get("hasAttachments", False)),
            labels=list(item.get("categories") or []),
            importance=item.get("importance") or "normal",
        )

    async def close(self) -> None:
        self._access_token = None
