"""Tests for the Gmail adapter against an in-memory Gmail API service."""

import base64
import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from mailsync.domain.exceptions import ProviderAuthError, ProviderRateLimitError
from mailsync.infrastructure.external.email.protocols import EmailProviderConfig
from mailsync.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailsync.shared.enums import SyncMode


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _http_error(status: int, headers: dict[str, str] | None = None) -> HttpError:
    resp = httplib2.Response({"status": str(status), **(headers or {})})
    content = json.dumps({"error": {"code": status, "message": "error"}}).encode()
    return HttpError(resp, content)


def _gmail_message(msg_id: str, *, labels: tuple[str, ...] = ("INBOX", "UNREAD")) -> dict[str, Any]:
    return {
        "id": msg_id,
        "threadId": f"thread-{msg_id}",
        "labelIds": list(labels),
        "snippet": f"snippet {msg_id}",
        "internalDate": "1767225600000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "owner@example.com, Carol <carol@example.com>"},
                {"name": "Subject", "value": f"Subject {msg_id}"},
                {"name": "Message-ID", "value": f"<{msg_id}@mail.gmail.com>"},
                {"name": "Date", "value": "Wed, 31 Dec 2025 23:59:00 +0000"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": _b64("plain body")}},
                        {"mimeType": "text/html", "body": {"data": _b64("<b>html body</b>")}},
                    ],
                },
                {"mimeType": "application/pdf", "filename": "invoice.pdf", "body": {"attachmentId": "a1"}},
            ],
        },
    }


def _request(result: Any = None, error: Exception | None = None) -> MagicMock:
    request = MagicMock()
    if error is not None:
        request.execute.side_effect = error
    else:
        request.execute.return_value = result
    return request


class FakeBatch:
    def __init__(self, service: "FakeGmailService") -> None:
        self.service = service
        self.entries: list[tuple[str, Any]] = []

    def add(self, request: Any, callback: Any) -> None:
        self.entries.append((request.msg_id, callback))

    def execute(self) -> None:
        for msg_id, callback in self.entries:
            if msg_id in self.service.message_errors:
                callback(msg_id, None, self.service.message_errors[msg_id])
            else:
                callback(msg_id, self.service.message_store[msg_id], None)


class FakeGmailService:
    """Just enough of the discovery-built Gmail v1 client for the adapter."""

    def __init__(self) -> None:
        self.labels_payload: list[dict[str, Any]] = []
        self.label_details: dict[str, dict[str, Any]] = {}
        self.pages: dict[str | None, dict[str, Any]] = {}
        self.list_error: Exception | None = None
        self.history_result: dict[str, Any] | Exception = {}
        self.message_store: dict[str, dict[str, Any]] = {}
        self.message_errors: dict[str, Exception] = {}
        self.history_id = "9001"
        self.profile_calls = 0
        self.list_calls: list[dict[str, Any]] = []
        self.history_calls: list[dict[str, Any]] = []

    def users(self) -> "FakeGmailService":
        return self

    def labels(self) -> SimpleNamespace:
        return SimpleNamespace(
            list=lambda userId: _request({"labels": self.labels_payload}),
            get=lambda userId, id: _request(self.label_details.get(id, {})),
        )

    def getProfile(self, userId: str) -> MagicMock:
        self.profile_calls += 1
        return _request({"emailAddress": "owner@gmail.com", "historyId": self.history_id})

    def messages(self) -> SimpleNamespace:
        return SimpleNamespace(list=self._list, get=lambda userId, id, format: SimpleNamespace(msg_id=id))

    def history(self) -> SimpleNamespace:
        return SimpleNamespace(list=self._history)

    def new_batch_http_request(self) -> FakeBatch:
        return FakeBatch(self)

    def _list(self, **kwargs: Any) -> MagicMock:
        self.list_calls.append(kwargs)
        if self.list_error is not None:
            return _request(error=self.list_error)
        return _request(self.pages[kwargs.get("pageToken")])

    def _history(self, **kwargs: Any) -> MagicMock:
        self.history_calls.append(kwargs)
        if isinstance(self.history_result, Exception):
            return _request(error=self.history_result)
        return _request(self.history_result)


@pytest.fixture
def service() -> FakeGmailService:
    service = FakeGmailService()
    for msg_id in ("m1", "m2", "m3", "m4"):
        service.message_store[msg_id] = _gmail_message(msg_id)
    service.pages = {
        None: {"messages": [{"id": "m1"}, {"id": "m2"}], "nextPageToken": "tok-2"},
        "tok-2": {"messages": [{"id": "m3"}]},
    }
    return service


def _provider(service: FakeGmailService) -> GmailProvider:
    config = EmailProviderConfig(
        provider_kind="gmail",
        email_address="owner@gmail.com",
        credentials={"access_token": "a", "refresh_token": "r"},
    )
    return GmailProvider(config, service=service, page_size=2)


async def test_fetch_folders_skips_pseudo_labels(service: FakeGmailService) -> None:
    """CATEGORY_*, UNREAD and CHAT are not folders; system labels carry a role hint."""
    service.labels_payload = [
        {"id": "INBOX", "name": "INBOX", "type": "system"},
        {"id": "SENT", "name": "SENT", "type": "system"},
        {"id": "UNREAD", "name": "UNREAD", "type": "system"},
        {"id": "CHAT", "name": "CHAT", "type": "system"},
        {"id": "CATEGORY_PROMOTIONS", "name": "CATEGORY_PROMOTIONS", "type": "system"},
        {"id": "Label_7", "name": "Receipts", "type": "user"},
    ]
    service.label_details = {
        "INBOX": {"messagesTotal": 120, "messagesUnread": 4},
        "SENT": {"messagesTotal": 40},
    }
    folders = await _provider(service).fetch_folders()
    assert [f.id for f in folders] == ["INBOX", "SENT", "Label_7"]
    assert folders[0].total_messages == 120
    assert folders[0].unread_messages == 4
    assert folders[0].role_hint == "INBOX"
    assert folders[2].role_hint is None
    assert folders[2].name == "Receipts"


async def test_full_listing_pins_history_id(service: FakeGmailService) -> None:
    """Pages carry the history id taken before the first page; the end cursor is history:<id>."""
    provider = _provider(service)
    first = await provider.fetch_emails("INBOX")
    assert first.has_more is True
    assert first.next_cursor == "page:9001:tok-2"
    assert [e.provider_id for e in first.emails] == ["m1", "m2"]

    service.history_id = "9999"
    second = await provider.fetch_emails("INBOX", first.next_cursor)
    assert second.has_more is False
    assert second.next_cursor == "history:9001"
    assert [e.provider_id for e in second.emails] == ["m3"]
    assert service.profile_calls == 1
    assert service.list_calls[1]["pageToken"] == "tok-2"
    assert service.list_calls[0]["labelIds"] == ["INBOX"]


async def test_history_page_returns_changed_messages(service: FakeGmailService) -> None:
    """Incremental runs read history; a removal of this label is not re-fetched."""
    service.history_result = {
        "history": [
            {"messagesAdded": [{"message": {"id": "m4"}}]},
            {"labelsAdded": [{"message": {"id": "m2"}}, {"message": {"id": "m4"}}]},
            {"labelsRemoved": [{"message": {"id": "m1"}, "labelIds": ["INBOX"]}]},
        ],
        "historyId": "9050",
    }
    result = await _provider(service).fetch_emails("INBOX", "history:9001")
    assert [e.provider_id for e in result.emails] == ["m4", "m2"]
    assert result.has_more is False
    assert result.next_cursor == "history:9050"
    assert service.history_calls[0]["startHistoryId"] == "9001"
    assert service.history_calls[0]["labelId"] == "INBOX"
    assert service.list_calls == []


async def test_expired_history_falls_back_to_full_listing(service: FakeGmailService) -> None:
    """A 404 on history.list restarts the folder from a fresh listing."""
    service.history_result = _http_error(404)
    result = await _provider(service).fetch_emails("INBOX", "history:1")
    assert result.next_cursor == "page:9001:tok-2"
    assert [e.provider_id for e in result.emails] == ["m1", "m2"]


def test_accepts_only_history_cursors_incrementally(service: FakeGmailService) -> None:
    provider = _provider(service)
    assert provider.accepts_cursor("history:9001", SyncMode.INCREMENTAL) is True
    assert provider.accepts_cursor("page:9001:tok-2", SyncMode.INCREMENTAL) is False
    assert provider.accepts_cursor("history:9001", SyncMode.INITIAL) is False


async def test_message_parsing(service: FakeGmailService) -> None:
    """Headers, MIME bodies, labels and attachments map onto ProviderEmail."""
    email = (await _provider(service).fetch_emails("INBOX")).emails[0]
    assert email.message_id == "<m1@mail.gmail.com>"
    assert email.thread_id == "thread-m1"
    assert email.subject == "Subject m1"
    assert email.from_address is not None
    assert email.from_address.email == "alice@example.com"
    assert [a.email for a in email.to_addresses] == ["owner@example.com", "carol@example.com"]
    assert email.body_text == "plain body"
    assert email.body_html == "<b>html body</b>"
    assert email.has_attachments is True
    assert email.is_read is False
    assert email.received_at is not None and email.received_at.year == 2026
    assert email.sent_at is not None and email.sent_at.year == 2025
    assert email.importance == "normal"


async def test_single_message_failure_is_skipped(service: FakeGmailService) -> None:
    """A message that cannot be fetched is left out of the page."""
    service.message_errors["m1"] = _http_error(404)
    result = await _provider(service).fetch_emails("INBOX")
    assert [e.provider_id for e in result.emails] == ["m2"]


async def test_rate_limited_batch_raises(service: FakeGmailService) -> None:
    """Throttling inside the batch fails the page so it can be retried."""
    service.message_errors["m2"] = _http_error(429, {"retry-after": "30"})
    with pytest.raises(ProviderRateLimitError) as exc_info:
        await _provider(service).fetch_emails("INBOX")
    assert exc_info.value.retry_after == 30


async def test_list_unauthorized_is_auth_error(service: FakeGmailService) -> None:
    service.list_error = _http_error(401)
    with pytest.raises(ProviderAuthError):
        await _provider(service).fetch_emails("INBOX")


async def test_api_calls_counted(service: FakeGmailService) -> None:
    """Profile, list and one batch count as three calls."""
    provider = _provider(service)
    await provider.fetch_emails("INBOX")
    assert provider.api_calls == 3
