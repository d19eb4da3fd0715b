"""IMAP email provider (iCloud, Yahoo, custom servers)."""

from __future__ import annotations

import asyncio
import email
import re
from email.message import EmailMessage as MimeMessage
from email.policy import default as default_policy
from email.utils import getaddresses
from typing import Any, Callable

import aioimaplib
from imapclient import imap_utf7

from mailsync.application.dtos.sync import (
    EmailAddress,
    FetchResult,
    ProviderEmail,
    ProviderFolder,
    ProviderToken,
)
from mailsync.domain.exceptions import ProviderAuthError, ProviderUnavailableError
from mailsync.infrastructure.external.email.protocols import EmailProviderConfig
from mailsync.shared.enums import SyncMode
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, traced
from mailsync.shared.utils.datetime import parse_rfc2822

logger = get_logger(__name__)

DEFAULT_PORT = 993
SNIPPET_LENGTH = 200
CURSOR_PREFIX = "uid:"

_LIST_RE = re.compile(rb'\((?P<flags>[^)]*)\)\s+(?P<delim>"[^"]*"|NIL)\s+(?P<name>.+)$')
_STATUS_RE = re.compile(rb"(MESSAGES|UNSEEN)\s+(\d+)")
_UIDVALIDITY_RE = re.compile(rb"UIDVALIDITY\s+(\d+)")
_FETCH_UID_RE = re.compile(rb"UID\s+(\d+)")
_FETCH_FLAGS_RE = re.compile(rb"FLAGS\s+\(([^)]*)\)")
_SPECIAL_USE = (
    "\\sent", "\\drafts", "\\trash", "\\junk", "\\archive", "\\all", "\\flagged", "\\important",
)


def _quote(mailbox: str) -> str:
    return '"' + mailbox.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _unquote(value: bytes) -> str:
    text = value.decode("utf-8", errors="replace").strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return text


def _addresses(value: str | None) -> list[EmailAddress]:
    if not value:
        return []
    return [
        EmailAddress(email=address, name=name or None)
        for name, address in getaddresses([str(value)])
        if address
    ]


def _part_content(message: MimeMessage, subtype: str) -> str | None:
    part = message.get_body(preferencelist=(subtype,))
    if part is None or part.get_content_subtype() != subtype:
        return None
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def parse_cursor(cursor: str | None) -> tuple[int, int] | None:
    """(uidvalidity, last_uid) from a uid:<uidvalidity>:<last_uid> cursor."""
    if not cursor or not cursor.startswith(CURSOR_PREFIX):
        return None
    try:
        validity, last_uid = cursor[len(CURSOR_PREFIX):].split(":", 1)
        return int(validity), int(last_uid)
    except ValueError:
        return None


class IMAPProvider:
    """IMAP adapter over one authenticated session.

    The cursor is a UID watermark scoped to the mailbox UIDVALIDITY; when
    the server resets UIDVALIDITY the watermark is ignored and the folder is
    listed again from the start.
    """

    provider_kind = "imap"

    def __init__(
        self,
        config: EmailProviderConfig,
        *,
        client_factory: Callable[[str, int], Any] | None = None,
        page_size: int = 100,
        timeout: float = 30.0,
    ) -> None:
        self._config = config
        self._client: Any = None
        self._client_factory = client_factory or (
            lambda host, port: aioimaplib.IMAP4_SSL(host=host, port=port, timeout=timeout)
        )
        self._page_size = page_size
        self._selected: str | None = None
        self.api_calls = 0

    @property
    def _password(self) -> str:
        return self._config.credentials.get("password") or ""

    async def _ensure_connected(self) -> Any:
        if self._client is not None:
            return self._client
        params = self._config.connection_params or {}
        host = params.get("imap_server") or params.get("host")
        port = int(params.get("imap_port") or params.get("port") or DEFAULT_PORT)
        if not host:
            raise ProviderUnavailableError(self.provider_kind, None, "imap_server required in connection_params")
        username = self._config.credentials.get("username") or self._config.email_address
        if not self._password:
            raise ProviderAuthError(self.provider_kind, None, "no password stored")
        logger.info("Connecting to IMAP server: %s:%s", host, port)
        client = self._client_factory(host, port)
        try:
            await client.wait_hello_from_server()
            response = await client.login(username, self._password)
        except (OSError, asyncio.TimeoutError) as e:
            raise ProviderUnavailableError(self.provider_kind, None, f"IMAP connection failed: {e}") from e
        self.api_calls += 1
        if response.result != "OK":
            reason = b" ".join(line for line in response.lines if isinstance(line, bytes)).decode(errors="replace")
            raise ProviderAuthError(self.provider_kind, None, reason or "LOGIN rejected")
        self._client = client
        return client

    async def _command(self, name: str, *args: Any, **kwargs: Any) -> Any:
        client = await self._ensure_connected()
        response = await getattr(client, name)(*args, **kwargs)
        self.api_calls += 1
        if response.result != "OK":
            raise ProviderUnavailableError(
                self.provider_kind, None, f"IMAP {name.upper()} failed: {response.result}"
            )
        return response

    @traced("imap.refresh_token")
    async def refresh_token(self) -> ProviderToken:
        """Password accounts have no OAuth token; the stored password is returned."""
        if not self._password:
            raise ProviderAuthError(self.provider_kind, None, "no password stored")
        return ProviderToken(access_token=self._password)

    @traced("imap.fetch_folders")
    async def fetch_folders(self) -> list[ProviderFolder]:
        response = await self._command("list", '""', "*")
        folders: list[ProviderFolder] = []
        for line in response.lines:
            if not isinstance(line, bytes):
                continue
            match = _LIST_RE.match(line.strip())
            if match is None:
                continue
            flags = match.group("flags").decode(errors="replace").lower().split()
            if "\\noselect" in flags or "\\nonexistent" in flags:
                continue
            # Mailbox names are modified UTF-7 on the wire; the raw form stays the id.
            raw_name = _unquote(match.group("name"))
            delimiter = _unquote(match.group("delim")) if match.group("delim") != b"NIL" else ""
            total, unseen = await self._status(raw_name)
            role_hint = next((flag for flag in flags if flag in _SPECIAL_USE), None)
            parent = raw_name.rsplit(delimiter, 1)[0] if delimiter and delimiter in raw_name else None
            folders.append(
                ProviderFolder(
                    id=raw_name,
                    name=imap_utf7.decode(raw_name.encode()),
                    total_messages=total,
                    unread_messages=unseen,
                    role_hint=role_hint,
                    parent_id=parent,
                )
            )
        add_span_attributes(folder_count=len(folders))
        logger.info("Fetched %s mailboxes from IMAP for %s", len(folders), self._config.email_address)
        return folders

    async def _status(self, mailbox: str) -> tuple[int, int]:
        response = await self._command("status", _quote(mailbox), "(MESSAGES UNSEEN)")
        values: dict[bytes, int] = {}
        for line in response.lines:
            if isinstance(line, bytes):
                values.update({key: int(val) for key, val in _STATUS_RE.findall(line)})
        return values.get(b"MESSAGES", 0), values.get(b"UNSEEN", 0)

    async def _select(self, mailbox: str) -> int:
        """SELECT mailbox read-only and return its UIDVALIDITY."""
        response = await self._command("examine", _quote(mailbox))
        self._selected = mailbox
        for line in response.lines:
            if isinstance(line, bytes):
                match = _UIDVALIDITY_RE.search(line)
                if match:
                    return int(match.group(1))
        return 0

    @traced("imap.fetch_emails")
    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> FetchResult:
        uidvalidity = await self._select(folder_id)
        parsed = parse_cursor(cursor)
        last_uid = 0
        if parsed is not None:
            cursor_validity, cursor_uid = parsed
            if cursor_validity == uidvalidity:
                last_uid = cursor_uid
            else:
                logger.warning(
                    "UIDVALIDITY changed for %s (%s -> %s); listing from the start",
                    folder_id, cursor_validity, uidvalidity,
                )
        criteria = f"UID {last_uid + 1}:*" if last_uid else "ALL"
        response = await self._command("uid_search", criteria, charset=None)
        # "UID n:*" always matches the highest UID, even when it is <= n.
        uids = sorted({
            uid
            for line in response.lines
            if isinstance(line, bytes)
            for uid in (int(tok) for tok in line.split() if tok.isdigit())
            if uid > last_uid
        })
        page, remaining = uids[: self._page_size], uids[self._page_size :]
        emails = await self._fetch_uids(page) if page else []
        watermark = page[-1] if page else last_uid
        return FetchResult(
            emails=emails,
            next_cursor=f"{CURSOR_PREFIX}{uidvalidity}:{watermark}",
            has_more=bool(remaining),
        )

    def accepts_cursor(self, cursor: str | None, mode: SyncMode) -> bool:
        return mode == SyncMode.INCREMENTAL and parse_cursor(cursor) is not None

    async def _fetch_uids(self, uids: list[int]) -> list[ProviderEmail]:
        uid_set = ",".join(str(uid) for uid in uids)
        response = await self._command("uid", "fetch", uid_set, "(UID FLAGS RFC822)")
        emails: list[ProviderEmail] = []
        header: bytes | None = None
        for line in response.lines:
            if isinstance(line, bytes) and b"FETCH" in line and b"(" in line:
                header = line
            elif isinstance(line, (bytearray, memoryview)) and header is not None:
                uid_match = _FETCH_UID_RE.search(header)
                flags_match = _FETCH_FLAGS_RE.search(header)
                flags = flags_match.group(1).decode(errors="replace") if flags_match else ""
                uid = uid_match.group(1).decode() if uid_match else "0"
                emails.append(self._parse_message(bytes(line), uid, flags))
                header = None
        return emails

    def _parse_message(self, raw: bytes, uid: str, flags: str) -> ProviderEmail:
        message = email.message_from_bytes(raw, policy=default_policy)
        body_text = _part_content(message, "plain")
        body_html = _part_content(message, "html")
        snippet_source = body_text or re.sub(r"<[^>]+>", " ", body_html or "")
        from_list = _addresses(message.get("From"))
        sent_at = parse_rfc2822(message.get("Date"))
        provider_id = f"{self._selected or ''}:{uid}"
        return ProviderEmail(
            provider_id=provider_id,
            message_id=(message.get("Message-ID") or "").strip() or f"imap-{provider_id}",
            thread_id=(message.get("In-Reply-To") or "").strip() or None,
            subject=str(message.get("Subject") or "") or "(No Subject)",
            from_address=from_list[0] if from_list else None,
            to_addresses=_addresses(message.get("To")),
            cc_addresses=_addresses(message.get("Cc")),
            bcc_addresses=_addresses(message.get("Bcc")),
            received_at=sent_at,
            sent_at=sent_at,
            is_read="\\Seen" in flags,
            body_html=body_html,
            body_text=body_text,
            snippet=" ".join(snippet_source.split())[:SNIPPET_LENGTH],
            has_attachments=any(part.get_content_disposition() == "attachment" for part in message.walk()),
            labels=[flag for flag in flags.split() if flag.startswith("\\")],
            importance="high" if "\\Flagged" in flags else "normal",
        )

    async def close(self) -> None:
        """Logout; errors on an already-dead connection are logged, not raised."""
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.logout()
        except (OSError, asyncio.TimeoutError, aioimaplib.Abort) as e:
            logger.debug("IMAP logout failed: %s", e)
        logger.info("Disconnected from IMAP server")
