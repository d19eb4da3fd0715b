"""
UTC datetime utilities for consistent timezone handling.

All datetime values stored by the sync engine are timezone-aware UTC.
Providers hand back ISO-8601 strings, RFC 2822 dates and millisecond
epochs; the helpers below normalize all of them.
"""

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime


def utc_now() -> datetime:
    """Return the current UTC datetime with timezone info."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Ensure a datetime is UTC-aware.

    - If None, returns None
    - If naive, assumes UTC and attaches timezone (SQLite returns naive values)
    - If aware, converts to UTC

    Args:
        dt: A datetime that may be naive or aware

    Returns:
        UTC-aware datetime or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def from_timestamp_ms_utc(timestamp_ms: int) -> datetime:
    """Create a UTC-aware datetime from a millisecond Unix timestamp (Gmail internalDate)."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)


def parse_iso8601(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 timestamp as returned by Microsoft Graph.

    Accepts a trailing 'Z' and fractional seconds with more than six
    digits (Graph sometimes returns seven). Returns None for empty or
    unparseable input.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        text = f"{head}.{digits[:6]}{rest}"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_rfc2822(value: str | None) -> datetime | None:
    """Parse an RFC 2822 Date header (IMAP / MIME). Returns None when invalid."""
    if not value:
        return None
    try:
        return ensure_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        return None


def minutes_since(dt: datetime | None, now: datetime | None = None) -> float | None:
    """Return minutes elapsed since dt (None when dt is None)."""
    if dt is None:
        return None
    reference = now or utc_now()
    return (reference - ensure_utc(dt)).total_seconds() / 60
