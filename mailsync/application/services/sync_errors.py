"""Sync error classification and retry backoff.

classify_error decides whether a failure is worth retrying: network and
provider outages are transient, auth failures need the user to reconnect,
malformed requests will fail again the same way.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass

import httpx

from mailsync.domain.enums import ErrorType
from mailsync.domain.exceptions import (
    AuthenticationException,
    CredentialException,
    InvalidProviderRequestError,
    NonRetryableSyncError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)

DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60
PROVIDER_OUTAGE_RETRY_SECONDS = 300

_NETWORK_MARKERS = ("econnrefused", "etimedout", "enotfound", "network", "connection reset", "fetch failed")
_AUTH_MARKERS = ("401", "unauthorized", "invalid_grant", "authentication failed")
_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests", "throttl")
_PROVIDER_MARKERS = ("503", "502", "504", "service unavailable", "bad gateway")
_INVALID_MARKERS = ("400", "malformed", "bad request")


@dataclass(frozen=True)
class ClassifiedError:
    """How a failure should be handled by the retry driver."""

    error_type: ErrorType
    retryable: bool
    message: str
    retry_after_seconds: int | None = None

    @property
    def is_auth(self) -> bool:
        return self.error_type == ErrorType.AUTH


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after(exc: BaseException) -> int:
    if isinstance(exc, ProviderRateLimitError):
        return exc.retry_after
    if isinstance(exc, httpx.HTTPStatusError):
        header = exc.response.headers.get("Retry-After")
        if header and header.strip().isdigit():
            return int(header.strip())
    return DEFAULT_RATE_LIMIT_RETRY_SECONDS


def classify_error(exc: BaseException) -> ClassifiedError:
    """Classify an exception raised during a sync.

    Checks run in a fixed order: network, auth, rate limit, provider outage,
    invalid data; anything else is UNKNOWN and retryable.
    """
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    status = _status_code(exc)

    if isinstance(exc, NonRetryableSyncError):
        return ClassifiedError(ErrorType.INVALID_DATA, False, message)

    if isinstance(exc, (httpx.TransportError, ConnectionError, asyncio.TimeoutError, TimeoutError)) or any(
        marker in lowered for marker in _NETWORK_MARKERS
    ):
        return ClassifiedError(ErrorType.NETWORK, True, "Network connection failed")

    if isinstance(exc, (AuthenticationException, CredentialException)) or status == 401 or any(
        marker in lowered for marker in _AUTH_MARKERS
    ):
        return ClassifiedError(
            ErrorType.AUTH, False, f"Authentication failed - reconnect account ({message})"
        )

    if isinstance(exc, ProviderRateLimitError) or status == 429 or any(
        marker in lowered for marker in _RATE_LIMIT_MARKERS
    ):
        return ClassifiedError(
            ErrorType.RATE_LIMIT,
            True,
            "Rate limit exceeded",
            retry_after_seconds=_retry_after(exc),
        )

    if (
        isinstance(exc, ProviderUnavailableError)
        or (status is not None and status >= 500)
        or any(marker in lowered for marker in _PROVIDER_MARKERS)
    ):
        return ClassifiedError(
            ErrorType.PROVIDER,
            True,
            "Email provider temporarily unavailable",
            retry_after_seconds=PROVIDER_OUTAGE_RETRY_SECONDS,
        )

    if isinstance(exc, InvalidProviderRequestError) or status == 400 or any(
        marker in lowered for marker in _INVALID_MARKERS
    ):
        return ClassifiedError(ErrorType.INVALID_DATA, False, f"Invalid data received ({message})")

    return ClassifiedError(ErrorType.UNKNOWN, True, message)


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 5.0,
    max_delay: float = 3600.0,
    jitter: float = 0.2,
) -> float:
    """Exponential backoff with +/- jitter/2 randomness, capped at max_delay.

    Args:
        attempt: Attempt number starting from 1.
        base_delay: Delay for the first retry, in seconds.
        max_delay: Upper bound, in seconds.
        jitter: Fraction of the delay used as random spread.
    """
    delay = base_delay * (2 ** max(attempt - 1, 0))
    delay += delay * jitter * (random.random() - 0.5)
    return max(0.0, min(delay, max_delay))
