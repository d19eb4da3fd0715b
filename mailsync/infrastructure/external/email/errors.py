"""Map provider HTTP responses onto the sync exception taxonomy."""

import httpx

from mailsync.domain.exceptions import (
    InvalidProviderRequestError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)

DEFAULT_RETRY_AFTER_SECONDS = 60


def parse_retry_after(value: str | None, default: int = DEFAULT_RETRY_AFTER_SECONDS) -> int:
    """Retry-After in seconds (HTTP-date values fall back to default)."""
    if value and value.strip().isdigit():
        return int(value.strip())
    return default


def _error_reason(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("code")
        if isinstance(error, str):
            return payload.get("error_description") or error
    return None


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Raise the matching Provider* exception for a non-2xx response."""
    status = response.status_code
    if status < 400:
        return
    reason = _error_reason(response)
    if status == 401:
        raise ProviderAuthError(provider, status, reason)
    if status == 429:
        raise ProviderRateLimitError(provider, parse_retry_after(response.headers.get("Retry-After")))
    if status >= 500:
        raise ProviderUnavailableError(provider, status, f"{provider} returned {status}: {reason or 'server error'}")
    if status == 400:
        raise InvalidProviderRequestError(provider, reason or "bad request")
    raise ProviderUnavailableError(provider, status, f"{provider} returned {status}: {reason or 'request failed'}")
