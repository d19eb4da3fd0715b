"""Correlation ID middleware.

Forwards X-Correlation-ID from the client (or generates one), binds it to
the logging context for the request, and echoes it on the response.
Raw ASGI (no BaseHTTPMiddleware) so background tasks keep working.
"""

from typing import Callable

from mailsync.shared.context import reset_correlation_id, set_correlation_id
from mailsync.shared.utils.generators import generate_correlation_id


def _get_header(scope: dict, name: str) -> str | None:
    """Return first header value for name (case-insensitive)."""
    want = name.lower().encode()
    for k, v in scope.get("headers", []):
        if k.lower() == want:
            return v.decode("utf-8", errors="replace")
    return None


def CorrelationIDMiddleware(
    app: Callable, header_name: str = "X-Correlation-ID"
) -> Callable:
    """Add or forward the correlation id header. Raw ASGI."""

    async def asgi_app(scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return
        correlation_id = _get_header(scope, header_name) or generate_correlation_id("req")
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((header_name.encode(), correlation_id.encode()))
                message["headers"] = headers
            await send(message)

        token = set_correlation_id(correlation_id)
        try:
            await app(scope, receive, send_wrapper)
        finally:
            reset_correlation_id(token)

    return asgi_app
