"""Span helpers for sync workflows.

@traced wraps adapter and orchestrator calls in a span stamped with the
workflow's correlation id and account id, so every provider request and
upsert of one run can be found under the same trace attributes.
"""

import asyncio
from collections.abc import Callable
from functools import wraps
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from mailsync.shared.context import get_correlation_id, get_sync_account_id

# Only these kwarg names are copied onto spans; credentials and payloads never are.
_SAFE_SPAN_ATTR_KEYS = frozenset({
    "account_id", "user_id", "folder_id", "provider", "mode", "sync_mode",
    "trigger", "step", "cursor_kind", "limit", "attempt", "days",
})


def _start(span: trace.Span, attributes: dict[str, Any] | None, kwargs: dict[str, Any]) -> None:
    for key, value in (attributes or {}).items():
        span.set_attribute(key, value)
    correlation_id = get_correlation_id()
    if correlation_id:
        span.set_attribute("mailsync.correlation_id", correlation_id)
    account_id = get_sync_account_id()
    if account_id:
        span.set_attribute("mailsync.account_id", account_id)
    for key, value in kwargs.items():
        if key.lower() in _SAFE_SPAN_ATTR_KEYS:
            span.set_attribute(f"arg.{key}", str(value))


def _fail(span: trace.Span, exc: Exception) -> None:
    span.set_status(Status(StatusCode.ERROR, str(exc)))
    span.record_exception(exc)
    # Set for MailSyncException and its subclasses.
    error_code = getattr(exc, "error_code", None)
    if error_code:
        span.set_attribute("mailsync.error_code", error_code)


def traced(operation_name: str | None = None, attributes: dict[str, Any] | None = None) -> Callable:
    """Run the decorated function (sync or async) inside a span.

    Args:
        operation_name: Span name, e.g. "graph.fetch_emails". Defaults to module.funcname.
        attributes: Static attributes set on every span.
    """

    def decorator(func: Callable) -> Callable:
        tracer = trace.get_tracer(func.__module__)
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        if asyncio.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with tracer.start_as_current_span(span_name, record_exception=False) as span:
                    _start(span, attributes, kwargs)
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        _fail(span, e)
                        raise

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(span_name, record_exception=False) as span:
                _start(span, attributes, kwargs)
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    _fail(span, e)
                    raise

        return sync_wrapper

    return decorator


def add_span_attributes(**attributes: str | int | float | bool) -> None:
    """Add attributes to the current span (no-op when not recording)."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attributes(attributes)


def add_span_event(name: str, attributes: dict[str, Any] | None = None) -> None:
    """Add an event, e.g. a completed workflow step, to the current span."""
    span = trace.get_current_span()
    if span.is_recording():
        span.add_event(name, attributes=attributes or {})
