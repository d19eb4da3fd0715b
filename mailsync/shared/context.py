"""Workflow and request context using contextvars.

Provides async-safe storage for the correlation id and the account being
synced, so log records and spans emitted anywhere below the orchestrator
(adapters, repositories, upsert pipeline) can be tied back to one run.

Usage:
    token = set_sync_context(correlation_id="sync-abc", account_id="acc1")
    ...
    reset_sync_context(token)
"""

from contextvars import ContextVar, Token
from dataclasses import dataclass

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_account_id: ContextVar[str | None] = ContextVar("sync_account_id", default=None)


@dataclass(frozen=True)
class SyncContextToken:
    """Reset tokens returned by set_sync_context."""

    correlation_id: Token
    account_id: Token


def set_correlation_id(correlation_id: str | None) -> Token:
    """Set the correlation id for the current task. Returns a reset token."""
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    """Restore the correlation id captured by set_correlation_id."""
    _correlation_id.reset(token)


def get_correlation_id() -> str | None:
    """Return the current correlation id, or None outside a request/workflow."""
    return _correlation_id.get()


def get_sync_account_id() -> str | None:
    """Return the account id of the workflow running in this task."""
    return _account_id.get()


def set_sync_context(correlation_id: str, account_id: str) -> SyncContextToken:
    """Bind correlation id and account id for the duration of a workflow."""
    return SyncContextToken(
        correlation_id=_correlation_id.set(correlation_id),
        account_id=_account_id.set(account_id),
    )


def reset_sync_context(token: SyncContextToken) -> None:
    """Restore the context captured by set_sync_context."""
    _correlation_id.reset(token.correlation_id)
    _account_id.reset(token.account_id)
