"""Distributed coordination: per-account sync locks (Redis with in-process fallback)."""

from mailsync.infrastructure.cache.account_lock import AccountLockManager, lock_key

__all__ = ["AccountLockManager", "lock_key"]
