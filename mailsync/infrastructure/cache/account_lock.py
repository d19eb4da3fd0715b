"""Per-account sync exclusion.

At most one sync workflow may run per account. Inside one process this is
an in-memory set guarded by an asyncio.Lock; when Redis is connected the
same key is also taken with SET NX PX so that several worker processes
exclude each other. Locks carry a TTL so a crashed worker cannot wedge an
account forever; a held lock is renewed while its workflow runs. When Redis
is configured but unreachable the lock is refused rather than taken locally.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis

from mailsync.core.config import get_settings
from mailsync.domain.exceptions import LockUnavailableException, SyncInProgressException
from mailsync.infrastructure.cache.redis_client import open_redis
from mailsync.shared.utils.generators import generate_cuid

logger = logging.getLogger(__name__)

LOCK_PREFIX = "sync_lock"

# Delete the key only if it still holds our token (the TTL may have expired
# and another worker may own it now).
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


def lock_key(account_id: str) -> str:
    """Redis key for an account's sync lock."""
    return f"{LOCK_PREFIX}:{account_id}"


class AccountLockManager:
    """Non-blocking per-account mutual exclusion.

    acquire() never waits: it returns False when another workflow holds the
    account, which callers turn into a skipped run.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        """Initialize. Pass redis_client for DI/testing; None means in-process only."""
        self.redis = redis_client
        self.settings = get_settings()
        self.ttl_seconds = ttl_seconds or self.settings.sync_lock_ttl_seconds
        self._held: dict[str, str] = {}
        self._renewals: dict[str, asyncio.Task[None]] = {}
        self._guard = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to Redis when enabled. Failure leaves in-process locking only."""
        if self.redis is not None:
            return
        self.redis = await open_redis(self.settings, "account locks")
        if self.redis is None:
            logger.info("Account locks are in-process only")

    async def disconnect(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    def is_locked(self, account_id: str) -> bool:
        """True if this process currently holds the account."""
        return account_id in self._held

    async def acquire(self, account_id: str) -> bool:
        """Take the account lock. Returns False if it is already held anywhere.

        Raises:
            LockUnavailableException: Redis is configured but cannot be reached.
        """
        async with self._guard:
            if account_id in self._held:
                return False
            token = generate_cuid()
            if self.redis is not None:
                try:
                    acquired = await self.redis.set(
                        lock_key(account_id), token, nx=True, px=self.ttl_seconds * 1000
                    )
                except (redis.ConnectionError, redis.TimeoutError) as e:
                    logger.error("Redis lock unavailable for account %s: %s", account_id, e)
                    raise LockUnavailableException(account_id, "lock store unreachable") from e
                if not acquired:
                    logger.info("Account %s is locked by another worker", account_id)
                    return False
            self._held[account_id] = token
            if self.redis is not None:
                self._renewals[account_id] = asyncio.create_task(
                    self._keep_alive(account_id, token), name=f"sync_lock_renew:{account_id}"
                )
            return True

    async def extend(self, account_id: str) -> bool:
        """Reset the TTL of a lock this process holds. False if it was lost."""
        token = self._held.get(account_id)
        if token is None or self.redis is None:
            return False
        try:
            extended = await self.redis.eval(
                _EXTEND_SCRIPT, 1, lock_key(account_id), token, self.ttl_seconds * 1000
            )
        except redis.RedisError as e:
            logger.warning("Failed to extend Redis lock for account %s: %s", account_id, e)
            return False
        if not extended:
            logger.error("Redis lock for account %s expired while the sync was running", account_id)
        return bool(extended)

    async def _keep_alive(self, account_id: str, token: str) -> None:
        """Renew the lock every third of its TTL until it is released or lost."""
        interval = max(self.ttl_seconds / 3, 1)
        while True:
            await asyncio.sleep(interval)
            if self._held.get(account_id) != token or not await self.extend(account_id):
                return

    async def release(self, account_id: str) -> None:
        async with self._guard:
            token = self._held.pop(account_id, None)
            renewal = self._renewals.pop(account_id, None)
            if renewal is not None:
                renewal.cancel()
            if token is None or self.redis is None:
                return
            try:
                await self.redis.eval(_RELEASE_SCRIPT, 1, lock_key(account_id), token)
            except redis.RedisError as e:
                # The TTL frees the key eventually.
                logger.warning("Failed to release Redis lock for account %s: %s", account_id, e)

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        """Hold the account for the duration of the block.

        Raises:
            SyncInProgressException: Another workflow holds the account.
        """
        if not await self.acquire(account_id):
            raise SyncInProgressException(account_id)
        try:
            yield
        finally:
            await self.release(account_id)
