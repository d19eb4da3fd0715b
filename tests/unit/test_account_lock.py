"""Tests for per-account sync exclusion (in-process and Redis-backed)."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from mailsync.domain.exceptions import LockUnavailableException, SyncInProgressException
from mailsync.infrastructure.cache.account_lock import AccountLockManager, lock_key


async def test_acquire_is_exclusive_per_account() -> None:
    """A held account cannot be acquired again; other accounts are unaffected."""
    locks = AccountLockManager()
    assert await locks.acquire("acc-1") is True
    assert await locks.acquire("acc-1") is False
    assert await locks.acquire("acc-2") is True
    assert locks.is_locked("acc-1") is True


async def test_release_frees_account() -> None:
    locks = AccountLockManager()
    await locks.acquire("acc-1")
    await locks.release("acc-1")
    assert locks.is_locked("acc-1") is False
    assert await locks.acquire("acc-1") is True


async def test_concurrent_acquire_only_one_wins() -> None:
    """Racing acquirers for the same account: exactly one succeeds."""
    locks = AccountLockManager()
    results = await asyncio.gather(*(locks.acquire("acc-1") for _ in range(10)))
    assert results.count(True) == 1


async def test_hold_raises_when_busy() -> None:
    """hold() turns a busy account into SyncInProgressException and releases on exit."""
    locks = AccountLockManager()
    async with locks.hold("acc-1"):
        with pytest.raises(SyncInProgressException):
            async with locks.hold("acc-1"):
                pass
    assert locks.is_locked("acc-1") is False


async def test_redis_lock_uses_set_nx_with_ttl() -> None:
    """With Redis the key is taken with SET NX PX and released by token."""
    client = AsyncMock()
    client.set.return_value = True
    locks = AccountLockManager(redis_client=client, ttl_seconds=30)
    assert await locks.acquire("acc-1") is True
    client.set.assert_awaited_once()
    args, kwargs = client.set.call_args
    assert args[0] == lock_key("acc-1")
    assert kwargs == {"nx": True, "px": 30_000}
    token = args[1]

    await locks.release("acc-1")
    eval_args = client.eval.call_args.args
    assert eval_args[1:] == (1, "sync_lock:acc-1", token)


async def test_redis_lock_held_by_other_worker() -> None:
    """SET NX failing means another process owns the account."""
    client = AsyncMock()
    client.set.return_value = None
    locks = AccountLockManager(redis_client=client)
    assert await locks.acquire("acc-1") is False
    assert locks.is_locked("acc-1") is False


async def test_redis_outage_refuses_lock() -> None:
    """An unreachable lock store refuses the account instead of locking it locally."""
    client = AsyncMock()
    client.set.side_effect = redis.ConnectionError("down")
    locks = AccountLockManager(redis_client=client)
    with pytest.raises(LockUnavailableException):
        await locks.acquire("acc-1")
    assert locks.is_locked("acc-1") is False


async def test_extend_resets_ttl_for_own_token() -> None:
    client = AsyncMock()
    client.set.return_value = True
    client.eval.return_value = 1
    locks = AccountLockManager(redis_client=client, ttl_seconds=30)
    await locks.acquire("acc-1")
    token = client.set.call_args.args[1]

    assert await locks.extend("acc-1") is True
    assert client.eval.call_args.args[1:] == (1, "sync_lock:acc-1", token, 30_000)
    await locks.release("acc-1")


async def test_extend_reports_lost_lock() -> None:
    """A key taken over by another worker is not extended."""
    client = AsyncMock()
    client.set.return_value = True
    client.eval.return_value = 0
    locks = AccountLockManager(redis_client=client)
    await locks.acquire("acc-1")
    assert await locks.extend("acc-1") is False
    assert await AccountLockManager(redis_client=client).extend("acc-2") is False
    await locks.release("acc-1")


async def test_lock_is_renewed_while_held() -> None:
    """The held lock is renewed in the background and renewal stops on release."""
    client = AsyncMock()
    client.set.return_value = True
    client.eval.return_value = 1
    locks = AccountLockManager(redis_client=client, ttl_seconds=3)
    await locks.acquire("acc-1")
    await asyncio.sleep(1.2)
    renewals = [c for c in client.eval.call_args_list if c.args[-1] == 3_000]
    assert len(renewals) >= 1

    await locks.release("acc-1")
    calls = client.eval.await_count
    await asyncio.sleep(1.2)
    assert client.eval.await_count == calls
