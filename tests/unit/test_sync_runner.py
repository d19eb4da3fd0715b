"""Tests for SyncRunner: per-account exclusion, global cap and retries."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from mailsync.application.dtos.sync import SyncRequest, SyncResult
from mailsync.core.config import Settings
from mailsync.domain.exceptions import (
    LockUnavailableException,
    NonRetryableSyncError,
    ProviderAuthError,
    ProviderUnavailableError,
    SyncInProgressException,
)
from mailsync.infrastructure.cache.account_lock import AccountLockManager
from mailsync.infrastructure.services.sync_runner import SyncRunner
from mailsync.shared.enums import SyncOutcome
from tests.fakes import RecordingSleep


@asynccontextmanager
async def _null_session() -> AsyncIterator[Any]:
    yield MagicMock()


class ScriptedOrchestrator:
    """Plays back a list of outcomes, one per attempt; blocks on gate when given."""

    def __init__(self, script: list[BaseException | None], gate: asyncio.Event | None = None) -> None:
        self.script = script
        self.gate = gate
        self.calls = 0

    def factory(self, session: Any) -> "ScriptedOrchestrator":
        return self

    async def run(self, request: SyncRequest) -> SyncResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        step = self.script.pop(0) if self.script else None
        if step is not None:
            raise step
        return SyncResult(account_id=request.account_id, outcome=SyncOutcome.COMPLETED, emails_synced=1)


def _request(account_id: str = "acc-1") -> SyncRequest:
    return SyncRequest(account_id=account_id, user_id="user-1")


def _runner(
    orchestrator: ScriptedOrchestrator, settings: Settings, sleep: RecordingSleep
) -> SyncRunner:
    return SyncRunner(
        _null_session,
        settings=settings,
        lock_manager=AccountLockManager(),
        orchestrator_factory=orchestrator.factory,
        sleep=sleep,
    )


async def _settle() -> None:
    for _ in range(50):
        await asyncio.sleep(0)


async def test_completed_run(settings: Settings, sleep: RecordingSleep) -> None:
    """A successful first attempt reports one attempt and releases the account."""
    orchestrator = ScriptedOrchestrator([])
    runner = _runner(orchestrator, settings, sleep)
    result = await runner.run(_request())
    assert result.outcome is SyncOutcome.COMPLETED
    assert result.attempts == 1
    assert runner.is_running("acc-1") is False


async def test_second_run_for_busy_account_is_skipped(settings: Settings, sleep: RecordingSleep) -> None:
    """While a workflow holds the account, another run returns SKIPPED immediately."""
    gate = asyncio.Event()
    orchestrator = ScriptedOrchestrator([], gate)
    runner = _runner(orchestrator, settings, sleep)
    first = asyncio.create_task(runner.run(_request()))
    await _settle()
    assert runner.is_running("acc-1") is True

    second = await runner.run(_request())
    assert second.outcome is SyncOutcome.SKIPPED
    assert orchestrator.calls == 1

    gate.set()
    assert (await first).outcome is SyncOutcome.COMPLETED


async def test_start_raises_when_busy(settings: Settings, sleep: RecordingSleep) -> None:
    """start() claims the account synchronously; a second start() is rejected."""
    gate = asyncio.Event()
    runner = _runner(ScriptedOrchestrator([], gate), settings, sleep)
    task = await runner.start(_request())
    with pytest.raises(SyncInProgressException):
        await runner.start(_request())
    gate.set()
    await runner.drain()
    assert task.result().outcome is SyncOutcome.COMPLETED
    assert runner.is_running("acc-1") is False


async def test_unreachable_lock_store_skips_run(settings: Settings, sleep: RecordingSleep) -> None:
    """Without a reachable lock store nothing runs: run() skips and start() raises."""
    client = AsyncMock()
    client.set.side_effect = redis.ConnectionError("down")
    orchestrator = ScriptedOrchestrator([])
    runner = SyncRunner(
        _null_session,
        settings=settings,
        lock_manager=AccountLockManager(redis_client=client),
        orchestrator_factory=orchestrator.factory,
        sleep=sleep,
    )

    result = await runner.run(_request())
    assert result.outcome is SyncOutcome.SKIPPED
    assert result.error is not None and "acc-1" in result.error
    with pytest.raises(LockUnavailableException):
        await runner.start(_request())
    assert orchestrator.calls == 0


async def test_global_concurrency_cap(settings: Settings, sleep: RecordingSleep) -> None:
    """No more than five workflows run at once across accounts."""
    gate = asyncio.Event()
    runner = _runner(ScriptedOrchestrator([], gate), settings, sleep)
    tasks = [asyncio.create_task(runner.run(_request(f"acc-{i}"))) for i in range(12)]
    await _settle()
    assert runner.active == 5

    gate.set()
    results = await asyncio.gather(*tasks)
    assert all(r.outcome is SyncOutcome.COMPLETED for r in results)
    assert runner.peak_active == 5
    assert runner.active == 0


async def test_run_many_preserves_order(settings: Settings, sleep: RecordingSleep) -> None:
    runner = _runner(ScriptedOrchestrator([]), settings, sleep)
    results = await runner.run_many([_request("a"), _request("b"), _request("c")])
    assert [r.account_id for r in results] == ["a", "b", "c"]


async def test_transient_failures_are_retried_with_backoff(
    settings: Settings, sleep: RecordingSleep
) -> None:
    """Network failures retry with exponential backoff until success."""
    orchestrator = ScriptedOrchestrator([ConnectionError("reset"), ConnectionError("reset")])
    runner = _runner(orchestrator, settings, sleep)
    result = await runner.run(_request())
    assert result.outcome is SyncOutcome.COMPLETED
    assert result.attempts == 3
    assert len(sleep.calls) == 2
    assert 1.8 <= sleep.calls[0] <= 2.2
    assert 3.6 <= sleep.calls[1] <= 4.4


async def test_provider_outage_waits_for_retry_hint(settings: Settings, sleep: RecordingSleep) -> None:
    """A provider 5xx waits at least the five-minute hint (capped at the max delay)."""
    runner = _runner(ScriptedOrchestrator([ProviderUnavailableError("graph", 503)]), settings, sleep)
    result = await runner.run(_request())
    assert result.outcome is SyncOutcome.COMPLETED
    assert sleep.calls == [300.0]


async def test_retries_exhausted(settings: Settings, sleep: RecordingSleep) -> None:
    """After max retries the run fails and stays retryable for the next schedule."""
    orchestrator = ScriptedOrchestrator([ConnectionError("reset")] * 10)
    runner = _runner(orchestrator, settings, sleep)
    result = await runner.run(_request())
    assert result.outcome is SyncOutcome.FAILED
    assert result.attempts == settings.sync_max_retries + 1
    assert result.retryable is True
    assert orchestrator.calls == 4
    assert runner.is_running("acc-1") is False


async def test_auth_failure_is_not_retried(settings: Settings, sleep: RecordingSleep) -> None:
    """Rejected credentials fail on the first attempt without waiting."""
    orchestrator = ScriptedOrchestrator([ProviderAuthError("graph", 401, "invalid_grant")])
    runner = _runner(orchestrator, settings, sleep)
    result = await runner.run(_request())
    assert result.outcome is SyncOutcome.FAILED
    assert result.attempts == 1
    assert result.retryable is False
    assert "reconnect" in (result.error or "")
    assert sleep.calls == []


async def test_non_retryable_error_aborts(settings: Settings, sleep: RecordingSleep) -> None:
    """A missing or foreign account aborts without retry."""
    orchestrator = ScriptedOrchestrator([NonRetryableSyncError("acc-1", "account not found")])
    runner = _runner(orchestrator, settings, sleep)
    result = await runner.run(_request())
    assert result.outcome is SyncOutcome.ABORTED
    assert result.attempts == 1
    assert orchestrator.calls == 1
