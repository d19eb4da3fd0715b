"""Retry driver for account sync workflows.

Enforces one in-flight workflow per account (AccountLockManager) and a
global cap on concurrent workflows (asyncio.Semaphore), and retries failed
attempts with exponential backoff. Every attempt gets a fresh session, and
the orchestrator resumes from its checkpoint.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos.sync import SyncRequest, SyncResult
from mailsync.application.services.sync_errors import calculate_backoff_delay, classify_error
from mailsync.core.config import Settings, get_settings
from mailsync.domain.exceptions import (
    LockUnavailableException,
    NonRetryableSyncError,
    SyncInProgressException,
)
from mailsync.infrastructure.cache.account_lock import AccountLockManager
from mailsync.infrastructure.services.sync_orchestrator import SyncOrchestrator
from mailsync.shared.enums import SyncOutcome
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

OrchestratorFactory = Callable[[AsyncSession], SyncOrchestrator]
Sleep = Callable[[float], Awaitable[None]]


class SyncRunner:
    """Runs SyncRequests with per-account exclusion, a global cap and retries."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        settings: Settings | None = None,
        lock_manager: AccountLockManager | None = None,
        orchestrator_factory: OrchestratorFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._locks = lock_manager or AccountLockManager()
        self._orchestrator_factory = orchestrator_factory or (
            lambda session: SyncOrchestrator(session, settings=self.settings)
        )
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.settings.sync_global_concurrency)
        self._tasks: set[asyncio.Task[SyncResult]] = set()
        self.active = 0
        self.peak_active = 0

    def is_running(self, account_id: str) -> bool:
        return self._locks.is_locked(account_id)

    async def run(self, request: SyncRequest) -> SyncResult:
        """Run the workflow now. A busy or unlockable account returns SKIPPED."""
        try:
            acquired = await self._locks.acquire(request.account_id)
        except LockUnavailableException as e:
            return SyncResult(
                account_id=request.account_id, outcome=SyncOutcome.SKIPPED, error=e.message
            )
        if not acquired:
            logger.info("Sync already running for account %s, skipping", request.account_id)
            return SyncResult(
                account_id=request.account_id,
                outcome=SyncOutcome.SKIPPED,
                error="sync already in progress",
            )
        try:
            return await self._run_limited(request)
        finally:
            await self._locks.release(request.account_id)

    async def start(self, request: SyncRequest) -> asyncio.Task[SyncResult]:
        """Claim the account and run the workflow in a background task.

        Raises:
            SyncInProgressException: A workflow already holds the account.
            LockUnavailableException: The shared lock store is unreachable.
        """
        if not await self._locks.acquire(request.account_id):
            raise SyncInProgressException(request.account_id)

        async def _run_and_release() -> SyncResult:
            try:
                return await self._run_limited(request)
            finally:
                await self._locks.release(request.account_id)

        task = asyncio.create_task(_run_and_release(), name=f"sync:{request.account_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_many(self, requests: list[SyncRequest]) -> list[SyncResult]:
        """Run several accounts concurrently (bounded by the global cap)."""
        return list(await asyncio.gather(*(self.run(r) for r in requests)))

    async def drain(self) -> None:
        """Wait for all background workflows started with start()."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_limited(self, request: SyncRequest) -> SyncResult:
        async with self._semaphore:
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
            try:
                return await self._run_with_retries(request)
            finally:
                self.active -= 1

    async def _run_with_retries(self, request: SyncRequest) -> SyncResult:
        max_attempts = self.settings.sync_max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            async with self._session_factory() as session:
                orchestrator = self._orchestrator_factory(session)
                try:
                    result = await orchestrator.run(request)
                except NonRetryableSyncError as e:
                    logger.warning("Sync aborted for account %s: %s", request.account_id, e.reason)
                    return SyncResult(
                        account_id=request.account_id,
                        outcome=SyncOutcome.ABORTED,
                        attempts=attempt,
                        error=e.message,
                    )
                except Exception as e:
                    classified = classify_error(e)
                    if not classified.retryable or attempt >= max_attempts:
                        logger.error(
                            "Sync failed for account %s after %s attempt(s): %s",
                            request.account_id,
                            attempt,
                            classified.message,
                        )
                        return SyncResult(
                            account_id=request.account_id,
                            outcome=SyncOutcome.FAILED,
                            attempts=attempt,
                            error=classified.message,
                            retryable=classified.retryable,
                        )
                    delay = calculate_backoff_delay(
                        attempt,
                        base_delay=self.settings.sync_retry_base_seconds,
                        max_delay=self.settings.sync_retry_max_seconds,
                    )
                    if classified.retry_after_seconds:
                        delay = max(
                            delay,
                            min(float(classified.retry_after_seconds), self.settings.sync_retry_max_seconds),
                        )
                    logger.warning(
                        "Sync attempt %s/%s for account %s failed (%s); retrying in %.1fs",
                        attempt,
                        max_attempts,
                        request.account_id,
                        classified.error_type.value,
                        delay,
                    )
                else:
                    result.attempts = attempt
                    return result
            await self._sleep(delay)
