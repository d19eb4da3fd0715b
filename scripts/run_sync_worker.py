"""Run the scheduled sync worker.

Usage:
    uv run python -m scripts.run_sync_worker [--once]

Every SCHEDULER_POLL_SECONDS: pick the accounts due for sync (high
priority first) and hand them to a SyncRunner, which enforces the global
concurrency cap and the one-workflow-per-account rule. With --once a
single pass is made and the process exits.
"""

import asyncio
import sys
from collections import Counter

import mailsync.infrastructure.persistence.database as database
from mailsync.core.config import get_settings
from mailsync.infrastructure.cache.account_lock import AccountLockManager
from mailsync.infrastructure.messaging.redis_pubsub import (
    SyncProgressPublisher,
    set_sync_publisher,
)
from mailsync.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailRepository,
    SyncRunRepository,
)
from mailsync.infrastructure.services import AnalyticsService, SchedulingService, SyncRunner
from mailsync.shared.telemetry.logging import get_logger, setup_logging

logger = get_logger("scripts.run_sync_worker")


async def run_pass(runner: SyncRunner) -> Counter:
    """One scheduler pass. Returns outcome counts."""
    async with database.get_session_factory()() as session:
        analytics = AnalyticsService(
            SyncRunRepository(session),
            EmailRepository(session),
            EmailAccountRepository(session),
        )
        scheduling = SchedulingService(EmailAccountRepository(session), analytics)
        due = await scheduling.get_accounts_due_for_sync()
    if not due:
        return Counter()
    results = await runner.run_many(SchedulingService.to_requests(due))
    return Counter(r.outcome.value for r in results)


async def main() -> None:
    settings = get_settings()
    setup_logging()
    once = "--once" in sys.argv[1:]

    publisher: SyncProgressPublisher | None = None
    if settings.redis_enabled:
        publisher = SyncProgressPublisher()
        await publisher.connect()
        set_sync_publisher(publisher)
    lock_manager = AccountLockManager()
    await lock_manager.connect()
    runner = SyncRunner(
        database.get_session_factory(),
        settings=settings,
        lock_manager=lock_manager,
    )
    logger.info(
        "Sync worker started (concurrency=%s, poll=%ss)",
        settings.sync_global_concurrency,
        settings.scheduler_poll_seconds,
    )
    try:
        while True:
            outcomes = await run_pass(runner)
            if outcomes:
                logger.info("Scheduler pass finished: %s", dict(outcomes))
            if once:
                break
            await asyncio.sleep(settings.scheduler_poll_seconds)
    finally:
        await lock_manager.disconnect()
        if publisher is not None:
            await publisher.disconnect()
            set_sync_publisher(None)
        await database.dispose_engine()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Sync worker stopped", file=sys.stderr)
