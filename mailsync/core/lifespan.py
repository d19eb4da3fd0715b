"""Application lifespan: startup and shutdown.

Single place for startup/shutdown wiring: logging, telemetry, Redis
progress publisher, per-account locks, the SyncRunner shared by all
requests, and DB engine dispose.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from mailsync.core.config import get_settings
from mailsync.infrastructure.cache.account_lock import AccountLockManager
from mailsync.infrastructure.messaging.redis_pubsub import (
    SyncProgressPublisher,
    set_sync_publisher,
)
from mailsync.infrastructure.persistence import database
from mailsync.infrastructure.services.sync_runner import SyncRunner
from mailsync.shared.telemetry.logging import setup_logging
from mailsync.shared.telemetry.telemetry import SyncTelemetry, get_telemetry, set_telemetry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup order: logging, telemetry (if enabled), Redis publisher and
    locks (if enabled), SyncRunner. Shutdown waits for in-flight syncs
    started by the API before closing Redis and the engine.
    """
    settings = get_settings()
    setup_logging()

    # ---- Startup ----
    telemetry = SyncTelemetry(settings)
    if telemetry.start() is not None:
        set_telemetry(telemetry)

    publisher: SyncProgressPublisher | None = None
    if settings.redis_enabled:
        publisher = SyncProgressPublisher()
        await publisher.connect()
        set_sync_publisher(publisher)

    lock_manager = AccountLockManager()
    await lock_manager.connect()
    app.state.lock_manager = lock_manager
    app.state.sync_runner = SyncRunner(
        database.get_session_factory(),
        settings=settings,
        lock_manager=lock_manager,
    )
    telemetry.instrument(app, database.engine)

    yield

    # ---- Shutdown ----
    await app.state.sync_runner.drain()
    logger.info("In-flight syncs finished")

    await lock_manager.disconnect()
    if publisher is not None:
        await publisher.disconnect()
        set_sync_publisher(None)
        logger.info("Progress publisher disconnected")

    if get_telemetry() is not None:
        telemetry.shutdown()
        set_telemetry(None)

    await database.dispose_engine()
