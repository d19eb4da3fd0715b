"""Live sync progress over Redis pub/sub.

The orchestrator publishes one event per stage of a workflow on
sync_progress:{user_id}; UIs subscribe to follow every account a user owns.
Events carry the workflow's correlation id so a progress feed can be
matched to its SyncRun rows and traces. Publishing is best-effort: without
Redis events are dropped and the sync carries on.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import redis.asyncio as redis

from mailsync.core.config import get_settings
from mailsync.infrastructure.cache.redis_client import open_redis
from mailsync.shared.context import get_correlation_id
from mailsync.shared.utils.datetime import utc_now

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "sync_progress"


def progress_channel(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{user_id}"


class SyncStage(str, Enum):
    STARTED = "started"
    FOLDERS = "syncing_folders"
    FETCHING = "fetching_messages"
    COUNTING = "recalculating_counts"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncProgressEvent:
    """One progress message. progress is 0-100 for the whole account."""

    account_id: str
    email_address: str
    stage: SyncStage
    message: str
    timestamp: str
    run_id: str | None = None
    progress: int = 0
    emails_synced: int = 0
    folder_name: str | None = None
    error: str | None = None

    def to_json(self) -> str:
        data = asdict(self)
        data["stage"] = self.stage.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str | bytes) -> SyncProgressEvent:
        data: dict[str, Any] = json.loads(raw)
        data["stage"] = SyncStage(data["stage"])
        return cls(**data)


class SyncProgressPublisher:
    """Publishes workflow stages to the owner's progress channel."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        """Pass redis_client for DI/testing; otherwise call connect() at startup."""
        self.redis = redis_client

    async def connect(self) -> None:
        if self.redis is None:
            self.redis = await open_redis(get_settings(), "sync progress")

    async def disconnect(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    def is_available(self) -> bool:
        return self.redis is not None

    async def publish_stage(
        self,
        user_id: str,
        account_id: str,
        email_address: str,
        stage: SyncStage,
        message: str,
        *,
        progress: int = 0,
        emails_synced: int = 0,
        folder_name: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Publish one stage event. Returns False when it could not be delivered."""
        if self.redis is None:
            return False
        event = SyncProgressEvent(
            account_id=account_id,
            email_address=email_address,
            stage=stage,
            message=message,
            timestamp=utc_now().isoformat(),
            run_id=get_correlation_id(),
            progress=progress,
            emails_synced=emails_synced,
            folder_name=folder_name,
            error=error,
        )
        try:
            await self.redis.publish(progress_channel(user_id), event.to_json())
        except (redis.RedisError, OSError) as e:
            logger.warning("Dropped %s progress event for account %s: %s", stage.value, account_id, e)
            return False
        return True


async def subscribe_progress(
    client: redis.Redis, user_id: str
) -> AsyncIterator[SyncProgressEvent]:
    """Yield progress events for user_id until the consumer stops iterating.

    Each call owns its PubSub, so concurrent subscriptions are independent.
    Malformed messages are logged and skipped.
    """
    channel = progress_channel(user_id)
    pubsub = client.pubsub()
    await pubsub.subscribe(channel)
    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                yield SyncProgressEvent.from_json(message["data"])
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                logger.exception("Unparseable progress message on %s", channel)
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()


_publisher: SyncProgressPublisher | None = None


def get_sync_publisher() -> SyncProgressPublisher | None:
    """The process-wide publisher set at startup, if any."""
    return _publisher


def set_sync_publisher(publisher: SyncProgressPublisher | None) -> None:
    global _publisher
    _publisher = publisher
