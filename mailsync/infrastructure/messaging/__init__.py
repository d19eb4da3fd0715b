"""Live sync progress distribution over Redis pub/sub."""

from mailsync.infrastructure.messaging.redis_pubsub import (
    SyncProgressEvent,
    SyncProgressPublisher,
    SyncStage,
    get_sync_publisher,
    set_sync_publisher,
    subscribe_progress,
)

__all__ = [
    "SyncProgressEvent",
    "SyncProgressPublisher",
    "SyncStage",
    "get_sync_publisher",
    "set_sync_publisher",
    "subscribe_progress",
]
