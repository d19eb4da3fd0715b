"""Redis connection shared by the account locks and the progress publisher."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import redis.asyncio as redis

if TYPE_CHECKING:
    from mailsync.core.config import Settings

logger = logging.getLogger(__name__)


async def open_redis(settings: Settings, purpose: str) -> redis.Redis | None:
    """Connect and ping. Returns None when Redis is disabled or unreachable."""
    if not settings.redis_enabled:
        return None
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password.get_secret_value() if settings.redis_password else None,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        await client.ping()
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning("Redis unavailable for %s: %s", purpose, e)
        await client.aclose()
        return None
    logger.info("Redis connected for %s", purpose)
    return client
