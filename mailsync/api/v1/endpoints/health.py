"""Health check endpoints used for liveness and readiness probes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from mailsync.core.config import get_settings
from mailsync.domain.exceptions import SqlNotConfiguredException
from mailsync.infrastructure.messaging.redis_pubsub import get_sync_publisher
from mailsync.infrastructure.persistence.database import get_session_factory
from mailsync.schemas.health import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Return simple ok status for liveness."""
    return HealthResponse(version=get_settings().app_version)


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"description": "Database unreachable", "model": ReadinessResponse}},
)
async def readiness_check() -> ReadinessResponse | JSONResponse:
    """Return 200 when the database answers; 503 otherwise.

    Redis is reported but never fails readiness: progress events and locks
    degrade to no-op / in-process when it is down.
    """
    settings = get_settings()
    redis_ok: bool | None = None
    if settings.redis_enabled:
        publisher = get_sync_publisher()
        redis_ok = publisher is not None and publisher.is_available()
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, SqlNotConfiguredException, OSError):
        return JSONResponse(
            status_code=503,
            content=ReadinessResponse(status="not_ready", database=False, redis=redis_ok).model_dump(),
        )
    return ReadinessResponse(redis=redis_ok)
