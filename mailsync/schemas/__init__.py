"""Pydantic request/response schemas for the API."""

from mailsync.schemas.analytics import (
    AccountAnalyticsResponse,
    HealthReportResponse,
    ScheduleResponse,
)
from mailsync.schemas.email_account import (
    EmailAccountCreateRequest,
    EmailAccountResponse,
    EmailFolderResponse,
    EmailFolderUpdate,
    SyncAcceptedResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
)
from mailsync.schemas.health import HealthResponse, ReadinessResponse

__all__ = [
    "AccountAnalyticsResponse",
    "EmailAccountCreateRequest",
    "EmailAccountResponse",
    "EmailFolderResponse",
    "EmailFolderUpdate",
    "HealthReportResponse",
    "HealthResponse",
    "ReadinessResponse",
    "ScheduleResponse",
    "SyncAcceptedResponse",
    "SyncStatusResponse",
    "SyncTriggerRequest",
]
