"""Infrastructure services: sync workflow, retry driver, analytics and scheduling."""

from mailsync.infrastructure.services.analytics_service import AnalyticsService
from mailsync.infrastructure.services.email_account_service import EmailAccountService
from mailsync.infrastructure.services.email_upsert_service import (
    EmailUpsertService,
    UpsertStats,
    build_email_upsert,
)
from mailsync.infrastructure.services.scheduling_service import SchedulingService
from mailsync.infrastructure.services.sync_metrics import FolderRunMetrics, SyncMetricsRecorder
from mailsync.infrastructure.services.sync_orchestrator import (
    SyncOrchestrator,
    should_persist_cursor,
)
from mailsync.infrastructure.services.sync_runner import SyncRunner

__all__ = [
    "AnalyticsService",
    "EmailAccountService",
    "EmailUpsertService",
    "FolderRunMetrics",
    "SchedulingService",
    "SyncMetricsRecorder",
    "SyncOrchestrator",
    "SyncRunner",
    "UpsertStats",
    "build_email_upsert",
    "should_persist_cursor",
]
