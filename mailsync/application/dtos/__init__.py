"""Data transfer objects exchanged between adapters, services and repositories."""

from mailsync.application.dtos.analytics import (
    AccountAnalytics,
    AccountMetrics,
    DailyTrend,
    DueAccount,
    EfficiencyAnalysis,
    EfficiencyStats,
    HealthReport,
    HourlySyncStat,
    HourlyVolume,
    PatternStats,
    PeakPrediction,
    PerformanceStats,
    ScheduleSlot,
    SyncSchedule,
    WeekdaySyncStat,
)
from mailsync.application.dtos.sync import (
    EmailAddress,
    EmailUpsert,
    FetchResult,
    FolderPolicy,
    FolderUpsert,
    ProviderEmail,
    ProviderFolder,
    ProviderToken,
    SyncRequest,
    SyncResult,
)

__all__ = [
    "AccountAnalytics",
    "AccountMetrics",
    "DailyTrend",
    "DueAccount",
    "EfficiencyAnalysis",
    "EfficiencyStats",
    "EmailAddress",
    "EmailUpsert",
    "FetchResult",
    "FolderPolicy",
    "FolderUpsert",
    "HealthReport",
    "HourlySyncStat",
    "HourlyVolume",
    "PatternStats",
    "PeakPrediction",
    "PerformanceStats",
    "ProviderEmail",
    "ProviderFolder",
    "ProviderToken",
    "ScheduleSlot",
    "SyncRequest",
    "SyncResult",
    "SyncSchedule",
    "WeekdaySyncStat",
]
