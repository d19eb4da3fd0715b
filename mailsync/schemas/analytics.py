"""Analytics and scheduling API schemas.

Nested analytics aggregates are dataclasses; these models read them with
from_attributes.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from mailsync.domain.enums import SchedulePriority


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class HourlySyncStatSchema(_FromAttributes):
    hour: int
    count: int
    avg_duration_ms: float


class WeekdaySyncStatSchema(_FromAttributes):
    day: int
    count: int
    avg_duration_ms: float


class HourlyVolumeSchema(_FromAttributes):
    hour: int
    volume: int


class DailyTrendSchema(_FromAttributes):
    date: str
    count: int
    avg_duration_ms: float
    error_count: int


class PerformanceStatsSchema(_FromAttributes):
    avg_sync_ms: float
    fastest_sync_ms: float
    slowest_sync_ms: float
    p50_sync_ms: float
    p95_sync_ms: float
    syncs_by_hour: list[HourlySyncStatSchema]
    syncs_by_weekday: list[WeekdaySyncStatSchema]


class PatternStatsSchema(_FromAttributes):
    peak_sync_hours: list[int]
    email_volume_by_hour: list[HourlyVolumeSchema]
    syncs_last_hour: int
    syncs_last_day: int
    syncs_last_week: int


class EfficiencyStatsSchema(_FromAttributes):
    duplicate_rate: float
    failure_rate: float
    rate_limit_rate: float
    avg_messages_per_sync: float
    processing_speed: float


class AccountAnalyticsResponse(_FromAttributes):
    """Response for GET analytics/accounts/{id}."""

    account_id: str
    window_days: int
    performance: PerformanceStatsSchema
    patterns: PatternStatsSchema
    efficiency: EfficiencyStatsSchema
    trends: list[DailyTrendSchema]


class AccountMetricsSchema(_FromAttributes):
    account_id: str
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    total_emails_synced: int
    average_sync_ms: int
    last_sync_duration_ms: int | None = None
    error_rate: float
    uptime: float


class HealthReportResponse(_FromAttributes):
    """Response for GET analytics/accounts/{id}/health-report."""

    status: str
    issues: list[str]
    recommendations: list[str]
    metrics: AccountMetricsSchema


class ScheduleSlotSchema(_FromAttributes):
    hour: int
    interval_minutes: int
    priority: SchedulePriority


class PeakPredictionSchema(_FromAttributes):
    hour: int
    expected_volume: int
    confidence: float


class EfficiencyAnalysisSchema(_FromAttributes):
    current_efficiency: int
    suggestions: list[str]
    potential_improvements: list[dict[str, str]]


class ScheduleResponse(BaseModel):
    """Response for GET analytics/accounts/{id}/schedule."""

    account_id: str
    next_sync_at: datetime
    interval_minutes: float
    priority: SchedulePriority
    reason: str
    recommended: list[ScheduleSlotSchema]
    next_peak: PeakPredictionSchema | None = None
    efficiency: EfficiencyAnalysisSchema
