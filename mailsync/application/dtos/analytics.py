"""Analytics and scheduling DTOs (read-side aggregates over sync runs)."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from mailsync.domain.enums import SchedulePriority


@dataclass(frozen=True)
class HourlySyncStat:
    hour: int
    count: int
    avg_duration_ms: float


@dataclass(frozen=True)
class WeekdaySyncStat:
    """day follows the 0=Sunday convention used in the dashboards."""

    day: int
    count: int
    avg_duration_ms: float


@dataclass(frozen=True)
class HourlyVolume:
    hour: int
    volume: int


@dataclass(frozen=True)
class DailyTrend:
    date: str
    count: int
    avg_duration_ms: float
    error_count: int


@dataclass
class PerformanceStats:
    avg_sync_ms: float = 0.0
    fastest_sync_ms: float = 0.0
    slowest_sync_ms: float = 0.0
    p50_sync_ms: float = 0.0
    p95_sync_ms: float = 0.0
    syncs_by_hour: list[HourlySyncStat] = field(default_factory=list)
    syncs_by_weekday: list[WeekdaySyncStat] = field(default_factory=list)


@dataclass
class PatternStats:
    peak_sync_hours: list[int] = field(default_factory=list)
    email_volume_by_hour: list[HourlyVolume] = field(default_factory=list)
    syncs_last_hour: int = 0
    syncs_last_day: int = 0
    syncs_last_week: int = 0


@dataclass
class EfficiencyStats:
    """Ratios are fractions in 0..1; processing_speed is messages per second."""

    duplicate_rate: float = 0.0
    failure_rate: float = 0.0
    rate_limit_rate: float = 0.0
    avg_messages_per_sync: float = 0.0
    processing_speed: float = 0.0


@dataclass
class AccountAnalytics:
    """Aggregated sync analytics for one account over a window of days."""

    account_id: str
    window_days: int
    performance: PerformanceStats = field(default_factory=PerformanceStats)
    patterns: PatternStats = field(default_factory=PatternStats)
    efficiency: EfficiencyStats = field(default_factory=EfficiencyStats)
    trends: list[DailyTrend] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AccountMetrics:
    """Run-level health metrics. error_rate and uptime are percentages."""

    account_id: str
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_emails_synced: int = 0
    average_sync_ms: int = 0
    last_sync_duration_ms: int | None = None
    error_rate: float = 0.0
    uptime: float = 0.0


@dataclass
class HealthReport:
    status: str
    issues: list[str]
    recommendations: list[str]
    metrics: AccountMetrics


@dataclass(frozen=True)
class SyncSchedule:
    account_id: str
    next_sync_at: datetime
    interval_minutes: float
    priority: SchedulePriority
    reason: str


@dataclass(frozen=True)
class ScheduleSlot:
    hour: int
    interval_minutes: int
    priority: SchedulePriority


@dataclass(frozen=True)
class PeakPrediction:
    """hour may exceed 23 when the next peak falls on the following day."""

    hour: int
    expected_volume: int
    confidence: float


@dataclass
class EfficiencyAnalysis:
    current_efficiency: int
    suggestions: list[str] = field(default_factory=list)
    potential_improvements: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class DueAccount:
    """An account the scheduler wants synced, with its computed priority."""

    account_id: str
    user_id: str
    priority: SchedulePriority
    minutes_since_last_sync: float | None
