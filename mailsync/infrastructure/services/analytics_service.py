"""Sync analytics: performance, traffic patterns, efficiency and health.

Aggregation is done in Python over the SyncRun rows of the window so the
same code runs on PostgreSQL and SQLite. compute_account_analytics and
compute_account_metrics are pure; AnalyticsService loads the rows.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol

from mailsync.application.dtos.analytics import (
    AccountAnalytics,
    AccountMetrics,
    DailyTrend,
    EfficiencyStats,
    HealthReport,
    HourlySyncStat,
    HourlyVolume,
    PatternStats,
    PerformanceStats,
    WeekdaySyncStat,
)
from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.infrastructure.persistence.repositories.email_repo import EmailRepository
from mailsync.infrastructure.persistence.repositories.sync_run_repo import SyncRunRepository
from mailsync.shared.enums import SyncRunStatus
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import traced
from mailsync.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)

HEALTH_WINDOW_DAYS = 7
CRITICAL_ERROR_RATE = 50.0
ELEVATED_ERROR_RATE = 20.0
CRITICAL_UPTIME = 50.0
REDUCED_UPTIME = 80.0
STALE_SYNC_HOURS = 48
SLOW_SYNC_MS = 60_000


class RunLike(Protocol):
    status: str
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None
    total_messages: int
    messages_processed: int
    messages_inserted: int
    messages_failed: int
    duplicates_found: int
    api_calls_made: int
    rate_limit_hits: int


def percentile(values: Sequence[float], q: float) -> float:
    """Linear-interpolated percentile of values (q in 0..100); 0.0 when empty."""
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return float(ordered[0])
    rank = (len(ordered) - 1) * q / 100
    low = int(rank)
    high = min(low + 1, len(ordered) - 1)
    return float(ordered[low] + (ordered[high] - ordered[low]) * (rank - low))


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _weekday_sunday_first(dt: datetime) -> int:
    return (dt.weekday() + 1) % 7


def _performance(runs: list[RunLike]) -> PerformanceStats:
    durations = [
        float(r.duration_ms)
        for r in runs
        if r.status == SyncRunStatus.COMPLETED.value and r.duration_ms is not None
    ]
    by_hour: dict[int, list[float]] = defaultdict(list)
    by_day: dict[int, list[float]] = defaultdict(list)
    for run in runs:
        started = ensure_utc(run.started_at)
        duration = float(run.duration_ms or 0)
        by_hour[started.hour].append(duration)
        by_day[_weekday_sunday_first(started)].append(duration)
    return PerformanceStats(
        avg_sync_ms=_mean(durations),
        fastest_sync_ms=min(durations, default=0.0),
        slowest_sync_ms=max(durations, default=0.0),
        p50_sync_ms=percentile(durations, 50),
        p95_sync_ms=percentile(durations, 95),
        syncs_by_hour=[
            HourlySyncStat(hour=h, count=len(v), avg_duration_ms=_mean(v))
            for h, v in sorted(by_hour.items())
        ],
        syncs_by_weekday=[
            WeekdaySyncStat(day=d, count=len(v), avg_duration_ms=_mean(v))
            for d, v in sorted(by_day.items())
        ],
    )


def _patterns(
    runs: list[RunLike],
    performance: PerformanceStats,
    received_times: Iterable[datetime],
    now: datetime,
) -> PatternStats:
    volume: dict[int, int] = defaultdict(int)
    for received in received_times:
        volume[ensure_utc(received).hour] += 1
    peak = sorted(performance.syncs_by_hour, key=lambda s: (-s.count, s.hour))[:3]
    started = [ensure_utc(r.started_at) for r in runs]
    return PatternStats(
        peak_sync_hours=[s.hour for s in peak],
        email_volume_by_hour=[HourlyVolume(hour=h, volume=v) for h, v in sorted(volume.items())],
        syncs_last_hour=sum(1 for s in started if s > now - timedelta(hours=1)),
        syncs_last_day=sum(1 for s in started if s > now - timedelta(days=1)),
        syncs_last_week=sum(1 for s in started if s > now - timedelta(days=7)),
    )


def _efficiency(runs: list[RunLike]) -> EfficiencyStats:
    completed = [r for r in runs if r.status == SyncRunStatus.COMPLETED.value]
    processed = sum(r.messages_processed for r in completed)
    seconds = sum((r.duration_ms or 0) / 1000 for r in completed)
    return EfficiencyStats(
        duplicate_rate=_ratio(
            sum(r.duplicates_found for r in completed), sum(r.total_messages for r in completed)
        ),
        failure_rate=_ratio(sum(r.messages_failed for r in completed), processed),
        rate_limit_rate=_ratio(
            sum(r.rate_limit_hits for r in completed), sum(r.api_calls_made for r in completed)
        ),
        avg_messages_per_sync=_mean([float(r.messages_processed) for r in completed]),
        processing_speed=_ratio(processed, seconds),
    )


def _trends(runs: list[RunLike]) -> list[DailyTrend]:
    by_date: dict[str, list[RunLike]] = defaultdict(list)
    for run in runs:
        by_date[ensure_utc(run.started_at).date().isoformat()].append(run)
    return [
        DailyTrend(
            date=date,
            count=len(day_runs),
            avg_duration_ms=_mean([float(r.duration_ms or 0) for r in day_runs]),
            error_count=sum(1 for r in day_runs if r.status == SyncRunStatus.FAILED.value),
        )
        for date, day_runs in sorted(by_date.items())
    ]


def compute_account_analytics(
    account_id: str,
    runs: list[RunLike],
    received_times: Iterable[datetime],
    window_days: int,
    now: datetime | None = None,
) -> AccountAnalytics:
    """Aggregate runs (already limited to the window) into AccountAnalytics."""
    now = now or utc_now()
    performance = _performance(runs)
    return AccountAnalytics(
        account_id=account_id,
        window_days=window_days,
        performance=performance,
        patterns=_patterns(runs, performance, received_times, now),
        efficiency=_efficiency(runs),
        trends=_trends(runs),
    )


def compute_account_metrics(account_id: str, runs: list[RunLike]) -> AccountMetrics:
    """Run counts, average/last duration, error rate and uptime (percent, 2 decimals)."""
    total = len(runs)
    successful = sum(1 for r in runs if r.status == SyncRunStatus.COMPLETED.value)
    failed = sum(1 for r in runs if r.status == SyncRunStatus.FAILED.value)
    finished = [r for r in runs if r.completed_at is not None and r.duration_ms is not None]
    last = max(finished, key=lambda r: ensure_utc(r.completed_at), default=None)
    return AccountMetrics(
        account_id=account_id,
        total_syncs=total,
        successful_syncs=successful,
        failed_syncs=failed,
        total_emails_synced=sum(r.messages_inserted for r in runs),
        average_sync_ms=round(_mean([float(r.duration_ms) for r in finished])),
        last_sync_duration_ms=last.duration_ms if last else None,
        error_rate=round(_ratio(failed, total) * 100, 2),
        uptime=round(_ratio(successful, total) * 100, 2),
    )


def build_health_report(
    metrics: AccountMetrics,
    last_sync_at: datetime | None,
    now: datetime | None = None,
) -> HealthReport:
    """healthy when no issue, critical on >50% errors or <50% uptime, else degraded."""
    now = now or utc_now()
    issues: list[str] = []
    recommendations: list[str] = []

    if metrics.error_rate > CRITICAL_ERROR_RATE:
        issues.append(f"High error rate: {metrics.error_rate}%")
        recommendations.append("Check account authentication and connectivity")
    elif metrics.error_rate > ELEVATED_ERROR_RATE:
        issues.append(f"Elevated error rate: {metrics.error_rate}%")

    if metrics.total_syncs and metrics.uptime < CRITICAL_UPTIME:
        issues.append(f"Low uptime: {metrics.uptime}%")
        recommendations.append("Review sync errors and consider reconnecting account")
    elif metrics.total_syncs and metrics.uptime < REDUCED_UPTIME:
        issues.append(f"Reduced uptime: {metrics.uptime}%")

    if last_sync_at is not None:
        hours = (now - ensure_utc(last_sync_at)).total_seconds() / 3600
        if hours > STALE_SYNC_HOURS:
            issues.append(f"No sync in {round(hours)} hours")
            recommendations.append("Trigger manual sync or check sync schedule")

    if metrics.average_sync_ms > SLOW_SYNC_MS:
        issues.append(f"Slow sync performance: {round(metrics.average_sync_ms / 1000)}s")
        recommendations.append("Consider reducing sync batch size")

    if not issues:
        status = "healthy"
    elif metrics.error_rate > CRITICAL_ERROR_RATE or (
        metrics.total_syncs and metrics.uptime < CRITICAL_UPTIME
    ):
        status = "critical"
    else:
        status = "degraded"
    return HealthReport(status=status, issues=issues, recommendations=recommendations, metrics=metrics)


def render_performance_report(analytics: AccountAnalytics) -> str:
    """Markdown summary of an analytics snapshot."""
    perf = analytics.performance
    eff = analytics.efficiency
    pat = analytics.patterns
    lines = [
        "# Sync Performance Report",
        "",
        "## Performance Summary",
        f"- Average Sync Time: {perf.avg_sync_ms / 1000:.2f}s",
        f"- Median Sync Time: {perf.p50_sync_ms / 1000:.2f}s",
        f"- 95th Percentile: {perf.p95_sync_ms / 1000:.2f}s",
        f"- Fastest Sync: {perf.fastest_sync_ms / 1000:.2f}s",
        f"- Slowest Sync: {perf.slowest_sync_ms / 1000:.2f}s",
        "",
        "## Efficiency Metrics",
        f"- Duplicate Rate: {eff.duplicate_rate * 100:.2f}%",
        f"- Failure Rate: {eff.failure_rate * 100:.2f}%",
        f"- Rate Limit Rate: {eff.rate_limit_rate * 100:.2f}%",
        f"- Processing Speed: {eff.processing_speed:.1f} messages/second",
        f"- Avg Messages/Sync: {eff.avg_messages_per_sync:.0f}",
        "",
        "## Sync Patterns",
        f"- Peak Sync Hours: {', '.join(str(h) for h in pat.peak_sync_hours)}",
        f"- Syncs Last Hour: {pat.syncs_last_hour}",
        f"- Syncs Last Day: {pat.syncs_last_day}",
        f"- Syncs Last Week: {pat.syncs_last_week}",
        "",
        "## Trends",
        f"- Total Syncs: {sum(t.count for t in analytics.trends)}",
        f"- Total Errors: {sum(t.error_count for t in analytics.trends)}",
    ]
    return "\n".join(lines)


class AnalyticsService:
    """Loads sync runs and email timestamps and aggregates them per account."""

    def __init__(
        self,
        run_repo: SyncRunRepository,
        email_repo: EmailRepository,
        account_repo: EmailAccountRepository,
    ) -> None:
        self._runs = run_repo
        self._emails = email_repo
        self._accounts = account_repo

    async def ensure_account(self, account_id: str) -> None:
        """Raises ResourceNotFoundException if the account does not exist."""
        await self._accounts.get_or_raise(account_id, "email_account")

    @traced("analytics.account")
    async def get_account_analytics(
        self, account_id: str, days: int = 7, now: datetime | None = None
    ) -> AccountAnalytics:
        now = now or utc_now()
        since = now - timedelta(days=days)
        runs: list[Any] = await self._runs.list_since(account_id, since)
        received = await self._emails.received_times_since(account_id, since)
        return compute_account_analytics(account_id, runs, received, days, now)

    async def get_account_metrics(
        self, account_id: str, days: int = 30, now: datetime | None = None
    ) -> AccountMetrics:
        now = now or utc_now()
        runs: list[Any] = await self._runs.list_since(account_id, now - timedelta(days=days))
        return compute_account_metrics(account_id, runs)

    async def generate_health_report(
        self, account_id: str, now: datetime | None = None
    ) -> HealthReport:
        """Health over the last 7 days.

        Raises:
            ResourceNotFoundException: Account does not exist.
        """
        account = await self._accounts.get_or_raise(account_id, "email_account")
        metrics = await self.get_account_metrics(account_id, HEALTH_WINDOW_DAYS, now)
        report = build_health_report(metrics, account.last_sync_at, now)
        if report.status != "healthy":
            logger.info("Account %s health %s: %s", account_id, report.status, "; ".join(report.issues))
        return report

    async def generate_performance_report(self, account_id: str, days: int = 30) -> str:
        return render_performance_report(await self.get_account_analytics(account_id, days))
