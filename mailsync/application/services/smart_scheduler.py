"""Adaptive sync scheduling policy.

Pure functions of an AccountAnalytics snapshot: no database access, so the
same policy drives the worker loop, the API and the tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from mailsync.application.dtos.analytics import (
    AccountAnalytics,
    EfficiencyAnalysis,
    HourlyVolume,
    PeakPrediction,
    ScheduleSlot,
    SyncSchedule,
)
from mailsync.core.config import Settings
from mailsync.domain.enums import SchedulePriority
from mailsync.shared.utils.datetime import utc_now

PEAK_VOLUME_FACTOR = 1.5
OFF_PEAK_VOLUME_FACTOR = 0.5
FAILURE_BACKOFF_FACTOR = 1.5
RATE_LIMIT_BACKOFF_FACTOR = 2.0


def _average_volume(volumes: list[HourlyVolume]) -> float:
    if not volumes:
        return 0.0
    return sum(v.volume for v in volumes) / len(volumes)


def _volume_at(volumes: list[HourlyVolume], hour: int) -> int:
    for bucket in volumes:
        if bucket.hour == hour:
            return bucket.volume
    return 0


class SmartScheduler:
    """Decides sync interval and priority per account from observed traffic.

    Volume sets the base: hours above 1.5x the account's own hourly average
    sync at the minimum interval (high priority), hours below 0.5x at the
    maximum (low priority). Failure and rate-limit penalties then lengthen
    the interval multiplicatively, starting from at least the default, and
    never beyond the maximum.
    """

    def __init__(
        self,
        default_interval: int = 15,
        min_interval: int = 5,
        max_interval: int = 60,
        failure_rate_threshold: float = 0.10,
        rate_limit_threshold: float = 0.05,
    ) -> None:
        self.default_interval = default_interval
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.failure_rate_threshold = failure_rate_threshold
        self.rate_limit_threshold = rate_limit_threshold

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmartScheduler":
        return cls(
            default_interval=settings.scheduler_default_interval_minutes,
            min_interval=settings.scheduler_min_interval_minutes,
            max_interval=settings.scheduler_max_interval_minutes,
            failure_rate_threshold=settings.scheduler_failure_rate_threshold,
            rate_limit_threshold=settings.scheduler_rate_limit_threshold,
        )

    def _classify_volume(self, volume: float, average: float) -> tuple[SchedulePriority, int, str]:
        if average > 0 and volume > average * PEAK_VOLUME_FACTOR:
            return SchedulePriority.HIGH, self.min_interval, "Peak email hours - high volume expected"
        if average > 0 and volume < average * OFF_PEAK_VOLUME_FACTOR:
            return SchedulePriority.LOW, self.max_interval, "Off-peak hours - low volume expected"
        return SchedulePriority.MEDIUM, self.default_interval, "Normal activity period"

    def calculate_schedule(
        self,
        account_id: str,
        analytics: AccountAnalytics,
        now: datetime | None = None,
    ) -> SyncSchedule:
        """Compute next sync time, interval, priority and a readable reason."""
        now = now or utc_now()
        volumes = analytics.patterns.email_volume_by_hour
        priority, base_interval, reason = self._classify_volume(
            _volume_at(volumes, now.hour), _average_volume(volumes)
        )
        interval: float = base_interval

        if analytics.efficiency.failure_rate > self.failure_rate_threshold:
            interval = min(max(interval, self.default_interval) * FAILURE_BACKOFF_FACTOR, self.max_interval)
            reason += " | Reduced frequency due to high failure rate"

        if analytics.efficiency.rate_limit_rate > self.rate_limit_threshold:
            interval = min(max(interval, self.default_interval) * RATE_LIMIT_BACKOFF_FACTOR, self.max_interval)
            reason += " | Reduced frequency to avoid rate limits"

        interval = max(self.min_interval, min(interval, self.max_interval))
        return SyncSchedule(
            account_id=account_id,
            next_sync_at=now + timedelta(minutes=interval),
            interval_minutes=interval,
            priority=priority,
            reason=reason,
        )

    def should_sync_now(
        self,
        analytics: AccountAnalytics,
        last_sync_at: datetime | None,
        now: datetime | None = None,
    ) -> bool:
        """True when the computed interval has elapsed since the last completed sync."""
        now = now or utc_now()
        return self.interval_elapsed(
            self.calculate_schedule(analytics.account_id, analytics, now), last_sync_at, now
        )

    @staticmethod
    def interval_elapsed(
        schedule: SyncSchedule, last_sync_at: datetime | None, now: datetime
    ) -> bool:
        if last_sync_at is None:
            return True
        return last_sync_at + timedelta(minutes=schedule.interval_minutes) <= now

    def recommended_schedule(self, analytics: AccountAnalytics) -> list[ScheduleSlot]:
        """Volume-based interval and priority for each hour of the day."""
        volumes = analytics.patterns.email_volume_by_hour
        average = _average_volume(volumes)
        slots = []
        for hour in range(24):
            priority, interval, _ = self._classify_volume(_volume_at(volumes, hour), average)
            slots.append(ScheduleSlot(hour=hour, interval_minutes=interval, priority=priority))
        return slots

    def predict_next_peak(
        self,
        analytics: AccountAnalytics,
        now: datetime | None = None,
    ) -> PeakPrediction | None:
        """Next of the top-3 volume hours after the current hour.

        When every peak is earlier today the first one tomorrow is returned
        with hour + 24 and lower confidence.
        """
        now = now or utc_now()
        peaks = sorted(
            analytics.patterns.email_volume_by_hour,
            key=lambda v: v.volume,
            reverse=True,
        )[:3]
        if not peaks:
            return None
        upcoming = sorted((p for p in peaks if p.hour > now.hour), key=lambda p: p.hour)
        if upcoming:
            peak = upcoming[0]
            return PeakPrediction(hour=peak.hour, expected_volume=peak.volume, confidence=0.8)
        first = min(peaks, key=lambda p: p.hour)
        return PeakPrediction(hour=first.hour + 24, expected_volume=first.volume, confidence=0.7)

    def analyze_efficiency(self, analytics: AccountAnalytics) -> EfficiencyAnalysis:
        """Score sync efficiency 0-100 and suggest changes."""
        efficiency = analytics.efficiency
        failure_score = max(0.0, 100 - efficiency.failure_rate * 1000)
        duplicate_score = max(0.0, 100 - efficiency.duplicate_rate * 200)
        speed_score = min(100.0, efficiency.processing_speed * 2)
        result = EfficiencyAnalysis(
            current_efficiency=round((failure_score + duplicate_score + speed_score) / 3)
        )

        if efficiency.failure_rate > 0.05:
            result.suggestions.append("High failure rate detected. Consider investigating error logs.")
            result.potential_improvements.append({
                "change": "Reduce sync frequency during high-failure periods",
                "expected_improvement": "May reduce failure rate by 20-30%",
            })
        if efficiency.duplicate_rate > 0.1:
            result.suggestions.append(
                "High duplicate rate. Messages are being re-fetched; check cursor persistence."
            )
            result.potential_improvements.append({
                "change": "Keep incremental cursors so unchanged messages are not re-fetched",
                "expected_improvement": "Prevents ~10% redundant processing",
            })
        if efficiency.rate_limit_rate > 0.02:
            result.suggestions.append("Approaching rate limits. Consider spreading out sync operations.")
            result.potential_improvements.append({
                "change": "Increase sync interval during peak API usage",
                "expected_improvement": "Reduces rate limit hits by 50%+",
            })
        if efficiency.processing_speed < 10:
            result.suggestions.append("Low processing speed. Check for network or database bottlenecks.")
            result.potential_improvements.append({
                "change": "Increase page size and reuse provider connections",
                "expected_improvement": "Could improve speed by 2-3x",
            })

        peak_hours = ", ".join(str(h) for h in analytics.patterns.peak_sync_hours)
        result.suggestions.append(
            f"Peak email hours: {peak_hours}:00. Sync more frequently during these times."
        )
        return result
