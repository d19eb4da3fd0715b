"""DB-backed scheduling: which accounts to sync next, and per-account schedule insights."""

from __future__ import annotations

from datetime import datetime

from mailsync.application.dtos.analytics import (
    DueAccount,
    EfficiencyAnalysis,
    PeakPrediction,
    ScheduleSlot,
    SyncSchedule,
)
from mailsync.application.dtos.sync import SyncRequest
from mailsync.application.services.smart_scheduler import SmartScheduler
from mailsync.core.config import Settings, get_settings
from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.infrastructure.services.analytics_service import AnalyticsService
from mailsync.shared.enums import SyncMode, SyncTrigger
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import minutes_since, utc_now

logger = get_logger(__name__)


class SchedulingService:
    """Combines the due-for-sync query with SmartScheduler decisions."""

    def __init__(
        self,
        account_repo: EmailAccountRepository,
        analytics: AnalyticsService,
        scheduler: SmartScheduler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._accounts = account_repo
        self._analytics = analytics
        self._scheduler = scheduler or SmartScheduler.from_settings(self.settings)

    async def get_accounts_due_for_sync(self, now: datetime | None = None) -> list[DueAccount]:
        """Active accounts whose computed sync interval has elapsed, high priority first.

        Candidates are drawn at the shorter of the idle threshold and the
        minimum interval, so peak hours can run early; each is then kept only
        when its own schedule says it is due. Within a priority class the
        longest-idle account comes first (never synced before everything else).
        """
        now = now or utc_now()
        rows = await self._accounts.get_due_for_sync(
            min(
                self.settings.scheduler_idle_threshold_minutes,
                self.settings.scheduler_min_interval_minutes,
            ),
            self.settings.scheduler_batch_limit,
            now,
        )
        due: list[DueAccount] = []
        for account_id, user_id, last_completed_at in rows:
            analytics = await self._analytics.get_account_analytics(
                account_id, self.settings.analytics_window_days, now
            )
            schedule = self._scheduler.calculate_schedule(account_id, analytics, now)
            if not self._scheduler.interval_elapsed(schedule, last_completed_at, now):
                logger.debug(
                    "Account %s not due: interval %.1f min (%s)",
                    account_id,
                    schedule.interval_minutes,
                    schedule.reason,
                )
                continue
            due.append(
                DueAccount(
                    account_id=account_id,
                    user_id=user_id,
                    priority=schedule.priority,
                    minutes_since_last_sync=minutes_since(last_completed_at, now),
                )
            )
        # sorted() is stable, so the longest-idle order survives inside each class.
        due = sorted(due, key=lambda d: d.priority.rank)
        logger.info("Found %s accounts due for sync", len(due))
        return due

    @staticmethod
    def to_requests(due: list[DueAccount]) -> list[SyncRequest]:
        return [
            SyncRequest(
                account_id=d.account_id,
                user_id=d.user_id,
                sync_mode=SyncMode.INCREMENTAL,
                trigger=SyncTrigger.SCHEDULED,
            )
            for d in due
        ]

    async def get_schedule(self, account_id: str, now: datetime | None = None) -> SyncSchedule:
        now = now or utc_now()
        analytics = await self._analytics.get_account_analytics(
            account_id, self.settings.analytics_window_days, now
        )
        return self._scheduler.calculate_schedule(account_id, analytics, now)

    async def get_recommended_schedule(self, account_id: str) -> list[ScheduleSlot]:
        analytics = await self._analytics.get_account_analytics(
            account_id, self.settings.analytics_window_days
        )
        return self._scheduler.recommended_schedule(analytics)

    async def predict_next_peak_time(
        self, account_id: str, now: datetime | None = None
    ) -> PeakPrediction | None:
        now = now or utc_now()
        analytics = await self._analytics.get_account_analytics(
            account_id, self.settings.analytics_window_days, now
        )
        return self._scheduler.predict_next_peak(analytics, now)

    async def analyze_sync_efficiency(self, account_id: str) -> EfficiencyAnalysis:
        analytics = await self._analytics.get_account_analytics(
            account_id, self.settings.analytics_window_days
        )
        return self._scheduler.analyze_efficiency(analytics)
