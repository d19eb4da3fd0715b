"""Per-folder sync metrics recorded as SyncRun rows."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime

from mailsync.infrastructure.persistence.models.sync_run import SyncRun
from mailsync.infrastructure.persistence.repositories.sync_run_repo import SyncRunRepository
from mailsync.infrastructure.services.email_upsert_service import UpsertStats
from mailsync.shared.enums import SyncRunStatus
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)

MAX_RECORDED_ERRORS = 50


@dataclass
class FolderRunMetrics:
    """Counters for one folder sync while it runs."""

    folder_id: str | None
    total_messages: int
    started_at: datetime = field(default_factory=utc_now)
    started_monotonic: float = field(default_factory=time.monotonic)
    messages_processed: int = 0
    messages_inserted: int = 0
    messages_updated: int = 0
    messages_skipped: int = 0
    messages_failed: int = 0
    duplicates_found: int = 0
    api_calls_made: int = 0
    rate_limit_hits: int = 0
    pages: int = 0
    errors: list[str] = field(default_factory=list)

    def add_upsert(self, stats: UpsertStats) -> None:
        self.messages_processed += stats.processed
        self.messages_inserted += stats.inserted
        self.messages_updated += stats.updated
        self.messages_failed += stats.failed
        self.duplicates_found += stats.duplicates
        self.errors.extend(stats.errors)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    @property
    def synced(self) -> int:
        """Messages stored by this run (inserted or updated)."""
        return self.messages_inserted + self.messages_updated

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_monotonic) * 1000)


class SyncMetricsRecorder:
    """Creates one SyncRun row per folder sync for a workflow run."""

    def __init__(
        self,
        run_repo: SyncRunRepository,
        *,
        account_id: str,
        provider: str,
        sync_mode: str,
        trigger: str,
        correlation_id: str | None = None,
    ) -> None:
        self._repo = run_repo
        self.account_id = account_id
        self.provider = provider
        self.sync_mode = sync_mode
        self.trigger = trigger
        self.correlation_id = correlation_id

    def start_folder(self, folder_id: str | None, total_messages: int) -> FolderRunMetrics:
        return FolderRunMetrics(folder_id=folder_id, total_messages=total_messages)

    async def finish_folder(
        self,
        metrics: FolderRunMetrics,
        status: SyncRunStatus,
        *,
        extra: dict | None = None,
    ) -> SyncRun:
        """Persist the folder run with its final status and duration."""
        run = SyncRun(
            account_id=self.account_id,
            folder_id=metrics.folder_id,
            correlation_id=self.correlation_id,
            provider=self.provider,
            sync_mode=self.sync_mode,
            trigger=self.trigger,
            status=status.value,
            started_at=metrics.started_at,
            completed_at=utc_now(),
            duration_ms=metrics.elapsed_ms(),
            total_messages=metrics.total_messages,
            messages_processed=metrics.messages_processed,
            messages_inserted=metrics.messages_inserted,
            messages_updated=metrics.messages_updated,
            messages_skipped=metrics.messages_skipped,
            messages_failed=metrics.messages_failed,
            duplicates_found=metrics.duplicates_found,
            api_calls_made=metrics.api_calls_made,
            rate_limit_hits=metrics.rate_limit_hits,
            errors=metrics.errors[:MAX_RECORDED_ERRORS] or None,
            extra=extra,
        )
        await self._repo.add(run)
        logger.info(
            "Folder run %s: status=%s processed=%s failed=%s duration_ms=%s",
            metrics.folder_id,
            status.value,
            metrics.messages_processed,
            metrics.messages_failed,
            run.duration_ms,
        )
        return run
