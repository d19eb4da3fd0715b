"""Sync run repository: append-only analytics records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.sync_run import SyncRun
from mailsync.infrastructure.persistence.repositories.base import BaseRepository
from mailsync.shared.enums import SyncRunStatus
from mailsync.shared.utils.datetime import ensure_utc


class SyncRunRepository(BaseRepository[SyncRun]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, SyncRun)

    async def add(self, run: SyncRun) -> SyncRun:
        self.db.add(run)
        await self.db.flush()
        return run

    async def list_since(self, account_id: str, since: datetime) -> list[SyncRun]:
        """Runs started after since, oldest first."""
        result = await self.db.execute(
            select(SyncRun)
            .where(SyncRun.account_id == account_id, SyncRun.started_at > since)
            .order_by(SyncRun.started_at)
        )
        return list(result.scalars().all())

    async def list_for_correlation(self, correlation_id: str) -> list[SyncRun]:
        result = await self.db.execute(
            select(SyncRun)
            .where(SyncRun.correlation_id == correlation_id)
            .order_by(SyncRun.started_at)
        )
        return list(result.scalars().all())

    async def last_completed_at(self, account_id: str) -> datetime | None:
        result = await self.db.execute(
            select(func.max(SyncRun.completed_at)).where(
                SyncRun.account_id == account_id,
                SyncRun.status == SyncRunStatus.COMPLETED.value,
            )
        )
        return ensure_utc(result.scalar_one_or_none())
