"""Sync checkpoint repository: one durable workflow state row per account."""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.sync_checkpoint import SyncCheckpoint
from mailsync.infrastructure.persistence.repositories.base import BaseRepository


class SyncCheckpointRepository(BaseRepository[SyncCheckpoint]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, SyncCheckpoint)

    async def get_for_account(self, account_id: str) -> SyncCheckpoint | None:
        result = await self.db.execute(
            select(SyncCheckpoint)
            .where(SyncCheckpoint.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def save(self, checkpoint: SyncCheckpoint) -> SyncCheckpoint:
        """Add a new checkpoint or flush changes to an attached one."""
        if checkpoint not in self.db:
            self.db.add(checkpoint)
        await self.db.flush()
        return checkpoint

    async def delete_for_account(self, account_id: str) -> None:
        await self.db.execute(
            delete(SyncCheckpoint).where(SyncCheckpoint.account_id == account_id)
        )
