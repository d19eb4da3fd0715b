"""Email folder repository: override-preserving upsert, cursors and derived counts."""

from __future__ import annotations

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.application.dtos.sync import FolderUpsert
from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.repositories.base import BaseRepository
from mailsync.shared.utils.datetime import utc_now

# Classification columns a user override pins; re-detection never touches them.
_CLASSIFICATION_COLUMNS = ("folder_type", "is_system", "icon", "sort_order")


class EmailFolderRepository(BaseRepository[EmailFolder]):
    """Folders keyed by (account_id, provider_folder_id)."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, EmailFolder)

    async def upsert_folder(self, data: FolderUpsert) -> EmailFolder:
        """Insert or update one provider folder and return the stored row.

        Name, parent and expected_count always follow the provider.
        Classification follows re-detection unless type_overridden is set.
        Sync policy (enabled, frequency, lookback) is only set on insert so
        user changes survive every resync.
        """
        policy = data.policy
        stmt = self.insert().values(
            account_id=data.account_id,
            provider_folder_id=data.provider_folder_id,
            parent_provider_id=data.parent_provider_id,
            name=data.name,
            folder_type=policy.folder_type.value,
            type_overridden=False,
            is_system=policy.is_system,
            icon=policy.icon,
            sort_order=policy.sort_order,
            sync_enabled=policy.sync_enabled,
            sync_frequency_minutes=policy.sync_frequency_minutes,
            sync_days_back=policy.sync_days_back,
            expected_count=data.expected_count,
            message_count=0,
            unread_count=0,
            sync_status="idle",
        )
        excluded = stmt.excluded
        update_set = {
            "name": excluded.name,
            "parent_provider_id": excluded.parent_provider_id,
            "expected_count": excluded.expected_count,
            "updated_at": func.now(),
        }
        for column in _CLASSIFICATION_COLUMNS:
            update_set[column] = case(
                (EmailFolder.type_overridden.is_(True), getattr(EmailFolder, column)),
                else_=getattr(excluded, column),
            )
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "provider_folder_id"],
            set_=update_set,
        )
        await self.db.execute(stmt)
        result = await self.db.execute(
            select(EmailFolder)
            .where(
                EmailFolder.account_id == data.account_id,
                EmailFolder.provider_folder_id == data.provider_folder_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def list_for_account(
        self, account_id: str, *, sync_enabled_only: bool = False
    ) -> list[EmailFolder]:
        """Folders in sync order (sort_order, then name)."""
        stmt = select(EmailFolder).where(EmailFolder.account_id == account_id)
        if sync_enabled_only:
            stmt = stmt.where(EmailFolder.sync_enabled.is_(True))
        result = await self.db.execute(
            stmt.order_by(EmailFolder.sort_order, EmailFolder.name).execution_options(
                populate_existing=True
            )
        )
        return list(result.scalars().all())

    async def get_for_account(self, folder_id: str, account_id: str) -> EmailFolder | None:
        result = await self.db.execute(
            select(EmailFolder).where(
                EmailFolder.id == folder_id,
                EmailFolder.account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    async def mark_folder_synced(
        self,
        folder: EmailFolder,
        cursor: str | None,
        *,
        persist_cursor: bool,
        status: str = "idle",
    ) -> None:
        """Record a finished folder sync; the cursor is replaced only when persist_cursor."""
        if persist_cursor:
            folder.sync_cursor = cursor
        folder.sync_status = status
        folder.last_sync_at = utc_now()
        await self.db.flush()

    async def clear_cursor(self, folder: EmailFolder) -> None:
        folder.sync_cursor = None
        await self.db.flush()

    async def recalculate_counts(self, account_id: str) -> dict[str, tuple[int, int]]:
        """Recompute message/unread counts of every folder from the email table.

        Returns {folder_id: (message_count, unread_count)}. Folders without
        any email rows are reset to zero.
        """
        result = await self.db.execute(
            select(
                Email.folder_id,
                func.count(Email.id),
                func.sum(case((Email.is_read.is_(False), 1), else_=0)),
            )
            .where(Email.account_id == account_id, Email.folder_id.is_not(None))
            .group_by(Email.folder_id)
        )
        totals = {row[0]: (int(row[1]), int(row[2] or 0)) for row in result.all()}
        counts: dict[str, tuple[int, int]] = {}
        for folder in await self.list_for_account(account_id):
            message_count, unread_count = totals.get(folder.id, (0, 0))
            folder.message_count = message_count
            folder.unread_count = unread_count
            counts[folder.id] = (message_count, unread_count)
        await self.db.flush()
        return counts
