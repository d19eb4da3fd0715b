"""Email repository: idempotent upsert keyed on (account_id, message_id)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.application.dtos.sync import EmailUpsert
from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.repositories.base import BaseRepository


class EmailRepository(BaseRepository[Email]):
    """Synced messages. All writes go through upsert()."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, Email)

    async def upsert(self, data: EmailUpsert) -> None:
        """INSERT ... ON CONFLICT (account_id, message_id) DO UPDATE the mutable fields.

        The last invocation wins on mutable fields and creation metadata is
        kept. A write from an aggregate view leaves the folder assignment alone.
        """
        stmt = self.insert().values(**data.to_row())
        update_set = {name: getattr(stmt.excluded, name) for name in data.update_fields()}
        update_set["updated_at"] = func.now()
        await self.db.execute(
            stmt.on_conflict_do_update(
                index_elements=["account_id", "message_id"],
                set_=update_set,
            )
        )

    async def existing_message_ids(self, account_id: str, message_ids: list[str]) -> set[str]:
        """Which of message_ids are already stored for the account."""
        if not message_ids:
            return set()
        result = await self.db.execute(
            select(Email.message_id).where(
                Email.account_id == account_id,
                Email.message_id.in_(message_ids),
            )
        )
        return set(result.scalars().all())

    async def get_by_message_id(self, account_id: str, message_id: str) -> Email | None:
        result = await self.db.execute(
            select(Email)
            .where(Email.account_id == account_id, Email.message_id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_for_account(self, account_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Email.id)).where(Email.account_id == account_id)
        )
        return int(result.scalar_one())

    async def count_by_folder_name(self, account_id: str) -> dict[str, int]:
        result = await self.db.execute(
            select(Email.folder_name, func.count(Email.id))
            .where(Email.account_id == account_id)
            .group_by(Email.folder_name)
        )
        return {row[0]: int(row[1]) for row in result.all() if row[0] is not None}

    async def received_times_since(self, account_id: str, since: datetime) -> list[datetime]:
        """received_at of emails received after since (hourly volume histogram input)."""
        result = await self.db.execute(
            select(Email.received_at).where(
                Email.account_id == account_id,
                Email.received_at > since,
            )
        )
        return [value for value in result.scalars().all() if value is not None]
