"""Email account repository: lookup, sync-status transitions and due-for-sync query."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, nulls_first, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.enums import AccountStatus, SyncStatus
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.sync_run import SyncRun
from mailsync.infrastructure.persistence.repositories.base import BaseRepository
from mailsync.shared.enums import SyncRunStatus
from mailsync.shared.utils.datetime import ensure_utc, utc_now


class EmailAccountRepository(BaseRepository[EmailAccount]):
    """Email account repository (Graph, Gmail and IMAP mailboxes)."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, EmailAccount)

    async def create_email_account(
        self,
        user_id: str,
        provider_kind: str,
        email_address: str,
        credentials_encrypted: str,
        connection_params: dict[str, Any] | None = None,
        token_expires_at: datetime | None = None,
    ) -> EmailAccount:
        """Create an email account (caller does not need to import the ORM model)."""
        account = EmailAccount(
            user_id=user_id,
            provider_kind=provider_kind.strip().lower(),
            email_address=email_address.strip(),
            credentials_encrypted=credentials_encrypted,
            connection_params=connection_params,
            token_expires_at=token_expires_at,
            status=AccountStatus.ACTIVE.value,
            sync_status=SyncStatus.IDLE.value,
            sync_progress=0,
            initial_sync_completed=False,
            auth_failure_count=0,
        )
        return await self.create(account)

    async def get_by_user(self, user_id: str) -> list[EmailAccount]:
        result = await self.db.execute(
            select(EmailAccount)
            .where(EmailAccount.user_id == user_id)
            .order_by(EmailAccount.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_id_for_update(self, account_id: str) -> EmailAccount | None:
        """Return a fresh copy of the account (bypasses the identity map cache)."""
        result = await self.db.execute(
            select(EmailAccount)
            .where(EmailAccount.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_syncing(self, account: EmailAccount, progress: int = 0) -> None:
        account.sync_status = SyncStatus.SYNCING.value
        account.sync_progress = progress
        account.last_sync_at = utc_now()
        await self.db.flush()

    async def set_progress(self, account: EmailAccount, progress: int) -> None:
        account.sync_progress = max(0, min(100, progress))
        await self.db.flush()

    async def store_token(
        self,
        account: EmailAccount,
        credentials_encrypted: str,
        expires_at: datetime | None,
    ) -> None:
        account.credentials_encrypted = credentials_encrypted
        account.token_expires_at = expires_at
        account.token_last_refreshed_at = utc_now()
        await self.db.flush()

    async def mark_complete(self, account: EmailAccount) -> None:
        """Active, error cleared, progress 100, auth failures reset."""
        now = utc_now()
        account.status = AccountStatus.ACTIVE.value
        account.sync_status = SyncStatus.IDLE.value
        account.sync_progress = 100
        account.last_sync_error = None
        account.last_sync_at = now
        account.last_successful_sync_at = now
        account.initial_sync_completed = True
        account.auth_failure_count = 0
        await self.db.flush()

    async def mark_failed(
        self,
        account: EmailAccount,
        error: str,
        *,
        auth_failure: bool,
        disable_threshold: int,
    ) -> None:
        """Reset sync state after a failure.

        sync_status returns to idle and progress to 0. Auth failures set
        status=error and count toward soft-disabling the account; other
        failures leave status unchanged.
        """
        account.sync_status = SyncStatus.IDLE.value
        account.sync_progress = 0
        account.last_sync_error = error[:2000]
        account.last_sync_at = utc_now()
        if auth_failure:
            account.auth_failure_count = (account.auth_failure_count or 0) + 1
            if account.auth_failure_count >= disable_threshold:
                account.status = AccountStatus.DISABLED.value
            else:
                account.status = AccountStatus.ERROR.value
        await self.db.flush()

    async def get_due_for_sync(
        self,
        idle_threshold_minutes: int,
        limit: int,
        now: datetime | None = None,
    ) -> list[tuple[str, str, datetime | None]]:
        """Active accounts whose last completed run is missing or older than the threshold.

        Returns (account_id, user_id, last_completed_at) ordered longest idle
        first, never-synced accounts before all others.
        """
        now = now or utc_now()
        cutoff = now - timedelta(minutes=idle_threshold_minutes)
        last_run = (
            select(
                SyncRun.account_id.label("account_id"),
                func.max(SyncRun.completed_at).label("last_completed_at"),
            )
            .where(SyncRun.status == SyncRunStatus.COMPLETED.value)
            .group_by(SyncRun.account_id)
            .subquery()
        )
        result = await self.db.execute(
            select(EmailAccount.id, EmailAccount.user_id, last_run.c.last_completed_at)
            .outerjoin(last_run, last_run.c.account_id == EmailAccount.id)
            .where(
                EmailAccount.status == AccountStatus.ACTIVE.value,
                or_(
                    last_run.c.last_completed_at.is_(None),
                    last_run.c.last_completed_at < cutoff,
                ),
            )
            .order_by(nulls_first(last_run.c.last_completed_at.asc()))
            .limit(limit)
        )
        return [(row[0], row[1], ensure_utc(row[2])) for row in result.all()]
