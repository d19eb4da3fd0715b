"""Presentation-layer dependency injection (composition root).

Provides FastAPI Depends() for DB sessions, services and the process-wide
SyncRunner. Routes depend only on these dependencies, not on infra directly.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.core.config import get_settings
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.persistence.database import get_db, get_db_transactional
from mailsync.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailFolderRepository,
    EmailRepository,
    SyncRunRepository,
)
from mailsync.infrastructure.services import (
    AnalyticsService,
    EmailAccountService,
    SchedulingService,
    SyncRunner,
)


def get_credential_encryptor() -> CredentialEncryptor:
    """Credential encryptor for email accounts (composition root)."""
    return CredentialEncryptor()


def _build_email_account_service(
    db: AsyncSession, encryptor: CredentialEncryptor
) -> EmailAccountService:
    return EmailAccountService(
        email_account_repo=EmailAccountRepository(db),
        email_folder_repo=EmailFolderRepository(db),
        credential_encryptor=encryptor,
    )


async def get_email_account_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    encryptor: Annotated[CredentialEncryptor, Depends(get_credential_encryptor)],
) -> EmailAccountService:
    """Email account service for reads."""
    return _build_email_account_service(db, encryptor)


async def get_email_account_service_for_write(
    db: Annotated[AsyncSession, Depends(get_db_transactional)],
    encryptor: Annotated[CredentialEncryptor, Depends(get_credential_encryptor)],
) -> EmailAccountService:
    """Email account service for writes (committed when the request succeeds)."""
    return _build_email_account_service(db, encryptor)


async def get_analytics_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AnalyticsService:
    return AnalyticsService(
        SyncRunRepository(db),
        EmailRepository(db),
        EmailAccountRepository(db),
    )


async def get_scheduling_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    analytics: Annotated[AnalyticsService, Depends(get_analytics_service)],
) -> SchedulingService:
    return SchedulingService(EmailAccountRepository(db), analytics, settings=get_settings())


def get_sync_runner(request: Request) -> SyncRunner:
    """The SyncRunner created at startup (shared so exclusion holds across requests)."""
    runner = getattr(request.app.state, "sync_runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="Sync runner not initialized")
    return runner
