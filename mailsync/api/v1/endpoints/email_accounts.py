"""Email accounts API: connect a mailbox, trigger sync, sync status, folder overrides."""

from typing import Annotated

from fastapi import APIRouter, Depends

from mailsync.api.v1.dependencies import (
    get_email_account_service,
    get_email_account_service_for_write,
    get_sync_runner,
)
from mailsync.application.dtos.sync import SyncRequest
from mailsync.infrastructure.services import EmailAccountService, SyncRunner
from mailsync.schemas.email_account import (
    EmailAccountCreateRequest,
    EmailAccountResponse,
    EmailFolderResponse,
    EmailFolderUpdate,
    SyncAcceptedResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
)

router = APIRouter()


@router.post("", response_model=EmailAccountResponse, status_code=201)
async def create_email_account(
    body: EmailAccountCreateRequest,
    email_account_service: Annotated[
        EmailAccountService, Depends(get_email_account_service_for_write)
    ],
):
    """Connect a mailbox (credentials encrypted at rest)."""
    account = await email_account_service.create_email_account(
        user_id=body.user_id,
        provider_kind=body.provider_kind,
        email_address=body.email_address,
        credentials_plain=body.credentials,
        connection_params=body.connection_params,
        token_expires_at=body.token_expires_at,
    )
    return EmailAccountResponse.model_validate(account)


@router.get("/{account_id}", response_model=EmailAccountResponse)
async def get_email_account(
    account_id: str,
    email_account_service: Annotated[
        EmailAccountService, Depends(get_email_account_service)
    ],
):
    account = await email_account_service.get_account(account_id)
    return EmailAccountResponse.model_validate(account)


@router.post(
    "/{account_id}/sync",
    response_model=SyncAcceptedResponse,
    status_code=202,
)
async def trigger_email_sync(
    account_id: str,
    email_account_service: Annotated[
        EmailAccountService, Depends(get_email_account_service)
    ],
    runner: Annotated[SyncRunner, Depends(get_sync_runner)],
    body: SyncTriggerRequest | None = None,
):
    """Start a sync in the background. 409 when one is already running for the account."""
    body = body or SyncTriggerRequest()
    account = await email_account_service.get_account(account_id)
    await runner.start(
        SyncRequest(
            account_id=account.id,
            user_id=account.user_id,
            sync_mode=body.mode,
            trigger=body.trigger,
        )
    )
    return SyncAcceptedResponse(account_id=account_id, mode=body.mode)


@router.get("/{account_id}/sync-status", response_model=SyncStatusResponse)
async def get_email_account_sync_status(
    account_id: str,
    email_account_service: Annotated[
        EmailAccountService, Depends(get_email_account_service)
    ],
    runner: Annotated[SyncRunner, Depends(get_sync_runner)],
):
    """Return progress, last sync times and last error for the account."""
    account = await email_account_service.get_account(account_id)
    return SyncStatusResponse(
        account_id=account.id,
        status=account.status,
        sync_status=account.sync_status,
        sync_progress=account.sync_progress,
        running=runner.is_running(account.id),
        last_sync_at=account.last_sync_at,
        last_successful_sync_at=account.last_successful_sync_at,
        last_sync_error=account.last_sync_error,
        auth_failure_count=account.auth_failure_count,
        initial_sync_completed=account.initial_sync_completed,
    )


@router.get("/{account_id}/folders", response_model=list[EmailFolderResponse])
async def list_email_folders(
    account_id: str,
    email_account_service: Annotated[
        EmailAccountService, Depends(get_email_account_service)
    ],
):
    """Folders in display/sync order."""
    folders = await email_account_service.list_folders(account_id)
    return [EmailFolderResponse.model_validate(f) for f in folders]


@router.patch(
    "/{account_id}/folders/{folder_id}", response_model=EmailFolderResponse
)
async def update_email_folder(
    account_id: str,
    folder_id: str,
    body: EmailFolderUpdate,
    email_account_service: Annotated[
        EmailAccountService, Depends(get_email_account_service_for_write)
    ],
):
    """Override a folder's type (kept across syncs) or toggle syncing."""
    folder = await email_account_service.update_folder(
        account_id,
        folder_id,
        folder_type=body.folder_type.value if body.folder_type is not None else None,
        sync_enabled=body.sync_enabled,
    )
    return EmailFolderResponse.model_validate(folder)
