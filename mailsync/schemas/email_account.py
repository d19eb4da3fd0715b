"""Email account and folder API schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from mailsync.domain.enums import FolderType
from mailsync.shared.enums import SyncMode, SyncTrigger


class EmailAccountCreateRequest(BaseModel):
    """Request body for connecting a mailbox."""

    user_id: str = Field(..., min_length=1)
    provider_kind: str = Field(..., min_length=1, description="e.g. gmail, outlook, imap")
    email_address: EmailStr = Field(...)
    credentials: dict[str, Any] = Field(
        default_factory=dict, description="Provider credentials (encrypted at rest)"
    )
    connection_params: dict[str, Any] | None = None
    token_expires_at: datetime | None = None


class EmailAccountResponse(BaseModel):
    """Response model for account endpoints (credentials never included)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    provider_kind: str
    email_address: str
    status: str
    sync_status: str
    initial_sync_completed: bool
    last_sync_at: datetime | None = None


class SyncTriggerRequest(BaseModel):
    """Optional body for POST sync."""

    mode: SyncMode = SyncMode.INCREMENTAL
    trigger: SyncTrigger = SyncTrigger.MANUAL


class SyncAcceptedResponse(BaseModel):
    """Response for POST sync (202 Accepted)."""

    detail: str = "Sync started"
    account_id: str
    mode: SyncMode


class SyncStatusResponse(BaseModel):
    """Response for GET sync-status."""

    model_config = ConfigDict(from_attributes=True)

    account_id: str
    status: str
    sync_status: str
    sync_progress: int
    running: bool = False
    last_sync_at: datetime | None = None
    last_successful_sync_at: datetime | None = None
    last_sync_error: str | None = None
    auth_failure_count: int = 0
    initial_sync_completed: bool = False


class EmailFolderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    provider_folder_id: str
    parent_provider_id: str | None = None
    name: str
    folder_type: str
    type_overridden: bool
    is_system: bool
    icon: str
    sort_order: int
    sync_enabled: bool
    sync_frequency_minutes: int
    sync_days_back: int
    message_count: int
    unread_count: int
    expected_count: int
    sync_status: str
    last_sync_at: datetime | None = None


class EmailFolderUpdate(BaseModel):
    """Request body for PATCH folder (user override)."""

    folder_type: FolderType | None = None
    sync_enabled: bool | None = None
