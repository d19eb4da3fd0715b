"""Persistence repositories. Re-exports for dependency injection."""

from mailsync.infrastructure.persistence.repositories.base import BaseRepository
from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.infrastructure.persistence.repositories.email_folder_repo import (
    EmailFolderRepository,
)
from mailsync.infrastructure.persistence.repositories.email_repo import EmailRepository
from mailsync.infrastructure.persistence.repositories.sync_checkpoint_repo import (
    SyncCheckpointRepository,
)
from mailsync.infrastructure.persistence.repositories.sync_run_repo import SyncRunRepository

__all__ = [
    "BaseRepository",
    "EmailAccountRepository",
    "EmailFolderRepository",
    "EmailRepository",
    "SyncCheckpointRepository",
    "SyncRunRepository",
]
