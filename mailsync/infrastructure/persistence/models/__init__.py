"""ORM models. Importing this package registers every table on Base.metadata."""

from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.models.sync_checkpoint import SyncCheckpoint
from mailsync.infrastructure.persistence.models.sync_run import SyncRun

__all__ = [
    "Email",
    "EmailAccount",
    "EmailFolder",
    "SyncCheckpoint",
    "SyncRun",
]
