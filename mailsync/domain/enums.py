"""Domain enumerations for the mailbox model.

Enums represent fixed sets of domain values (provider kinds, canonical
folder types, email categories, account and sync status).
"""

from enum import Enum


class ProviderKind(str, Enum):
    """Remote protocol family an account is synced through."""

    GRAPH = "graph"
    GMAIL = "gmail"
    IMAP = "imap"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid provider kinds as strings."""
        return [kind.value for kind in cls]


class FolderType(str, Enum):
    """Canonical folder type every provider folder is normalized into."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    TRASH = "trash"
    SPAM = "spam"
    ARCHIVE = "archive"
    STARRED = "starred"
    IMPORTANT = "important"
    CUSTOM = "custom"

    @classmethod
    def values(cls) -> list[str]:
        """Return all canonical folder types as strings."""
        return [t.value for t in cls]


class EmailCategory(str, Enum):
    """Category stored on each email, derived from its folder type."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    JUNK = "junk"
    OUTBOX = "outbox"
    DELETED = "deleted"


class AccountStatus(str, Enum):
    """Connection health of an account.

    ERROR means the user must reconnect (auth failure). DISABLED is set
    after repeated auth failures; the scheduler ignores disabled accounts.
    """

    ACTIVE = "active"
    ERROR = "error"
    DISABLED = "disabled"


class SyncStatus(str, Enum):
    """Whether a sync workflow is currently running for the account/folder."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SchedulePriority(str, Enum):
    """Scheduler priority class (high runs first)."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: high=0, medium=1, low=2."""
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class ErrorType(str, Enum):
    """Classification of sync failures (drives retry decisions)."""

    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    PROVIDER = "provider"
    INVALID_DATA = "invalid_data"
    UNKNOWN = "unknown"
