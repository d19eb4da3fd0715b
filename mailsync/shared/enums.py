"""Shared enumerations for the sync engine.

Cross-cutting enums used by application and infrastructure (sync mode,
trigger, workflow step). Mailbox-model enums (folder types, account status)
live in mailsync.domain.enums.
"""

from enum import Enum


class _ValuesMixin:
    """Mixin that adds a values() classmethod to str Enums."""

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid values as strings."""
        return [member.value for member in cls]


class SyncMode(_ValuesMixin, str, Enum):
    """Initial (full enumeration) or incremental (resume from cursor)."""

    INITIAL = "initial"
    INCREMENTAL = "incremental"


class SyncTrigger(_ValuesMixin, str, Enum):
    """What started a sync workflow."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    INITIAL = "initial"
    RETRY = "retry"


class SyncStep(_ValuesMixin, str, Enum):
    """Orchestrator steps, in execution order."""

    VALIDATE_ACCOUNT = "validate_account"
    REFRESH_TOKEN = "refresh_token"
    SYNC_FOLDERS = "sync_folders"
    SYNC_EMAILS = "sync_emails"
    RECALCULATE_COUNTS = "recalculate_counts"
    MARK_COMPLETE = "mark_complete"

    @classmethod
    def ordered(cls) -> list["SyncStep"]:
        """Return steps in execution order."""
        return list(cls)

    @property
    def position(self) -> int:
        """Position of this step in the workflow."""
        return list(type(self)).index(self)


class WorkflowStatus(_ValuesMixin, str, Enum):
    """Checkpoint lifecycle status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncRunStatus(_ValuesMixin, str, Enum):
    """Status of one folder sync run (analytics record)."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncOutcome(_ValuesMixin, str, Enum):
    """Result of a runner invocation."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"
