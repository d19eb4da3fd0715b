"""Tests for the folder cursor persistence rule."""

import pytest
from pydantic import ValidationError

from mailsync.core.config import Settings
from mailsync.infrastructure.services.sync_orchestrator import should_persist_cursor


def _persist(*, incremental: bool = False, synced: int, expected: int) -> bool:
    return should_persist_cursor(
        incremental=incremental,
        synced=synced,
        expected=expected,
        min_coverage=0.8,
        small_folder_threshold=50,
    )


@pytest.mark.parametrize(
    ("synced", "expected", "persist"),
    [
        (100, 100, True),
        (80, 100, True),
        (79, 100, False),
        (50, 100, False),
        (0, 100, False),
        (0, 49, True),
        (10, 49, True),
        (39, 50, False),
        (40, 50, True),
        (0, 0, True),
    ],
)
def test_full_listing_coverage(synced: int, expected: int, persist: bool) -> None:
    """Full listings keep the cursor at >= 80% coverage or below 50 expected messages."""
    assert _persist(synced=synced, expected=expected) is persist


def test_incremental_always_persists() -> None:
    """A delta run's cursor is kept regardless of how many messages changed."""
    assert _persist(incremental=True, synced=0, expected=10_000) is True


def test_thresholds_are_configurable() -> None:
    """Coverage and small-folder thresholds come from the caller."""
    assert should_persist_cursor(
        incremental=False, synced=60, expected=100, min_coverage=0.5, small_folder_threshold=10
    ) is True
    assert should_persist_cursor(
        incremental=False, synced=5, expected=20, min_coverage=0.8, small_folder_threshold=10
    ) is False


def test_empty_folder_without_small_folder_threshold() -> None:
    """An empty full listing keeps its cursor even when the small-folder rule is off."""
    assert should_persist_cursor(
        incremental=False, synced=0, expected=0, min_coverage=0.8, small_folder_threshold=0
    ) is True


def test_negative_small_folder_threshold_rejected() -> None:
    assert Settings(sync_cursor_small_folder_threshold=0).sync_cursor_small_folder_threshold == 0
    with pytest.raises(ValidationError, match="sync_cursor_small_folder_threshold"):
        Settings(sync_cursor_small_folder_threshold=-1)
