"""Integration tests for the email upsert pipeline and folder overrides (sqlite)."""

from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.application.dtos.sync import FolderUpsert, ProviderFolder
from mailsync.application.services.folder_mapper import classify_folder
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.infrastructure.persistence.repositories.email_folder_repo import (
    EmailFolderRepository,
)
from mailsync.infrastructure.persistence.repositories.email_repo import EmailRepository
from mailsync.infrastructure.services.email_account_service import EmailAccountService
from mailsync.infrastructure.services.email_upsert_service import EmailUpsertService
from tests.fakes import make_email


async def _folder(
    db: AsyncSession, account_id: str, name: str, role_hint: str | None = None
) -> EmailFolder:
    remote = ProviderFolder(id=name.lower(), name=name, role_hint=role_hint)
    folder = await EmailFolderRepository(db).upsert_folder(
        FolderUpsert(
            account_id=account_id,
            provider_folder_id=remote.id,
            name=remote.name,
            policy=classify_folder(remote),
        )
    )
    await db.commit()
    return folder


async def _email_count(db: AsyncSession, account_id: str) -> int:
    result = await db.execute(select(func.count(Email.id)).where(Email.account_id == account_id))
    return int(result.scalar_one())


async def test_upsert_is_idempotent(
    db_session: AsyncSession, create_account: Callable[..., Awaitable[EmailAccount]]
) -> None:
    """Replaying a page updates the existing rows instead of duplicating them."""
    account = await create_account()
    folder = await _folder(db_session, account.id, "Inbox")
    service = EmailUpsertService(EmailRepository(db_session))
    page = [make_email(f"<m{i}@example.com>") for i in range(3)]

    first = await service.upsert_batch(account.id, folder, page)
    await db_session.commit()
    assert (first.processed, first.inserted, first.updated, first.failed) == (3, 3, 0, 0)

    replay = [make_email(f"<m{i}@example.com>", subject="Re: report", is_read=True) for i in range(3)]
    corrected = replay[0].received_at + timedelta(days=3)
    replay[0] = replace(replay[0], received_at=corrected, sent_at=corrected)
    second = await service.upsert_batch(account.id, folder, replay)
    await db_session.commit()
    assert (second.inserted, second.updated) == (0, 3)
    assert await _email_count(db_session, account.id) == 3

    stored = await EmailRepository(db_session).get_by_message_id(account.id, "<m0@example.com>")
    assert stored is not None
    assert stored.subject == "Re: report"
    assert stored.is_read is True
    assert stored.received_at.replace(tzinfo=None) == corrected.replace(tzinfo=None)
    assert stored.sent_at.replace(tzinfo=None) == corrected.replace(tzinfo=None)
    assert stored.email_category == "inbox"
    assert stored.folder_id == folder.id


async def test_duplicate_within_batch(
    db_session: AsyncSession, create_account: Callable[..., Awaitable[EmailAccount]]
) -> None:
    """The same message twice in one page is stored once and counted as a duplicate."""
    account = await create_account()
    folder = await _folder(db_session, account.id, "Inbox")
    message = make_email("<dup@example.com>")
    stats = await EmailUpsertService(EmailRepository(db_session)).upsert_batch(
        account.id, folder, [message, message]
    )
    await db_session.commit()
    assert stats.processed == 2
    assert stats.inserted == 1
    assert stats.updated == 1
    assert stats.duplicates == 1
    assert await _email_count(db_session, account.id) == 1


async def test_invalid_message_is_counted_not_raised(
    db_session: AsyncSession, create_account: Callable[..., Awaitable[EmailAccount]]
) -> None:
    """A message with no id fails alone; the rest of the page is stored."""
    account = await create_account()
    folder = await _folder(db_session, account.id, "Inbox")
    broken = replace(make_email("<x@example.com>"), message_id="", provider_id="")
    stats = await EmailUpsertService(EmailRepository(db_session)).upsert_batch(
        account.id, folder, [broken, make_email("<ok@example.com>")]
    )
    await db_session.commit()
    assert stats.failed == 1
    assert stats.inserted == 1
    assert "message_id is required" in stats.errors[0]
    assert await _email_count(db_session, account.id) == 1


async def test_snippet_truncated_and_subject_defaulted(
    db_session: AsyncSession, create_account: Callable[..., Awaitable[EmailAccount]]
) -> None:
    account = await create_account()
    folder = await _folder(db_session, account.id, "Inbox")
    message = make_email("<long@example.com>", subject="", snippet="x" * 500)
    await EmailUpsertService(EmailRepository(db_session)).upsert_batch(account.id, folder, [message])
    await db_session.commit()
    stored = await EmailRepository(db_session).get_by_message_id(account.id, "<long@example.com>")
    assert stored is not None
    assert stored.snippet is not None and len(stored.snippet) == 200
    assert stored.subject == "(No Subject)"


async def test_category_follows_folder_type(
    db_session: AsyncSession, create_account: Callable[..., Awaitable[EmailAccount]]
) -> None:
    """Emails take their category from the folder they were synced from."""
    account = await create_account()
    service = EmailUpsertService(EmailRepository(db_session))
    expected = {
        "Sent Items": "sent",
        "Junk Email": "junk",
        "Deleted Items": "deleted",
        "Outbox": "outbox",
        "Projects": "inbox",
    }
    for name in expected:
        folder = await _folder(db_session, account.id, name)
        await service.upsert_batch(account.id, folder, [make_email(f"<{name}@example.com>")])
    await db_session.commit()
    repo = EmailRepository(db_session)
    for name, category in expected.items():
        stored = await repo.get_by_message_id(account.id, f"<{name}@example.com>")
        assert stored is not None
        assert stored.email_category == category, name


async def test_aggregate_view_keeps_existing_folder(
    db_session: AsyncSession, create_account: Callable[..., Awaitable[EmailAccount]]
) -> None:
    """A message re-read through All Mail keeps its Inbox folder but takes the new flags."""
    account = await create_account()
    inbox = await _folder(db_session, account.id, "Inbox")
    all_mail = await _folder(db_session, account.id, "[Gmail]/All Mail", role_hint="\\All")
    service = EmailUpsertService(EmailRepository(db_session))

    await service.upsert_batch(account.id, inbox, [make_email("<shared@example.com>")])
    await service.upsert_batch(
        account.id,
        all_mail,
        [make_email("<shared@example.com>", is_read=True), make_email("<only-all@example.com>")],
    )
    await db_session.commit()

    repo = EmailRepository(db_session)
    shared = await repo.get_by_message_id(account.id, "<shared@example.com>")
    assert shared is not None
    assert shared.folder_id == inbox.id
    assert shared.email_category == "inbox"
    assert shared.is_read is True
    only_all = await repo.get_by_message_id(account.id, "<only-all@example.com>")
    assert only_all is not None
    assert only_all.folder_id == all_mail.id


async def test_folder_override_survives_resync(
    db_session: AsyncSession,
    create_account: Callable[..., Awaitable[EmailAccount]],
    encryptor: CredentialEncryptor,
) -> None:
    """A user-chosen folder type and sync toggle are kept when the folder is re-upserted."""
    account = await create_account()
    folder = await _folder(db_session, account.id, "Receipts")
    assert folder.folder_type == "custom"

    service = EmailAccountService(
        EmailAccountRepository(db_session), EmailFolderRepository(db_session), encryptor
    )
    updated = await service.update_folder(
        account.id, folder.id, folder_type="archive", sync_enabled=False
    )
    await db_session.commit()
    assert updated.type_overridden is True
    assert updated.sort_order == 6

    again = await _folder(db_session, account.id, "Receipts")
    assert again.id == folder.id
    assert again.folder_type == "archive"
    assert again.sync_enabled is False
    assert again.sort_order == 6


async def test_folder_classification_follows_provider_when_not_overridden(
    db_session: AsyncSession, create_account: Callable[..., Awaitable[EmailAccount]]
) -> None:
    """Renames and new role hints are re-detected on the next upsert."""
    account = await create_account()
    folder = await _folder(db_session, account.id, "Misc")
    assert folder.folder_type == "custom"
    again = await _folder(db_session, account.id, "Misc", role_hint="\\Junk")
    assert again.folder_type == "spam"
    assert again.sort_order == 98
    # Sync policy is set on insert only.
    assert again.sync_enabled is True
