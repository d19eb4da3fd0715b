"""End-to-end sync workflow tests: SyncRunner + SyncOrchestrator over sqlite and a fake provider."""

from collections.abc import Awaitable, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos.sync import ProviderFolder, SyncRequest
from mailsync.domain.exceptions import (
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)
from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.models.sync_checkpoint import SyncCheckpoint
from mailsync.infrastructure.persistence.models.sync_run import SyncRun
from mailsync.infrastructure.services.sync_runner import SyncRunner
from mailsync.shared.enums import SyncMode, SyncOutcome, SyncTrigger
from mailsync.shared.utils.datetime import utc_now
from tests.fakes import FakeProvider, RecordingSleep, build_mailbox, make_email

CreateAccount = Callable[..., Awaitable[EmailAccount]]
MakeRunner = Callable[[FakeProvider], SyncRunner]
Sessions = async_sessionmaker[AsyncSession]


def _initial(account_id: str, user_id: str = "user-1") -> SyncRequest:
    return SyncRequest(
        account_id=account_id, user_id=user_id, sync_mode=SyncMode.INITIAL, trigger=SyncTrigger.INITIAL
    )


def _incremental(account_id: str) -> SyncRequest:
    return SyncRequest(account_id=account_id, user_id="user-1", sync_mode=SyncMode.INCREMENTAL)


async def _account(sessions: Sessions, account_id: str) -> EmailAccount:
    async with sessions() as session:
        account = await session.get(EmailAccount, account_id)
        assert account is not None
        return account


async def _folders(sessions: Sessions, account_id: str) -> dict[str, EmailFolder]:
    async with sessions() as session:
        result = await session.execute(select(EmailFolder).where(EmailFolder.account_id == account_id))
        return {f.provider_folder_id: f for f in result.scalars().all()}


async def _email_counts(sessions: Sessions, account_id: str) -> dict[str, int]:
    async with sessions() as session:
        result = await session.execute(
            select(Email.folder_id, func.count(Email.id))
            .where(Email.account_id == account_id)
            .group_by(Email.folder_id)
        )
        return {row[0]: int(row[1]) for row in result.all()}


async def _runs(sessions: Sessions, account_id: str) -> list[SyncRun]:
    async with sessions() as session:
        result = await session.execute(
            select(SyncRun).where(SyncRun.account_id == account_id).order_by(SyncRun.started_at)
        )
        return list(result.scalars().all())


async def test_initial_sync_completes(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """Every enabled folder is synced, counts are derived and the account is left active at 100%."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 120, "Sent": 40, "Drafts": 2})
    provider = FakeProvider(folders, messages)

    result = await make_runner(provider).run(_initial(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    assert result.emails_synced == 162
    assert result.folders_processed == 3
    assert result.attempts == 1
    assert provider.refresh_calls == 1
    assert provider.closed is True

    stored = await _account(session_factory, account.id)
    assert stored.status == "active"
    assert stored.sync_status == "idle"
    assert stored.sync_progress == 100
    assert stored.initial_sync_completed is True
    assert stored.last_successful_sync_at is not None
    assert stored.token_expires_at is not None

    by_provider_id = await _folders(session_factory, account.id)
    counts = await _email_counts(session_factory, account.id)
    for folder in by_provider_id.values():
        assert folder.message_count == counts.get(folder.id, 0)
        assert folder.unread_count == folder.message_count
    assert result.folder_counts == {f.id: f.message_count for f in by_provider_id.values()}
    assert by_provider_id["inbox"].message_count == 120
    assert by_provider_id["inbox"].sync_cursor == "delta:inbox:120"
    assert by_provider_id["sent"].folder_type == "sent"

    runs = await _runs(session_factory, account.id)
    assert len(runs) == 3
    assert {r.status for r in runs} == {"completed"}
    assert {r.correlation_id for r in runs} == {result.run_id}


async def test_folders_sync_in_sort_order_and_skip_disabled(
    create_account: CreateAccount, make_runner: MakeRunner
) -> None:
    """Inbox goes first, trash and spam are not synced by default."""
    account = await create_account()
    folders, messages = build_mailbox({"Projects": 1, "Trash": 5, "Sent": 1, "Inbox": 1, "Spam": 3})
    provider = FakeProvider(folders, messages)

    result = await make_runner(provider).run(_initial(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    assert [folder for folder, _ in provider.fetch_log] == ["inbox", "sent", "projects"]


async def test_all_mail_view_does_not_take_messages_from_inbox(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """Messages shared with All Mail stay in Inbox, whether or not All Mail is synced."""
    account = await create_account()
    inbox_messages = [make_email(f"<shared-{i}@example.com>") for i in range(5)]
    archived = [make_email(f"<archived-{i}@example.com>") for i in range(2)]
    folders = [
        ProviderFolder(id="inbox", name="INBOX", total_messages=5),
        ProviderFolder(id="all", name="[Gmail]/All Mail", total_messages=7, role_hint="\\All"),
    ]
    provider = FakeProvider(folders, {"inbox": inbox_messages, "all": inbox_messages + archived})
    runner = make_runner(provider)

    result = await runner.run(_initial(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    assert [folder for folder, _ in provider.fetch_log] == ["inbox"]
    stored_folders = await _folders(session_factory, account.id)
    assert stored_folders["all"].sync_enabled is False
    assert stored_folders["inbox"].message_count == 5

    # Opting in to the view adds the archived messages without moving the shared ones.
    async with session_factory() as session:
        await session.execute(
            update(EmailFolder)
            .where(EmailFolder.id == stored_folders["all"].id)
            .values(sync_enabled=True)
        )
        await session.commit()
    result = await runner.run(_initial(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    stored_folders = await _folders(session_factory, account.id)
    assert stored_folders["inbox"].message_count == 5
    assert stored_folders["all"].message_count == 2
    async with session_factory() as session:
        categories = await session.execute(
            select(Email.email_category).where(
                Email.account_id == account.id, Email.folder_id == stored_folders["inbox"].id
            )
        )
        assert set(categories.scalars().all()) == {"inbox"}


async def test_refresh_rejected_marks_account_for_reconnect(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """A 401 on token refresh fails once, keeps stored mail and flags the account."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 3})
    await make_runner(FakeProvider(folders, messages)).run(_initial(account.id))
    async with session_factory() as session:
        await session.execute(
            update(EmailAccount).where(EmailAccount.id == account.id).values(token_expires_at=utc_now())
        )
        await session.commit()

    failing = FakeProvider(
        folders, messages, refresh_error=ProviderAuthError("fake", 401, "invalid_grant")
    )
    result = await make_runner(failing).run(_incremental(account.id))

    assert result.outcome is SyncOutcome.FAILED
    assert result.attempts == 1
    assert result.retryable is False
    assert failing.fetch_log == []
    assert failing.closed is True
    stored = await _account(session_factory, account.id)
    assert stored.status == "error"
    assert stored.sync_status == "idle"
    assert stored.sync_progress == 0
    assert stored.auth_failure_count == 1
    assert "invalid_grant" in (stored.last_sync_error or "")
    assert sum((await _email_counts(session_factory, account.id)).values()) == 3


async def test_repeated_auth_failures_disable_account(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """The third consecutive auth failure disables the account; later runs abort."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 1})
    provider = FakeProvider(folders, messages, refresh_error=ProviderAuthError("fake", 401))
    runner = make_runner(provider)

    statuses = []
    for _ in range(3):
        await runner.run(_incremental(account.id))
        statuses.append((await _account(session_factory, account.id)).status)
    assert statuses == ["error", "error", "disabled"]

    aborted = await runner.run(_incremental(account.id))
    assert aborted.outcome is SyncOutcome.ABORTED
    assert provider.refresh_calls == 3


async def test_short_full_listing_does_not_keep_cursor(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """A full listing that stores half the expected messages clears the folder cursor."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 120})
    await make_runner(FakeProvider(folders, messages)).run(_initial(account.id))
    assert (await _folders(session_factory, account.id))["inbox"].sync_cursor == "delta:inbox:120"

    short = FakeProvider(folders, messages, visible={"inbox": 60})
    result = await make_runner(short).run(_initial(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    inbox = (await _folders(session_factory, account.id))["inbox"]
    assert inbox.sync_cursor is None
    runs = await _runs(session_factory, account.id)
    assert runs[-1].extra is not None and runs[-1].extra["cursor_persisted"] is False


async def test_small_folder_keeps_cursor_below_coverage(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """Folders under the small-folder threshold persist their cursor regardless of coverage."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 30})
    provider = FakeProvider(folders, messages, visible={"inbox": 10})

    await make_runner(provider).run(_initial(account.id))

    assert (await _folders(session_factory, account.id))["inbox"].sync_cursor == "delta:inbox:10"


async def test_incremental_sync_resumes_from_cursor(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """An incremental run starts from the stored delta cursor and picks up only new mail."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 3})
    provider = FakeProvider(folders, messages)
    runner = make_runner(provider)
    await runner.run(_initial(account.id))

    messages["inbox"].extend([make_email("<new-1@example.com>"), make_email("<new-2@example.com>")])
    result = await runner.run(_incremental(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    assert result.emails_synced == 2
    assert provider.fetches_for("inbox") == [None, "delta:inbox:3"]
    assert (await _folders(session_factory, account.id))["inbox"].sync_cursor == "delta:inbox:5"
    assert sum((await _email_counts(session_factory, account.id)).values()) == 5


async def test_initial_mode_ignores_stored_cursor(
    create_account: CreateAccount, make_runner: MakeRunner
) -> None:
    """A second initial sync lists every folder from the start."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 3})
    provider = FakeProvider(folders, messages)
    runner = make_runner(provider)
    await runner.run(_initial(account.id))
    await runner.run(_initial(account.id))
    assert provider.fetches_for("inbox") == [None, None]


async def test_retry_resumes_from_checkpoint(
    create_account: CreateAccount,
    make_runner: MakeRunner,
    session_factory: Sessions,
    sleep: RecordingSleep,
) -> None:
    """A provider outage mid-run retries without refetching folders that already finished."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 120, "Sent": 40, "Drafts": 2})
    provider = FakeProvider(
        folders, messages, fetch_errors=[("sent", ProviderUnavailableError("fake", 503))]
    )

    result = await make_runner(provider).run(_initial(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    assert result.attempts == 2
    assert result.emails_synced == 162
    assert 300.0 in sleep.calls
    assert provider.fetches_for("inbox") == [None, "page:inbox:50", "page:inbox:100"]
    assert sum((await _email_counts(session_factory, account.id)).values()) == 162

    async with session_factory() as session:
        checkpoint = (
            await session.execute(select(SyncCheckpoint).where(SyncCheckpoint.account_id == account.id))
        ).scalar_one()
    assert checkpoint.status == "completed"
    assert checkpoint.attempt == 2
    assert checkpoint.run_id == result.run_id

    runs = await _runs(session_factory, account.id)
    failed = [r for r in runs if r.status == "failed"]
    assert len(failed) == 1
    assert failed[0].correlation_id == result.run_id
    assert failed[0].extra is not None and failed[0].extra["error_type"] == "provider"


async def test_rate_limited_page_is_retried_in_place(
    create_account: CreateAccount,
    make_runner: MakeRunner,
    session_factory: Sessions,
    sleep: RecordingSleep,
) -> None:
    """A 429 on a page waits Retry-After and fetches the same page again."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 10})
    provider = FakeProvider(
        folders, messages, fetch_errors=[("inbox", ProviderRateLimitError("fake", 7))]
    )

    result = await make_runner(provider).run(_initial(account.id))

    assert result.outcome is SyncOutcome.COMPLETED
    assert result.attempts == 1
    assert 7.0 in sleep.calls
    runs = await _runs(session_factory, account.id)
    assert runs[0].rate_limit_hits == 1


async def test_foreign_account_aborts(
    create_account: CreateAccount, make_runner: MakeRunner, session_factory: Sessions
) -> None:
    """A request for another user's account aborts without touching it."""
    account = await create_account()
    folders, messages = build_mailbox({"Inbox": 1})
    provider = FakeProvider(folders, messages)

    result = await make_runner(provider).run(_initial(account.id, user_id="someone-else"))

    assert result.outcome is SyncOutcome.ABORTED
    assert provider.api_calls == 0
    assert (await _account(session_factory, account.id)).sync_status == "idle"


async def test_missing_account_aborts(make_runner: MakeRunner) -> None:
    folders, messages = build_mailbox({"Inbox": 1})
    result = await make_runner(FakeProvider(folders, messages)).run(_initial("does-not-exist"))
    assert result.outcome is SyncOutcome.ABORTED
    assert "account not found" in (result.error or "")
