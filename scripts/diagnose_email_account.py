"""Diagnose an email account: sync state, checkpoint, folders, recent runs and health.

Usage:
    uv run python -m scripts.diagnose_email_account <email_account_id> [--check-connection]

With --check-connection the stored credentials are decrypted and the
provider's folder list is fetched (refreshing the token first for OAuth
providers). Nothing is written to the database.
"""

import asyncio
import sys
from datetime import timedelta

import mailsync.infrastructure.persistence.database as database
from mailsync.core.config import get_settings
from mailsync.domain.exceptions import MailSyncException
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.external.email.factory import EmailProviderFactory
from mailsync.infrastructure.external.email.protocols import EmailProviderConfig
from mailsync.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailFolderRepository,
    EmailRepository,
    SyncCheckpointRepository,
    SyncRunRepository,
)
from mailsync.infrastructure.services import AnalyticsService
from mailsync.shared.utils.datetime import ensure_utc, utc_now


async def check_connection(account) -> None:
    """Decrypt credentials and list provider folders."""
    credentials = CredentialEncryptor().decrypt(account.credentials_encrypted)
    config = EmailProviderConfig(
        provider_kind=account.provider_kind,
        email_address=account.email_address,
        credentials=credentials,
        connection_params=dict(account.connection_params or {}),
        token_expires_at=ensure_utc(account.token_expires_at),
    )
    provider = EmailProviderFactory.create_provider(config)
    try:
        token = await provider.refresh_token()
        print(f"  token ok (expires_at={token.expires_at})")
        folders = await provider.fetch_folders()
        print(f"  provider reports {len(folders)} folder(s)")
        for f in folders:
            print(f"    {f.name!r} role={f.role_hint} total={f.total_messages} unread={f.unread_messages}")
    except MailSyncException as e:
        print(f"  connection failed: {e.error_code}: {e.message}")
    finally:
        await provider.close()


async def main() -> None:
    if len(sys.argv) < 2:
        print(
            "Usage: uv run python -m scripts.diagnose_email_account <email_account_id> [--check-connection]",
            file=sys.stderr,
        )
        sys.exit(1)
    account_id = sys.argv[1]
    get_settings()

    async with database.get_session_factory()() as session:
        account_repo = EmailAccountRepository(session)
        account = await account_repo.get_by_id(account_id)
        if account is None:
            print(f"Email account not found: {account_id}", file=sys.stderr)
            sys.exit(1)

        print(f"Account {account.id} <{account.email_address}> ({account.provider_kind})")
        print(f"  status={account.status} sync_status={account.sync_status} progress={account.sync_progress}%")
        print(f"  last_sync_at={account.last_sync_at} last_successful_sync_at={account.last_successful_sync_at}")
        print(f"  initial_sync_completed={account.initial_sync_completed} auth_failures={account.auth_failure_count}")
        if account.last_sync_error:
            print(f"  last_sync_error: {account.last_sync_error}")
        print(f"  token_expires_at={account.token_expires_at}")

        checkpoint = await SyncCheckpointRepository(session).get_for_account(account_id)
        if checkpoint is not None:
            print(
                f"Checkpoint run={checkpoint.run_id} status={checkpoint.status} "
                f"step={checkpoint.current_step} attempt={checkpoint.attempt} "
                f"folders_done={len(checkpoint.completed_folder_ids or [])}"
            )
            if checkpoint.error:
                print(f"  error: {checkpoint.error}")

        folders = await EmailFolderRepository(session).list_for_account(account_id)
        stored = await EmailRepository(session).count_for_account(account_id)
        print(f"Folders ({len(folders)}), {stored} stored email(s):")
        for f in folders:
            flag = "" if f.sync_enabled else " [disabled]"
            print(
                f"  {f.name!r:30} {f.folder_type:9} count={f.message_count}/{f.expected_count} "
                f"unread={f.unread_count} cursor={'yes' if f.sync_cursor else 'no'}{flag}"
            )

        runs = await SyncRunRepository(session).list_since(account_id, utc_now() - timedelta(days=1))
        print(f"Runs in the last 24h: {len(runs)}")
        for run in runs[-10:]:
            print(
                f"  {run.started_at} {run.status:9} folder={run.folder_id} "
                f"+{run.messages_inserted}/~{run.messages_updated} failed={run.messages_failed} "
                f"{run.duration_ms}ms"
            )

        analytics = AnalyticsService(SyncRunRepository(session), EmailRepository(session), account_repo)
        report = await analytics.generate_health_report(account_id)
        print(f"Health: {report.status}")
        for issue in report.issues:
            print(f"  - {issue}")
        for rec in report.recommendations:
            print(f"  * {rec}")

        if "--check-connection" in sys.argv[2:]:
            print("Connection check:")
            await check_connection(account)

    await database.dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
