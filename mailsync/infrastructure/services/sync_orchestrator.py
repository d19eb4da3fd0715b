"""Account sync workflow: a checkpointed state machine over one provider adapter.

Steps run in a fixed order (validate, refresh token, folders, emails per
folder, recount, complete). After every step, and after every folder, the
state is committed to sync_checkpoint so a retried attempt resumes where the
previous one stopped instead of starting over.

Any failure resets the account to sync_status=idle with progress 0 and the
error recorded, then re-raises for the retry driver (SyncRunner).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.application.dtos.sync import (
    FetchResult,
    FolderUpsert,
    ProviderToken,
    SyncRequest,
    SyncResult,
)
from mailsync.application.services.folder_mapper import (
    classify_folder,
    validate_folder_structure,
)
from mailsync.application.services.sync_errors import classify_error
from mailsync.core.config import Settings, get_settings
from mailsync.domain.enums import AccountStatus
from mailsync.domain.exceptions import NonRetryableSyncError, ProviderRateLimitError
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.external.email.factory import EmailProviderFactory
from mailsync.infrastructure.external.email.protocols import (
    EmailProviderConfig,
    IEmailProvider,
)
from mailsync.infrastructure.messaging.redis_pubsub import (
    SyncProgressPublisher,
    SyncStage,
    get_sync_publisher,
)
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.models.sync_checkpoint import SyncCheckpoint
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
from mailsync.infrastructure.services.email_upsert_service import EmailUpsertService
from mailsync.infrastructure.services.sync_metrics import FolderRunMetrics, SyncMetricsRecorder
from mailsync.shared.context import reset_sync_context, set_sync_context
from mailsync.shared.enums import (
    SyncMode,
    SyncOutcome,
    SyncRunStatus,
    SyncStep,
    WorkflowStatus,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, add_span_event, traced
from mailsync.shared.utils.datetime import ensure_utc, utc_now
from mailsync.shared.utils.generators import generate_correlation_id

logger = get_logger(__name__)

FOLDER_PROGRESS_SPAN = 90
COUNTS_PROGRESS = 95

ProviderBuilder = Callable[[EmailAccount, dict[str, Any]], IEmailProvider]
Sleep = Callable[[float], Awaitable[None]]


def should_persist_cursor(
    *,
    incremental: bool,
    synced: int,
    expected: int,
    min_coverage: float,
    small_folder_threshold: int,
) -> bool:
    """Whether a folder's end-of-listing cursor can be trusted.

    True for incremental runs, for empty folders, for folders smaller than
    small_folder_threshold, and for full listings that stored at least
    min_coverage of the provider-reported message count.
    """
    if incremental:
        return True
    if expected < small_folder_threshold or expected <= 0:
        return True
    return synced / expected >= min_coverage


@dataclass
class _RunState:
    """Mutable state of one workflow attempt."""

    run_id: str
    request: SyncRequest
    checkpoint: SyncCheckpoint
    completed_steps: list[str] = field(default_factory=list)
    completed_folder_ids: list[str] = field(default_factory=list)
    emails_synced: int = 0
    folders_processed: int = 0
    folder_counts: dict[str, int] = field(default_factory=dict)
    step: SyncStep = SyncStep.VALIDATE_ACCOUNT
    active_folder: FolderRunMetrics | None = None
    resumed: bool = False

    def is_done(self, step: SyncStep) -> bool:
        return step.value in self.completed_steps


class SyncOrchestrator:
    """Runs one account sync workflow attempt on a dedicated session.

    The orchestrator commits: each step and each folder page is durable on
    its own. Callers give it a fresh session per attempt.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: Settings | None = None,
        encryptor: CredentialEncryptor | None = None,
        provider_builder: ProviderBuilder | None = None,
        publisher: SyncProgressPublisher | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.db = session
        self.settings = settings or get_settings()
        self._encryptor = encryptor or CredentialEncryptor(self.settings)
        self._build_provider = provider_builder or self._default_provider
        self._publisher = publisher if publisher is not None else get_sync_publisher()
        self._sleep = sleep
        self.accounts = EmailAccountRepository(session)
        self.folders = EmailFolderRepository(session)
        self.emails = EmailRepository(session)
        self.runs = SyncRunRepository(session)
        self.checkpoints = SyncCheckpointRepository(session)
        self.upserts = EmailUpsertService(self.emails)

    def _default_provider(self, account: EmailAccount, credentials: dict[str, Any]) -> IEmailProvider:
        config = EmailProviderConfig(
            provider_kind=account.provider_kind,
            email_address=account.email_address,
            credentials=credentials,
            connection_params=dict(account.connection_params or {}),
            token_expires_at=ensure_utc(account.token_expires_at),
        )
        return EmailProviderFactory.create_provider(config, settings=self.settings)

    @traced("sync.workflow")
    async def run(self, request: SyncRequest) -> SyncResult:
        """Execute (or resume) the workflow for request.

        Raises:
            NonRetryableSyncError: Account missing, owned by another user or disabled.
            ProviderAuthError: Credentials rejected; the account is flagged for reconnection.
            Exception: Any other step failure, after the account is reset to idle.
        """
        account = await self._validate_account(request)
        try:
            state = await self._start_or_resume(request, account)
        except Exception as exc:
            await self._handle_failure(request, exc)
            raise
        context_token = set_sync_context(state.run_id, request.account_id)
        add_span_attributes(
            account_id=request.account_id,
            run_id=state.run_id,
            sync_mode=request.sync_mode.value,
            resumed=state.resumed,
        )
        provider: IEmailProvider | None = None
        try:
            await self._publish(account, SyncStage.STARTED, "Sync started")
            await self._complete_step(state, SyncStep.VALIDATE_ACCOUNT)

            state.step = SyncStep.REFRESH_TOKEN
            provider = await self._ensure_fresh_token(account)
            await self._complete_step(state, SyncStep.REFRESH_TOKEN)

            state.step = SyncStep.SYNC_FOLDERS
            if not state.is_done(SyncStep.SYNC_FOLDERS):
                await self._sync_folders(provider, account)
                await self._complete_step(state, SyncStep.SYNC_FOLDERS)

            state.step = SyncStep.SYNC_EMAILS
            if not state.is_done(SyncStep.SYNC_EMAILS):
                await self._sync_all_folders(provider, account, state)
                await self._complete_step(state, SyncStep.SYNC_EMAILS)

            state.step = SyncStep.RECALCULATE_COUNTS
            counts = await self.folders.recalculate_counts(account.id)
            state.folder_counts = {folder_id: total for folder_id, (total, _) in counts.items()}
            await self.accounts.set_progress(account, COUNTS_PROGRESS)
            await self._publish(
                account, SyncStage.COUNTING, "Folder counts updated", progress=COUNTS_PROGRESS
            )
            await self._complete_step(state, SyncStep.RECALCULATE_COUNTS)

            state.step = SyncStep.MARK_COMPLETE
            await self.accounts.mark_complete(account)
            state.checkpoint.status = WorkflowStatus.COMPLETED.value
            await self._complete_step(state, SyncStep.MARK_COMPLETE)
            await self._publish(
                account,
                SyncStage.COMPLETED,
                "Sync completed",
                progress=100,
                emails_synced=state.emails_synced,
            )
            logger.info(
                "Sync %s completed for account %s: %s emails across %s folders",
                state.run_id,
                account.id,
                state.emails_synced,
                state.folders_processed,
            )
            return SyncResult(
                account_id=account.id,
                outcome=SyncOutcome.COMPLETED,
                run_id=state.run_id,
                emails_synced=state.emails_synced,
                folders_processed=state.folders_processed,
                attempts=state.checkpoint.attempt,
                folder_counts=state.folder_counts,
            )
        except Exception as exc:
            await self._handle_failure(
                request,
                exc,
                run_id=state.run_id,
                step=state.step,
                failed_folder=state.active_folder,
            )
            raise
        finally:
            if provider is not None:
                await provider.close()
            reset_sync_context(context_token)

    @traced("sync.validate_account")
    async def _validate_account(self, request: SyncRequest) -> EmailAccount:
        account = await self.accounts.get_by_id_for_update(request.account_id)
        if account is None:
            raise NonRetryableSyncError(request.account_id, "account not found")
        if account.user_id != request.user_id:
            raise NonRetryableSyncError(request.account_id, "account belongs to another user")
        if account.status == AccountStatus.DISABLED.value:
            raise NonRetryableSyncError(request.account_id, "account is disabled")
        await self.accounts.mark_syncing(account, progress=0)
        await self.db.commit()
        return account

    async def _start_or_resume(self, request: SyncRequest, account: EmailAccount) -> _RunState:
        """Resume an unfinished checkpoint of the same mode, else start a new run."""
        checkpoint = await self.checkpoints.get_for_account(account.id)
        now = utc_now()
        max_age = timedelta(hours=self.settings.sync_checkpoint_max_age_hours)
        if (
            checkpoint is not None
            and checkpoint.status != WorkflowStatus.COMPLETED.value
            and checkpoint.sync_mode == request.sync_mode.value
            and now - ensure_utc(checkpoint.last_checkpoint_at) < max_age
        ):
            checkpoint.attempt += 1
            checkpoint.status = WorkflowStatus.RUNNING.value
            checkpoint.error = None
            checkpoint.last_checkpoint_at = now
            state = _RunState(
                run_id=checkpoint.run_id,
                request=request,
                checkpoint=checkpoint,
                completed_steps=list(checkpoint.completed_steps or []),
                completed_folder_ids=list(checkpoint.completed_folder_ids or []),
                emails_synced=checkpoint.emails_synced,
                resumed=True,
            )
            logger.info(
                "Resuming sync %s for account %s (attempt %s, after %s)",
                checkpoint.run_id,
                account.id,
                checkpoint.attempt,
                checkpoint.current_step,
            )
        else:
            run_id = generate_correlation_id()
            if checkpoint is None:
                checkpoint = SyncCheckpoint(account_id=account.id)
            checkpoint.run_id = run_id
            checkpoint.sync_mode = request.sync_mode.value
            checkpoint.trigger = request.trigger.value
            checkpoint.status = WorkflowStatus.RUNNING.value
            checkpoint.current_step = None
            checkpoint.completed_steps = []
            checkpoint.completed_folder_ids = []
            checkpoint.attempt = 1
            checkpoint.emails_synced = 0
            checkpoint.error = None
            checkpoint.started_at = now
            checkpoint.last_checkpoint_at = now
            state = _RunState(run_id=run_id, request=request, checkpoint=checkpoint)
            logger.info(
                "Starting %s sync %s for account %s (trigger=%s)",
                request.sync_mode.value,
                run_id,
                account.id,
                request.trigger.value,
            )
        await self.checkpoints.save(checkpoint)
        await self.db.commit()
        return state

    async def _complete_step(self, state: _RunState, step: SyncStep) -> None:
        """Record step as done and commit the checkpoint."""
        if step.value not in state.completed_steps:
            state.completed_steps.append(step.value)
        checkpoint = state.checkpoint
        checkpoint.current_step = step.value
        checkpoint.completed_steps = list(state.completed_steps)
        checkpoint.completed_folder_ids = list(state.completed_folder_ids)
        checkpoint.emails_synced = state.emails_synced
        checkpoint.last_checkpoint_at = utc_now()
        await self.checkpoints.save(checkpoint)
        await self.db.commit()
        add_span_event("sync.step_completed", {"step": step.value})

    def _needs_refresh(self, account: EmailAccount) -> bool:
        expires_at = ensure_utc(account.token_expires_at)
        if expires_at is None:
            return True
        margin = timedelta(seconds=self.settings.sync_token_refresh_margin_seconds)
        return expires_at - utc_now() <= margin

    @traced("sync.refresh_token")
    async def _ensure_fresh_token(self, account: EmailAccount) -> IEmailProvider:
        """Build the adapter and refresh its token when expired or about to expire."""
        credentials = self._encryptor.decrypt(account.credentials_encrypted)
        provider = self._build_provider(account, credentials)
        if not self._needs_refresh(account):
            return provider
        try:
            token = await provider.refresh_token()
        except BaseException:
            await provider.close()
            raise
        await self._store_token(account, credentials, token)
        return provider

    async def _store_token(
        self,
        account: EmailAccount,
        credentials: dict[str, Any],
        token: ProviderToken,
    ) -> None:
        # Password accounts hand back the password unchanged; nothing to persist.
        if token.expires_at is None and token.refresh_token is None:
            return
        updated = dict(credentials)
        updated["access_token"] = token.access_token
        if token.refresh_token:
            updated["refresh_token"] = token.refresh_token
        await self.accounts.store_token(account, self._encryptor.encrypt(updated), token.expires_at)
        await self.db.commit()
        logger.info("Refreshed access token for account %s", account.id)

    @traced("sync.folders")
    async def _sync_folders(self, provider: IEmailProvider, account: EmailAccount) -> None:
        """Upsert every provider folder. Local folders missing from the listing are kept."""
        remote = await provider.fetch_folders()
        report = validate_folder_structure(remote)
        for warning in report.warnings:
            logger.warning("Account %s: %s", account.id, warning)
        if not report.is_valid:
            logger.warning("Account %s has no inbox folder", account.id)
        for folder in remote:
            await self.folders.upsert_folder(
                FolderUpsert(
                    account_id=account.id,
                    provider_folder_id=folder.id,
                    name=folder.name,
                    policy=classify_folder(folder),
                    expected_count=max(0, folder.total_messages),
                    parent_provider_id=folder.parent_id,
                )
            )
        add_span_attributes(folder_count=len(remote))
        await self._publish(
            account, SyncStage.FOLDERS, f"Synced {len(remote)} folders", progress=0
        )

    @traced("sync.emails")
    async def _sync_all_folders(
        self,
        provider: IEmailProvider,
        account: EmailAccount,
        state: _RunState,
    ) -> None:
        """Sync enabled folders one after another, in sort order."""
        folders = await self.folders.list_for_account(account.id, sync_enabled_only=True)
        total = len(folders)
        recorder = SyncMetricsRecorder(
            self.runs,
            account_id=account.id,
            provider=provider.provider_kind,
            sync_mode=state.request.sync_mode.value,
            trigger=state.request.trigger.value,
            correlation_id=state.run_id,
        )
        for index, folder in enumerate(folders):
            if folder.id in state.completed_folder_ids:
                continue
            progress = int(FOLDER_PROGRESS_SPAN * index / total) if total else 0
            await self.accounts.set_progress(account, progress)
            await self._publish(
                account,
                SyncStage.FETCHING,
                f"Syncing {folder.name}",
                progress=progress,
                emails_synced=state.emails_synced,
                folder_name=folder.name,
            )
            synced = await self._sync_folder(provider, account, folder, state, recorder)
            state.emails_synced += synced
            state.folders_processed += 1
            state.completed_folder_ids.append(folder.id)
            state.checkpoint.completed_folder_ids = list(state.completed_folder_ids)
            state.checkpoint.emails_synced = state.emails_synced
            state.checkpoint.last_checkpoint_at = utc_now()
            await self.checkpoints.save(state.checkpoint)
            await self.db.commit()
        await self.accounts.set_progress(account, FOLDER_PROGRESS_SPAN)

    async def _sync_folder(
        self,
        provider: IEmailProvider,
        account: EmailAccount,
        folder: EmailFolder,
        state: _RunState,
        recorder: SyncMetricsRecorder,
    ) -> int:
        """Page through one folder and decide whether its new cursor is kept."""
        mode = state.request.sync_mode
        stored = folder.sync_cursor
        cursor = stored if provider.accepts_cursor(stored, mode) else None
        incremental = mode == SyncMode.INCREMENTAL and cursor is not None
        metrics = recorder.start_folder(folder.id, folder.expected_count)
        state.active_folder = metrics
        calls_before = provider.api_calls

        page_cursor = cursor
        final_cursor: str | None = None
        completed_listing = False
        page_delay = self.settings.sync_page_delay_ms / 1000
        while metrics.pages < self.settings.sync_max_pages_per_folder:
            if metrics.pages and page_delay:
                await self._sleep(page_delay)
            result = await self._fetch_page(provider, folder, page_cursor, metrics)
            metrics.pages += 1
            stats = await self.upserts.upsert_batch(account.id, folder, result.emails)
            metrics.add_upsert(stats)
            metrics.api_calls_made = provider.api_calls - calls_before
            await self.db.commit()
            if not result.has_more:
                final_cursor = result.next_cursor
                completed_listing = True
                break
            if not result.next_cursor:
                logger.warning("Folder %s reported more pages without a cursor", folder.name)
                break
            page_cursor = result.next_cursor
        else:
            logger.warning(
                "Folder %s stopped after %s pages (page limit)", folder.name, metrics.pages
            )

        persist = completed_listing and final_cursor is not None and should_persist_cursor(
            incremental=incremental,
            synced=metrics.synced,
            expected=folder.expected_count,
            min_coverage=self.settings.sync_cursor_min_coverage,
            small_folder_threshold=self.settings.sync_cursor_small_folder_threshold,
        )
        if persist:
            await self.folders.mark_folder_synced(folder, final_cursor, persist_cursor=True)
        else:
            # A full listing that fell short must not leave any resume point
            # behind, so the next run lists the folder from the start again.
            if not incremental and folder.sync_cursor is not None:
                await self.folders.clear_cursor(folder)
            await self.folders.mark_folder_synced(folder, None, persist_cursor=False)
            logger.warning(
                "Not persisting cursor for folder %s: synced %s of %s expected",
                folder.name,
                metrics.synced,
                folder.expected_count,
            )
        await recorder.finish_folder(
            metrics,
            SyncRunStatus.COMPLETED,
            extra={
                "pages": metrics.pages,
                "incremental": incremental,
                "cursor_persisted": persist,
            },
        )
        state.active_folder = None
        await self.db.commit()
        return metrics.synced

    async def _fetch_page(
        self,
        provider: IEmailProvider,
        folder: EmailFolder,
        cursor: str | None,
        metrics: FolderRunMetrics,
    ) -> FetchResult:
        """Fetch one page, waiting out rate limits up to sync_max_retries times."""
        attempt = 0
        while True:
            try:
                return await provider.fetch_emails(folder.provider_folder_id, cursor)
            except ProviderRateLimitError as e:
                metrics.rate_limit_hits += 1
                attempt += 1
                if attempt > self.settings.sync_max_retries:
                    raise
                delay = min(float(e.retry_after), self.settings.sync_retry_max_seconds)
                logger.warning(
                    "Rate limited on folder %s; retrying page in %ss (%s/%s)",
                    folder.name,
                    delay,
                    attempt,
                    self.settings.sync_max_retries,
                )
                await self._sleep(delay)

    async def _handle_failure(
        self,
        request: SyncRequest,
        exc: BaseException,
        *,
        run_id: str | None = None,
        step: SyncStep = SyncStep.VALIDATE_ACCOUNT,
        failed_folder: FolderRunMetrics | None = None,
    ) -> None:
        """Reset account state, mark the checkpoint failed and record the failed folder run.

        Runs after a rollback, so only primitives and freshly loaded rows are used.
        """
        classified = classify_error(exc)
        logger.error(
            "Sync %s failed for account %s at %s: %s",
            run_id,
            request.account_id,
            step.value,
            classified.message,
        )
        await self.db.rollback()

        account = await self.accounts.get_by_id_for_update(request.account_id)
        if account is not None:
            await self.accounts.mark_failed(
                account,
                classified.message,
                auth_failure=classified.is_auth,
                disable_threshold=self.settings.sync_auth_failure_disable_threshold,
            )
        checkpoint = await self.checkpoints.get_for_account(request.account_id)
        if checkpoint is not None and checkpoint.run_id == run_id:
            checkpoint.status = WorkflowStatus.FAILED.value
            checkpoint.error = classified.message[:2000]
            checkpoint.last_checkpoint_at = utc_now()
            await self.checkpoints.save(checkpoint)
        if failed_folder is not None and account is not None:
            failed_folder.add_error(classified.message)
            recorder = SyncMetricsRecorder(
                self.runs,
                account_id=request.account_id,
                provider=account.provider_kind,
                sync_mode=request.sync_mode.value,
                trigger=request.trigger.value,
                correlation_id=run_id,
            )
            await recorder.finish_folder(
                failed_folder,
                SyncRunStatus.FAILED,
                extra={"step": step.value, "error_type": classified.error_type.value},
            )
        await self.db.commit()
        if account is not None:
            await self._publish(
                account, SyncStage.FAILED, "Sync failed", error=classified.message
            )

    async def _publish(
        self,
        account: EmailAccount,
        stage: SyncStage,
        message: str,
        **kwargs: Any,
    ) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish_stage(
            account.user_id, account.id, account.email_address, stage, message, **kwargs
        )
