"""Email upsert pipeline: provider email -> typed EmailUpsert -> idempotent row write.

Each message is written inside its own SAVEPOINT so one bad message rolls
back alone and the rest of the page is still stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from mailsync.application.dtos.sync import SNIPPET_MAX_LENGTH, EmailUpsert, ProviderEmail
from mailsync.application.services.folder_mapper import category_for_folder, is_aggregate_view
from mailsync.domain.exceptions import ValidationException
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.repositories.email_repo import EmailRepository
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

NO_SUBJECT = "(No Subject)"


@dataclass
class UpsertStats:
    """Per-batch counters. updated counts messages that already existed."""

    processed: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: UpsertStats) -> None:
        self.processed += other.processed
        self.inserted += other.inserted
        self.updated += other.updated
        self.failed += other.failed
        self.duplicates += other.duplicates
        self.errors.extend(other.errors)


def build_email_upsert(account_id: str, folder: EmailFolder, email: ProviderEmail) -> EmailUpsert:
    """Map a provider email into the typed write for folder."""
    snippet = email.snippet[:SNIPPET_MAX_LENGTH] if email.snippet else None
    return EmailUpsert(
        account_id=account_id,
        message_id=email.message_id or email.provider_id,
        provider_id=email.provider_id,
        folder_id=folder.id,
        folder_name=folder.name,
        email_category=category_for_folder(folder.folder_type, folder.name),
        subject=email.subject or NO_SUBJECT,
        from_address=email.from_address.to_dict() if email.from_address else None,
        to_addresses=[a.to_dict() for a in email.to_addresses],
        cc_addresses=[a.to_dict() for a in email.cc_addresses],
        bcc_addresses=[a.to_dict() for a in email.bcc_addresses],
        received_at=email.received_at,
        sent_at=email.sent_at,
        is_read=email.is_read,
        body_html=email.body_html,
        body_text=email.body_text,
        snippet=snippet,
        has_attachments=email.has_attachments,
        thread_id=email.thread_id,
        label_ids=list(email.labels) or None,
        importance=email.importance,
        from_aggregate_view=is_aggregate_view(folder.folder_type, folder.name),
    )


class EmailUpsertService:
    """Writes one page of provider emails for a folder."""

    def __init__(self, email_repo: EmailRepository) -> None:
        self._repo = email_repo

    async def upsert_batch(
        self,
        account_id: str,
        folder: EmailFolder,
        emails: list[ProviderEmail],
    ) -> UpsertStats:
        """Upsert emails; per-message failures are logged and counted, never raised."""
        stats = UpsertStats()
        if not emails:
            return stats
        known = await self._repo.existing_message_ids(
            account_id, [e.message_id or e.provider_id for e in emails]
        )
        seen: set[str] = set()
        for email in emails:
            stats.processed += 1
            try:
                data = build_email_upsert(account_id, folder, email)
            except ValidationException as e:
                stats.failed += 1
                stats.errors.append(f"{email.provider_id}: {e.message}")
                logger.warning("Skipping invalid email %s: %s", email.provider_id, e.message)
                continue
            if data.message_id in seen:
                stats.duplicates += 1
            try:
                async with self._repo.db.begin_nested():
                    await self._repo.upsert(data)
            except SQLAlchemyError as e:
                stats.failed += 1
                stats.errors.append(f"{email.provider_id}: {e.__class__.__name__}")
                logger.warning(
                    "Failed to upsert email %s in folder %s: %s",
                    email.provider_id,
                    folder.name,
                    e,
                )
                continue
            if data.message_id in known or data.message_id in seen:
                stats.updated += 1
            else:
                stats.inserted += 1
            seen.add(data.message_id)
        logger.debug(
            "Upserted %s emails into %s (inserted=%s updated=%s failed=%s)",
            stats.processed,
            folder.name,
            stats.inserted,
            stats.updated,
            stats.failed,
        )
        return stats
