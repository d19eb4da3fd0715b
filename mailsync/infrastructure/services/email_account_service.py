"""Email account service: create with encryption, sync status and folder overrides.

Keeps credential encryption and ORM updates out of the API layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from mailsync.application.services.folder_mapper import policy_for
from mailsync.domain.enums import FolderType
from mailsync.domain.exceptions import ResourceNotFoundException, ValidationException
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.external.email.factory import EmailProviderFactory
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.infrastructure.persistence.repositories.email_folder_repo import (
    EmailFolderRepository,
)
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class EmailAccountService:
    """Create email accounts (encrypt credentials), read sync state, override folders."""

    def __init__(
        self,
        email_account_repo: EmailAccountRepository,
        email_folder_repo: EmailFolderRepository,
        credential_encryptor: CredentialEncryptor,
    ) -> None:
        self._repo = email_account_repo
        self._folders = email_folder_repo
        self._encryptor = credential_encryptor

    async def create_email_account(
        self,
        user_id: str,
        provider_kind: str,
        email_address: str,
        credentials_plain: dict[str, Any],
        connection_params: dict[str, Any] | None = None,
        token_expires_at: datetime | None = None,
    ) -> EmailAccount:
        """Encrypt credentials and create the account. Aliases (outlook, google, yahoo) are resolved."""
        try:
            kind = EmailProviderFactory.resolve_kind(provider_kind)
        except ValueError as e:
            raise ValidationException(str(e), field="provider_kind") from e
        return await self._repo.create_email_account(
            user_id=user_id,
            provider_kind=kind.value,
            email_address=email_address,
            credentials_encrypted=self._encryptor.encrypt(credentials_plain),
            connection_params=connection_params,
            token_expires_at=token_expires_at,
        )

    async def get_account(self, account_id: str) -> EmailAccount:
        """Raises ResourceNotFoundException if the account does not exist."""
        account = await self._repo.get_by_id_for_update(account_id)
        if account is None:
            raise ResourceNotFoundException("email_account", account_id)
        return account

    async def list_folders(self, account_id: str) -> list[EmailFolder]:
        await self.get_account(account_id)
        return await self._folders.list_for_account(account_id)

    async def update_folder(
        self,
        account_id: str,
        folder_id: str,
        *,
        folder_type: str | None = None,
        sync_enabled: bool | None = None,
    ) -> EmailFolder:
        """Apply a user override.

        A new folder_type pins the classification (type_overridden) so later
        syncs do not re-detect it; icon, sort order and the system flag follow
        the chosen type.
        """
        folder = await self._folders.get_for_account(folder_id, account_id)
        if folder is None:
            raise ResourceNotFoundException("email_folder", folder_id)
        if folder_type is not None:
            try:
                new_type = FolderType(folder_type)
            except ValueError as e:
                raise ValidationException(
                    f"Unknown folder type: {folder_type}. Valid: {FolderType.values()}",
                    field="folder_type",
                ) from e
            policy = policy_for(new_type)
            folder.folder_type = new_type.value
            folder.is_system = policy.is_system
            folder.icon = policy.icon
            folder.sort_order = policy.sort_order
            folder.type_overridden = True
            logger.info("Folder %s of account %s overridden to %s", folder_id, account_id, new_type.value)
        if sync_enabled is not None:
            folder.sync_enabled = sync_enabled
        return await self._folders.update(folder)
