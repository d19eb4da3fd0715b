"""Email provider factory: creates the Graph, Gmail or IMAP adapter for an account."""

from typing import Any, ClassVar

import httpx

from mailsync.core.config import Settings, get_settings
from mailsync.domain.enums import ProviderKind
from mailsync.infrastructure.external.email.oauth_drivers import OAuthDriverRegistry
from mailsync.infrastructure.external.email.protocols import (
    EmailProviderConfig,
    IEmailProvider,
)
from mailsync.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailsync.infrastructure.external.email.providers.imap_provider import IMAPProvider
from mailsync.infrastructure.external.email.providers.outlook_provider import OutlookProvider
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class EmailProviderFactory:
    """Factory for provider adapters keyed by provider kind (and common aliases)."""

    _aliases: ClassVar[dict[str, ProviderKind]] = {
        "graph": ProviderKind.GRAPH,
        "outlook": ProviderKind.GRAPH,
        "microsoft": ProviderKind.GRAPH,
        "gmail": ProviderKind.GMAIL,
        "google": ProviderKind.GMAIL,
        "imap": ProviderKind.IMAP,
        "yahoo": ProviderKind.IMAP,
        "icloud": ProviderKind.IMAP,
    }

    @classmethod
    def resolve_kind(cls, provider_kind: str) -> ProviderKind:
        """Canonical provider kind for a stored kind or alias.

        Raises:
            ValueError: If the kind is not supported.
        """
        kind = cls._aliases.get(provider_kind.strip().lower())
        if kind is None:
            raise ValueError(
                f"Unsupported provider: {provider_kind}. "
                f"Supported: {list(cls._aliases.keys())}"
            )
        return kind

    @classmethod
    def create_provider(
        cls,
        config: EmailProviderConfig,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        **overrides: Any,
    ) -> IEmailProvider:
        """Create the adapter for config.

        Args:
            config: Decrypted account credentials and connection params.
            settings: Settings for OAuth clients, page size and timeouts.
            http_client: Optional shared httpx.AsyncClient for connection reuse
                (Graph calls and OAuth refresh).
            overrides: Extra adapter keyword arguments (e.g. a prebuilt Gmail
                service or an IMAP client factory).
        """
        settings = settings or get_settings()
        kind = cls.resolve_kind(config.provider_kind)
        logger.debug("Creating %s adapter for %s", kind.value, config.email_address)
        page_size = settings.sync_page_size
        timeout = settings.provider_http_timeout_seconds
        if kind == ProviderKind.GRAPH:
            return OutlookProvider(
                config,
                oauth_driver=OAuthDriverRegistry.for_settings("graph", settings, http_client=http_client),
                http_client=http_client,
                page_size=page_size,
                timeout=timeout,
                **overrides,
            )
        if kind == ProviderKind.GMAIL:
            return GmailProvider(
                config,
                oauth_driver=OAuthDriverRegistry.for_settings("gmail", settings, http_client=http_client),
                page_size=page_size,
                **overrides,
            )
        return IMAPProvider(config, page_size=page_size, timeout=timeout, **overrides)

    @classmethod
    def list_supported_providers(cls) -> list[str]:
        return list(cls._aliases.keys())
