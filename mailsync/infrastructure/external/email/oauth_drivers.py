"""OAuth refresh drivers: exchange a refresh token for a fresh access token."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, ClassVar

import httpx

from mailsync.application.dtos.sync import ProviderToken
from mailsync.core.config import Settings
from mailsync.domain.exceptions import (
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)
from mailsync.infrastructure.external.email.errors import parse_retry_after
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)

DEFAULT_EXPIRES_IN = 3600


class OAuthDriver(ABC):
    """Refresh-token grant against one provider's token endpoint."""

    PROVIDER_NAME: ClassVar[str]
    PROVIDER_KIND: ClassVar[str]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self._shared_http = http_client
        self._timeout = timeout

    @property
    @abstractmethod
    def token_endpoint(self) -> str:
        ...

    def _extra_refresh_params(self) -> dict[str, Any]:
        """Provider-specific form fields (e.g. scope)."""
        return {}

    @asynccontextmanager
    async def _http_cm(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield shared HTTP client or a short-lived one."""
        if self._shared_http is not None:
            yield self._shared_http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def refresh_access_token(self, refresh_token: str) -> ProviderToken:
        """Refresh the access token.

        Raises:
            ProviderAuthError: Token endpoint rejected the grant (400/401,
                e.g. invalid_grant after revocation).
            ProviderRateLimitError: 429.
            ProviderUnavailableError: 5xx.
        """
        if not refresh_token:
            raise ProviderAuthError(self.PROVIDER_KIND, None, "no refresh token stored")
        async with self._http_cm() as client:
            response = await client.post(
                self.token_endpoint,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                    **self._extra_refresh_params(),
                },
            )
        if response.status_code != 200:
            logger.error(
                "%s token refresh failed: status=%d",
                self.PROVIDER_NAME,
                response.status_code,
            )
            self._raise_for_refresh_status(response)
        token_data: dict[str, Any] = response.json()
        expires_in = int(token_data.get("expires_in", DEFAULT_EXPIRES_IN))
        return ProviderToken(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or refresh_token,
            expires_at=utc_now() + timedelta(seconds=expires_in),
        )

    def _raise_for_refresh_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status == 429:
            raise ProviderRateLimitError(
                self.PROVIDER_KIND, parse_retry_after(response.headers.get("Retry-After"))
            )
        if status >= 500:
            raise ProviderUnavailableError(self.PROVIDER_KIND, status)
        reason: str | None = None
        try:
            body = response.json()
            if isinstance(body, dict):
                reason = body.get("error_description") or body.get("error")
        except ValueError:
            reason = None
        raise ProviderAuthError(self.PROVIDER_KIND, status, reason)


class GoogleDriver(OAuthDriver):
    """Google OAuth token endpoint (Gmail accounts)."""

    PROVIDER_NAME = "Gmail"
    PROVIDER_KIND = "gmail"
    TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"

    @property
    def token_endpoint(self) -> str:
        return self.TOKEN_ENDPOINT


class MicrosoftDriver(OAuthDriver):
    """Microsoft identity platform v2 token endpoint (Graph accounts)."""

    PROVIDER_NAME = "Microsoft 365"
    PROVIDER_KIND = "graph"
    SCOPES = "https://graph.microsoft.com/Mail.ReadWrite https://graph.microsoft.com/User.Read offline_access"

    def __init__(self, client_id: str, client_secret: str, *, tenant: str = "common", **kwargs: Any) -> None:
        super().__init__(client_id, client_secret, **kwargs)
        self.tenant = tenant

    @property
    def token_endpoint(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant}/oauth2/v2.0/token"

    def _extra_refresh_params(self) -> dict[str, Any]:
        return {"scope": self.SCOPES}


class OAuthDriverRegistry:
    """OAuth refresh drivers by provider kind."""

    _drivers: ClassVar[dict[str, type[OAuthDriver]]] = {
        "gmail": GoogleDriver,
        "graph": MicrosoftDriver,
    }

    @classmethod
    def register(cls, provider_kind: str, driver_class: type[OAuthDriver]) -> None:
        cls._drivers[provider_kind] = driver_class
        logger.info("Registered OAuth driver: %s", provider_kind)

    @classmethod
    def for_settings(
        cls,
        provider_kind: str,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> OAuthDriver:
        """Build the driver for provider_kind with client credentials from settings."""
        if provider_kind not in cls._drivers:
            raise ValueError(
                f"Unsupported OAuth provider: {provider_kind}. "
                f"Supported: {', '.join(cls._drivers)}"
            )
        timeout = settings.provider_http_timeout_seconds
        if provider_kind == "graph":
            return MicrosoftDriver(
                settings.microsoft_client_id,
                settings.microsoft_client_secret.get_secret_value(),
                tenant=settings.microsoft_tenant,
                http_client=http_client,
                timeout=timeout,
            )
        return cls._drivers[provider_kind](
            settings.google_client_id,
            settings.google_client_secret.get_secret_value(),
            http_client=http_client,
            timeout=timeout,
        )

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._drivers.keys())
