"""Domain exceptions for the mailsync engine.

Defines exceptions for business rule violations and for provider failures
the orchestrator must tell apart (auth vs rate limit vs transient). They
are independent of HTTP; the presentation layer maps error_code to status
codes in mailsync.core.exception_handlers.
"""

from typing import Any


class MailSyncException(Exception):
    """Base exception for all mailsync errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. account_id, status_code).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON error responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(MailSyncException):
    """Raised when input validation fails (e.g. unknown folder type)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class ResourceNotFoundException(MailSyncException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize with resource type and id.

        Args:
            resource_type: Type of resource (e.g. 'email_account', 'email_folder').
            resource_id: The ID that was not found.
        """
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class AuthenticationException(MailSyncException):
    """Raised when authentication fails (e.g. invalid credentials or token)."""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "AUTHENTICATION_ERROR", details)


class CredentialException(MailSyncException):
    """Raised when stored credentials cannot be decrypted or are malformed."""

    def __init__(self, message: str = "Credential operation failed") -> None:
        super().__init__(message, "CREDENTIAL_ERROR")


class SqlNotConfiguredException(MailSyncException):
    """Raised when an operation requires the database but DATABASE_URL is unset."""

    def __init__(self) -> None:
        super().__init__(
            message="This operation requires a SQL database that is not configured.",
            error_code="SERVICE_UNAVAILABLE",
        )


class ProviderAuthError(AuthenticationException):
    """Raised by adapters when the provider rejects credentials or a token refresh.

    Distinct from transient I/O errors so the orchestrator flags the account
    for reconnection instead of retrying.
    """

    def __init__(
        self,
        provider: str,
        status_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        """Initialize with provider name, HTTP status and provider reason.

        Args:
            provider: Provider kind (graph, gmail, imap).
            status_code: HTTP status returned by the token endpoint or API.
            reason: Optional provider error description (e.g. 'invalid_grant').
        """
        status_part = f" ({status_code})" if status_code is not None else ""
        message = f"Authentication failed{status_part}: {provider} rejected the credentials"
        if reason:
            message = f"{message} - {reason}"
        super().__init__(
            message,
            {"provider": provider, "status_code": status_code, "reason": reason},
        )
        self.provider = provider
        self.status_code = status_code


class ProviderRateLimitError(MailSyncException):
    """Raised on HTTP 429 / throttling. retry_after is in seconds."""

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        self.provider = provider
        self.retry_after = retry_after if retry_after is not None else 60
        super().__init__(
            f"Rate limited by {provider} (429); retry after {self.retry_after}s",
            "RATE_LIMITED",
            {"provider": provider, "retry_after": self.retry_after},
        )


class ProviderUnavailableError(MailSyncException):
    """Raised on provider 5xx responses and connection failures (transient)."""

    def __init__(
        self,
        provider: str,
        status_code: int | None = None,
        message: str | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(
            message or f"{provider} unavailable (status {status_code})",
            "PROVIDER_UNAVAILABLE",
            {"provider": provider, "status_code": status_code},
        )


class InvalidProviderRequestError(MailSyncException):
    """Raised on HTTP 400 from a provider (malformed request; not retryable)."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.status_code = 400
        super().__init__(
            f"{provider} rejected the request (400): {message}",
            "INVALID_PROVIDER_REQUEST",
            {"provider": provider, "status_code": 400},
        )


class NonRetryableSyncError(MailSyncException):
    """Raised when a workflow must abort without retry (account deleted, wrong owner)."""

    def __init__(self, account_id: str, reason: str) -> None:
        super().__init__(
            f"Sync aborted for account {account_id}: {reason}",
            "SYNC_ABORTED",
            {"account_id": account_id, "reason": reason},
        )
        self.reason = reason


class SyncInProgressException(MailSyncException):
    """Raised when a sync is requested for an account that is already syncing."""

    def __init__(self, account_id: str) -> None:
        super().__init__(
            f"A sync is already running for account {account_id}",
            "SYNC_IN_PROGRESS",
            {"account_id": account_id},
        )


class LockUnavailableException(MailSyncException):
    """Raised when the shared account lock store cannot be reached."""

    def __init__(self, account_id: str, reason: str) -> None:
        super().__init__(
            f"Cannot lock account {account_id}: {reason}",
            "SERVICE_UNAVAILABLE",
            {"account_id": account_id},
        )
