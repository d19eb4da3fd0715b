"""Tests for domain exceptions (error_code, message, details)."""

from mailsync.domain.exceptions import (
    AuthenticationException,
    CredentialException,
    InvalidProviderRequestError,
    LockUnavailableException,
    MailSyncException,
    NonRetryableSyncError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderUnavailableError,
    ResourceNotFoundException,
    SqlNotConfiguredException,
    SyncInProgressException,
    ValidationException,
)


def test_mailsync_exception_default_error_code() -> None:
    """Base MailSyncException uses class name as error_code when not provided."""
    exc = MailSyncException("Something failed")
    assert exc.message == "Something failed"
    assert exc.error_code == "MailSyncException"
    assert exc.details == {}
    assert exc.to_dict() == {"error": "MailSyncException", "message": "Something failed", "details": {}}


def test_validation_exception() -> None:
    """ValidationException sets VALIDATION_ERROR and optional field in details."""
    exc = ValidationException("Unknown folder type", field="folder_type")
    assert exc.error_code == "VALIDATION_ERROR"
    assert exc.details == {"field": "folder_type"}
    assert ValidationException("x").details == {}


def test_resource_not_found_exception() -> None:
    exc = ResourceNotFoundException("email_account", "acc-1")
    assert exc.message == "email_account not found: acc-1"
    assert exc.error_code == "RESOURCE_NOT_FOUND"
    assert exc.details == {"resource_type": "email_account", "resource_id": "acc-1"}


def test_provider_auth_error_is_authentication_exception() -> None:
    """Provider auth failures carry status and reason and classify as authentication."""
    exc = ProviderAuthError("gmail", 401, "invalid_grant")
    assert isinstance(exc, AuthenticationException)
    assert exc.error_code == "AUTHENTICATION_ERROR"
    assert exc.status_code == 401
    assert exc.message == "Authentication failed (401): gmail rejected the credentials - invalid_grant"


def test_provider_rate_limit_defaults_to_sixty_seconds() -> None:
    exc = ProviderRateLimitError("graph")
    assert exc.retry_after == 60
    assert exc.error_code == "RATE_LIMITED"
    assert ProviderRateLimitError("graph", retry_after=5).retry_after == 5


def test_provider_unavailable_error() -> None:
    exc = ProviderUnavailableError("imap", 503)
    assert exc.error_code == "PROVIDER_UNAVAILABLE"
    assert exc.message == "imap unavailable (status 503)"


def test_invalid_provider_request_error() -> None:
    exc = InvalidProviderRequestError("graph", "bad $filter")
    assert exc.status_code == 400
    assert "bad $filter" in exc.message


def test_sync_errors() -> None:
    """Workflow-level errors expose the account in details."""
    aborted = NonRetryableSyncError("acc-1", "account not found")
    assert aborted.reason == "account not found"
    assert aborted.error_code == "SYNC_ABORTED"
    busy = SyncInProgressException("acc-1")
    assert busy.error_code == "SYNC_IN_PROGRESS"
    assert busy.details == {"account_id": "acc-1"}


def test_credential_and_sql_exceptions() -> None:
    assert CredentialException().error_code == "CREDENTIAL_ERROR"
    assert SqlNotConfiguredException().error_code == "SERVICE_UNAVAILABLE"


def test_lock_unavailable_is_service_unavailable() -> None:
    exc = LockUnavailableException("acc-1", "lock store unreachable")
    assert exc.error_code == "SERVICE_UNAVAILABLE"
    assert exc.details == {"account_id": "acc-1"}
