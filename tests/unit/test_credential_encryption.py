"""Tests for credential encryption at rest."""

import pytest

from mailsync.core.config import Settings
from mailsync.domain.exceptions import CredentialException
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor


def test_encrypt_decrypt_round_trip(encryptor: CredentialEncryptor) -> None:
    """Credentials survive encryption unchanged and are not stored in clear."""
    credentials = {"access_token": "tok", "refresh_token": "ref", "scopes": ["mail.read"]}
    encrypted = encryptor.encrypt(credentials)
    assert "tok" not in encrypted
    assert encryptor.decrypt(encrypted) == credentials


def test_decrypt_garbage_raises(encryptor: CredentialEncryptor) -> None:
    """Tampered ciphertext raises CredentialException."""
    with pytest.raises(CredentialException):
        encryptor.decrypt("not-a-fernet-token")


def test_different_salt_cannot_decrypt(encryptor: CredentialEncryptor, settings: Settings) -> None:
    """The key depends on the salt."""
    other = CredentialEncryptor(settings.model_copy(update={"encryption_salt": settings.secret_key}))
    with pytest.raises(CredentialException):
        other.decrypt(encryptor.encrypt({"password": "secret"}))


def test_non_dict_payload_rejected(encryptor: CredentialEncryptor) -> None:
    """Stored credentials must decode to a JSON object."""
    token = encryptor._fernet.encrypt(b'["a", "b"]').decode()
    with pytest.raises(CredentialException, match="dictionary"):
        encryptor.decrypt(token)
