"""Encryption utilities for provider tokens at rest."""

from cryptography.fernet import Fernet, InvalidToken

from crm_automation.core.config import settings


_fernet: Fernet | None = None
_ENCRYPTED_PREFIX = "enc:"


def get_fernet() -> Fernet | None:
    """Get or create the Fernet instance; None when FERNET_KEY is not configured."""
    global _fernet
    if not settings.FERNET_KEY:
        return None
    if _fernet is None:
        _fernet = Fernet(settings.FERNET_KEY.encode())
    return _fernet


def encrypt_value(value: str) -> str:
    """Encrypt a string value for storage.

    Without FERNET_KEY the value is stored as-is (dev only).
    """
    if value is None:
        return value
    if value == "" or value.startswith(_ENCRYPTED_PREFIX):
        return value
    fernet = get_fernet()
    if fernet is None:
        return value
    encrypted = fernet.encrypt(value.encode()).decode()
    return f"{_ENCRYPTED_PREFIX}{encrypted}"


def decrypt_value(value: str) -> str:
    """Decrypt a stored value. Values without the prefix are returned unchanged."""
    if value is None:
        return value
    if not value.startswith(_ENCRYPTED_PREFIX):
        return value
    fernet = get_fernet()
    if fernet is None:
        raise RuntimeError("FERNET_KEY not configured but encrypted data found")
    token = value[len(_ENCRYPTED_PREFIX) :]
    try:
        return fernet.decrypt(token.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted data")


def is_encryption_configured() -> bool:
    """Check if token encryption is configured."""
    return bool(settings.FERNET_KEY)
