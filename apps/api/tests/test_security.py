"""Tests for session tokens, shared-secret checks, and token encryption."""

import uuid

import jwt
import pytest
from cryptography.fernet import Fernet

from crm_automation.core import encryption
from crm_automation.core.config import settings
from crm_automation.core.security import (
    create_session_token,
    decode_session_token,
    generate_webhook_id,
    generate_webhook_secret,
    verify_secret,
)


def test_session_token_roundtrip():
    user_id = uuid.uuid4()
    payload = decode_session_token(create_session_token(user_id))
    assert payload["sub"] == str(user_id)


def test_session_token_accepts_previous_secret(monkeypatch):
    user_id = uuid.uuid4()
    token = create_session_token(user_id)

    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", settings.JWT_SECRET)
    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret")

    assert decode_session_token(token)["sub"] == str(user_id)


def test_session_token_rejects_unknown_secret():
    token = jwt.encode({"sub": str(uuid.uuid4())}, "some-other-secret", algorithm="HS256")
    with pytest.raises(jwt.InvalidTokenError):
        decode_session_token(token)


def test_verify_secret():
    assert verify_secret("abc", "abc") is True
    assert verify_secret("abc", "abd") is False
    assert verify_secret("", "") is False
    assert verify_secret(None, "abc") is False


def test_webhook_identifiers_are_random_hex():
    webhook_id = generate_webhook_id()
    assert len(webhook_id) == 32
    int(webhook_id, 16)
    assert webhook_id != generate_webhook_id()
    assert len(generate_webhook_secret()) == 64


@pytest.fixture
def fernet_key(monkeypatch):
    key = Fernet.generate_key().decode()
    monkeypatch.setattr(settings, "FERNET_KEY", key)
    monkeypatch.setattr(encryption, "_fernet", None)
    return key


def test_encrypt_value_roundtrip(fernet_key):
    encrypted = encryption.encrypt_value("google-access")

    assert encrypted.startswith("enc:")
    assert encrypted != "google-access"
    assert encryption.decrypt_value(encrypted) == "google-access"
    # Already-encrypted values are not double-encrypted
    assert encryption.encrypt_value(encrypted) == encrypted


def test_plaintext_passthrough_without_key():
    assert encryption.encrypt_value("google-access") == "google-access"
    assert encryption.decrypt_value("google-access") == "google-access"


def test_decrypt_rejects_corrupted_value(fernet_key):
    with pytest.raises(ValueError):
        encryption.decrypt_value("enc:not-a-fernet-token")
