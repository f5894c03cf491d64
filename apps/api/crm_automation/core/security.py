"""Security utilities: session tokens, shared secrets, webhook identifiers."""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from crm_automation.core.config import settings


# =============================================================================
# Session Token (JWT in cookie)
# =============================================================================

def create_session_token(user_id: UUID) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    """
    payload = {
        "sub": str(user_id),
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Shared secrets
# =============================================================================

def verify_secret(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison; empty values never match."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


# =============================================================================
# Webhook identifiers
# =============================================================================

def generate_webhook_id() -> str:
    """Public identifier embedded in the inbound callback URL (16 random bytes, hex)."""
    return secrets.token_hex(16)


def generate_webhook_secret() -> str:
    """Secret paired with the webhook id (32 random bytes, hex)."""
    return secrets.token_hex(32)
