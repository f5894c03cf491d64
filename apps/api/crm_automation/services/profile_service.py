"""Profile service - provider token lookups and Google token refresh."""

import logging
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_automation.core.exceptions import ConfigurationError
from crm_automation.core.structured_logging import build_log_context
from crm_automation.db.models import Profile
from crm_automation.services.oauth_service import GoogleOAuthClient, token_expiry

logger = logging.getLogger(__name__)


def get_profile(db: Session, user_id: UUID) -> Profile | None:
    return db.query(Profile).filter(Profile.id == user_id).first()


def get_profile_by_google_email(db: Session, email: str) -> Profile | None:
    """Resolve the profile whose connected Google account is email (case-insensitive)."""
    if not email:
        return None
    return (
        db.query(Profile)
        .filter(func.lower(Profile.google_email) == email.strip().lower())
        .first()
    )


def require_google_token(profile: Profile | None) -> str:
    if not profile or not profile.google_access_token:
        raise ConfigurationError("Gmail not connected")
    return profile.google_access_token


def require_clickup_token(profile: Profile | None) -> str:
    if not profile or not profile.clickup_access_token:
        raise ConfigurationError("ClickUp not connected")
    return profile.clickup_access_token


def save_google_tokens(db: Session, profile: Profile, token_data: dict) -> str:
    """Persist a Google token response onto the profile; returns the access token.

    Last writer wins when concurrent dispatches refresh the same profile.
    """
    access_token = token_data["access_token"]
    profile.google_access_token = access_token
    if token_data.get("refresh_token"):
        profile.google_refresh_token = token_data["refresh_token"]
    profile.google_token_expires_at = token_expiry(token_data)
    db.commit()
    return access_token


async def refresh_google_access_token(
    db: Session, profile: Profile, oauth: GoogleOAuthClient
) -> str:
    """Refresh the profile's Google access token and store it.

    Raises:
        TokenRefreshError: no refresh token, or the refresh was rejected
    """
    token_data = await oauth.refresh_access_token(profile.google_refresh_token or "")
    logger.info(
        "Refreshed Google access token",
        extra=build_log_context(user_id=str(profile.id), event="google_token_refresh"),
    )
    return save_google_tokens(db, profile, token_data)
