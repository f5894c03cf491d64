"""Google and ClickUp OAuth token endpoints.

Browser authorization flows live outside this service; only code exchange
and Google access-token refresh are needed by the engine.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from crm_automation.core.config import settings
from crm_automation.core.exceptions import TokenRefreshError
from crm_automation.services.http_service import error_detail, raise_for_provider

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
CLICKUP_TOKEN_URL = "https://api.clickup.com/api/v2/oauth/token"


class GoogleOAuthClient:
    """Google OAuth token endpoint client."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    async def exchange_code(self, code: str, redirect_uri: str | None = None) -> dict[str, Any]:
        """Exchange authorization code for tokens."""
        response = await self.http.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri or settings.GOOGLE_REDIRECT_URI,
            },
        )
        raise_for_provider(response, "google", "token exchange")
        return response.json()

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """Refresh a Google access token.

        Returns the token response (access_token, expires_in, ...).

        Raises:
            TokenRefreshError: refresh rejected or no access_token returned
        """
        if not refresh_token:
            raise TokenRefreshError("No Google refresh token available")
        try:
            response = await self.http.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.RequestError as e:
            raise TokenRefreshError(f"Google token refresh failed: {e}") from e

        if not response.is_success:
            detail = error_detail(response)
            logger.error(f"Google token refresh failed ({response.status_code}): {detail}")
            raise TokenRefreshError(
                f"Google token refresh failed ({response.status_code}): {detail}"
            )

        data = response.json()
        if not data.get("access_token"):
            raise TokenRefreshError("Google token refresh returned no access_token")
        return data

    async def get_user_info(self, access_token: str) -> dict[str, Any]:
        """Get user info from Google."""
        response = await self.http.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        raise_for_provider(response, "google", "userinfo")
        return response.json()


async def exchange_clickup_code(http: httpx.AsyncClient, code: str) -> dict[str, Any]:
    """Exchange a ClickUp authorization code for an access token."""
    response = await http.post(
        CLICKUP_TOKEN_URL,
        json={
            "client_id": settings.CLICKUP_CLIENT_ID,
            "client_secret": settings.CLICKUP_CLIENT_SECRET,
            "code": code,
        },
    )
    raise_for_provider(response, "clickup", "token exchange")
    return response.json()


def token_expiry(token_data: dict[str, Any]) -> datetime | None:
    """Absolute expiry for a Google token response, when expires_in is present."""
    expires_in = token_data.get("expires_in")
    if not expires_in:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
