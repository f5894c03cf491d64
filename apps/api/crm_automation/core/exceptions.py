"""Automation engine error taxonomy."""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for automation engine failures."""


class ConfigurationError(AutomationError):
    """Missing token, unknown action/trigger type, or malformed config.

    Surfaced immediately and never retried.
    """


class TokenRefreshError(AutomationError):
    """Refreshing a provider access token failed."""


class ProviderError(AutomationError):
    """Non-2xx response from an upstream provider API."""

    def __init__(self, provider: str, status_code: int, detail: str, action: str = "request") -> None:
        self.provider = provider
        self.status_code = status_code
        self.detail = detail
        self.action = action
        super().__init__(f"{provider} {action} failed ({status_code}): {detail or 'unknown error'}")


class ProviderAuthError(ProviderError):
    """The provider rejected the access token (HTTP 401)."""
