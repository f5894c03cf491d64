"""Explicitly constructed provider clients injected into the engine."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from crm_automation.services.clickup_service import ClickUpClient
from crm_automation.services.gmail_service import GmailClient
from crm_automation.services.http_service import default_timeout
from crm_automation.services.oauth_service import GoogleOAuthClient


@dataclass
class ProviderClients:
    """Adapters sharing one httpx.AsyncClient."""

    http: httpx.AsyncClient
    gmail: GmailClient
    clickup: ClickUpClient
    google_oauth: GoogleOAuthClient

    @classmethod
    def from_http(cls, http: httpx.AsyncClient) -> ProviderClients:
        return cls(
            http=http,
            gmail=GmailClient(http),
            clickup=ClickUpClient(http),
            google_oauth=GoogleOAuthClient(http),
        )


@asynccontextmanager
async def provider_clients(
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[ProviderClients]:
    """Open clients for one unit of work (request, CLI command)."""
    async with httpx.AsyncClient(timeout=default_timeout(), transport=transport) as http:
        yield ProviderClients.from_http(http)
