"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for each test
- Profile/automation factories
- ProviderStub: an httpx MockTransport standing in for Gmail, ClickUp and Google OAuth
- HTTPX AsyncClient against the ASGI app, with and without a session cookie
"""
import os
import secrets
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["APP_URL"] = "https://automations.test"
os.environ["FERNET_KEY"] = ""
os.environ["SENTRY_DSN"] = ""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from crm_automation.core.deps import COOKIE_NAME, get_db, get_provider_clients
from crm_automation.core.security import create_session_token
from crm_automation.db.base import Base
from crm_automation.db.enums import ActionType, AutomationStatus, TriggerType
from crm_automation.db.models import Automation, Profile
from crm_automation.db.session import SessionLocal, engine
from crm_automation.main import app
from crm_automation.services.provider_clients import ProviderClients


# =============================================================================
# Provider stub
# =============================================================================

class ProviderStub:
    """
    Routes outbound requests by (method, path) to queued responses.

    Each route holds a queue; responses are consumed in order and the last
    one repeats. Unrouted requests get a 404 so a missing stub shows up as
    a provider error rather than a hang.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[tuple[int, object, str | None]]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self, method: str, path: str, status_code: int = 200, json=None, text: str | None = None
    ) -> "ProviderStub":
        """Queue a response; `text` sends a raw body instead of JSON."""
        self.routes.setdefault((method.upper(), path), []).append((status_code, json, text))
        return self

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests if r.method == method.upper() and r.url.path == path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": f"no stub for {request.url.path}"})
        status_code, body, text = queue.pop(0) if len(queue) > 1 else queue[0]
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=body if body is not None else {})


@pytest.fixture(scope="function")
def providers() -> ProviderStub:
    return ProviderStub()


@pytest.fixture(scope="function")
async def clients(providers: ProviderStub) -> AsyncGenerator[ProviderClients, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(providers.handler)) as http:
        yield ProviderClients.from_http(http)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; app code commits freely."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def profile(db: Session) -> Profile:
    """A user with both Gmail and ClickUp connected."""
    profile = Profile(
        id=uuid.uuid4(),
        email="a@x.com",
        google_access_token="google-access",
        google_refresh_token="google-refresh",
        google_email="a@x.com",
        clickup_access_token="clickup-access",
        clickup_user_id="42",
        clickup_username="alice",
    )
    db.add(profile)
    db.commit()
    return profile


def _make_automation(db: Session, profile: Profile, **overrides) -> Automation:
    values = dict(
        user_id=profile.id,
        name="Invoices to ClickUp",
        trigger_type=TriggerType.GMAIL_EMAIL.value,
        trigger_config={},
        action_type=ActionType.CLICKUP_CREATE_TASK.value,
        action_config={"list_id": "L1", "title_template": "{{email.subject}}"},
        webhook_id=secrets.token_hex(16),
        webhook_secret=secrets.token_hex(32),
        status=AutomationStatus.ACTIVE.value,
    )
    values.update(overrides)
    automation = Automation(**values)
    db.add(automation)
    db.commit()
    db.refresh(automation)
    return automation


@pytest.fixture(scope="function")
def make_automation(db: Session):
    """Factory: insert an automation directly, bypassing provisioning."""

    def _factory(profile: Profile, **overrides) -> Automation:
        return _make_automation(db, profile, **overrides)

    return _factory


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    profile: Profile
    token: str
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def test_auth(profile: Profile) -> TestAuth:
    return TestAuth(profile=profile, token=create_session_token(profile.id))


# =============================================================================
# Client Fixtures
# =============================================================================

def _override_dependencies(db: Session, clients: ProviderClients) -> None:
    def override_get_db():
        yield db

    async def override_get_provider_clients():
        yield clients

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_clients] = override_get_provider_clients


@pytest.fixture(scope="function")
async def client(db: Session, clients: ProviderClients) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client for webhook and internal endpoints."""
    _override_dependencies(db, clients)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    clients: ProviderClients,
    test_auth: TestAuth,
) -> AsyncGenerator[AsyncClient, None]:
    """Client carrying the session cookie for test_auth.profile."""
    _override_dependencies(db, clients)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
    ) as c:
        yield c

    app.dependency_overrides.clear()
