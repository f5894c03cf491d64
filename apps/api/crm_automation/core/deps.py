"""FastAPI dependencies for database access, authentication, and provider clients."""

from typing import AsyncGenerator, Generator
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from crm_automation.core.config import settings
from crm_automation.core.security import decode_session_token, verify_secret
from crm_automation.db.models import Profile
from crm_automation.db.session import SessionLocal
from crm_automation.services.automation_engine import AutomationEngine
from crm_automation.services.provider_clients import ProviderClients, provider_clients


# Cookie name
COOKIE_NAME = "crm_session"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def get_provider_clients() -> AsyncGenerator[ProviderClients, None]:
    """Provider clients scoped to one request."""
    async with provider_clients() as clients:
        yield clients


def get_automation_engine(
    clients: ProviderClients = Depends(get_provider_clients),
) -> AutomationEngine:
    return AutomationEngine(clients)


def get_current_profile(request: Request, db: Session = Depends(get_db)) -> Profile:
    """
    Get the authenticated user's profile from the session cookie.

    Raises:
        HTTPException 401: Authentication failed
    """
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
        user_id = UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session")

    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if not profile:
        raise HTTPException(status_code=401, detail="User not found")
    return profile


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the X-Internal-Secret header for scheduled endpoints."""
    if not settings.INTERNAL_SECRET:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not verify_secret(x_internal_secret, settings.INTERNAL_SECRET):
        raise HTTPException(status_code=403, detail="Invalid internal secret")
