"""Automations router - user-facing automation management."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from crm_automation.core.deps import get_current_profile, get_db, get_provider_clients
from crm_automation.core.exceptions import ConfigurationError
from crm_automation.db.models import Automation, Profile
from crm_automation.schemas.automation import (
    AutomationCreate,
    AutomationCreateResponse,
    AutomationLogRead,
    AutomationRead,
    AutomationStatusUpdate,
)
from crm_automation.services import automation_service
from crm_automation.services.provider_clients import ProviderClients

router = APIRouter(prefix="/automations", tags=["automations"])
logger = logging.getLogger(__name__)


def _get_owned_automation(db: Session, automation_id: UUID, profile: Profile) -> Automation:
    automation = automation_service.get_automation(db, automation_id, user_id=profile.id)
    if not automation:
        raise HTTPException(status_code=404, detail="Automation not found")
    return automation


@router.get("", response_model=list[AutomationRead])
def list_automations(
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    """List the current user's automations, newest first."""
    return [
        automation_service.to_read(a)
        for a in automation_service.list_automations(db, profile.id)
    ]


@router.post("", response_model=AutomationCreateResponse, status_code=201)
async def create_automation(
    data: AutomationCreate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    clients: ProviderClients = Depends(get_provider_clients),
):
    """Create an automation and provision its Gmail watch or ClickUp webhook."""
    try:
        automation, warning = await automation_service.create_automation(
            db, profile, data, clients
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AutomationCreateResponse(
        automation=automation_service.to_read(automation), warning=warning
    )


@router.get("/{automation_id}", response_model=AutomationRead)
def get_automation(
    automation_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return automation_service.to_read(_get_owned_automation(db, automation_id, profile))


@router.patch("/{automation_id}/status", response_model=AutomationCreateResponse)
async def update_automation_status(
    automation_id: UUID,
    data: AutomationStatusUpdate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    clients: ProviderClients = Depends(get_provider_clients),
):
    """Pause or resume an automation."""
    automation = _get_owned_automation(db, automation_id, profile)
    try:
        automation, warning = await automation_service.update_status(
            db, automation, data.status, clients
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AutomationCreateResponse(
        automation=automation_service.to_read(automation), warning=warning
    )


@router.delete("/{automation_id}")
async def delete_automation(
    automation_id: UUID,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    clients: ProviderClients = Depends(get_provider_clients),
):
    """Delete an automation after tearing down its provider subscription."""
    automation = _get_owned_automation(db, automation_id, profile)
    await automation_service.delete_automation(db, automation, clients)
    return {"success": True}


@router.get("/{automation_id}/logs", response_model=list[AutomationLogRead])
def list_automation_logs(
    automation_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    """Execution logs, newest first."""
    _get_owned_automation(db, automation_id, profile)
    return automation_service.list_logs(db, automation_id, limit=limit)
