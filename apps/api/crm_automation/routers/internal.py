"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external scheduler (Render/Railway cron, GH Actions).
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from crm_automation.core.deps import get_db, get_provider_clients, verify_internal_secret
from crm_automation.schemas.automation import WatchRenewalResponse
from crm_automation.services import automation_service, watch_service
from crm_automation.services.provider_clients import ProviderClients


router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)
logger = logging.getLogger(__name__)


class PruneResponse(BaseModel):
    deleted: int


@router.post("/renew-gmail-watches", response_model=WatchRenewalResponse)
async def renew_gmail_watches(
    db: Session = Depends(get_db),
    clients: ProviderClients = Depends(get_provider_clients),
):
    """
    Daily sweep: renew Gmail watches expiring within the lookahead window.

    Also prunes expired webhook delivery dedupe rows.
    """
    response = await watch_service.renew_gmail_watches(db, clients)
    pruned = automation_service.prune_deliveries(db)
    logger.info(
        f"Gmail watch renewal: renewed={response.renewed} failed={response.failed} pruned={pruned}"
    )
    return response


@router.post("/prune-deliveries", response_model=PruneResponse)
def prune_deliveries(db: Session = Depends(get_db)):
    """Delete webhook delivery dedupe rows past retention."""
    return PruneResponse(deleted=automation_service.prune_deliveries(db))
