"""Webhooks router - inbound provider events for automations."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from crm_automation.core.deps import get_automation_engine, get_db
from crm_automation.core.rate_limit import WEBHOOK_LIMIT, limiter
from crm_automation.db.enums import DispatchOutcome
from crm_automation.services.automation_engine import AutomationEngine

router = APIRouter()
logger = logging.getLogger(__name__)


async def _read_json(request: Request) -> Any:
    """Request JSON, or None for an empty or non-JSON body."""
    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _respond(result: dict) -> JSONResponse | dict:
    if result.get("status") == DispatchOutcome.NOT_FOUND.value:
        return JSONResponse(
            status_code=404, content={"error": "Automation not found", **result}
        )
    return result


def _is_pubsub_push(body: Any) -> bool:
    return isinstance(body, dict) and bool((body.get("message") or {}).get("data"))


@router.post("/automation")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_automation_webhook(
    request: Request,
    webhook_id: str | None = Query(None),
    db: Session = Depends(get_db),
    engine: AutomationEngine = Depends(get_automation_engine),
):
    """
    Automation ingestion endpoint.

    Receives:
    - Direct webhook calls with ?webhook_id=...; the JSON body is the trigger data
    - Gmail Pub/Sub push notifications: {"message": {"data": <base64 JSON>}}
    """
    body = await _read_json(request)

    if webhook_id:
        try:
            result = await engine.handle_direct_webhook(db, webhook_id, body)
        except Exception:
            logger.exception("Webhook processing failed")
            return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})
        return _respond(result)

    if _is_pubsub_push(body):
        try:
            return await engine.handle_gmail_push(db, body)
        except ValueError as e:
            logger.warning(f"Invalid Gmail push notification: {e}")
            raise HTTPException(status_code=400, detail="Invalid Pub/Sub message")
        except Exception:
            logger.exception("Gmail push processing failed")
            return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    raise HTTPException(status_code=400, detail="Invalid webhook request")


@router.post("/clickup")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_clickup_webhook(
    request: Request,
    webhook_id: str | None = Query(None),
    db: Session = Depends(get_db),
    engine: AutomationEngine = Depends(get_automation_engine),
):
    """ClickUp webhook callback registered per automation."""
    if not webhook_id:
        raise HTTPException(status_code=400, detail="Missing webhook_id")

    payload = await _read_json(request)
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    logger.info(
        f"ClickUp webhook received: event={payload.get('event')} task_id={payload.get('task_id')}"
    )
    try:
        result = await engine.handle_direct_webhook(db, webhook_id, payload)
    except Exception:
        logger.exception("ClickUp webhook processing failed")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})
    return _respond(result)
