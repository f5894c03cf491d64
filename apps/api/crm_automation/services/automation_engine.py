"""
Automation engine - turns inbound provider events into action runs.

Two ingress shapes:
- direct/ClickUp webhooks addressed by an automation's webhook_id
- Gmail Pub/Sub push notifications addressed by mailbox

Resolution and filtering outcomes (not found, inactive, filtered, duplicate)
return a status without writing a log row. Every event that reaches the
action stage ends in exactly one AutomationLog row plus a telemetry update.
A failure in one automation or message never stops its siblings.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.orm import Session

from crm_automation.core.config import settings
from crm_automation.core.exceptions import (
    AutomationError,
    ConfigurationError,
    ProviderError,
)
from crm_automation.core.structured_logging import build_log_context, mask_email
from crm_automation.db.enums import AutomationLogStatus, DispatchOutcome
from crm_automation.db.models import Automation, Profile
from crm_automation.schemas.automation import ClickUpTaskTriggerConfig
from crm_automation.services import automation_service, profile_service, watch_service
from crm_automation.services.action_dispatcher import ActionDispatcher
from crm_automation.services.clickup_service import build_clickup_trigger_data, clickup_event_key
from crm_automation.services.gmail_service import extract_email_data
from crm_automation.services.provider_clients import ProviderClients
from crm_automation.services.trigger_matching import (
    evaluate_clickup_payload,
    gmail_trigger_matches,
)

logger = logging.getLogger(__name__)


def decode_pubsub_envelope(body: dict[str, Any]) -> dict[str, Any]:
    """Decode ``{"message": {"data": <base64 JSON>}}`` into {emailAddress, historyId}.

    Raises:
        ValueError: missing or undecodable data
    """
    data = ((body or {}).get("message") or {}).get("data")
    if not data or not isinstance(data, str):
        raise ValueError("Missing message.data")
    normalized = data.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        envelope = json.loads(base64.b64decode(normalized).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid Pub/Sub message data: {e}") from e
    if not isinstance(envelope, dict) or not envelope.get("emailAddress"):
        raise ValueError("Pub/Sub message has no emailAddress")
    return envelope


class AutomationEngine:
    """Dispatch orchestrator. Holds no per-request state."""

    def __init__(
        self,
        clients: ProviderClients,
        dispatcher: ActionDispatcher | None = None,
        *,
        dispatch_timeout: float | None = None,
    ) -> None:
        self.clients = clients
        self.dispatcher = dispatcher or ActionDispatcher(clients)
        self.dispatch_timeout = (
            dispatch_timeout if dispatch_timeout is not None else settings.DISPATCH_TIMEOUT_SECONDS
        )

    # -------------------------------------------------------------------------
    # Direct / ClickUp webhooks
    # -------------------------------------------------------------------------

    async def handle_direct_webhook(
        self, db: Session, webhook_id: str, payload: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Process a webhook addressed to one automation."""
        automation = automation_service.get_automation_by_webhook_id(db, webhook_id)
        if automation is None:
            logger.info(
                "No automation for webhook",
                extra=build_log_context(webhook_id=webhook_id, route="webhook"),
            )
            return {"status": DispatchOutcome.NOT_FOUND.value}

        context = build_log_context(
            automation_id=str(automation.id), webhook_id=webhook_id, route="webhook"
        )
        if not automation.is_active:
            logger.info("Automation is not active", extra=context)
            return {"status": DispatchOutcome.INACTIVE.value}

        payload = payload if isinstance(payload, dict) else {}
        event_key = None

        if automation_service.is_clickup_trigger(automation.trigger_type):
            try:
                config = automation.trigger
                if not isinstance(config, ClickUpTaskTriggerConfig):
                    raise ConfigurationError(f"Invalid ClickUp trigger_config for {automation.trigger_type}")
            except ConfigurationError as e:
                return self._record_failure(db, automation, payload, e, mark_error=True)

            outcome = evaluate_clickup_payload(payload, config)
            if outcome is not None:
                logger.info(
                    f"ClickUp event {payload.get('event')} skipped: {outcome.value}", extra=context
                )
                return {"status": outcome.value}

            trigger_data = build_clickup_trigger_data(payload)
            event_key = clickup_event_key(payload)
        else:
            trigger_data = payload

        if event_key and not automation_service.claim_delivery(db, automation.id, event_key):
            logger.info("Duplicate delivery ignored", extra=context)
            return {"status": DispatchOutcome.DUPLICATE.value}

        result = await self.run_action(db, automation, trigger_data)
        return {"status": DispatchOutcome.PROCESSED.value, **result}

    # -------------------------------------------------------------------------
    # Gmail push
    # -------------------------------------------------------------------------

    async def handle_gmail_push(self, db: Session, body: dict[str, Any]) -> dict[str, Any]:
        """Process a Pub/Sub push for a mailbox across the owner's Gmail automations."""
        envelope = decode_pubsub_envelope(body)
        email_address = envelope["emailAddress"]
        history_id = str(envelope["historyId"]) if envelope.get("historyId") else None

        logger.info(f"Gmail push notification for {mask_email(email_address)}")

        profile = profile_service.get_profile_by_google_email(db, email_address)
        if profile is None:
            logger.info(f"No profile for {mask_email(email_address)}")
            return {"status": DispatchOutcome.NO_USER.value}

        automations = automation_service.list_active_gmail_automations(db, profile.id)
        if not automations:
            logger.info(
                "No active Gmail automations",
                extra=build_log_context(user_id=str(profile.id), route="gmail_push"),
            )
            return {"status": DispatchOutcome.NO_AUTOMATIONS.value}

        results: list[dict[str, Any]] = []
        for automation in automations:
            automation_id = str(automation.id)
            try:
                results.extend(
                    await self._process_gmail_automation(db, automation, profile, history_id)
                )
            except Exception as e:
                db.rollback()
                logger.exception(
                    f"Gmail push processing failed: {e}",
                    extra=build_log_context(automation_id=automation_id, route="gmail_push"),
                )
                results.append(
                    {"automation_id": automation_id, "error": str(e) or e.__class__.__name__}
                )
        return {"status": DispatchOutcome.PROCESSED.value, "results": results}

    async def _process_gmail_automation(
        self,
        db: Session,
        automation: Automation,
        profile: Profile,
        envelope_history_id: str | None,
    ) -> list[dict[str, Any]]:
        automation_id = str(automation.id)
        context = build_log_context(
            automation_id=automation_id, user_id=str(profile.id), route="gmail_push"
        )

        try:
            config = automation.trigger
            profile_service.require_google_token(profile)
        except ConfigurationError as e:
            failure = self._record_failure(db, automation, None, e, mark_error=True)
            return [{"automation_id": automation_id, **failure}]

        start_history_id = watch_service.max_history_id(
            automation.gmail_history_id, envelope_history_id
        )
        if not start_history_id:
            return [{"automation_id": automation_id, "error": "No history cursor available"}]

        try:
            message_ids, latest_history_id = await watch_service.call_with_google_token(
                db,
                profile,
                self.clients,
                lambda token: self.clients.gmail.list_history(token, start_history_id),
            )
        except ProviderError as e:
            if e.status_code == 404 and envelope_history_id:
                # Cursor too old for the history API; resume from the notification
                watch_service.advance_history_cursor(db, automation, envelope_history_id)
            logger.error(f"Gmail history listing failed: {e}", extra=context)
            return [{"automation_id": automation_id, "error": str(e)}]
        except (AutomationError, httpx.HTTPError) as e:
            logger.error(f"Gmail history listing failed: {e}", extra=context)
            return [{"automation_id": automation_id, "error": str(e)}]

        # Cursor moves before any message is processed; a failure below may
        # drop a message but never replays one.
        watch_service.advance_history_cursor(
            db, automation, latest_history_id or envelope_history_id
        )

        results = []
        for message_id in message_ids:
            if not automation.is_active:
                break
            try:
                results.append(
                    await self._process_gmail_message(db, automation, profile, config, message_id)
                )
            except Exception as e:
                db.rollback()
                logger.exception(f"Gmail message {message_id} processing failed: {e}", extra=context)
                results.append(
                    {
                        "automation_id": automation_id,
                        "message_id": message_id,
                        "error": str(e) or e.__class__.__name__,
                    }
                )
        return results

    async def _process_gmail_message(
        self,
        db: Session,
        automation: Automation,
        profile: Profile,
        config,
        message_id: str,
    ) -> dict[str, Any]:
        automation_id = str(automation.id)
        base = {"automation_id": automation_id, "message_id": message_id}
        try:
            message = await watch_service.call_with_google_token(
                db,
                profile,
                self.clients,
                lambda token: self.clients.gmail.get_message(token, message_id),
            )
        except (AutomationError, httpx.HTTPError) as e:
            logger.error(
                f"Failed to fetch Gmail message {message_id}: {e}",
                extra=build_log_context(automation_id=automation_id, route="gmail_push"),
            )
            return {**base, "error": str(e)}

        email = extract_email_data(message)
        if not gmail_trigger_matches(email, config):
            return {**base, "status": DispatchOutcome.FILTERED.value}

        if not automation_service.claim_delivery(db, automation.id, f"gmail:{message_id}"):
            return {**base, "status": DispatchOutcome.DUPLICATE.value}

        outcome = await self.run_action(db, automation, {"email": email})
        return {**base, "status": DispatchOutcome.PROCESSED.value, **outcome}

    # -------------------------------------------------------------------------
    # Action stage
    # -------------------------------------------------------------------------

    async def run_action(
        self, db: Session, automation: Automation, trigger_data: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Dispatch the action under the per-dispatch timeout and record the run.

        Never raises for action failures; they become error log rows.
        """
        started_at = datetime.now(timezone.utc)
        context = build_log_context(automation_id=str(automation.id), event=automation.action_type)

        try:
            profile = profile_service.get_profile(db, automation.user_id)
            if profile is None:
                raise ConfigurationError("User profile not found")
            result = await asyncio.wait_for(
                self.dispatcher.dispatch(db, automation, profile, trigger_data),
                timeout=self.dispatch_timeout,
            )
        except ConfigurationError as e:
            return self._record_failure(
                db, automation, trigger_data, e, started_at=started_at, mark_error=True
            )
        except asyncio.TimeoutError:
            error = TimeoutError(f"Action timed out after {self.dispatch_timeout:g}s")
            return self._record_failure(db, automation, trigger_data, error, started_at=started_at)
        except (AutomationError, httpx.HTTPError) as e:
            return self._record_failure(db, automation, trigger_data, e, started_at=started_at)
        except Exception as e:
            logger.exception(
                f"Unexpected action failure: {e}",
                extra=build_log_context(automation_id=str(automation.id), event=automation.action_type),
            )
            return self._record_failure(db, automation, trigger_data, e, started_at=started_at)

        automation_service.record_run(
            db,
            automation,
            status=AutomationLogStatus.SUCCESS,
            trigger_data=trigger_data,
            action_result=result,
            started_at=started_at,
        )
        logger.info("Action succeeded", extra=context)
        return {"success": True, "result": result}

    def _record_failure(
        self,
        db: Session,
        automation: Automation,
        trigger_data: dict[str, Any] | None,
        error: Exception,
        *,
        started_at: datetime | None = None,
        mark_error: bool = False,
    ) -> dict[str, Any]:
        message = str(error) or error.__class__.__name__
        # Discard anything half-written by the failed attempt
        db.rollback()
        automation_service.record_run(
            db,
            automation,
            status=AutomationLogStatus.ERROR,
            trigger_data=trigger_data,
            error_message=message,
            started_at=started_at or datetime.now(timezone.utc),
            mark_error=mark_error,
        )
        logger.error(
            f"Action failed: {message}",
            extra=build_log_context(automation_id=str(automation.id), event=automation.action_type),
        )
        return {"success": False, "error": message}
