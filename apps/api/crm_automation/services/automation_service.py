"""Automation service - CRUD, provisioning, execution logs, and delivery dedupe."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_automation.core.config import settings
from crm_automation.core.exceptions import AutomationError, ConfigurationError
from crm_automation.core.security import generate_webhook_id, generate_webhook_secret
from crm_automation.core.structured_logging import build_log_context
from crm_automation.db.enums import AutomationLogStatus, AutomationStatus, TriggerType
from crm_automation.db.models import Automation, AutomationLog, Profile, WebhookDelivery
from crm_automation.schemas.automation import (
    AutomationCreate,
    AutomationRead,
    ClickUpCreateTaskActionConfig,
    GmailEmailTriggerConfig,
    GmailLabelTriggerConfig,
    ScheduleTriggerConfig,
    SendEmailActionConfig,
)
from crm_automation.services import profile_service, watch_service
from crm_automation.services.provider_clients import ProviderClients
from crm_automation.services.trigger_matching import trigger_type_to_clickup_events

logger = logging.getLogger(__name__)

GMAIL_WATCH_FAILED_WARNING = (
    "Automation created but Gmail watch setup failed. Please reconnect Gmail."
)
CLICKUP_WEBHOOK_FAILED_WARNING = (
    "Automation created but ClickUp webhook setup failed. Please reconnect ClickUp."
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from the database as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_gmail_trigger(trigger_type: str) -> bool:
    return trigger_type in TriggerType.gmail_family()


def is_clickup_trigger(trigger_type: str) -> bool:
    return trigger_type in TriggerType.clickup_family()


# =============================================================================
# Queries
# =============================================================================


def list_automations(db: Session, user_id: UUID) -> list[Automation]:
    return (
        db.query(Automation)
        .filter(Automation.user_id == user_id)
        .order_by(Automation.created_at.desc())
        .all()
    )


def get_automation(db: Session, automation_id: UUID, user_id: UUID | None = None) -> Automation | None:
    query = db.query(Automation).filter(Automation.id == automation_id)
    if user_id is not None:
        query = query.filter(Automation.user_id == user_id)
    return query.first()


def get_automation_by_webhook_id(db: Session, webhook_id: str) -> Automation | None:
    if not webhook_id:
        return None
    return db.query(Automation).filter(Automation.webhook_id == webhook_id).first()


def list_gmail_automations(db: Session, user_id: UUID) -> list[Automation]:
    """Every Gmail-triggered automation of the user, whatever its status."""
    return (
        db.query(Automation)
        .filter(
            Automation.user_id == user_id,
            Automation.trigger_type.in_(TriggerType.gmail_family()),
        )
        .order_by(Automation.created_at)
        .all()
    )


def list_active_gmail_automations(db: Session, user_id: UUID) -> list[Automation]:
    return (
        db.query(Automation)
        .filter(
            Automation.user_id == user_id,
            Automation.trigger_type.in_(TriggerType.gmail_family()),
            Automation.status == AutomationStatus.ACTIVE.value,
        )
        .order_by(Automation.created_at)
        .all()
    )


def list_logs(db: Session, automation_id: UUID, limit: int = 20) -> list[AutomationLog]:
    """Newest first."""
    return (
        db.query(AutomationLog)
        .filter(AutomationLog.automation_id == automation_id)
        .order_by(AutomationLog.started_at.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# Create / status / delete
# =============================================================================


async def create_automation(
    db: Session,
    profile: Profile,
    data: AutomationCreate,
    clients: ProviderClients,
) -> tuple[Automation, str | None]:
    """
    Create an automation and provision its provider subscription.

    Returns (automation, warning). A failed provisioning step leaves the
    automation in error status and produces a warning instead of raising.

    Raises:
        ConfigurationError: the trigger's provider is not connected
    """
    trigger_type = data.trigger_type.value
    trigger_config = dict(data.trigger_config)

    if is_gmail_trigger(trigger_type) and not profile.google_access_token:
        raise ConfigurationError("Gmail not connected. Please connect Gmail first.")
    if is_clickup_trigger(trigger_type):
        if not profile.clickup_access_token:
            raise ConfigurationError("ClickUp not connected. Please connect ClickUp first.")
        if not trigger_config.get("events"):
            trigger_config["events"] = trigger_type_to_clickup_events(trigger_type)

    automation = Automation(
        user_id=profile.id,
        name=data.name,
        description=data.description,
        trigger_type=trigger_type,
        trigger_config=trigger_config,
        action_type=data.action_type.value,
        action_config=dict(data.action_config),
        webhook_id=generate_webhook_id(),
        webhook_secret=generate_webhook_secret(),
        status=AutomationStatus.ACTIVE.value,
    )
    db.add(automation)
    db.commit()
    db.refresh(automation)

    logger.info(
        "Automation created",
        extra=build_log_context(
            automation_id=str(automation.id), user_id=str(profile.id), event=trigger_type
        ),
    )

    warning = await _provision(db, automation, profile, clients)
    return automation, warning


async def _provision(
    db: Session, automation: Automation, profile: Profile, clients: ProviderClients
) -> str | None:
    if is_gmail_trigger(automation.trigger_type):
        try:
            await watch_service.setup_gmail_watch(db, automation, profile, clients)
        except (AutomationError, httpx.HTTPError) as e:
            _mark_setup_failed(db, automation, f"Gmail watch setup failed: {e}")
            return GMAIL_WATCH_FAILED_WARNING

    elif is_clickup_trigger(automation.trigger_type):
        try:
            await watch_service.setup_clickup_webhook_for_automation(
                db, automation, profile_service.require_clickup_token(profile), clients
            )
        except (AutomationError, httpx.HTTPError) as e:
            _mark_setup_failed(db, automation, f"ClickUp webhook setup failed: {e}")
            return CLICKUP_WEBHOOK_FAILED_WARNING

    return None


def _mark_setup_failed(db: Session, automation: Automation, message: str) -> None:
    db.rollback()
    automation.status = AutomationStatus.ERROR.value
    automation.last_error = message
    db.commit()
    logger.error(
        message,
        extra=build_log_context(automation_id=str(automation.id), event="provisioning"),
    )


async def update_status(
    db: Session,
    automation: Automation,
    status: AutomationStatus,
    clients: ProviderClients,
    *,
    now: datetime | None = None,
) -> tuple[Automation, str | None]:
    """
    Change status. Resuming re-provisions a lapsed Gmail watch or a missing
    ClickUp webhook; if that fails the automation lands in error status.
    """
    automation.status = status.value
    db.commit()

    warning = None
    if status == AutomationStatus.ACTIVE and _needs_provisioning(automation, now or _now_utc()):
        profile = profile_service.get_profile(db, automation.user_id)
        if profile is None:
            raise ConfigurationError("User profile not found")
        warning = await _provision(db, automation, profile, clients)

    db.refresh(automation)
    return automation, warning


def _needs_provisioning(automation: Automation, now: datetime) -> bool:
    if is_gmail_trigger(automation.trigger_type):
        expiration = ensure_utc(automation.gmail_watch_expiration)
        return expiration is None or expiration <= now
    if is_clickup_trigger(automation.trigger_type):
        return not automation.clickup_webhook_id
    return False


async def delete_automation(db: Session, automation: Automation, clients: ProviderClients) -> None:
    """Tear down provider subscriptions (best effort), then delete the row and its logs."""
    profile = profile_service.get_profile(db, automation.user_id)

    if is_gmail_trigger(automation.trigger_type) and profile is not None:
        # The Gmail watch is per mailbox; keep it while any sibling remains, in any status
        siblings = [
            a for a in list_gmail_automations(db, automation.user_id) if a.id != automation.id
        ]
        if not siblings:
            await watch_service.stop_gmail_watch(profile.google_access_token, clients)

    if automation.clickup_webhook_id:
        await watch_service.remove_clickup_webhook_for_automation(
            db,
            automation,
            profile.clickup_access_token if profile else None,
            clients,
        )

    automation_id = automation.id
    db.delete(automation)
    db.commit()
    logger.info(
        "Automation deleted",
        extra=build_log_context(automation_id=str(automation_id), event="delete"),
    )


# =============================================================================
# Execution telemetry
# =============================================================================


def record_run(
    db: Session,
    automation: Automation,
    *,
    status: AutomationLogStatus,
    trigger_data: dict | None,
    started_at: datetime,
    action_result: dict | None = None,
    error_message: str | None = None,
    mark_error: bool = False,
) -> AutomationLog:
    """
    Append a log row and update run telemetry in one commit.

    run_count is incremented in SQL so concurrent dispatches do not lose
    counts. mark_error moves the automation to error status.
    """
    completed_at = _now_utc()
    log = AutomationLog(
        automation_id=automation.id,
        status=status.value,
        trigger_data=trigger_data,
        action_result=action_result,
        error_message=error_message,
        started_at=started_at,
        completed_at=completed_at,
        duration_ms=int((completed_at - started_at).total_seconds() * 1000),
    )
    db.add(log)

    automation.last_run_at = completed_at
    automation.run_count = Automation.run_count + 1
    automation.last_error = error_message if status == AutomationLogStatus.ERROR else None
    if mark_error:
        automation.status = AutomationStatus.ERROR.value

    db.commit()
    db.refresh(automation)
    return log


# =============================================================================
# Delivery dedupe
# =============================================================================


def claim_delivery(
    db: Session, automation_id: UUID, event_key: str, *, now: datetime | None = None
) -> bool:
    """
    Record an inbound event; False when it was already seen within the TTL.

    Keys older than WEBHOOK_DEDUPE_TTL_HOURS are treated as new.
    """
    now = now or _now_utc()
    cutoff = now - timedelta(hours=settings.WEBHOOK_DEDUPE_TTL_HOURS)

    existing = (
        db.query(WebhookDelivery)
        .filter(
            WebhookDelivery.automation_id == automation_id,
            WebhookDelivery.event_key == event_key,
        )
        .first()
    )
    if existing is not None:
        if ensure_utc(existing.received_at) >= cutoff:
            return False
        existing.received_at = now
        db.commit()
        return True

    db.add(WebhookDelivery(automation_id=automation_id, event_key=event_key, received_at=now))
    try:
        db.commit()
    except IntegrityError:
        # Claimed concurrently
        db.rollback()
        return False
    return True


def prune_deliveries(db: Session, *, now: datetime | None = None) -> int:
    """Delete dedupe rows older than the retention window."""
    cutoff = (now or _now_utc()) - timedelta(hours=settings.WEBHOOK_DEDUPE_TTL_HOURS)
    deleted = (
        db.query(WebhookDelivery)
        .filter(WebhookDelivery.received_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


# =============================================================================
# Presentation
# =============================================================================


def describe_trigger(automation: Automation) -> str:
    config = automation.trigger
    if isinstance(config, GmailEmailTriggerConfig):
        parts = []
        if config.from_filter:
            parts.append(f'from "{config.from_filter}"')
        if config.to_filter:
            parts.append(f'to "{config.to_filter}"')
        if config.subject_contains:
            parts.append(f'with subject containing "{config.subject_contains}"')
        if config.has_attachment:
            parts.append("with attachments")
        if config.is_reply is True:
            parts.append("that is a reply")
        return f"you receive an email {' '.join(parts)}" if parts else "you receive any email"
    if isinstance(config, GmailLabelTriggerConfig):
        return f'an email is labeled "{config.label_name or config.label_id}"'
    if isinstance(config, ScheduleTriggerConfig):
        return f"scheduled ({config.cron_expression})"

    clickup_phrases = {
        TriggerType.CLICKUP_TASK_CREATED.value: "a ClickUp task is created",
        TriggerType.CLICKUP_TASK_UPDATED.value: "a ClickUp task is updated",
        TriggerType.CLICKUP_TASK_DELETED.value: "a ClickUp task is deleted",
        TriggerType.CLICKUP_TASK_STATUS_UPDATED.value: "a ClickUp task status changes",
        TriggerType.CLICKUP_TASK_ASSIGNEE_UPDATED.value: "a ClickUp task assignee changes",
        TriggerType.CLICKUP_TASK_COMMENT_POSTED.value: "a comment is posted on a ClickUp task",
    }
    return clickup_phrases.get(automation.trigger_type, "trigger occurs")


def describe_action(automation: Automation) -> str:
    config = automation.action
    if isinstance(config, ClickUpCreateTaskActionConfig):
        return f'create a task "{config.title_template}" in {config.list_name or "ClickUp"}'
    if isinstance(config, SendEmailActionConfig):
        return "send an email"
    return "add a comment to the task"


def generate_summary(automation: Automation) -> str:
    """Human-readable "When <trigger>, <action>"."""
    try:
        return f"When {describe_trigger(automation)}, {describe_action(automation)}"
    except ConfigurationError:
        return "When trigger occurs, perform action"


def to_read(automation: Automation) -> AutomationRead:
    read = AutomationRead.model_validate(automation)
    read.webhook_url = watch_service.automation_webhook_url(automation.webhook_id)
    read.summary = generate_summary(automation)
    return read
