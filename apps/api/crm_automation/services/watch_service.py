"""Watch service - Gmail push watches and ClickUp webhook registrations.

Owns the provider-side subscriptions that deliver events to this API and
the state needed to resume after them: the Gmail history cursor and watch
expiry, and the ClickUp webhook id.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TypeVar

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from crm_automation.core.config import settings
from crm_automation.core.exceptions import (
    AutomationError,
    ConfigurationError,
    ProviderAuthError,
    ProviderError,
    TokenRefreshError,
)
from crm_automation.core.structured_logging import build_log_context
from crm_automation.db.enums import AutomationStatus, RenewalStatus, TriggerType
from crm_automation.db.models import Automation, Profile
from crm_automation.schemas.automation import (
    ClickUpTaskTriggerConfig,
    WatchRenewalResponse,
    WatchRenewalResult,
)
from crm_automation.services import profile_service
from crm_automation.services.provider_clients import ProviderClients
from crm_automation.services.trigger_matching import trigger_type_to_clickup_events

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Callback URLs
# =============================================================================


def automation_webhook_url(webhook_id: str) -> str:
    """Direct ingestion URL for an automation."""
    return f"{settings.app_base_url}/webhooks/automation?webhook_id={webhook_id}"


def clickup_callback_url(webhook_id: str) -> str:
    """URL registered with ClickUp for an automation's webhook."""
    return f"{settings.app_base_url}/webhooks/clickup?webhook_id={webhook_id}"


# =============================================================================
# Google token use with one refresh-and-retry
# =============================================================================


async def call_with_google_token(
    db: Session,
    profile: Profile,
    clients: ProviderClients,
    call: Callable[[str], Awaitable[T]],
    *,
    access_token: str | None = None,
) -> T:
    """Run call(token); on a 401, refresh once and retry once.

    Without a refresh token the auth error propagates unchanged.
    """
    token = access_token or profile_service.require_google_token(profile)
    try:
        return await call(token)
    except ProviderAuthError:
        if not profile.google_refresh_token:
            raise
        logger.info(
            "Google token rejected, refreshing",
            extra=build_log_context(user_id=str(profile.id), event="google_auth_retry"),
        )
        token = await profile_service.refresh_google_access_token(
            db, profile, clients.google_oauth
        )
        return await call(token)


# =============================================================================
# Gmail history cursor
# =============================================================================


def _history_value(history_id: str | None) -> int:
    try:
        return int(history_id) if history_id else -1
    except (TypeError, ValueError):
        return -1


def max_history_id(*history_ids: str | None) -> str | None:
    """Numerically largest non-empty history id."""
    candidates = [str(h) for h in history_ids if h]
    if not candidates:
        return None
    return max(candidates, key=_history_value)


def advance_history_cursor(db: Session, automation: Automation, new_history_id: str | None) -> bool:
    """Move gmail_history_id forward; never backwards.

    Conditional on the prior value so a concurrent writer is not overwritten.
    Returns True when the stored cursor changed.
    """
    if not new_history_id:
        return False
    new_history_id = str(new_history_id)
    current = automation.gmail_history_id
    if current and _history_value(new_history_id) <= _history_value(current):
        return False

    stmt = update(Automation).where(Automation.id == automation.id)
    if current is None:
        stmt = stmt.where(Automation.gmail_history_id.is_(None))
    else:
        stmt = stmt.where(Automation.gmail_history_id == current)
    result = db.execute(
        stmt.values(gmail_history_id=new_history_id).execution_options(
            synchronize_session=False
        )
    )
    db.commit()
    db.refresh(automation)

    if result.rowcount == 0:
        logger.info(
            "History cursor changed concurrently, not advancing",
            extra=build_log_context(automation_id=str(automation.id), event="gmail_cursor"),
        )
        return False
    return True


# =============================================================================
# Gmail watch
# =============================================================================


def _expiration_from_ms(expiration: str | int | None) -> datetime | None:
    if not expiration:
        return None
    return datetime.fromtimestamp(int(expiration) / 1000, tz=timezone.utc)


async def setup_gmail_watch(
    db: Session,
    automation: Automation,
    profile: Profile,
    clients: ProviderClients,
    *,
    access_token: str | None = None,
) -> dict:
    """
    Register (or renew) the Gmail push watch for an automation.

    An expired access token is refreshed once and the registration retried
    once; any other failure propagates. On success the history cursor and
    watch expiry are stored.

    Callers in the creation flow must put the automation in error status
    when this raises.
    """
    watch = await call_with_google_token(
        db,
        profile,
        clients,
        lambda token: clients.gmail.watch(token),
        access_token=access_token,
    )

    advance_history_cursor(db, automation, watch.get("historyId"))
    automation.gmail_watch_expiration = _expiration_from_ms(watch.get("expiration"))
    db.commit()

    logger.info(
        "Gmail watch registered",
        extra=build_log_context(
            automation_id=str(automation.id), user_id=str(profile.id), event="gmail_watch"
        ),
    )
    return watch


async def stop_gmail_watch(access_token: str | None, clients: ProviderClients) -> bool:
    """Best-effort stop of the mailbox watch. Returns False on failure."""
    if not access_token:
        return False
    try:
        await clients.gmail.stop(access_token)
    except (ProviderError, httpx.HTTPError) as e:
        logger.warning(f"Failed to stop Gmail watch: {e}")
        return False
    return True


async def renew_gmail_watches(
    db: Session, clients: ProviderClients, *, now: datetime | None = None
) -> WatchRenewalResponse:
    """
    Renew Gmail watches expiring within the lookahead window.

    Automations are grouped by owner so each user's token is refreshed
    once. A failed renewal puts only that automation in error status.
    """
    now = now or datetime.now(timezone.utc)
    threshold = now + timedelta(hours=settings.GMAIL_WATCH_RENEW_LOOKAHEAD_HOURS)

    automations = (
        db.query(Automation)
        .filter(
            Automation.trigger_type.in_(TriggerType.gmail_family()),
            Automation.status == AutomationStatus.ACTIVE.value,
            Automation.gmail_watch_expiration.is_not(None),
            Automation.gmail_watch_expiration < threshold,
        )
        .order_by(Automation.gmail_watch_expiration)
        .all()
    )

    if not automations:
        return WatchRenewalResponse(message="No Gmail watches need renewal", renewed=0, failed=0)

    logger.info(f"Found {len(automations)} Gmail watches to renew")

    by_user: dict = {}
    for automation in automations:
        by_user.setdefault(automation.user_id, []).append(automation)

    results: list[WatchRenewalResult] = []
    for user_id, user_automations in by_user.items():
        profile = profile_service.get_profile(db, user_id)
        if not profile or not profile.google_access_token:
            results.extend(
                WatchRenewalResult(
                    automation_id=a.id,
                    status=RenewalStatus.ERROR.value,
                    error="No Google tokens found",
                )
                for a in user_automations
            )
            continue

        access_token = profile.google_access_token
        if profile.google_refresh_token:
            try:
                access_token = await profile_service.refresh_google_access_token(
                    db, profile, clients.google_oauth
                )
            except TokenRefreshError as e:
                # The stored token may still be valid
                logger.warning(
                    f"Token refresh failed before watch renewal: {e}",
                    extra=build_log_context(user_id=str(user_id), event="gmail_watch_renewal"),
                )

        for automation in user_automations:
            results.append(
                await _renew_one(db, automation, profile, clients, access_token)
            )

    renewed = sum(1 for r in results if r.status == RenewalStatus.RENEWED.value)
    failed = sum(1 for r in results if r.status == RenewalStatus.ERROR.value)
    return WatchRenewalResponse(
        message=f"Processed {len(results)} Gmail watches",
        renewed=renewed,
        failed=failed,
        results=results,
    )


async def _renew_one(
    db: Session,
    automation: Automation,
    profile: Profile,
    clients: ProviderClients,
    access_token: str,
) -> WatchRenewalResult:
    automation_id = automation.id
    try:
        await setup_gmail_watch(db, automation, profile, clients, access_token=access_token)
    except (AutomationError, httpx.HTTPError) as e:
        db.rollback()
        automation.status = AutomationStatus.ERROR.value
        automation.last_error = f"Gmail watch renewal failed: {e}"
        db.commit()
        logger.error(
            f"Failed to renew Gmail watch: {e}",
            extra=build_log_context(automation_id=str(automation_id), event="gmail_watch_renewal"),
        )
        return WatchRenewalResult(
            automation_id=automation_id, status=RenewalStatus.ERROR.value, error=str(e)
        )

    return WatchRenewalResult(automation_id=automation_id, status=RenewalStatus.RENEWED.value)


# =============================================================================
# ClickUp webhook
# =============================================================================


async def setup_clickup_webhook_for_automation(
    db: Session,
    automation: Automation,
    access_token: str,
    clients: ProviderClients,
) -> str:
    """Register a ClickUp webhook pointing at this automation and store its id."""
    config = automation.trigger
    if not isinstance(config, ClickUpTaskTriggerConfig):
        raise ConfigurationError(f"Not a ClickUp trigger: {automation.trigger_type}")

    events = config.events or trigger_type_to_clickup_events(automation.trigger_type)
    result = await clients.clickup.create_webhook(
        access_token,
        config.team_id,
        clickup_callback_url(automation.webhook_id),
        events,
        space_id=config.space_id,
        folder_id=config.folder_id,
        list_id=config.list_id,
    )

    provider_id = (result.get("webhook") or {}).get("id") or result.get("id")
    if not provider_id:
        raise ProviderError("clickup", 200, "webhook id missing from response", action="create webhook")

    automation.clickup_webhook_id = str(provider_id)
    db.commit()

    logger.info(
        "ClickUp webhook registered",
        extra=build_log_context(
            automation_id=str(automation.id), webhook_id=automation.webhook_id, event="clickup_webhook"
        ),
    )
    return automation.clickup_webhook_id


async def remove_clickup_webhook_for_automation(
    db: Session,
    automation: Automation,
    access_token: str | None,
    clients: ProviderClients,
) -> None:
    """Best-effort provider delete; the stored webhook id is cleared regardless."""
    provider_id = automation.clickup_webhook_id
    if not provider_id:
        return

    if access_token:
        try:
            await clients.clickup.delete_webhook(access_token, provider_id)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(
                f"Failed to delete ClickUp webhook {provider_id}: {e}",
                extra=build_log_context(automation_id=str(automation.id), event="clickup_webhook"),
            )
    else:
        logger.warning(
            "No ClickUp token, skipping provider webhook delete",
            extra=build_log_context(automation_id=str(automation.id), event="clickup_webhook"),
        )

    automation.clickup_webhook_id = None
    db.commit()
