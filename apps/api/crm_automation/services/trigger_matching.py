"""Pure trigger predicates for inbound Gmail and ClickUp events."""

from __future__ import annotations

import logging
from typing import Any

from crm_automation.core.config import settings
from crm_automation.core.exceptions import ConfigurationError
from crm_automation.db.enums import ClickUpEvent, DispatchOutcome, TriggerType
from crm_automation.schemas.automation import (
    ClickUpTaskTriggerConfig,
    GmailEmailTriggerConfig,
    GmailLabelTriggerConfig,
)

logger = logging.getLogger(__name__)


TRIGGER_TO_CLICKUP_EVENTS: dict[str, list[str]] = {
    TriggerType.CLICKUP_TASK_CREATED.value: [ClickUpEvent.TASK_CREATED.value],
    TriggerType.CLICKUP_TASK_UPDATED.value: [ClickUpEvent.TASK_UPDATED.value],
    TriggerType.CLICKUP_TASK_DELETED.value: [ClickUpEvent.TASK_DELETED.value],
    TriggerType.CLICKUP_TASK_STATUS_UPDATED.value: [ClickUpEvent.TASK_STATUS_UPDATED.value],
    TriggerType.CLICKUP_TASK_ASSIGNEE_UPDATED.value: [ClickUpEvent.TASK_ASSIGNEE_UPDATED.value],
    TriggerType.CLICKUP_TASK_COMMENT_POSTED.value: [ClickUpEvent.TASK_COMMENT_POSTED.value],
}


def trigger_type_to_clickup_events(trigger_type: str, *, strict: bool | None = None) -> list[str]:
    """Map a trigger type to the ClickUp webhook events it subscribes to.

    Unknown types fall back to taskUpdated unless strict mapping is enabled.
    """
    events = TRIGGER_TO_CLICKUP_EVENTS.get(trigger_type)
    if events is not None:
        return list(events)
    if settings.STRICT_CLICKUP_EVENT_MAPPING if strict is None else strict:
        raise ConfigurationError(f"No ClickUp events mapped for trigger type: {trigger_type}")
    logger.warning("Unmapped ClickUp trigger type %s, defaulting to taskUpdated", trigger_type)
    return [ClickUpEvent.TASK_UPDATED.value]


# =============================================================================
# Gmail
# =============================================================================


def is_reply(in_reply_to: str | None, references: str | None) -> bool:
    """Heuristic: a message is a reply if it has In-Reply-To or any References token.

    Clients that strip these headers produce false negatives.
    """
    if in_reply_to and in_reply_to.strip():
        return True
    return bool((references or "").split())


def _contains(haystack: str | None, needle: str | None) -> bool:
    return needle.lower() in (haystack or "").lower()


def email_matches_trigger(email: dict[str, Any], config: GmailEmailTriggerConfig) -> bool:
    """All configured filters are ANDed; unset filters are ignored."""
    if config.from_filter and not _contains(email.get("from"), config.from_filter):
        return False
    if config.to_filter and not _contains(email.get("to"), config.to_filter):
        return False
    if config.subject_contains and not _contains(email.get("subject"), config.subject_contains):
        return False
    if config.has_attachment is not None and config.has_attachment != bool(
        email.get("has_attachment")
    ):
        return False
    if config.is_reply is not None and config.is_reply != bool(email.get("is_reply")):
        return False
    if config.label_ids:
        labels = set(email.get("label_ids") or [])
        if not set(config.label_ids).issubset(labels):
            return False
    return True


def email_matches_label(email: dict[str, Any], config: GmailLabelTriggerConfig) -> bool:
    return config.label_id in (email.get("label_ids") or [])


def gmail_trigger_matches(
    email: dict[str, Any], config: GmailEmailTriggerConfig | GmailLabelTriggerConfig
) -> bool:
    if isinstance(config, GmailLabelTriggerConfig):
        return email_matches_label(email, config)
    return email_matches_trigger(email, config)


# =============================================================================
# ClickUp
# =============================================================================


def _nested_id(task: dict[str, Any], key: str) -> str | None:
    container = task.get(key)
    if isinstance(container, dict) and container.get("id") is not None:
        return str(container["id"])
    return None


def clickup_scope_matches(payload: dict[str, Any], config: ClickUpTaskTriggerConfig) -> bool:
    """Re-check list/folder/space scope against the inbound task snapshot."""
    task = payload.get("task") or {}
    if config.list_id and _nested_id(task, "list") != config.list_id:
        return False
    if config.folder_id and _nested_id(task, "folder") != config.folder_id:
        return False
    if config.space_id and _nested_id(task, "space") != config.space_id:
        return False
    return True


def clickup_event_matches(payload: dict[str, Any], config: ClickUpTaskTriggerConfig) -> bool:
    return payload.get("event") in config.events


def evaluate_clickup_payload(
    payload: dict[str, Any], config: ClickUpTaskTriggerConfig
) -> DispatchOutcome | None:
    """Return the filter outcome for a ClickUp payload, or None when it should run."""
    if not clickup_scope_matches(payload, config):
        return DispatchOutcome.FILTERED
    if not clickup_event_matches(payload, config):
        return DispatchOutcome.EVENT_FILTERED
    return None
