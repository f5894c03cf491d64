"""Enum definitions for application constants."""

from enum import Enum


class TriggerType(str, Enum):
    """Events that can trigger an automation."""
    GMAIL_EMAIL = "gmail_email"
    GMAIL_LABEL = "gmail_label"
    SCHEDULE = "schedule"
    CLICKUP_TASK_CREATED = "clickup_task_created"
    CLICKUP_TASK_UPDATED = "clickup_task_updated"
    CLICKUP_TASK_DELETED = "clickup_task_deleted"
    CLICKUP_TASK_STATUS_UPDATED = "clickup_task_status_updated"
    CLICKUP_TASK_ASSIGNEE_UPDATED = "clickup_task_assignee_updated"
    CLICKUP_TASK_COMMENT_POSTED = "clickup_task_comment_posted"

    @classmethod
    def gmail_family(cls) -> list[str]:
        """Trigger types fed by Gmail push notifications."""
        return [cls.GMAIL_EMAIL.value, cls.GMAIL_LABEL.value]

    @classmethod
    def clickup_family(cls) -> list[str]:
        """Trigger types fed by ClickUp webhooks."""
        return [t.value for t in cls if t.value.startswith("clickup_")]

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class ActionType(str, Enum):
    """Actions an automation can execute."""
    CLICKUP_CREATE_TASK = "clickup_create_task"
    CLICKUP_ADD_COMMENT = "clickup_add_comment"
    SEND_EMAIL = "send_email"


class AutomationStatus(str, Enum):
    """
    Automation lifecycle status.

    - ACTIVE: the only state in which matched events are acted on
    - PAUSED: user-paused
    - ERROR: entered on unrecoverable setup/execution failure
    """
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class AutomationLogStatus(str, Enum):
    """Execution log result."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ClickUpEvent(str, Enum):
    """ClickUp webhook event names."""
    TASK_CREATED = "taskCreated"
    TASK_UPDATED = "taskUpdated"
    TASK_DELETED = "taskDeleted"
    TASK_STATUS_UPDATED = "taskStatusUpdated"
    TASK_ASSIGNEE_UPDATED = "taskAssigneeUpdated"
    TASK_COMMENT_POSTED = "taskCommentPosted"


class DispatchOutcome(str, Enum):
    """Terminal state reached by one inbound event."""
    NOT_FOUND = "not_found"
    INACTIVE = "automation_inactive"
    FILTERED = "filtered_out"
    EVENT_FILTERED = "event_filtered"
    DUPLICATE = "duplicate"
    PROCESSED = "processed"
    NO_USER = "no_user"
    NO_AUTOMATIONS = "no_automations"


class RenewalStatus(str, Enum):
    """Per-automation Gmail watch renewal result."""
    RENEWED = "renewed"
    ERROR = "error"
