"""Pydantic schemas for automations.

Trigger and action configs are one model per trigger_type / action_type.
Raw JSON from storage or the API is always parsed through
parse_trigger_config / parse_action_config before it is used.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from crm_automation.core.exceptions import ConfigurationError
from crm_automation.db.enums import ActionType, AutomationStatus, TriggerType


# =============================================================================
# Trigger Config Schemas
# =============================================================================


class GmailEmailTriggerConfig(BaseModel):
    """Config for gmail_email trigger. Every set field must match (AND)."""

    from_filter: str | None = None
    to_filter: str | None = None
    subject_contains: str | None = None
    has_attachment: bool | None = None
    is_reply: bool | None = None
    label_ids: list[str] | None = None


class GmailLabelTriggerConfig(BaseModel):
    """Config for gmail_label trigger."""

    label_id: str = Field(min_length=1)
    label_name: str | None = None


class ScheduleTriggerConfig(BaseModel):
    """Config for schedule trigger."""

    cron_expression: str = Field(min_length=1, description="Cron expression, e.g., '0 9 * * 1'")
    timezone: str = Field(default="UTC", description="IANA timezone")


class ClickUpTaskTriggerConfig(BaseModel):
    """Config for clickup_* triggers.

    team_id is the workspace; list/folder/space narrow the webhook scope.
    events holds the resolved ClickUp event names.
    """

    team_id: str = Field(min_length=1)
    space_id: str | None = None
    folder_id: str | None = None
    list_id: str | None = None
    events: list[str] = Field(default_factory=list)

    @field_validator("team_id", "space_id", "folder_id", "list_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: object) -> object:
        # ClickUp returns numeric ids in some payloads
        if isinstance(v, int):
            return str(v)
        return v


TriggerConfig = (
    GmailEmailTriggerConfig
    | GmailLabelTriggerConfig
    | ScheduleTriggerConfig
    | ClickUpTaskTriggerConfig
)

TRIGGER_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    TriggerType.GMAIL_EMAIL.value: GmailEmailTriggerConfig,
    TriggerType.GMAIL_LABEL.value: GmailLabelTriggerConfig,
    TriggerType.SCHEDULE.value: ScheduleTriggerConfig,
    **{value: ClickUpTaskTriggerConfig for value in TriggerType.clickup_family()},
}


# =============================================================================
# Action Config Schemas
# =============================================================================


class ClickUpCreateTaskActionConfig(BaseModel):
    """Config for clickup_create_task action."""

    list_id: str = Field(min_length=1)
    list_name: str | None = None
    title_template: str = Field(min_length=1)  # e.g., "{{email.subject}}"
    description_template: str | None = None  # e.g., "From: {{email.from}}\n\n{{email.body}}"
    priority: Literal[1, 2, 3, 4] | None = None  # 1=urgent, 2=high, 3=normal, 4=low
    assignees: list[str] | None = None
    tags: list[str] | None = None

    @field_validator("list_id", mode="before")
    @classmethod
    def coerce_list_id(cls, v: object) -> object:
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("assignees", mode="before")
    @classmethod
    def coerce_assignees(cls, v: object) -> object:
        if isinstance(v, list):
            return [str(item) for item in v]
        return v


class ClickUpAddCommentActionConfig(BaseModel):
    """Config for clickup_add_comment action. task_id may itself be a template."""

    task_id: str = Field(min_length=1)
    comment_template: str = Field(min_length=1)


class SendEmailActionConfig(BaseModel):
    """Config for send_email action."""

    to_template: str = Field(min_length=1)
    subject_template: str
    body_template: str


ActionConfig = (
    ClickUpCreateTaskActionConfig
    | ClickUpAddCommentActionConfig
    | SendEmailActionConfig
)

ACTION_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    ActionType.CLICKUP_CREATE_TASK.value: ClickUpCreateTaskActionConfig,
    ActionType.CLICKUP_ADD_COMMENT.value: ClickUpAddCommentActionConfig,
    ActionType.SEND_EMAIL.value: SendEmailActionConfig,
}


def parse_trigger_config(trigger_type: str, config: dict | None) -> TriggerConfig:
    """Validate raw trigger config JSON into its typed variant."""
    model = TRIGGER_CONFIG_MODELS.get(trigger_type)
    if model is None:
        raise ConfigurationError(f"Unknown trigger type: {trigger_type}")
    try:
        return model.model_validate(config or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid trigger_config for {trigger_type}: {e}") from e


def parse_action_config(action_type: str, config: dict | None) -> ActionConfig:
    """Validate raw action config JSON into its typed variant."""
    model = ACTION_CONFIG_MODELS.get(action_type)
    if model is None:
        raise ConfigurationError(f"Unknown action type: {action_type}")
    try:
        return model.model_validate(config or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid action_config for {action_type}: {e}") from e


# =============================================================================
# Automation CRUD Schemas
# =============================================================================


class AutomationCreate(BaseModel):
    """Schema for creating an automation."""

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    action_type: ActionType
    action_config: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_configs(self) -> "AutomationCreate":
        try:
            trigger = parse_trigger_config(self.trigger_type.value, self.trigger_config)
            action = parse_action_config(self.action_type.value, self.action_config)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
        self.trigger_config = trigger.model_dump(exclude_none=True)
        self.action_config = action.model_dump(exclude_none=True)
        return self


class AutomationStatusUpdate(BaseModel):
    """Schema for a status change (pause/resume)."""

    status: AutomationStatus


class AutomationRead(BaseModel):
    """Schema for reading an automation."""

    id: UUID
    user_id: UUID
    name: str
    description: str | None
    trigger_type: str
    trigger_config: dict
    action_type: str
    action_config: dict
    webhook_id: str
    webhook_url: str | None = None
    summary: str | None = None
    gmail_history_id: str | None
    gmail_watch_expiration: datetime | None
    clickup_webhook_id: str | None
    status: str
    last_run_at: datetime | None
    last_error: str | None
    run_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AutomationCreateResponse(BaseModel):
    """Create response; warning is set when provisioning failed."""

    automation: AutomationRead
    warning: str | None = None


class AutomationLogRead(BaseModel):
    """Schema for reading an execution log."""

    id: UUID
    automation_id: UUID
    status: str
    trigger_data: dict | None
    action_result: dict | None
    error_message: str | None
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None

    model_config = {"from_attributes": True}


# =============================================================================
# Scheduled renewal
# =============================================================================


class WatchRenewalResult(BaseModel):
    automation_id: UUID
    status: str
    error: str | None = None


class WatchRenewalResponse(BaseModel):
    message: str
    renewed: int
    failed: int
    results: list[WatchRenewalResult] = Field(default_factory=list)
