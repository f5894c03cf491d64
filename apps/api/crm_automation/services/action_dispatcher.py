"""Action dispatcher - renders action templates and calls the provider."""

import logging
from typing import Any

from sqlalchemy.orm import Session

from crm_automation.core.exceptions import ConfigurationError
from crm_automation.core.structured_logging import build_log_context, mask_email
from crm_automation.db.models import Automation, Profile
from crm_automation.schemas.automation import (
    ClickUpAddCommentActionConfig,
    ClickUpCreateTaskActionConfig,
    SendEmailActionConfig,
)
from crm_automation.services import profile_service
from crm_automation.services.provider_clients import ProviderClients
from crm_automation.services.template_service import PLACEHOLDER_PATTERN, process_template
from crm_automation.services.watch_service import call_with_google_token

logger = logging.getLogger(__name__)


def coerce_assignee_ids(assignees: list[str] | None) -> list[int]:
    """ClickUp expects numeric user ids."""
    ids = []
    for assignee in assignees or []:
        try:
            ids.append(int(str(assignee).strip()))
        except ValueError:
            raise ConfigurationError(f"Invalid ClickUp assignee id: {assignee!r}")
    return ids


class ActionDispatcher:
    """Executes an automation's configured action against trigger data."""

    def __init__(self, clients: ProviderClients) -> None:
        self.clients = clients

    async def dispatch(
        self,
        db: Session,
        automation: Automation,
        profile: Profile,
        trigger_data: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Run the action and return the provider result.

        Raises:
            ConfigurationError: unknown action type, invalid config, missing token
            ProviderError: the provider rejected the call
            TokenRefreshError: a 401 could not be recovered by refreshing
        """
        config = automation.action
        context = build_log_context(
            automation_id=str(automation.id), user_id=str(profile.id), event=automation.action_type
        )
        logger.info("Dispatching action", extra=context)

        if isinstance(config, SendEmailActionConfig):
            return await self.send_email(db, profile, config, trigger_data)
        if isinstance(config, ClickUpCreateTaskActionConfig):
            return await self.create_task(profile, config, trigger_data)
        if isinstance(config, ClickUpAddCommentActionConfig):
            return await self.add_comment(profile, config, trigger_data)
        raise ConfigurationError(f"Unknown action type: {automation.action_type}")

    async def send_email(
        self,
        db: Session,
        profile: Profile,
        config: SendEmailActionConfig,
        trigger_data: dict[str, Any],
    ) -> dict[str, Any]:
        profile_service.require_google_token(profile)

        to = process_template(config.to_template, trigger_data).strip()
        subject = process_template(config.subject_template, trigger_data)
        body = process_template(config.body_template, trigger_data)
        if not to or PLACEHOLDER_PATTERN.search(to):
            raise ConfigurationError(f"Recipient template did not resolve: {config.to_template}")

        result = await call_with_google_token(
            db,
            profile,
            self.clients,
            lambda token: self.clients.gmail.send_message(
                token, to, subject, body, sender=profile.google_email
            ),
        )
        logger.info(f"Sent automation email to {mask_email(to)}")
        return {"message_id": result.get("id"), "thread_id": result.get("threadId"), "to": to}

    async def create_task(
        self,
        profile: Profile,
        config: ClickUpCreateTaskActionConfig,
        trigger_data: dict[str, Any],
    ) -> dict[str, Any]:
        token = profile_service.require_clickup_token(profile)

        task: dict[str, Any] = {"name": process_template(config.title_template, trigger_data)}
        if config.description_template:
            task["description"] = process_template(config.description_template, trigger_data)
        if config.priority is not None:
            task["priority"] = config.priority
        if config.assignees:
            task["assignees"] = coerce_assignee_ids(config.assignees)
        if config.tags:
            task["tags"] = config.tags

        result = await self.clients.clickup.create_task(token, config.list_id, task)
        return {
            "task_id": result.get("id"),
            "name": result.get("name", task["name"]),
            "url": result.get("url"),
        }

    async def add_comment(
        self,
        profile: Profile,
        config: ClickUpAddCommentActionConfig,
        trigger_data: dict[str, Any],
    ) -> dict[str, Any]:
        token = profile_service.require_clickup_token(profile)

        task_id = process_template(config.task_id, trigger_data).strip()
        if not task_id or PLACEHOLDER_PATTERN.search(task_id):
            raise ConfigurationError(f"Task id template did not resolve: {config.task_id}")
        comment = process_template(config.comment_template, trigger_data)

        result = await self.clients.clickup.add_comment(token, task_id, comment)
        return {"task_id": task_id, "comment_id": result.get("id")}
