"""ClickUp REST adapter, webhook registration, and payload extraction."""

import hashlib
import logging
from typing import Any

import httpx

from crm_automation.services.http_service import raise_for_provider, request_with_retries

logger = logging.getLogger(__name__)

CLICKUP_API_URL = "https://api.clickup.com/api/v2"
CLICKUP_TASK_URL = "https://app.clickup.com/t/{task_id}"

DEFAULT_SPACE_FEATURES = {
    "due_dates": {
        "enabled": True,
        "start_date": True,
        "remap_due_dates": True,
        "remap_closed_due_date": False,
    },
    "time_tracking": {"enabled": False},
    "tags": {"enabled": True},
    "time_estimates": {"enabled": False},
    "checklists": {"enabled": True},
    "custom_fields": {"enabled": True},
    "remap_dependencies": {"enabled": True},
    "dependency_warning": {"enabled": True},
    "portfolios": {"enabled": True},
}


class ClickUpClient:
    """
    ClickUp API v2 client.

    ClickUp OAuth tokens go in the Authorization header without a scheme.
    GETs are retried with backoff; writes are sent once.
    """

    def __init__(self, http: httpx.AsyncClient, base_url: str = CLICKUP_API_URL) -> None:
        self.http = http
        self.base_url = base_url

    async def _request(
        self,
        access_token: str,
        method: str,
        path: str,
        *,
        action: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": access_token}

        if method == "GET":
            response = await request_with_retries(
                lambda: self.http.get(url, headers=headers, params=params)
            )
        else:
            response = await self.http.request(
                method, url, headers=headers, json=json, params=params
            )
        raise_for_provider(response, "clickup", action)
        if not response.content:
            return {}
        return response.json()

    # -------------------------------------------------------------------------
    # Account / hierarchy
    # -------------------------------------------------------------------------

    async def get_user(self, access_token: str) -> dict[str, Any]:
        data = await self._request(access_token, "GET", "/user", action="get user")
        return data.get("user") or {}

    async def get_workspaces(self, access_token: str) -> dict[str, Any]:
        return await self._request(access_token, "GET", "/team", action="get workspaces")

    async def get_spaces(self, access_token: str, team_id: str) -> dict[str, Any]:
        return await self._request(
            access_token, "GET", f"/team/{team_id}/space", action="get spaces"
        )

    async def get_lists(self, access_token: str, space_id: str) -> dict[str, Any]:
        return await self._request(
            access_token, "GET", f"/space/{space_id}/list", action="get lists"
        )

    async def get_folder_lists(self, access_token: str, folder_id: str) -> dict[str, Any]:
        return await self._request(
            access_token, "GET", f"/folder/{folder_id}/list", action="get folder lists"
        )

    async def create_space(
        self, access_token: str, team_id: str, name: str, is_private: bool = False
    ) -> dict[str, Any]:
        return await self._request(
            access_token,
            "POST",
            f"/team/{team_id}/space",
            action="create space",
            json={
                "name": name,
                "multiple_assignees": True,
                "features": DEFAULT_SPACE_FEATURES,
                "private": is_private,
            },
        )

    async def create_folder(self, access_token: str, space_id: str, name: str) -> dict[str, Any]:
        return await self._request(
            access_token,
            "POST",
            f"/space/{space_id}/folder",
            action="create folder",
            json={"name": name},
        )

    async def create_list(
        self, access_token: str, parent_id: str, name: str, parent_type: str = "space"
    ) -> dict[str, Any]:
        if parent_type not in ("space", "folder"):
            raise ValueError(f"Unsupported list parent type: {parent_type}")
        return await self._request(
            access_token,
            "POST",
            f"/{parent_type}/{parent_id}/list",
            action="create list",
            json={"name": name},
        )

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def get_tasks(self, access_token: str, list_id: str) -> dict[str, Any]:
        return await self._request(
            access_token, "GET", f"/list/{list_id}/task", action="get tasks"
        )

    async def get_task(self, access_token: str, task_id: str) -> dict[str, Any]:
        return await self._request(access_token, "GET", f"/task/{task_id}", action="get task")

    async def create_task(
        self, access_token: str, list_id: str, task: dict[str, Any]
    ) -> dict[str, Any]:
        """Create a task. task carries name, description, priority, assignees, tags, due_date."""
        return await self._request(
            access_token, "POST", f"/list/{list_id}/task", action="create task", json=task
        )

    async def update_task(
        self, access_token: str, task_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request(
            access_token, "PUT", f"/task/{task_id}", action="update task", json=updates
        )

    async def add_comment(
        self, access_token: str, task_id: str, comment_text: str
    ) -> dict[str, Any]:
        return await self._request(
            access_token,
            "POST",
            f"/task/{task_id}/comment",
            action="add comment",
            json={"comment_text": comment_text},
        )

    async def search_tasks(self, access_token: str, team_id: str, query: str) -> dict[str, Any]:
        return await self._request(
            access_token,
            "GET",
            f"/team/{team_id}/task",
            action="search tasks",
            params={"query": query},
        )

    # -------------------------------------------------------------------------
    # Custom fields
    # -------------------------------------------------------------------------

    async def get_custom_fields(self, access_token: str, list_id: str) -> dict[str, Any]:
        return await self._request(
            access_token, "GET", f"/list/{list_id}/field", action="get custom fields"
        )

    async def set_custom_field_value(
        self, access_token: str, task_id: str, field_id: str, value: Any
    ) -> dict[str, Any]:
        return await self._request(
            access_token,
            "POST",
            f"/task/{task_id}/field/{field_id}",
            action="set custom field",
            json={"value": value},
        )

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    async def create_webhook(
        self,
        access_token: str,
        team_id: str,
        endpoint: str,
        events: list[str],
        *,
        space_id: str | None = None,
        folder_id: str | None = None,
        list_id: str | None = None,
    ) -> dict[str, Any]:
        """Register a webhook scoped to the narrowest of list, folder, space, or workspace."""
        body: dict[str, Any] = {"endpoint": endpoint, "events": events}
        if list_id:
            body["list_id"] = list_id
        elif folder_id:
            body["folder_id"] = folder_id
        elif space_id:
            body["space_id"] = space_id

        return await self._request(
            access_token, "POST", f"/team/{team_id}/webhook", action="create webhook", json=body
        )

    async def list_webhooks(self, access_token: str, team_id: str) -> dict[str, Any]:
        return await self._request(
            access_token, "GET", f"/team/{team_id}/webhook", action="list webhooks"
        )

    async def update_webhook(
        self,
        access_token: str,
        webhook_id: str,
        *,
        endpoint: str | None = None,
        events: list[str] | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        if endpoint is not None:
            updates["endpoint"] = endpoint
        if events is not None:
            updates["events"] = events
        if status is not None:
            updates["status"] = status
        return await self._request(
            access_token, "PUT", f"/webhook/{webhook_id}", action="update webhook", json=updates
        )

    async def delete_webhook(self, access_token: str, webhook_id: str) -> None:
        await self._request(
            access_token, "DELETE", f"/webhook/{webhook_id}", action="delete webhook"
        )


# =============================================================================
# Payload extraction
# =============================================================================


def _name(obj: Any, key: str = "name") -> str:
    if isinstance(obj, dict):
        return str(obj.get(key) or "")
    return ""


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        # history item values are often objects such as {"status": "done"}
        for key in ("status", "username", "name", "priority"):
            if value.get(key):
                return str(value[key])
    return str(value)


def extract_clickup_changes(payload: dict[str, Any]) -> list[dict[str, str]]:
    changes = []
    for item in payload.get("history_items") or []:
        changes.append(
            {
                "field": str(item.get("field") or ""),
                "before": _text(item.get("before")),
                "after": _text(item.get("after")),
                "user": _name(item.get("user"), "username") or "unknown",
            }
        )
    return changes


def extract_clickup_task_data(payload: dict[str, Any]) -> dict[str, Any]:
    """Task snapshot used by templates as ``task.*``.

    Payloads without a task object (e.g. taskDeleted) get placeholder values.
    """
    task = payload.get("task") or {}
    task_id = str(task.get("id") or payload.get("task_id") or "")

    if not task:
        return {
            "id": task_id,
            "name": "Unknown Task",
            "status": "unknown",
            "description": "",
            "url": CLICKUP_TASK_URL.format(task_id=task_id),
            "creator": "unknown",
            "assignees": "",
            "priority": "none",
            "due_date": "",
            "list_name": "Unknown",
            "folder_name": "Unknown",
            "space_name": "Unknown",
        }

    assignees = [_name(a, "username") for a in task.get("assignees") or []]
    return {
        "id": task_id,
        "name": task.get("name") or "",
        "status": _name(task.get("status"), "status") or "unknown",
        "description": task.get("description") or "",
        "url": task.get("url") or CLICKUP_TASK_URL.format(task_id=task_id),
        "creator": _name(task.get("creator"), "username") or "unknown",
        "assignees": ", ".join(a for a in assignees if a),
        "priority": _name(task.get("priority"), "priority") or "none",
        "due_date": str(task.get("due_date") or ""),
        "list_name": _name(task.get("list")),
        "folder_name": _name(task.get("folder")),
        "space_name": _name(task.get("space")),
    }


def format_change_summary(changes: list[dict[str, str]]) -> str:
    """One line per change, newline-joined."""
    if not changes:
        return "No specific changes recorded."

    lines = []
    for change in changes:
        field_name = change["field"].replace("_", " ")
        before, after, user = change["before"], change["after"], change["user"]
        if before and after:
            lines.append(f'• **{field_name}** changed from "{before}" to "{after}" by {user}')
        elif after:
            lines.append(f'• **{field_name}** set to "{after}" by {user}')
        elif before:
            lines.append(f'• **{field_name}** "{before}" was removed by {user}')
        else:
            lines.append(f"• **{field_name}** was modified by {user}")
    return "\n".join(lines)


def build_clickup_trigger_data(payload: dict[str, Any]) -> dict[str, Any]:
    changes = extract_clickup_changes(payload)
    return {
        "task": extract_clickup_task_data(payload),
        "event": payload.get("event") or "",
        "changes": changes,
        "change_summary": format_change_summary(changes),
    }


def clickup_event_key(payload: dict[str, Any]) -> str:
    """Deterministic delivery key for a ClickUp webhook payload.

    Uses the history item ids when present; otherwise hashes the task id,
    event name and the newest history/task timestamp.
    """
    history_ids = sorted(
        str(item["id"]) for item in payload.get("history_items") or [] if item.get("id")
    )
    if history_ids:
        key = "clickup:" + ",".join(history_ids)
        if len(key) <= 200:
            return key
        return "clickup:" + hashlib.sha256(key.encode()).hexdigest()

    task = payload.get("task") or {}
    parts = [
        str(payload.get("task_id") or task.get("id") or ""),
        str(payload.get("event") or ""),
        str(task.get("date_updated") or ""),
        str(payload.get("webhook_id") or ""),
    ]
    return "clickup:" + hashlib.sha256("|".join(parts).encode()).hexdigest()
