"""Tests for the ClickUp adapter and webhook payload extraction."""

import json

import pytest

from crm_automation.core.exceptions import ProviderError
from crm_automation.services.clickup_service import (
    build_clickup_trigger_data,
    clickup_event_key,
    extract_clickup_changes,
    extract_clickup_task_data,
    format_change_summary,
)


def _payload(**overrides) -> dict:
    payload = {
        "event": "taskStatusUpdated",
        "task_id": "abc",
        "webhook_id": "wh1",
        "history_items": [
            {
                "id": "h2",
                "field": "status",
                "before": {"status": "open"},
                "after": {"status": "done"},
                "user": {"username": "alice"},
            },
            {
                "id": "h1",
                "field": "due_date",
                "before": None,
                "after": "1767225600000",
                "user": {"username": "bob"},
            },
        ],
        "task": {
            "id": "abc",
            "name": "Fix bug",
            "status": {"status": "done"},
            "creator": {"username": "alice"},
            "assignees": [{"username": "bob"}, {"username": "carol"}],
            "priority": {"priority": "high"},
            "list": {"id": "L1", "name": "Backlog"},
            "folder": {"id": "F1", "name": "Engineering"},
            "space": {"id": "S1", "name": "Product"},
            "url": "https://app.clickup.com/t/abc",
        },
    }
    payload.update(overrides)
    return payload


def test_extract_task_data():
    task = extract_clickup_task_data(_payload())

    assert task["id"] == "abc"
    assert task["name"] == "Fix bug"
    assert task["status"] == "done"
    assert task["assignees"] == "bob, carol"
    assert task["priority"] == "high"
    assert task["list_name"] == "Backlog"
    assert task["url"] == "https://app.clickup.com/t/abc"


def test_extract_task_data_without_task_uses_placeholders():
    task = extract_clickup_task_data({"event": "taskDeleted", "task_id": "gone"})

    assert task["id"] == "gone"
    assert task["name"] == "Unknown Task"
    assert task["url"] == "https://app.clickup.com/t/gone"


def test_change_summary_lines():
    changes = extract_clickup_changes(_payload())
    summary = format_change_summary(changes)

    assert summary.splitlines() == [
        '• **status** changed from "open" to "done" by alice',
        '• **due date** set to "1767225600000" by bob',
    ]


def test_change_summary_without_changes():
    assert format_change_summary([]) == "No specific changes recorded."


def test_build_trigger_data_shape():
    data = build_clickup_trigger_data(_payload())
    assert set(data) == {"task", "event", "changes", "change_summary"}
    assert data["event"] == "taskStatusUpdated"


def test_event_key_uses_sorted_history_ids():
    assert clickup_event_key(_payload()) == "clickup:h1,h2"


def test_event_key_without_history_is_deterministic():
    payload = _payload(history_items=[])
    first = clickup_event_key(payload)

    assert first == clickup_event_key(_payload(history_items=[]))
    assert first.startswith("clickup:")
    assert first != clickup_event_key(_payload(history_items=[], event="taskUpdated"))


@pytest.mark.asyncio
async def test_create_task_sends_raw_token(providers, clients):
    providers.add("POST", "/api/v2/list/L1/task", json={"id": "t1", "name": "Invoice #42"})

    result = await clients.clickup.create_task("clickup-access", "L1", {"name": "Invoice #42"})

    assert result["id"] == "t1"
    (request,) = providers.calls("POST", "/api/v2/list/L1/task")
    assert request.headers["Authorization"] == "clickup-access"
    assert json.loads(request.content) == {"name": "Invoice #42"}


@pytest.mark.asyncio
async def test_create_webhook_uses_narrowest_scope(providers, clients):
    providers.add("POST", "/api/v2/team/T1/webhook", json={"id": "wh1", "webhook": {"id": "wh1"}})

    await clients.clickup.create_webhook(
        "clickup-access",
        "T1",
        "https://automations.test/webhooks/clickup?webhook_id=x",
        ["taskCreated"],
        space_id="S1",
        list_id="L1",
    )

    (request,) = providers.calls("POST", "/api/v2/team/T1/webhook")
    body = json.loads(request.content)
    assert body["list_id"] == "L1"
    assert "space_id" not in body
    assert body["events"] == ["taskCreated"]


@pytest.mark.asyncio
async def test_delete_webhook_error_raises_provider_error(providers, clients):
    providers.add("DELETE", "/api/v2/webhook/wh1", 500, json={"err": "boom"})

    with pytest.raises(ProviderError) as exc_info:
        await clients.clickup.delete_webhook("clickup-access", "wh1")

    assert exc_info.value.status_code == 500
    assert "boom" in exc_info.value.detail
