"""Tests for automation management endpoints."""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from crm_automation.db.enums import AutomationLogStatus, AutomationStatus, TriggerType
from crm_automation.db.models import Automation, AutomationLog, Profile
from crm_automation.services.automation_service import GMAIL_WATCH_FAILED_WARNING

WATCH = "/gmail/v1/users/me/watch"
STOP = "/gmail/v1/users/me/stop"


def _watch_response(history_id: str = "500") -> dict:
    expiration = datetime.now(timezone.utc) + timedelta(days=7)
    return {"historyId": history_id, "expiration": str(int(expiration.timestamp() * 1000))}


def _gmail_create_body(**overrides) -> dict:
    body = {
        "name": "Invoices to ClickUp",
        "trigger_type": "gmail_email",
        "trigger_config": {"from_filter": "corp"},
        "action_type": "clickup_create_task",
        "action_config": {"list_id": "L1", "list_name": "Inbox", "title_template": "{{email.subject}}"},
    }
    body.update(overrides)
    return body


# =============================================================================
# Create
# =============================================================================


@pytest.mark.asyncio
async def test_create_gmail_automation_registers_watch(authed_client, providers):
    providers.add("POST", WATCH, json=_watch_response("500"))

    response = await authed_client.post("/automations", json=_gmail_create_body())

    assert response.status_code == 201
    body = response.json()
    assert body["warning"] is None
    automation = body["automation"]
    assert automation["status"] == "active"
    assert automation["gmail_history_id"] == "500"
    assert automation["gmail_watch_expiration"] is not None
    assert automation["trigger_config"] == {"from_filter": "corp"}
    assert automation["webhook_url"] == (
        f"https://automations.test/webhooks/automation?webhook_id={automation['webhook_id']}"
    )
    assert automation["summary"] == (
        'When you receive an email from "corp", create a task "{{email.subject}}" in Inbox'
    )
    assert "webhook_secret" not in automation

    (watch_call,) = providers.calls("POST", WATCH)
    assert json.loads(watch_call.content)["labelIds"] == ["INBOX"]


@pytest.mark.asyncio
async def test_create_with_failed_watch_returns_warning(authed_client, db, providers):
    providers.add("POST", WATCH, 500, json={"error": "backend"})

    response = await authed_client.post("/automations", json=_gmail_create_body())

    assert response.status_code == 201
    body = response.json()
    assert body["warning"] == GMAIL_WATCH_FAILED_WARNING
    assert body["automation"]["status"] == "error"
    assert body["automation"]["last_error"].startswith("Gmail watch setup failed")
    assert db.query(Automation).count() == 1


@pytest.mark.asyncio
async def test_create_clickup_automation_registers_webhook(authed_client, providers):
    providers.add("POST", "/api/v2/team/9001/webhook", json={"id": "wh1", "webhook": {"id": "wh1"}})

    response = await authed_client.post(
        "/automations",
        json={
            "name": "New tasks to email",
            "trigger_type": "clickup_task_created",
            "trigger_config": {"team_id": 9001, "list_id": "L1"},
            "action_type": "send_email",
            "action_config": {
                "to_template": "ops@bigcorp.com",
                "subject_template": "New task: {{task.name}}",
                "body_template": "{{task.url}}",
            },
        },
    )

    assert response.status_code == 201
    automation = response.json()["automation"]
    assert automation["clickup_webhook_id"] == "wh1"
    assert automation["trigger_config"]["team_id"] == "9001"
    assert automation["trigger_config"]["events"] == ["taskCreated"]
    assert automation["summary"] == "When a ClickUp task is created, send an email"

    (webhook_call,) = providers.calls("POST", "/api/v2/team/9001/webhook")
    registered = json.loads(webhook_call.content)
    assert registered["endpoint"] == (
        f"https://automations.test/webhooks/clickup?webhook_id={automation['webhook_id']}"
    )
    assert registered["events"] == ["taskCreated"]
    assert registered["list_id"] == "L1"


@pytest.mark.asyncio
async def test_create_rejects_invalid_trigger_config(authed_client, db):
    response = await authed_client.post(
        "/automations",
        json=_gmail_create_body(trigger_type="gmail_label", trigger_config={}),
    )

    assert response.status_code == 422
    assert db.query(Automation).count() == 0


@pytest.mark.asyncio
async def test_create_rejects_unknown_action_type(authed_client):
    response = await authed_client.post(
        "/automations", json=_gmail_create_body(action_type="send_sms")
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_requires_connected_gmail(authed_client, db, profile, providers):
    profile.google_access_token = None
    db.commit()

    response = await authed_client.post("/automations", json=_gmail_create_body())

    assert response.status_code == 400
    assert "Gmail not connected" in response.json()["detail"]
    assert providers.requests == []


# =============================================================================
# Read
# =============================================================================


@pytest.mark.asyncio
async def test_requires_session(client):
    response = await client.get("/automations")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_only_returns_own_automations(authed_client, db, profile, make_automation):
    make_automation(profile, name="mine")
    other = Profile(id=uuid.uuid4(), email="b@x.com")
    db.add(other)
    db.commit()
    theirs = make_automation(other, name="theirs")

    response = await authed_client.get("/automations")

    assert response.status_code == 200
    assert [a["name"] for a in response.json()] == ["mine"]

    response = await authed_client.get(f"/automations/{theirs.id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_logs_newest_first_with_limit(authed_client, db, profile, make_automation):
    automation = make_automation(profile)
    start = datetime(2026, 10, 1, tzinfo=timezone.utc)
    for i in range(3):
        db.add(
            AutomationLog(
                automation_id=automation.id,
                status=AutomationLogStatus.SUCCESS.value,
                trigger_data={"n": i},
                started_at=start + timedelta(minutes=i),
            )
        )
    db.commit()

    response = await authed_client.get(f"/automations/{automation.id}/logs?limit=2")

    assert response.status_code == 200
    assert [log["trigger_data"]["n"] for log in response.json()] == [2, 1]


# =============================================================================
# Status
# =============================================================================


@pytest.mark.asyncio
async def test_pause_does_not_touch_provider(authed_client, providers, profile, make_automation):
    automation = make_automation(profile)

    response = await authed_client.patch(
        f"/automations/{automation.id}/status", json={"status": "paused"}
    )

    assert response.status_code == 200
    assert response.json()["automation"]["status"] == "paused"
    assert providers.requests == []


@pytest.mark.asyncio
async def test_resume_reregisters_lapsed_watch(authed_client, providers, profile, make_automation):
    automation = make_automation(
        profile,
        status=AutomationStatus.PAUSED.value,
        gmail_history_id="100",
        gmail_watch_expiration=datetime.now(timezone.utc) - timedelta(days=1),
    )
    providers.add("POST", WATCH, json=_watch_response("640"))

    response = await authed_client.patch(
        f"/automations/{automation.id}/status", json={"status": "active"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["warning"] is None
    assert body["automation"]["status"] == "active"
    assert body["automation"]["gmail_history_id"] == "640"
    assert len(providers.calls("POST", WATCH)) == 1


@pytest.mark.asyncio
async def test_resume_with_failed_watch_lands_in_error(authed_client, providers, profile, make_automation):
    automation = make_automation(profile, status=AutomationStatus.PAUSED.value)
    providers.add("POST", WATCH, 403, json={"error": "forbidden"})

    response = await authed_client.patch(
        f"/automations/{automation.id}/status", json={"status": "active"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["warning"] == GMAIL_WATCH_FAILED_WARNING
    assert body["automation"]["status"] == "error"


@pytest.mark.asyncio
async def test_status_rejects_unknown_value(authed_client, profile, make_automation):
    automation = make_automation(profile)

    response = await authed_client.patch(
        f"/automations/{automation.id}/status", json={"status": "archived"}
    )
    assert response.status_code == 422


# =============================================================================
# Delete
# =============================================================================


@pytest.mark.asyncio
async def test_delete_stops_watch_and_removes_logs(authed_client, db, providers, profile, make_automation):
    automation = make_automation(profile)
    db.add(
        AutomationLog(
            automation_id=automation.id,
            status=AutomationLogStatus.SUCCESS.value,
            started_at=datetime.now(timezone.utc),
        )
    )
    db.commit()
    providers.add("POST", STOP, json={})

    response = await authed_client.delete(f"/automations/{automation.id}")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert len(providers.calls("POST", STOP)) == 1
    assert db.query(Automation).count() == 0
    assert db.query(AutomationLog).count() == 0


@pytest.mark.asyncio
async def test_delete_keeps_watch_for_sibling_gmail_automations(authed_client, db, providers, profile, make_automation):
    automation = make_automation(profile, name="one")
    make_automation(profile, name="two")

    response = await authed_client.delete(f"/automations/{automation.id}")

    assert response.status_code == 200
    assert providers.calls("POST", STOP) == []
    assert db.query(Automation).count() == 1


@pytest.mark.asyncio
async def test_delete_keeps_watch_for_paused_sibling(authed_client, db, providers, profile, make_automation):
    expiration = datetime.now(timezone.utc) + timedelta(days=6)
    automation = make_automation(profile, name="one", gmail_watch_expiration=expiration)
    paused = make_automation(
        profile,
        name="two",
        status=AutomationStatus.PAUSED.value,
        gmail_history_id="100",
        gmail_watch_expiration=expiration,
    )

    response = await authed_client.delete(f"/automations/{automation.id}")
    assert response.status_code == 200
    assert providers.calls("POST", STOP) == []

    response = await authed_client.patch(
        f"/automations/{paused.id}/status", json={"status": "active"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["warning"] is None
    assert body["automation"]["status"] == "active"
    # Mailbox watch is still live, so resume needs no re-registration
    assert providers.calls("POST", WATCH) == []
    assert providers.calls("POST", STOP) == []


@pytest.mark.asyncio
async def test_delete_last_gmail_automation_stops_watch_despite_other_triggers(
    authed_client, db, providers, profile, make_automation
):
    automation = make_automation(profile)
    make_automation(
        profile,
        trigger_type=TriggerType.CLICKUP_TASK_CREATED.value,
        trigger_config={"team_id": "T1"},
        status=AutomationStatus.PAUSED.value,
    )
    providers.add("POST", STOP, json={})

    response = await authed_client.delete(f"/automations/{automation.id}")

    assert response.status_code == 200
    assert len(providers.calls("POST", STOP)) == 1


@pytest.mark.asyncio
async def test_delete_survives_clickup_webhook_failure(authed_client, db, providers, profile, make_automation):
    automation = make_automation(
        profile,
        trigger_type=TriggerType.CLICKUP_TASK_UPDATED.value,
        trigger_config={"team_id": "T1", "events": ["taskUpdated"]},
        clickup_webhook_id="wh-9",
    )
    providers.add("DELETE", "/api/v2/webhook/wh-9", 500, json={"err": "down"})

    response = await authed_client.delete(f"/automations/{automation.id}")

    assert response.status_code == 200
    assert len(providers.calls("DELETE", "/api/v2/webhook/wh-9")) == 1
    assert db.query(Automation).count() == 0
