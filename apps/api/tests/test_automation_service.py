"""Tests for automation service helpers: dedupe store, telemetry, summaries."""

from datetime import datetime, timedelta, timezone

import pytest

from crm_automation.core.config import settings
from crm_automation.db.enums import AutomationLogStatus, AutomationStatus, TriggerType
from crm_automation.db.models import WebhookDelivery
from crm_automation.services import automation_service


def test_claim_delivery_accepts_once(db, profile, make_automation):
    automation = make_automation(profile)

    assert automation_service.claim_delivery(db, automation.id, "gmail:m1") is True
    assert automation_service.claim_delivery(db, automation.id, "gmail:m1") is False
    assert automation_service.claim_delivery(db, automation.id, "gmail:m2") is True


def test_claim_delivery_is_scoped_per_automation(db, profile, make_automation):
    first = make_automation(profile, name="first")
    second = make_automation(profile, name="second")

    assert automation_service.claim_delivery(db, first.id, "gmail:m1") is True
    assert automation_service.claim_delivery(db, second.id, "gmail:m1") is True


def test_claim_delivery_reaccepts_after_ttl(db, profile, make_automation):
    automation = make_automation(profile)
    now = datetime.now(timezone.utc)
    later = now + timedelta(hours=settings.WEBHOOK_DEDUPE_TTL_HOURS + 1)

    assert automation_service.claim_delivery(db, automation.id, "clickup:h1", now=now) is True
    assert automation_service.claim_delivery(db, automation.id, "clickup:h1", now=later) is True
    assert automation_service.claim_delivery(db, automation.id, "clickup:h1", now=later) is False
    assert db.query(WebhookDelivery).count() == 1


def test_prune_deliveries(db, profile, make_automation):
    automation = make_automation(profile)
    now = datetime.now(timezone.utc)
    automation_service.claim_delivery(db, automation.id, "gmail:old", now=now - timedelta(days=3))
    automation_service.claim_delivery(db, automation.id, "gmail:new", now=now)

    assert automation_service.prune_deliveries(db, now=now) == 1
    assert [d.event_key for d in db.query(WebhookDelivery).all()] == ["gmail:new"]


def test_record_run_updates_telemetry(db, profile, make_automation):
    automation = make_automation(profile)
    started = datetime.now(timezone.utc)

    automation_service.record_run(
        db,
        automation,
        status=AutomationLogStatus.ERROR,
        trigger_data={"a": 1},
        started_at=started,
        error_message="ClickUp create task failed (500)",
    )
    assert automation.run_count == 1
    assert automation.last_error == "ClickUp create task failed (500)"
    assert automation.status == AutomationStatus.ACTIVE.value

    automation_service.record_run(
        db,
        automation,
        status=AutomationLogStatus.SUCCESS,
        trigger_data={"a": 2},
        started_at=started,
        action_result={"task_id": "t1"},
    )
    assert automation.run_count == 2
    assert automation.last_error is None
    assert automation.last_run_at is not None


def test_record_run_mark_error(db, profile, make_automation):
    automation = make_automation(profile)

    automation_service.record_run(
        db,
        automation,
        status=AutomationLogStatus.ERROR,
        trigger_data=None,
        started_at=datetime.now(timezone.utc),
        error_message="ClickUp not connected",
        mark_error=True,
    )

    assert automation.status == AutomationStatus.ERROR.value


@pytest.mark.parametrize(
    "overrides,expected",
    [
        (
            {},
            'When you receive any email, create a task "{{email.subject}}" in ClickUp',
        ),
        (
            {"trigger_config": {"subject_contains": "invoice", "has_attachment": True}},
            'When you receive an email with subject containing "invoice" with attachments, '
            'create a task "{{email.subject}}" in ClickUp',
        ),
        (
            {
                "trigger_type": TriggerType.GMAIL_LABEL.value,
                "trigger_config": {"label_id": "Label_7", "label_name": "Clients"},
                "action_type": "send_email",
                "action_config": {"to_template": "a@x.com", "subject_template": "", "body_template": ""},
            },
            'When an email is labeled "Clients", send an email',
        ),
        (
            {
                "trigger_type": TriggerType.CLICKUP_TASK_STATUS_UPDATED.value,
                "trigger_config": {"team_id": "T1", "events": ["taskStatusUpdated"]},
                "action_type": "clickup_add_comment",
                "action_config": {"task_id": "{{task.id}}", "comment_template": "Done"},
            },
            "When a ClickUp task status changes, add a comment to the task",
        ),
        (
            {"trigger_type": TriggerType.GMAIL_LABEL.value, "trigger_config": {}},
            "When trigger occurs, perform action",
        ),
    ],
)
def test_generate_summary(db, profile, make_automation, overrides, expected):
    automation = make_automation(profile, **overrides)
    assert automation_service.generate_summary(automation) == expected


def test_ensure_utc():
    naive = datetime(2026, 10, 1, 12, 0)
    assert automation_service.ensure_utc(naive).tzinfo == timezone.utc
    assert automation_service.ensure_utc(None) is None
