"""SQLAlchemy ORM models for profiles, automations, and execution logs."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_automation.db.base import Base
from crm_automation.db.enums import AutomationStatus
from crm_automation.db.types import EncryptedString
from crm_automation.schemas.automation import (
    ActionConfig,
    TriggerConfig,
    parse_action_config,
    parse_trigger_config,
)


class Profile(Base):
    """
    One per user: provider tokens and account identifiers.

    Read by the engine to authenticate outbound calls; the Google access
    token is rewritten whenever the engine refreshes it.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        Index("idx_profiles_google_email", "google_email"),
        Index("idx_profiles_clickup_user_id", "clickup_user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ClickUp
    clickup_access_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    clickup_user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    clickup_username: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Google
    google_access_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    google_refresh_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    google_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    automations: Mapped[list["Automation"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan"
    )


class Automation(Base):
    """
    A user-owned trigger/action rule.

    trigger_config and action_config are stored as JSON but only ever written
    after validation against the typed config for trigger_type/action_type
    (see crm_automation.schemas.automation).
    """
    __tablename__ = "automations"
    __table_args__ = (
        UniqueConstraint("webhook_id", name="uq_automations_webhook_id"),
        Index("idx_automations_user_id", "user_id"),
        Index("idx_automations_gmail_watch", "gmail_watch_expiration"),
        Index("idx_automations_clickup_webhook_id", "clickup_webhook_id"),
        CheckConstraint(
            "status IN ('active', 'paused', 'error')",
            name="chk_automations_status",
        ),
        CheckConstraint("run_count >= 0", name="chk_automations_run_count"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )

    # Metadata
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Trigger
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_config: Mapped[dict] = mapped_column(default=dict, nullable=False)

    # Action
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_config: Mapped[dict] = mapped_column(default=dict, nullable=False)

    # Inbound callback identity (generated at creation, immutable)
    webhook_id: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_secret: Mapped[str] = mapped_column(String(128), nullable=False)

    # Gmail watch state (gmail_* triggers only)
    gmail_history_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gmail_watch_expiration: Mapped[datetime | None] = mapped_column(nullable=True)

    # ClickUp webhook registration (clickup_* triggers only)
    clickup_webhook_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # State
    status: Mapped[str] = mapped_column(
        String(20), default=AutomationStatus.ACTIVE.value, nullable=False
    )
    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_count: Mapped[int] = mapped_column(default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    profile: Mapped["Profile"] = relationship(back_populates="automations")
    logs: Mapped[list["AutomationLog"]] = relationship(
        back_populates="automation", cascade="all, delete-orphan", passive_deletes=True
    )
    deliveries: Mapped[list["WebhookDelivery"]] = relationship(
        back_populates="automation", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_active(self) -> bool:
        return self.status == AutomationStatus.ACTIVE.value

    @property
    def trigger(self) -> TriggerConfig:
        """Typed trigger config; raises ConfigurationError if the stored JSON is invalid."""
        return parse_trigger_config(self.trigger_type, self.trigger_config)

    @property
    def action(self) -> ActionConfig:
        return parse_action_config(self.action_type, self.action_config)


class AutomationLog(Base):
    """
    Append-only execution record.

    One row per dispatch attempt that reached the action stage. Never
    mutated; removed only by cascade when the automation is deleted.
    """
    __tablename__ = "automation_logs"
    __table_args__ = (
        Index("idx_automation_logs_automation_id", "automation_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    automation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger_data: Mapped[dict | None] = mapped_column(nullable=True)
    action_result: Mapped[dict | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(nullable=True)

    automation: Mapped["Automation"] = relationship(back_populates="logs")


class WebhookDelivery(Base):
    """
    Dedupe record for inbound provider events.

    A (automation_id, event_key) pair is accepted once; rows older than
    WEBHOOK_DEDUPE_TTL_HOURS are pruned.
    """
    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        UniqueConstraint("automation_id", "event_key", name="uq_webhook_delivery_event"),
        Index("idx_webhook_deliveries_received_at", "received_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    automation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )
    event_key: Mapped[str] = mapped_column(String(200), nullable=False)
    received_at: Mapped[datetime] = mapped_column(nullable=False)

    automation: Mapped["Automation"] = relationship(back_populates="deliveries")
