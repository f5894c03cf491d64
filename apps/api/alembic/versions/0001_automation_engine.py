"""Automation engine tables

Revision ID: 0001_automation_engine
Revises: 
Create Date: 2026-10-16

Profiles (provider tokens), automations, execution logs, and the
webhook delivery dedupe store.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_automation_engine'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create profiles, automations, automation_logs, webhook_deliveries."""

    # ==========================================================================
    # Profiles
    # ==========================================================================
    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('clickup_access_token', sa.Text(), nullable=True),
        sa.Column('clickup_user_id', sa.String(100), nullable=True),
        sa.Column('clickup_username', sa.String(255), nullable=True),
        sa.Column('google_access_token', sa.Text(), nullable=True),
        sa.Column('google_refresh_token', sa.Text(), nullable=True),
        sa.Column('google_email', sa.String(255), nullable=True),
        sa.Column('google_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_profiles_google_email', 'profiles', ['google_email'])
    op.create_index('idx_profiles_clickup_user_id', 'profiles', ['clickup_user_id'])

    # ==========================================================================
    # Automations
    # ==========================================================================
    op.create_table(
        'automations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('trigger_type', sa.String(50), nullable=False),
        sa.Column('trigger_config', JSON_TYPE, nullable=False),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('action_config', JSON_TYPE, nullable=False),
        sa.Column('webhook_id', sa.String(64), nullable=False),
        sa.Column('webhook_secret', sa.String(128), nullable=False),
        sa.Column('gmail_history_id', sa.String(64), nullable=True),
        sa.Column('gmail_watch_expiration', sa.DateTime(timezone=True), nullable=True),
        sa.Column('clickup_webhook_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('run_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('webhook_id', name='uq_automations_webhook_id'),
        sa.CheckConstraint("status IN ('active', 'paused', 'error')", name='chk_automations_status'),
        sa.CheckConstraint('run_count >= 0', name='chk_automations_run_count'),
    )
    op.create_index('idx_automations_user_id', 'automations', ['user_id'])
    op.create_index('idx_automations_gmail_watch', 'automations', ['gmail_watch_expiration'])
    op.create_index('idx_automations_clickup_webhook_id', 'automations', ['clickup_webhook_id'])

    # ==========================================================================
    # Execution logs (append-only)
    # ==========================================================================
    op.create_table(
        'automation_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('automation_id', sa.Uuid(), sa.ForeignKey('automations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('trigger_data', JSON_TYPE, nullable=True),
        sa.Column('action_result', JSON_TYPE, nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
    )
    op.create_index('idx_automation_logs_automation_id', 'automation_logs', ['automation_id', 'started_at'])

    # ==========================================================================
    # Webhook delivery dedupe
    # ==========================================================================
    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('automation_id', sa.Uuid(), sa.ForeignKey('automations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_key', sa.String(200), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('automation_id', 'event_key', name='uq_webhook_delivery_event'),
    )
    op.create_index('idx_webhook_deliveries_received_at', 'webhook_deliveries', ['received_at'])


def downgrade() -> None:
    op.drop_table('webhook_deliveries')
    op.drop_table('automation_logs')
    op.drop_table('automations')
    op.drop_table('profiles')
