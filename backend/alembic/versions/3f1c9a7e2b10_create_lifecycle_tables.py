"""create recommendation lifecycle tables

Revision ID: 3f1c9a7e2b10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c9a7e2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_LIVE_STATUSES = sa.text("status IN ('pending', 'approved', 'snoozed', 'scheduled')")


def upgrade() -> None:
    """Create recommendations, cloud_resources and action_audit_log."""

    op.create_table(
        'recommendations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('detection_id', sa.String(length=255), nullable=False),
        sa.Column('scenario_id', sa.String(length=100), nullable=False),
        sa.Column('scenario_name', sa.String(length=255), nullable=False),
        # Resource
        sa.Column('resource_type', sa.String(length=50), nullable=False),
        sa.Column('resource_id', sa.String(length=255), nullable=False),
        sa.Column('resource_name', sa.String(length=255), nullable=False),
        sa.Column('account_id', sa.String(length=255), nullable=False),
        sa.Column('region', sa.String(length=50), nullable=False),
        sa.Column('env', sa.String(length=50), nullable=False),
        # Content
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('ai_explanation', sa.Text(), nullable=True),
        # Scoring
        sa.Column('impact_level', sa.String(length=20), nullable=False),
        sa.Column('confidence', sa.Integer(), nullable=False),
        sa.Column('risk_level', sa.String(length=20), nullable=False),
        sa.Column('current_monthly_cost', sa.Float(), nullable=False),
        sa.Column('potential_savings', sa.Float(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        # Lifecycle
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('snoozed_until', sa.DateTime(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('user_notes', sa.Text(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=True),
        sa.Column('execution_result', sa.JSON(), nullable=True),
        # Execution lease
        sa.Column('claimed_by', sa.String(length=255), nullable=True),
        sa.Column('claim_expires_at', sa.DateTime(), nullable=True),
        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('actioned_by', sa.String(length=255), nullable=True),
        sa.CheckConstraint('confidence >= 0 AND confidence <= 100', name='ck_recommendations_confidence'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_recommendations_id'), 'recommendations', ['id'], unique=False)
    op.create_index(op.f('ix_recommendations_detection_id'), 'recommendations', ['detection_id'], unique=False)
    op.create_index(op.f('ix_recommendations_scenario_id'), 'recommendations', ['scenario_id'], unique=False)
    op.create_index(op.f('ix_recommendations_resource_type'), 'recommendations', ['resource_type'], unique=False)
    op.create_index(op.f('ix_recommendations_impact_level'), 'recommendations', ['impact_level'], unique=False)
    op.create_index(op.f('ix_recommendations_status'), 'recommendations', ['status'], unique=False)
    op.create_index('ix_recommendations_status_created', 'recommendations', ['status', 'created_at'], unique=False)
    # At most one live recommendation per detection
    op.create_index(
        'uq_recommendations_active_detection',
        'recommendations',
        ['detection_id'],
        unique=True,
        postgresql_where=_LIVE_STATUSES,
        sqlite_where=_LIVE_STATUSES,
    )

    op.create_table(
        'cloud_resources',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=False),
        sa.Column('resource_id', sa.String(length=255), nullable=False),
        sa.Column('resource_name', sa.String(length=255), nullable=True),
        sa.Column('account_id', sa.String(length=255), nullable=True),
        sa.Column('region', sa.String(length=50), nullable=True),
        sa.Column('env', sa.String(length=50), nullable=True),
        # Policy
        sa.Column('optimization_policy', sa.String(length=20), nullable=False),
        sa.Column('optimization_policy_locked', sa.Boolean(), nullable=False),
        # Control-plane attributes
        sa.Column('state', sa.JSON(), nullable=False),
        sa.Column('deleted', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('resource_type', 'resource_id', name='uq_cloud_resources_type_id')
    )
    op.create_index(op.f('ix_cloud_resources_id'), 'cloud_resources', ['id'], unique=False)
    op.create_index(op.f('ix_cloud_resources_resource_type'), 'cloud_resources', ['resource_type'], unique=False)
    op.create_index(op.f('ix_cloud_resources_resource_id'), 'cloud_resources', ['resource_id'], unique=False)
    op.create_index(op.f('ix_cloud_resources_env'), 'cloud_resources', ['env'], unique=False)

    op.create_table(
        'action_audit_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=False),
        sa.Column('resource_id', sa.String(length=255), nullable=False),
        sa.Column('resource_name', sa.String(length=255), nullable=True),
        sa.Column('scenario_id', sa.String(length=100), nullable=True),
        sa.Column('detection_id', sa.String(length=255), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('previous_state', sa.JSON(), nullable=True),
        sa.Column('new_state', sa.JSON(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('executed_by', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_action_audit_log_id'), 'action_audit_log', ['id'], unique=False)
    op.create_index(op.f('ix_action_audit_log_scenario_id'), 'action_audit_log', ['scenario_id'], unique=False)
    op.create_index(op.f('ix_action_audit_log_detection_id'), 'action_audit_log', ['detection_id'], unique=False)
    op.create_index(op.f('ix_action_audit_log_success'), 'action_audit_log', ['success'], unique=False)
    op.create_index('ix_action_audit_log_executed_at', 'action_audit_log', ['executed_at'], unique=False)
    op.create_index('ix_action_audit_log_resource', 'action_audit_log', ['resource_type', 'resource_id'], unique=False)


def downgrade() -> None:
    """Drop the lifecycle tables."""
    op.drop_table('action_audit_log')
    op.drop_table('cloud_resources')
    op.drop_index('uq_recommendations_active_detection', table_name='recommendations')
    op.drop_table('recommendations')
