"""initial_schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18 09:00:00.000000

Users, tasks and their recurring instances, approvals, comments,
attachments, per-task notification settings and the audit trail.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('roles', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_first_login', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('password_expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'tasks',
        _id(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', sa.String(length=100), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('frequency', sa.String(length=20), nullable=False, server_default='one-time'),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('assigned_to', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('checker1', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('checker2', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('observation_status', sa.String(length=20), nullable=True),
        sa.Column('is_escalated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('escalation_priority', sa.String(length=20), nullable=True),
        sa.Column('escalation_reason', sa.Text(), nullable=True),
        sa.Column('escalated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalated_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('current_instance_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('next_instance_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        # Segregation of duties, enforced by the database as well.
        sa.CheckConstraint('assigned_to <> checker1 AND assigned_to <> checker2 AND checker1 <> checker2', name='ck_tasks_distinct_assignees'),
    )
    op.create_index('ix_tasks_category', 'tasks', ['category'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_due_date', 'tasks', ['due_date'])
    op.create_index('ix_tasks_assigned_to', 'tasks', ['assigned_to'])
    op.create_index('ix_tasks_checker1', 'tasks', ['checker1'])
    op.create_index('ix_tasks_checker2', 'tasks', ['checker2'])

    op.create_table(
        'task_instances',
        _id(),
        sa.Column('base_task_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('assigned_to', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('checker1', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('checker2', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('observation_status', sa.String(length=20), nullable=True),
        sa.Column('instance_reference', sa.String(length=50), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
    )
    op.create_index('ix_task_instances_base_task_id', 'task_instances', ['base_task_id'])
    op.create_index('ix_task_instances_status', 'task_instances', ['status'])
    op.create_foreign_key(
        'fk_tasks_current_instance_id', 'tasks', 'task_instances',
        ['current_instance_id'], ['id'], ondelete='SET NULL',
    )

    op.create_table(
        'task_approvals',
        _id(),
        sa.Column('task_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('instance_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('task_instances.id', ondelete='CASCADE'), nullable=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('user_role', sa.String(length=20), nullable=False),
        sa.Column('decision', sa.String(length=20), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_task_approvals_task_id', 'task_approvals', ['task_id'])
    op.create_index('ix_task_approvals_instance_id', 'task_approvals', ['instance_id'])

    op.create_table(
        'task_comments',
        _id(),
        sa.Column('task_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('instance_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('task_instances.id', ondelete='CASCADE'), nullable=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])
    op.create_index('ix_task_comments_instance_id', 'task_comments', ['instance_id'])

    op.create_table(
        'task_attachments',
        _id(),
        sa.Column('task_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('instance_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('task_instances.id', ondelete='CASCADE'), nullable=True),
        sa.Column('uploaded_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('file_name', sa.String(length=500), nullable=False),
        sa.Column('file_type', sa.String(length=100), nullable=True),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('storage_key', sa.String(length=1000), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_task_attachments_task_id', 'task_attachments', ['task_id'])
    op.create_index('ix_task_attachments_instance_id', 'task_attachments', ['instance_id'])

    op.create_table(
        'task_notification_settings',
        _id(),
        sa.Column('task_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('enable_pre_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('pre_days', sa.JSON(), nullable=False),
        sa.Column('enable_post_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('post_notification_frequency', sa.String(length=10), nullable=False, server_default='daily'),
        sa.Column('send_emails', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_maker', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_checker1', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_checker2', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'audit_logs',
        _id(),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('actor_email', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=100), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('task_notification_settings')
    op.drop_table('task_attachments')
    op.drop_table('task_comments')
    op.drop_table('task_approvals')
    op.drop_constraint('fk_tasks_current_instance_id', 'tasks', type_='foreignkey')
    op.drop_table('task_instances')
    op.drop_table('tasks')
    op.drop_table('users')
