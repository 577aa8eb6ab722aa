"""Initial schema: users, projects, milestones, tasks, activity, time entries, notifications

Revision ID: a1f4c2d8e903
Revises:
Create Date: 2024-03-01T09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f4c2d8e903'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum('ADMIN', 'PROJECT_MANAGER', 'DEVELOPER', 'QC', 'DESIGNER', name='userrole')
project_status = sa.Enum('ACTIVE', 'ON_HOLD', 'COMPLETED', 'CANCELLED', name='projectstatus')
milestone_status = sa.Enum('PENDING', 'IN_PROGRESS', 'COMPLETED', name='milestonestatus')
task_status = sa.Enum('TODO', 'IN_PROGRESS', 'IN_REVIEW', 'COMPLETED', 'BLOCKED', name='taskstatus')
task_priority = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='taskpriority')
review_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'NEEDS_CHANGES', name='reviewstatus')
activity_action = sa.Enum(
    'CREATED', 'STATUS_CHANGED', 'ASSIGNEE_CHANGED', 'PRIORITY_CHANGED',
    'TIMER_STARTED', 'TIMER_STOPPED', 'DUE_DATE_CHANGED', 'DESCRIPTION_CHANGED',
    'TITLE_CHANGED', 'MILESTONE_CHANGED', 'REVIEW_STATUS_CHANGED', 'COMMENTED',
    'COMPLETED', 'UPDATED',
    name='activityaction',
)
notification_type = sa.Enum('TASK_ASSIGNED', 'TASK_REVIEWED', name='notificationtype')


def upgrade() -> None:
    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('hourly_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', project_status, nullable=False),
        sa.Column('created_by_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_name', 'projects', ['name'])

    # --- milestones ---
    op.create_table(
        'milestones',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('status', milestone_status, nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_milestones_project_id', 'milestones', ['project_id'])

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('milestone_id', sa.String(), sa.ForeignKey('milestones.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assignee_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_by_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', task_status, nullable=False),
        sa.Column('priority', task_priority, nullable=False),
        sa.Column('estimated_hours', sa.Numeric(8, 2), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_status', review_status, nullable=True),
        sa.Column('review_comment', sa.Text(), nullable=True),
        sa.Column('reviewed_by_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('has_bugs', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_milestone_id', 'tasks', ['milestone_id'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_review_status', 'tasks', ['review_status'])
    op.create_index('idx_task_project_status', 'tasks', ['project_id', 'status'])
    op.create_index('idx_task_assignee_status', 'tasks', ['assignee_id', 'status'])

    # --- task_comments ---
    op.create_table(
        'task_comments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    # --- task_activities (append-only) ---
    op.create_table(
        'task_activities',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('action', activity_action, nullable=False),
        sa.Column('field', sa.String(), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_activities_task_id', 'task_activities', ['task_id'])
    op.create_index('idx_activity_task_time', 'task_activities', ['task_id', 'created_at'])

    # --- time_entries ---
    op.create_table(
        'time_entries',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_billable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('duration_flagged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_time_entries_task_id', 'time_entries', ['task_id'])
    op.create_index('ix_time_entries_user_id', 'time_entries', ['user_id'])
    op.create_index('idx_time_entries_user_start', 'time_entries', ['user_id', 'start_time'])
    # At most one running entry per user
    op.create_index(
        'uq_time_entries_active_user', 'time_entries', ['user_id'],
        unique=True,
        postgresql_where=sa.text('end_time IS NULL'),
        sqlite_where=sa.text('end_time IS NULL'),
    )

    # --- notifications ---
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_index('uq_time_entries_active_user', table_name='time_entries')
    op.drop_table('time_entries')
    op.drop_table('task_activities')
    op.drop_table('task_comments')
    op.drop_table('tasks')
    op.drop_table('milestones')
    op.drop_table('projects')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in (
        notification_type, activity_action, review_status, task_priority,
        task_status, milestone_status, project_status, user_role,
    ):
        enum.drop(bind, checkfirst=True)
