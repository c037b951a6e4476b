"""AgileFlow initial schema: projects, planning, tasks, boards, git shadow, saga ledger

Revision ID: e1a9c4b2d7f0
Revises:
Create Date: 2026-09-14 09:00:00.000000

New tables:
- projects, project_members
- sprints, epics
- agile_tasks, task_comments, work_logs
- boards, board_columns
- repositories, activity_items
- compensation_records
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = 'e1a9c4b2d7f0'
down_revision = None
branch_labels = None
depends_on = None


# Enum types are created once up front and referenced with create_type=False
ENUMS = {
    'projectstatus': ('active', 'archived'),
    'sprintstatus': ('planned', 'active', 'closed'),
    'epicstatus': ('open', 'in_progress', 'done', 'cancelled'),
    'tasktype': ('story', 'task', 'bug', 'epic', 'subtask'),
    'taskstatus': ('todo', 'in_progress', 'in_review', 'testing', 'done', 'cancelled'),
    'taskpriority': ('lowest', 'low', 'medium', 'high', 'highest'),
    'boardtype': ('kanban', 'scrum'),
    'repovisibility': ('public', 'private', 'internal'),
    'compensationaction': ('delete_repository', 'delete_project'),
    'compensationstatus': ('pending', 'executed', 'failed'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps(soft_delete: bool = True):
    cols = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]
    if soft_delete:
        cols.append(sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True))
    return cols


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── Projects ──────────────────────────────────────────────────────────────
    op.create_table(
        'projects',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('tenant_id', sa.String, nullable=False),
        sa.Column('key', sa.String(20), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('manager_id', sa.String, nullable=True),
        sa.Column('status', _enum('projectstatus'), nullable=False),
        sa.Column('task_sequence', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_by', sa.String, nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_projects_tenant_id', 'projects', ['tenant_id'])
    op.create_index('ix_projects_manager_id', 'projects', ['manager_id'])
    op.create_index('idx_project_tenant_key', 'projects', ['tenant_id', 'key'])
    op.create_index(
        'uq_project_tenant_key_live', 'projects', ['tenant_id', 'key'], unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
        sqlite_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'project_members',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String, nullable=False),
        sa.Column('role_id', sa.String, nullable=False),
        sa.Column('added_by', sa.String, nullable=True),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_member_project_user'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])

    # ── Planning ──────────────────────────────────────────────────────────────
    op.create_table(
        'sprints',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('goal', sa.Text, nullable=True),
        sa.Column('status', _enum('sprintstatus'), nullable=False),
        sa.Column('start_date', sa.Date, nullable=False),
        sa.Column('end_date', sa.Date, nullable=False),
        sa.Column('capacity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_by', sa.String, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_sprints_project_id', 'sprints', ['project_id'])
    op.create_index('idx_sprint_project_status', 'sprints', ['project_id', 'status'])

    op.create_table(
        'epics',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('status', _enum('epicstatus'), nullable=False),
        sa.Column('color', sa.String(7), nullable=True),
        sa.Column('start_date', sa.Date, nullable=True),
        sa.Column('end_date', sa.Date, nullable=True),
        sa.Column('goal', sa.Text, nullable=True),
        sa.Column('success_criteria', sa.Text, nullable=True),
        sa.Column('created_by', sa.String, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_epics_project_id', 'epics', ['project_id'])

    # ── Tasks ─────────────────────────────────────────────────────────────────
    op.create_table(
        'agile_tasks',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sprint_id', sa.String, sa.ForeignKey('sprints.id', ondelete='SET NULL'), nullable=True),
        sa.Column('epic_id', sa.String, sa.ForeignKey('epics.id', ondelete='SET NULL'), nullable=True),
        sa.Column('parent_id', sa.String, sa.ForeignKey('agile_tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('task_number', sa.Integer, nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('task_type', _enum('tasktype'), nullable=False),
        sa.Column('status', _enum('taskstatus'), nullable=False),
        sa.Column('priority', _enum('taskpriority'), nullable=False),
        sa.Column('story_points', sa.Integer, nullable=True),
        sa.Column('original_estimate', sa.Float, nullable=True),
        sa.Column('remaining_time', sa.Float, nullable=True),
        sa.Column('logged_time', sa.Float, nullable=False, server_default='0'),
        sa.Column('assignee_id', sa.String, nullable=True),
        sa.Column('reporter_id', sa.String, nullable=False),
        sa.Column('labels', sa.JSON, nullable=False),
        sa.Column('components', sa.JSON, nullable=False),
        sa.Column('acceptance_criteria', sa.JSON, nullable=False),
        sa.Column('rank', sa.String(128), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('project_id', 'task_number', name='uq_task_project_number'),
    )
    for col in ('project_id', 'sprint_id', 'epic_id', 'parent_id', 'assignee_id'):
        op.create_index(f'ix_agile_tasks_{col}', 'agile_tasks', [col])
    op.create_index('idx_task_scope_rank', 'agile_tasks', ['project_id', 'sprint_id', 'status', 'rank'])

    op.create_table(
        'task_comments',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('task_id', sa.String, sa.ForeignKey('agile_tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.String, nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('is_internal', sa.Boolean, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    op.create_table(
        'work_logs',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('task_id', sa.String, sa.ForeignKey('agile_tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String, nullable=False),
        sa.Column('time_spent', sa.Float, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('work_date', sa.Date, nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_work_logs_task_id', 'work_logs', ['task_id'])
    op.create_index('ix_work_logs_user_id', 'work_logs', ['user_id'])

    # ── Boards ────────────────────────────────────────────────────────────────
    op.create_table(
        'boards',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('board_type', _enum('boardtype'), nullable=False),
        sa.Column('created_by', sa.String, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_boards_project_id', 'boards', ['project_id'])

    op.create_table(
        'board_columns',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('board_id', sa.String, sa.ForeignKey('boards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('wip_limit', sa.Integer, nullable=True),
        sa.Column('status', _enum('taskstatus'), nullable=False),
        sa.Column('color', sa.String(7), nullable=True),
        *_timestamps(soft_delete=False),
        sa.UniqueConstraint('board_id', 'status', name='uq_column_board_status'),
    )
    op.create_index('ix_board_columns_board_id', 'board_columns', ['board_id'])
    op.create_index('idx_col_board_pos', 'board_columns', ['board_id', 'position'])

    # ── Git shadow & activity ─────────────────────────────────────────────────
    op.create_table(
        'repositories',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('visibility', _enum('repovisibility'), nullable=False),
        sa.Column('default_branch', sa.String, nullable=False),
        sa.Column('clone_url', sa.String, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_repositories_project_id', 'repositories', ['project_id'])

    op.create_table(
        'activity_items',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('event_id', sa.String, nullable=False),
        sa.Column('project_id', sa.String, nullable=False),
        sa.Column('repository_id', sa.String, nullable=True),
        sa.Column('event_type', sa.String(32), nullable=False),
        sa.Column('action', sa.String(64), nullable=False),
        sa.Column('actor_id', sa.String, nullable=True),
        sa.Column('summary', sa.String(500), nullable=False),
        sa.Column('details', sa.JSON, nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('event_id', 'event_type', 'action', name='uq_activity_event'),
    )
    op.create_index('ix_activity_items_project_id', 'activity_items', ['project_id'])
    op.create_index('ix_activity_items_repository_id', 'activity_items', ['repository_id'])
    op.create_index('ix_activity_items_created_at', 'activity_items', ['created_at'])

    # ── Saga compensation ledger ──────────────────────────────────────────────
    op.create_table(
        'compensation_records',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('saga_id', sa.String, nullable=False),
        sa.Column('project_id', sa.String, nullable=False),
        sa.Column('action', _enum('compensationaction'), nullable=False),
        sa.Column('resource_id', sa.String, nullable=False),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('status', _enum('compensationstatus'), nullable=False),
        sa.Column('retry_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer, nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_compensation_records_saga_id', 'compensation_records', ['saga_id'])
    op.create_index('ix_compensation_records_project_id', 'compensation_records', ['project_id'])
    op.create_index('idx_comp_status', 'compensation_records', ['status'])


def downgrade() -> None:
    op.drop_table('compensation_records')
    op.drop_table('activity_items')
    op.drop_table('repositories')
    op.drop_table('board_columns')
    op.drop_table('boards')
    op.drop_table('work_logs')
    op.drop_table('task_comments')
    op.drop_table('agile_tasks')
    op.drop_table('epics')
    op.drop_table('sprints')
    op.drop_table('project_members')
    op.drop_table('projects')

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
