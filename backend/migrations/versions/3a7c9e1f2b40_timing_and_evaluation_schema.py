"""timing and evaluation schema

Revision ID: 3a7c9e1f2b40
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3a7c9e1f2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'team',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_table(
        'puzzle',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('puzzle_number', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('correct_answer', sa.String(length=255), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('hint_penalty_multiplier', sa.Float(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('level', 'puzzle_number', name='uq_puzzle_level_number'),
    )
    op.create_index('ix_puzzle_level', 'puzzle', ['level'])

    op.create_table(
        'submission',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('puzzle_id', sa.Integer(), nullable=False),
        sa.Column('submitted_answer', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('evaluation_status', sa.String(length=16), nullable=False),
        sa.Column('score_awarded', sa.Integer(), nullable=True),
        sa.Column('evaluated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.ForeignKeyConstraint(['puzzle_id'], ['puzzle.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_submission_team_id', 'submission', ['team_id'])
    op.create_index('ix_submission_puzzle_id', 'submission', ['puzzle_id'])

    op.create_table(
        'hint_usage',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('puzzle_id', sa.Integer(), nullable=False),
        sa.Column('hint_number', sa.Integer(), nullable=False),
        sa.Column('penalty_seconds', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.ForeignKeyConstraint(['puzzle_id'], ['puzzle.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_id', 'puzzle_id', 'hint_number', name='uq_hint_usage_team_puzzle_number'),
    )
    op.create_index('ix_hint_usage_team_id', 'hint_usage', ['team_id'])

    op.create_table(
        'team_question_progress',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('puzzle_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('first_started_at', sa.DateTime(), nullable=True),
        sa.Column('last_resumed_at', sa.DateTime(), nullable=True),
        sa.Column('last_paused_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('skip_count', sa.Integer(), nullable=False),
        sa.Column('skip_penalty_seconds', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.ForeignKeyConstraint(['puzzle_id'], ['puzzle.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_id', 'puzzle_id', name='uq_team_question_progress'),
    )
    op.create_index('ix_tqp_team_status', 'team_question_progress', ['team_id', 'status'])

    op.create_table(
        'team_session',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('session_start', sa.DateTime(), nullable=True),
        sa.Column('session_end', sa.DateTime(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(), nullable=True),
        sa.Column('active_time_seconds', sa.Integer(), nullable=False),
        sa.Column('total_skip_penalty_seconds', sa.Integer(), nullable=False),
        sa.Column('total_hint_penalty_seconds', sa.Integer(), nullable=False),
        sa.Column('questions_completed', sa.Integer(), nullable=False),
        sa.Column('questions_skipped', sa.Integer(), nullable=False),
        sa.Column('skips_used', sa.Integer(), nullable=False),
        sa.Column('hints_used', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_id'),
    )

    op.create_table(
        'game_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('setting_key', sa.String(length=100), nullable=False),
        sa.Column('setting_value', sa.Text(), nullable=False),
        sa.Column('setting_type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_settings_setting_key', 'game_settings', ['setting_key'], unique=True)

    op.create_table(
        'level_evaluation_status',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('level_id', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(length=32), nullable=False),
        sa.Column('submissions_closed_at', sa.DateTime(), nullable=True),
        sa.Column('evaluation_started_at', sa.DateTime(), nullable=True),
        sa.Column('evaluated_at', sa.DateTime(), nullable=True),
        sa.Column('results_published_at', sa.DateTime(), nullable=True),
        sa.Column('closed_by', sa.String(length=64), nullable=True),
        sa.Column('evaluated_by', sa.String(length=64), nullable=True),
        sa.Column('published_by', sa.String(length=64), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_level_evaluation_status_level_id', 'level_evaluation_status', ['level_id'], unique=True)

    op.create_table(
        'qualification_cutoff',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('level_id', sa.Integer(), nullable=False),
        sa.Column('min_score', sa.Integer(), nullable=False),
        sa.Column('max_time_seconds', sa.Integer(), nullable=False),
        sa.Column('min_accuracy', sa.Float(), nullable=False),
        sa.Column('max_hints_used', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('level_id'),
    )

    op.create_table(
        'qualification_decision',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('level_id', sa.Integer(), nullable=False),
        sa.Column('correct_answers', sa.Integer(), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('effective_time_seconds', sa.Integer(), nullable=False),
        sa.Column('hints_used', sa.Integer(), nullable=False),
        sa.Column('computed_status', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('overridden_by', sa.String(length=64), nullable=True),
        sa.Column('override_reason', sa.Text(), nullable=True),
        sa.Column('overridden_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_id', 'level_id', name='uq_qualification_decision_team_level'),
    )
    op.create_index('ix_qualification_decision_level_id', 'qualification_decision', ['level_id'])

    op.create_table(
        'qualification_audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('level_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('previous_status', sa.String(length=16), nullable=True),
        sa.Column('new_status', sa.String(length=16), nullable=True),
        sa.Column('performed_by', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('metrics_snapshot', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_qualification_audit_log_team_id', 'qualification_audit_log', ['team_id'])

    op.create_table(
        'evaluation_audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('level_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('admin_id', sa.String(length=64), nullable=True),
        sa.Column('teams_evaluated', sa.Integer(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_evaluation_audit_log_level_id', 'evaluation_audit_log', ['level_id'])

    op.create_table(
        'time_tracking_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('puzzle_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('time_before_seconds', sa.Integer(), nullable=False),
        sa.Column('time_after_seconds', sa.Integer(), nullable=False),
        sa.Column('time_delta_seconds', sa.Integer(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.ForeignKeyConstraint(['puzzle_id'], ['puzzle.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_time_tracking_event_event_type', 'time_tracking_event', ['event_type'])
    op.create_index('ix_tte_team_created', 'time_tracking_event', ['team_id', 'created_at'])


def downgrade():
    op.drop_index('ix_tte_team_created', table_name='time_tracking_event')
    op.drop_index('ix_time_tracking_event_event_type', table_name='time_tracking_event')
    op.drop_table('time_tracking_event')
    op.drop_index('ix_evaluation_audit_log_level_id', table_name='evaluation_audit_log')
    op.drop_table('evaluation_audit_log')
    op.drop_index('ix_qualification_audit_log_team_id', table_name='qualification_audit_log')
    op.drop_table('qualification_audit_log')
    op.drop_index('ix_qualification_decision_level_id', table_name='qualification_decision')
    op.drop_table('qualification_decision')
    op.drop_table('qualification_cutoff')
    op.drop_index('ix_level_evaluation_status_level_id', table_name='level_evaluation_status')
    op.drop_table('level_evaluation_status')
    op.drop_index('ix_game_settings_setting_key', table_name='game_settings')
    op.drop_table('game_settings')
    op.drop_table('team_session')
    op.drop_index('ix_tqp_team_status', table_name='team_question_progress')
    op.drop_table('team_question_progress')
    op.drop_index('ix_hint_usage_team_id', table_name='hint_usage')
    op.drop_table('hint_usage')
    op.drop_index('ix_submission_puzzle_id', table_name='submission')
    op.drop_index('ix_submission_team_id', table_name='submission')
    op.drop_table('submission')
    op.drop_index('ix_puzzle_level', table_name='puzzle')
    op.drop_table('puzzle')
    op.drop_table('team')
