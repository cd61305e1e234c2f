"""initial compliance tables

Revision ID: 20261019_0001
Revises: 
Create Date: 2026-10-19 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'learner_profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('full_name', sa.String(length=180), nullable=False, server_default=''),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='learner'),
        sa.Column('compliance_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('learnership_start_date', sa.Date(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_learner_profiles_id', 'learner_profiles', ['id'])
    op.create_index('ix_learner_profiles_email', 'learner_profiles', ['email'], unique=True)
    op.create_index('ix_learner_profiles_role', 'learner_profiles', ['role'])
    op.create_index('ix_learner_profiles_active', 'learner_profiles', ['active'])

    op.create_table(
        'learner_document_requirements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('learner_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('document_type', sa.String(length=40), nullable=False),
        sa.UniqueConstraint('learner_id', 'document_type', name='uq_learner_document_requirements_learner_type'),
    )
    op.create_index('ix_learner_document_requirements_id', 'learner_document_requirements', ['id'])
    op.create_index('ix_learner_document_requirements_learner_id', 'learner_document_requirements', ['learner_id'])

    op.create_table(
        'feedback_submissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('learner_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('mentor_rating', sa.Integer(), nullable=True),
        sa.Column('mentor_approved_at', sa.DateTime(), nullable=True),
        sa.Column('edited_at', sa.DateTime(), nullable=True),
        sa.Column('is_editable_by_learner', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('learner_id', 'month', 'year', name='uq_feedback_submissions_learner_month_year'),
        sa.CheckConstraint('mentor_rating IS NULL OR (mentor_rating BETWEEN 1 AND 3)', name='ck_feedback_submissions_rating'),
    )
    op.create_index('ix_feedback_submissions_id', 'feedback_submissions', ['id'])
    op.create_index('ix_feedback_submissions_learner_id', 'feedback_submissions', ['learner_id'])
    op.create_index('ix_feedback_submissions_status', 'feedback_submissions', ['status'])
    op.create_index('ix_feedback_submissions_mentor_rating', 'feedback_submissions', ['mentor_rating'])
    op.create_index('ix_feedback_submissions_learner_year_month', 'feedback_submissions', ['learner_id', 'year', 'month'])

    op.create_table(
        'feedback_responses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('feedback_id', sa.Integer(), sa.ForeignKey('feedback_submissions.id'), nullable=False),
        sa.Column('schema_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('payload_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('feedback_id', name='uq_feedback_responses_feedback_id'),
    )
    op.create_index('ix_feedback_responses_id', 'feedback_responses', ['id'])
    op.create_index('ix_feedback_responses_feedback_id', 'feedback_responses', ['feedback_id'])

    op.create_table(
        'timesheet_schedules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('learner_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('period', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('learner_id', 'month', 'year', 'period', name='uq_timesheet_schedules_learner_month_year_period'),
        sa.CheckConstraint('period IN (1, 2)', name='ck_timesheet_schedules_period'),
    )
    op.create_index('ix_timesheet_schedules_id', 'timesheet_schedules', ['id'])
    op.create_index('ix_timesheet_schedules_learner_id', 'timesheet_schedules', ['learner_id'])

    op.create_table(
        'timesheet_submissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('schedule_id', sa.Integer(), sa.ForeignKey('timesheet_schedules.id'), nullable=False),
        sa.Column('learner_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('file_path', sa.String(length=500), nullable=True),
        sa.Column('file_name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('absent_days', sa.Integer(), nullable=True),
        sa.Column('expiration_date', sa.DateTime(), nullable=True),
        sa.Column('is_expired', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('schedule_id', name='uq_timesheet_submissions_schedule_id'),
    )
    op.create_index('ix_timesheet_submissions_id', 'timesheet_submissions', ['id'])
    op.create_index('ix_timesheet_submissions_schedule_id', 'timesheet_submissions', ['schedule_id'])
    op.create_index('ix_timesheet_submissions_learner_id', 'timesheet_submissions', ['learner_id'])
    op.create_index('ix_timesheet_submissions_expiration_date', 'timesheet_submissions', ['expiration_date'])
    op.create_index('ix_timesheet_submissions_is_expired', 'timesheet_submissions', ['is_expired'])

    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('learner_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('document_type', sa.String(length=40), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('file_path', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('file_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_documents_id', 'documents', ['id'])
    op.create_index('ix_documents_learner_id', 'documents', ['learner_id'])
    op.create_index('ix_documents_document_type', 'documents', ['document_type'])
    op.create_index('ix_documents_uploaded_at', 'documents', ['uploaded_at'])

    op.create_table(
        'achievements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('learner_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('badge_type', sa.String(length=40), nullable=False),
        sa.Column('badge_name', sa.String(length=180), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('points_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('badge_color', sa.String(length=16), nullable=False, server_default='#6B7280'),
        sa.Column('badge_icon', sa.String(length=40), nullable=False, server_default='award'),
        sa.Column('dedup_key', sa.String(length=240), nullable=True),
        sa.Column('earned_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('learner_id', 'dedup_key', name='uq_achievements_learner_dedup_key'),
        sa.CheckConstraint('points_awarded >= 0', name='ck_achievements_points_non_negative'),
    )
    op.create_index('ix_achievements_id', 'achievements', ['id'])
    op.create_index('ix_achievements_learner_id', 'achievements', ['learner_id'])
    op.create_index('ix_achievements_badge_type', 'achievements', ['badge_type'])
    op.create_index('ix_achievements_learner_earned_at', 'achievements', ['learner_id', 'earned_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('title', sa.String(length=180), nullable=False),
        sa.Column('message', sa.Text(), nullable=False, server_default=''),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='info'),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_created_at', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('achievements')
    op.drop_table('documents')
    op.drop_table('timesheet_submissions')
    op.drop_table('timesheet_schedules')
    op.drop_table('feedback_responses')
    op.drop_table('feedback_submissions')
    op.drop_table('learner_document_requirements')
    op.drop_table('learner_profiles')
