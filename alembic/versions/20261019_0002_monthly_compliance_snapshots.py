"""monthly compliance snapshots

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:02:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0002'
down_revision = '20261019_0001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if 'monthly_compliance_snapshots' in inspector.get_table_names():
        return

    op.create_table(
        'monthly_compliance_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('learner_id', sa.Integer(), sa.ForeignKey('learner_profiles.id'), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('feedback_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('timesheet_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('document_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('engagement_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('overall_compliance_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('feedback_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('timesheet_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('document_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('engagement_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_monthly_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('on_time_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('computed_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('learner_id', 'month', 'year', name='uq_monthly_compliance_snapshots_learner_month_year'),
    )
    op.create_index('ix_monthly_compliance_snapshots_id', 'monthly_compliance_snapshots', ['id'])
    op.create_index('ix_monthly_compliance_snapshots_learner_id', 'monthly_compliance_snapshots', ['learner_id'])


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if 'monthly_compliance_snapshots' not in inspector.get_table_names():
        return
    op.drop_table('monthly_compliance_snapshots')
