"""Create leads, pipeline_runs and configurations tables

Revision ID: 3f9a6c1d2e84
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a6c1d2e84'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'leads',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.Text(), nullable=False, server_default='classify'),
        sa.Column('document', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_leads_status', 'leads', ['status'])

    op.create_table(
        'pipeline_runs',
        sa.Column('lead_id', sa.Text(), sa.ForeignKey('leads.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('attempt', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.Text(), nullable=False, server_default='queued'),
        sa.Column('current_stage', sa.Text(), server_default=''),
        sa.Column('last_completed_stage', sa.Text(), nullable=True),
        sa.Column('stage_outputs', sa.JSON(), nullable=True),
        sa.Column('config_snapshot', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('error_stage', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'configurations',
        sa.Column('version', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('updated_by', sa.Text(), server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('configurations')
    op.drop_table('pipeline_runs')
    op.drop_index('ix_leads_status', table_name='leads')
    op.drop_table('leads')
