"""Add ledger_baseline to pipeline_runs

Revision ID: 8c41b7e2d905
Revises: 3f9a6c1d2e84
Create Date: 2026-10-17 14:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c41b7e2d905'
down_revision: Union[str, Sequence[str], None] = '3f9a6c1d2e84'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column('pipeline_runs', sa.Column('ledger_baseline', sa.Integer(), nullable=True))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_column('pipeline_runs', 'ledger_baseline')
