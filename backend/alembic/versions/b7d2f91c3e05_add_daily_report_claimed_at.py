"""add claimed_at to daily_reports for per-day delivery claims

Revision ID: b7d2f91c3e05
Revises: a1c4e7f20b93
Create Date: 2026-10-19 12:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = 'b7d2f91c3e05'
down_revision: Union[str, None] = 'a1c4e7f20b93'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('daily_reports', sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column('daily_reports', 'claimed_at')
