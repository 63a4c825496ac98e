"""initial portfolio tables: users, stock_positions, notification_settings, daily_reports

Revision ID: a1c4e7f20b93
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = 'a1c4e7f20b93'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table('users',
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('hashed_password', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('id', sa.UUID(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table('stock_positions',
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('symbol', sa.String(length=20), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('purchase_price', sa.Float(), nullable=False),
        sa.Column('current_price', sa.Float(), nullable=True),
        sa.Column('sector', sa.String(length=100), nullable=True),
        sa.Column('id', sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stock_positions_user_id', 'stock_positions', ['user_id'])

    op.create_table('notification_settings',
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('email_enabled', sa.Boolean(), nullable=False),
        sa.Column('daily_update_enabled', sa.Boolean(), nullable=False),
        sa.Column('update_time', sa.String(length=5), nullable=False),
        sa.Column('alert_threshold', sa.Float(), nullable=False),
        sa.Column('weekends_enabled', sa.Boolean(), nullable=False),
        sa.Column('id', sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table('daily_reports',
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('report_date', sa.Date(), nullable=False),
        sa.Column('portfolio_value', sa.Float(), nullable=False),
        sa.Column('daily_change', sa.Float(), nullable=False),
        sa.Column('daily_change_percent', sa.Float(), nullable=False),
        sa.Column('significant_movers', postgresql.JSONB(), nullable=False),
        sa.Column('sector_performance', postgresql.JSONB(), nullable=False),
        sa.Column('market_summary', sa.Text(), nullable=True),
        sa.Column('email_sent', sa.Boolean(), nullable=False),
        sa.Column('email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('id', sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'report_date', name='uq_daily_report_user_date'),
    )
    op.create_index('ix_daily_reports_user_id', 'daily_reports', ['user_id'])
    op.create_index('ix_daily_reports_report_date', 'daily_reports', ['report_date'])


def downgrade() -> None:
    op.drop_index('ix_daily_reports_report_date', table_name='daily_reports')
    op.drop_index('ix_daily_reports_user_id', table_name='daily_reports')
    op.drop_table('daily_reports')
    op.drop_table('notification_settings')
    op.drop_index('ix_stock_positions_user_id', table_name='stock_positions')
    op.drop_table('stock_positions')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
