"""create budgets and ledger_transactions

Revision ID: b7e41c2d9a10
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7e41c2d9a10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'budgets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.String(64), nullable=True, index=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('spent', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('period', sa.String(16), nullable=False, index=True),
        sa.Column('start_date', sa.TIMESTAMP(timezone=True), nullable=False, index=True),
        sa.Column('end_date', sa.TIMESTAMP(timezone=True), nullable=False, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('alert_threshold', sa.Numeric(precision=4, scale=3), nullable=False, server_default='0.8'),
        sa.Column('is_alert_enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('last_alert_date', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('expiry_notified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_budget_active_window', 'budgets', ['is_active', 'start_date', 'end_date'])

    op.create_table(
        'ledger_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('category_id', sa.String(64), nullable=True, index=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('type', sa.String(16), nullable=False, index=True),
        sa.Column('occurred_at', sa.TIMESTAMP(timezone=True), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_ledger_type_category_date', 'ledger_transactions', ['type', 'category_id', 'occurred_at'])


def downgrade() -> None:
    op.drop_index('ix_ledger_type_category_date', table_name='ledger_transactions')
    op.drop_table('ledger_transactions')
    op.drop_index('ix_budget_active_window', table_name='budgets')
    op.drop_table('budgets')
