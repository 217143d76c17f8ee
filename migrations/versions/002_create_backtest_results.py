"""Create backtest_results table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create backtest_results for stored run summaries."""

    op.create_table(
        'backtest_results',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('pair_name', sa.String(length=96), nullable=False),
        sa.Column('strategy', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('sim_start', sa.BigInteger(), nullable=True),
        sa.Column('sim_end', sa.BigInteger(), nullable=True),
        sa.Column('pnl', sa.String(length=64), nullable=False),
        sa.Column('pnl_percent', sa.Float(), nullable=False),
        sa.Column('max_drawdown_percent', sa.Float(), nullable=False),
        sa.Column('sharpe', sa.Float(), nullable=True),
        sa.Column('finished_trades', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('liquidated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_index('ix_backtest_results_pair_name', 'backtest_results', ['pair_name'], unique=False)


def downgrade() -> None:
    """Drop backtest_results table."""
    op.drop_index('ix_backtest_results_pair_name', table_name='backtest_results')
    op.drop_table('backtest_results')
