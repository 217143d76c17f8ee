"""Create market_candles table

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create market_candles with one row per (series, open_time)."""

    op.create_table(
        'market_candles',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('exchange', sa.String(length=32), nullable=False),
        sa.Column('ticker', sa.String(length=20), nullable=False),
        sa.Column('market_kind', sa.String(length=16), nullable=False),
        sa.Column('timeframe', sa.String(length=8), nullable=False),
        sa.Column('open_time', sa.BigInteger(), nullable=False),
        # Prices are decimal strings so values read back exactly
        sa.Column('open', sa.String(length=64), nullable=False),
        sa.Column('high', sa.String(length=64), nullable=False),
        sa.Column('low', sa.String(length=64), nullable=False),
        sa.Column('close', sa.String(length=64), nullable=False),
        sa.Column('volume', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'exchange', 'ticker', 'market_kind', 'timeframe', 'open_time',
            name='uq_market_candles_series_time',
        ),
    )

    op.create_index('ix_market_candles_open_time', 'market_candles', ['open_time'], unique=False)


def downgrade() -> None:
    """Drop market_candles table."""
    op.drop_index('ix_market_candles_open_time', table_name='market_candles')
    op.drop_table('market_candles')
