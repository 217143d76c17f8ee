"""SQLAlchemy models for candle history and backtest results.

Prices are stored as decimal text so a candle reads back exactly as it was
imported on every backend (SQLite has no native decimal type).
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from ..models.money import decimal_to_str, to_decimal

Base = declarative_base()


class DecimalText(TypeDecorator):
    """Decimal stored as its canonical string form."""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return decimal_to_str(to_decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class MarketCandle(Base):
    """One OHLCV bar of a (exchange, ticker, market kind, timeframe) series.

    The unique constraint makes re-importing the same candles a no-op.

    Example:
        >>> candle = MarketCandle(
        ...     exchange="binance", ticker="BTCUSDT", market_kind="spot",
        ...     timeframe="1h", open_time=1700000000,
        ...     open=Decimal("100"), high=Decimal("101"), low=Decimal("99"),
        ...     close=Decimal("100.5"), volume=Decimal("12"),
        ... )
        >>> session.add(candle)
    """

    __tablename__ = 'market_candles'
    __table_args__ = (
        UniqueConstraint(
            'exchange', 'ticker', 'market_kind', 'timeframe', 'open_time',
            name='uq_market_candles_series_time',
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    exchange = Column(String(32), nullable=False)
    ticker = Column(String(20), nullable=False)
    market_kind = Column(String(16), nullable=False)
    timeframe = Column(String(8), nullable=False)
    open_time = Column(BigInteger, nullable=False, index=True)

    open = Column(DecimalText, nullable=False)
    high = Column(DecimalText, nullable=False)
    low = Column(DecimalText, nullable=False)
    close = Column(DecimalText, nullable=False)
    volume = Column(DecimalText, nullable=False, default=Decimal(0))

    def __repr__(self):
        return (
            f"<MarketCandle({self.exchange}:{self.ticker}:{self.market_kind}:"
            f"{self.timeframe} @ {self.open_time} close={self.close})>"
        )


class BacktestResultRecord(Base):
    """A stored backtest result.

    Headline figures are columns for querying; the complete result (including
    the balance trace) is kept in ``payload``.
    """

    __tablename__ = 'backtest_results'

    id = Column(Integer, primary_key=True, autoincrement=True)
    pair_name = Column(String(96), nullable=False, index=True)
    strategy = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    sim_start = Column(BigInteger, nullable=True)
    sim_end = Column(BigInteger, nullable=True)

    pnl = Column(DecimalText, nullable=False)
    pnl_percent = Column(Float, nullable=False)
    max_drawdown_percent = Column(Float, nullable=False)
    sharpe = Column(Float, nullable=True)
    finished_trades = Column(Integer, nullable=False, default=0)
    liquidated = Column(Integer, nullable=False, default=0)

    payload = Column(JSON, nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return (
            f"<BacktestResultRecord(id={self.id}, pair='{self.pair_name}', "
            f"status='{self.status}', pnl={self.pnl})>"
        )

    def to_dict(self, include_payload: bool = False):
        """Convert record to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "pair": self.pair_name,
            "strategy": self.strategy,
            "status": self.status,
            "sim_start": self.sim_start,
            "sim_end": self.sim_end,
            "pnl": decimal_to_str(self.pnl) if self.pnl is not None else None,
            "pnl_percent": self.pnl_percent,
            "max_drawdown_percent": self.max_drawdown_percent,
            "sharpe": self.sharpe,
            "finished_trades": self.finished_trades,
            "liquidated": bool(self.liquidated),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_payload:
            data["result"] = self.payload
        return data
