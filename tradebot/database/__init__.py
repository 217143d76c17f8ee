"""Database module for candle history and backtest results.

Provides SQLAlchemy models, connection management, and repositories.
"""

from .models import Base, BacktestResultRecord, MarketCandle
from .connection import create_db_engine, init_db, make_session_factory, session_scope

__all__ = [
    "Base",
    "MarketCandle",
    "BacktestResultRecord",
    "create_db_engine",
    "make_session_factory",
    "session_scope",
    "init_db",
]
