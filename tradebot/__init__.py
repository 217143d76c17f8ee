"""tradebot - backtesting engine for retail algorithmic trading strategies.

Main components:
    - BacktestRunner / BatchRunner: candle-by-candle replay of pairs
    - VirtualExchange: simulated account with margin, fees and liquidation
    - Strategies and indicators resolved by name from registries
    - SQLAlchemy storage for candle history and results

Example usage:
    >>> from tradebot.backtest import BacktestRunner, SqlCandleSource
    >>> from tradebot.database import create_db_engine, make_session_factory
    >>> engine = create_db_engine("sqlite:///tradebot.db")
    >>> runner = BacktestRunner(SqlCandleSource(make_session_factory(engine)))
    >>> result = runner.run(pair)
"""

__version__ = "0.1.0"
