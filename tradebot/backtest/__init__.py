"""Backtesting Module - deterministic replay of strategies over stored candles.

Components:
- BacktestRunner: Replays one pair candle by candle (bar or tick mode)
- BatchRunner: Validates and runs many pairs, optionally in parallel
- VirtualExchange: Simulated account, prices and order execution
- Market: The window of candles and indicators a strategy sees
- ResultAggregator: Financial, trade and risk statistics
- BacktestReport: Markdown and JSON reports

Example Usage:
    ```python
    from tradebot.backtest import BacktestRunner, InMemoryCandleSource
    from tradebot.models import Pair

    source = InMemoryCandleSource()
    source.add(pair.series_key, candles)

    result = BacktestRunner(source).run(pair)
    print(result.financial.pnl.format())
    ```

Guarantees:
- No look-ahead: at step i nothing can observe candle i+1
- Identical inputs give byte-identical ``json.dumps(result.to_dict())``
- Every run has its own ledger namespace and account
"""

from .cancellation import CancellationToken
from .data_loader import CandleSource, InMemoryCandleSource, SqlCandleSource, read_candles_csv
from .events import CollectingSink, EventSink, EventType, JsonlEventWriter, ProgressEvent
from .exchange import VirtualExchange
from .market import Market
from .reports import BacktestReport
from .results import BacktestResult, ResultStatus
from .runner import BacktestRunner, BatchRunner, OutcomeStatus, PairOutcome
from .store import MemoryPositionStore, SqlPositionStore, memory_store_factory, sql_store_factory

__all__ = [
    "BacktestRunner",
    "BatchRunner",
    "PairOutcome",
    "OutcomeStatus",
    "CancellationToken",
    "CandleSource",
    "InMemoryCandleSource",
    "SqlCandleSource",
    "read_candles_csv",
    "EventSink",
    "CollectingSink",
    "JsonlEventWriter",
    "EventType",
    "ProgressEvent",
    "VirtualExchange",
    "Market",
    "BacktestReport",
    "BacktestResult",
    "ResultStatus",
    "MemoryPositionStore",
    "SqlPositionStore",
    "memory_store_factory",
    "sql_store_factory",
]
