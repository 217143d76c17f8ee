"""
Integration tests for multi-pair batch runs.

Tests:
- Up-front validation rejects a batch before any simulation starts
- Per-pair outcomes (completed, liquidated, skipped)
- Parallel workers produce the same results as sequential runs
"""

import json
from decimal import Decimal

import pytest

from tradebot.backtest import (
    BacktestRunner,
    BatchRunner,
    CollectingSink,
    EventType,
    InMemoryCandleSource,
    OutcomeStatus,
)
from tradebot.exceptions import InvalidConfigValueError, UnknownStrategyError
from tradebot.models.market_data import Candle
from tradebot.models.pair import Pair
from tradebot.validation import ValidationError

T0 = 1_699_999_200
HOUR = 3600


def pair_dict(ticker="BTCUSDT", **overrides):
    data = {
        "exchange": "binance",
        "ticker": ticker,
        "base_currency": ticker[:-4],
        "quote_currency": "USDT",
        "market_kind": "spot",
        "timeframe": "1h",
        "strategy": "always_long",
        "strategy_params": {"volume": 10, "take_profit_percent": 5},
        "backtest_days": 30,
        "backtest_initial_balance": 1000,
    }
    data.update(overrides)
    return data


def candles(closes, high_at=None, low_at=None):
    rows = []
    for i, close in enumerate(closes):
        close = Decimal(str(close))
        high = close + Decimal(7) if i == high_at else close
        low = close - Decimal(20) if i == low_at else close
        rows.append(Candle(T0 + i * HOUR, close, high, low, close, Decimal(1)))
    return rows


class TestBatchRunner:
    """Test suite for BatchRunner."""

    @pytest.fixture
    def source(self):
        source = InMemoryCandleSource()
        spikes = (("BTCUSDT", 40, None), ("ETHUSDT", None, 20), ("SOLUSDT", None, None))
        for ticker, high_at, low_at in spikes:
            for kind in ("spot", "futures"):
                key = Pair.from_dict(pair_dict(ticker, market_kind=kind)).series_key
                source.add(key, candles([100] * 80, high_at, low_at))
        return source

    @pytest.fixture
    def sink(self):
        return CollectingSink()

    @pytest.fixture
    def batch(self, source, sink):
        return BatchRunner(BacktestRunner(source, sink=sink))

    def test_invalid_pair_rejects_whole_batch(self, batch, sink):
        pairs = [pair_dict(), pair_dict("ETHUSDT", strategy="no_such_strategy")]
        with pytest.raises(UnknownStrategyError):
            batch.run(pairs)
        assert sink.events == []

    @pytest.mark.parametrize("bad", [
        {"timeframe": "3h"},
        {"leverage": 5},
        {"strategy_params": {"volume": "lots"}},
        {"ticks_per_candle": 3},
    ])
    def test_validation_errors(self, batch, sink, bad):
        with pytest.raises(InvalidConfigValueError):
            batch.run([pair_dict(), pair_dict("ETHUSDT", **bad)])
        assert sink.events == []

    def test_invalid_market_kind(self, batch):
        with pytest.raises(ValidationError):
            batch.validate([pair_dict(), {**pair_dict(), "market_kind": "options"}])

    def test_outcomes_in_input_order(self, batch):
        pairs = [
            pair_dict("BTCUSDT"),
            pair_dict("ETHUSDT", market_kind="futures", leverage=10,
                      strategy_params={"volume": 100, "take_profit_percent": 5}),
            pair_dict("XRPUSDT"),
            Pair.from_dict(pair_dict("SOLUSDT")),
        ]
        outcomes = batch.run(pairs)

        assert [o.pair_name for o in outcomes] == [
            "binance:BTCUSDT:spot:1h",
            "binance:ETHUSDT:futures:1h",
            "binance:XRPUSDT:spot:1h",
            "binance:SOLUSDT:spot:1h",
        ]
        assert [o.status for o in outcomes] == [
            OutcomeStatus.COMPLETED,
            OutcomeStatus.LIQUIDATED,
            OutcomeStatus.SKIPPED,
            OutcomeStatus.COMPLETED,
        ]
        assert outcomes[0].result.trades.finished == 1
        assert outcomes[1].result.liquidated
        assert outcomes[2].result is None
        assert "XRPUSDT" in outcomes[2].reason
        assert "skipped" in outcomes[2].line()
        assert "pnl=" in outcomes[0].line()

    def test_pairs_have_isolated_accounts(self, batch):
        outcomes = batch.run([pair_dict("BTCUSDT"), pair_dict("SOLUSDT")])
        btc, sol = (o.result for o in outcomes)
        assert btc.financial.pnl.amount == Decimal(50)
        assert sol.financial.pnl.is_zero()
        assert btc.financial.initial_balance == sol.financial.initial_balance

    def test_parallel_matches_sequential(self, source):
        pairs = [
            pair_dict("BTCUSDT"),
            pair_dict("ETHUSDT", strategy="rsi_reversal", strategy_params={"rsi_period": 5}),
            pair_dict("SOLUSDT", strategy="dca_averaging"),
            pair_dict("ETHUSDT", market_kind="futures", leverage=10,
                      strategy_params={"volume": 100, "take_profit_percent": 5}),
        ]
        sequential = BatchRunner(BacktestRunner(source)).run(pairs)
        parallel = BatchRunner(BacktestRunner(source), workers=3).run(pairs)

        def dump(outcomes):
            return json.dumps([o.to_dict(include_trace=True) for o in outcomes], sort_keys=True)

        assert dump(parallel) == dump(sequential)

    def test_parallel_event_streams_are_per_pair(self, source):
        sink = CollectingSink()
        BatchRunner(BacktestRunner(source, sink=sink), workers=2).run(
            [pair_dict("BTCUSDT"), pair_dict("SOLUSDT")]
        )
        for name in ("binance:BTCUSDT:spot:1h", "binance:SOLUSDT:spot:1h"):
            events = [e for e in sink.events if e.pair == name]
            assert events[0].type == EventType.INIT
            assert events[-1].type == EventType.DONE
            assert [e.seq for e in events] == list(range(1, len(events) + 1))

    @pytest.mark.parametrize("workers", [1, 2])
    def test_unexpected_error_fails_only_its_pair(self, source, workers):
        class BrokenStoreSource(InMemoryCandleSource):
            def get_candles(self, pair, start_time, end_time):
                if pair.ticker == "ETHUSDT":
                    raise OSError("store connection reset")
                return source.get_candles(pair, start_time, end_time)

            def last_candle_time(self, key):
                return source.last_candle_time(key)

        batch = BatchRunner(BacktestRunner(BrokenStoreSource()), workers=workers)
        outcomes = batch.run([pair_dict("BTCUSDT"), pair_dict("ETHUSDT"), pair_dict("SOLUSDT")])

        assert [o.status for o in outcomes] == [
            OutcomeStatus.COMPLETED,
            OutcomeStatus.FAILED,
            OutcomeStatus.COMPLETED,
        ]
        assert outcomes[1].result is None
        assert outcomes[1].reason == "OSError: store connection reset"
        assert outcomes[0].result.financial.pnl.amount == Decimal(50)

    def test_workers_must_be_positive(self, source):
        with pytest.raises(InvalidConfigValueError):
            BatchRunner(BacktestRunner(source), workers=0)
