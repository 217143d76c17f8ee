"""
Integration tests for the backtest replay loop.

Tests complete single-pair runs:
- Flat, take-profit, stop-loss and liquidation scenarios
- Determinism and causality (no look-ahead)
- Balance closure at every candle
- Cancellation, strategy fault threshold and tick mode
"""

import json
import math
from decimal import Decimal

import pytest
from sqlalchemy import inspect

from tradebot.backtest import (
    BacktestRunner,
    CancellationToken,
    CollectingSink,
    EventType,
    InMemoryCandleSource,
    ResultStatus,
    sql_store_factory,
)
from tradebot.config import MarginMode, RunOptions
from tradebot.database import create_db_engine
from tradebot.exceptions import ConfigurationError, InsufficientHistoryError
from tradebot.models.market_data import Candle
from tradebot.models.money import Money
from tradebot.models.pair import Pair
from tradebot.models.positions import FinishReason
from tradebot.strategies import STRATEGIES, Strategy, register_strategy

T0 = 1_699_999_200
HOUR = 3600


def make_candles(closes, overrides=None):
    """One hourly candle per close; open equals close unless overridden."""
    overrides = overrides or {}
    candles = []
    for i, close in enumerate(closes):
        values = {"open": close, "high": close, "low": close, "close": close}
        values.update(overrides.get(i, {}))
        values = {k: Decimal(str(v)) for k, v in values.items()}
        values["high"] = max(values.values())
        values["low"] = min(values.values())
        candles.append(Candle(T0 + i * HOUR, volume=Decimal(10), **values))
    return candles


def make_pair(**overrides):
    data = {
        "exchange": "binance",
        "ticker": "BTCUSDT",
        "base_currency": "BTC",
        "quote_currency": "USDT",
        "market_kind": "spot",
        "timeframe": "1h",
        "strategy": "always_long",
        "strategy_params": {"volume": 100, "take_profit_percent": 5},
        "backtest_days": 30,
        "backtest_initial_balance": 1000,
    }
    data.update(overrides)
    return Pair.from_dict(data)


def run(pair, candles, options=None, sink=None, cancel_token=None, **kwargs):
    source = InMemoryCandleSource()
    source.add(pair.series_key, candles)
    runner = BacktestRunner(source, sink=sink, options=options, **kwargs)
    return runner.run(pair, cancel_token)


def wave(count, period=24, amplitude=10, base=100):
    return [round(base + amplitude * math.sin(2 * math.pi * i / period), 4) for i in range(count)]


class RaisingStrategy(Strategy):
    name = "raising"

    def should_long(self):
        raise RuntimeError("signal backend unavailable")

    def enter(self, market, direction):
        return None


class CountdownToken(CancellationToken):
    """Trips after ``polls`` calls to is_canceled."""

    def __init__(self, polls):
        super().__init__()
        self.remaining = polls

    def is_canceled(self):
        if self.remaining <= 0:
            return True
        self.remaining -= 1
        return False


class TestBarScenarios:
    """Acceptance scenarios in bar mode."""

    def test_flat_market(self):
        result = run(make_pair(), make_candles([100] * 100))

        assert result.status == ResultStatus.COMPLETED
        assert result.financial.final_balance == Money(1000)
        assert result.financial.pnl.is_zero()
        assert result.trades.finished == 0
        assert result.trades.open == 1
        assert result.candles_processed == 100
        assert result.sim_end == T0 + 100 * HOUR

    def test_take_profit_then_reentry(self):
        result = run(make_pair(), make_candles([100] * 100, {50: {"high": 106}}))

        assert result.financial.final_balance == Money(1500)
        assert result.trades.finished == 1
        assert result.trades.wins == 1
        closed = [p for p in result.positions if p["status"] == "finished"][0]
        assert closed["exit_price"] == "105"
        assert closed["finish_reason"] == FinishReason.TAKE_PROFIT.value
        assert result.trades.open == 1

    def test_stop_loss_wins_when_candle_crosses_both(self):
        pair = make_pair(strategy_params={
            "volume": 100, "take_profit_percent": 5, "stop_loss_percent": 2,
        })
        result = run(pair, make_candles([100] * 60, {30: {"low": 97, "high": 106}}))

        closed = [p for p in result.positions if p["status"] == "finished"]
        assert len(closed) == 1
        assert closed[0]["finish_reason"] == FinishReason.STOP_LOSS.value
        assert closed[0]["exit_price"] == "98"
        assert result.financial.final_balance == Money(800)
        assert result.financial.max_drawdown == Money(200)

    def test_gap_in_history_marks_open_entry_error(self):
        candles = make_candles([100] * 40)
        del candles[20:25]
        result = run(make_pair(), candles)

        assert result.status == ResultStatus.COMPLETED
        assert result.candles_processed == 35
        assert result.trades.error == 1
        assert result.trades.open == 1
        assert result.financial.final_balance == Money(1000)
        failed = [p for p in result.positions if p["status"] == "error"][0]
        assert failed["error_reason"] == (
            f"no price data between {T0 + 19 * HOUR} and {T0 + 25 * HOUR}"
        )

    def test_futures_liquidation_stops_the_run(self):
        pair = make_pair(market_kind="futures", leverage=10)
        result = run(pair, make_candles([100] * 100, {40: {"low": 91}}))

        assert result.status == ResultStatus.LIQUIDATED
        assert result.liquidated
        assert result.candles_processed == 41
        assert result.financial.final_balance == Money(100)
        reasons = [p["finish_reason"] for p in result.positions]
        assert reasons == [FinishReason.LIQUIDATION.value]

    def test_spot_is_never_liquidated(self):
        result = run(make_pair(), make_candles([100] * 50, {20: {"low": 91}}))
        assert result.status == ResultStatus.COMPLETED
        assert not result.liquidated

    def test_insufficient_history(self):
        pair = make_pair(strategy="rsi_reversal", strategy_params={"rsi_period": 14})
        with pytest.raises(InsufficientHistoryError):
            run(pair, make_candles([100] * 10))

    def test_no_candles(self):
        with pytest.raises(InsufficientHistoryError):
            run(make_pair(), [])

    def test_history_window_respects_backtest_days(self):
        pair = make_pair(backtest_days=1)
        result = run(pair, make_candles([100] * 100))
        # Window is [end - 1 day, end], both bounds inclusive
        assert result.candles_processed == 25

    def test_end_time_option(self):
        options = RunOptions(end_time=T0 + 49 * HOUR)
        result = run(make_pair(), make_candles([100] * 100, {50: {"high": 106}}), options)
        assert result.candles_processed == 50
        assert result.trades.finished == 0


class TestDeterminism:
    """Identical inputs must give identical outputs."""

    def test_results_and_events_are_byte_identical(self):
        pair = make_pair(strategy="rsi_reversal", strategy_params={
            "rsi_period": 6, "breakeven_lock": True, "limit_offset_percent": "0.5",
        })
        candles = make_candles(wave(300))

        outputs = []
        for _ in range(2):
            sink = CollectingSink()
            result = run(pair, candles, RunOptions(progress_every=7), sink=sink)
            outputs.append((
                json.dumps(result.to_dict(), sort_keys=True),
                json.dumps([e.to_dict() for e in sink.events], sort_keys=True),
            ))

        assert outputs[0] == outputs[1]
        assert json.loads(outputs[0][0])["trades"]["finished"] > 0

    def test_no_look_ahead(self):
        pair = make_pair(strategy="rsi_reversal", strategy_params={"rsi_period": 6},
                         backtest_days=365)
        closes = wave(240, period=30)
        full = run(pair, make_candles(closes))
        truncated = run(pair, make_candles(closes[:150]))

        assert truncated.candles_processed == 150 - 6
        assert truncated.balance_trace == full.balance_trace[:len(truncated.balance_trace)]


class TestBalanceClosure:
    """balance + locked == initial + realized - fees after every candle."""

    @pytest.mark.parametrize("margin_mode,fee_rate,params", [
        (MarginMode.SHARED, "0", {"volume": 100, "take_profit_percent": 5}),
        (MarginMode.RESERVED, "0.001", {"volume": 2, "take_profit_percent": 5}),
    ])
    def test_closure_holds_per_candle(self, margin_mode, fee_rate, params):
        sink = CollectingSink()
        options = RunOptions(margin_mode=margin_mode, fee_rate=Decimal(fee_rate), progress_every=1)
        pair = make_pair(strategy_params=params)
        candles = make_candles([100] * 60, {10: {"high": 106}, 30: {"high": 106}})

        result = run(pair, candles, options, sink=sink)

        progress = sink.of_type(EventType.PROGRESS)
        assert len(progress) == 60
        for event in progress:
            data = event.data
            left = Decimal(data["balance"]) + Decimal(data["locked_margin"])
            right = Decimal(1000) + Decimal(data["realized_pnl"]) - Decimal(data["total_fees"])
            assert left == right
        assert result.trades.finished == 2

    def test_reserved_margin_rejects_oversized_orders(self):
        options = RunOptions(margin_mode=MarginMode.RESERVED)
        result = run(make_pair(), make_candles([100] * 20), options)
        assert result.status == ResultStatus.COMPLETED
        assert result.positions == []
        assert result.financial.final_balance == Money(1000)


class TestRunControl:
    """Cancellation, faults and event stream shape."""

    def test_cancellation(self):
        sink = CollectingSink()
        result = run(make_pair(), make_candles([100] * 50), sink=sink, cancel_token=CountdownToken(5))

        assert result.status == ResultStatus.CANCELED
        assert result.candles_processed == 5
        assert len(sink.of_type(EventType.CANCELED)) == 1
        assert sink.events[-1].type == EventType.DONE

    def test_fault_threshold(self):
        register_strategy(RaisingStrategy.name, RaisingStrategy)
        try:
            sink = CollectingSink()
            result = run(make_pair(strategy="raising"), make_candles([100] * 50),
                         RunOptions(fault_threshold=3), sink=sink)
        finally:
            STRATEGIES.pop(RaisingStrategy.name)

        assert result.status == ResultStatus.ERROR
        assert result.strategy_faults == 4
        assert result.candles_processed == 4
        assert "signal backend unavailable" in result.error
        assert len(sink.of_type(EventType.ERROR)) == 1

    def test_event_stream_shape(self):
        sink = CollectingSink()
        run(make_pair(), make_candles([100] * 100, {50: {"high": 106}}),
            RunOptions(progress_every=25), sink=sink)

        types = [e.type for e in sink.events]
        assert types[0] == EventType.INIT
        assert types[-2:] == [EventType.RESULT, EventType.DONE]
        assert types.count(EventType.PROGRESS) == 4
        assert types.count(EventType.POSITION_OPEN) == 2
        assert types.count(EventType.POSITION_CLOSE) == 1
        assert [e.seq for e in sink.events] == list(range(1, len(types) + 1))

    def test_failed_run_emits_error_and_done(self):
        sink = CollectingSink()
        with pytest.raises(InsufficientHistoryError):
            run(make_pair(), [], sink=sink)
        assert [e.type for e in sink.events] == [EventType.ERROR, EventType.DONE]

    def test_sql_ledger_namespace_is_dropped(self):
        engine = create_db_engine("sqlite://")
        result = run(make_pair(), make_candles([100] * 30, {10: {"high": 106}}),
                     store_factory=sql_store_factory(engine))

        assert result.trades.finished == 1
        assert result.financial.final_balance == Money(1500)
        assert [t for t in inspect(engine).get_table_names() if t.startswith("positions_")] == []


class TestTickMode:
    """Intra-candle replay."""

    @pytest.mark.parametrize("ticks", [2, 3])
    def test_too_few_ticks_rejected(self, ticks):
        with pytest.raises(ConfigurationError):
            run(make_pair(ticks_per_candle=ticks), make_candles([100] * 10))
        with pytest.raises(ConfigurationError):
            run(make_pair(), make_candles([100] * 10), RunOptions(ticks_per_candle=ticks))

    @pytest.mark.parametrize("ticks", [4, 10])
    def test_take_profit_inside_candle(self, ticks):
        result = run(make_pair(ticks_per_candle=ticks), make_candles([100] * 100, {50: {"high": 106}}))
        assert result.financial.final_balance == Money(1500)
        assert result.trades.finished == 1

    def test_tick_mode_is_deterministic(self):
        pair = make_pair(strategy="rsi_reversal", strategy_params={"rsi_period": 6},
                         ticks_per_candle=8)
        candles = make_candles(wave(120), {i: {"high": wave(120)[i] + 1, "low": wave(120)[i] - 1}
                                           for i in range(120)})
        first = json.dumps(run(pair, candles).to_dict())
        assert first == json.dumps(run(pair, candles).to_dict())
