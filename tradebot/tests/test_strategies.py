"""
Unit tests for the strategy registry and reference strategies.
"""

from decimal import Decimal

import pytest

from tradebot.backtest.market import Market
from tradebot.exceptions import UnknownIndicatorError, UnknownStrategyError
from tradebot.models.money import Money
from tradebot.models.positions import PositionDirection, PositionStatus
from tradebot.strategies import (
    STRATEGIES,
    AlwaysLongStrategy,
    DCAStrategy,
    RSIReversalStrategy,
    Strategy,
    build_indicators,
    create_strategy,
    required_warmup,
)
from tradebot.validation import ValidationError


@pytest.fixture
def market(pair_factory, exchange):
    """Market on the futures BTCUSDT key the exchange fixture prices at 100."""
    return Market(pair_factory(market_kind="futures"), exchange)


class BrokenIndicatorStrategy(Strategy):
    name = "broken_indicator"

    def should_long(self):
        return False

    def enter(self, market, direction):
        return None

    def uses_indicators(self):
        return {"fast": {"type": "does_not_exist"}}


class TestRegistry:
    """Test suite for name-based strategy creation."""

    def test_known_strategies(self):
        assert {"always_long", "rsi_reversal", "dca_averaging"} <= set(STRATEGIES)
        assert isinstance(create_strategy("always_long"), AlwaysLongStrategy)

    def test_unknown_strategy(self):
        with pytest.raises(UnknownStrategyError):
            create_strategy("martingale_deluxe")

    def test_unknown_indicator_detected_before_run(self):
        with pytest.raises(UnknownIndicatorError):
            build_indicators(BrokenIndicatorStrategy())

    def test_warmup_covers_indicators(self):
        strategy = create_strategy("rsi_reversal", {"rsi_period": 20})
        assert required_warmup(strategy, build_indicators(strategy)) == 21

    @pytest.mark.parametrize("params", [
        {"volume": -1},
        {"volume": "abc"},
        {"take_profit_percent": True},
    ])
    def test_bad_params_rejected(self, params):
        with pytest.raises(ValidationError):
            create_strategy("always_long", params)

    def test_rsi_thresholds_validated(self):
        with pytest.raises(ValidationError):
            RSIReversalStrategy({"oversold": 80, "overbought": 70})

    def test_dca_direction_validated(self):
        with pytest.raises(ValidationError):
            DCAStrategy({"direction": "sideways"})


class TestAlwaysLong:
    """Test suite for the baseline strategy."""

    def test_enters_with_take_profit(self, market):
        strategy = AlwaysLongStrategy({"volume": 2, "take_profit_percent": 5})
        strategy.bind(market)
        assert strategy.should_long()
        assert not strategy.should_short()

        position = strategy.handle_long(market)
        assert position.volume == Decimal(2)
        assert position.take_profit_price == Money(105)
        assert position.stop_loss_price is None


class TestRSIReversal:
    """Test suite for RSI reversal position management."""

    def test_limit_entry_rests_below_price(self, market):
        strategy = RSIReversalStrategy({"limit_offset_percent": 1})
        strategy.bind(market)
        position = strategy.handle_long(market)

        assert position.status == PositionStatus.PENDING
        assert position.average_entry_price == Money(99)

    def test_runaway_limit_canceled(self, market, exchange):
        strategy = RSIReversalStrategy({"limit_offset_percent": 1, "limit_cancel_percent": 1})
        strategy.bind(market)
        position = strategy.handle_long(market)

        exchange.set_current_price(market.key, Money(101))
        strategy.update_position(position)
        assert position.status == PositionStatus.CANCELED

    def test_limit_stays_pending_on_flat_price(self, market, exchange):
        strategy = RSIReversalStrategy({"limit_offset_percent": 1, "limit_cancel_percent": 1})
        strategy.bind(market)
        position = strategy.handle_long(market)

        exchange.set_current_price(market.key, Money(100))
        strategy.update_position(position)
        exchange.set_current_price(market.key, Money("100.5"))
        strategy.update_position(position)
        assert position.status == PositionStatus.PENDING

    def test_breakeven_lock(self, market, exchange):
        strategy = RSIReversalStrategy({
            "volume": 1, "take_profit_percent": 3, "stop_loss_percent": 2,
            "breakeven_lock": True,
        })
        strategy.bind(market)
        position = strategy.handle_long(market)
        assert position.stop_loss_price == Money(98)

        exchange.set_current_price(market.key, Money("101.5"))
        strategy.update_position(position)

        assert position.breakeven_locked
        assert position.volume == Decimal("0.5")
        assert position.stop_loss_price == Money(100)
        assert position.realized_pnl == Money("0.75")

    def test_breakeven_waits_for_trigger(self, market, exchange):
        strategy = RSIReversalStrategy({"take_profit_percent": 3, "breakeven_lock": True})
        strategy.bind(market)
        position = strategy.handle_long(market)

        exchange.set_current_price(market.key, Money(101))
        strategy.update_position(position)
        assert not position.breakeven_locked
        assert position.volume == Decimal(1)


class TestDCA:
    """Test suite for averaging down."""

    def test_top_up_on_adverse_move(self, market, exchange):
        strategy = DCAStrategy({"volume": 1, "deviation_percent": 2, "volume_multiplier": 2})
        strategy.bind(market)
        position = strategy.handle_long(market)

        exchange.set_current_price(market.key, Money(99))
        strategy.update_position(position)
        assert position.volume == Decimal(1)

        exchange.set_current_price(market.key, Money(98))
        strategy.update_position(position)
        assert position.volume == Decimal(3)
        assert position.average_entry_price == Money(Decimal(296) / 3)
        assert position.take_profit_price == position.average_entry_price.modify_by_percent(1)

    def test_max_orders_respected(self, market, exchange):
        strategy = DCAStrategy({"max_orders": 2, "deviation_percent": 1})
        strategy.bind(market)
        position = strategy.handle_long(market)

        for price in (99, 97, 90, 80):
            exchange.set_current_price(market.key, Money(price))
            strategy.update_position(position)
        assert len(position.exchange_order_ids) == 2

    def test_short_direction(self, market):
        strategy = DCAStrategy({"direction": "short"})
        strategy.bind(market)
        assert strategy.should_short() and not strategy.should_long()
        assert strategy.handle_short(market).direction == PositionDirection.SHORT
