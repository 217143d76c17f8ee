"""
Unit tests for the virtual exchange.

Tests ensure:
- Market and limit entries derive TP/SL from the entry price
- Rejected orders leave account and ledger untouched
- Reserved margin and fees keep balance + locked == initial + realized - fees
- Liquidation closes open entries and cancels resting ones
"""

from decimal import Decimal

import pytest

from tradebot.exceptions import (
    CurrencyMismatchError,
    IllegalStatusTransitionError,
    InsufficientBalanceError,
    MissingPriceError,
)
from tradebot.models.market_data import MarketKey
from tradebot.models.money import Money
from tradebot.models.positions import FinishReason, PositionDirection, PositionStatus

LONG = PositionDirection.LONG
SHORT = PositionDirection.SHORT


def assert_closure(venue):
    realized = Money(0)
    for position in venue.positions():
        realized = realized + position.realized_pnl
    assert venue.balance + venue.locked_margin == venue.initial_balance + realized - venue.total_fees


class TestOrderPlacement:
    """Test suite for entries."""

    def test_market_entry_derives_exit_prices(self, exchange, market_key):
        position = exchange.open_position(
            market_key, LONG, 2, take_profit_percent=5, stop_loss_percent=2
        )
        assert position.status == PositionStatus.OPEN
        assert position.take_profit_price == Money(105)
        assert position.stop_loss_price == Money(98)

    def test_short_exit_prices_mirror_long(self, exchange, market_key):
        position = exchange.open_position(
            market_key, SHORT, 1, take_profit_percent=5, stop_loss_percent=2
        )
        assert position.take_profit_price == Money(95)
        assert position.stop_loss_price == Money(102)

    def test_shared_margin_leaves_balance_untouched(self, exchange, market_key):
        exchange.open_position(market_key, LONG, 100)
        assert exchange.balance == Money(1000)
        assert exchange.locked_margin == Money(0)

    def test_missing_price(self, exchange):
        unknown = MarketKey("binance", "ETHUSDT", "spot")
        with pytest.raises(MissingPriceError):
            exchange.open_position(unknown, LONG, 1)

    def test_currency_mismatch(self, exchange, market_key):
        with pytest.raises(CurrencyMismatchError):
            exchange.set_current_price(market_key, Money(100, "EUR"))

    def test_non_positive_volume(self, exchange, market_key):
        with pytest.raises(ValueError):
            exchange.open_position(market_key, LONG, 0)

    def test_order_ids_are_sequential(self, exchange, market_key):
        first = exchange.open_position(market_key, LONG, 1)
        second = exchange.open_position(market_key, SHORT, 1)
        assert (first.id, second.id) == ("bt-1", "bt-2")


class TestRejection:
    """Test suite for atomic rejection."""

    def test_reserved_margin_exceeding_balance(self, reserved_exchange, market_key):
        with pytest.raises(InsufficientBalanceError):
            reserved_exchange.open_position(market_key, LONG, 20)
        assert reserved_exchange.balance == Money(1000)
        assert reserved_exchange.positions() == []

    def test_shared_margin_rejects_when_equity_exhausted(self, exchange, market_key):
        exchange.open_position(market_key, LONG, 100)
        exchange.set_current_price(market_key, Money(80))
        with pytest.raises(InsufficientBalanceError):
            exchange.open_position(market_key, LONG, 1)
        assert len(exchange.positions()) == 1


class TestReservedMargin:
    """Test suite for margin locking and fees."""

    def test_open_locks_margin_and_charges_fee(self, reserved_exchange, market_key):
        reserved_exchange.open_position(market_key, LONG, 2)
        assert reserved_exchange.locked_margin == Money(200)
        assert reserved_exchange.balance == Money("799.8")
        assert_closure(reserved_exchange)

    def test_close_refunds_margin_and_realizes_pnl(self, reserved_exchange, market_key):
        position = reserved_exchange.open_position(market_key, LONG, 2, take_profit_percent=5)
        pnl = reserved_exchange.close(position, position.take_profit_price, FinishReason.TAKE_PROFIT)

        assert pnl == Money(10)
        assert reserved_exchange.locked_margin == Money(0)
        assert reserved_exchange.balance == Money("1009.59")
        assert reserved_exchange.total_fees == Money("0.41")
        assert_closure(reserved_exchange)

    def test_leverage_divides_margin(self, reserved_exchange, market_key):
        reserved_exchange.open_position(market_key, LONG, 50, leverage=10)
        assert reserved_exchange.locked_margin == Money(500)

    def test_cancel_pending_refunds(self, reserved_exchange, market_key):
        order_id = reserved_exchange.place_limit_order(market_key, LONG, 1, Money(90))
        position = reserved_exchange.store.get(order_id)
        assert reserved_exchange.locked_margin == Money(90)

        reserved_exchange.cancel(position)
        assert position.status == PositionStatus.CANCELED
        assert reserved_exchange.balance == Money(1000)
        assert position.realized_pnl == Money(0)


class TestPositionManagement:
    """Test suite for fills, top-ups, reductions and closes."""

    def test_fill_pending_keeps_creation_time(self, exchange, market_key):
        exchange.set_time(10)
        order_id = exchange.place_limit_order(
            market_key, LONG, 1, Money(90), take_profit_percent=10
        )
        position = exchange.store.get(order_id)
        assert position.status == PositionStatus.PENDING

        exchange.set_time(20)
        exchange.fill_pending(position)
        assert position.status == PositionStatus.OPEN
        assert position.created_at == 10
        assert position.take_profit_price == Money(99)

    def test_fill_requires_pending(self, exchange, market_key):
        position = exchange.open_position(market_key, LONG, 1)
        with pytest.raises(IllegalStatusTransitionError):
            exchange.fill_pending(position)

    def test_top_up_averages_entry(self, exchange, market_key):
        position = exchange.open_position(market_key, LONG, 1, take_profit_percent=5)
        exchange.top_up(position, 1, Money(90))

        assert position.volume == Decimal(2)
        assert position.average_entry_price == Money(95)
        assert position.take_profit_price == Money("99.75")
        assert len(position.exchange_order_ids) == 2

    def test_reduce_realizes_partial_pnl(self, exchange, market_key):
        position = exchange.open_position(market_key, LONG, 2)
        pnl = exchange.reduce(position, 1, Money(110))

        assert pnl == Money(10)
        assert position.volume == Decimal(1)
        assert position.status == PositionStatus.OPEN
        assert exchange.balance == Money(1010)

    def test_reduce_whole_volume_rejected(self, exchange, market_key):
        position = exchange.open_position(market_key, LONG, 2)
        with pytest.raises(ValueError):
            exchange.reduce(position, 2)

    def test_close_records_reason_and_time(self, exchange, market_key):
        position = exchange.open_position(market_key, SHORT, 1)
        exchange.set_time(500)
        pnl = exchange.close(position, Money(90), FinishReason.TAKE_PROFIT)

        assert pnl == Money(10)
        assert position.finished_at == 500
        assert position.exit_price == Money(90)
        assert position.finish_reason == FinishReason.TAKE_PROFIT

    def test_closed_position_cannot_close_again(self, exchange, market_key):
        position = exchange.open_position(market_key, LONG, 1)
        exchange.close(position)
        with pytest.raises(IllegalStatusTransitionError):
            exchange.close(position)

    def test_mark_error(self, exchange, market_key):
        position = exchange.open_position(market_key, LONG, 1)
        exchange.mark_error(position, "no price data")
        assert position.status == PositionStatus.ERROR
        assert position.error_reason == "no price data"


class TestLiquidation:
    """Test suite for maintenance margin and forced closes."""

    def test_maintenance_requirement(self, exchange, market_key):
        exchange.open_position(market_key, LONG, 100, leverage=10)
        requirement = exchange.maintenance_requirement(market_key, Money(91), Decimal("0.5"))
        assert requirement == Money(455)
        assert exchange.equity(market_key, Money(91)) == Money(100)

    def test_liquidate_closes_open_and_cancels_pending(self, exchange, market_key):
        open_position = exchange.open_position(market_key, LONG, 100, leverage=10)
        order_id = exchange.place_limit_order(market_key, LONG, 1, Money(80), leverage=10)

        closed = exchange.liquidate(market_key, Money(91))

        assert closed == [open_position]
        assert open_position.finish_reason == FinishReason.LIQUIDATION
        assert exchange.store.get(order_id).status == PositionStatus.CANCELED
        assert exchange.active_positions() == []
        assert exchange.balance == Money(100)


class TestEvents:
    """Test suite for ledger notifications."""

    def test_listener_receives_ledger_events(self, exchange, market_key):
        received = []
        exchange.listener = lambda event_type, payload: received.append((event_type, payload))

        position = exchange.open_position(market_key, LONG, 2)
        exchange.top_up(position, 1)
        exchange.reduce(position, 1, Money(101))
        exchange.close(position)

        assert [e for e, _ in received] == [
            "position_open", "dca_fill", "partial_close", "position_close",
        ]
        assert "namespace" not in received[0][1]
