"""
Shared pytest fixtures for tradebot testing.
Provides factory fixtures for candles, pairs, and a funded virtual exchange.
"""
from decimal import Decimal

import pytest

from tradebot.backtest.data_loader import InMemoryCandleSource
from tradebot.backtest.exchange import VirtualExchange
from tradebot.backtest.store import MemoryPositionStore
from tradebot.config import MarginMode
from tradebot.models.market_data import Candle, MarketKey
from tradebot.models.money import Money
from tradebot.models.pair import Pair

T0 = 1_700_000_000 - (1_700_000_000 % 3600)


@pytest.fixture
def candle_factory():
    """
    Factory fixture for creating candle lists.

    Usage:
        def test_example(candle_factory):
            candles = candle_factory([100] * 50)
            candles = candle_factory([100] * 50, overrides={10: {"high": 106}})
    """
    def _create_candles(closes, start=T0, step=3600, spread=0, overrides=None):
        """
        Create one candle per close.

        Args:
            closes: Close prices; the open of each candle equals its close
            start: open_time of the first candle
            step: Seconds between candles
            spread: High/low distance from the close
            overrides: {index: {"open"/"high"/"low"/"close": value}}

        Returns:
            List of Candle objects
        """
        overrides = overrides or {}
        candles = []
        for i, close in enumerate(closes):
            close = Decimal(str(close))
            values = {
                "open": close,
                "high": close + Decimal(str(spread)),
                "low": close - Decimal(str(spread)),
                "close": close,
            }
            values.update({k: Decimal(str(v)) for k, v in overrides.get(i, {}).items()})
            candles.append(Candle(start + i * step, volume=Decimal(10), **values))
        return candles

    return _create_candles


@pytest.fixture
def pair_factory():
    """
    Factory fixture for validated pairs.

    Usage:
        def test_example(pair_factory):
            pair = pair_factory(market_kind="futures", leverage=10)
    """
    def _create_pair(**overrides):
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

    return _create_pair


@pytest.fixture
def source_factory():
    """Factory fixture for an InMemoryCandleSource holding one pair's candles."""
    def _create_source(pair, candles):
        source = InMemoryCandleSource()
        source.add(pair.series_key, candles)
        return source

    return _create_source


@pytest.fixture
def market_key():
    return MarketKey("binance", "BTCUSDT", "futures")


@pytest.fixture
def exchange(market_key):
    """Shared-margin exchange with 1000 USDT and BTCUSDT priced at 100."""
    venue = VirtualExchange(Money(1000), MemoryPositionStore("test-run"))
    venue.set_current_price(market_key, Money(100))
    return venue


@pytest.fixture
def reserved_exchange(market_key):
    """Reserved-margin exchange with 1000 USDT, a 0.1% fee and BTCUSDT at 100."""
    venue = VirtualExchange(
        Money(1000), MemoryPositionStore("test-run"),
        margin_mode=MarginMode.RESERVED, fee_rate=Decimal("0.001"),
    )
    venue.set_current_price(market_key, Money(100))
    return venue
