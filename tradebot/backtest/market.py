"""Simulation context for one pair.

The Market is what strategies and indicators see: the candles visible at the
current step, the latest indicator results, and trading shortcuts bound to the
pair's market key on the virtual exchange. The runner is the only component
that moves the visible window forward.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ..indicators.base import Indicator, IndicatorResult
from ..models.market_data import Candle, CandleWindow, MarketKey, candles_to_frame
from ..models.money import Money, Scalar
from ..models.pair import Pair
from ..models.positions import Position, PositionDirection
from .exchange import VirtualExchange


class Market:
    """Candle window, indicators and order shortcuts for one pair."""

    def __init__(
        self,
        pair: Pair,
        exchange: VirtualExchange,
        indicators: Optional[Dict[str, Indicator]] = None,
    ):
        self.pair = pair
        self.exchange = exchange
        self.indicators: Dict[str, Indicator] = dict(indicators or {})
        self._candles: Sequence[Candle] = []
        self._frame: Optional[pd.DataFrame] = None
        self._results: Dict[str, IndicatorResult] = {}

    # ------------------------------------------------------------------
    # Window
    # ------------------------------------------------------------------

    @property
    def key(self) -> MarketKey:
        return self.pair.market_key

    @property
    def candles(self) -> Sequence[Candle]:
        """Candles visible at the current step, oldest first."""
        return self._candles

    @property
    def last_candle(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def set_candles(self, candles: Sequence[Candle]):
        """Replace the visible window (runner only)."""
        self._candles = candles
        self._frame = None
        self._results = {}

    def frame(self) -> pd.DataFrame:
        """Visible candles as a float OHLCV DataFrame (cached per window)."""
        if self._frame is None:
            if isinstance(self._candles, CandleWindow):
                self._frame = self._candles.to_frame()
            else:
                self._frame = candles_to_frame(self._candles)
        return self._frame

    def calculate_indicators(self) -> Dict[str, IndicatorResult]:
        """Recompute every indicator over the visible window."""
        self._results = {
            name: indicator.calculate(self) for name, indicator in self.indicators.items()
        }
        return self._results

    def indicator(self, name: str) -> IndicatorResult:
        """Latest result for indicator ``name`` (empty before the first calculation)."""
        return self._results.get(name, IndicatorResult())

    # ------------------------------------------------------------------
    # Prices and account
    # ------------------------------------------------------------------

    @property
    def time(self) -> int:
        return self.exchange.time

    @property
    def current_price(self) -> Optional[Money]:
        return self.exchange.current_price(self.key)

    @property
    def balance(self) -> Money:
        return self.exchange.balance

    def equity(self) -> Money:
        return self.exchange.equity()

    def money(self, amount: Scalar) -> Money:
        return Money(amount, self.pair.quote_currency)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def active_positions(self, direction: Optional[PositionDirection] = None) -> List[Position]:
        return self.exchange.active_positions(self.key, direction)

    def has_active_position(self, direction: Optional[PositionDirection] = None) -> bool:
        return bool(self.active_positions(direction))

    def open_position(
        self,
        direction: PositionDirection,
        volume: Scalar,
        take_profit_percent: Optional[Scalar] = None,
        stop_loss_percent: Optional[Scalar] = None,
    ) -> Position:
        """Market entry at the current price with the pair's leverage."""
        return self.exchange.open_position(
            self.key, direction, volume,
            take_profit_percent=take_profit_percent,
            stop_loss_percent=stop_loss_percent,
            leverage=self.pair.leverage,
        )

    def place_limit_order(
        self,
        direction: PositionDirection,
        volume: Scalar,
        price: Money,
        take_profit_percent: Optional[Scalar] = None,
        stop_loss_percent: Optional[Scalar] = None,
    ) -> Position:
        order_id = self.exchange.place_limit_order(
            self.key, direction, volume, price,
            take_profit_percent=take_profit_percent,
            stop_loss_percent=stop_loss_percent,
            leverage=self.pair.leverage,
        )
        return self.exchange.store.get(order_id)

    def top_up(self, position: Position, volume: Scalar):
        self.exchange.top_up(position, volume)

    def reduce(self, position: Position, volume: Decimal, price: Optional[Money] = None) -> Money:
        return self.exchange.reduce(position, volume, price)

    def cancel(self, position: Position):
        self.exchange.cancel(position)

    def set_stop_loss(self, position: Position, price: Money):
        """Move the stop-loss of an active position."""
        position.stop_loss_price = price
        self.exchange.store.save(position)
