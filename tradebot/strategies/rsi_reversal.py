"""RSI mean-reversion strategy with stop-loss, take-profit and breakeven lock.

Longs when RSI is oversold and (optionally) shorts when it is overbought, one
position at a time. Entries are market orders, or limit orders placed
``limit_offset_percent`` below/above the price that are canceled if the price
runs away by ``limit_cancel_percent`` before filling.

Breakeven lock: once the price has covered ``breakeven_trigger_percent`` of the
way from entry to take-profit, ``breakeven_close_percent`` of the volume is
closed at that trigger level and the stop-loss is moved to the entry price.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from ..models.money import Money
from ..models.positions import Position, PositionDirection
from ..validation import ValidationError
from .base import Strategy

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


class RSIReversalStrategy(Strategy):
    """Single-entry RSI reversal strategy."""

    name = "rsi_reversal"

    def __init__(self, params=None):
        super().__init__(params)
        self.volume = self._decimal("volume", 1)
        self.rsi_period = self._int("rsi_period", 14, minimum=2)
        self.oversold = self._decimal("oversold", 30)
        self.overbought = self._decimal("overbought", 70)
        if not self.oversold < self.overbought < HUNDRED:
            raise ValidationError(f"{self.name}: need oversold < overbought < 100")
        self.allow_short = self._bool("allow_short", True)
        self.take_profit_percent = self._decimal("take_profit_percent", 3)
        self.stop_loss_percent = self._decimal("stop_loss_percent", 2)

        self.limit_offset_percent = self._decimal("limit_offset_percent", None)
        self.limit_cancel_percent = self._decimal("limit_cancel_percent", 1)
        # Market price at placement, per resting limit order
        self._limit_reference: Dict[str, Money] = {}

        self.breakeven_enabled = self._bool("breakeven_lock", False)
        self.breakeven_trigger_percent = self._decimal("breakeven_trigger_percent", 50)
        self.breakeven_close_percent = self._decimal("breakeven_close_percent", 50)
        if self.breakeven_close_percent >= HUNDRED:
            raise ValidationError(f"{self.name}.breakeven_close_percent must be < 100")

    def uses_indicators(self):
        return {
            "rsi": {
                "period": self.rsi_period,
                "oversold": float(self.oversold),
                "overbought": float(self.overbought),
            }
        }

    def warmup_candles(self) -> int:
        return self.rsi_period + 1

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _latest_rsi(self) -> Optional[Decimal]:
        latest = self.market.indicator("rsi").latest
        return Decimal(str(latest)) if latest is not None else None

    def should_long(self) -> bool:
        rsi = self._latest_rsi()
        return rsi is not None and rsi <= self.oversold

    def should_short(self) -> bool:
        rsi = self._latest_rsi()
        return self.allow_short and rsi is not None and rsi >= self.overbought

    def enter(self, market, direction: PositionDirection) -> Optional[Position]:
        if self.limit_offset_percent is not None:
            reference = market.current_price
            limit_price = reference.modify_by_percent_with_direction(
                -self.limit_offset_percent, direction
            )
            position = market.place_limit_order(
                direction, self.volume, limit_price,
                take_profit_percent=self.take_profit_percent,
                stop_loss_percent=self.stop_loss_percent,
            )
            self._limit_reference[position.id] = reference
            return position
        return market.open_position(
            direction, self.volume,
            take_profit_percent=self.take_profit_percent,
            stop_loss_percent=self.stop_loss_percent,
        )

    # ------------------------------------------------------------------
    # Position management
    # ------------------------------------------------------------------

    def update_position(self, position: Position):
        if position.is_pending:
            self._cancel_runaway_limit(position)
            return
        self._limit_reference.pop(position.id, None)
        if position.is_open and self.breakeven_enabled and not position.breakeven_locked:
            self._maybe_lock_breakeven(position)

    def _cancel_runaway_limit(self, position: Position):
        """Cancel when the price moved ``limit_cancel_percent`` away from where the order was placed."""
        reference = self._limit_reference.get(position.id, position.average_entry_price)
        moved = position.current_price.percent_difference(reference)
        if moved * position.direction.sign >= self.limit_cancel_percent:
            logger.debug(
                "limit_entry_canceled",
                extra={"position_id": position.id, "moved_percent": str(moved)},
            )
            self.market.cancel(position)
            self._limit_reference.pop(position.id, None)

    def _maybe_lock_breakeven(self, position: Position):
        entry = position.average_entry_price
        target = position.take_profit_price
        if target is None or target == entry:
            return

        progress = (position.current_price - entry).ratio(target - entry) * HUNDRED
        if progress < self.breakeven_trigger_percent:
            return

        trigger_price = entry + (target - entry) * (self.breakeven_trigger_percent / HUNDRED)
        close_volume = position.volume * self.breakeven_close_percent / HUNDRED
        self.market.reduce(position, close_volume, trigger_price)
        position.breakeven_locked = True
        self.market.set_stop_loss(position, entry)
        logger.debug(
            "breakeven_locked",
            extra={"position_id": position.id, "closed_volume": str(close_volume),
                   "trigger_price": trigger_price.to_json()},
        )
