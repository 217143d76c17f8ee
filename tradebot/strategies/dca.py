"""Dollar-cost-averaging strategy.

Opens a market entry in a fixed direction, then adds to it every time the price
moves another ``deviation_percent`` against the initial entry, each add being
``volume_multiplier`` times larger than the previous one. The take-profit is
re-derived from the new average entry after every add.
"""

from typing import Optional

from ..models.positions import Position, PositionDirection
from ..validation import ValidationError
from .base import Strategy


class DCAStrategy(Strategy):
    """Params: volume, take_profit_percent, deviation_percent, volume_multiplier,
    max_orders (entry included), direction ("long" or "short")."""

    name = "dca_averaging"

    def __init__(self, params=None):
        super().__init__(params)
        self.volume = self._decimal("volume", 1)
        self.take_profit_percent = self._decimal("take_profit_percent", 1)
        self.deviation_percent = self._decimal("deviation_percent", 2)
        self.volume_multiplier = self._decimal("volume_multiplier", 2)
        self.max_orders = self._int("max_orders", 4)
        direction = str(self.params.get("direction", "long")).lower()
        try:
            self.direction = PositionDirection(direction)
        except ValueError:
            raise ValidationError(f"{self.name}.direction must be 'long' or 'short'")

    def should_long(self) -> bool:
        return self.direction is PositionDirection.LONG

    def should_short(self) -> bool:
        return self.direction is PositionDirection.SHORT

    def enter(self, market, direction: PositionDirection) -> Optional[Position]:
        return market.open_position(
            direction, self.volume, take_profit_percent=self.take_profit_percent
        )

    def update_position(self, position: Position):
        if not position.is_open:
            return

        fills = len(position.exchange_order_ids)
        if fills >= self.max_orders:
            return

        adverse = -position.current_price.percent_difference(position.initial_entry_price)
        adverse *= position.direction.sign
        if adverse >= self.deviation_percent * fills:
            add_volume = self.volume * self.volume_multiplier ** fills
            self.market.top_up(position, add_volume)
