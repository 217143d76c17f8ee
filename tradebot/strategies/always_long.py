"""Always-long reference strategy.

Enters long whenever it has no position, with a fixed take-profit and an
optional stop-loss. Useful as a baseline and for engine acceptance tests.
"""

from typing import Optional

from ..models.positions import Position, PositionDirection
from .base import Strategy


class AlwaysLongStrategy(Strategy):
    """Params: volume (base units, default 1), take_profit_percent (default 5),
    stop_loss_percent (optional)."""

    name = "always_long"

    def __init__(self, params=None):
        super().__init__(params)
        self.volume = self._decimal("volume", 1)
        self.take_profit_percent = self._decimal("take_profit_percent", 5)
        self.stop_loss_percent = self._decimal("stop_loss_percent", None)

    def should_long(self) -> bool:
        return True

    def enter(self, market, direction: PositionDirection) -> Optional[Position]:
        return market.open_position(
            direction,
            self.volume,
            take_profit_percent=self.take_profit_percent,
            stop_loss_percent=self.stop_loss_percent,
        )
