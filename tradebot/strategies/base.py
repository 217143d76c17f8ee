"""Strategy interface.

A strategy is bound to one Market. The runner asks ``should_long()`` /
``should_short()`` when the strategy may enter, calls ``handle_long()`` /
``handle_short()`` to place the entry, and calls ``update_position()`` for each
active entry at every decision point so the strategy can manage it (move
stops, top up, partially close, cancel stale limit orders).
"""

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ..models.positions import Position, PositionDirection
from ..validation import ValidationError


class Strategy(ABC):
    """Base class for strategies.

    Subclasses parse their parameters in ``__init__`` (raising ValidationError
    for bad values) so that a batch can reject a malformed configuration before
    any simulation starts.
    """

    name: str = "strategy"

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        self.params: Dict[str, Any] = dict(params or {})
        self.market = None

    def bind(self, market):
        """Attach the strategy to the Market it trades."""
        self.market = market

    # ------------------------------------------------------------------
    # Decision interface
    # ------------------------------------------------------------------

    @abstractmethod
    def should_long(self) -> bool:
        """Whether to enter long at the current step."""

    def should_short(self) -> bool:
        """Whether to enter short at the current step."""
        return False

    def handle_long(self, market) -> Optional[Position]:
        return self.enter(market, PositionDirection.LONG)

    def handle_short(self, market) -> Optional[Position]:
        return self.enter(market, PositionDirection.SHORT)

    @abstractmethod
    def enter(self, market, direction: PositionDirection) -> Optional[Position]:
        """Place the entry for ``direction``."""

    def update_position(self, position: Position):
        """Manage an active position; default does nothing."""

    def uses_indicators(self) -> Dict[str, Dict[str, Any]]:
        """Indicators this strategy reads, as ``{alias: params}``.

        ``params`` may carry ``"type"`` to name the registered indicator when the
        alias differs from it (e.g. ``{"ema_fast": {"type": "ema", "period": 9}}``).
        """
        return {}

    def is_two_way(self) -> bool:
        """True to allow one long and one short entry at the same time."""
        return False

    def warmup_candles(self) -> int:
        """Candles needed before the first decision."""
        return 1

    # ------------------------------------------------------------------
    # Parameter parsing
    # ------------------------------------------------------------------

    def _decimal(
        self, key: str, default: Optional[Any] = None, minimum: Optional[Decimal] = Decimal(0)
    ) -> Optional[Decimal]:
        raw = self.params.get(key, default)
        if raw is None:
            return None
        if isinstance(raw, bool):
            raise ValidationError(f"{self.name}.{key} must be a number, got bool")
        try:
            value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except InvalidOperation:
            raise ValidationError(f"{self.name}.{key} must be a number, got {raw!r}")
        if not value.is_finite():
            raise ValidationError(f"{self.name}.{key} must be finite")
        if minimum is not None and value <= minimum:
            raise ValidationError(f"{self.name}.{key} must be > {minimum}, got {value}")
        return value

    def _int(self, key: str, default: int, minimum: int = 1) -> int:
        raw = self.params.get(key, default)
        if isinstance(raw, bool) or not isinstance(raw, (int, str)):
            raise ValidationError(f"{self.name}.{key} must be an integer, got {raw!r}")
        try:
            value = int(raw)
        except ValueError:
            raise ValidationError(f"{self.name}.{key} must be an integer, got {raw!r}")
        if value < minimum:
            raise ValidationError(f"{self.name}.{key} must be >= {minimum}, got {value}")
        return value

    def _bool(self, key: str, default: bool) -> bool:
        raw = self.params.get(key, default)
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.lower() in ("true", "false", "yes", "no", "1", "0"):
            return raw.lower() in ("true", "yes", "1")
        raise ValidationError(f"{self.name}.{key} must be a boolean, got {raw!r}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.params})"
