"""Position ledger models.

A Position is one simulated trade living in a per-run ledger namespace. Its
status moves only forward through a small state machine; terminal entries are
kept for the final report and never deleted mid-run.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from ..exceptions import IllegalStatusTransitionError
from .market_data import MarketKey
from .money import Money, decimal_to_str, to_decimal


class PositionDirection(str, Enum):
    """Position direction enumeration."""
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        """+1 for long, -1 for short; multiplies price moves into PnL."""
        return 1 if self is PositionDirection.LONG else -1


class PositionStatus(str, Enum):
    """Position status enumeration."""
    PENDING = "pending"
    OPEN = "open"
    FINISHED = "finished"
    ERROR = "error"
    CANCELED = "canceled"


class FinishReason(str, Enum):
    """Why a position was finished."""
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    LIQUIDATION = "liquidation"


ALLOWED_TRANSITIONS: Dict[PositionStatus, FrozenSet[PositionStatus]] = {
    PositionStatus.PENDING: frozenset({PositionStatus.OPEN, PositionStatus.CANCELED}),
    PositionStatus.OPEN: frozenset(
        {PositionStatus.FINISHED, PositionStatus.ERROR, PositionStatus.CANCELED}
    ),
    PositionStatus.FINISHED: frozenset(),
    PositionStatus.ERROR: frozenset(),
    PositionStatus.CANCELED: frozenset(),
}

ACTIVE_STATUSES = frozenset({PositionStatus.PENDING, PositionStatus.OPEN})


def _money_or_none(value: Optional[Money]) -> Optional[str]:
    return value.to_json() if value is not None else None


@dataclass
class Position:
    """One simulated trade.

    All prices are Money in the pair's quote currency; ``volume`` is in base
    currency units. Times are simulation times (Unix seconds), never wall-clock.
    """

    id: str
    namespace: str
    market: MarketKey
    direction: PositionDirection
    status: PositionStatus
    volume: Decimal
    initial_entry_price: Money
    average_entry_price: Money
    current_price: Money
    created_at: int
    leverage: int = 1
    take_profit_price: Optional[Money] = None
    stop_loss_price: Optional[Money] = None
    expected_profit_percent: Optional[Decimal] = None
    expected_stop_loss_percent: Optional[Decimal] = None
    finish_reason: Optional[FinishReason] = None
    finished_at: Optional[int] = None
    exit_price: Optional[Money] = None
    exchange_order_ids: List[str] = field(default_factory=list)
    locked_margin: Optional[Money] = None
    realized_pnl: Optional[Money] = None
    fees: Optional[Money] = None
    breakeven_locked: bool = False
    error_reason: Optional[str] = None

    def __post_init__(self):
        self.volume = to_decimal(self.volume)
        currency = self.average_entry_price.currency
        if self.locked_margin is None:
            self.locked_margin = Money.zero(currency)
        if self.realized_pnl is None:
            self.realized_pnl = Money.zero(currency)
        if self.fees is None:
            self.fees = Money.zero(currency)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition_to(self, target: PositionStatus):
        """Move to ``target`` status.

        Raises:
            IllegalStatusTransitionError: If the move is not allowed
        """
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise IllegalStatusTransitionError(self.id, self.status.value, target.value)
        self.status = target

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def is_pending(self) -> bool:
        return self.status == PositionStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    @property
    def currency(self) -> str:
        return self.average_entry_price.currency

    def pnl_at(self, price: Money, volume: Optional[Decimal] = None) -> Money:
        """PnL of ``volume`` units (default: all) if closed at ``price``."""
        volume = self.volume if volume is None else volume
        return (price - self.average_entry_price) * (volume * self.direction.sign)

    def unrealized_pnl(self, price: Optional[Money] = None) -> Money:
        """Mark-to-market PnL; zero unless the position is OPEN."""
        if not self.is_open:
            return Money.zero(self.currency)
        return self.pnl_at(price or self.current_price)

    def profit_percent(self, price: Optional[Money] = None) -> Decimal:
        """Price move from the average entry, signed by direction."""
        price = price or self.current_price
        return price.percent_difference(self.average_entry_price) * self.direction.sign

    def duration(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.created_at

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self, include_namespace: bool = True) -> dict:
        """Serialize; the namespace is run-specific and left out of reports."""
        data = {
            "id": self.id,
            "namespace": self.namespace,
            "exchange": self.market.exchange,
            "ticker": self.market.ticker,
            "market_kind": self.market.market_kind,
            "direction": self.direction.value,
            "status": self.status.value,
            "volume": decimal_to_str(self.volume),
            "currency": self.currency,
            "initial_entry_price": self.initial_entry_price.to_json(),
            "average_entry_price": self.average_entry_price.to_json(),
            "current_price": self.current_price.to_json(),
            "created_at": self.created_at,
            "leverage": self.leverage,
            "take_profit_price": _money_or_none(self.take_profit_price),
            "stop_loss_price": _money_or_none(self.stop_loss_price),
            "expected_profit_percent": (
                decimal_to_str(self.expected_profit_percent)
                if self.expected_profit_percent is not None else None
            ),
            "expected_stop_loss_percent": (
                decimal_to_str(self.expected_stop_loss_percent)
                if self.expected_stop_loss_percent is not None else None
            ),
            "finish_reason": self.finish_reason.value if self.finish_reason else None,
            "finished_at": self.finished_at,
            "exit_price": _money_or_none(self.exit_price),
            "exchange_order_ids": list(self.exchange_order_ids),
            "locked_margin": self.locked_margin.to_json(),
            "realized_pnl": self.realized_pnl.to_json(),
            "fees": self.fees.to_json(),
            "breakeven_locked": self.breakeven_locked,
            "error_reason": self.error_reason,
        }
        if not include_namespace:
            del data["namespace"]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        """Inverse of to_dict(); used by persistent ledger stores."""
        currency = data["currency"]

        def money(key: str) -> Optional[Money]:
            value = data.get(key)
            return Money(value, currency) if value is not None else None

        def dec(key: str) -> Optional[Decimal]:
            value = data.get(key)
            return Decimal(value) if value is not None else None

        return cls(
            id=data["id"],
            namespace=data["namespace"],
            market=MarketKey(data["exchange"], data["ticker"], data["market_kind"]),
            direction=PositionDirection(data["direction"]),
            status=PositionStatus(data["status"]),
            volume=Decimal(data["volume"]),
            initial_entry_price=money("initial_entry_price"),
            average_entry_price=money("average_entry_price"),
            current_price=money("current_price"),
            created_at=int(data["created_at"]),
            leverage=int(data.get("leverage", 1)),
            take_profit_price=money("take_profit_price"),
            stop_loss_price=money("stop_loss_price"),
            expected_profit_percent=dec("expected_profit_percent"),
            expected_stop_loss_percent=dec("expected_stop_loss_percent"),
            finish_reason=FinishReason(data["finish_reason"]) if data.get("finish_reason") else None,
            finished_at=data.get("finished_at"),
            exit_price=money("exit_price"),
            exchange_order_ids=list(data.get("exchange_order_ids") or []),
            locked_margin=money("locked_margin"),
            realized_pnl=money("realized_pnl"),
            fees=money("fees"),
            breakeven_locked=bool(data.get("breakeven_locked", False)),
            error_reason=data.get("error_reason"),
        )
