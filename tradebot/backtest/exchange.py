"""Virtual Exchange - in-memory execution venue for backtesting.

Owns one account (cash balance, locked margin, fees), the current price of
every market it has seen, the simulation clock, and a ledger store. Every
order-placing operation is atomic: if it raises InsufficientBalanceError the
ledger and the account are exactly as before the call.
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ..config import MarginMode
from ..exceptions import (
    CurrencyMismatchError,
    IllegalStatusTransitionError,
    InsufficientBalanceError,
    MissingPriceError,
)
from ..models.market_data import MarketKey
from ..models.money import Money, Scalar, to_decimal
from ..models.positions import FinishReason, Position, PositionDirection, PositionStatus
from .store import PositionStore

EventListener = Callable[[str, dict], None]


class VirtualExchange:
    """Simulated exchange account.

    Handles:
    - Market and limit entries with take-profit / stop-loss prices
    - DCA top-ups with volume-weighted average entry
    - Partial and full closes with realized PnL
    - Cancellation, error marking and forced liquidation
    - Shared or reserved margin accounting, optional taker fee

    Example:
        >>> exchange = VirtualExchange(Money("1000"), MemoryPositionStore("run-1"))
        >>> key = MarketKey("binance", "BTCUSDT", "futures")
        >>> exchange.set_current_price(key, Money("100"))
        >>> pos = exchange.open_position(key, PositionDirection.LONG, Decimal("1"),
        ...                              take_profit_percent=5)
        >>> pos.take_profit_price.amount
        Decimal('105.0000000000')
    """

    def __init__(
        self,
        initial_balance: Money,
        store: PositionStore,
        margin_mode: MarginMode = MarginMode.SHARED,
        fee_rate: Scalar = 0,
        listener: Optional[EventListener] = None,
        order_prefix: str = "bt",
    ):
        """Initialize the account.

        Args:
            initial_balance: Starting cash in the quote currency
            store: Ledger namespace for this run
            margin_mode: SHARED or RESERVED margin accounting
            fee_rate: Taker fee as a fraction of fill notional
            listener: Callback receiving (event_type, payload) for ledger events
            order_prefix: Prefix for generated order ids
        """
        self.logger = logging.getLogger(__name__)
        self.currency = initial_balance.currency
        self.initial_balance = initial_balance
        self.store = store
        self.margin_mode = MarginMode(margin_mode)
        self.fee_rate = to_decimal(fee_rate)
        self.listener = listener
        self.order_prefix = order_prefix

        self._balance = initial_balance
        self._locked = Money.zero(self.currency)
        self._total_fees = Money.zero(self.currency)
        self._prices: Dict[MarketKey, Money] = {}
        self._time = 0
        self._order_seq = 0

    # ------------------------------------------------------------------
    # Clock and prices
    # ------------------------------------------------------------------

    @property
    def time(self) -> int:
        """Current simulation time (Unix seconds)."""
        return self._time

    def set_time(self, timestamp: int):
        self._time = int(timestamp)

    def current_price(self, market: MarketKey) -> Optional[Money]:
        """Last price set for ``market``; None before the first tick."""
        return self._prices.get(market)

    def set_current_price(self, market: MarketKey, price: Money):
        """Move the market price and mark active entries to it."""
        self._check_currency(price)
        self._prices[market] = price
        for position in self.store.active(market):
            position.current_price = price

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    @property
    def balance(self) -> Money:
        """Free cash (excludes margin locked in RESERVED mode)."""
        return self._balance

    @property
    def locked_margin(self) -> Money:
        return self._locked

    @property
    def total_fees(self) -> Money:
        return self._total_fees

    @property
    def cash(self) -> Money:
        """Balance plus locked margin: the account value ignoring open PnL."""
        return self._balance + self._locked

    def unrealized_pnl(
        self, market: Optional[MarketKey] = None, mark_price: Optional[Money] = None
    ) -> Money:
        """Sum of open PnL, optionally for one market and at a hypothetical price."""
        total = Money.zero(self.currency)
        for position in self.store.active(market):
            if position.is_open:
                price = mark_price if mark_price is not None else position.current_price
                total = total + position.unrealized_pnl(price)
        return total

    def equity(self, market: Optional[MarketKey] = None, mark_price: Optional[Money] = None) -> Money:
        """Cash plus unrealized PnL."""
        return self.cash + self.unrealized_pnl(market, mark_price)

    def maintenance_requirement(
        self, market: MarketKey, mark_price: Money, share: Scalar
    ) -> Money:
        """Margin needed to keep the open book of ``market`` alive at ``mark_price``.

        ``sum(volume * mark) / leverage * share`` over OPEN entries.
        """
        share = to_decimal(share)
        total = Money.zero(self.currency)
        for position in self.store.active(market):
            if position.is_open:
                initial_margin = (mark_price * position.volume) / position.leverage
                total = total + initial_margin * share
        return total

    # ------------------------------------------------------------------
    # Ledger queries
    # ------------------------------------------------------------------

    def positions(self) -> List[Position]:
        return self.store.all()

    def active_positions(
        self,
        market: Optional[MarketKey] = None,
        direction: Optional[PositionDirection] = None,
    ) -> List[Position]:
        return self.store.active(market, direction)

    # ------------------------------------------------------------------
    # Order placement
    # ------------------------------------------------------------------

    def open_position(
        self,
        market: MarketKey,
        direction: PositionDirection,
        volume: Scalar,
        price: Optional[Money] = None,
        take_profit_percent: Optional[Scalar] = None,
        stop_loss_percent: Optional[Scalar] = None,
        limit: bool = False,
        leverage: int = 1,
    ) -> Position:
        """Open a position at ``price`` (market order at the current price if omitted).

        Args:
            market: Market to trade
            direction: LONG or SHORT
            volume: Size in base currency units
            price: Entry price; defaults to the current market price
            take_profit_percent: TP offset from entry in the profitable direction
            stop_loss_percent: SL offset from entry against the position
            limit: Create a resting PENDING entry instead of filling now
            leverage: Futures leverage (1 for spot)

        Returns:
            The new OPEN (or PENDING) position

        Raises:
            MissingPriceError: No price given and none known for the market
            InsufficientBalanceError: Account cannot fund the margin
        """
        if limit:
            if price is None:
                raise ValueError("Limit orders need an explicit price")
            order_id = self.place_limit_order(
                market, direction, volume, price,
                take_profit_percent=take_profit_percent,
                stop_loss_percent=stop_loss_percent,
                leverage=leverage,
            )
            return self.store.get(order_id)

        volume = self._check_volume(volume)
        price = price if price is not None else self._require_price(market)
        self._check_currency(price)

        margin = self._margin(price, volume, leverage)
        fee = self._fee(price, volume)
        self._authorize(margin, fee)

        position = self._new_position(
            market, direction, volume, price, PositionStatus.OPEN,
            take_profit_percent, stop_loss_percent, leverage,
        )
        self._lock(position, margin)
        self._charge(position, fee)
        self.store.add(position)

        self.logger.debug(
            "position_opened",
            extra={"position_id": position.id, "direction": direction.value,
                   "volume": str(volume), "price": price.to_json()},
        )
        self._emit("position_open", position)
        return position

    def place_limit_order(
        self,
        market: MarketKey,
        direction: PositionDirection,
        volume: Scalar,
        price: Money,
        take_profit_percent: Optional[Scalar] = None,
        stop_loss_percent: Optional[Scalar] = None,
        leverage: int = 1,
    ) -> str:
        """Rest a limit entry; it stays PENDING until the price crosses ``price``.

        Returns:
            Order id (also the position id)

        Raises:
            InsufficientBalanceError: RESERVED mode and the margin exceeds free cash
        """
        volume = self._check_volume(volume)
        self._check_currency(price)

        margin = self._margin(price, volume, leverage)
        self._authorize(margin, self._fee(price, volume))

        position = self._new_position(
            market, direction, volume, price, PositionStatus.PENDING,
            take_profit_percent, stop_loss_percent, leverage,
        )
        current = self.current_price(market)
        if current is not None:
            position.current_price = current
        self._lock(position, margin)
        self.store.add(position)

        self.logger.debug(
            "limit_order_placed",
            extra={"position_id": position.id, "direction": direction.value,
                   "price": price.to_json()},
        )
        return position.id

    def fill_pending(self, position: Position, fill_price: Optional[Money] = None):
        """Fill a PENDING entry (PENDING -> OPEN) at its limit price by default."""
        if not position.is_pending:
            raise IllegalStatusTransitionError(
                position.id, position.status.value, PositionStatus.OPEN.value
            )
        price = fill_price if fill_price is not None else position.average_entry_price
        position.transition_to(PositionStatus.OPEN)
        position.initial_entry_price = price
        position.average_entry_price = price
        position.current_price = self.current_price(position.market) or price
        self._derive_exit_prices(position)
        self._charge(position, self._fee(price, position.volume))
        self.store.save(position)
        self._emit("position_open", position)

    def top_up(self, position: Position, additional_volume: Scalar, price: Optional[Money] = None):
        """Add volume to an OPEN position (DCA).

        The average entry becomes the volume-weighted mean of all fills and the
        TP/SL prices are re-derived from it when their percents are known.

        Raises:
            InsufficientBalanceError: Account cannot fund the extra margin
        """
        self._require_status(position, PositionStatus.OPEN, "top up")
        additional = self._check_volume(additional_volume)
        price = price if price is not None else self._require_price(position.market)

        margin = self._margin(price, additional, position.leverage)
        fee = self._fee(price, additional)
        self._authorize(margin, fee)

        total_volume = position.volume + additional
        weighted = position.average_entry_price * position.volume + price * additional
        position.average_entry_price = weighted / total_volume
        position.volume = total_volume
        self._derive_exit_prices(position)
        self._lock(position, margin)
        self._charge(position, fee)
        position.exchange_order_ids.append(self._next_order_id())
        self.store.save(position)

        self._emit("dca_fill", position, {
            "added_volume": str(additional), "fill_price": price.to_json(),
        })

    def reduce(self, position: Position, volume: Scalar, price: Optional[Money] = None) -> Money:
        """Close part of an OPEN position and realize that part's PnL.

        Returns:
            Realized PnL of the closed portion (before fees)
        """
        self._require_status(position, PositionStatus.OPEN, "reduce")
        volume = self._check_volume(volume)
        if volume >= position.volume:
            raise ValueError(
                f"Reduce volume {volume} must be below position volume {position.volume}"
            )
        price = price if price is not None else self._require_price(position.market)

        pnl = position.pnl_at(price, volume)
        released = position.locked_margin * (volume / position.volume)
        self._release(position, released)
        self._balance = self._balance + pnl
        position.realized_pnl = position.realized_pnl + pnl
        position.volume = position.volume - volume
        self._charge(position, self._fee(price, volume))
        position.exchange_order_ids.append(self._next_order_id())
        self.store.save(position)

        self._emit("partial_close", position, {
            "closed_volume": str(volume), "price": price.to_json(), "pnl": pnl.to_json(),
        })
        return pnl

    def close(
        self,
        position: Position,
        exit_price: Optional[Money] = None,
        reason: FinishReason = FinishReason.TAKE_PROFIT,
    ) -> Money:
        """Finish an OPEN position at ``exit_price`` (current price if omitted).

        Returns:
            Realized PnL of the remaining volume (before fees)
        """
        self._require_status(position, PositionStatus.OPEN, "close")
        price = exit_price if exit_price is not None else self._require_price(position.market)

        pnl = position.pnl_at(price)
        position.transition_to(PositionStatus.FINISHED)
        self._release(position, position.locked_margin)
        self._balance = self._balance + pnl
        position.realized_pnl = position.realized_pnl + pnl
        position.exit_price = price
        position.current_price = price
        position.finish_reason = FinishReason(reason)
        position.finished_at = self._time
        self._charge(position, self._fee(price, position.volume))
        self.store.save(position)

        self.logger.debug(
            "position_closed",
            extra={"position_id": position.id, "reason": position.finish_reason.value,
                   "exit_price": price.to_json(), "pnl": position.realized_pnl.to_json()},
        )
        self._emit("position_close", position)
        return pnl

    def cancel(self, position: Position):
        """PENDING|OPEN -> CANCELED; refunds locked margin, realizes nothing."""
        position.transition_to(PositionStatus.CANCELED)
        self._release(position, position.locked_margin)
        position.finished_at = self._time
        self.store.save(position)
        self._emit("position_close", position)

    def mark_error(self, position: Position, reason: str):
        """OPEN -> ERROR; the entry can no longer be valued."""
        position.transition_to(PositionStatus.ERROR)
        self._release(position, position.locked_margin)
        position.error_reason = reason
        position.finished_at = self._time
        self.store.save(position)
        self.logger.warning(
            "position_error", extra={"position_id": position.id, "reason": reason}
        )
        self._emit("position_close", position)

    def liquidate(self, market: MarketKey, price: Money) -> List[Position]:
        """Force-close every OPEN entry of ``market`` at ``price``; cancel resting ones."""
        closed = []
        for position in self.store.active(market):
            if position.is_open:
                self.close(position, price, FinishReason.LIQUIDATION)
                closed.append(position)
            else:
                self.cancel(position)
        return closed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_order_id(self) -> str:
        self._order_seq += 1
        return f"{self.order_prefix}-{self._order_seq}"

    def _new_position(
        self, market, direction, volume, price, status,
        take_profit_percent, stop_loss_percent, leverage,
    ) -> Position:
        order_id = self._next_order_id()
        position = Position(
            id=order_id,
            namespace=self.store.namespace,
            market=market,
            direction=PositionDirection(direction),
            status=status,
            volume=volume,
            initial_entry_price=price,
            average_entry_price=price,
            current_price=self.current_price(market) or price,
            created_at=self._time,
            leverage=int(leverage),
            expected_profit_percent=(
                to_decimal(take_profit_percent) if take_profit_percent is not None else None
            ),
            expected_stop_loss_percent=(
                to_decimal(stop_loss_percent) if stop_loss_percent is not None else None
            ),
            exchange_order_ids=[order_id],
        )
        self._derive_exit_prices(position)
        return position

    @staticmethod
    def _derive_exit_prices(position: Position):
        entry = position.average_entry_price
        if position.expected_profit_percent is not None:
            position.take_profit_price = entry.modify_by_percent_with_direction(
                position.expected_profit_percent, position.direction
            )
        if position.expected_stop_loss_percent is not None and not position.breakeven_locked:
            position.stop_loss_price = entry.modify_by_percent_with_direction(
                -position.expected_stop_loss_percent, position.direction
            )

    def _margin(self, price: Money, volume: Decimal, leverage: int) -> Money:
        return (price * volume) / max(int(leverage), 1)

    def _fee(self, price: Money, volume: Decimal) -> Money:
        return (price * volume) * self.fee_rate

    def _authorize(self, margin: Money, fee: Money):
        """Reject the order before anything changes if it cannot be funded."""
        if self.margin_mode == MarginMode.RESERVED:
            required = margin + fee
            if required > self._balance:
                raise InsufficientBalanceError(required.format(), self._balance.format())
        else:
            equity = self.equity()
            if not equity.is_positive() or fee > equity:
                raise InsufficientBalanceError(margin.format(), equity.format())

    def _lock(self, position: Position, margin: Money):
        if self.margin_mode != MarginMode.RESERVED:
            return
        self._balance = self._balance - margin
        self._locked = self._locked + margin
        position.locked_margin = position.locked_margin + margin

    def _release(self, position: Position, amount: Money):
        if amount.is_zero():
            return
        self._locked = self._locked - amount
        self._balance = self._balance + amount
        position.locked_margin = position.locked_margin - amount

    def _charge(self, position: Position, fee: Money):
        if fee.is_zero():
            return
        self._balance = self._balance - fee
        self._total_fees = self._total_fees + fee
        position.fees = position.fees + fee

    def _require_price(self, market: MarketKey) -> Money:
        price = self.current_price(market)
        if price is None:
            raise MissingPriceError(f"No current price for {market}")
        return price

    def _check_currency(self, price: Money):
        if price.currency != self.currency:
            raise CurrencyMismatchError(self.currency, price.currency)

    @staticmethod
    def _check_volume(volume: Scalar) -> Decimal:
        volume = to_decimal(volume)
        if not volume.is_finite() or volume <= 0:
            raise ValueError(f"Volume must be positive, got {volume}")
        return volume

    @staticmethod
    def _require_status(position: Position, status: PositionStatus, action: str):
        if position.status != status:
            raise IllegalStatusTransitionError(position.id, position.status.value, action)

    def _emit(self, event_type: str, position: Position, extra: Optional[dict] = None):
        if self.listener is None:
            return
        payload = position.to_dict(include_namespace=False)
        if extra:
            payload.update(extra)
        self.listener(event_type, payload)
