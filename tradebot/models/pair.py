"""Trading pair definitions.

A Pair is the unit of work for the backtester: one market on one exchange, the
strategy that trades it, and the backtest window/balance to use.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from ..exceptions import InvalidConfigValueError
from ..validation import (
    ValidationError,
    timeframe_to_seconds,
    validate_currency,
    validate_exchange_name,
    validate_market_kind,
    validate_positive_decimal,
    validate_positive_int,
    validate_ticker,
    validate_timeframe,
)
from .market_data import MarketKey, MarketKind, SeriesKey
from .money import Money, decimal_to_str


@dataclass(frozen=True)
class Pair:
    """Backtest configuration for one market.

    Never instantiate from raw user input directly; use Pair.from_dict(),
    which validates every field at the boundary.
    """

    exchange: str
    ticker: str
    base_currency: str
    quote_currency: str
    market_kind: str
    timeframe: str
    strategy: str
    strategy_params: Dict[str, Any] = field(default_factory=dict)
    leverage: int = 1
    backtest_days: int = 30
    backtest_initial_balance: Decimal = Decimal(1000)
    ticks_per_candle: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pair":
        """Build a validated Pair from configuration.

        Args:
            data: Mapping with keys exchange, ticker, base_currency,
                quote_currency, market_kind, timeframe, strategy and optional
                strategy_params, leverage, backtest_days,
                backtest_initial_balance, ticks_per_candle

        Returns:
            Pair instance

        Raises:
            InvalidConfigValueError: If a field is missing or malformed

        Example:
            >>> pair = Pair.from_dict({
            ...     "exchange": "binance", "ticker": "BTCUSDT",
            ...     "base_currency": "BTC", "quote_currency": "USDT",
            ...     "market_kind": "futures", "timeframe": "1h",
            ...     "strategy": "always_long", "leverage": 10,
            ... })
            >>> pair.name
            'binance:BTCUSDT:futures:1h'
        """
        required = (
            "exchange", "ticker", "base_currency", "quote_currency",
            "market_kind", "timeframe", "strategy",
        )
        missing = [key for key in required if key not in data]
        if missing:
            raise InvalidConfigValueError(
                f"Pair definition missing fields: {', '.join(missing)}"
            )

        market_kind = validate_market_kind(data["market_kind"])
        leverage = validate_positive_int(data.get("leverage", 1), "leverage")
        if market_kind == MarketKind.SPOT and leverage != 1:
            raise ValidationError(f"Leverage {leverage} not allowed on spot markets")

        params = data.get("strategy_params") or {}
        if not isinstance(params, dict):
            raise ValidationError("strategy_params must be a mapping")

        ticks = data.get("ticks_per_candle")
        if ticks is not None:
            ticks = validate_positive_int(ticks, "ticks_per_candle")

        strategy = data["strategy"]
        if not isinstance(strategy, str) or not strategy:
            raise ValidationError("strategy must be a non-empty string")

        return cls(
            exchange=validate_exchange_name(data["exchange"]),
            ticker=validate_ticker(data["ticker"]),
            base_currency=validate_currency(data["base_currency"]),
            quote_currency=validate_currency(data["quote_currency"]),
            market_kind=market_kind,
            timeframe=validate_timeframe(data["timeframe"]),
            strategy=strategy,
            strategy_params=dict(params),
            leverage=leverage,
            backtest_days=validate_positive_int(data.get("backtest_days", 30), "backtest_days"),
            backtest_initial_balance=validate_positive_decimal(
                data.get("backtest_initial_balance", 1000), "backtest_initial_balance"
            ),
            ticks_per_candle=ticks,
        )

    @property
    def name(self) -> str:
        return str(self.series_key)

    @property
    def market_key(self) -> MarketKey:
        return MarketKey(self.exchange, self.ticker, self.market_kind)

    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(self.exchange, self.ticker, self.market_kind, self.timeframe)

    @property
    def timeframe_seconds(self) -> int:
        return timeframe_to_seconds(self.timeframe)

    @property
    def is_futures(self) -> bool:
        return self.market_kind == MarketKind.FUTURES

    @property
    def initial_balance(self) -> Money:
        return Money(self.backtest_initial_balance, self.quote_currency)

    def to_dict(self) -> dict:
        return {
            "exchange": self.exchange,
            "ticker": self.ticker,
            "base_currency": self.base_currency,
            "quote_currency": self.quote_currency,
            "market_kind": self.market_kind,
            "timeframe": self.timeframe,
            "strategy": self.strategy,
            "strategy_params": dict(self.strategy_params),
            "leverage": self.leverage,
            "backtest_days": self.backtest_days,
            "backtest_initial_balance": decimal_to_str(self.backtest_initial_balance),
            "ticks_per_candle": self.ticks_per_candle,
        }
