"""Market data models.

Candles are immutable Decimal OHLCV bars. A CandleSeries is the ordered,
read-only history of one (exchange, ticker, market kind, timeframe) series
that the backtest replays.
"""

from collections import abc
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Iterator, Optional, Sequence, Tuple

import pandas as pd

from ..exceptions import InvalidCandleError
from .money import decimal_to_str, to_decimal


class MarketKind:
    """Market kinds supported by the virtual exchange."""
    SPOT = "spot"
    FUTURES = "futures"


@dataclass(frozen=True)
class MarketKey:
    """Identifies one tradable market on one exchange.

    Used as the key for current prices and ledger lookups.
    """

    exchange: str
    ticker: str
    market_kind: str

    def __str__(self) -> str:
        return f"{self.exchange}:{self.ticker}:{self.market_kind}"


@dataclass(frozen=True)
class SeriesKey:
    """Identifies one candle series (a market at a given timeframe)."""

    exchange: str
    ticker: str
    market_kind: str
    timeframe: str

    @property
    def market(self) -> MarketKey:
        return MarketKey(self.exchange, self.ticker, self.market_kind)

    def __str__(self) -> str:
        return f"{self.exchange}:{self.ticker}:{self.market_kind}:{self.timeframe}"


@dataclass(frozen=True)
class Candle:
    """OHLCV bar with Decimal prices.

    ``open_time`` is the Unix timestamp (seconds) of the bar's start.
    """

    open_time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal(0)

    def __post_init__(self):
        """Coerce numeric fields and validate data integrity."""
        for name in ("open", "high", "low", "close", "volume"):
            try:
                object.__setattr__(self, name, to_decimal(getattr(self, name)))
            except ArithmeticError as e:
                raise InvalidCandleError(f"Invalid OHLCV {name}: {getattr(self, name)!r}") from e
        object.__setattr__(self, "open_time", int(self.open_time))

        if self.high < self.low:
            raise InvalidCandleError(f"Invalid OHLCV: high ({self.high}) < low ({self.low})")
        if self.high < max(self.open, self.close):
            raise InvalidCandleError(f"Invalid OHLCV: high ({self.high}) below body")
        if self.low > min(self.open, self.close):
            raise InvalidCandleError(f"Invalid OHLCV: low ({self.low}) above body")
        if self.close <= 0:
            raise InvalidCandleError(f"Invalid OHLCV: close ({self.close}) <= 0")
        if self.volume < 0:
            raise InvalidCandleError(f"Invalid OHLCV: volume ({self.volume}) < 0")

    @property
    def datetime(self) -> datetime:
        """Open time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.open_time, tz=timezone.utc)

    @property
    def is_bullish(self) -> bool:
        """Whether the candle closed at or above its open."""
        return self.close >= self.open

    @classmethod
    def from_row(cls, row: Sequence) -> "Candle":
        """Create from ``[open_time, open, high, low, close, volume]``.

        Example:
            >>> Candle.from_row([1700000000, "100", "101", "99", "100.5", "12"]).close
            Decimal('100.5')
        """
        open_time, o, h, l, c, v = row
        return cls(int(open_time), o, h, l, c, v)

    def to_dict(self) -> dict:
        return {
            "open_time": self.open_time,
            "open": decimal_to_str(self.open),
            "high": decimal_to_str(self.high),
            "low": decimal_to_str(self.low),
            "close": decimal_to_str(self.close),
            "volume": decimal_to_str(self.volume),
        }


class CandleSeries:
    """Immutable, strictly ascending sequence of candles for one series key."""

    def __init__(self, key: SeriesKey, candles: Iterable[Candle]):
        self.key = key
        self._candles: Tuple[Candle, ...] = tuple(candles)
        self._frame: Optional[pd.DataFrame] = None
        for prev, cur in zip(self._candles, self._candles[1:]):
            if cur.open_time <= prev.open_time:
                raise InvalidCandleError(
                    f"{key}: candles not strictly ascending at {cur.open_time}"
                )

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def __getitem__(self, index):
        return self._candles[index]

    @property
    def candles(self) -> Tuple[Candle, ...]:
        return self._candles

    @property
    def first_time(self) -> int:
        return self._candles[0].open_time

    @property
    def last_time(self) -> int:
        return self._candles[-1].open_time

    def window(self, end_index: int, last: Optional[Candle] = None) -> "CandleWindow":
        """Candles ``0..=end_index``: everything visible at step ``end_index``.

        ``last`` replaces candle ``end_index`` (the partially formed candle in
        tick mode).
        """
        return CandleWindow(self, end_index, last)

    def to_frame(self) -> pd.DataFrame:
        """Float OHLCV DataFrame indexed by open_time (built once, then cached)."""
        if self._frame is None:
            self._frame = candles_to_frame(self._candles)
        return self._frame


class CandleWindow(abc.Sequence):
    """Read-only prefix view of a CandleSeries.

    Slicing the underlying tuple at every step would copy the whole history, so
    the window keeps only an end index and an optional replacement last candle.
    """

    def __init__(self, series: CandleSeries, end_index: int, last: Optional[Candle] = None):
        if not 0 <= end_index < len(series):
            raise IndexError(f"window end {end_index} outside series of {len(series)}")
        self._series = series
        self._end = end_index
        self._last = last

    def __len__(self) -> int:
        return self._end + 1

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        if index < 0:
            index += len(self)
        if not 0 <= index <= self._end:
            raise IndexError("candle window index out of range")
        if index == self._end and self._last is not None:
            return self._last
        return self._series[index]

    def to_frame(self) -> pd.DataFrame:
        frame = self._series.to_frame().iloc[: self._end + 1]
        if self._last is not None:
            frame = frame.copy()
            last = self._last
            frame.iloc[-1] = [
                float(last.open), float(last.high), float(last.low),
                float(last.close), float(last.volume),
            ]
        return frame


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Convert candles to a float OHLCV DataFrame indexed by open_time."""
    frame = pd.DataFrame(
        [
            (c.open_time, float(c.open), float(c.high), float(c.low), float(c.close), float(c.volume))
            for c in candles
        ],
        columns=["open_time", "open", "high", "low", "close", "volume"],
    )
    return frame.set_index("open_time")
