"""Historical candle sources for backtesting.

The runner reads candles through the small CandleSource interface. Sources
are read-only while runs are in progress, so one source can serve a whole
parallel batch.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

import pandas as pd
from sqlalchemy.orm import Session

from ..database.repositories.candle_repository import CandleRepository
from ..exceptions import DataError
from ..models.market_data import Candle, CandleSeries, SeriesKey
from ..models.pair import Pair

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["open_time", "open", "high", "low", "close", "volume"]


class CandleSource(ABC):
    """Read-only access to stored candles."""

    @abstractmethod
    def get_candles(
        self, pair: Pair, start_time: Optional[int], end_time: Optional[int]
    ) -> CandleSeries:
        """Candles of ``pair``'s series with ``start_time <= open_time <= end_time``.

        ``None`` bounds are open.
        """

    @abstractmethod
    def last_candle_time(self, key: SeriesKey) -> Optional[int]:
        """open_time of the newest stored candle, or None when there is none."""


class InMemoryCandleSource(CandleSource):
    """Candles held in a dict keyed by series.

    Example:
        >>> source = InMemoryCandleSource()
        >>> source.add(pair.series_key, candles)
        >>> series = source.get_candles(pair, None, None)
    """

    def __init__(self):
        self._data: Dict[SeriesKey, List[Candle]] = {}

    def add(self, key: SeriesKey, candles: Iterable[Candle]):
        """Merge candles into a series; an existing open_time is kept, not duplicated."""
        existing = {c.open_time: c for c in self._data.get(key, [])}
        for candle in candles:
            existing.setdefault(candle.open_time, candle)
        self._data[key] = [existing[t] for t in sorted(existing)]

    def get_candles(self, pair, start_time, end_time) -> CandleSeries:
        key = pair.series_key
        candles = [
            c for c in self._data.get(key, [])
            if (start_time is None or c.open_time >= start_time)
            and (end_time is None or c.open_time <= end_time)
        ]
        return CandleSeries(key, candles)

    def last_candle_time(self, key: SeriesKey) -> Optional[int]:
        candles = self._data.get(key)
        return candles[-1].open_time if candles else None


class SqlCandleSource(CandleSource):
    """CandleSource backed by the market_candles table.

    Opens a short-lived session per call so it can be shared across threads.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_candles(self, pair, start_time, end_time) -> CandleSeries:
        with self.session_factory() as session:
            candles = CandleRepository(session).get_candles(pair.series_key, start_time, end_time)
        return CandleSeries(pair.series_key, candles)

    def last_candle_time(self, key: SeriesKey) -> Optional[int]:
        with self.session_factory() as session:
            return CandleRepository(session).last_candle_time(key)


def read_candles_csv(path: Union[str, Path]) -> List[Candle]:
    """Parse a CSV export into candles.

    The file needs the columns open_time, open, high, low, close, volume
    (any order; extra columns ignored). ``open_time`` may be Unix seconds,
    Unix milliseconds, or an ISO-8601 timestamp.

    Raises:
        DataError: If a required column is missing or a row is invalid
    """
    frame = pd.read_csv(path, dtype=str)
    frame.columns = [c.strip().lower() for c in frame.columns]
    missing = [c for c in CSV_COLUMNS if c not in frame.columns]
    if missing:
        raise DataError(f"{path}: missing columns {', '.join(missing)}")

    frame = frame[CSV_COLUMNS].dropna(how="all")
    open_times = _parse_open_times(frame["open_time"])

    candles = []
    for line, (open_time, row) in enumerate(zip(open_times, frame.itertuples(index=False)), start=2):
        try:
            candles.append(Candle(open_time, row.open, row.high, row.low, row.close, row.volume))
        except (DataError, ArithmeticError, TypeError) as e:
            raise DataError(f"{path}:{line}: invalid candle row ({e})") from e

    logger.info("candles_csv_parsed", extra={"path": str(path), "count": len(candles)})
    return candles


def _parse_open_times(column: pd.Series) -> List[int]:
    numeric = pd.to_numeric(column, errors="coerce")
    if numeric.notna().all():
        values = numeric.astype("int64")
        # Millisecond timestamps are 13 digits for current dates
        if (values > 10**11).any():
            values = values // 1000
        return [int(v) for v in values]

    parsed = pd.to_datetime(column, utc=True, errors="coerce")
    if parsed.isna().any():
        raise DataError(f"Unparseable open_time values: {column[parsed.isna()].head(3).tolist()}")
    return [int(ts.timestamp()) for ts in parsed]
