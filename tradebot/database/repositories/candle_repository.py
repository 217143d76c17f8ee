"""Candle repository for database operations.

Loading is idempotent: a candle whose series and open_time are already stored
is skipped, so importing the same file twice leaves the table unchanged.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from ..models import MarketCandle
from ...models.market_data import Candle, SeriesKey

logger = logging.getLogger(__name__)


class CandleRepository:
    """Repository for stored OHLCV candles.

    Example:
        >>> with session_scope(factory) as session:
        ...     repo = CandleRepository(session)
        ...     repo.save_candles(pair.series_key, candles)
        ...     history = repo.get_candles(pair.series_key, start, end)
    """

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    @staticmethod
    def _series_filter(key: SeriesKey):
        return and_(
            MarketCandle.exchange == key.exchange,
            MarketCandle.ticker == key.ticker,
            MarketCandle.market_kind == key.market_kind,
            MarketCandle.timeframe == key.timeframe,
        )

    def save_candles(self, key: SeriesKey, candles: Iterable[Candle]) -> int:
        """Insert the candles that are not stored yet.

        Args:
            key: Series the candles belong to
            candles: Candles to store (any order; duplicates ignored)

        Returns:
            Number of newly inserted candles
        """
        incoming = {}
        for candle in candles:
            incoming.setdefault(candle.open_time, candle)
        if not incoming:
            return 0

        existing = set(
            self.db.scalars(
                select(MarketCandle.open_time).where(
                    self._series_filter(key),
                    MarketCandle.open_time.in_(list(incoming)),
                )
            )
        )

        new = [incoming[t] for t in sorted(incoming) if t not in existing]
        self.db.add_all(
            MarketCandle(
                exchange=key.exchange,
                ticker=key.ticker,
                market_kind=key.market_kind,
                timeframe=key.timeframe,
                open_time=c.open_time,
                open=c.open,
                high=c.high,
                low=c.low,
                close=c.close,
                volume=c.volume,
            )
            for c in new
        )
        self.db.flush()

        logger.info(
            "candles_saved",
            extra={"series": str(key), "received": len(incoming), "inserted": len(new)},
        )
        return len(new)

    def get_candles(
        self,
        key: SeriesKey,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> List[Candle]:
        """Candles of a series with ``start_time <= open_time <= end_time``, oldest first."""
        query = select(MarketCandle).where(self._series_filter(key))
        if start_time is not None:
            query = query.where(MarketCandle.open_time >= start_time)
        if end_time is not None:
            query = query.where(MarketCandle.open_time <= end_time)
        rows = self.db.scalars(query.order_by(MarketCandle.open_time)).all()
        return [
            Candle(row.open_time, row.open, row.high, row.low, row.close, row.volume)
            for row in rows
        ]

    def last_candle_time(self, key: SeriesKey) -> Optional[int]:
        """open_time of the newest stored candle of a series."""
        return self.db.scalar(
            select(func.max(MarketCandle.open_time)).where(self._series_filter(key))
        )

    def count(self, key: SeriesKey) -> int:
        return self.db.scalar(
            select(func.count(MarketCandle.id)).where(self._series_filter(key))
        )
