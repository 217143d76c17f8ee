"""Domain models for the backtester."""

from .money import Money
from .market_data import Candle, CandleSeries, MarketKey, MarketKind, SeriesKey
from .pair import Pair
from .positions import FinishReason, Position, PositionDirection, PositionStatus

__all__ = [
    "Money",
    "Candle",
    "CandleSeries",
    "MarketKey",
    "MarketKind",
    "SeriesKey",
    "Pair",
    "FinishReason",
    "Position",
    "PositionDirection",
    "PositionStatus",
]
