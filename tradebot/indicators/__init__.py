"""Technical indicators computed over the visible candle window."""

from .base import Indicator, IndicatorResult
from .ema import EMA
from .registry import INDICATORS, create_indicator, register_indicator
from .rsi import RSI

__all__ = [
    "Indicator",
    "IndicatorResult",
    "EMA",
    "RSI",
    "INDICATORS",
    "create_indicator",
    "register_indicator",
]
