"""Pluggable trading strategies."""

from .always_long import AlwaysLongStrategy
from .base import Strategy
from .dca import DCAStrategy
from .registry import (
    STRATEGIES,
    build_indicators,
    create_strategy,
    register_strategy,
    required_warmup,
)
from .rsi_reversal import RSIReversalStrategy

__all__ = [
    "Strategy",
    "AlwaysLongStrategy",
    "DCAStrategy",
    "RSIReversalStrategy",
    "STRATEGIES",
    "build_indicators",
    "create_strategy",
    "register_strategy",
    "required_warmup",
]
