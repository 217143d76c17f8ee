"""Indicator interface.

Indicators are pure functions of the candles visible to a Market: given the
same window they must return the same result, and they never see candles past
the current simulation step.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd


@dataclass
class IndicatorResult:
    """Calculated indicator series.

    Attributes:
        values: Indicator values, oldest first
        timestamps: open_time of the candle each value belongs to
        signals: Optional per-value labels ("overbought", "oversold", ...)
    """

    values: List[float] = field(default_factory=list)
    timestamps: List[int] = field(default_factory=list)
    signals: List[Optional[str]] = field(default_factory=list)

    @property
    def latest(self) -> Optional[float]:
        return self.values[-1] if self.values else None

    @property
    def latest_timestamp(self) -> Optional[int]:
        return self.timestamps[-1] if self.timestamps else None

    @property
    def latest_signal(self) -> Optional[str]:
        return self.signals[-1] if self.signals else None

    def is_empty(self) -> bool:
        return not self.values

    @classmethod
    def from_series(cls, series: pd.Series, signals: Optional[pd.Series] = None) -> "IndicatorResult":
        """Build from a pandas Series indexed by open_time, dropping NaN warm-up values."""
        valid = series.dropna()
        result_signals: List[Optional[str]] = []
        if signals is not None:
            result_signals = [
                None if pd.isna(s) else str(s) for s in signals.loc[valid.index]
            ]
        return cls(
            values=[float(v) for v in valid.to_numpy()],
            timestamps=[int(t) for t in valid.index],
            signals=result_signals,
        )


class Indicator(ABC):
    """Base class for indicators.

    Subclasses set ``name`` and implement ``warmup`` and ``calculate``.
    """

    name: str = "indicator"

    def __init__(self, **params: Any):
        self.params: Dict[str, Any] = params

    @property
    @abstractmethod
    def warmup(self) -> int:
        """Candles required before the first value is produced."""

    @abstractmethod
    def calculate(self, market) -> IndicatorResult:
        """Compute the indicator over ``market.candles``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.params})"
