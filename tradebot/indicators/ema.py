"""Exponential moving average of closes."""

from ..validation import ValidationError
from .base import Indicator, IndicatorResult


class EMA(Indicator):
    """EMA with span ``period``; signals "above"/"below" for the close."""

    name = "ema"

    def __init__(self, period: int = 20):
        if int(period) < 1:
            raise ValidationError(f"EMA period must be >= 1, got {period}")
        super().__init__(period=int(period))
        self.period = int(period)

    @property
    def warmup(self) -> int:
        return self.period

    def calculate(self, market) -> IndicatorResult:
        if len(market.candles) < self.warmup:
            return IndicatorResult()

        close = market.frame()["close"]
        ema = close.ewm(span=self.period, adjust=False, min_periods=self.period).mean()
        signals = (close >= ema).map({True: "above", False: "below"}).where(ema.notna())
        return IndicatorResult.from_series(ema, signals)
