"""Relative Strength Index (pandas-ta, Wilder smoothing)."""

import pandas as pd
import pandas_ta as ta

from ..validation import ValidationError
from .base import Indicator, IndicatorResult


class RSI(Indicator):
    """RSI with overbought/oversold signals.

    Params:
        period: Lookback (default 14)
        overbought: Upper threshold (default 70)
        oversold: Lower threshold (default 30)
    """

    name = "rsi"

    def __init__(self, period: int = 14, overbought: float = 70, oversold: float = 30):
        if int(period) < 2:
            raise ValidationError(f"RSI period must be >= 2, got {period}")
        if not 0 < oversold < overbought < 100:
            raise ValidationError("RSI thresholds must satisfy 0 < oversold < overbought < 100")
        super().__init__(period=int(period), overbought=overbought, oversold=oversold)
        self.period = int(period)
        self.overbought = float(overbought)
        self.oversold = float(oversold)

    @property
    def warmup(self) -> int:
        return self.period + 1

    def calculate(self, market) -> IndicatorResult:
        candles = market.candles
        if len(candles) < self.warmup:
            return IndicatorResult()

        close = market.frame()["close"]
        rsi = ta.rsi(close, length=self.period)
        if rsi is None:
            return IndicatorResult()

        signals = pd.Series(None, index=rsi.index, dtype=object)
        signals[rsi >= self.overbought] = "overbought"
        signals[rsi <= self.oversold] = "oversold"
        return IndicatorResult.from_series(rsi, signals)
