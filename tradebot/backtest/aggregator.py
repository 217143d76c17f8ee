"""Result Aggregator - turns the final ledger and balance trace into reports.

Risk ratios are sampled per candle from the balance trace (not per closed
trade) and annualized with the number of candles in a year for the pair's
timeframe.
"""

import logging
import math
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..models.money import Money, decimal_to_str
from ..models.pair import Pair
from ..models.positions import FinishReason, Position, PositionDirection, PositionStatus
from .results import (
    BacktestResult,
    BalanceSample,
    DirectionStats,
    FinancialResult,
    OpenPositionSummary,
    ResultStatus,
    RiskRatios,
    TradeStats,
)

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 86400

# Stop-loss this close to the entry counts as a breakeven stop
BREAKEVEN_TOLERANCE_PERCENT = Decimal("0.1")


def _finite_or_none(value: float) -> Optional[float]:
    return float(value) if value is not None and math.isfinite(value) else None


def compute_drawdown(samples: Sequence[BalanceSample], currency: str) -> Tuple[Money, float]:
    """Largest peak-to-trough decline of the balance trace.

    Returns:
        (absolute drawdown, drawdown percent of the peak it fell from)
    """
    worst = Money.zero(currency)
    worst_percent = Decimal(0)
    peak: Optional[Money] = None
    for sample in samples:
        value = sample.balance
        if peak is None or value > peak:
            peak = value
            continue
        decline = peak - value
        if decline > worst:
            worst = decline
        if peak.is_positive():
            percent = decline.ratio(peak) * 100
            if percent > worst_percent:
                worst_percent = percent
    return worst, float(worst_percent)


def compute_risk_ratios(samples: Sequence[BalanceSample], timeframe_seconds: int) -> RiskRatios:
    """Sharpe/Sortino from per-candle balance returns.

    ``r_i = (b_i - b_{i-1}) / b_{i-1}``; Sharpe = mean / std * sqrt(candles per
    year); Sortino uses the std of the returns with positive values zeroed.
    Fewer than two returns gives all-None ratios.
    """
    balances = pd.Series([float(s.balance.amount) for s in samples], dtype="float64")
    returns = balances.pct_change().iloc[1:]
    returns = returns.replace([np.inf, -np.inf], np.nan)
    count = int(returns.count())

    if count < 2 or returns.isna().any():
        return RiskRatios(sharpe=None, sortino=None, avg_return=None, std_deviation=None, samples=count)

    mean = float(returns.mean())
    std = float(returns.std())
    annualization = math.sqrt(SECONDS_PER_YEAR / timeframe_seconds)

    sharpe = mean / std * annualization if std > 0 else None

    downside_std = float(returns.clip(upper=0).std())
    sortino = mean / downside_std * annualization if downside_std > 0 else None

    return RiskRatios(
        sharpe=_finite_or_none(sharpe),
        sortino=_finite_or_none(sortino),
        avg_return=_finite_or_none(mean),
        std_deviation=_finite_or_none(std),
        samples=count,
    )


def _duration_stats(durations: List[int]) -> Tuple[int, int, int]:
    if not durations:
        return 0, 0, 0
    return min(durations), max(durations), int(round(sum(durations) / len(durations)))


def compute_idle_time(intervals: Iterable[Tuple[int, int]], sim_start: int, sim_end: int) -> int:
    """Simulation time not covered by any position interval."""
    total_span = max(0, sim_end - sim_start)
    ordered = sorted(intervals)
    merged: List[List[int]] = []
    for start, end in ordered:
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])

    covered = 0
    for start, end in merged:
        start, end = max(start, sim_start), min(end, sim_end)
        if end > start:
            covered += end - start
    return max(0, total_span - covered)


def _is_breakeven_stop(position: Position) -> bool:
    if position.finish_reason != FinishReason.STOP_LOSS:
        return False
    if position.breakeven_locked:
        return True
    stop = position.stop_loss_price
    if stop is None:
        return False
    distance = abs(stop.percent_difference(position.average_entry_price))
    return distance <= BREAKEVEN_TOLERANCE_PERCENT


class ResultAggregator:
    """Builds a BacktestResult for one pair.

    Example:
        >>> aggregator = ResultAggregator(pair)
        >>> result = aggregator.build(
        ...     status=ResultStatus.COMPLETED, positions=exchange.positions(),
        ...     balance_trace=trace, final_balance=exchange.cash,
        ...     total_fees=exchange.total_fees, sim_start=t0, sim_end=t1)
    """

    def __init__(self, pair: Pair):
        self.pair = pair
        self.currency = pair.quote_currency

    def build(
        self,
        status: ResultStatus,
        positions: List[Position],
        balance_trace: List[BalanceSample],
        final_balance: Money,
        total_fees: Money,
        sim_start: Optional[int],
        sim_end: Optional[int],
        liquidated: bool = False,
        max_unrealized_loss: Optional[Money] = None,
        coin_price_start: Optional[Money] = None,
        coin_price_end: Optional[Money] = None,
        candles_processed: int = 0,
        strategy_faults: int = 0,
        error: Optional[str] = None,
    ) -> BacktestResult:
        initial = self.pair.initial_balance
        pnl = final_balance - initial
        pnl_percent = float(pnl.ratio(initial) * 100)
        drawdown, drawdown_percent = compute_drawdown(balance_trace, self.currency)

        financial = FinancialResult(
            initial_balance=initial,
            final_balance=final_balance,
            pnl=pnl,
            pnl_percent=pnl_percent,
            max_drawdown=drawdown,
            max_drawdown_percent=drawdown_percent,
            max_unrealized_loss=max_unrealized_loss or Money.zero(self.currency),
            liquidated=liquidated,
            total_fees=total_fees,
            coin_price_start=coin_price_start,
            coin_price_end=coin_price_end,
        )

        start = sim_start if sim_start is not None else 0
        end = sim_end if sim_end is not None else start

        result = BacktestResult(
            pair=self.pair.to_dict(),
            pair_name=self.pair.name,
            status=status,
            sim_start=sim_start,
            sim_end=sim_end,
            candles_processed=candles_processed,
            financial=financial,
            trades=self._trade_stats(positions, start, end),
            long_stats=self._direction_stats(positions, PositionDirection.LONG, "Longs"),
            short_stats=self._direction_stats(positions, PositionDirection.SHORT, "Shorts"),
            risk=compute_risk_ratios(balance_trace, self.pair.timeframe_seconds),
            open_positions=self._open_positions(positions, end),
            balance_trace=list(balance_trace),
            positions=[p.to_dict(include_namespace=False) for p in positions],
            strategy_faults=strategy_faults,
            error=error,
        )

        logger.info(
            "backtest_result",
            extra={"pair": self.pair.name, "status": status.value,
                   "pnl": pnl.to_json(), "finished": result.trades.finished,
                   "liquidated": liquidated},
        )
        return result

    @staticmethod
    def _trade_stats(positions: List[Position], sim_start: int, sim_end: int) -> TradeStats:
        finished = [p for p in positions if p.status == PositionStatus.FINISHED]
        shortest, longest, average = _duration_stats([p.duration() for p in finished])
        intervals = [
            (p.created_at, p.finished_at if p.finished_at is not None else sim_end)
            for p in positions
        ]

        def count(status: PositionStatus) -> int:
            return sum(1 for p in positions if p.status == status)

        return TradeStats(
            finished=len(finished),
            open=count(PositionStatus.OPEN),
            pending=count(PositionStatus.PENDING),
            canceled=count(PositionStatus.CANCELED),
            error=count(PositionStatus.ERROR),
            wins=sum(1 for p in finished if p.realized_pnl.is_positive()),
            losses=sum(1 for p in finished if p.realized_pnl.is_negative()),
            shortest=shortest,
            longest=longest,
            average=average,
            idle=compute_idle_time(intervals, sim_start, sim_end),
        )

    @staticmethod
    def _direction_stats(
        positions: List[Position], direction: PositionDirection, label: str
    ) -> DirectionStats:
        finished = [
            p for p in positions
            if p.status == PositionStatus.FINISHED and p.direction == direction
        ]
        shortest, longest, average = _duration_stats([p.duration() for p in finished])
        return DirectionStats(
            label=label,
            finished=len(finished),
            wins=sum(1 for p in finished if p.realized_pnl.is_positive()),
            losses=sum(1 for p in finished if p.realized_pnl.is_negative()),
            breakeven_locks=sum(1 for p in finished if _is_breakeven_stop(p)),
            shortest=shortest,
            longest=longest,
            average=average,
        )

    @staticmethod
    def _open_positions(positions: List[Position], sim_end: int) -> List[OpenPositionSummary]:
        return [
            OpenPositionSummary(
                id=p.id,
                direction=p.direction.value,
                status=p.status.value,
                entry=p.average_entry_price,
                volume=decimal_to_str(p.volume),
                created_at=p.created_at,
                unrealized_pnl=p.unrealized_pnl(),
                time_hanging=max(0, sim_end - p.created_at),
            )
            for p in positions if p.is_active
        ]
