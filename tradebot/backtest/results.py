"""Backtest result value objects.

Everything here is read-only once built and serializes to plain JSON types.
``BacktestResult.to_dict()`` contains no wall-clock data, so two runs with
identical inputs serialize to identical bytes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..models.money import Money


class ResultStatus(str, Enum):
    """Outcome of one pair's run."""
    COMPLETED = "completed"
    LIQUIDATED = "liquidated"
    CANCELED = "canceled"
    ERROR = "error"


def _round(value: Optional[float], places: int = 6) -> Optional[float]:
    return None if value is None else round(value, places)


@dataclass(frozen=True)
class BalanceSample:
    """Account state sampled at the end of one candle."""

    time: int
    balance: Money
    equity: Money

    def to_dict(self) -> dict:
        return {"time": self.time, "balance": self.balance.to_json(), "equity": self.equity.to_json()}


@dataclass(frozen=True)
class FinancialResult:
    initial_balance: Money
    final_balance: Money
    pnl: Money
    pnl_percent: float
    max_drawdown: Money
    max_drawdown_percent: float
    max_unrealized_loss: Money
    liquidated: bool
    total_fees: Money
    coin_price_start: Optional[Money] = None
    coin_price_end: Optional[Money] = None

    def to_dict(self) -> dict:
        return {
            "initial_balance": self.initial_balance.to_json(),
            "final_balance": self.final_balance.to_json(),
            "pnl": self.pnl.to_json(),
            "pnl_percent": _round(self.pnl_percent),
            "max_drawdown": self.max_drawdown.to_json(),
            "max_drawdown_percent": _round(self.max_drawdown_percent),
            "max_unrealized_loss": self.max_unrealized_loss.to_json(),
            "liquidated": self.liquidated,
            "total_fees": self.total_fees.to_json(),
            "coin_price_start": self.coin_price_start.to_json() if self.coin_price_start else None,
            "coin_price_end": self.coin_price_end.to_json() if self.coin_price_end else None,
        }


@dataclass(frozen=True)
class TradeStats:
    """Counts and durations (seconds) across all ledger entries."""

    finished: int
    open: int
    pending: int
    canceled: int
    error: int
    wins: int
    losses: int
    shortest: int
    longest: int
    average: int
    idle: int

    @property
    def win_rate(self) -> Optional[float]:
        decided = self.wins + self.losses
        return self.wins / decided * 100 if decided else None

    def to_dict(self) -> dict:
        return {
            "finished": self.finished,
            "open": self.open,
            "pending": self.pending,
            "canceled": self.canceled,
            "error": self.error,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": _round(self.win_rate),
            "shortest": self.shortest,
            "longest": self.longest,
            "average": self.average,
            "idle": self.idle,
        }


@dataclass(frozen=True)
class DirectionStats:
    """Finished-trade statistics for one direction."""

    label: str
    finished: int
    wins: int
    losses: int
    breakeven_locks: int
    shortest: int
    longest: int
    average: int

    @property
    def win_rate(self) -> Optional[float]:
        decided = self.wins + self.losses
        return self.wins / decided * 100 if decided else None

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "finished": self.finished,
            "wins": self.wins,
            "losses": self.losses,
            "breakeven_locks": self.breakeven_locks,
            "win_rate": _round(self.win_rate),
            "shortest": self.shortest,
            "longest": self.longest,
            "average": self.average,
        }


@dataclass(frozen=True)
class RiskRatios:
    """Per-candle return statistics; None where undefined."""

    sharpe: Optional[float]
    sortino: Optional[float]
    avg_return: Optional[float]
    std_deviation: Optional[float]
    samples: int

    def to_dict(self) -> dict:
        return {
            "sharpe": _round(self.sharpe),
            "sortino": _round(self.sortino),
            "avg_return": _round(self.avg_return, 10),
            "std_deviation": _round(self.std_deviation, 10),
            "samples": self.samples,
        }


@dataclass(frozen=True)
class OpenPositionSummary:
    """A position still active when the simulation ended."""

    id: str
    direction: str
    status: str
    entry: Money
    volume: str
    created_at: int
    unrealized_pnl: Money
    time_hanging: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "direction": self.direction,
            "status": self.status,
            "entry": self.entry.to_json(),
            "volume": self.volume,
            "created_at": self.created_at,
            "unrealized_pnl": self.unrealized_pnl.to_json(),
            "time_hanging": self.time_hanging,
        }


@dataclass(frozen=True)
class BacktestResult:
    """Full result of one pair's backtest."""

    pair: Dict[str, Any]
    pair_name: str
    status: ResultStatus
    sim_start: Optional[int]
    sim_end: Optional[int]
    candles_processed: int
    financial: FinancialResult
    trades: TradeStats
    long_stats: DirectionStats
    short_stats: DirectionStats
    risk: RiskRatios
    open_positions: List[OpenPositionSummary] = field(default_factory=list)
    balance_trace: List[BalanceSample] = field(default_factory=list)
    positions: List[Dict[str, Any]] = field(default_factory=list)
    strategy_faults: int = 0
    error: Optional[str] = None

    @property
    def liquidated(self) -> bool:
        return self.financial.liquidated

    def to_dict(self, include_trace: bool = True) -> dict:
        data = {
            "pair": self.pair,
            "pair_name": self.pair_name,
            "status": self.status.value,
            "sim_start": self.sim_start,
            "sim_end": self.sim_end,
            "candles_processed": self.candles_processed,
            "financial": self.financial.to_dict(),
            "trades": self.trades.to_dict(),
            "long_stats": self.long_stats.to_dict(),
            "short_stats": self.short_stats.to_dict(),
            "risk": self.risk.to_dict(),
            "open_positions": [p.to_dict() for p in self.open_positions],
            "strategy_faults": self.strategy_faults,
            "error": self.error,
        }
        if include_trace:
            data["balance_trace"] = [s.to_dict() for s in self.balance_trace]
            data["positions"] = self.positions
        return data

    def summary(self) -> dict:
        """Compact one-line view used in batch reports and events."""
        return {
            "pair": self.pair_name,
            "status": self.status.value,
            "pnl": self.financial.pnl.to_json(),
            "pnl_percent": _round(self.financial.pnl_percent, 4),
            "max_drawdown_percent": _round(self.financial.max_drawdown_percent, 4),
            "finished": self.trades.finished,
            "win_rate": _round(self.trades.win_rate, 4),
            "sharpe": _round(self.risk.sharpe, 4),
            "liquidated": self.financial.liquidated,
        }
