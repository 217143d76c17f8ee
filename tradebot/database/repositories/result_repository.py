"""Backtest result repository."""

from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..models import BacktestResultRecord

if TYPE_CHECKING:
    from ...backtest.results import BacktestResult


class ResultRepository:
    """Stores and lists backtest results.

    Example:
        >>> with session_scope(factory) as session:
        ...     record = ResultRepository(session).save(result)
    """

    def __init__(self, db: Session):
        self.db = db

    def save(self, result: "BacktestResult") -> BacktestResultRecord:
        """Insert a result; the full ``to_dict()`` form goes into the payload."""
        record = BacktestResultRecord(
            pair_name=result.pair_name,
            strategy=result.pair.get("strategy", ""),
            status=result.status.value,
            sim_start=result.sim_start,
            sim_end=result.sim_end,
            pnl=result.financial.pnl.amount,
            pnl_percent=result.financial.pnl_percent,
            max_drawdown_percent=result.financial.max_drawdown_percent,
            sharpe=result.risk.sharpe,
            finished_trades=result.trades.finished,
            liquidated=int(result.financial.liquidated),
            payload=result.to_dict(),
        )
        self.db.add(record)
        self.db.flush()
        return record

    def get(self, record_id: int) -> Optional[BacktestResultRecord]:
        return self.db.get(BacktestResultRecord, record_id)

    def list_recent(
        self, pair_name: Optional[str] = None, limit: int = 20
    ) -> List[BacktestResultRecord]:
        """Newest results first, optionally for one pair.

        Args:
            pair_name: Pair name filter (e.g. ``binance:BTCUSDT:spot:1h``)
            limit: Maximum number of records to return (default 20)
        """
        query = select(BacktestResultRecord)
        if pair_name:
            query = query.where(BacktestResultRecord.pair_name == pair_name)
        query = query.order_by(desc(BacktestResultRecord.id)).limit(limit)
        return list(self.db.scalars(query).all())
