"""Per-run position ledgers.

Every backtest run gets its own ledger namespace so concurrent runs never see
each other's positions. MemoryPositionStore is the default; SqlPositionStore
mirrors the ledger into a ``positions_<namespace>`` table that is created when
the run starts and dropped when it ends.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from sqlalchemy import Column, MetaData, String, Table, Text, insert, select, update
from sqlalchemy.engine import Engine

from ..exceptions import PositionNotFoundError
from ..models.market_data import MarketKey
from ..models.positions import Position, PositionDirection

logger = logging.getLogger(__name__)

StoreFactory = Callable[[str], "PositionStore"]


def sanitize_namespace(namespace: str) -> str:
    """Lowercase identifier safe for use in a table name."""
    cleaned = re.sub(r"[^a-z0-9_]", "_", namespace.lower())
    if not cleaned or not re.match(r"^[a-z_]", cleaned):
        cleaned = f"ns_{cleaned}"
    return cleaned[:48]


class PositionStore(ABC):
    """Ledger of positions for one namespace.

    Positions are returned in creation order. Implementations keep the
    in-memory objects authoritative for the duration of a run: callers mutate a
    Position and then call save() to persist the change.
    """

    def __init__(self, namespace: str):
        self.namespace = sanitize_namespace(namespace)
        self._positions: Dict[str, Position] = {}

    def add(self, position: Position):
        if position.id in self._positions:
            raise ValueError(f"Position {position.id} already in ledger {self.namespace}")
        self._positions[position.id] = position
        self._persist_new(position)

    def save(self, position: Position):
        if position.id not in self._positions:
            raise PositionNotFoundError(f"Position {position.id} not in ledger {self.namespace}")
        self._persist_update(position)

    def get(self, position_id: str) -> Position:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFoundError(
                f"Position {position_id} not in ledger {self.namespace}"
            ) from None

    def all(self) -> List[Position]:
        return list(self._positions.values())

    def active(
        self,
        market: Optional[MarketKey] = None,
        direction: Optional[PositionDirection] = None,
    ) -> List[Position]:
        """PENDING and OPEN positions, optionally filtered."""
        return [
            p for p in self._positions.values()
            if p.is_active
            and (market is None or p.market == market)
            and (direction is None or p.direction == direction)
        ]

    @abstractmethod
    def _persist_new(self, position: Position):
        """Write a newly added position."""

    @abstractmethod
    def _persist_update(self, position: Position):
        """Write changes of an existing position."""

    @abstractmethod
    def drop(self):
        """Release the namespace at the end of a run."""


class MemoryPositionStore(PositionStore):
    """Ledger kept only in process memory."""

    def _persist_new(self, position: Position):
        pass

    def _persist_update(self, position: Position):
        pass

    def drop(self):
        self._positions.clear()


class SqlPositionStore(PositionStore):
    """Ledger mirrored into a per-run SQL table.

    Example:
        >>> from tradebot.database.connection import create_db_engine
        >>> engine = create_db_engine("sqlite://")
        >>> store = SqlPositionStore(engine, "run-1a2b")
        >>> store.table.name
        'positions_run_1a2b'
    """

    def __init__(self, engine: Engine, namespace: str):
        super().__init__(namespace)
        self.engine = engine
        self.metadata = MetaData()
        self.table = Table(
            f"positions_{self.namespace}",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("status", String(16), nullable=False, index=True),
            Column("exchange", String(32), nullable=False),
            Column("ticker", String(20), nullable=False),
            Column("market_kind", String(16), nullable=False),
            Column("direction", String(8), nullable=False),
            Column("payload", Text, nullable=False),
        )
        self.metadata.create_all(self.engine)
        logger.debug("ledger_table_created", extra={"table": self.table.name})

    @staticmethod
    def _row(position: Position) -> dict:
        return {
            "id": position.id,
            "status": position.status.value,
            "exchange": position.market.exchange,
            "ticker": position.market.ticker,
            "market_kind": position.market.market_kind,
            "direction": position.direction.value,
            "payload": json.dumps(position.to_dict(), sort_keys=True),
        }

    def _persist_new(self, position: Position):
        with self.engine.begin() as conn:
            conn.execute(insert(self.table).values(**self._row(position)))

    def _persist_update(self, position: Position):
        row = self._row(position)
        with self.engine.begin() as conn:
            conn.execute(
                update(self.table).where(self.table.c.id == position.id).values(**row)
            )

    def load(self) -> List[Position]:
        """Read the ledger back from the table (creation order not guaranteed)."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(self.table.c.payload)).all()
        return [Position.from_dict(json.loads(row.payload)) for row in rows]

    def drop(self):
        self.metadata.drop_all(self.engine)
        self._positions.clear()
        logger.debug("ledger_table_dropped", extra={"table": self.table.name})


def memory_store_factory(namespace: str) -> PositionStore:
    return MemoryPositionStore(namespace)


def sql_store_factory(engine: Engine) -> StoreFactory:
    """Factory creating SqlPositionStore instances bound to ``engine``."""

    def _factory(namespace: str) -> PositionStore:
        return SqlPositionStore(engine, namespace)

    return _factory
