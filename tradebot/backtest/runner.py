"""Backtest Runner - the candle-by-candle replay loop.

For one pair the runner loads the history window, builds a fresh ledger
namespace, virtual exchange and Market, and replays the candles in order. At
step ``i`` nothing downstream can see candle ``i + 1``: the Market window ends
at ``i`` and only candle ``i``'s prices are fed to the exchange.

Bar mode (``ticks_per_candle <= 1``) resolves each candle in two phases:

1. Entries that already existed before candle ``i`` are checked against its
   high/low: resting limits fill when crossed; stop-loss is checked before
   take-profit (when one candle crosses both, the stop wins); then futures
   liquidation is checked at the adverse extreme.
2. At the close the window is extended to ``i``, indicators are recomputed, the
   strategy manages its positions and may enter, and liquidation is checked at
   the close price.

Tick mode walks a deterministic open/low/high/close path inside each candle and
runs the strategy, fills, exits and liquidation at every tick.

In both modes, OPEN entries that span a gap in the candle history are marked
ERROR before the next candle is resolved.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..config import RunOptions
from ..exceptions import (
    ConfigurationError,
    InsufficientBalanceError,
    InsufficientHistoryError,
    InvalidConfigValueError,
    StrategyFaultError,
    TradingBotError,
)
from ..indicators.base import Indicator
from ..logging_config import RunContext
from ..models.market_data import Candle, CandleSeries
from ..models.money import Money
from ..models.pair import Pair
from ..models.positions import FinishReason, Position, PositionDirection
from ..strategies.base import Strategy
from ..strategies.registry import build_indicators, create_strategy, required_warmup
from .aggregator import ResultAggregator
from .cancellation import CancellationToken
from .data_loader import CandleSource
from .events import EventEmitter, EventSink, EventType
from .exchange import VirtualExchange
from .market import Market
from .results import BacktestResult, BalanceSample, ResultStatus
from .store import StoreFactory, memory_store_factory
from .ticks import generate_ticks, partial_candle

logger = logging.getLogger(__name__)


@dataclass
class PreparedPair:
    """A validated pair with its strategy and indicators instantiated."""

    pair: Pair
    strategy: Strategy
    indicators: Dict[str, Indicator]
    warmup: int
    ticks_per_candle: int


@dataclass
class _RunState:
    """Mutable bookkeeping of one replay."""

    pair: Pair
    series: CandleSeries
    exchange: VirtualExchange
    market: Market
    strategy: Strategy
    emitter: EventEmitter
    options: RunOptions
    status: ResultStatus = ResultStatus.COMPLETED
    liquidated: bool = False
    faults: int = 0
    error: Optional[str] = None
    candles_processed: int = 0
    trace: List[BalanceSample] = field(default_factory=list)
    max_unrealized_loss: Optional[Money] = None
    last_index: Optional[int] = None

    @property
    def stopped(self) -> bool:
        return self.liquidated or self.status == ResultStatus.ERROR


def prepare_pair(pair: Pair, options: RunOptions) -> PreparedPair:
    """Validate a pair's strategy, indicators and tick settings.

    Raises:
        UnknownStrategyError, UnknownIndicatorError, InvalidConfigValueError
    """
    strategy = create_strategy(pair.strategy, pair.strategy_params)
    indicators = build_indicators(strategy)
    ticks = options.ticks_per_candle if options.ticks_per_candle is not None else pair.ticks_per_candle
    ticks = ticks or 1
    if 1 < ticks < 4:
        raise InvalidConfigValueError(
            f"{pair.name}: ticks_per_candle must be <= 1 (bar mode) or >= 4, got {ticks}"
        )
    return PreparedPair(pair, strategy, indicators, required_warmup(strategy, indicators), ticks)


class BacktestRunner:
    """Replays one pair's history through its strategy.

    Example:
        >>> runner = BacktestRunner(InMemoryCandleSource(), options=RunOptions())
        >>> result = runner.run(pair)
        >>> result.financial.pnl
    """

    def __init__(
        self,
        candle_source: CandleSource,
        store_factory: StoreFactory = memory_store_factory,
        sink: Optional[EventSink] = None,
        options: Optional[RunOptions] = None,
    ):
        self.candle_source = candle_source
        self.store_factory = store_factory
        self.sink = sink or EventSink()
        self.options = options or RunOptions()
        self.options.validate()

    def validate(self, pair: Pair) -> PreparedPair:
        return prepare_pair(pair, self.options)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, pair: Pair, cancel_token: Optional[CancellationToken] = None) -> BacktestResult:
        """Run the backtest for ``pair``.

        Returns:
            BacktestResult with status completed, liquidated, canceled or error

        Raises:
            ConfigurationError: Strategy/indicator configuration invalid
            InsufficientHistoryError: Fewer candles than the warm-up requires
        """
        run_id = RunContext.new_run_id(pair.ticker.lower())
        previous_run_id = RunContext.get_run_id()
        RunContext.set_run_id(run_id)
        emitter = EventEmitter(self.sink, pair.name)
        try:
            prepared = self.validate(pair)
            series = self._load(pair, prepared.warmup)
            return self._execute(prepared, series, run_id, emitter, cancel_token)
        except Exception as e:
            emitter.emit(EventType.ERROR, {"message": str(e), "error_type": type(e).__name__})
            raise
        finally:
            emitter.emit(EventType.DONE)
            RunContext.set_run_id(previous_run_id)

    def _load(self, pair: Pair, warmup: int) -> CandleSeries:
        end_time = self.options.end_time
        if end_time is None:
            end_time = self.candle_source.last_candle_time(pair.series_key)
        if end_time is None:
            raise InsufficientHistoryError(pair.name, 0, warmup)

        start_time = end_time - pair.backtest_days * 86400
        series = self.candle_source.get_candles(pair, start_time, end_time)
        if len(series) < warmup:
            logger.warning(
                "insufficient_history",
                extra={"pair": pair.name, "available": len(series), "required": warmup},
            )
            raise InsufficientHistoryError(pair.name, len(series), warmup)
        return series

    def _execute(
        self,
        prepared: PreparedPair,
        series: CandleSeries,
        run_id: str,
        emitter: EventEmitter,
        cancel_token: Optional[CancellationToken],
    ) -> BacktestResult:
        pair = prepared.pair
        store = self.store_factory(run_id)
        try:
            exchange = VirtualExchange(
                pair.initial_balance,
                store,
                margin_mode=self.options.margin_mode,
                fee_rate=self.options.fee_rate,
                listener=emitter.ledger_listener,
            )
            market = Market(pair, exchange, prepared.indicators)
            prepared.strategy.bind(market)
            state = _RunState(
                pair=pair, series=series, exchange=exchange, market=market,
                strategy=prepared.strategy, emitter=emitter, options=self.options,
                max_unrealized_loss=Money.zero(pair.quote_currency),
            )

            start_index = prepared.warmup - 1
            emitter.emit(EventType.INIT, {
                "pair": pair.to_dict(),
                "total_candles": len(series),
                "start_index": start_index,
                "ticks_per_candle": prepared.ticks_per_candle,
            })
            logger.info(
                "backtest_started",
                extra={"pair": pair.name, "candles": len(series), "warmup": prepared.warmup,
                       "ticks_per_candle": prepared.ticks_per_candle},
            )

            self._replay(state, start_index, prepared.ticks_per_candle, cancel_token)
            result = self._build_result(state, start_index)
            emitter.emit(EventType.RESULT, result.summary())
            return result
        finally:
            store.drop()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _replay(
        self,
        state: _RunState,
        start_index: int,
        ticks_per_candle: int,
        cancel_token: Optional[CancellationToken],
    ):
        total = len(state.series)
        for i in range(start_index, total):
            if cancel_token is not None and cancel_token.is_canceled():
                state.status = ResultStatus.CANCELED
                state.emitter.emit(EventType.CANCELED, {"index": i})
                logger.info("backtest_canceled", extra={"pair": state.pair.name, "index": i})
                break

            candle = state.series[i]
            state.emitter.sim_time = candle.open_time
            self._mark_unpriced(state, candle)
            if ticks_per_candle > 1:
                self._step_ticks(state, i, candle, ticks_per_candle)
            else:
                self._step_bar(state, i, candle)

            state.candles_processed += 1
            state.last_index = i
            self._sample(state, candle)

            processed = i - start_index + 1
            if processed % state.options.progress_every == 0 or i == total - 1 or state.stopped:
                state.emitter.emit(EventType.PROGRESS, self._progress_payload(state, processed, total - start_index))

            if state.stopped:
                break

    def _step_bar(self, state: _RunState, i: int, candle: Candle):
        exchange, key = state.exchange, state.market.key
        currency = state.pair.quote_currency

        # Phase 1: entries placed at earlier steps meet this candle's range
        exchange.set_time(candle.open_time)
        self._resolve_range(state, candle.low, candle.high)
        if self._check_liquidation_range(state, candle):
            return

        # Phase 2: decision at the close
        exchange.set_time(candle.open_time + state.pair.timeframe_seconds - 1)
        state.market.set_candles(state.series.window(i))
        exchange.set_current_price(key, Money(candle.close, currency))
        self._decide(state)
        if state.stopped:
            return
        self._check_liquidation(state, Money(candle.close, currency))

    def _step_ticks(self, state: _RunState, i: int, candle: Candle, ticks_per_candle: int):
        exchange, key = state.exchange, state.market.key
        currency = state.pair.quote_currency
        ticks = generate_ticks(candle, state.pair.timeframe_seconds, ticks_per_candle)

        for k, tick in enumerate(ticks):
            exchange.set_time(tick.time)
            state.market.set_candles(
                state.series.window(i, partial_candle(candle, ticks, k, len(ticks)))
            )
            price = Money(tick.price, currency)
            exchange.set_current_price(key, price)
            self._decide(state)
            if state.stopped:
                return
            self._resolve_range(state, tick.price, tick.price)
            if self._check_liquidation(state, price):
                return

    # ------------------------------------------------------------------
    # Fills, exits, liquidation
    # ------------------------------------------------------------------

    def _resolve_range(self, state: _RunState, low: Decimal, high: Decimal):
        """Fill crossed limits, then exit OPEN entries whose SL or TP lies in [low, high]."""
        exchange = state.exchange
        for position in exchange.active_positions(state.market.key):
            if position.is_pending:
                if self._limit_crossed(position, low, high):
                    exchange.fill_pending(position)
            elif position.is_open:
                self._resolve_exit(exchange, position, low, high)

    @staticmethod
    def _limit_crossed(position: Position, low: Decimal, high: Decimal) -> bool:
        limit = position.average_entry_price.amount
        if position.direction is PositionDirection.LONG:
            return low <= limit
        return high >= limit

    @staticmethod
    def _resolve_exit(exchange: VirtualExchange, position: Position, low: Decimal, high: Decimal):
        is_long = position.direction is PositionDirection.LONG
        stop = position.stop_loss_price
        if stop is not None and ((is_long and low <= stop.amount) or (not is_long and high >= stop.amount)):
            exchange.close(position, stop, FinishReason.STOP_LOSS)
            return
        target = position.take_profit_price
        if target is not None and ((is_long and high >= target.amount) or (not is_long and low <= target.amount)):
            exchange.close(position, target, FinishReason.TAKE_PROFIT)

    def _check_liquidation_range(self, state: _RunState, candle: Candle) -> bool:
        """Liquidation at the candle extreme adverse to each open direction."""
        if not state.pair.is_futures:
            return False
        open_positions = [p for p in state.market.active_positions() if p.is_open]
        currency = state.pair.quote_currency
        extremes = []
        if any(p.direction is PositionDirection.LONG for p in open_positions):
            extremes.append(Money(candle.low, currency))
        if any(p.direction is PositionDirection.SHORT for p in open_positions):
            extremes.append(Money(candle.high, currency))
        for price in extremes:
            if self._check_liquidation(state, price):
                return True
        return False

    def _check_liquidation(self, state: _RunState, price: Money) -> bool:
        """Liquidate the pair when equity at ``price`` falls to the maintenance requirement."""
        if not state.pair.is_futures:
            return False
        exchange, key = state.exchange, state.market.key
        if not any(p.is_open for p in exchange.active_positions(key)):
            return False

        equity = exchange.equity(key, price)
        requirement = exchange.maintenance_requirement(
            key, price, state.options.maintenance_margin_share
        )
        if equity > requirement:
            return False

        closed = exchange.liquidate(key, price)
        exchange.set_current_price(key, price)
        state.liquidated = True
        state.status = ResultStatus.LIQUIDATED
        logger.warning(
            "pair_liquidated",
            extra={"pair": state.pair.name, "price": price.to_json(),
                   "equity": equity.to_json(), "requirement": requirement.to_json(),
                   "positions": len(closed)},
        )
        return True

    def _mark_unpriced(self, state: _RunState, candle: Candle):
        """OPEN entries that lived through missing candles can no longer be valued.

        A gap is any distance between consecutive open times larger than the
        timeframe. Resting limit orders are left alone.
        """
        if state.last_index is None:
            return
        previous = state.series[state.last_index]
        if candle.open_time - previous.open_time <= state.pair.timeframe_seconds:
            return

        exchange = state.exchange
        exchange.set_time(candle.open_time)
        reason = f"no price data between {previous.open_time} and {candle.open_time}"
        for position in state.market.active_positions():
            if position.is_open:
                exchange.mark_error(position, reason)

    # ------------------------------------------------------------------
    # Strategy dispatch
    # ------------------------------------------------------------------

    def _decide(self, state: _RunState):
        """Indicators, position management and entries; faults are contained per step."""
        market, strategy = state.market, state.strategy
        try:
            market.calculate_indicators()
            for position in market.active_positions():
                strategy.update_position(position)
            self._maybe_enter(market, strategy)
        except InsufficientBalanceError as e:
            logger.info(
                "order_rejected",
                extra={"pair": state.pair.name, "time": state.exchange.time, "reason": str(e)},
            )
        except Exception as e:
            self._record_fault(state, StrategyFaultError(state.exchange.time, e))

    @staticmethod
    def _maybe_enter(market: Market, strategy: Strategy):
        if strategy.is_two_way():
            if not market.has_active_position(PositionDirection.LONG) and strategy.should_long():
                strategy.handle_long(market)
            if not market.has_active_position(PositionDirection.SHORT) and strategy.should_short():
                strategy.handle_short(market)
            return

        if market.has_active_position():
            return
        if strategy.should_long():
            strategy.handle_long(market)
        elif strategy.should_short():
            strategy.handle_short(market)

    def _record_fault(self, state: _RunState, fault: StrategyFaultError):
        state.faults += 1
        logger.warning(
            "strategy_fault",
            extra={"pair": state.pair.name, "time": fault.step_time,
                   "faults": state.faults, "cause": repr(fault.cause)},
            exc_info=fault.cause,
        )
        if state.faults > state.options.fault_threshold:
            state.status = ResultStatus.ERROR
            state.error = (
                f"{state.faults} strategy faults exceeded threshold "
                f"{state.options.fault_threshold}; last: {fault.cause!r}"
            )
            state.emitter.emit(EventType.ERROR, {"message": state.error})
            logger.error("fault_threshold_exceeded", extra={"pair": state.pair.name, "faults": state.faults})

    # ------------------------------------------------------------------
    # Sampling and results
    # ------------------------------------------------------------------

    @staticmethod
    def _sample(state: _RunState, candle: Candle):
        exchange = state.exchange
        unrealized = exchange.unrealized_pnl()
        if unrealized < state.max_unrealized_loss:
            state.max_unrealized_loss = unrealized
        state.trace.append(BalanceSample(candle.open_time, exchange.cash, exchange.cash + unrealized))

    @staticmethod
    def _progress_payload(state: _RunState, current: int, total: int) -> dict:
        exchange = state.exchange
        realized = Money.zero(state.pair.quote_currency)
        for position in exchange.positions():
            realized = realized + position.realized_pnl
        return {
            "current": current,
            "total": total,
            "balance": exchange.balance.to_json(),
            "locked_margin": exchange.locked_margin.to_json(),
            "equity": exchange.equity().to_json(),
            "realized_pnl": realized.to_json(),
            "total_fees": exchange.total_fees.to_json(),
        }

    def _build_result(self, state: _RunState, start_index: int) -> BacktestResult:
        series, pair = state.series, state.pair
        currency = pair.quote_currency
        sim_start = series[start_index].open_time
        sim_end, price_start, price_end = self._sim_bounds(state, start_index)

        return ResultAggregator(pair).build(
            status=state.status,
            positions=state.exchange.positions(),
            balance_trace=state.trace,
            final_balance=state.exchange.cash,
            total_fees=state.exchange.total_fees,
            sim_start=sim_start,
            sim_end=sim_end,
            liquidated=state.liquidated,
            max_unrealized_loss=state.max_unrealized_loss,
            coin_price_start=Money(price_start, currency) if price_start is not None else None,
            coin_price_end=Money(price_end, currency) if price_end is not None else None,
            candles_processed=state.candles_processed,
            strategy_faults=state.faults,
            error=state.error,
        )

    @staticmethod
    def _sim_bounds(state: _RunState, start_index: int) -> Tuple[int, Optional[Decimal], Optional[Decimal]]:
        series = state.series
        if state.last_index is None:
            return series[start_index].open_time, None, None
        last = series[state.last_index]
        end = last.open_time + state.pair.timeframe_seconds
        return end, series[start_index].close, last.close


# ============================================================================
# Batch
# ============================================================================


class OutcomeStatus:
    """Per-pair batch outcome."""
    COMPLETED = "completed"
    LIQUIDATED = "liquidated"
    CANCELED = "canceled"
    ERROR = "error"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PairOutcome:
    """What happened to one pair of a batch."""

    pair_name: str
    status: str
    result: Optional[BacktestResult] = None
    reason: Optional[str] = None

    def to_dict(self, include_trace: bool = False) -> dict:
        return {
            "pair": self.pair_name,
            "status": self.status,
            "reason": self.reason,
            "result": self.result.to_dict(include_trace=include_trace) if self.result else None,
        }

    def line(self) -> str:
        """One-line human summary."""
        if self.result is None:
            return f"{self.pair_name}: {self.status} ({self.reason})"
        financial = self.result.financial
        return (
            f"{self.pair_name}: {self.status} pnl={financial.pnl.format()} "
            f"({financial.pnl_percent:.2f}%) trades={self.result.trades.finished}"
        )


PairLike = Union[Pair, dict]


class BatchRunner:
    """Runs many pairs, each with its own ledger namespace and account.

    Every pair is validated before any simulation starts, so one bad
    configuration rejects the whole batch. Once running, a pair that fails is
    reported in its PairOutcome and the others continue.

    Example:
        >>> batch = BatchRunner(BacktestRunner(source), workers=4)
        >>> outcomes = batch.run([pair_a, pair_b])
    """

    def __init__(self, runner: BacktestRunner, workers: int = 1):
        if workers < 1:
            raise InvalidConfigValueError(f"workers must be >= 1, got {workers}")
        self.runner = runner
        self.workers = workers

    def validate(self, pairs: Sequence[PairLike]) -> List[Pair]:
        """Parse and validate every pair.

        Raises:
            ConfigurationError: The first invalid pair
        """
        parsed = []
        for index, item in enumerate(pairs):
            try:
                pair = item if isinstance(item, Pair) else Pair.from_dict(item)
                self.runner.validate(pair)
            except ConfigurationError as e:
                logger.error("batch_rejected", extra={"index": index, "reason": str(e)})
                raise
            parsed.append(pair)
        return parsed

    def run(
        self, pairs: Sequence[PairLike], cancel_token: Optional[CancellationToken] = None
    ) -> List[PairOutcome]:
        """Run all pairs; outcomes are returned in input order."""
        parsed = self.validate(pairs)
        logger.info("batch_started", extra={"pairs": len(parsed), "workers": self.workers})

        if self.workers == 1 or len(parsed) <= 1:
            outcomes = [self._run_one(pair, cancel_token) for pair in parsed]
        else:
            outcomes: List[Optional[PairOutcome]] = [None] * len(parsed)
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = {
                    pool.submit(self._run_one, pair, cancel_token): index
                    for index, pair in enumerate(parsed)
                }
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()

        logger.info(
            "batch_finished",
            extra={"pairs": len(outcomes),
                   "statuses": [o.status for o in outcomes]},
        )
        return outcomes

    def _run_one(self, pair: Pair, cancel_token: Optional[CancellationToken]) -> PairOutcome:
        try:
            result = self.runner.run(pair, cancel_token)
        except InsufficientHistoryError as e:
            logger.warning("pair_skipped", extra={"pair": pair.name, "reason": str(e)})
            return PairOutcome(pair.name, OutcomeStatus.SKIPPED, reason=str(e))
        except TradingBotError as e:
            logger.error("pair_failed", extra={"pair": pair.name, "reason": str(e)})
            return PairOutcome(pair.name, OutcomeStatus.FAILED, reason=str(e))
        except Exception as e:
            # Storage and other unexpected errors stay confined to their pair
            logger.exception("pair_failed", extra={"pair": pair.name})
            return PairOutcome(pair.name, OutcomeStatus.FAILED, reason=f"{type(e).__name__}: {e}")
        return PairOutcome(pair.name, result.status.value, result=result, reason=result.error)
