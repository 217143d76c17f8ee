#!/usr/bin/env python3
"""Backtesting CLI.

Every command prints one JSON document on stdout (logs go to stderr), so the
CLI can be driven by scripts or a UI process.

Commands:
    import-candles  Load a CSV export into the candle store (idempotent)
    backtest        Run one pair described by a JSON file
    batch           Run a list of pairs from a JSON file
    results         List stored results
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, List

from .backtest import (
    BacktestReport,
    BacktestRunner,
    BatchRunner,
    CancellationToken,
    EventSink,
    JsonlEventWriter,
    SqlCandleSource,
    read_candles_csv,
)
from .config import BacktestSettings
from .database import create_db_engine, init_db, make_session_factory, session_scope
from .database.repositories import CandleRepository, ResultRepository
from .exceptions import (
    ConfigurationError,
    DataError,
    InsufficientHistoryError,
    TradingBotError,
)
from .logging_config import get_logger, setup_logging
from .models import Pair, SeriesKey
from .validation import (
    ValidationError,
    validate_exchange_name,
    validate_market_kind,
    validate_positive_int,
    validate_ticker,
    validate_timeframe,
)

logger = get_logger(__name__)


def json_output(data: dict):
    """Print JSON output for the calling process."""
    print(json.dumps(data, indent=2))


def _fail(command: str, kind: str, error: Exception) -> int:
    logger.error(f"cli_{kind}_error", extra={"command": command, "error": str(error)})
    json_output({"success": False, "error": f"{kind.replace('_', ' ').capitalize()} error: {error}"})
    return 1


def _load_json(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Cannot read {path}: {e}") from e


def _session_factory(settings: BacktestSettings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    return make_session_factory(engine)


def cmd_import_candles(args, settings: BacktestSettings) -> int:
    """Import candles from a CSV file."""
    try:
        key = SeriesKey(
            validate_exchange_name(args.exchange),
            validate_ticker(args.ticker),
            validate_market_kind(args.market_kind),
            validate_timeframe(args.timeframe),
        )
        candles = read_candles_csv(args.file)

        with session_scope(_session_factory(settings)) as session:
            repo = CandleRepository(session)
            inserted = repo.save_candles(key, candles)
            total = repo.count(key)

        json_output({
            "success": True,
            "series": str(key),
            "read": len(candles),
            "inserted": inserted,
            "stored": total,
        })
        return 0

    except ValidationError as e:
        return _fail("import-candles", "validation", e)
    except (DataError, OSError) as e:
        return _fail("import-candles", "data", e)
    except TradingBotError as e:
        return _fail("import-candles", "trading_bot", e)


def cmd_backtest(args, settings: BacktestSettings) -> int:
    """Run a single pair."""
    sink: EventSink = EventSink()
    try:
        pair = Pair.from_dict(_load_json(args.pair))
        options = settings.run_options(end_time=args.end_time)
        if args.ticks is not None:
            options = replace(options, ticks_per_candle=args.ticks)

        factory = _session_factory(settings)
        if args.events:
            sink = JsonlEventWriter(args.events)
        runner = BacktestRunner(SqlCandleSource(factory), sink=sink, options=options)
        result = runner.run(pair, CancellationToken(settings.cancel_file))

        record_id = None
        if args.save:
            with session_scope(factory) as session:
                record_id = ResultRepository(session).save(result).id

        report = BacktestReport()
        if args.report:
            report.generate_markdown(result, Path(args.report))
        if args.output:
            report.generate_json(result, Path(args.output))

        json_output({
            "success": True,
            "record_id": record_id,
            "result": result.to_dict(include_trace=args.trace),
        })
        return 0

    except InsufficientHistoryError as e:
        return _fail("backtest", "data", e)
    except ConfigurationError as e:
        return _fail("backtest", "configuration", e)
    except TradingBotError as e:
        return _fail("backtest", "trading_bot", e)
    finally:
        sink.close()


def _read_pairs(path: str) -> List[dict]:
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("pairs")
    if not isinstance(data, list):
        raise ValidationError(f"{path}: expected a list of pairs or an object with 'pairs'")
    return data


def cmd_batch(args, settings: BacktestSettings) -> int:
    """Run every pair of a batch file."""
    sink: EventSink = EventSink()
    try:
        pairs = _read_pairs(args.pairs)
        workers = validate_positive_int(args.workers or settings.workers, "workers")

        factory = _session_factory(settings)
        if args.events:
            sink = JsonlEventWriter(args.events)
        runner = BacktestRunner(
            SqlCandleSource(factory), sink=sink,
            options=settings.run_options(end_time=args.end_time),
        )
        outcomes = BatchRunner(runner, workers=workers).run(
            pairs, CancellationToken(settings.cancel_file)
        )

        results = [o.result for o in outcomes if o.result is not None]
        if args.save and results:
            with session_scope(factory) as session:
                repo = ResultRepository(session)
                for result in results:
                    repo.save(result)
        if args.report:
            BacktestReport().generate_batch_summary(results, Path(args.report))

        for outcome in outcomes:
            logger.info("batch_outcome", extra={"line": outcome.line()})

        json_output({
            "success": True,
            "outcomes": [o.to_dict() for o in outcomes],
        })
        return 0

    except ConfigurationError as e:
        return _fail("batch", "configuration", e)
    except TradingBotError as e:
        return _fail("batch", "trading_bot", e)
    finally:
        sink.close()


def cmd_results(args, settings: BacktestSettings) -> int:
    """List stored results, newest first."""
    try:
        limit = validate_positive_int(args.limit, "limit")
        with session_scope(_session_factory(settings)) as session:
            records = ResultRepository(session).list_recent(args.pair, limit)
            rows = [r.to_dict(include_payload=args.full) for r in records]

        json_output({"success": True, "results": rows})
        return 0

    except ValidationError as e:
        return _fail("results", "validation", e)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="tradebot backtesting CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Import candles command
    import_parser = subparsers.add_parser("import-candles", help="Import OHLCV candles from CSV")
    import_parser.add_argument("--file", required=True, help="CSV with open_time,open,high,low,close,volume")
    import_parser.add_argument("--exchange", required=True, help="Exchange name (e.g. binance)")
    import_parser.add_argument("--ticker", required=True, help="Ticker (e.g. BTCUSDT)")
    import_parser.add_argument("--market-kind", default="spot", help="spot or futures")
    import_parser.add_argument("--timeframe", required=True, help="Candle timeframe (e.g. 1h)")

    # Single backtest command
    backtest_parser = subparsers.add_parser("backtest", help="Backtest one pair")
    backtest_parser.add_argument("--pair", required=True, help="JSON file describing the pair")
    backtest_parser.add_argument("--end-time", type=int, default=None, help="Simulation end (Unix seconds)")
    backtest_parser.add_argument("--ticks", type=int, default=None, help="Ticks per candle (<= 1 for bar mode)")
    backtest_parser.add_argument("--events", default=None, help="Append progress events to this JSONL file")
    backtest_parser.add_argument("--report", default=None, help="Write a markdown report here")
    backtest_parser.add_argument("--output", default=None, help="Write the full JSON result here")
    backtest_parser.add_argument("--trace", action="store_true", help="Include balance trace and positions")
    backtest_parser.add_argument("--save", action="store_true", help="Store the result in the database")

    # Batch command
    batch_parser = subparsers.add_parser("batch", help="Backtest a list of pairs")
    batch_parser.add_argument("--pairs", required=True, help="JSON file with a list of pairs")
    batch_parser.add_argument("--workers", type=int, default=None, help="Parallel workers")
    batch_parser.add_argument("--end-time", type=int, default=None, help="Simulation end (Unix seconds)")
    batch_parser.add_argument("--events", default=None, help="Append progress events to this JSONL file")
    batch_parser.add_argument("--report", default=None, help="Write a markdown summary here")
    batch_parser.add_argument("--save", action="store_true", help="Store results in the database")

    # Results command
    results_parser = subparsers.add_parser("results", help="List stored results")
    results_parser.add_argument("--pair", default=None, help="Filter by pair name")
    results_parser.add_argument("--limit", type=int, default=20, help="Limit results")
    results_parser.add_argument("--full", action="store_true", help="Include the stored result payload")

    return parser


COMMANDS = {
    "import-candles": cmd_import_candles,
    "backtest": cmd_backtest,
    "batch": cmd_batch,
    "results": cmd_results,
}


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = BacktestSettings.from_env()
    except ConfigurationError as e:
        json_output({"success": False, "error": f"Configuration error: {e}"})
        return 1

    ok, error = settings.validate()
    setup_logging(settings.log_level if ok else "INFO", settings.log_json, stream=sys.stderr)
    if not ok:
        logger.error("cli_configuration_error", extra={"command": args.command, "error": error})
        json_output({"success": False, "error": f"Configuration error: {error}"})
        return 1

    return COMMANDS[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
