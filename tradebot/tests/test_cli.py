"""
End-to-end tests for the JSON CLI against a temporary SQLite database.
"""

import json
import logging

import pytest

from tradebot.cli import main

from .conftest import T0

PAIR = {
    "exchange": "binance",
    "ticker": "BTCUSDT",
    "base_currency": "BTC",
    "quote_currency": "USDT",
    "market_kind": "spot",
    "timeframe": "1h",
    "strategy": "always_long",
    "strategy_params": {"volume": 10, "take_profit_percent": 5},
    "backtest_days": 30,
    "backtest_initial_balance": 1000,
}


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a fresh database and restore logging afterwards."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("BACKTEST_TICKS_PER_CANDLE", raising=False)
    monkeypatch.delenv("BACKTEST_MARGIN_MODE", raising=False)
    monkeypatch.delenv("BACKTEST_CANCEL_FILE", raising=False)

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield tmp_path
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def candles_csv(tmp_path):
    lines = ["open_time,open,high,low,close,volume"]
    for i in range(48):
        high = 106 if i == 20 else 100
        lines.append(f"{T0 + i * 3600},100,{high},100,100,5")
    path = tmp_path / "btc.csv"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def invoke(capsys, *argv):
    code = main(list(argv))
    return code, json.loads(capsys.readouterr().out)


def import_candles(capsys, path):
    return invoke(
        capsys, "import-candles", "--file", str(path), "--exchange", "binance",
        "--ticker", "BTCUSDT", "--market-kind", "spot", "--timeframe", "1h",
    )


class TestCli:
    """Test suite for the command-line interface."""

    def test_import_is_idempotent(self, cli_env, capsys, candles_csv):
        code, first = import_candles(capsys, candles_csv)
        assert code == 0
        assert (first["read"], first["inserted"], first["stored"]) == (48, 48, 48)

        code, second = import_candles(capsys, candles_csv)
        assert code == 0
        assert (second["inserted"], second["stored"]) == (0, 48)

    def test_backtest_saves_and_lists(self, cli_env, capsys, candles_csv):
        import_candles(capsys, candles_csv)
        pair_file = cli_env / "pair.json"
        pair_file.write_text(json.dumps(PAIR), encoding="utf-8")
        report = cli_env / "out" / "report.md"
        events = cli_env / "out" / "events.jsonl"

        code, out = invoke(
            capsys, "backtest", "--pair", str(pair_file), "--save",
            "--report", str(report), "--events", str(events),
        )
        assert code == 0
        assert out["success"]
        assert out["result"]["financial"]["pnl"] == "50"
        assert "balance_trace" not in out["result"]
        assert report.exists()
        event_types = [json.loads(line)["type"] for line in events.read_text().splitlines()]
        assert event_types[0] == "init" and event_types[-1] == "done"

        code, listing = invoke(capsys, "results", "--full")
        assert code == 0
        assert len(listing["results"]) == 1
        assert listing["results"][0]["id"] == out["record_id"]
        assert listing["results"][0]["result"]["financial"]["pnl"] == "50"

    def test_batch_reports_skipped_pairs(self, cli_env, capsys, candles_csv):
        import_candles(capsys, candles_csv)
        pairs_file = cli_env / "pairs.json"
        eth = {**PAIR, "ticker": "ETHUSDT", "base_currency": "ETH"}
        pairs_file.write_text(json.dumps({"pairs": [PAIR, eth]}), encoding="utf-8")

        code, out = invoke(capsys, "batch", "--pairs", str(pairs_file), "--workers", "2")
        assert code == 0
        assert [o["status"] for o in out["outcomes"]] == ["completed", "skipped"]

    def test_invalid_pair_file(self, cli_env, capsys, candles_csv):
        pair_file = cli_env / "pair.json"
        pair_file.write_text(json.dumps({**PAIR, "strategy": "unknown"}), encoding="utf-8")

        code, out = invoke(capsys, "backtest", "--pair", str(pair_file))
        assert code == 1
        assert not out["success"]
        assert out["error"].startswith("Configuration error")

    def test_bad_settings(self, cli_env, capsys, monkeypatch):
        monkeypatch.setenv("BACKTEST_WORKERS", "0")
        code, out = invoke(capsys, "results")
        assert code == 1
        assert "BACKTEST_WORKERS" in out["error"]
