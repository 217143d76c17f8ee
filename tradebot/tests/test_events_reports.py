"""
Tests for the event stream writers and report generation.
"""

import json

import pytest

from tradebot.backtest import BacktestReport, BacktestRunner
from tradebot.backtest.events import (
    CollectingSink,
    EventEmitter,
    EventType,
    JsonlEventWriter,
    ProgressEvent,
)


@pytest.fixture
def flat_result(pair_factory, candle_factory, source_factory):
    """Always-long run over flat prices: one entry, still open at the end."""
    pair = pair_factory()
    return BacktestRunner(source_factory(pair, candle_factory([100] * 30))).run(pair)


class TestEventEmitter:
    """Test suite for sequencing and sinks."""

    def test_sequence_numbers_and_sim_time(self):
        sink = CollectingSink()
        emitter = EventEmitter(sink, "binance:BTCUSDT:spot:1h")
        emitter.emit(EventType.INIT, {"total": 3})
        emitter.sim_time = 3600
        emitter.ledger_listener(EventType.POSITION_OPEN, {"id": "x-1"})

        assert [e.seq for e in sink.events] == [1, 2]
        assert sink.events[0].sim_time is None
        assert sink.of_type(EventType.POSITION_OPEN)[0].sim_time == 3600
        assert sink.of_type(EventType.POSITION_OPEN)[0].data == {"id": "x-1"}

    def test_jsonl_writer_appends(self, tmp_path):
        path = tmp_path / "runs" / "events.jsonl"
        writer = JsonlEventWriter(path)
        writer.emit(ProgressEvent(1, EventType.INIT, "p", None, {"total": 2}))
        writer.emit(ProgressEvent(2, EventType.DONE, "p", 7200))
        writer.close()
        writer.close()

        JsonlEventWriter(path).close()
        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["type"] for line in lines] == ["init", "done"]
        assert json.loads(lines[1]) == {
            "seq": 2, "type": "done", "pair": "p", "sim_time": 7200, "data": {},
        }


class TestBacktestReport:
    """Test suite for markdown and JSON reports."""

    def test_markdown_sections(self, flat_result, tmp_path):
        path = tmp_path / "reports" / "btc.md"
        md = BacktestReport().generate_markdown(flat_result, path)

        assert path.read_text(encoding="utf-8") == md
        assert md.startswith("# Backtest Report: binance:BTCUSDT:spot:1h")
        for section in ("Executive Summary", "Performance Metrics", "Direction Breakdown",
                        "Open Positions", "Configuration", "Execution Information"):
            assert f"## {section}" in md
        assert "**No trades finished**" in md
        assert "| **Candles Processed:** 30" not in md
        assert "- **Candles Processed:** 30" in md

    def test_markdown_is_reproducible(self, flat_result):
        report = BacktestReport()
        assert report.generate_markdown(flat_result) == report.generate_markdown(flat_result)

    def test_json_report(self, flat_result, tmp_path):
        text = BacktestReport().generate_json(flat_result, tmp_path / "btc.json", include_trace=False)
        data = json.loads(text)
        assert data == flat_result.to_dict(include_trace=False)
        assert list(data) == sorted(data)

    def test_batch_summary(self, flat_result):
        md = BacktestReport().generate_batch_summary([flat_result, flat_result])
        rows = [line for line in md.splitlines() if line.startswith("| binance:")]
        assert len(rows) == 2
        assert "| completed |" in rows[0]
        assert "n/a" in rows[0]
