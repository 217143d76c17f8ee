"""Backtest Report Generation - Human-readable performance reports.

Generates markdown and JSON reports from backtest results, and a summary table
for batch runs.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .results import BacktestResult, DirectionStats


def _format_time(timestamp: Optional[int]) -> str:
    if timestamp is None:
        return "n/a"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _format_duration(seconds: int) -> str:
    hours, rem = divmod(int(seconds), 3600)
    days, hours = divmod(hours, 24)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _format_ratio(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.2f}"


class BacktestReport:
    """Generates human-readable reports from backtest results.

    Creates markdown reports with:
    - Executive summary
    - Performance metrics table
    - Long/short breakdown
    - Positions still open at the end of the simulation

    Example:
        >>> report = BacktestReport()
        >>> report.generate_markdown(result, Path("reports/btc.md"))
        >>> report.generate_json(result, Path("reports/btc.json"))
    """

    def __init__(self):
        """Initialize report generator."""
        self.logger = logging.getLogger(__name__)

    def generate_markdown(
        self,
        result: BacktestResult,
        output_path: Optional[Path] = None,
    ) -> str:
        """Generate markdown report from backtest result.

        Args:
            result: BacktestResult to generate report from
            output_path: Optional path to save report (if None, returns string)

        Returns:
            Markdown report as string
        """
        md = self._build_markdown_report(result)
        if output_path:
            self._write(Path(output_path), md)
        return md

    def generate_json(
        self,
        result: BacktestResult,
        output_path: Optional[Path] = None,
        include_trace: bool = True,
    ) -> str:
        """Serialize the full result as indented, key-sorted JSON."""
        text = json.dumps(result.to_dict(include_trace=include_trace), indent=2, sort_keys=True)
        if output_path:
            self._write(Path(output_path), text)
        return text

    def generate_batch_summary(
        self,
        results: List[BacktestResult],
        output_path: Optional[Path] = None,
    ) -> str:
        """Markdown table with one row per pair."""
        md = "# Batch Backtest Summary\n\n"
        md += "| Pair | Status | P&L | P&L % | Max DD % | Trades | Win Rate | Sharpe |\n"
        md += "|------|--------|-----|-------|----------|--------|----------|--------|\n"
        for result in results:
            financial = result.financial
            win_rate = result.trades.win_rate
            md += (
                f"| {result.pair_name} | {result.status.value} | "
                f"{financial.pnl.format()} | {financial.pnl_percent:+.2f}% | "
                f"{financial.max_drawdown_percent:.2f}% | {result.trades.finished} | "
                f"{'n/a' if win_rate is None else f'{win_rate:.1f}%'} | "
                f"{_format_ratio(result.risk.sharpe)} |\n"
            )
        if output_path:
            self._write(Path(output_path), md)
        return md

    def _write(self, path: Path, content: str):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        self.logger.info("report_saved", extra={"path": str(path)})

    def _build_markdown_report(self, result: BacktestResult) -> str:
        """Build comprehensive markdown report."""
        pair = result.pair
        md = f"# Backtest Report: {result.pair_name}\n\n"
        md += f"**Strategy:** `{pair.get('strategy')}`  \n"
        md += f"**Period:** {_format_time(result.sim_start)} to {_format_time(result.sim_end)} UTC  \n"
        md += f"**Status:** {result.status.value}  \n\n"

        md += "## Executive Summary\n\n"
        md += self._build_executive_summary(result)
        md += "\n\n"

        md += "## Performance Metrics\n\n"
        md += self._build_metrics_table(result)
        md += "\n\n"

        md += "## Direction Breakdown\n\n"
        md += self._build_direction_table([result.long_stats, result.short_stats])
        md += "\n\n"

        if result.open_positions:
            md += "## Open Positions\n\n"
            md += self._build_open_positions_table(result)
            md += "\n\n"

        md += "## Configuration\n\n"
        md += "```json\n"
        md += json.dumps(pair, indent=2, sort_keys=True)
        md += "\n```\n\n"

        md += "## Execution Information\n\n"
        md += f"- **Candles Processed:** {result.candles_processed:,}\n"
        md += f"- **Strategy Faults:** {result.strategy_faults}\n"
        if result.error:
            md += f"- **Error:** {result.error}\n"

        return md

    def _build_executive_summary(self, result: BacktestResult) -> str:
        """Build executive summary section."""
        financial = result.financial
        if financial.liquidated:
            verdict = "**Account liquidated**"
        elif result.trades.finished == 0:
            verdict = "**No trades finished**"
        elif financial.pnl.is_positive():
            verdict = "**Profitable run**"
        else:
            verdict = "**Unprofitable run**"

        summary = f"{verdict}\n\n"
        summary += f"- **Total P&L:** {financial.pnl.format()} ({financial.pnl_percent:+.2f}%)\n"
        win_rate = result.trades.win_rate
        if win_rate is not None:
            summary += (
                f"- **Win Rate:** {win_rate:.1f}% "
                f"({result.trades.wins}/{result.trades.wins + result.trades.losses} trades)\n"
            )
        summary += f"- **Sharpe Ratio:** {_format_ratio(result.risk.sharpe)}\n"
        summary += f"- **Max Drawdown:** {financial.max_drawdown_percent:.1f}%\n"
        return summary

    def _build_metrics_table(self, result: BacktestResult) -> str:
        """Build performance metrics table."""
        financial, trades, risk = result.financial, result.trades, result.risk
        table = "| Metric | Value |\n"
        table += "|--------|-------|\n"

        table += f"| **Initial Balance** | {financial.initial_balance.format()} |\n"
        table += f"| **Final Balance** | {financial.final_balance.format()} |\n"
        table += f"| **Total P&L** | {financial.pnl.format()} |\n"
        table += f"| **Total Return** | {financial.pnl_percent:+.2f}% |\n"
        table += f"| **Fees Paid** | {financial.total_fees.format()} |\n"
        if financial.coin_price_start and financial.coin_price_end:
            table += (
                f"| **Asset Price** | {financial.coin_price_start.format()} -> "
                f"{financial.coin_price_end.format()} |\n"
            )

        table += f"| **Finished Trades** | {trades.finished} |\n"
        table += f"| **Open / Pending** | {trades.open} / {trades.pending} |\n"
        table += f"| **Canceled / Error** | {trades.canceled} / {trades.error} |\n"
        table += f"| **Shortest Trade** | {_format_duration(trades.shortest)} |\n"
        table += f"| **Longest Trade** | {_format_duration(trades.longest)} |\n"
        table += f"| **Average Trade** | {_format_duration(trades.average)} |\n"
        table += f"| **Idle Time** | {_format_duration(trades.idle)} |\n"

        table += f"| **Sharpe Ratio** | {_format_ratio(risk.sharpe)} |\n"
        table += f"| **Sortino Ratio** | {_format_ratio(risk.sortino)} |\n"
        table += f"| **Max Drawdown** | {financial.max_drawdown.format()} |\n"
        table += f"| **Max Drawdown %** | {financial.max_drawdown_percent:.1f}% |\n"
        table += f"| **Deepest Unrealized Loss** | {financial.max_unrealized_loss.format()} |\n"
        return table

    @staticmethod
    def _build_direction_table(stats: List[DirectionStats]) -> str:
        table = "| Direction | Finished | Wins | Losses | Breakeven Locks | Win Rate | Avg Duration |\n"
        table += "|-----------|----------|------|--------|-----------------|----------|--------------|\n"
        for s in stats:
            win_rate = "n/a" if s.win_rate is None else f"{s.win_rate:.1f}%"
            table += (
                f"| {s.label} | {s.finished} | {s.wins} | {s.losses} | "
                f"{s.breakeven_locks} | {win_rate} | {_format_duration(s.average)} |\n"
            )
        return table

    @staticmethod
    def _build_open_positions_table(result: BacktestResult) -> str:
        table = "| ID | Direction | Status | Entry | Volume | Unrealized P&L | Hanging |\n"
        table += "|----|-----------|--------|-------|--------|----------------|---------|\n"
        for p in result.open_positions:
            table += (
                f"| {p.id} | {p.direction} | {p.status} | {p.entry.format()} | {p.volume} | "
                f"{p.unrealized_pnl.format()} | {_format_duration(p.time_hanging)} |\n"
            )
        return table
