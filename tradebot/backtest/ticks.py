"""Deterministic intra-candle price paths.

A candle only records four prices, so tick mode walks a fixed path through
them: ``open -> low -> high -> close`` for a bullish (or flat) candle and
``open -> high -> low -> close`` for a bearish one, linearly interpolated.
The path depends on nothing but the candle, which keeps replays reproducible.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List

from ..models.market_data import Candle


@dataclass(frozen=True)
class Tick:
    """One simulated trade print inside a candle."""

    time: int
    price: Decimal


def generate_ticks(candle: Candle, duration: int, ticks_per_candle: int) -> List[Tick]:
    """Generate the price path for ``candle``.

    Args:
        candle: Source candle
        duration: Candle duration in seconds
        ticks_per_candle: Number of ticks; values up to 4 yield the four
            waypoints only

    Returns:
        Ticks in time order; the last tick is the close at
        ``open_time + duration - 1``

    Example:
        >>> c = Candle(0, 100, 110, 95, 105, 1)
        >>> [t.price for t in generate_ticks(c, 60, 4)]
        [Decimal('100'), Decimal('95'), Decimal('110'), Decimal('105')]
    """
    if candle.is_bullish:
        waypoints = [candle.open, candle.low, candle.high, candle.close]
    else:
        waypoints = [candle.open, candle.high, candle.low, candle.close]

    start = candle.open_time
    last_time = start + duration - 1

    if ticks_per_candle <= 4:
        segment = duration / 3
        return [
            Tick(start, waypoints[0]),
            Tick(start + int(segment), waypoints[1]),
            Tick(start + int(segment * 2), waypoints[2]),
            Tick(last_time, waypoints[3]),
        ]

    total_intervals = ticks_per_candle - 1
    base, remainder = divmod(total_intervals, 3)
    segment_intervals = [
        base + (1 if remainder > 0 else 0),
        base + (1 if remainder > 1 else 0),
        base,
    ]

    ticks: List[Tick] = []
    tick_number = 0
    for segment_index, intervals in enumerate(segment_intervals):
        start_price = waypoints[segment_index]
        end_price = waypoints[segment_index + 1]
        for j in range(intervals):
            fraction = Decimal(j) / Decimal(intervals)
            price = start_price + (end_price - start_price) * fraction
            time = start + (tick_number * (duration - 1)) // total_intervals
            ticks.append(Tick(time, price))
            tick_number += 1
    ticks.append(Tick(last_time, waypoints[3]))

    return ticks


def partial_candle(candle: Candle, ticks: List[Tick], upto: int, total: int) -> Candle:
    """The candle as seen after tick ``upto`` (0-based) of ``total``.

    High and low are the running extremes of the path so far; volume is the
    pro-rata share of the full candle's volume.
    """
    seen = [t.price for t in ticks[: upto + 1]]
    return Candle(
        open_time=candle.open_time,
        open=candle.open,
        high=max(seen),
        low=min(seen),
        close=seen[-1],
        volume=candle.volume * Decimal(upto + 1) / Decimal(total),
    )
