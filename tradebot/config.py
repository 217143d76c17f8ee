"""Backtest configuration management.

Settings are loaded from environment variables (a local ``.env`` file is read
first when present). Per-run knobs are carried by RunOptions, which the CLI and
the batch runner derive from BacktestSettings.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Tuple

from dotenv import load_dotenv

from .exceptions import InvalidConfigValueError

load_dotenv()


class MarginMode(str, Enum):
    """How the virtual account treats position margin.

    SHARED keeps margin on the account balance (orders are rejected only once
    equity is exhausted). RESERVED debits ``volume * price / leverage`` at
    placement and refunds it on close or cancel.
    """
    SHARED = "shared"
    RESERVED = "reserved"


@dataclass(frozen=True)
class RunOptions:
    """Knobs for a single backtest run.

    Attributes:
        end_time: Simulation end (Unix seconds); None means the last stored candle
        ticks_per_candle: Overrides the pair's value; <= 1 selects bar mode
        fault_threshold: Strategy faults tolerated before the pair errors out
        margin_mode: SHARED or RESERVED
        fee_rate: Taker fee as a fraction of notional (0.0004 = 0.04%)
        maintenance_margin_share: Share of initial margin required to stay open
        progress_every: Emit a progress event every N candles
    """

    end_time: Optional[int] = None
    ticks_per_candle: Optional[int] = None
    fault_threshold: int = 10
    margin_mode: MarginMode = MarginMode.SHARED
    fee_rate: Decimal = Decimal(0)
    maintenance_margin_share: Decimal = Decimal("0.5")
    progress_every: int = 100

    def validate(self):
        """Raise InvalidConfigValueError for out-of-range options."""
        if self.fault_threshold < 0:
            raise InvalidConfigValueError(
                f"fault_threshold must be >= 0, got {self.fault_threshold}"
            )
        if self.ticks_per_candle is not None and 1 < self.ticks_per_candle < 4:
            raise InvalidConfigValueError(
                f"ticks_per_candle must be <= 1 (bar mode) or >= 4, got {self.ticks_per_candle}"
            )
        if not Decimal(0) <= self.fee_rate < Decimal(1):
            raise InvalidConfigValueError(f"fee_rate must be in [0, 1), got {self.fee_rate}")
        if not Decimal(0) < self.maintenance_margin_share <= Decimal(1):
            raise InvalidConfigValueError(
                f"maintenance_margin_share must be in (0, 1], got {self.maintenance_margin_share}"
            )
        if self.progress_every <= 0:
            raise InvalidConfigValueError(
                f"progress_every must be positive, got {self.progress_every}"
            )


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise InvalidConfigValueError(f"{name} must be a decimal number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class BacktestSettings:
    """Process-wide settings loaded from environment variables.

    Example:
        >>> settings = BacktestSettings.from_env()
        >>> settings.validate()
        (True, None)
    """

    database_url: str = "sqlite:///tradebot.db"
    log_level: str = "INFO"
    log_json: bool = True
    ticks_per_candle: Optional[int] = None
    fault_threshold: int = 10
    margin_mode: MarginMode = MarginMode.SHARED
    fee_rate: Decimal = Decimal(0)
    maintenance_margin_share: Decimal = Decimal("0.5")
    cancel_file: Optional[str] = None
    workers: int = 1

    @classmethod
    def from_env(cls) -> "BacktestSettings":
        """Load settings from environment variables.

        Returns:
            BacktestSettings with values from environment (defaults otherwise)

        Raises:
            InvalidConfigValueError: If a variable cannot be parsed
        """
        margin_raw = os.getenv("BACKTEST_MARGIN_MODE", MarginMode.SHARED.value).lower()
        try:
            margin_mode = MarginMode(margin_raw)
        except ValueError:
            raise InvalidConfigValueError(
                f"BACKTEST_MARGIN_MODE must be 'shared' or 'reserved', got {margin_raw!r}"
            )

        ticks = _env_int("BACKTEST_TICKS_PER_CANDLE", 0)

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///tradebot.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=os.getenv("LOG_JSON", "true").lower() == "true",
            ticks_per_candle=ticks or None,
            fault_threshold=_env_int("BACKTEST_FAULT_THRESHOLD", 10),
            margin_mode=margin_mode,
            fee_rate=_env_decimal("BACKTEST_FEE_RATE", "0"),
            maintenance_margin_share=_env_decimal("BACKTEST_MAINTENANCE_MARGIN_SHARE", "0.5"),
            cancel_file=os.getenv("BACKTEST_CANCEL_FILE") or None,
            workers=_env_int("BACKTEST_WORKERS", 1),
        )

    def run_options(self, end_time: Optional[int] = None) -> RunOptions:
        """RunOptions derived from these settings."""
        return RunOptions(
            end_time=end_time,
            ticks_per_candle=self.ticks_per_candle,
            fault_threshold=self.fault_threshold,
            margin_mode=self.margin_mode,
            fee_rate=self.fee_rate,
            maintenance_margin_share=self.maintenance_margin_share,
        )

    def validate(self) -> Tuple[bool, Optional[str]]:
        """Validate settings ranges.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return False, f"Invalid LOG_LEVEL: {self.log_level}"
        if self.workers < 1:
            return False, f"BACKTEST_WORKERS must be >= 1, got {self.workers}"
        try:
            self.run_options().validate()
        except InvalidConfigValueError as e:
            return False, str(e)
        return True, None

    def __repr__(self) -> str:
        """Hide credentials embedded in the database URL."""
        url = self.database_url
        if "@" in url:
            scheme, _, rest = url.partition("://")
            url = f"{scheme}://***@{rest.split('@', 1)[1]}"
        return (
            f"BacktestSettings(database_url='{url}', log_level='{self.log_level}', "
            f"margin_mode='{self.margin_mode.value}', workers={self.workers})"
        )
