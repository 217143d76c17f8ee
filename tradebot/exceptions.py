"""
Custom exception hierarchy for tradebot.

All backtesting exceptions derive from TradingBotError for easy catching.
Organized by domain: Configuration, Money, Ledger, Data, Strategy.
"""


class TradingBotError(Exception):
    """Base exception for all trading bot errors."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(TradingBotError):
    """Configuration-related errors (env vars, pair definitions, options)."""
    pass


class InvalidConfigValueError(ConfigurationError):
    """Configuration value invalid or out of range."""
    pass


class UnknownStrategyError(ConfigurationError):
    """Strategy name not present in the strategy registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown strategy: {name}")


class UnknownIndicatorError(ConfigurationError):
    """Indicator name not present in the indicator registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown indicator: {name}")


# ============================================================================
# Money Errors
# ============================================================================

class CurrencyMismatchError(TradingBotError):
    """Arithmetic or comparison attempted between different currencies."""

    def __init__(self, left: str, right: str):
        self.left = left
        self.right = right
        super().__init__(f"Currency mismatch: {left} vs {right}")


# ============================================================================
# Ledger Errors (Virtual Exchange, Positions)
# ============================================================================

class RiskViolationError(TradingBotError):
    """Order rejected by virtual account constraints."""
    pass


class InsufficientBalanceError(RiskViolationError):
    """Insufficient balance to place the order; nothing was changed."""

    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance: required {required}, available {available}"
        )


class LedgerError(TradingBotError):
    """Position ledger consistency errors."""
    pass


class IllegalStatusTransitionError(LedgerError):
    """Position status change not allowed by the state machine."""

    def __init__(self, position_id: str, current, target):
        self.position_id = position_id
        self.current = current
        self.target = target
        super().__init__(
            f"Position {position_id}: illegal transition {current} -> {target}"
        )


class PositionNotFoundError(LedgerError):
    """Position id not present in the ledger namespace."""
    pass


class MissingPriceError(LedgerError):
    """No current price is known for the market."""
    pass


# ============================================================================
# Data Errors
# ============================================================================

class DataError(TradingBotError):
    """Historical data errors."""
    pass


class InsufficientHistoryError(DataError):
    """Fewer candles available than the strategy warm-up requires."""

    def __init__(self, pair_name: str, available: int, required: int):
        self.pair_name = pair_name
        self.available = available
        self.required = required
        super().__init__(
            f"{pair_name}: {available} candles available, {required} required"
        )


class InvalidCandleError(DataError):
    """Candle fails OHLC integrity checks."""
    pass


# ============================================================================
# Strategy Errors
# ============================================================================

class StrategyFaultError(TradingBotError):
    """Strategy or indicator code raised during a simulation step."""

    def __init__(self, step_time: int, cause: BaseException):
        self.step_time = step_time
        self.cause = cause
        super().__init__(f"Strategy fault at {step_time}: {cause!r}")
