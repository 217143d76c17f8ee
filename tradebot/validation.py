"""Input validation utilities for configuration boundaries.

Pair definitions come from user-edited configuration and CLI arguments; every
field is validated here before it reaches the engine, so the replay loop can
trust its inputs.
"""

from decimal import Decimal, InvalidOperation
from typing import Any
import re

from .exceptions import InvalidConfigValueError


class ValidationError(InvalidConfigValueError):
    """Raised when input validation fails.

    Subclasses InvalidConfigValueError so a malformed pair is reported as a
    configuration error before any run starts.
    """
    pass


TIMEFRAME_SECONDS = {
    '1m': 60,
    '5m': 300,
    '15m': 900,
    '30m': 1800,
    '1h': 3600,
    '4h': 14400,
    '1d': 86400,
}

MARKET_KINDS = ('spot', 'futures')


def validate_ticker(ticker: str) -> str:
    """Validate ticker format.

    Args:
        ticker: Exchange ticker (e.g., "BTCUSDT", "ETH-USD")

    Returns:
        Validated ticker in uppercase

    Raises:
        ValidationError: If ticker format invalid

    Examples:
        >>> validate_ticker("btcusdt")
        "BTCUSDT"
        >>> validate_ticker("../../etc/passwd")  # Blocked
        ValidationError: Invalid ticker format
    """
    if not ticker or not isinstance(ticker, str):
        raise ValidationError("Ticker must be a non-empty string")

    if not re.match(r'^[A-Z0-9/_-]+$', ticker.upper()):
        raise ValidationError(
            f"Invalid ticker format: {ticker}. "
            f"Only letters, numbers, /, -, and _ allowed."
        )

    if len(ticker) > 20:
        raise ValidationError(f"Ticker too long (max 20 chars): {ticker}")

    return ticker.upper()


def validate_currency(currency: str) -> str:
    """Validate a currency code such as "USDT" or "BTC"."""
    if not currency or not isinstance(currency, str):
        raise ValidationError("Currency must be a non-empty string")
    if not re.match(r'^[A-Z0-9]{2,10}$', currency.upper()):
        raise ValidationError(f"Invalid currency code: {currency}")
    return currency.upper()


def validate_timeframe(timeframe: str) -> str:
    """Validate timeframe string.

    Args:
        timeframe: Candle timeframe (e.g., "1m", "5m", "1h", "1d")

    Returns:
        Validated timeframe

    Raises:
        ValidationError: If timeframe invalid

    Examples:
        >>> validate_timeframe("1h")
        "1h"
        >>> validate_timeframe("999y")  # Blocked
        ValidationError: Invalid timeframe
    """
    if timeframe not in TIMEFRAME_SECONDS:
        raise ValidationError(
            f"Invalid timeframe: {timeframe}. "
            f"Must be one of: {', '.join(TIMEFRAME_SECONDS)}"
        )

    return timeframe


def timeframe_to_seconds(timeframe: str) -> int:
    """Candle duration in seconds for a validated timeframe."""
    return TIMEFRAME_SECONDS[validate_timeframe(timeframe)]


def validate_market_kind(kind: str) -> str:
    """Validate market kind ("spot" or "futures")."""
    if not isinstance(kind, str) or kind.lower() not in MARKET_KINDS:
        raise ValidationError(
            f"Invalid market kind: {kind}. Must be one of: {', '.join(MARKET_KINDS)}"
        )
    return kind.lower()


def validate_exchange_name(name: str) -> str:
    """Validate exchange name format.

    Exchange names are identifiers such as "binance" or "bybit"; only
    lowercase letters, digits and underscores are accepted.

    Examples:
        >>> validate_exchange_name("Binance")
        "binance"
        >>> validate_exchange_name("bin ance")  # Blocked
        ValidationError: Invalid exchange name
    """
    if not name or not isinstance(name, str):
        raise ValidationError("Exchange name must be a non-empty string")

    normalized = name.lower()
    if not re.match(r'^[a-z0-9_]{2,32}$', normalized):
        raise ValidationError(f"Invalid exchange name: {name}")

    return normalized


def validate_positive_decimal(value: Any, name: str = "value") -> Decimal:
    """Validate a positive, finite decimal (amounts, prices, balances).

    Floats are converted through ``str`` so that 0.1 becomes Decimal("0.1").

    Raises:
        ValidationError: If not a positive finite number

    Examples:
        >>> validate_positive_decimal("100.5", "price")
        Decimal('100.5')
        >>> validate_positive_decimal(-10, "volume")  # Blocked
        ValidationError: volume must be positive
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number, got: bool")

    try:
        num = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(
            f"{name} must be a number, got: {type(value).__name__}"
        )

    if not num.is_finite():
        raise ValidationError(f"{name} must be finite, got: {num}")

    if num <= 0:
        raise ValidationError(f"{name} must be positive, got: {num}")

    return num


def validate_positive_int(value: Any, name: str = "value") -> int:
    """Validate a positive integer (days, leverage, tick counts)."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got: bool")
    try:
        num = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{name} must be an integer, got: {type(value).__name__}"
        )
    if num != value and not (isinstance(value, str) and value.strip() == str(num)):
        raise ValidationError(f"{name} must be an integer, got: {value}")
    if num <= 0:
        raise ValidationError(f"{name} must be positive, got: {num}")
    return num
