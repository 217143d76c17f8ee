"""Fixed-point money amounts.

Every balance, price, PnL and fee in the backtester is a Money value: a
Decimal quantized to ten fractional digits plus a currency tag. Arithmetic and
ordering between different currencies raise CurrencyMismatchError instead of
silently mixing units.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Union

from ..exceptions import CurrencyMismatchError

QUANTUM = Decimal("1e-10")
HUNDRED = Decimal(100)

Scalar = Union[int, float, str, Decimal]


def to_decimal(value: Scalar) -> Decimal:
    """Convert a scalar to Decimal (floats go through str to avoid binary noise)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def quantize(value: Decimal) -> Decimal:
    """Round to the ledger precision."""
    return value.quantize(QUANTUM, rounding=ROUND_HALF_EVEN)


def decimal_to_str(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros ("1500", "0.25")."""
    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


@dataclass(frozen=True)
class Money:
    """Decimal amount tagged with a currency.

    Example:
        >>> price = Money("100", "USDT")
        >>> price.modify_by_percent(5)
        Money(amount=Decimal('105.0000000000'), currency='USDT')
        >>> price + Money("1", "BTC")
        Traceback (most recent call last):
        CurrencyMismatchError: Currency mismatch: USDT vs BTC
    """

    amount: Decimal
    currency: str = "USDT"

    def __post_init__(self):
        object.__setattr__(self, "amount", quantize(to_decimal(self.amount)))
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = "USDT") -> "Money":
        return cls(Decimal(0), currency)

    def _check(self, other: "Money"):
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor: Scalar) -> "Money":
        if isinstance(factor, Money):
            raise TypeError("Money can only be multiplied by a scalar")
        return Money(self.amount * to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __truediv__(self, divisor: Scalar) -> "Money":
        if isinstance(divisor, Money):
            raise TypeError("Use ratio() to divide Money by Money")
        return Money(self.amount / to_decimal(divisor), self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __abs__(self) -> "Money":
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount >= other.amount

    def ratio(self, other: "Money") -> Decimal:
        """Dimensionless quotient self / other."""
        self._check(other)
        return self.amount / other.amount

    def percent_of(self, percent: Scalar) -> "Money":
        """Return ``percent`` % of this amount."""
        return Money(self.amount * to_decimal(percent) / HUNDRED, self.currency)

    def modify_by_percent(self, percent: Scalar) -> "Money":
        """Increase (or decrease, for negative percent) by ``percent`` %."""
        return Money(
            self.amount * (HUNDRED + to_decimal(percent)) / HUNDRED, self.currency
        )

    def modify_by_percent_with_direction(self, percent: Scalar, direction) -> "Money":
        """Move the amount by ``percent`` % in the profitable direction.

        For a long position a positive percent moves the price up, for a short
        it moves the price down. A negative percent moves against the position,
        which is how stop-loss prices are derived.
        """
        signed = to_decimal(percent) * direction.sign
        return self.modify_by_percent(signed)

    def percent_difference(self, other: "Money") -> Decimal:
        """Percent change from ``other`` to this amount."""
        self._check(other)
        if other.amount == 0:
            raise ZeroDivisionError("percent difference against zero amount")
        return (self.amount - other.amount) / other.amount * HUNDRED

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def format(self, places: int = 2) -> str:
        return f"{self.amount:.{places}f} {self.currency}"

    def to_json(self) -> str:
        return decimal_to_str(self.amount)

    def __str__(self) -> str:
        return self.format()
