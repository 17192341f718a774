# File: parking_billing/domain/money.py
"""
Money Value Object

Exact fixed-point money for the billing engine. A Money value is an integer
count of minor currency units (centavos) plus a currency code; the scale is
fixed at two decimal places. Every calculation in the engine funnels through
this type, so no arithmetic ever touches a binary floating point number.

Rounding happens in exactly one place: the conversion boundaries that turn
external decimal text (or an explicit float) into minor units. Those round to
the nearest centavo using round-half-away-from-zero.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any, Dict, Iterable, List, Tuple, Union
import math
import re

from .errors import CurrencyMismatch, InvalidAmount


DEFAULT_CURRENCY = "MXN"
SCALE = 2
MINOR_PER_MAJOR = 10 ** SCALE

# Bills and coins used when breaking change down, in centavos
DENOMINATIONS_MINOR = (
    50000, 20000, 10000, 5000, 2000, 1000,
    500, 200, 100, 50, 20, 10, 5, 1
)

_AMOUNT_PATTERN = re.compile(r'^-?\d+(\.\d+)?$')

MajorUnits = Union[int, str, Decimal]


@dataclass(frozen=True)
class Money:
    """
    Value Object: exact monetary amount in minor units

    Immutable. Equality and ordering are total within one currency;
    combining different currencies raises CurrencyMismatch.
    """
    minor_units: int
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self):
        """Validate representation"""
        if isinstance(self.minor_units, bool) or not isinstance(self.minor_units, int):
            raise InvalidAmount(self.minor_units, "minor units must be an integer")

        if not isinstance(self.currency, str) or len(self.currency.strip()) != 3:
            raise InvalidAmount(self.currency, "currency must be a 3-letter code")

        object.__setattr__(self, 'currency', self.currency.strip().upper())

    # ------------------------------------------------------------------
    # Construction boundaries
    # ------------------------------------------------------------------

    @classmethod
    def from_minor_units(cls, minor_units: int, currency: str = DEFAULT_CURRENCY) -> 'Money':
        """Create from an integer number of centavos"""
        return cls(minor_units, currency)

    @classmethod
    def from_major_units(cls, value: MajorUnits, currency: str = DEFAULT_CURRENCY) -> 'Money':
        """
        Create from whole currency units (int, Decimal, or decimal text)

        Values with more than two decimal places are rounded once, half away
        from zero. Floats are refused here; use from_float for that boundary.
        """
        if isinstance(value, bool):
            raise InvalidAmount(value, "booleans are not amounts")

        if isinstance(value, int):
            return cls(value * MINOR_PER_MAJOR, currency)

        if isinstance(value, float):
            raise InvalidAmount(value, "floats must go through Money.from_float")

        if isinstance(value, str):
            text = value.strip()
            if not _AMOUNT_PATTERN.match(text):
                raise InvalidAmount(value, "not a decimal number")
            value = Decimal(text)

        if not isinstance(value, Decimal):
            raise InvalidAmount(value, f"unsupported type {type(value).__name__}")

        return cls(_decimal_to_minor(value), currency)

    @classmethod
    def from_float(cls, value: float, currency: str = DEFAULT_CURRENCY) -> 'Money':
        """
        Explicit float boundary

        The float is read through its shortest decimal representation
        (8.5 -> "8.5"), then rounded to the nearest centavo half away from zero.
        """
        if isinstance(value, bool) or not isinstance(value, (float, int)):
            raise InvalidAmount(value, "expected a float")

        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidAmount(value, "amount must be finite")

        return cls(_decimal_to_minor(Decimal(repr(value))), currency)

    @classmethod
    def parse(cls, text: str, currency: str = DEFAULT_CURRENCY) -> 'Money':
        """
        Parse user or configuration text such as "$1,250.50" or "8.5"
        """
        if not isinstance(text, str):
            raise InvalidAmount(text, "expected text")

        cleaned = re.sub(r'[\$\s,]', '', text)
        if not _AMOUNT_PATTERN.match(cleaned):
            raise InvalidAmount(text, "invalid money format")

        return cls(_decimal_to_minor(Decimal(cleaned)), currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> 'Money':
        return cls(0, currency)

    @classmethod
    def sum(cls, amounts: Iterable['Money'], currency: str = DEFAULT_CURRENCY) -> 'Money':
        """Sum amounts, starting from zero in the given currency"""
        total = cls.zero(currency)
        for amount in amounts:
            total = total.add(amount)
        return total

    # ------------------------------------------------------------------
    # Arithmetic (integer space only)
    # ------------------------------------------------------------------

    def add(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.minor_units + other.minor_units, self.currency)

    def subtract(self, other: 'Money') -> 'Money':
        """
        Subtract another amount. The result may be negative; callers that
        produce customer-facing totals must check sufficiency first.
        """
        self._check_currency(other)
        return Money(self.minor_units - other.minor_units, self.currency)

    def multiply(self, factor: int) -> 'Money':
        """Multiply by an integer scalar"""
        if isinstance(factor, bool) or not isinstance(factor, int):
            raise InvalidAmount(factor, "money can only be multiplied by an integer")
        return Money(self.minor_units * factor, self.currency)

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __mul__(self, factor: int) -> 'Money':
        return self.multiply(factor)

    __rmul__ = __mul__

    def __neg__(self) -> 'Money':
        return Money(-self.minor_units, self.currency)

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def __lt__(self, other: 'Money') -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor_units < other.minor_units

    def __le__(self, other: 'Money') -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor_units <= other.minor_units

    def __gt__(self, other: 'Money') -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor_units > other.minor_units

    def __ge__(self, other: 'Money') -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor_units >= other.minor_units

    def less_than(self, other: 'Money') -> bool:
        return self < other

    def greater_than(self, other: 'Money') -> bool:
        return self > other

    def is_zero(self) -> bool:
        return self.minor_units == 0

    def is_negative(self) -> bool:
        return self.minor_units < 0

    def is_positive(self) -> bool:
        return self.minor_units > 0

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_major_units(self) -> Decimal:
        """Exact Decimal in whole currency units, always two places"""
        return Decimal(self.minor_units).scaleb(-SCALE)

    def split_into_denominations(self) -> List[Tuple['Money', int]]:
        """
        Break the amount into bills and coins, largest first

        Used for handing out change. Returns (denomination, count) pairs for
        every denomination with a non-zero count.
        """
        if self.is_negative():
            raise InvalidAmount(str(self), "cannot split a negative amount")

        remaining = self.minor_units
        result: List[Tuple[Money, int]] = []
        for denomination in DENOMINATIONS_MINOR:
            count, remaining = divmod(remaining, denomination)
            if count:
                result.append((Money(denomination, self.currency), count))
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (no floats)"""
        return {
            "amount": str(self.to_major_units()),
            "minor_units": self.minor_units,
            "currency": self.currency
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Money':
        """Inverse of to_dict; minor units win when both are present"""
        currency = data.get("currency", DEFAULT_CURRENCY)
        if "minor_units" in data:
            return cls(int(data["minor_units"]), currency)
        return cls.parse(str(data["amount"]), currency)

    def _check_currency(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise CurrencyMismatch(self.currency, other.currency)

    def __str__(self) -> str:
        return str(self.to_major_units())

    def __repr__(self) -> str:
        return f"Money('{self.to_major_units()}', '{self.currency}')"


def _decimal_to_minor(value: Decimal) -> int:
    """Round a Decimal of major units to minor units, half away from zero"""
    try:
        if not value.is_finite():
            raise InvalidAmount(value, "amount must be finite")
        with localcontext() as ctx:
            ctx.prec = 60
            scaled = value.scaleb(SCALE)
            return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))
    except InvalidOperation as e:
        raise InvalidAmount(value, str(e)) from e
