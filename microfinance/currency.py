"""
Money Module

Currency codes, the immutable Money value and Decimal helpers used by the
loan engine. Monetary values are Decimal end to end; float input is converted
through its string form so 0.1 stays 0.1.
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from typing import Any, Union
from enum import Enum

# High precision for intermediate results such as (1 + r) ** n
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')

# One leading symbol is tolerated on string input
CURRENCY_SYMBOLS = ("L$", "$", "€", "£", "₦")


class Currency(Enum):
    """Supported currencies with minor-unit precision"""
    USD = ("USD", 2)  # US Dollar
    LRD = ("LRD", 2)  # Liberian Dollar

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        try:
            return cls[code.upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency: {code}")


def round_money(value: Decimal, places: int = 2) -> Decimal:
    """
    Round to currency minor units using half-up semantics.

    quantize needs a digit of precision for every integer digit plus the
    requested places, so the context is widened for very large values.

    Raises:
        ValueError: If the value is not finite
    """
    if not value.is_finite():
        raise ValueError(f"Cannot round non-finite amount {value!r}")
    context = Context(prec=max(getcontext().prec, value.adjusted() + places + 2))
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP, context=context)


def to_decimal(value: Any) -> Decimal:
    """
    Convert user or storage input to Decimal.

    Accepts Decimal, int, float and numeric strings. A string may carry
    surrounding whitespace, one leading currency symbol and thousands
    separators; anything else Decimal() rejects is an error, so "12abc"
    does not parse as 12.

    Raises:
        ValueError: If the value is missing, not numeric or not finite
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        clean_value = value.strip()
        for symbol in CURRENCY_SYMBOLS:
            if clean_value.startswith(symbol):
                clean_value = clean_value[len(symbol):].lstrip()
                break
        clean_value = clean_value.replace(',', '')
        try:
            result = Decimal(clean_value)
        except InvalidOperation:
            raise ValueError(f"Cannot convert {value!r} to Decimal")
    else:
        raise ValueError(f"Cannot convert {type(value).__name__} to Decimal")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))
        object.__setattr__(
            self, 'amount', round_money(self.amount, self.currency.precision)
        )

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(ZERO, currency)

    def _check_currency(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Currency mismatch: {self.currency.code} and {other.currency.code}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Union[Decimal, int]) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency)

    def __truediv__(self, divisor: Union[Decimal, int]) -> 'Money':
        return Money(self.amount / to_decimal(divisor), self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == ZERO

    def is_positive(self) -> bool:
        return self.amount > ZERO

    def to_string(self) -> str:
        """Format for display, e.g. 'USD 1,250.00'"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
