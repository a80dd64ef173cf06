"""
Amortization Math Module

Pure functions behind every repayment schedule: periods per year, number of
installments, periodic rate, the equated installment (EMI) and due-date
arithmetic. No storage, no side effects.
"""

from decimal import Decimal, ROUND_CEILING
from datetime import date, timedelta
from enum import Enum
from typing import Any, Optional, Union
import calendar

from .currency import round_money, to_decimal, ZERO
from .errors import InvalidLoanParameters
from .logging_config import get_logger


logger = get_logger("amortization")

# Periodic rates at or below this are treated as interest free
ZERO_RATE_THRESHOLD = Decimal('0.00000001')

# Loan parameters at or above this magnitude are rejected
MAX_PARAMETER = Decimal('1e15')


class PaymentFrequency(Enum):
    """Installment frequency options"""
    DAILY = "daily"            # 365 payments per year
    WEEKLY = "weekly"          # 52 payments per year
    BIWEEKLY = "biweekly"      # 26 payments per year
    MONTHLY = "monthly"        # 12 payments per year
    QUARTERLY = "quarterly"    # 4 payments per year
    YEARLY = "yearly"          # 1 payment per year
    LUMP_SUM = "lump_sum"      # Amortized as yearly, due by the end of the term

    @classmethod
    def parse(cls, value: Union['PaymentFrequency', str, None]) -> 'PaymentFrequency':
        """Resolve a frequency name; missing or unknown names mean monthly"""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.MONTHLY
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning(f"Unknown payment frequency {value!r}, using monthly")
            return cls.MONTHLY


PERIODS_PER_YEAR = {
    PaymentFrequency.DAILY: 365,
    PaymentFrequency.WEEKLY: 52,
    PaymentFrequency.BIWEEKLY: 26,
    PaymentFrequency.MONTHLY: 12,
    PaymentFrequency.QUARTERLY: 4,
    PaymentFrequency.YEARLY: 1,
    PaymentFrequency.LUMP_SUM: 1,
}


def periods_per_year(frequency: Union[PaymentFrequency, str, None]) -> int:
    """Number of installments per year for a frequency (unknown: 12)"""
    return PERIODS_PER_YEAR[PaymentFrequency.parse(frequency)]


def parse_amount(value: Any, field_name: str) -> Decimal:
    """Parse a numeric loan parameter, raising InvalidLoanParameters on bad input"""
    try:
        result = to_decimal(value)
    except ValueError:
        raise InvalidLoanParameters(f"{field_name} must be a number", **{field_name: value})
    if abs(result) >= MAX_PARAMETER:
        raise InvalidLoanParameters(f"{field_name} is too large", **{field_name: value})
    return result


def parse_term(term_months: Any) -> int:
    """Parse a term in whole months; must be positive"""
    term = parse_amount(term_months, "term_months")
    if term != term.to_integral_value():
        raise InvalidLoanParameters("term_months must be a whole number", term_months=term_months)
    if term <= ZERO:
        raise InvalidLoanParameters("Term must be greater than zero", term_months=term_months)
    return int(term)


def total_installments(term_months: Any, frequency: Union[PaymentFrequency, str, None]) -> int:
    """
    Number of installments needed to cover a term.

    ceil(term_months / (12 / periods_per_year)), computed exactly as
    term_months * periods_per_year / 12 so weekly terms do not pick up an
    extra installment from binary rounding.

    Raises:
        InvalidLoanParameters: If term_months is not a positive whole number
    """
    term = parse_term(term_months)
    exact = Decimal(term * periods_per_year(frequency)) / Decimal(12)
    return max(1, int(exact.to_integral_value(rounding=ROUND_CEILING)))


def periodic_rate(annual_percent_rate: Any, frequency: Union[PaymentFrequency, str, None]) -> Decimal:
    """Convert an annual percentage rate (12 = 12%) into a per-installment rate"""
    rate = parse_amount(annual_percent_rate, "interest_rate")
    if rate < ZERO:
        raise InvalidLoanParameters("Interest rate cannot be negative", interest_rate=annual_percent_rate)
    return rate / Decimal(100) / Decimal(periods_per_year(frequency))


def emi(principal: Decimal, rate: Decimal, installments: int) -> Decimal:
    """
    Equated installment amount, rounded to cents half-up.

    Formula: P * r * (1 + r)^n / ((1 + r)^n - 1); a near-zero periodic rate
    falls back to straight division.

    Args:
        principal: Amount being amortized
        rate: Periodic (not annual) rate as a fraction
        installments: Number of installments (n)
    """
    if installments < 1:
        raise InvalidLoanParameters("At least one installment is required", installments=installments)
    if rate <= ZERO_RATE_THRESHOLD:
        return round_money(principal / Decimal(installments))

    factor = (Decimal(1) + rate) ** installments
    return round_money(principal * rate * factor / (factor - Decimal(1)))


def validate_principal(principal: Any) -> Decimal:
    """Parse a principal and require it to be positive"""
    amount = parse_amount(principal, "principal")
    if amount <= ZERO:
        raise InvalidLoanParameters("Principal must be greater than zero", principal=principal)
    return amount


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of the target month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date(start_date: date, installment_number: int,
             frequency: Union[PaymentFrequency, str, None],
             term_months: Optional[int] = None) -> date:
    """
    Due date of an installment, counted from the start (disbursement) date.

    Each date is derived from the start date rather than the previous due
    date, so a 31st start keeps returning to month ends after a short month.

    A lump-sum loan is amortized yearly but never falls due after its term:
    given term_months, its installments are due every 12 months capped at
    start + term_months, so a 6-month lump sum is due after 6 months.
    """
    frequency = PaymentFrequency.parse(frequency)
    if frequency == PaymentFrequency.DAILY:
        return start_date + timedelta(days=installment_number)
    elif frequency == PaymentFrequency.WEEKLY:
        return start_date + timedelta(days=7 * installment_number)
    elif frequency == PaymentFrequency.BIWEEKLY:
        return start_date + timedelta(days=14 * installment_number)
    elif frequency == PaymentFrequency.MONTHLY:
        return add_months(start_date, installment_number)
    elif frequency == PaymentFrequency.QUARTERLY:
        return add_months(start_date, 3 * installment_number)
    elif frequency == PaymentFrequency.LUMP_SUM and term_months is not None:
        return add_months(start_date, min(12 * installment_number, term_months))
    else:
        return add_months(start_date, 12 * installment_number)
