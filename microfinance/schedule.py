"""
Repayment Schedule Module

Generates amortization tables for declining-balance (EMI) and flat-rate
loans. Every currency figure is rounded to cents as it is produced; the final
installment absorbs the rounding residue so the schedule pays off exactly.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import json

from .amortization import (
    PaymentFrequency, due_date, emi, parse_term, periodic_rate, total_installments,
    validate_principal, parse_amount
)
from .currency import round_money, to_decimal, ZERO
from .logging_config import get_logger


logger = get_logger("schedule")


class InterestMethod(Enum):
    """How interest is charged over the life of a loan"""
    DECLINING_BALANCE = "declining_balance"  # Interest on the remaining principal
    FLAT = "flat"                            # Interest on the original principal

    @classmethod
    def parse(cls, value: Union['InterestMethod', str, None]) -> 'InterestMethod':
        """Resolve a method name; missing or unknown names mean declining balance"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.DECLINING_BALANCE


class InstallmentStatus(Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    OVERDUE = "overdue"


@dataclass
class ScheduleEntry:
    """One scheduled installment"""
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_payment: Decimal
    outstanding_balance: Decimal          # Balance remaining after this installment
    status: InstallmentStatus = InstallmentStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            'installment_number': self.installment_number,
            'due_date': self.due_date.isoformat(),
            'principal_amount': str(round_money(self.principal_amount)),
            'interest_amount': str(round_money(self.interest_amount)),
            'total_payment': str(round_money(self.total_payment)),
            'outstanding_balance': str(round_money(self.outstanding_balance)),
            'status': self.status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleEntry':
        return cls(
            installment_number=int(data['installment_number']),
            due_date=date.fromisoformat(str(data['due_date'])[:10]),
            principal_amount=round_money(to_decimal(data['principal_amount'])),
            interest_amount=round_money(to_decimal(data['interest_amount'])),
            total_payment=round_money(to_decimal(data['total_payment'])),
            outstanding_balance=round_money(to_decimal(data['outstanding_balance'])),
            status=InstallmentStatus(data.get('status', 'pending'))
        )


@dataclass
class Schedule:
    """Ordered installments plus summary totals"""
    entries: List[ScheduleEntry]
    total_interest: Decimal
    total_amount: Decimal
    monthly_payment: Decimal              # Periodic installment amount
    interest_method: InterestMethod = InterestMethod.DECLINING_BALANCE
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY

    @property
    def installments(self) -> int:
        return len(self.entries)

    @property
    def total_principal(self) -> Decimal:
        return sum((entry.principal_amount for entry in self.entries), ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schedule': [entry.to_dict() for entry in self.entries],
            'total_interest': str(round_money(self.total_interest)),
            'total_amount': str(round_money(self.total_amount)),
            'monthly_payment': str(round_money(self.monthly_payment)),
            'interest_method': self.interest_method.value,
            'payment_frequency': self.payment_frequency.value
        }

    def entries_json(self) -> str:
        """Serialized installment list, as stored on the loan row"""
        return json.dumps([entry.to_dict() for entry in self.entries])

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Schedule':
        return cls(
            entries=[ScheduleEntry.from_dict(item) for item in data['schedule']],
            total_interest=round_money(to_decimal(data['total_interest'])),
            total_amount=round_money(to_decimal(data['total_amount'])),
            monthly_payment=round_money(to_decimal(data['monthly_payment'])),
            interest_method=InterestMethod.parse(data.get('interest_method')),
            payment_frequency=PaymentFrequency.parse(data.get('payment_frequency'))
        )

    @classmethod
    def from_json(cls, text: str) -> 'Schedule':
        return cls.from_dict(json.loads(text))


def entries_from_json(text: Optional[str]) -> List[ScheduleEntry]:
    """Parse a stored installment list; empty or missing text gives []"""
    if not text:
        return []
    return [ScheduleEntry.from_dict(item) for item in json.loads(text)]


def _prepare(principal: Any, rate: Any, term_months: Any, start_date: Optional[date],
             frequency: Union[PaymentFrequency, str, None]):
    amount = round_money(validate_principal(principal))
    frequency = PaymentFrequency.parse(frequency)
    term = parse_term(term_months)
    installments = total_installments(term, frequency)
    r = periodic_rate(rate, frequency)
    if isinstance(start_date, str):
        start_date = date.fromisoformat(start_date[:10])
    return amount, frequency, term, installments, r, start_date or date.today()


def generate_declining_balance_schedule(
    principal: Any,
    rate: Any,
    term_months: Any,
    start_date: Optional[date] = None,
    frequency: Union[PaymentFrequency, str, None] = PaymentFrequency.MONTHLY
) -> Schedule:
    """
    Equal-installment schedule with interest on the declining balance.

    Args:
        principal: Amount to amortize
        rate: Annual interest rate as a percentage (12 = 12%)
        term_months: Loan term in months
        start_date: Disbursement date; installment i falls i periods later
        frequency: Installment frequency

    Returns:
        Schedule whose last entry leaves a zero balance

    Raises:
        InvalidLoanParameters: For non-positive principal or term
    """
    amount, frequency, term, installments, r, start = _prepare(
        principal, rate, term_months, start_date, frequency
    )
    payment = emi(amount, r, installments)

    entries = []
    balance = amount
    total_interest = ZERO

    for number in range(1, installments + 1):
        interest = round_money(balance * r)
        principal_part = payment - interest

        # Final installment pays off exactly what is left
        if number == installments:
            principal_part = balance
        principal_part = min(principal_part, balance)

        balance = max(ZERO, balance - principal_part)
        total_interest += interest

        entries.append(ScheduleEntry(
            installment_number=number,
            due_date=due_date(start, number, frequency, term),
            principal_amount=principal_part,
            interest_amount=interest,
            total_payment=principal_part + interest,
            outstanding_balance=balance
        ))

    total_interest = round_money(total_interest)
    return Schedule(
        entries=entries,
        total_interest=total_interest,
        total_amount=round_money(amount + total_interest),
        monthly_payment=payment,
        interest_method=InterestMethod.DECLINING_BALANCE,
        payment_frequency=frequency
    )


def generate_flat_rate_schedule(
    principal: Any,
    rate: Any,
    term_months: Any,
    start_date: Optional[date] = None,
    frequency: Union[PaymentFrequency, str, None] = PaymentFrequency.MONTHLY
) -> Schedule:
    """
    Flat-rate schedule: interest is principal * rate / 100, computed once and
    spread evenly. Entry balances track the total amount still owed
    (principal plus interest).
    """
    amount, frequency, term, installments, _, start = _prepare(
        principal, rate, term_months, start_date, frequency
    )
    annual_rate = parse_amount(rate, "interest_rate")

    total_interest = round_money(amount * annual_rate / Decimal(100))
    total_amount = amount + total_interest
    principal_each = round_money(amount / Decimal(installments))
    interest_each = round_money(total_interest / Decimal(installments))

    entries = []
    principal_left = amount
    interest_left = total_interest

    for number in range(1, installments + 1):
        if number == installments:
            principal_part, interest_part = principal_left, interest_left
        else:
            principal_part = min(principal_each, principal_left)
            interest_part = min(interest_each, interest_left)

        principal_left -= principal_part
        interest_left -= interest_part

        entries.append(ScheduleEntry(
            installment_number=number,
            due_date=due_date(start, number, frequency, term),
            principal_amount=principal_part,
            interest_amount=interest_part,
            total_payment=principal_part + interest_part,
            outstanding_balance=principal_left + interest_left
        ))

    return Schedule(
        entries=entries,
        total_interest=total_interest,
        total_amount=total_amount,
        monthly_payment=round_money(total_amount / Decimal(installments)),
        interest_method=InterestMethod.FLAT,
        payment_frequency=frequency
    )


_GENERATORS = {
    InterestMethod.DECLINING_BALANCE: generate_declining_balance_schedule,
    InterestMethod.FLAT: generate_flat_rate_schedule,
}


def generate_repayment_schedule(
    principal: Any,
    rate: Any,
    term_months: Any,
    method: Union[InterestMethod, str, None] = InterestMethod.DECLINING_BALANCE,
    frequency: Union[PaymentFrequency, str, None] = PaymentFrequency.MONTHLY,
    start_date: Optional[date] = None
) -> Schedule:
    """Generate a schedule with the generator for the given interest method"""
    interest_method = InterestMethod.parse(method)
    generator = _GENERATORS[interest_method]
    schedule = generator(principal, rate, term_months, start_date, frequency)

    logger.debug(
        f"Generated {interest_method.value} schedule: {schedule.installments} installments, "
        f"interest {schedule.total_interest}"
    )
    return schedule
