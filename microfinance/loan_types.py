"""
Loan Type Policy Module

Static per-type configuration: interest rate, upfront percentage, interest
method, default-charge eligibility and, for personal and excess loans, the
admin/client/general interest distribution split.
"""

from decimal import Decimal
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .amortization import parse_amount
from .currency import round_money, ZERO
from .schedule import InterestMethod


DEFAULT_LOAN_TYPE = "personal"


@dataclass(frozen=True)
class InterestDistribution:
    """Fractions of collected interest for the institution, payer and pool"""
    admin: Decimal
    client: Decimal
    general: Decimal

    def __post_init__(self):
        if self.admin + self.client + self.general != Decimal('1'):
            raise ValueError("Interest distribution fractions must sum to 1")
        if min(self.admin, self.client, self.general) < ZERO:
            raise ValueError("Interest distribution fractions cannot be negative")


@dataclass(frozen=True)
class LoanTypeConfig:
    """Policy for one loan type"""
    name: str
    display_name: str
    interest_rate: Decimal               # Annual percentage, 10 = 10%
    upfront_percentage: Decimal          # Percent of the requested amount
    interest_method: InterestMethod
    has_default_charges: bool
    interest_distribution: Optional[InterestDistribution] = None

    def to_dict(self) -> dict:
        result = {
            'name': self.name,
            'display_name': self.display_name,
            'interest_rate': str(self.interest_rate),
            'upfront_percentage': str(self.upfront_percentage),
            'interest_method': self.interest_method.value,
            'has_default_charges': self.has_default_charges,
            'interest_distribution': None
        }
        if self.interest_distribution:
            result['interest_distribution'] = {
                'admin': str(self.interest_distribution.admin),
                'client': str(self.interest_distribution.client),
                'general': str(self.interest_distribution.general)
            }
        return result


_SAVINGS_SHARE = InterestDistribution(
    admin=Decimal('0.5'), client=Decimal('0.3'), general=Decimal('0.2')
)

LOAN_TYPES: Mapping[str, LoanTypeConfig] = MappingProxyType({
    # Personal loans carry no running interest: the upfront deduction is the charge
    "personal": LoanTypeConfig(
        name="personal",
        display_name="Personal Loan",
        interest_rate=Decimal('0'),
        upfront_percentage=Decimal('10'),
        interest_method=InterestMethod.DECLINING_BALANCE,
        has_default_charges=False,
        interest_distribution=_SAVINGS_SHARE
    ),
    "excess": LoanTypeConfig(
        name="excess",
        display_name="Excess Loan",
        interest_rate=Decimal('5'),
        upfront_percentage=Decimal('5'),
        interest_method=InterestMethod.FLAT,
        has_default_charges=False,
        interest_distribution=_SAVINGS_SHARE
    ),
    "business": LoanTypeConfig(
        name="business",
        display_name="Business Loan",
        interest_rate=Decimal('5'),
        upfront_percentage=Decimal('10'),
        interest_method=InterestMethod.DECLINING_BALANCE,
        has_default_charges=False
    ),
    "emergency": LoanTypeConfig(
        name="emergency",
        display_name="Emergency Loan",
        interest_rate=Decimal('16'),
        upfront_percentage=Decimal('2'),
        interest_method=InterestMethod.DECLINING_BALANCE,
        has_default_charges=True
    ),
    "micro": LoanTypeConfig(
        name="micro",
        display_name="Micro Loan",
        interest_rate=Decimal('12'),
        upfront_percentage=Decimal('5'),
        interest_method=InterestMethod.DECLINING_BALANCE,
        has_default_charges=True
    ),
})


def get_loan_type_config(loan_type: Optional[str]) -> LoanTypeConfig:
    """
    Resolve the policy for a loan type name.

    Unrecognized or missing names resolve to the personal loan policy; this
    is the documented default, not an error.
    """
    key = (loan_type or "").strip().lower()
    if key not in LOAN_TYPES:
        return LOAN_TYPES[DEFAULT_LOAN_TYPE]
    return LOAN_TYPES[key]


def calculate_upfront_amount(loan_amount: Any, upfront_percentage: Any) -> Decimal:
    """Upfront deduction: loan_amount * upfront_percentage / 100, in cents"""
    amount = parse_amount(loan_amount, "loan_amount")
    percentage = parse_amount(upfront_percentage, "upfront_percentage")
    return round_money(amount * percentage / Decimal(100))


def calculate_principal_amount(loan_amount: Any, upfront_amount: Any) -> Decimal:
    """Principal actually amortized: the requested amount minus the upfront deduction"""
    return round_money(
        parse_amount(loan_amount, "loan_amount") - parse_amount(upfront_amount, "upfront_amount")
    )


def is_prepaid_interest(loan_type: Optional[str], interest_rate: Decimal) -> bool:
    """
    True when the upfront amount is the loan's entire interest charge.

    Only a loan explicitly typed "personal" with a resolved 0% rate
    qualifies; an unknown type that falls back to the personal policy does
    not.
    """
    return loan_type == "personal" and interest_rate == ZERO
