"""
Transaction Records Module

Ledger rows produced by the repayment processor: the loan payment itself and
the interest credits fanned out to savings accounts. Rows are written once
and never mutated.
"""

from datetime import date, datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .currency import Currency, Money
from .storage import StorageRecord


class TransactionType(Enum):
    """Types of monetary movements recorded by the loan engine"""
    LOAN_PAYMENT = "loan_payment"
    PERSONAL_INTEREST_PAYMENT = "personal_interest_payment"  # Interest credited to the payer's savings
    GENERAL_INTEREST = "general_interest"                    # Share of interest for every saver
    INTEREST = "interest"                                    # Interest retained by the institution


class TransactionStatus(Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class Transaction(StorageRecord):
    """One monetary movement"""
    transaction_number: str
    transaction_type: TransactionType
    amount: Money
    description: str
    transaction_date: date
    client_id: Optional[str] = None
    loan_id: Optional[str] = None
    savings_account_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Transaction amount must be positive")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['amount'] = str(self.amount.amount)
        result['currency'] = self.amount.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        data = cls.parse_timestamps(data)
        currency = Currency.from_code(data.pop('currency'))
        data['amount'] = Money(Decimal(data['amount']), currency)
        data['transaction_type'] = TransactionType(data['transaction_type'])
        data['status'] = TransactionStatus(data['status'])
        data['transaction_date'] = date.fromisoformat(data['transaction_date'])
        return cls(**data)
