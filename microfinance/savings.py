"""
Savings Account Module

Savings accounts as seen by the loan engine: opened here for completeness,
then read and credited during interest distribution.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .audit import AuditTrail, AuditEventType
from .currency import Currency, Money
from .storage import StorageInterface, StorageRecord


class SavingsAccountStatus(Enum):
    ACTIVE = "active"
    DORMANT = "dormant"
    CLOSED = "closed"


@dataclass
class SavingsAccount(StorageRecord):
    """A client's savings account"""
    account_number: str
    client_id: str
    balance: Money
    status: SavingsAccountStatus = SavingsAccountStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == SavingsAccountStatus.ACTIVE

    @property
    def opened_at(self) -> datetime:
        return self.created_at

    @property
    def currency(self) -> Currency:
        return self.balance.currency

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['balance'] = str(self.balance.amount)
        result['currency'] = self.balance.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SavingsAccount':
        data = cls.parse_timestamps(data)
        currency = Currency.from_code(data.pop('currency'))
        data['balance'] = Money(Decimal(data['balance']), currency)
        data['status'] = SavingsAccountStatus(data['status'])
        return cls(**data)


class SavingsManager:
    """Opens and looks up savings accounts"""

    TABLE = "savings_accounts"

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail

    def open_account(
        self,
        client_id: str,
        currency: Currency = Currency.USD,
        opening_balance: Decimal = Decimal('0'),
        status: SavingsAccountStatus = SavingsAccountStatus.ACTIVE
    ) -> SavingsAccount:
        """
        Open a savings account for a client

        Args:
            client_id: Account holder
            currency: Account currency
            opening_balance: Initial balance
            status: Initial status

        Returns:
            Created SavingsAccount
        """
        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            number = self.storage.next_sequence("savings_account_number")
            account = SavingsAccount(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=f"SAV{number:06d}",
                client_id=client_id,
                balance=Money(opening_balance, currency),
                status=status
            )
            self.storage.save(self.TABLE, account.id, account.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.SAVINGS_ACCOUNT_OPENED,
                entity_type="savings_account",
                entity_id=account.id,
                metadata={
                    "client_id": client_id,
                    "account_number": account.account_number,
                    "opening_balance": account.balance.to_string()
                }
            )
        return account

    def get_account(self, account_id: str) -> Optional[SavingsAccount]:
        data = self.storage.load(self.TABLE, account_id)
        return SavingsAccount.from_dict(data) if data else None

    def get_client_accounts(self, client_id: str) -> List[SavingsAccount]:
        return [
            SavingsAccount.from_dict(data)
            for data in self.storage.find(self.TABLE, {"client_id": client_id})
        ]
