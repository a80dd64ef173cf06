"""
Loan Data Access Module

The data-access contract consumed by origination and repayment: loans,
installment rows, transactions, savings accounts and clients, all kept in
one StorageInterface so a single atomic() unit spans every write.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import uuid

from .currency import Money
from .errors import ConcurrentModification, LoanNotFound
from .loans import Loan, LoanRepayment
from .savings import SavingsAccount, SavingsAccountStatus, SavingsManager
from .schedule import ScheduleEntry
from .storage import StorageInterface
from .transactions import Transaction, TransactionType


class LoanRepository:
    """Record-store backed implementation of the loan engine's data access"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

        self.loans_table = "loans"
        self.repayments_table = "loan_repayments"
        self.transactions_table = "transactions"
        self.savings_table = SavingsManager.TABLE
        self.clients_table = "clients"

    def next_number(self, prefix: str, sequence_name: str, width: int) -> str:
        """Next human-readable number from a storage sequence, e.g. LN000001"""
        return f"{prefix}{self.storage.next_sequence(sequence_name):0{width}d}"

    # Loans

    def find_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return Loan.from_dict(data) if data else None

    def find_client_loans(self, client_id: str) -> List[Loan]:
        return [
            Loan.from_dict(data)
            for data in self.storage.find(self.loans_table, {"client_id": client_id})
        ]

    def find_loans(
        self,
        status: Optional[str] = None,
        loan_type: Optional[str] = None,
        client_id: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Loan]:
        """Loans matching every given filter, newest first; search matches part of the loan number"""
        filters = {}
        if status is not None:
            filters["status"] = status
        if loan_type is not None:
            filters["loan_type"] = loan_type
        if client_id is not None:
            filters["client_id"] = client_id

        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]
        if search:
            needle = search.strip().upper()
            loans = [loan for loan in loans if needle in loan.loan_number.upper()]
        return sorted(loans, key=lambda loan: (loan.created_at, loan.loan_number), reverse=True)

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def update_loan(self, loan: Loan, expected_version: int) -> Loan:
        """
        Write a loan back if nobody else changed it since it was read

        Raises:
            LoanNotFound: If the loan row no longer exists
            ConcurrentModification: If the stored version differs from
                expected_version
        """
        with self.storage.atomic():
            stored = self.storage.load(self.loans_table, loan.id)
            if not stored:
                raise LoanNotFound(f"Loan {loan.id} not found", loan_id=loan.id)
            if stored.get('version', 1) != expected_version:
                raise ConcurrentModification(
                    f"Loan {loan.loan_number} was modified concurrently",
                    loan_id=loan.id, expected_version=expected_version,
                    stored_version=stored.get('version')
                )
            loan.version = expected_version + 1
            loan.updated_at = datetime.now(timezone.utc)
            self.save_loan(loan)
        return loan

    # Installments

    def create_loan_repayments(self, loan: Loan, entries: Iterable[ScheduleEntry]) -> List[LoanRepayment]:
        """One pending installment row per schedule entry"""
        now = datetime.now(timezone.utc)
        repayments = []
        for entry in entries:
            repayment = LoanRepayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                repayment_number=f"{loan.loan_number}-{entry.installment_number:03d}",
                installment_number=entry.installment_number,
                due_date=entry.due_date,
                amount=entry.total_payment,
                principal_amount=entry.principal_amount,
                interest_amount=entry.interest_amount
            )
            self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())
            repayments.append(repayment)
        return repayments

    def find_loan_repayments(self, loan_id: str) -> List[LoanRepayment]:
        repayments = [
            LoanRepayment.from_dict(data)
            for data in self.storage.find(self.repayments_table, {"loan_id": loan_id})
        ]
        return sorted(repayments, key=lambda r: r.installment_number)

    def find_earliest_pending_installment(self, loan_id: str) -> Optional[LoanRepayment]:
        """Earliest pending or partial installment by (due_date, installment_number)"""
        open_installments = [r for r in self.find_loan_repayments(loan_id) if r.is_open]
        if not open_installments:
            return None
        return min(open_installments, key=lambda r: (r.due_date, r.installment_number))

    def find_loan_repayment(self, repayment_id: str) -> Optional[LoanRepayment]:
        data = self.storage.load(self.repayments_table, repayment_id)
        return LoanRepayment.from_dict(data) if data else None

    def delete_loan_repayments(self, loan_id: str) -> int:
        """Remove every installment row of a loan; returns how many were deleted"""
        deleted = 0
        for data in self.storage.find(self.repayments_table, {"loan_id": loan_id}):
            if self.storage.delete(self.repayments_table, data["id"]):
                deleted += 1
        return deleted

    def update_loan_repayment(self, repayment: LoanRepayment) -> None:
        repayment.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())

    # Transactions

    def create_transaction(
        self,
        transaction_type: TransactionType,
        amount: Money,
        description: str,
        transaction_date: date,
        client_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        savings_account_id: Optional[str] = None
    ) -> Transaction:
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_number=self.next_number("TXN", "transaction_number", 8),
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            transaction_date=transaction_date,
            client_id=client_id,
            loan_id=loan_id,
            savings_account_id=savings_account_id
        )
        self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())
        return transaction

    def find_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.transactions_table, transaction_id)
        return Transaction.from_dict(data) if data else None

    def find_transactions(self, **filters: Any) -> List[Transaction]:
        """Transactions matching every filter, e.g. loan_id=..., transaction_type="loan_payment" """
        filters = {
            key: value.value if isinstance(value, TransactionType) else value
            for key, value in filters.items()
        }
        return [
            Transaction.from_dict(data)
            for data in self.storage.find(self.transactions_table, filters)
        ]

    # Savings accounts

    def find_active_savings_accounts(self, client_id: Optional[str] = None) -> List[SavingsAccount]:
        """Active savings accounts, oldest first; all clients when client_id is None"""
        filters = {"status": SavingsAccountStatus.ACTIVE.value}
        if client_id is not None:
            filters["client_id"] = client_id
        accounts = [
            SavingsAccount.from_dict(data)
            for data in self.storage.find(self.savings_table, filters)
        ]
        return sorted(accounts, key=lambda a: (a.opened_at, a.account_number))

    def find_savings_account(self, account_id: str) -> Optional[SavingsAccount]:
        data = self.storage.load(self.savings_table, account_id)
        return SavingsAccount.from_dict(data) if data else None

    def update_savings_account_balance(self, account_id: str, new_balance: Money) -> SavingsAccount:
        account = self.find_savings_account(account_id)
        if not account:
            raise ValueError(f"Savings account {account_id} not found")
        account.balance = new_balance
        account.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.savings_table, account.id, account.to_dict())
        return account

    # Clients

    def find_client(self, client_id: str) -> Optional[Dict[str, Any]]:
        return self.storage.load(self.clients_table, client_id)

    def save_client(
        self,
        client_id: str,
        first_name: str,
        last_name: str,
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        client = {
            "id": client_id,
            "first_name": first_name,
            "last_name": last_name,
            "user_id": user_id
        }
        self.storage.save(self.clients_table, client_id, client)
        return client
