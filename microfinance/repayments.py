"""
Repayment Processing Module

Applies a payment to a loan's earliest open installment: splits it into
interest and principal, records the loan_payment transaction, fans the
interest out to savings accounts and reduces the loan balance. Everything
that moves money runs in one atomic unit under a per-loan lock; the client
notification is sent best-effort after the unit commits.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
import threading

from .audit import AuditTrail, AuditEventType
from .currency import Money, round_money, to_decimal, ZERO
from .distribution import (
    CreditKind, DistributionStrategy, DuplicateCreditDistribution, InterestCredit
)
from .errors import (
    InvalidPaymentAmount, LoanNotFound, LoanNotPayable, NoPendingInstallment,
    PaymentExceedsBalance, RepaymentNotFound, best_effort
)
from .loan_types import get_loan_type_config
from .loans import Loan, LoanRepayment, LoanStatus
from .logging_config import get_logger, log_action
from .notifications import NotificationService, NotificationType
from .repository import LoanRepository
from .schedule import InstallmentStatus
from .storage import StorageInterface
from .transactions import Transaction, TransactionType


logger = get_logger("repayments")

DEFAULT_COMPLETION_EPSILON = Decimal('0.01')


class LoanLocks:
    """
    One re-entrant lock per loan id; different loans never contend.

    A lock lives only while some thread holds or waits for it. Each entry
    counts its holders and waiters, and the last one out removes it, so the
    table stays bounded by the number of loans being paid right now.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._users: Dict[str, int] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def __contains__(self, loan_id: str) -> bool:
        with self._guard:
            return loan_id in self._locks

    def _acquire_entry(self, loan_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = self._locks[loan_id] = threading.RLock()
            self._users[loan_id] = self._users.get(loan_id, 0) + 1
            return lock

    def _release_entry(self, loan_id: str) -> None:
        with self._guard:
            self._users[loan_id] -= 1
            if not self._users[loan_id]:
                del self._users[loan_id]
                del self._locks[loan_id]

    @contextmanager
    def hold(self, loan_id: str):
        lock = self._acquire_entry(loan_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(loan_id)


@dataclass(frozen=True)
class PaymentSplit:
    """How one payment divides between interest, principal and penalty"""
    amount: Decimal
    interest: Decimal
    principal: Decimal
    penalty: Decimal = ZERO


class PartialPaymentStrategy(ABC):
    """Splits a payment against an installment and updates the installment"""

    name = ""

    @abstractmethod
    def split(self, installment: LoanRepayment, amount: Decimal) -> PaymentSplit:
        pass

    @abstractmethod
    def apply(self, installment: LoanRepayment, split: PaymentSplit,
              payment_date: date, payment_method: str, epsilon: Decimal) -> None:
        pass


class OverwritePartialPayment(PartialPaymentStrategy):
    """
    Legacy behaviour: each payment replaces the installment's recorded
    amount, principal and interest. The installment completes when its
    recorded amount minus this payment is within epsilon; otherwise it is
    partial and the next payment is compared against this payment's amount.
    """

    name = "overwrite"

    def split(self, installment, amount):
        interest = min(amount, installment.interest_amount)
        return PaymentSplit(amount=amount, interest=interest, principal=amount - interest)

    def apply(self, installment, split, payment_date, payment_method, epsilon):
        remaining = installment.amount - split.amount
        installment.status = (
            InstallmentStatus.COMPLETED if remaining <= epsilon else InstallmentStatus.PARTIAL
        )
        installment.amount = split.amount
        installment.principal_amount = split.principal
        installment.interest_amount = split.interest
        installment.penalty_amount = split.penalty
        installment.paid_amount = split.amount
        installment.paid_principal = split.principal
        installment.paid_interest = split.interest
        installment.payment_date = payment_date
        installment.payment_method = payment_method


class AccumulatePartialPayment(PartialPaymentStrategy):
    """
    Keeps the scheduled figures and adds each payment to the paid totals.
    Interest is taken first, limited to the interest still unpaid on the
    installment.
    """

    name = "accumulate"

    def split(self, installment, amount):
        unpaid_interest = max(ZERO, installment.interest_amount - installment.paid_interest)
        interest = min(amount, unpaid_interest)
        return PaymentSplit(amount=amount, interest=interest, principal=amount - interest)

    def apply(self, installment, split, payment_date, payment_method, epsilon):
        installment.paid_amount += split.amount
        installment.paid_principal += split.principal
        installment.paid_interest += split.interest
        installment.penalty_amount += split.penalty
        installment.status = (
            InstallmentStatus.COMPLETED
            if installment.amount - installment.paid_amount <= epsilon
            else InstallmentStatus.PARTIAL
        )
        installment.payment_date = payment_date
        installment.payment_method = payment_method


PARTIAL_PAYMENT_STRATEGIES = {
    OverwritePartialPayment.name: OverwritePartialPayment,
    AccumulatePartialPayment.name: AccumulatePartialPayment,
}


def get_partial_payment_strategy(name: str) -> PartialPaymentStrategy:
    try:
        return PARTIAL_PAYMENT_STRATEGIES[name.strip().lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown partial payment strategy {name!r}; "
            f"expected one of {sorted(PARTIAL_PAYMENT_STRATEGIES)}"
        )


@dataclass
class Receipt:
    """Printable summary of a repayment"""
    transaction_number: str
    loan_number: str
    client_name: Optional[str]
    amount: Decimal
    principal: Decimal
    interest: Decimal
    penalty: Decimal
    date: date
    outstanding_balance: Decimal
    payment_method: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'transaction_number': self.transaction_number,
            'loan_number': self.loan_number,
            'client_name': self.client_name,
            'amount': str(round_money(self.amount)),
            'principal': str(round_money(self.principal)),
            'interest': str(round_money(self.interest)),
            'penalty': str(round_money(self.penalty)),
            'date': self.date.isoformat(),
            'outstanding_balance': str(round_money(self.outstanding_balance)),
            'payment_method': self.payment_method,
            'description': self.description
        }


@dataclass
class RepaymentResult:
    """Everything a repayment changed, plus its receipt"""
    repayment: LoanRepayment
    transaction: Transaction
    loan: Loan
    receipt: Receipt
    interest_transactions: List[Transaction] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


def _client_name(client: Optional[Dict[str, Any]]) -> Optional[str]:
    if not client:
        return None
    name = " ".join(part for part in (client.get('first_name'), client.get('last_name')) if part)
    return name or None


class RepaymentProcessor:
    """
    Posts loan repayments and distributes the interest they collect
    """

    def __init__(
        self,
        storage: StorageInterface,
        repository: LoanRepository,
        audit_trail: AuditTrail,
        notifications: Optional[NotificationService] = None,
        distribution: Optional[DistributionStrategy] = None,
        partial_payments: Optional[PartialPaymentStrategy] = None,
        locks: Optional[LoanLocks] = None,
        completion_epsilon: Decimal = DEFAULT_COMPLETION_EPSILON,
        default_payment_method: str = "cash"
    ):
        self.storage = storage
        self.repository = repository
        self.audit_trail = audit_trail
        self.notifications = notifications
        self.distribution = distribution or DuplicateCreditDistribution()
        self.partial_payments = partial_payments or OverwritePartialPayment()
        self.locks = locks or LoanLocks()
        self.completion_epsilon = completion_epsilon
        self.default_payment_method = default_payment_method

    def process_repayment(
        self,
        loan_id: str,
        amount: Any,
        payment_date: Union[date, str, None] = None,
        payment_method: Optional[str] = None,
        description: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> RepaymentResult:
        """
        Apply a payment to a loan's earliest open installment

        Args:
            loan_id: Loan being repaid
            amount: Payment amount
            payment_date: Date of payment (default today)
            payment_method: cash, bank_transfer, mobile_money or check
            description: Receipt description (default "Loan repayment for <loan_number>")
            user_id: Staff member posting the payment

        Returns:
            RepaymentResult with the updated installment, transactions, loan
            and receipt

        Raises:
            InvalidPaymentAmount: Unparseable or non-positive amount
            LoanNotFound: Unknown loan
            LoanNotPayable: Loan is not disbursed or active
            PaymentExceedsBalance: Amount above the outstanding balance
            NoPendingInstallment: Every installment is already completed
            ConcurrentModification: Loan changed underneath this payment
        """
        payment = self._parse_amount(amount)
        if isinstance(payment_date, str):
            payment_date = date.fromisoformat(payment_date[:10])
        payment_date = payment_date or date.today()
        payment_method = payment_method or self.default_payment_method

        with self.locks.hold(loan_id):
            with self.storage.atomic():
                loan = self.repository.find_loan(loan_id)
                if not loan:
                    raise LoanNotFound(f"Loan {loan_id} not found", loan_id=loan_id)
                if not loan.is_payable:
                    raise LoanNotPayable(
                        "Loan is not active for repayment",
                        loan_id=loan_id, status=loan.status.value
                    )
                if payment > loan.outstanding_balance:
                    raise PaymentExceedsBalance(
                        "Payment amount exceeds outstanding balance",
                        amount=payment, outstanding_balance=loan.outstanding_balance
                    )

                installment = self.repository.find_earliest_pending_installment(loan.id)
                if not installment:
                    raise NoPendingInstallment("No pending repayments found", loan_id=loan_id)

                split = self.partial_payments.split(installment, payment)
                self.partial_payments.apply(
                    installment, split, payment_date, payment_method, self.completion_epsilon
                )

                description = description or f"Loan repayment for {loan.loan_number}"
                transaction = self.repository.create_transaction(
                    transaction_type=TransactionType.LOAN_PAYMENT,
                    amount=Money(payment, loan.currency),
                    description=description,
                    transaction_date=payment_date,
                    client_id=loan.client_id,
                    loan_id=loan.id
                )
                installment.transaction_id = transaction.id
                self.repository.update_loan_repayment(installment)

                interest_transactions = []
                if split.interest > ZERO:
                    interest_transactions = self._distribute_interest(
                        loan, split.interest, payment_date, user_id
                    )

                expected_version = loan.version
                previous_balance = loan.outstanding_balance
                loan.outstanding_balance = max(ZERO, loan.outstanding_balance - split.principal)
                loan.total_paid += payment
                completed = loan.outstanding_balance <= self.completion_epsilon
                if completed:
                    loan.status = LoanStatus.COMPLETED
                self.repository.update_loan(loan, expected_version)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_REPAYMENT_POSTED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "loan_number": loan.loan_number,
                        "transaction_number": transaction.transaction_number,
                        "installment_number": installment.installment_number,
                        "amount": payment,
                        "principal": split.principal,
                        "interest": split.interest,
                        "previous_balance": previous_balance,
                        "outstanding_balance": loan.outstanding_balance
                    },
                    user_id=user_id
                )
                if completed:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.LOAN_COMPLETED,
                        entity_type="loan",
                        entity_id=loan.id,
                        metadata={"loan_number": loan.loan_number, "total_paid": loan.total_paid},
                        user_id=user_id
                    )

        receipt = Receipt(
            transaction_number=transaction.transaction_number,
            loan_number=loan.loan_number,
            client_name=_client_name(self.repository.find_client(loan.client_id)),
            amount=payment,
            principal=split.principal,
            interest=split.interest,
            penalty=split.penalty,
            date=payment_date,
            outstanding_balance=loan.outstanding_balance,
            payment_method=payment_method,
            description=description
        )
        result = RepaymentResult(
            repayment=installment,
            transaction=transaction,
            loan=loan,
            receipt=receipt,
            interest_transactions=interest_transactions
        )

        with best_effort("notify_repayment", logger, result.warnings, resource=loan.id):
            self._notify(loan, payment)

        log_action(
            logger, "info", f"Repayment {transaction.transaction_number} posted to {loan.loan_number}",
            user_id=user_id, action="process_repayment", resource=loan.id,
            extra={
                "amount": str(payment),
                "principal": str(split.principal),
                "interest": str(split.interest),
                "outstanding_balance": str(loan.outstanding_balance),
                "installment_status": installment.status.value,
                "loan_status": loan.status.value
            }
        )
        return result

    def get_repayment_receipt(self, repayment_id: str) -> Receipt:
        """
        Rebuild the receipt of a paid installment from stored records

        Amounts are what the installment has collected so far; the
        outstanding balance is the loan's current one.

        Raises:
            RepaymentNotFound: Unknown installment, or nothing paid on it yet
            LoanNotFound: The installment's loan no longer exists
        """
        repayment = self.repository.find_loan_repayment(repayment_id)
        if not repayment:
            raise RepaymentNotFound(f"Repayment {repayment_id} not found", repayment_id=repayment_id)
        if repayment.payment_date is None:
            raise RepaymentNotFound(
                f"No payment recorded for repayment {repayment.repayment_number}",
                repayment_id=repayment_id
            )

        loan = self.repository.find_loan(repayment.loan_id)
        if not loan:
            raise LoanNotFound(f"Loan {repayment.loan_id} not found", loan_id=repayment.loan_id)

        transaction = None
        if repayment.transaction_id:
            transaction = self.repository.find_transaction(repayment.transaction_id)

        return Receipt(
            transaction_number=transaction.transaction_number if transaction else repayment.repayment_number,
            loan_number=loan.loan_number,
            client_name=_client_name(self.repository.find_client(loan.client_id)),
            amount=repayment.paid_amount,
            principal=repayment.paid_principal,
            interest=repayment.paid_interest,
            penalty=repayment.penalty_amount,
            date=repayment.payment_date,
            outstanding_balance=loan.outstanding_balance,
            payment_method=repayment.payment_method or self.default_payment_method,
            description=transaction.description if transaction else f"Loan repayment for {loan.loan_number}"
        )

    @staticmethod
    def _parse_amount(amount: Any) -> Decimal:
        try:
            payment = round_money(to_decimal(amount))
        except ValueError:
            raise InvalidPaymentAmount("Valid payment amount is required", amount=amount)
        if payment <= ZERO:
            raise InvalidPaymentAmount("Valid payment amount is required", amount=amount)
        return payment

    def _distribute_interest(self, loan: Loan, interest: Decimal, payment_date: date,
                             user_id: Optional[str]) -> List[Transaction]:
        """Turn the strategy's credits into transactions and savings balance increments"""
        # Only accounts held in the loan's currency can receive its interest
        payer_accounts = [
            account for account in self.repository.find_active_savings_accounts(loan.client_id)
            if account.currency == loan.currency
        ]
        active_accounts = [
            account for account in self.repository.find_active_savings_accounts()
            if account.currency == loan.currency
        ]

        credits = self.distribution.distribute(
            interest, get_loan_type_config(loan.loan_type), payer_accounts, active_accounts
        )
        transactions = [self._post_credit(loan, credit, payment_date) for credit in credits]

        self.audit_trail.log_event(
            event_type=AuditEventType.INTEREST_DISTRIBUTED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "loan_number": loan.loan_number,
                "strategy": self.distribution.name,
                "interest": interest,
                "credits": [
                    {
                        "kind": credit.kind.value,
                        "amount": credit.amount,
                        "savings_account_id": credit.account.id if credit.account else None
                    }
                    for credit in credits
                ]
            },
            user_id=user_id
        )
        log_action(
            logger, "debug", f"Distributed {interest} interest from {loan.loan_number}",
            action="distribute_interest", resource=loan.id,
            extra={"strategy": self.distribution.name, "credits": len(credits)}
        )
        return transactions

    def _post_credit(self, loan: Loan, credit: InterestCredit, payment_date: date) -> Transaction:
        amount = Money(credit.amount, loan.currency)

        if credit.kind == CreditKind.ADMIN:
            return self.repository.create_transaction(
                transaction_type=TransactionType.INTEREST,
                amount=amount,
                description=f"Interest income retained from loan {loan.loan_number}",
                transaction_date=payment_date,
                client_id=loan.client_id,
                loan_id=loan.id
            )

        account = credit.account
        if credit.kind == CreditKind.PERSONAL:
            transaction_type = TransactionType.PERSONAL_INTEREST_PAYMENT
            description = f"Interest from loan repayment {loan.loan_number}"
        else:
            transaction_type = TransactionType.GENERAL_INTEREST
            description = f"General interest share from loan {loan.loan_number}"

        transaction = self.repository.create_transaction(
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            transaction_date=payment_date,
            client_id=account.client_id,
            loan_id=loan.id,
            savings_account_id=account.id
        )
        # Re-read the balance: the same account can receive several credits
        current = self.repository.find_savings_account(account.id)
        self.repository.update_savings_account_balance(account.id, current.balance + amount)
        return transaction

    def _notify(self, loan: Loan, payment: Decimal) -> None:
        if not self.notifications:
            return
        client = self.repository.find_client(loan.client_id) or {}
        self.notifications.notify(
            notification_type=NotificationType.LOAN_REPAYMENT,
            title="Loan Repayment Received",
            message=(
                f"Your payment of {Money(payment, loan.currency).to_string()} "
                f"for loan {loan.loan_number} has been received."
            ),
            user_id=client.get('user_id'),
            related_id=loan.id
        )
