"""
Loan Module

Loan and installment records, the origination calculator (upfront deduction,
prepaid interest, default charges, schedule) and the LoanManager that
persists new loans and drives them through their lifecycle.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from enum import Enum
import uuid

from .amortization import PaymentFrequency, parse_amount, parse_term
from .audit import AuditTrail, AuditEventType
from .currency import Currency, round_money, to_decimal, ZERO
from .errors import (
    InvalidLoanParameters, InvalidStatusTransition, LoanNotEditable, LoanNotFound, best_effort
)
from .loan_types import (
    DEFAULT_LOAN_TYPE, get_loan_type_config, calculate_upfront_amount,
    calculate_principal_amount, is_prepaid_interest
)
from .logging_config import get_logger, log_action
from .schedule import (
    InstallmentStatus, InterestMethod, Schedule, ScheduleEntry,
    entries_from_json, generate_repayment_schedule
)
from .storage import StorageInterface, StorageRecord

if TYPE_CHECKING:
    from .repository import LoanRepository


logger = get_logger("loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"        # Application recorded, awaiting approval
    APPROVED = "approved"
    DISBURSED = "disbursed"    # Funds released, repayments accepted
    ACTIVE = "active"          # In regular repayment
    OVERDUE = "overdue"
    COMPLETED = "completed"    # Outstanding balance paid down to zero
    CANCELLED = "cancelled"
    DEFAULTED = "defaulted"


PAYABLE_STATUSES = frozenset({LoanStatus.ACTIVE, LoanStatus.DISBURSED})

# Terms can still be changed before any money is released
EDITABLE_STATUSES = frozenset({LoanStatus.PENDING, LoanStatus.APPROVED})

ALLOWED_TRANSITIONS = {
    LoanStatus.PENDING: {LoanStatus.APPROVED, LoanStatus.CANCELLED},
    LoanStatus.APPROVED: {LoanStatus.DISBURSED, LoanStatus.CANCELLED},
    LoanStatus.DISBURSED: {LoanStatus.ACTIVE, LoanStatus.OVERDUE, LoanStatus.COMPLETED, LoanStatus.DEFAULTED},
    LoanStatus.ACTIVE: {LoanStatus.OVERDUE, LoanStatus.COMPLETED, LoanStatus.DEFAULTED},
    LoanStatus.OVERDUE: {LoanStatus.ACTIVE, LoanStatus.COMPLETED, LoanStatus.DEFAULTED},
    LoanStatus.COMPLETED: set(),
    LoanStatus.CANCELLED: set(),
    LoanStatus.DEFAULTED: set(),
}


def _optional_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class Loan(StorageRecord):
    """Loan with its terms, running balance and serialized schedule"""
    loan_number: str
    client_id: str
    loan_type: str
    currency: Currency
    amount: Decimal                       # Requested amount, before the upfront deduction
    principal_amount: Decimal             # Amount actually amortized
    interest_rate: Decimal                # Annual percentage
    term_months: int
    interest_method: InterestMethod
    payment_frequency: PaymentFrequency
    upfront_percentage: Decimal
    upfront_amount: Decimal
    default_charges_percentage: Decimal
    default_charges_amount: Decimal
    outstanding_balance: Decimal
    total_paid: Decimal
    total_interest: Decimal
    total_amount: Decimal
    monthly_payment: Decimal
    repayment_schedule: str               # JSON list of schedule entries
    application_date: date
    status: LoanStatus = LoanStatus.PENDING
    disbursement_date: Optional[date] = None
    loan_purpose: Optional[str] = None
    version: int = 1

    DECIMAL_FIELDS = (
        'amount', 'principal_amount', 'interest_rate', 'upfront_percentage',
        'upfront_amount', 'default_charges_percentage', 'default_charges_amount',
        'outstanding_balance', 'total_paid', 'total_interest', 'total_amount',
        'monthly_payment'
    )

    @property
    def is_payable(self) -> bool:
        """Repayments are accepted only while disbursed or active"""
        return self.status in PAYABLE_STATUSES

    def schedule_entries(self) -> List[ScheduleEntry]:
        return entries_from_json(self.repayment_schedule)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = cls.parse_timestamps(data)
        for name in cls.DECIMAL_FIELDS:
            data[name] = to_decimal(data[name])
        data['currency'] = Currency.from_code(data['currency'])
        data['interest_method'] = InterestMethod.parse(data['interest_method'])
        data['payment_frequency'] = PaymentFrequency.parse(data['payment_frequency'])
        data['status'] = LoanStatus(data['status'])
        data['application_date'] = _optional_date(data['application_date'])
        data['disbursement_date'] = _optional_date(data.get('disbursement_date'))
        return cls(**data)


@dataclass
class LoanRepayment(StorageRecord):
    """
    Persisted installment of a loan's schedule.

    amount/principal_amount/interest_amount start as the scheduled figures;
    the paid_* fields hold what has been collected against the installment.
    """
    loan_id: str
    repayment_number: str                 # <loan_number>-NNN
    installment_number: int
    due_date: date
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    penalty_amount: Decimal = ZERO
    status: InstallmentStatus = InstallmentStatus.PENDING
    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_amount: Decimal = ZERO
    paid_principal: Decimal = ZERO
    paid_interest: Decimal = ZERO

    DECIMAL_FIELDS = (
        'amount', 'principal_amount', 'interest_amount', 'penalty_amount',
        'paid_amount', 'paid_principal', 'paid_interest'
    )

    @property
    def is_open(self) -> bool:
        return self.status in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanRepayment':
        data = cls.parse_timestamps(data)
        for name in cls.DECIMAL_FIELDS:
            data[name] = to_decimal(data[name])
        data['status'] = InstallmentStatus(data['status'])
        data['due_date'] = _optional_date(data['due_date'])
        data['payment_date'] = _optional_date(data.get('payment_date'))
        return cls(**data)


@dataclass
class OriginationRequest:
    """Loan application figures; None means "use the loan type's default" """
    loan_amount: Any
    term_months: Any
    loan_type: Optional[str] = DEFAULT_LOAN_TYPE
    upfront_percentage: Any = None
    interest_rate: Any = None
    interest_method: Any = None
    payment_frequency: Any = None
    disbursement_date: Optional[date] = None
    default_charges_percentage: Any = None
    currency: Currency = Currency.USD


@dataclass
class OriginationResult:
    """Derived figures for a new loan"""
    loan_type: str
    loan_amount: Decimal
    upfront_percentage: Decimal
    upfront_amount: Decimal
    principal: Decimal
    interest_rate: Decimal
    interest_method: InterestMethod
    payment_frequency: PaymentFrequency
    term_months: int
    default_charges_percentage: Decimal
    default_charges_amount: Decimal
    total_interest: Decimal
    total_amount: Decimal
    outstanding_balance: Decimal
    monthly_payment: Decimal
    schedule: Schedule
    prepaid_interest: bool
    disbursement_date: date
    currency: Currency = Currency.USD

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_type': self.loan_type,
            'loan_amount': str(self.loan_amount),
            'upfront_percentage': str(self.upfront_percentage),
            'upfront_amount': str(self.upfront_amount),
            'principal': str(self.principal),
            'interest_rate': str(self.interest_rate),
            'interest_method': self.interest_method.value,
            'payment_frequency': self.payment_frequency.value,
            'term_months': self.term_months,
            'default_charges_percentage': str(self.default_charges_percentage),
            'default_charges_amount': str(self.default_charges_amount),
            'total_interest': str(self.total_interest),
            'total_amount': str(self.total_amount),
            'outstanding_balance': str(self.outstanding_balance),
            'monthly_payment': str(self.monthly_payment),
            'prepaid_interest': self.prepaid_interest,
            'disbursement_date': self.disbursement_date.isoformat(),
            'currency': self.currency.code,
            'schedule': [entry.to_dict() for entry in self.schedule.entries]
        }


def _percentage(value: Any, default: Decimal, field_name: str) -> Decimal:
    if value is None:
        return default
    result = parse_amount(value, field_name)
    if result < ZERO:
        raise InvalidLoanParameters(f"{field_name} cannot be negative", **{field_name: value})
    return result


def calculate_origination(request: OriginationRequest) -> OriginationResult:
    """
    Compute upfront deduction, principal, interest, charges and schedule for
    a loan application. Pure: nothing is persisted.

    A "personal" loan whose resolved rate is 0 treats the upfront amount as
    prepaid interest: the schedule amortizes the principal interest free,
    total interest is the upfront amount and the total owed is the requested
    amount. Every other loan takes its interest from the generated schedule.

    Raises:
        InvalidLoanParameters: Missing or invalid amount, term, rate or
            percentages
    """
    loan_amount = round_money(parse_amount(request.loan_amount, "loan_amount"))
    if loan_amount <= ZERO:
        raise InvalidLoanParameters("Loan amount must be greater than zero", loan_amount=request.loan_amount)
    term_months = parse_term(request.term_months)

    loan_type = (request.loan_type or DEFAULT_LOAN_TYPE).strip().lower()
    config = get_loan_type_config(loan_type)

    upfront_percentage = _percentage(request.upfront_percentage, config.upfront_percentage, "upfront_percentage")
    upfront_amount = calculate_upfront_amount(loan_amount, upfront_percentage)
    principal = calculate_principal_amount(loan_amount, upfront_amount)
    if principal <= ZERO:
        raise InvalidLoanParameters(
            "Upfront deduction leaves no principal to lend",
            loan_amount=loan_amount, upfront_percentage=upfront_percentage
        )

    interest_rate = _percentage(request.interest_rate, config.interest_rate, "interest_rate")
    interest_method = (
        InterestMethod.parse(request.interest_method)
        if request.interest_method is not None else config.interest_method
    )
    frequency = PaymentFrequency.parse(request.payment_frequency)
    start = _optional_date(request.disbursement_date) or date.today()

    default_charges_percentage = ZERO
    if config.has_default_charges:
        default_charges_percentage = _percentage(
            request.default_charges_percentage, ZERO, "default_charges_percentage"
        )
    default_charges_amount = round_money(principal * default_charges_percentage / Decimal(100))

    prepaid = is_prepaid_interest(loan_type, interest_rate)
    if prepaid:
        schedule = generate_repayment_schedule(
            principal, ZERO, term_months, interest_method, frequency, start
        )
        total_interest = upfront_amount
        total_amount = loan_amount
        schedule.total_interest = total_interest
        schedule.total_amount = total_amount
    else:
        schedule = generate_repayment_schedule(
            principal, interest_rate, term_months, interest_method, frequency, start
        )
        total_interest = schedule.total_interest
        total_amount = schedule.total_amount + default_charges_amount

    return OriginationResult(
        loan_type=loan_type,
        loan_amount=loan_amount,
        upfront_percentage=upfront_percentage,
        upfront_amount=upfront_amount,
        principal=principal,
        interest_rate=interest_rate,
        interest_method=interest_method,
        payment_frequency=frequency,
        term_months=term_months,
        default_charges_percentage=default_charges_percentage,
        default_charges_amount=default_charges_amount,
        total_interest=total_interest,
        total_amount=total_amount,
        outstanding_balance=principal + total_interest + default_charges_amount,
        monthly_payment=schedule.monthly_payment,
        schedule=schedule,
        prepaid_interest=prepaid,
        disbursement_date=start,
        currency=request.currency
    )


@dataclass
class OriginationOutcome:
    """A persisted loan, its installment rows and any degraded side effects"""
    loan: Loan
    origination: OriginationResult
    repayments: List[LoanRepayment] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class LoanManager:
    """
    Manages loans from application through disbursement
    """

    def __init__(
        self,
        storage: StorageInterface,
        repository: 'LoanRepository',
        audit_trail: AuditTrail,
        strict_schedule_persistence: bool = True
    ):
        self.storage = storage
        self.repository = repository
        self.audit_trail = audit_trail
        self.strict_schedule_persistence = strict_schedule_persistence

    def calculate_schedule(
        self,
        principal: Any,
        interest_rate: Any,
        term_months: Any,
        interest_method: Any = None,
        payment_frequency: Any = None,
        start_date: Optional[date] = None
    ) -> Schedule:
        """Preview a schedule without persisting anything"""
        return generate_repayment_schedule(
            principal, interest_rate, term_months,
            interest_method, payment_frequency, _optional_date(start_date)
        )

    def originate_loan(
        self,
        client_id: str,
        request: OriginationRequest,
        loan_purpose: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> OriginationOutcome:
        """
        Create a pending loan with its installment rows

        Args:
            client_id: Borrower
            request: Application figures
            loan_purpose: Free-text purpose
            user_id: Staff member recording the application

        Returns:
            OriginationOutcome; degraded when installment rows could not be
            written in best-effort mode

        Raises:
            InvalidLoanParameters: Before anything is persisted
        """
        origination = calculate_origination(request)
        now = datetime.now(timezone.utc)
        outcome = None

        with self.storage.atomic():
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_number=self.repository.next_number("LN", "loan_number", 6),
                client_id=client_id,
                loan_type=origination.loan_type,
                currency=origination.currency,
                amount=origination.loan_amount,
                principal_amount=origination.principal,
                interest_rate=origination.interest_rate,
                term_months=origination.term_months,
                interest_method=origination.interest_method,
                payment_frequency=origination.payment_frequency,
                upfront_percentage=origination.upfront_percentage,
                upfront_amount=origination.upfront_amount,
                default_charges_percentage=origination.default_charges_percentage,
                default_charges_amount=origination.default_charges_amount,
                outstanding_balance=origination.outstanding_balance,
                total_paid=ZERO,
                total_interest=origination.total_interest,
                total_amount=origination.total_amount,
                monthly_payment=origination.monthly_payment,
                repayment_schedule=origination.schedule.entries_json(),
                application_date=origination.disbursement_date,
                disbursement_date=origination.disbursement_date,
                loan_purpose=loan_purpose
            )
            self.repository.save_loan(loan)
            outcome = OriginationOutcome(loan=loan, origination=origination)

            if self.strict_schedule_persistence:
                outcome.repayments = self.repository.create_loan_repayments(
                    loan, origination.schedule.entries
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_ORIGINATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "loan_number": loan.loan_number,
                    "client_id": client_id,
                    "loan_type": loan.loan_type,
                    "amount": loan.amount,
                    "principal_amount": loan.principal_amount,
                    "upfront_amount": loan.upfront_amount,
                    "interest_rate": loan.interest_rate,
                    "total_interest": loan.total_interest,
                    "outstanding_balance": loan.outstanding_balance,
                    "installments": origination.schedule.installments
                },
                user_id=user_id
            )

        if not self.strict_schedule_persistence:
            self._create_repayments_best_effort(outcome, user_id)

        log_action(
            logger, "info", f"Loan {loan.loan_number} originated",
            user_id=user_id, action="originate_loan", resource=loan.id,
            extra={
                "loan_type": loan.loan_type,
                "principal_amount": str(loan.principal_amount),
                "installments": origination.schedule.installments,
                "degraded": outcome.degraded
            }
        )
        return outcome

    def _create_repayments_best_effort(self, outcome: OriginationOutcome, user_id: Optional[str]) -> None:
        loan = outcome.loan
        with best_effort("create_loan_repayments", logger, outcome.warnings, resource=loan.id):
            with self.storage.atomic():
                outcome.repayments = self.repository.create_loan_repayments(
                    loan, outcome.origination.schedule.entries
                )

        if outcome.degraded:
            self.audit_trail.log_event(
                event_type=AuditEventType.SCHEDULE_PERSISTENCE_FAILED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"loan_number": loan.loan_number, "warnings": outcome.warnings},
                user_id=user_id
            )

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        return self.repository.find_loan(loan_id)

    def get_client_loans(self, client_id: str) -> List[Loan]:
        return self.repository.find_client_loans(client_id)

    def list_loans(
        self,
        status: Optional[str] = None,
        loan_type: Optional[str] = None,
        client_id: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Loan]:
        """
        Loans matching every given filter, newest first

        Raises:
            InvalidLoanParameters: If status is not a known loan status
        """
        if status is not None:
            try:
                status = LoanStatus(status.strip().lower()).value
            except ValueError:
                raise InvalidLoanParameters(f"Unknown loan status: {status}", status=status)
        if loan_type is not None:
            loan_type = loan_type.strip().lower()
        return self.repository.find_loans(
            status=status, loan_type=loan_type, client_id=client_id, search=search
        )

    def update_loan_terms(
        self,
        loan_id: str,
        amount: Any = None,
        interest_rate: Any = None,
        term_months: Any = None,
        interest_method: Any = None,
        payment_frequency: Any = None,
        user_id: Optional[str] = None
    ) -> OriginationOutcome:
        """
        Re-price a loan that has not been disbursed yet

        Arguments left as None keep the loan's current value. Upfront
        deduction, charges, balance and schedule are recomputed the way
        origination computes them, and the installment rows are replaced in
        the same atomic unit as the loan update.

        Returns:
            OriginationOutcome holding the updated loan and its new rows

        Raises:
            LoanNotFound: If the loan does not exist
            LoanNotEditable: If the loan is past approved
            InvalidLoanParameters: If nothing is changed or a new term is invalid
            ConcurrentModification: If the loan changed underneath the update
        """
        changes = {
            name: value for name, value in (
                ("amount", amount),
                ("interest_rate", interest_rate),
                ("term_months", term_months),
                ("interest_method", interest_method),
                ("payment_frequency", payment_frequency),
            ) if value is not None
        }
        if not changes:
            raise InvalidLoanParameters("No loan terms to update", loan_id=loan_id)

        with self.storage.atomic():
            loan = self.repository.find_loan(loan_id)
            if not loan:
                raise LoanNotFound(f"Loan {loan_id} not found", loan_id=loan_id)
            if loan.status not in EDITABLE_STATUSES:
                raise LoanNotEditable(
                    f"Loan {loan.loan_number} can no longer be changed",
                    loan_id=loan_id, status=loan.status.value
                )

            origination = calculate_origination(OriginationRequest(
                loan_amount=changes.get("amount", loan.amount),
                term_months=changes.get("term_months", loan.term_months),
                loan_type=loan.loan_type,
                upfront_percentage=loan.upfront_percentage,
                interest_rate=changes.get("interest_rate", loan.interest_rate),
                interest_method=changes.get("interest_method", loan.interest_method),
                payment_frequency=changes.get("payment_frequency", loan.payment_frequency),
                disbursement_date=loan.disbursement_date or loan.application_date,
                default_charges_percentage=loan.default_charges_percentage,
                currency=loan.currency
            ))

            previous = {
                "amount": loan.amount,
                "interest_rate": loan.interest_rate,
                "term_months": loan.term_months,
                "interest_method": loan.interest_method.value,
                "payment_frequency": loan.payment_frequency.value,
                "monthly_payment": loan.monthly_payment,
                "total_amount": loan.total_amount
            }

            expected_version = loan.version
            loan.amount = origination.loan_amount
            loan.principal_amount = origination.principal
            loan.interest_rate = origination.interest_rate
            loan.term_months = origination.term_months
            loan.interest_method = origination.interest_method
            loan.payment_frequency = origination.payment_frequency
            loan.upfront_amount = origination.upfront_amount
            loan.default_charges_amount = origination.default_charges_amount
            loan.outstanding_balance = origination.outstanding_balance
            loan.total_interest = origination.total_interest
            loan.total_amount = origination.total_amount
            loan.monthly_payment = origination.monthly_payment
            loan.repayment_schedule = origination.schedule.entries_json()
            self.repository.update_loan(loan, expected_version)

            replaced = self.repository.delete_loan_repayments(loan.id)
            repayments = self.repository.create_loan_repayments(loan, origination.schedule.entries)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_TERMS_UPDATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "loan_number": loan.loan_number,
                    "previous": previous,
                    "amount": loan.amount,
                    "interest_rate": loan.interest_rate,
                    "term_months": loan.term_months,
                    "interest_method": loan.interest_method.value,
                    "payment_frequency": loan.payment_frequency.value,
                    "monthly_payment": loan.monthly_payment,
                    "total_amount": loan.total_amount,
                    "installments_replaced": replaced,
                    "installments": len(repayments)
                },
                user_id=user_id
            )

        log_action(
            logger, "info", f"Loan {loan.loan_number} terms updated",
            user_id=user_id, action="update_loan_terms", resource=loan.id,
            extra={
                "changed": sorted(changes),
                "monthly_payment": str(loan.monthly_payment),
                "installments": len(repayments)
            }
        )
        return OriginationOutcome(loan=loan, origination=origination, repayments=repayments)

    def get_schedule(self, loan_id: str) -> List[Dict[str, Any]]:
        """
        Persisted schedule with each installment's current status, amount
        paid and payment date

        Raises:
            LoanNotFound: If the loan does not exist
        """
        loan = self.repository.find_loan(loan_id)
        if not loan:
            raise LoanNotFound(f"Loan {loan_id} not found", loan_id=loan_id)

        repayments = {
            repayment.installment_number: repayment
            for repayment in self.repository.find_loan_repayments(loan_id)
        }
        schedule = []
        for entry in loan.schedule_entries():
            item = entry.to_dict()
            repayment = repayments.get(entry.installment_number)
            if repayment:
                item['status'] = repayment.status.value
                item['paid_amount'] = str(round_money(repayment.paid_amount))
                item['payment_date'] = repayment.payment_date.isoformat() if repayment.payment_date else None
            else:
                item['paid_amount'] = "0.00"
                item['payment_date'] = None
            schedule.append(item)
        return schedule

    def approve_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        return self._transition(loan_id, LoanStatus.APPROVED, user_id)

    def disburse_loan(self, loan_id: str, disbursement_date: Optional[date] = None,
                      user_id: Optional[str] = None) -> Loan:
        return self._transition(
            loan_id, LoanStatus.DISBURSED, user_id,
            disbursement_date=_optional_date(disbursement_date) or date.today()
        )

    def activate_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        return self._transition(loan_id, LoanStatus.ACTIVE, user_id)

    def cancel_loan(self, loan_id: str, reason: Optional[str] = None,
                    user_id: Optional[str] = None) -> Loan:
        return self._transition(loan_id, LoanStatus.CANCELLED, user_id, reason=reason)

    def _transition(self, loan_id: str, target: LoanStatus, user_id: Optional[str],
                    reason: Optional[str] = None, **changes: Any) -> Loan:
        with self.storage.atomic():
            loan = self.repository.find_loan(loan_id)
            if not loan:
                raise LoanNotFound(f"Loan {loan_id} not found", loan_id=loan_id)

            previous = loan.status
            if target not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidStatusTransition(
                    f"Cannot move loan {loan.loan_number} from {previous.value} to {target.value}",
                    loan_id=loan_id, current=previous.value, target=target.value
                )

            expected_version = loan.version
            loan.status = target
            for name, value in changes.items():
                setattr(loan, name, value)
            self.repository.update_loan(loan, expected_version)

            metadata = {
                "loan_number": loan.loan_number,
                "previous_status": previous.value,
                "new_status": target.value
            }
            if reason:
                metadata["reason"] = reason
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_STATUS_CHANGED,
                entity_type="loan",
                entity_id=loan.id,
                metadata=metadata,
                user_id=user_id
            )

        log_action(
            logger, "info", f"Loan {loan.loan_number} {previous.value} -> {target.value}",
            user_id=user_id, action="loan_status_changed", resource=loan.id
        )
        return loan
