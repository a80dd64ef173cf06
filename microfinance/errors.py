"""
Loan Engine Errors

Domain exceptions raised by schedule calculation, origination and repayment,
plus the best-effort helper used for informational side effects. Money
affecting steps always raise; only notifications and legacy schedule-row
creation go through best_effort().
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from .logging_config import log_action


class LoanEngineError(ValueError):
    """Base class for all loan engine failures surfaced to the caller"""

    code = "loan_engine_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for API responses"""
        return {
            "error": self.code,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()}
        }


class InvalidLoanParameters(LoanEngineError):
    """Non-positive principal or term, or unparseable numeric input"""
    code = "invalid_loan_parameters"


class LoanNotFound(LoanEngineError):
    code = "loan_not_found"


class LoanNotPayable(LoanEngineError):
    """Repayment attempted against a loan that is not active or disbursed"""
    code = "loan_not_payable"


class InvalidPaymentAmount(LoanEngineError):
    code = "invalid_payment_amount"


class PaymentExceedsBalance(LoanEngineError):
    code = "payment_exceeds_balance"


class NoPendingInstallment(LoanEngineError):
    """Every installment of the loan is already completed"""
    code = "no_pending_installment"


class InvalidStatusTransition(LoanEngineError):
    code = "invalid_status_transition"


class LoanNotEditable(LoanEngineError):
    """Terms changed after the loan left pending or approved"""
    code = "loan_not_editable"


class RepaymentNotFound(LoanEngineError):
    """Unknown installment, or one with no payment posted against it"""
    code = "repayment_not_found"


class ConcurrentModification(LoanEngineError):
    """Loan row changed between read and write (version mismatch)"""
    code = "concurrent_modification"


@contextmanager
def best_effort(
    action: str,
    logger: logging.Logger,
    warnings: Optional[List[str]] = None,
    resource: Optional[str] = None,
    **extra: Any
):
    """
    Run a non-essential side effect, logging instead of raising on failure.

    Args:
        action: Name of the side effect (e.g. "notify_repayment")
        logger: Logger receiving the failure record
        warnings: Optional list collecting a message per failure, so callers
            can report a degraded result
        resource: Resource identifier for the log record
        **extra: Additional structured context for the log record
    """
    try:
        yield
    except Exception as e:
        message = f"{action} failed: {e}"
        log_action(
            logger, "warning", message,
            action=action, resource=resource,
            extra={**extra, "error_type": type(e).__name__}
        )
        if warnings is not None:
            warnings.append(message)
