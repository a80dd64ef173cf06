"""
Loan engine container and FastAPI dependency
"""

from decimal import Decimal
from typing import Optional

from ..audit import AuditTrail
from ..config import MicrofinanceConfig, get_config
from ..distribution import get_distribution_strategy
from ..loans import LoanManager
from ..notifications import NotificationService
from ..repayments import LoanLocks, RepaymentProcessor, get_partial_payment_strategy
from ..repository import LoanRepository
from ..savings import SavingsManager
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface


class MicrofinanceSystem:
    """Loan engine with all components wired to one storage backend"""

    def __init__(self, config: Optional[MicrofinanceConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        if storage is not None:
            self.storage = storage
        elif self.config.storage_backend == "memory":
            self.storage = InMemoryStorage()
        else:
            self.storage = SQLiteStorage(self.config.database_path)

        self.audit_trail = AuditTrail(self.storage)
        self.repository = LoanRepository(self.storage)
        self.savings_manager = SavingsManager(self.storage, self.audit_trail)
        self.notifications = NotificationService(self.storage)
        self.loan_manager = LoanManager(
            self.storage, self.repository, self.audit_trail,
            strict_schedule_persistence=self.config.strict_schedule_persistence
        )
        self.repayment_processor = RepaymentProcessor(
            self.storage, self.repository, self.audit_trail,
            notifications=self.notifications,
            distribution=get_distribution_strategy(self.config.interest_distribution_strategy),
            partial_payments=get_partial_payment_strategy(self.config.partial_payment_strategy),
            locks=LoanLocks(),
            completion_epsilon=Decimal(self.config.completion_epsilon),
            default_payment_method=self.config.default_payment_method
        )


# Global system instance, created on first use
microfinance_system: Optional[MicrofinanceSystem] = None


def get_system() -> MicrofinanceSystem:
    """Dependency returning the process-wide loan engine"""
    global microfinance_system
    if microfinance_system is None:
        microfinance_system = MicrofinanceSystem()
    return microfinance_system


def set_system(system: Optional[MicrofinanceSystem]) -> None:
    """Replace the process-wide loan engine (tests use an in-memory one)"""
    global microfinance_system
    microfinance_system = system
