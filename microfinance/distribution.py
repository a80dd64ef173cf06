"""
Interest Distribution Module

Decides where the interest collected by a repayment goes. Two strategies are
available, selected by name from configuration:

- duplicate_credit: the legacy fan-out. The payer's first active savings
  account is credited with the whole interest portion, and the same amount
  is then divided equally across every active savings account (the payer's
  included). Total credits are twice the interest collected.
- percentage_split: the loan type's admin/client/general fractions. The
  client share goes to the payer's first active account, the general share
  is divided across all active accounts and the admin share, plus any share
  with nowhere to go, stays with the institution.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Dict, List, Optional, Sequence, Type

from .currency import CENT, round_money, ZERO
from .loan_types import LoanTypeConfig
from .savings import SavingsAccount


class CreditKind(Enum):
    PERSONAL = "personal"    # Payer's own savings account
    GENERAL = "general"      # Every saver's share
    ADMIN = "admin"          # Retained by the institution


@dataclass(frozen=True)
class InterestCredit:
    """One destination of collected interest"""
    kind: CreditKind
    amount: Decimal
    account: Optional[SavingsAccount] = None


class DistributionStrategy(ABC):
    """Turns an interest amount into credits"""

    name = ""

    @abstractmethod
    def distribute(
        self,
        interest: Decimal,
        loan_type: LoanTypeConfig,
        payer_accounts: Sequence[SavingsAccount],
        active_accounts: Sequence[SavingsAccount]
    ) -> List[InterestCredit]:
        """
        Args:
            interest: Interest portion of the repayment (positive)
            loan_type: Policy of the repaid loan
            payer_accounts: Payer's active savings accounts, oldest first
            active_accounts: Every active savings account, oldest first

        Returns:
            Credits with positive amounts
        """
        pass


class DuplicateCreditDistribution(DistributionStrategy):
    """Legacy fan-out: full personal credit plus an equal general split"""

    name = "duplicate_credit"

    def distribute(self, interest, loan_type, payer_accounts, active_accounts):
        credits = []
        if payer_accounts:
            credits.append(InterestCredit(CreditKind.PERSONAL, interest, payer_accounts[0]))

        if active_accounts:
            share = round_money(interest / Decimal(len(active_accounts)))
            if share > ZERO:
                credits.extend(
                    InterestCredit(CreditKind.GENERAL, share, account)
                    for account in active_accounts
                )
        return credits


class PercentageSplitDistribution(DistributionStrategy):
    """Splits interest by the loan type's admin/client/general fractions"""

    name = "percentage_split"

    def distribute(self, interest, loan_type, payer_accounts, active_accounts):
        split = loan_type.interest_distribution
        if split is None:
            return [InterestCredit(CreditKind.ADMIN, interest)]

        client_share = round_money(interest * split.client)
        general_share = round_money(interest * split.general)
        admin_share = interest - client_share - general_share

        credits = []
        if payer_accounts and client_share > ZERO:
            credits.append(InterestCredit(CreditKind.PERSONAL, client_share, payer_accounts[0]))
        else:
            admin_share += client_share

        if active_accounts and general_share > ZERO:
            credits.extend(self._split_evenly(general_share, active_accounts))
        else:
            admin_share += general_share

        if admin_share > ZERO:
            credits.append(InterestCredit(CreditKind.ADMIN, admin_share))
        return credits

    @staticmethod
    def _split_evenly(amount: Decimal, accounts: Sequence[SavingsAccount]) -> List[InterestCredit]:
        # Shares round down; the leftover cents go to the oldest account
        share = (amount / Decimal(len(accounts))).quantize(CENT, rounding=ROUND_DOWN)
        residue = amount - share * len(accounts)

        credits = []
        for position, account in enumerate(accounts):
            value = share + residue if position == 0 else share
            if value > ZERO:
                credits.append(InterestCredit(CreditKind.GENERAL, value, account))
        return credits


STRATEGIES: Dict[str, Type[DistributionStrategy]] = {
    DuplicateCreditDistribution.name: DuplicateCreditDistribution,
    PercentageSplitDistribution.name: PercentageSplitDistribution,
}


def get_distribution_strategy(name: str) -> DistributionStrategy:
    """Instantiate a strategy by its configuration name"""
    try:
        return STRATEGIES[name.strip().lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown interest distribution strategy {name!r}; "
            f"expected one of {sorted(STRATEGIES)}"
        )
