"""
Reconciliation Models

A reconciliation report compares what the account store says with
what the transaction log says. Drift is an expected, recoverable
condition, so it is reported rather than raised.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from ledger_engine.models.account import AccountKind


class AccountReconciliation(BaseModel):
    """Stored versus recomputed balance for one account."""

    account_id: UUID
    name: str
    kind: AccountKind
    is_active: bool
    balance_before: Decimal = Field(..., description="Balance found in the account store")
    balance_after: Decimal = Field(..., description="Balance recomputed from the transaction log")

    @property
    def difference(self) -> Decimal:
        return self.balance_after - self.balance_before

    @property
    def drifted(self) -> bool:
        return self.balance_before != self.balance_after


class UnexplainedTransaction(BaseModel):
    """A transaction the log holds but whose effect cannot be computed."""

    transaction_id: UUID
    reason: str


class ReconciliationReport(BaseModel):
    """Outcome of a reconciliation run (or a read-only check)."""

    owner_id: str
    checked_at: datetime = Field(default_factory=datetime.utcnow)
    applied: bool = Field(
        default=False,
        description="True when recomputed balances were written back"
    )
    transactions_replayed: int = 0
    accounts: list[AccountReconciliation] = Field(default_factory=list)
    unexplained: list[UnexplainedTransaction] = Field(default_factory=list)

    @property
    def drifted_accounts(self) -> list[AccountReconciliation]:
        return [account for account in self.accounts if account.drifted]

    @property
    def is_consistent(self) -> bool:
        return not self.drifted_accounts and not self.unexplained

    def for_account(self, account_id: UUID) -> AccountReconciliation:
        for account in self.accounts:
            if account.account_id == account_id:
                return account
        raise KeyError(account_id)
