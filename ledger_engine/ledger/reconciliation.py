"""
Reconciliation Job

Recomputes every balance of an owner from the transaction log and
compares it with the account store.

    recomputed(account) = sum of effects of every active transaction
                          referencing it, replayed in creation order
                          from zero

Opening-balance transactions supply each account's starting level,
so zero is always the right starting point.

check() only reports. reconcile() also writes the recomputed balances
back, under the locks of all the owner's accounts. Running reconcile()
twice in a row changes nothing the second time.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from ledger_engine.audit import AuditLogger
from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.ledger.effects import AccountRef, compute_effects
from ledger_engine.ledger.engine import retry_on_busy
from ledger_engine.ledger.errors import ConsistencyError, ValidationError
from ledger_engine.ledger.locks import AccountLockManager
from ledger_engine.models.account import Account
from ledger_engine.models.money import ZERO, to_money
from ledger_engine.models.reconciliation import (
    AccountReconciliation,
    ReconciliationReport,
    UnexplainedTransaction,
)
from ledger_engine.services.storage import LedgerStorageInterface, UnitOfWork


logger = structlog.get_logger(__name__)


class ReconciliationJob:
    """
    Rebuilds balances from the transaction log.

    Usage:
        job = ReconciliationJob(storage, engine.locks)
        report = await job.check(owner_id)
        if not report.is_consistent:
            report = await job.reconcile(owner_id)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        locks: Optional[AccountLockManager] = None,
        audit: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._locks = locks or AccountLockManager()
        self._audit = audit or AuditLogger()
        self.retry_attempts = (settings or get_settings().ledger).retry_attempts

    async def _replay(
        self,
        uow: UnitOfWork,
        owner_id: str,
        accounts: list[Account],
    ) -> ReconciliationReport:
        """Replay the log and build the report (nothing is written)."""
        by_id = {account.id: account for account in accounts}
        recomputed: dict[UUID, Decimal] = {account.id: ZERO for account in accounts}
        unexplained = []

        transactions = await uow.transactions.list_for_owner(owner_id)
        for transaction in transactions:
            missing = [
                account_id for account_id in transaction.account_ids
                if account_id not in by_id
            ]
            if missing:
                unexplained.append(UnexplainedTransaction(
                    transaction_id=transaction.id,
                    reason=f"References unknown account(s): {', '.join(str(m) for m in missing)}",
                ))
                continue

            source = (
                AccountRef.of(by_id[transaction.source_account_id])
                if transaction.source_account_id is not None
                else None
            )
            destination = (
                AccountRef.of(by_id[transaction.destination_account_id])
                if transaction.destination_account_id is not None
                else None
            )
            try:
                effects = compute_effects(
                    transaction.type, transaction.amount, source, destination
                )
            except ValidationError as e:
                unexplained.append(UnexplainedTransaction(
                    transaction_id=transaction.id,
                    reason=str(e),
                ))
                continue

            for effect in effects:
                recomputed[effect.account_id] += effect.delta

        return ReconciliationReport(
            owner_id=owner_id,
            transactions_replayed=len(transactions) - len(unexplained),
            accounts=[
                AccountReconciliation(
                    account_id=account.id,
                    name=account.name,
                    kind=account.kind,
                    is_active=account.is_active,
                    balance_before=account.balance,
                    balance_after=to_money(recomputed[account.id]),
                )
                for account in accounts
            ],
            unexplained=unexplained,
        )

    async def check(self, owner_id: str) -> ReconciliationReport:
        """Compare stored and recomputed balances without changing anything."""
        async with self._storage.unit_of_work(write=False) as uow:
            accounts = await uow.accounts.list_for_owner(owner_id, include_inactive=True)
            report = await self._replay(uow, owner_id, accounts)

        await self._audit.log_reconciliation(owner_id, report)
        return report

    async def reconcile(self, owner_id: str) -> ReconciliationReport:
        """
        Recompute every balance of the owner and write it back.

        Inactive accounts are included. Unexplained transactions are
        reported and skipped; they never block the rest of the run.
        """
        report = await self._reconcile(owner_id)
        await self._audit.log_reconciliation(owner_id, report)
        return report

    @retry_on_busy
    async def _reconcile(self, owner_id: str) -> ReconciliationReport:
        while True:
            async with self._storage.unit_of_work(write=False) as uow:
                known = {
                    account.id
                    for account in await uow.accounts.list_for_owner(
                        owner_id, include_inactive=True
                    )
                }

            async with self._locks.hold(known):
                async with self._storage.unit_of_work() as uow:
                    accounts = await uow.accounts.list_for_owner(owner_id, include_inactive=True)
                    if {account.id for account in accounts} <= known:
                        report = await self._replay(uow, owner_id, accounts)
                        for entry in report.drifted_accounts:
                            await uow.accounts.set_balance(entry.account_id, entry.balance_after)
                        return report.model_copy(update={"applied": True})
            # An account was opened while we were locking
            logger.debug("reconcile_relock", owner_id=owner_id)

    async def assert_consistent(self, owner_id: str) -> ReconciliationReport:
        """
        Raise when stored balances disagree with the log.

        Raises:
            ConsistencyError: drift or unexplained transactions found;
                the report is attached as `report`
        """
        report = await self.check(owner_id)
        if not report.is_consistent:
            drifted = ", ".join(
                f"{entry.name}: stored {entry.balance_before}, log says {entry.balance_after}"
                for entry in report.drifted_accounts
            )
            raise ConsistencyError(
                f"Ledger for {owner_id} is inconsistent "
                f"({len(report.drifted_accounts)} drifted, "
                f"{len(report.unexplained)} unexplained) {drifted}".strip(),
                report=report,
            )
        return report
