"""
Main Orchestrator for the Ledger Engine

Ties the components together:

    SQLiteClient ──> LedgerEngine ──> ReconciliationJob
                          │
                          └────────> LoanService

All three share one AccountLockManager, so reconciliation and loan
payments serialise against ordinary transactions on the same accounts.

Usage:
    ledger = await open_ledger("data/ledger.db")
    wallet = await ledger.engine.ensure_default_wallet(owner_id)
    await ledger.create_transaction(owner_id, {...})
    report = await ledger.reconcile(owner_id)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
from uuid import UUID

import structlog

from ledger_engine.audit import AuditLogger, configure_logging
from ledger_engine.config import Settings, database_path, get_settings
from ledger_engine.ledger import (
    AccountLockManager,
    LedgerEngine,
    ReconciliationJob,
)
from ledger_engine.loans import LoanService
from ledger_engine.models import (
    LedgerResult,
    ReconciliationReport,
    TransactionInput,
)
from ledger_engine.services.storage import SQLiteClient
from ledger_engine.validation import TransactionValidator


logger = structlog.get_logger(__name__)


@dataclass
class LedgerComponents:
    """Everything a caller needs, wired to one database."""

    storage: SQLiteClient
    engine: LedgerEngine
    reconciliation: ReconciliationJob
    loans: LoanService
    audit: AuditLogger

    async def create_transaction(
        self,
        owner_id: str,
        payload: Union[TransactionInput, dict],
    ) -> LedgerResult:
        return await self.engine.create_transaction(owner_id, payload)

    async def edit_transaction(
        self,
        owner_id: str,
        transaction_id: UUID,
        payload: Union[TransactionInput, dict],
    ) -> LedgerResult:
        return await self.engine.edit_transaction(owner_id, transaction_id, payload)

    async def delete_transaction(self, owner_id: str, transaction_id: UUID) -> LedgerResult:
        return await self.engine.delete_transaction(owner_id, transaction_id)

    async def reconcile(self, owner_id: str) -> ReconciliationReport:
        return await self.reconciliation.reconcile(owner_id)

    async def close(self) -> None:
        await self.storage.close()


def create_ledger_components(
    db_path: Optional[Union[str, Path]] = None,
    settings: Optional[Settings] = None,
) -> LedgerComponents:
    """
    Factory function to create all ledger components.

    Args:
        db_path: SQLite file to use. Defaults to LEDGER_DB_PATH.
        settings: Settings to use instead of the cached environment ones.

    Returns:
        LedgerComponents (storage not yet initialized)
    """
    settings = settings or get_settings()
    database = settings.database
    ledger_settings = settings.ledger

    path = Path(db_path) if db_path is not None else database_path(database)
    storage = SQLiteClient(path, busy_timeout_ms=database.busy_timeout_ms)

    audit = AuditLogger()
    locks = AccountLockManager()
    engine = LedgerEngine(
        storage,
        validator=TransactionValidator(ledger_settings),
        locks=locks,
        audit=audit,
        settings=ledger_settings,
    )
    reconciliation = ReconciliationJob(
        storage,
        locks=locks,
        audit=audit,
        settings=ledger_settings,
    )
    loans = LoanService(engine, audit=audit, settings=settings.loans)

    return LedgerComponents(
        storage=storage,
        engine=engine,
        reconciliation=reconciliation,
        loans=loans,
        audit=audit,
    )


async def open_ledger(
    db_path: Optional[Union[str, Path]] = None,
    settings: Optional[Settings] = None,
) -> LedgerComponents:
    """Create the components and make sure the schema exists."""
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    components = create_ledger_components(db_path, settings)
    await components.storage.initialize()

    logger.info(
        "ledger_opened",
        db_path=str(components.storage.db_path),
        environment=settings.app.app_environment,
    )
    return components
