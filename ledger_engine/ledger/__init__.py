"""Ledger core: effects, locks, the engine and reconciliation."""

from ledger_engine.ledger.effects import (
    AccountRef,
    Effect,
    combine_effects,
    compute_effects,
    reverse_effects,
)
from ledger_engine.ledger.engine import LedgerEngine
from ledger_engine.ledger.errors import (
    ConsistencyError,
    InactiveAccountError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from ledger_engine.ledger.locks import AccountLockManager
from ledger_engine.ledger.reconciliation import ReconciliationJob

__all__ = [
    # Effects
    "AccountRef",
    "Effect",
    "combine_effects",
    "compute_effects",
    "reverse_effects",
    # Components
    "AccountLockManager",
    "LedgerEngine",
    "ReconciliationJob",
    # Exceptions
    "ConsistencyError",
    "InactiveAccountError",
    "LedgerError",
    "NotFoundError",
    "ValidationError",
]
