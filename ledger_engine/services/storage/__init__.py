"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLite as the backend, but designed to be swappable.
"""

from ledger_engine.services.storage.interface import (
    AccountStoreInterface,
    DuplicateError,
    LedgerStorageInterface,
    LoanStoreInterface,
    StorageError,
    TransactionStoreInterface,
    TransientStorageError,
    UnitOfWork,
)
from ledger_engine.services.storage.sqlite import (
    SQLiteAccountStore,
    SQLiteClient,
    SQLiteLoanStore,
    SQLiteTransactionStore,
    SQLiteUnitOfWork,
)

__all__ = [
    # Interfaces
    "AccountStoreInterface",
    "LedgerStorageInterface",
    "LoanStoreInterface",
    "TransactionStoreInterface",
    "UnitOfWork",
    # Exceptions
    "DuplicateError",
    "StorageError",
    "TransientStorageError",
    # SQLite implementation
    "SQLiteAccountStore",
    "SQLiteClient",
    "SQLiteLoanStore",
    "SQLiteTransactionStore",
    "SQLiteUnitOfWork",
]
