"""Services package."""

from ledger_engine.services.storage import (
    AccountStoreInterface,
    DuplicateError,
    LedgerStorageInterface,
    LoanStoreInterface,
    SQLiteClient,
    StorageError,
    TransactionStoreInterface,
    TransientStorageError,
    UnitOfWork,
)

__all__ = [
    # Storage services
    "AccountStoreInterface",
    "DuplicateError",
    "LedgerStorageInterface",
    "LoanStoreInterface",
    "SQLiteClient",
    "StorageError",
    "TransactionStoreInterface",
    "TransientStorageError",
    "UnitOfWork",
]
