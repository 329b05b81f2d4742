"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the ledger logic free of SQL
2. Run every store of one operation inside a single atomic unit of work
3. Swap SQLite for another transactional database later

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ledger, reconciliation and loans need.

Stores never decide balances. They persist what the ledger engine
computed, inside the unit of work the engine opened.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger_engine.models.account import Account
from ledger_engine.models.loan import Loan, LoanPayment
from ledger_engine.models.transaction import Transaction


class AccountStoreInterface(ABC):
    """Persistence for accounts and their balance column."""

    @abstractmethod
    async def get(self, account_id: UUID) -> Optional[Account]:
        """
        Retrieve an account by its ID.

        Returns:
            The account if found (active or not), None otherwise
        """
        pass

    @abstractmethod
    async def list_for_owner(
        self,
        owner_id: str,
        include_inactive: bool = False,
    ) -> list[Account]:
        """List an owner's accounts in creation order."""
        pass

    @abstractmethod
    async def insert(self, account: Account) -> Account:
        """
        Insert a new account.

        Raises:
            DuplicateError: an active account with the same name, or a
                second default wallet, already exists for the owner
        """
        pass

    @abstractmethod
    async def set_balance(self, account_id: UUID, balance: Decimal) -> None:
        """Overwrite the stored balance. Only the ledger engine calls this."""
        pass

    @abstractmethod
    async def set_active(self, account_id: UUID, is_active: bool) -> None:
        pass

    @abstractmethod
    async def find_active_by_name(self, owner_id: str, name: str) -> Optional[Account]:
        """Case-insensitive lookup among the owner's active accounts."""
        pass

    @abstractmethod
    async def get_default_wallet(self, owner_id: str) -> Optional[Account]:
        """The owner's active default wallet, if any."""
        pass


class TransactionStoreInterface(ABC):
    """Persistence for the transaction log."""

    @abstractmethod
    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID, including deleted ones.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def insert(self, transaction: Transaction) -> Transaction:
        """
        Append a transaction to the log.

        Returns:
            The transaction with its creation sequence assigned
        """
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> None:
        """
        Replace the stored row for transaction.id.

        Raises:
            StorageError: if no row was updated
        """
        pass

    @abstractmethod
    async def list_for_owner(
        self,
        owner_id: str,
        include_deleted: bool = False,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        List an owner's transactions in creation order.

        Args:
            owner_id: Owner whose log is read
            include_deleted: Also return deleted rows
            account_id: Only rows whose source or destination is this account
            limit: Maximum number of results
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def find_active_opening_balance(self, account_id: UUID) -> Optional[Transaction]:
        pass


class LoanStoreInterface(ABC):
    """Persistence for loans and their installments."""

    @abstractmethod
    async def insert_loan(self, loan: Loan, payments: list[LoanPayment]) -> None:
        """Insert a loan together with its full schedule."""
        pass

    @abstractmethod
    async def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        pass

    @abstractmethod
    async def list_loans(self, owner_id: str) -> list[Loan]:
        pass

    @abstractmethod
    async def get_payments(self, loan_id: UUID) -> list[LoanPayment]:
        """Installments of a loan ordered by payment number."""
        pass

    @abstractmethod
    async def get_payment(self, payment_id: UUID) -> Optional[LoanPayment]:
        pass

    @abstractmethod
    async def get_payment_by_number(
        self,
        loan_id: UUID,
        payment_number: int,
    ) -> Optional[LoanPayment]:
        pass

    @abstractmethod
    async def update_payment(self, payment: LoanPayment) -> None:
        """Persist status, amount_paid and paid_at of an installment."""
        pass

    @abstractmethod
    async def list_unpaid_due_before(self, owner_id: str, as_of: date) -> list[LoanPayment]:
        """Pending or partial installments of active loans due before as_of."""
        pass


class UnitOfWork(ABC):
    """
    One atomic unit over all stores.

    Everything written through the stores of one unit commits together,
    or not at all.
    """

    @property
    @abstractmethod
    def accounts(self) -> AccountStoreInterface:
        pass

    @property
    @abstractmethod
    def transactions(self) -> TransactionStoreInterface:
        pass

    @property
    @abstractmethod
    def loans(self) -> LoanStoreInterface:
        pass


class LedgerStorageInterface(ABC):
    """Entry point to a storage backend."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the schema if it does not exist. Safe to call repeatedly."""
        pass

    @abstractmethod
    def unit_of_work(self, write: bool = True) -> AbstractAsyncContextManager[UnitOfWork]:
        """
        Open an atomic unit of work.

        Usage:
            async with storage.unit_of_work() as uow:
                account = await uow.accounts.get(account_id)

        Commits when the block exits normally, rolls back on any exception.

        Raises:
            TransientStorageError: the database stayed locked
            DuplicateError: a uniqueness rule was violated
            StorageError: any other backend failure
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class TransientStorageError(StorageError):
    """The backend was busy; the whole operation may be retried."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass
