"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the storage backend because:
1. The ledger is one user's account set in one database
2. Real transactions: reversal, reapply and the log row commit together
3. BEGIN IMMEDIATE gives database-level writer exclusion
4. No server to run

Every unit of work opens its own connection, so in-memory databases
are not supported (each connection would see a different database).

Money is stored as TEXT and read back into Decimal, never as REAL.
"""

import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Optional, Union
from uuid import UUID

import aiosqlite
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger_engine.models.account import Account
from ledger_engine.models.loan import Loan, LoanPayment, LoanPaymentStatus
from ledger_engine.models.transaction import Transaction, TransactionStatus, TransactionType
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


logger = structlog.get_logger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        name TEXT NOT NULL,
        kind TEXT NOT NULL,
        institution TEXT,
        balance TEXT NOT NULL DEFAULT '0.00',
        is_active INTEGER NOT NULL DEFAULT 1,
        is_default_wallet INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_accounts_owner ON accounts(owner_id)",
    # An owner cannot hold two active accounts with the same name
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_owner_active_name
        ON accounts(owner_id, lower(name)) WHERE is_active = 1
    """,
    # One active default wallet per owner; a deactivated one frees the slot
    "DROP INDEX IF EXISTS ux_accounts_default_wallet",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_active_default_wallet
        ON accounts(owner_id) WHERE is_default_wallet = 1 AND is_active = 1
    """,
    """
    CREATE TABLE IF NOT EXISTS loans (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        name TEXT NOT NULL,
        lender TEXT,
        principal TEXT NOT NULL,
        annual_rate_percent TEXT NOT NULL,
        term_months INTEGER NOT NULL,
        start_date TEXT NOT NULL,
        monthly_payment TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_loans_owner ON loans(owner_id)",
    """
    CREATE TABLE IF NOT EXISTS loan_payments (
        id TEXT PRIMARY KEY,
        loan_id TEXT NOT NULL REFERENCES loans(id),
        payment_number INTEGER NOT NULL,
        due_date TEXT NOT NULL,
        payment_amount TEXT NOT NULL,
        principal_paid TEXT NOT NULL,
        interest_paid TEXT NOT NULL,
        remaining_balance TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        amount_paid TEXT NOT NULL DEFAULT '0.00',
        paid_at TEXT,
        UNIQUE (loan_id, payment_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        sequence INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        owner_id TEXT NOT NULL,
        type TEXT NOT NULL,
        amount TEXT NOT NULL,
        category_id TEXT,
        source_account_id TEXT REFERENCES accounts(id),
        destination_account_id TEXT REFERENCES accounts(id),
        occurred_at TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        notes TEXT NOT NULL DEFAULT '[]',
        status TEXT NOT NULL DEFAULT 'active',
        revision INTEGER NOT NULL DEFAULT 0,
        loan_payment_id TEXT REFERENCES loan_payments(id),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_owner ON transactions(owner_id, sequence)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_source ON transactions(source_account_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_destination ON transactions(destination_account_id)",
    # At most one active opening balance per account
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_transactions_opening_balance
        ON transactions(destination_account_id)
        WHERE type = 'opening_balance' AND status = 'active'
    """,
]


def _uuid(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def _timestamp(value: Optional[Union[datetime, date]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def translate_error(error: sqlite3.Error) -> StorageError:
    """Map a sqlite3 error onto the storage exception taxonomy."""
    message = str(error)
    if isinstance(error, sqlite3.IntegrityError) and "UNIQUE" in message.upper():
        return DuplicateError(message)
    if isinstance(error, sqlite3.OperationalError):
        lowered = message.lower()
        if "locked" in lowered or "busy" in lowered:
            return TransientStorageError(message)
    return StorageError(message)


class SQLiteAccountStore(AccountStoreInterface):
    """Account store bound to one unit-of-work connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            kind=row["kind"],
            institution=row["institution"],
            balance=Decimal(row["balance"]),
            is_active=bool(row["is_active"]),
            is_default_wallet=bool(row["is_default_wallet"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get(self, account_id: UUID) -> Optional[Account]:
        cursor = await self._conn.execute(
            "SELECT * FROM accounts WHERE id = ?", (str(account_id),)
        )
        row = await cursor.fetchone()
        return self._row_to_account(row) if row else None

    async def list_for_owner(
        self,
        owner_id: str,
        include_inactive: bool = False,
    ) -> list[Account]:
        sql = "SELECT * FROM accounts WHERE owner_id = ?"
        if not include_inactive:
            sql += " AND is_active = 1"
        sql += " ORDER BY created_at, rowid"
        cursor = await self._conn.execute(sql, (owner_id,))
        return [self._row_to_account(row) for row in await cursor.fetchall()]

    async def insert(self, account: Account) -> Account:
        await self._conn.execute(
            """
            INSERT INTO accounts (
                id, owner_id, name, kind, institution, balance,
                is_active, is_default_wallet, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(account.id),
                account.owner_id,
                account.name,
                account.kind.value,
                account.institution,
                str(account.balance),
                int(account.is_active),
                int(account.is_default_wallet),
                _timestamp(account.created_at),
                _timestamp(account.updated_at),
            ),
        )
        return account

    async def set_balance(self, account_id: UUID, balance: Decimal) -> None:
        cursor = await self._conn.execute(
            "UPDATE accounts SET balance = ?, updated_at = ? WHERE id = ?",
            (str(balance), _timestamp(datetime.utcnow()), str(account_id)),
        )
        if cursor.rowcount != 1:
            raise StorageError(f"Account not found: {account_id}")

    async def set_active(self, account_id: UUID, is_active: bool) -> None:
        cursor = await self._conn.execute(
            "UPDATE accounts SET is_active = ?, updated_at = ? WHERE id = ?",
            (int(is_active), _timestamp(datetime.utcnow()), str(account_id)),
        )
        if cursor.rowcount != 1:
            raise StorageError(f"Account not found: {account_id}")

    async def find_active_by_name(self, owner_id: str, name: str) -> Optional[Account]:
        cursor = await self._conn.execute(
            """
            SELECT * FROM accounts
            WHERE owner_id = ? AND lower(name) = lower(?) AND is_active = 1
            """,
            (owner_id, name.strip()),
        )
        row = await cursor.fetchone()
        return self._row_to_account(row) if row else None

    async def get_default_wallet(self, owner_id: str) -> Optional[Account]:
        cursor = await self._conn.execute(
            """
            SELECT * FROM accounts
            WHERE owner_id = ? AND is_default_wallet = 1 AND is_active = 1
            """,
            (owner_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_account(row) if row else None


class SQLiteTransactionStore(TransactionStoreInterface):
    """Transaction log bound to one unit-of-work connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            owner_id=row["owner_id"],
            type=TransactionType(row["type"]),
            amount=Decimal(row["amount"]),
            category_id=row["category_id"],
            source_account_id=row["source_account_id"],
            destination_account_id=row["destination_account_id"],
            occurred_at=row["occurred_at"],
            title=row["title"],
            notes=json.loads(row["notes"]) if row["notes"] else [],
            status=TransactionStatus(row["status"]),
            revision=row["revision"],
            sequence=row["sequence"],
            loan_payment_id=row["loan_payment_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        cursor = await self._conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (str(transaction_id),)
        )
        row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None

    async def insert(self, transaction: Transaction) -> Transaction:
        cursor = await self._conn.execute(
            """
            INSERT INTO transactions (
                id, owner_id, type, amount, category_id,
                source_account_id, destination_account_id, occurred_at,
                title, notes, status, revision, loan_payment_id,
                created_at, updated_at, deleted_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(transaction.id),
                transaction.owner_id,
                transaction.type.value,
                str(transaction.amount),
                transaction.category_id,
                _uuid(transaction.source_account_id),
                _uuid(transaction.destination_account_id),
                _timestamp(transaction.occurred_at),
                transaction.title,
                json.dumps(transaction.notes),
                transaction.status.value,
                transaction.revision,
                _uuid(transaction.loan_payment_id),
                _timestamp(transaction.created_at),
                _timestamp(transaction.updated_at),
                _timestamp(transaction.deleted_at),
            ),
        )
        return transaction.model_copy(update={"sequence": cursor.lastrowid})

    async def update(self, transaction: Transaction) -> None:
        cursor = await self._conn.execute(
            """
            UPDATE transactions SET
                type = ?, amount = ?, category_id = ?,
                source_account_id = ?, destination_account_id = ?,
                occurred_at = ?, title = ?, notes = ?, status = ?,
                revision = ?, updated_at = ?, deleted_at = ?
            WHERE id = ?
            """,
            (
                transaction.type.value,
                str(transaction.amount),
                transaction.category_id,
                _uuid(transaction.source_account_id),
                _uuid(transaction.destination_account_id),
                _timestamp(transaction.occurred_at),
                transaction.title,
                json.dumps(transaction.notes),
                transaction.status.value,
                transaction.revision,
                _timestamp(transaction.updated_at),
                _timestamp(transaction.deleted_at),
                str(transaction.id),
            ),
        )
        if cursor.rowcount != 1:
            raise StorageError(f"Transaction not found: {transaction.id}")

    async def list_for_owner(
        self,
        owner_id: str,
        include_deleted: bool = False,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        sql = "SELECT * FROM transactions WHERE owner_id = ?"
        params: list = [owner_id]

        if not include_deleted:
            sql += " AND status = ?"
            params.append(TransactionStatus.ACTIVE.value)

        if account_id is not None:
            sql += " AND (source_account_id = ? OR destination_account_id = ?)"
            params.extend([str(account_id), str(account_id)])

        sql += " ORDER BY sequence"

        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(offset)

        cursor = await self._conn.execute(sql, params)
        return [self._row_to_transaction(row) for row in await cursor.fetchall()]

    async def find_active_opening_balance(self, account_id: UUID) -> Optional[Transaction]:
        cursor = await self._conn.execute(
            """
            SELECT * FROM transactions
            WHERE destination_account_id = ? AND type = ? AND status = ?
            """,
            (
                str(account_id),
                TransactionType.OPENING_BALANCE.value,
                TransactionStatus.ACTIVE.value,
            ),
        )
        row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None


class SQLiteLoanStore(LoanStoreInterface):
    """Loan and installment store bound to one unit-of-work connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    @staticmethod
    def _row_to_loan(row: sqlite3.Row) -> Loan:
        return Loan(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            lender=row["lender"],
            principal=Decimal(row["principal"]),
            annual_rate_percent=Decimal(row["annual_rate_percent"]),
            term_months=row["term_months"],
            start_date=row["start_date"],
            monthly_payment=Decimal(row["monthly_payment"]),
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_payment(row: sqlite3.Row) -> LoanPayment:
        return LoanPayment(
            id=row["id"],
            loan_id=row["loan_id"],
            payment_number=row["payment_number"],
            due_date=row["due_date"],
            payment_amount=Decimal(row["payment_amount"]),
            principal_paid=Decimal(row["principal_paid"]),
            interest_paid=Decimal(row["interest_paid"]),
            remaining_balance=Decimal(row["remaining_balance"]),
            status=LoanPaymentStatus(row["status"]),
            amount_paid=Decimal(row["amount_paid"]),
            paid_at=row["paid_at"],
        )

    async def insert_loan(self, loan: Loan, payments: list[LoanPayment]) -> None:
        await self._conn.execute(
            """
            INSERT INTO loans (
                id, owner_id, name, lender, principal, annual_rate_percent,
                term_months, start_date, monthly_payment, is_active, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(loan.id),
                loan.owner_id,
                loan.name,
                loan.lender,
                str(loan.principal),
                str(loan.annual_rate_percent),
                loan.term_months,
                _timestamp(loan.start_date),
                str(loan.monthly_payment),
                int(loan.is_active),
                _timestamp(loan.created_at),
            ),
        )
        await self._conn.executemany(
            """
            INSERT INTO loan_payments (
                id, loan_id, payment_number, due_date, payment_amount,
                principal_paid, interest_paid, remaining_balance,
                status, amount_paid, paid_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    str(p.id),
                    str(p.loan_id),
                    p.payment_number,
                    _timestamp(p.due_date),
                    str(p.payment_amount),
                    str(p.principal_paid),
                    str(p.interest_paid),
                    str(p.remaining_balance),
                    p.status.value,
                    str(p.amount_paid),
                    _timestamp(p.paid_at),
                )
                for p in payments
            ],
        )

    async def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        cursor = await self._conn.execute(
            "SELECT * FROM loans WHERE id = ?", (str(loan_id),)
        )
        row = await cursor.fetchone()
        return self._row_to_loan(row) if row else None

    async def list_loans(self, owner_id: str) -> list[Loan]:
        cursor = await self._conn.execute(
            "SELECT * FROM loans WHERE owner_id = ? ORDER BY created_at, rowid",
            (owner_id,),
        )
        return [self._row_to_loan(row) for row in await cursor.fetchall()]

    async def get_payments(self, loan_id: UUID) -> list[LoanPayment]:
        cursor = await self._conn.execute(
            "SELECT * FROM loan_payments WHERE loan_id = ? ORDER BY payment_number",
            (str(loan_id),),
        )
        return [self._row_to_payment(row) for row in await cursor.fetchall()]

    async def get_payment(self, payment_id: UUID) -> Optional[LoanPayment]:
        cursor = await self._conn.execute(
            "SELECT * FROM loan_payments WHERE id = ?", (str(payment_id),)
        )
        row = await cursor.fetchone()
        return self._row_to_payment(row) if row else None

    async def get_payment_by_number(
        self,
        loan_id: UUID,
        payment_number: int,
    ) -> Optional[LoanPayment]:
        cursor = await self._conn.execute(
            "SELECT * FROM loan_payments WHERE loan_id = ? AND payment_number = ?",
            (str(loan_id), payment_number),
        )
        row = await cursor.fetchone()
        return self._row_to_payment(row) if row else None

    async def update_payment(self, payment: LoanPayment) -> None:
        cursor = await self._conn.execute(
            """
            UPDATE loan_payments SET status = ?, amount_paid = ?, paid_at = ?
            WHERE id = ?
            """,
            (
                payment.status.value,
                str(payment.amount_paid),
                _timestamp(payment.paid_at),
                str(payment.id),
            ),
        )
        if cursor.rowcount != 1:
            raise StorageError(f"Loan payment not found: {payment.id}")

    async def list_unpaid_due_before(self, owner_id: str, as_of: date) -> list[LoanPayment]:
        cursor = await self._conn.execute(
            """
            SELECT p.* FROM loan_payments p
            JOIN loans l ON l.id = p.loan_id
            WHERE l.owner_id = ? AND l.is_active = 1
              AND p.status IN (?, ?) AND p.due_date < ?
            ORDER BY p.due_date, p.payment_number
            """,
            (
                owner_id,
                LoanPaymentStatus.PENDING.value,
                LoanPaymentStatus.PARTIAL.value,
                as_of.isoformat(),
            ),
        )
        return [self._row_to_payment(row) for row in await cursor.fetchall()]


class SQLiteUnitOfWork(UnitOfWork):
    """All three stores sharing one connection and one transaction."""

    def __init__(self, conn: aiosqlite.Connection):
        self._accounts = SQLiteAccountStore(conn)
        self._transactions = SQLiteTransactionStore(conn)
        self._loans = SQLiteLoanStore(conn)

    @property
    def accounts(self) -> SQLiteAccountStore:
        return self._accounts

    @property
    def transactions(self) -> SQLiteTransactionStore:
        return self._transactions

    @property
    def loans(self) -> SQLiteLoanStore:
        return self._loans


class SQLiteClient(LedgerStorageInterface):
    """
    SQLite storage backend.

    Usage:
        client = SQLiteClient("ledger.db")
        await client.initialize()

        async with client.unit_of_work() as uow:
            await uow.accounts.insert(account)
    """

    def __init__(self, db_path: Union[Path, str], busy_timeout_ms: int = 30000):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms

    async def _connect(self) -> aiosqlite.Connection:
        # Autocommit mode: transactions are opened explicitly below
        conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            await conn.execute("PRAGMA foreign_keys=ON")
        except BaseException:
            await conn.close()
            raise
        return conn

    @retry(
        retry=retry_if_exception_type(TransientStorageError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def initialize(self) -> None:
        """Create tables and indexes. Safe to call repeatedly."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = await self._connect()
        except sqlite3.Error as e:
            raise translate_error(e) from e

        try:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("BEGIN IMMEDIATE")
            for statement in SCHEMA:
                await conn.execute(statement)
            await conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                await conn.execute("ROLLBACK")
            raise translate_error(e) from e
        finally:
            await conn.close()

        logger.info("sqlite_initialized", db_path=str(self.db_path))

    @asynccontextmanager
    async def unit_of_work(self, write: bool = True) -> AsyncIterator[SQLiteUnitOfWork]:
        """
        Open a connection and a transaction.

        Write units take the database write lock up front (BEGIN
        IMMEDIATE) so two writers never interleave. Read units use a
        deferred transaction, which still gives a consistent snapshot.
        """
        try:
            conn = await self._connect()
        except sqlite3.Error as e:
            raise translate_error(e) from e

        try:
            await conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield SQLiteUnitOfWork(conn)
            await conn.execute("COMMIT")
        except BaseException as e:
            if conn.in_transaction:
                try:
                    await conn.execute("ROLLBACK")
                except sqlite3.Error:
                    logger.exception("sqlite_rollback_failed", db_path=str(self.db_path))
            if isinstance(e, sqlite3.Error):
                raise translate_error(e) from e
            raise
        finally:
            await conn.close()

    async def close(self) -> None:
        """Nothing to release: connections live only as long as their unit."""
        return None
