"""Tests for the SQLite storage backend."""

import sqlite3
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

from ledger_engine.models import Account, AccountKind, Transaction, TransactionInput
from ledger_engine.services.storage import (
    DuplicateError,
    SQLiteClient,
    StorageError,
    TransientStorageError,
)
from ledger_engine.services.storage.sqlite import translate_error


@pytest_asyncio.fixture
async def client(tmp_path: Path) -> SQLiteClient:
    storage = SQLiteClient(tmp_path / "nested" / "store.db", busy_timeout_ms=1000)
    await storage.initialize()
    yield storage
    await storage.close()


def make_account(name: str = "Wallet", owner_id: str = "user-1") -> Account:
    return Account(owner_id=owner_id, name=name, kind=AccountKind.WALLET)


class TestInitialize:
    """Schema creation."""

    @pytest.mark.asyncio
    async def test_creates_parent_directory_and_wal(self, client):
        assert client.db_path.parent.exists()

        async with client.unit_of_work(write=False) as uow:
            cursor = await uow.accounts._conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
        assert row[0].upper() == "WAL"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, client):
        async with client.unit_of_work() as uow:
            await uow.accounts.insert(make_account())

        await client.initialize()

        async with client.unit_of_work(write=False) as uow:
            assert len(await uow.accounts.list_for_owner("user-1")) == 1


class TestUnitOfWork:
    """Commit and rollback."""

    @pytest.mark.asyncio
    async def test_commit_persists(self, client):
        account = make_account()
        async with client.unit_of_work() as uow:
            await uow.accounts.insert(account)
            await uow.accounts.set_balance(account.id, Decimal("12.30"))

        async with client.unit_of_work(write=False) as uow:
            stored = await uow.accounts.get(account.id)
        assert stored.balance == Decimal("12.30")
        assert stored.name == "Wallet"

    @pytest.mark.asyncio
    async def test_exception_rolls_back(self, client):
        account = make_account()
        with pytest.raises(RuntimeError):
            async with client.unit_of_work() as uow:
                await uow.accounts.insert(account)
                raise RuntimeError("boom")

        async with client.unit_of_work(write=False) as uow:
            assert await uow.accounts.get(account.id) is None

    @pytest.mark.asyncio
    async def test_duplicate_active_name_is_duplicate_error(self, client):
        async with client.unit_of_work() as uow:
            await uow.accounts.insert(make_account("Wallet"))

        with pytest.raises(DuplicateError):
            async with client.unit_of_work() as uow:
                await uow.accounts.insert(make_account("WALLET"))

    @pytest.mark.asyncio
    async def test_set_balance_on_missing_account(self, client):
        with pytest.raises(StorageError):
            async with client.unit_of_work() as uow:
                await uow.accounts.set_balance(make_account().id, Decimal("1.00"))

    @pytest.mark.asyncio
    async def test_connection_closed_when_setup_fails(self, client, monkeypatch):
        closed = []

        class BrokenConnection:
            row_factory = None

            async def execute(self, sql, *args):
                raise sqlite3.OperationalError("disk I/O error")

            async def close(self):
                closed.append(True)

        async def broken_connect(*args, **kwargs):
            return BrokenConnection()

        monkeypatch.setattr(
            "ledger_engine.services.storage.sqlite.aiosqlite.connect", broken_connect
        )

        with pytest.raises(StorageError):
            async with client.unit_of_work():
                pass
        assert closed == [True]


class TestTransactionStore:
    """Transaction rows."""

    @pytest.mark.asyncio
    async def test_insert_assigns_sequence_and_round_trips_money(self, client):
        account = make_account()
        async with client.unit_of_work() as uow:
            await uow.accounts.insert(account)
            first = await uow.transactions.insert(Transaction.from_input(
                "user-1",
                TransactionInput(type="income", amount="0.10", destination_account_id=account.id),
            ))
            second = await uow.transactions.insert(Transaction.from_input(
                "user-1",
                TransactionInput(
                    type="expense",
                    amount="19.99",
                    source_account_id=account.id,
                    notes=["split with Priya"],
                ),
            ))

        assert first.sequence < second.sequence

        async with client.unit_of_work(write=False) as uow:
            stored = await uow.transactions.get(second.id)
            listed = await uow.transactions.list_for_owner("user-1", account_id=account.id)
        assert stored.amount == Decimal("19.99")
        assert stored.notes == ["split with Priya"]
        assert [t.id for t in listed] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_listing_pages(self, client):
        account = make_account()
        async with client.unit_of_work() as uow:
            await uow.accounts.insert(account)
            for amount in ("1.00", "2.00", "3.00"):
                await uow.transactions.insert(Transaction.from_input(
                    "user-1",
                    TransactionInput(type="expense", amount=amount, source_account_id=account.id),
                ))

        async with client.unit_of_work(write=False) as uow:
            page = await uow.transactions.list_for_owner("user-1", limit=2, offset=1)
        assert [t.amount for t in page] == [Decimal("2.00"), Decimal("3.00")]


class TestTranslateError:
    """sqlite3 errors map onto the storage taxonomy."""

    def test_unique_violation(self):
        error = sqlite3.IntegrityError("UNIQUE constraint failed: accounts.id")
        assert isinstance(translate_error(error), DuplicateError)

    def test_locked_database_is_transient(self):
        error = sqlite3.OperationalError("database is locked")
        assert isinstance(translate_error(error), TransientStorageError)

    def test_other_errors(self):
        translated = translate_error(sqlite3.OperationalError("no such table: accounts"))
        assert type(translated) is StorageError

        translated = translate_error(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))
        assert type(translated) is StorageError
