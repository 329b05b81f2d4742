"""Integration tests for the ledger engine against a temporary SQLite file."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_engine.ledger import InactiveAccountError, NotFoundError, ValidationError
from ledger_engine.models import AccountKind, TransactionStatus, TransactionType
from ledger_engine.services.storage import StorageError

from tests.conftest import OTHER_OWNER, OWNER


class TestAccounts:
    """Opening, deactivating and the default wallet."""

    @pytest.mark.asyncio
    async def test_opening_balance_becomes_a_transaction(self, ledger, wallet):
        assert wallet.balance == Decimal("500.00")

        transactions = await ledger.engine.list_transactions(OWNER, account_id=wallet.id)
        assert len(transactions) == 1
        assert transactions[0].type == TransactionType.OPENING_BALANCE
        assert transactions[0].amount == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_zero_opening_balance_records_nothing(self, ledger, credit_card):
        assert credit_card.balance == Decimal("0.00")
        assert await ledger.engine.list_transactions(OWNER, account_id=credit_card.id) == []

    @pytest.mark.asyncio
    async def test_duplicate_active_name_rejected(self, ledger, wallet):
        with pytest.raises(ValidationError, match="already exists"):
            await ledger.engine.open_account(OWNER, {"name": "wallet", "kind": "wallet"})

    @pytest.mark.asyncio
    async def test_name_reusable_after_deactivation(self, ledger, wallet):
        await ledger.engine.deactivate_account(OWNER, wallet.id)
        reopened = await ledger.engine.open_account(OWNER, {"name": "Wallet", "kind": "wallet"})
        assert reopened.id != wallet.id

    @pytest.mark.asyncio
    async def test_same_name_allowed_for_other_owner(self, ledger, wallet):
        other = await ledger.engine.open_account(OTHER_OWNER, {"name": "Wallet", "kind": "wallet"})
        assert other.owner_id == OTHER_OWNER

    @pytest.mark.asyncio
    async def test_invalid_account_payload(self, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.engine.open_account(OWNER, {"name": "", "kind": "piggy-bank"})
        fields = {issue.field for issue in exc_info.value.issues}
        assert {"name", "kind"} <= fields
        assert all(d["severity"] == "error" for d in exc_info.value.to_dicts())

    @pytest.mark.asyncio
    async def test_ensure_default_wallet_is_idempotent(self, ledger):
        first = await ledger.engine.ensure_default_wallet(OWNER)
        second = await ledger.engine.ensure_default_wallet(OWNER)

        assert first.id == second.id
        assert first.name == "Cash Wallet"
        assert first.institution == "Cash"
        assert first.kind == AccountKind.WALLET
        assert first.is_default_wallet is True

        accounts = await ledger.engine.list_accounts(OWNER)
        assert [a.id for a in accounts if a.is_default_wallet] == [first.id]

    @pytest.mark.asyncio
    async def test_concurrent_ensure_default_wallet_creates_one(self, ledger):
        wallets = await asyncio.gather(*[
            ledger.engine.ensure_default_wallet(OWNER) for _ in range(5)
        ])
        assert len({w.id for w in wallets}) == 1

    @pytest.mark.asyncio
    async def test_deactivated_default_wallet_is_replaced(self, ledger):
        old = await ledger.engine.ensure_default_wallet(OWNER)
        await ledger.engine.deactivate_account(OWNER, old.id)

        new = await ledger.engine.ensure_default_wallet(OWNER)

        assert new.id != old.id
        assert new.is_active is True
        assert new.is_default_wallet is True
        assert new.name == "Cash Wallet"
        assert (await ledger.engine.ensure_default_wallet(OWNER)).id == new.id

        await ledger.create_transaction(OWNER, {
            "type": "income",
            "amount": "40.00",
            "destination_account_id": new.id,
        })
        assert await ledger.engine.get_account_balance(new.id) == Decimal("40.00")

        everything = await ledger.engine.list_accounts(OWNER, include_inactive=True)
        assert old.id in {a.id for a in everything}

    @pytest.mark.asyncio
    async def test_default_wallet_name_avoids_taken_names(self, ledger):
        for name in ("Cash Wallet", "Cash Wallet (Default)"):
            await ledger.engine.open_account(OWNER, {"name": name, "kind": "wallet"})

        wallet = await ledger.engine.ensure_default_wallet(OWNER)

        assert wallet.name == "Cash Wallet (Default 2)"
        assert wallet.is_default_wallet is True
        assert (await ledger.engine.ensure_default_wallet(OWNER)).id == wallet.id

    @pytest.mark.asyncio
    async def test_deactivate_keeps_row_and_balance(self, ledger, wallet):
        deactivated = await ledger.engine.deactivate_account(OWNER, wallet.id)
        assert deactivated.is_active is False
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("500.00")

        active = await ledger.engine.list_accounts(OWNER)
        everything = await ledger.engine.list_accounts(OWNER, include_inactive=True)
        assert wallet.id not in {a.id for a in active}
        assert wallet.id in {a.id for a in everything}

    @pytest.mark.asyncio
    async def test_balance_of_other_owners_account_not_found(self, ledger, wallet):
        with pytest.raises(NotFoundError):
            await ledger.engine.get_account_balance(wallet.id, owner_id=OTHER_OWNER)


class TestCreateTransaction:
    """Creating transactions moves balances by their effect."""

    @pytest.mark.asyncio
    async def test_wallet_expense_scenario(self, ledger, wallet):
        result = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "200.00",
            "source_account_id": wallet.id,
            "title": "Groceries",
            "category_id": "groceries",
        })

        assert result.transaction.status == TransactionStatus.ACTIVE
        assert result.transaction.revision == 0
        balance = result.balance_of(wallet.id)
        assert balance.balance_before == Decimal("500.00")
        assert balance.balance_after == Decimal("300.00")
        assert await ledger.engine.get_account_balance(wallet.id, OWNER) == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_income_raises_balance(self, ledger, checking):
        await ledger.create_transaction(OWNER, {
            "type": "income",
            "amount": "2500.00",
            "destination_account_id": checking.id,
        })
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("3500.00")

    @pytest.mark.asyncio
    async def test_transfer_preserves_total(self, ledger, wallet, checking):
        result = await ledger.create_transaction(OWNER, {
            "type": "transfer",
            "amount": "300.00",
            "source_account_id": checking.id,
            "destination_account_id": wallet.id,
        })

        assert result.balance_of(checking.id).balance_after == Decimal("700.00")
        assert result.balance_of(wallet.id).balance_after == Decimal("800.00")
        assert sum(b.delta for b in result.balances) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_card_spend_and_payment(self, ledger, checking, credit_card):
        await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "400.00",
            "source_account_id": credit_card.id,
        })
        assert await ledger.engine.get_account_balance(credit_card.id) == Decimal("400.00")

        await ledger.create_transaction(OWNER, {
            "type": "transfer",
            "amount": "150.00",
            "source_account_id": checking.id,
            "destination_account_id": credit_card.id,
        })
        assert await ledger.engine.get_account_balance(credit_card.id) == Decimal("250.00")
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("850.00")

    @pytest.mark.asyncio
    async def test_income_into_card_rejected(self, ledger, credit_card):
        with pytest.raises(ValidationError, match="credit account"):
            await ledger.create_transaction(OWNER, {
                "type": "income",
                "amount": "10.00",
                "destination_account_id": credit_card.id,
            })
        assert await ledger.engine.get_account_balance(credit_card.id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_slot_violation_rejected_before_lookup(self, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.create_transaction(OWNER, {
                "type": "income",
                "amount": "10.00",
                "source_account_id": uuid4(),
                "destination_account_id": uuid4(),
            })
        assert exc_info.value.issues[0].field == "source_account_id"

    @pytest.mark.asyncio
    async def test_invalid_amount_rejected(self, ledger, wallet):
        with pytest.raises(ValidationError):
            await ledger.create_transaction(OWNER, {
                "type": "expense",
                "amount": "-5",
                "source_account_id": wallet.id,
            })

    @pytest.mark.asyncio
    async def test_unknown_account_not_found(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.create_transaction(OWNER, {
                "type": "expense",
                "amount": "5.00",
                "source_account_id": uuid4(),
            })

    @pytest.mark.asyncio
    async def test_other_owners_account_not_found(self, ledger, wallet):
        with pytest.raises(NotFoundError):
            await ledger.create_transaction(OTHER_OWNER, {
                "type": "expense",
                "amount": "5.00",
                "source_account_id": wallet.id,
            })
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_inactive_account_rejected(self, ledger, wallet):
        await ledger.engine.deactivate_account(OWNER, wallet.id)
        with pytest.raises(InactiveAccountError):
            await ledger.create_transaction(OWNER, {
                "type": "expense",
                "amount": "5.00",
                "source_account_id": wallet.id,
            })

    @pytest.mark.asyncio
    async def test_second_opening_balance_rejected(self, ledger, wallet):
        with pytest.raises(ValidationError, match="already has an opening balance"):
            await ledger.create_transaction(OWNER, {
                "type": "opening_balance",
                "amount": "50.00",
                "destination_account_id": wallet.id,
            })

    @pytest.mark.asyncio
    async def test_future_date_is_only_a_warning(self, ledger, wallet):
        result = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "5.00",
            "source_account_id": wallet.id,
            "occurred_at": datetime.utcnow() + timedelta(days=60),
        })
        assert result.transaction.amount == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_creation_order_is_kept(self, ledger, wallet):
        for amount in ("1.00", "2.00", "3.00"):
            await ledger.create_transaction(OWNER, {
                "type": "expense",
                "amount": amount,
                "source_account_id": wallet.id,
            })
        transactions = await ledger.engine.list_transactions(OWNER, account_id=wallet.id)
        sequences = [t.sequence for t in transactions]
        assert sequences == sorted(sequences)
        assert [t.amount for t in transactions[1:]] == [
            Decimal("1.00"), Decimal("2.00"), Decimal("3.00")
        ]

    @pytest.mark.asyncio
    async def test_concurrent_expenses_do_not_lose_updates(self, ledger, checking):
        await asyncio.gather(*[
            ledger.create_transaction(OWNER, {
                "type": "expense",
                "amount": "10.00",
                "source_account_id": checking.id,
            })
            for _ in range(20)
        ])
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("800.00")


class TestEditTransaction:
    """Edits reverse the old effect and apply the new one atomically."""

    @pytest.mark.asyncio
    async def test_checking_edit_scenario(self, ledger, checking):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "200.00",
            "source_account_id": checking.id,
        })
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("800.00")

        edited = await ledger.edit_transaction(OWNER, created.transaction.id, {
            "type": "expense",
            "amount": "150.00",
            "source_account_id": checking.id,
        })
        assert edited.transaction.revision == 1
        assert edited.balance_of(checking.id).balance_after == Decimal("850.00")

        await ledger.delete_transaction(OWNER, created.transaction.id)
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_income_edit_scenario(self, ledger):
        cash = await ledger.engine.ensure_default_wallet(OWNER)
        created = await ledger.create_transaction(OWNER, {
            "type": "income",
            "amount": "500.00",
            "destination_account_id": cash.id,
        })
        assert created.balance_of(cash.id).balance_after == Decimal("500.00")

        edited = await ledger.edit_transaction(OWNER, created.transaction.id, {
            "type": "income",
            "amount": "300.00",
            "destination_account_id": cash.id,
        })
        assert edited.balance_of(cash.id).balance_after == Decimal("300.00")
        assert await ledger.engine.get_account_balance(cash.id) == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_identical_edit_changes_no_balance(self, ledger, wallet, checking):
        payload = {
            "type": "transfer",
            "amount": "75.00",
            "source_account_id": checking.id,
            "destination_account_id": wallet.id,
        }
        created = await ledger.create_transaction(OWNER, payload)
        edited = await ledger.edit_transaction(OWNER, created.transaction.id, payload)

        assert all(b.delta == Decimal("0.00") for b in edited.balances)
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("925.00")
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("575.00")

    @pytest.mark.asyncio
    async def test_edit_moving_to_another_account(self, ledger, wallet, checking):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "100.00",
            "source_account_id": wallet.id,
        })
        edited = await ledger.edit_transaction(OWNER, created.transaction.id, {
            "type": "expense",
            "amount": "100.00",
            "source_account_id": checking.id,
        })

        assert {b.account_id for b in edited.balances} == {wallet.id, checking.id}
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("500.00")
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("900.00")

    @pytest.mark.asyncio
    async def test_edit_changing_type(self, ledger, wallet, checking):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "50.00",
            "source_account_id": wallet.id,
        })
        await ledger.edit_transaction(OWNER, created.transaction.id, {
            "type": "transfer",
            "amount": "50.00",
            "source_account_id": wallet.id,
            "destination_account_id": checking.id,
        })
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("450.00")
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("1050.00")

    @pytest.mark.asyncio
    async def test_failed_edit_leaves_everything_untouched(self, ledger, wallet, credit_card):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "100.00",
            "source_account_id": wallet.id,
        })
        with pytest.raises(ValidationError):
            await ledger.edit_transaction(OWNER, created.transaction.id, {
                "type": "income",
                "amount": "100.00",
                "destination_account_id": credit_card.id,
            })

        stored = await ledger.engine.get_transaction(OWNER, created.transaction.id)
        assert stored.revision == 0
        assert stored.type == TransactionType.EXPENSE
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("400.00")
        assert await ledger.engine.get_account_balance(credit_card.id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_edit_may_keep_inactive_account(self, ledger, wallet):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "100.00",
            "source_account_id": wallet.id,
        })
        await ledger.engine.deactivate_account(OWNER, wallet.id)

        edited = await ledger.edit_transaction(OWNER, created.transaction.id, {
            "type": "expense",
            "amount": "60.00",
            "source_account_id": wallet.id,
        })
        assert edited.balance_of(wallet.id).balance_after == Decimal("440.00")

    @pytest.mark.asyncio
    async def test_edit_cannot_add_inactive_account(self, ledger, wallet, checking):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "100.00",
            "source_account_id": checking.id,
        })
        await ledger.engine.deactivate_account(OWNER, wallet.id)

        with pytest.raises(InactiveAccountError):
            await ledger.edit_transaction(OWNER, created.transaction.id, {
                "type": "expense",
                "amount": "100.00",
                "source_account_id": wallet.id,
            })

    @pytest.mark.asyncio
    async def test_edit_missing_or_foreign_transaction(self, ledger, wallet):
        payload = {"type": "expense", "amount": "1.00", "source_account_id": wallet.id}
        with pytest.raises(NotFoundError):
            await ledger.edit_transaction(OWNER, uuid4(), payload)

        created = await ledger.create_transaction(OWNER, payload)
        with pytest.raises(NotFoundError):
            await ledger.edit_transaction(OTHER_OWNER, created.transaction.id, payload)

    @pytest.mark.asyncio
    async def test_edit_deleted_transaction_rejected(self, ledger, wallet):
        payload = {"type": "expense", "amount": "1.00", "source_account_id": wallet.id}
        created = await ledger.create_transaction(OWNER, payload)
        await ledger.delete_transaction(OWNER, created.transaction.id)

        with pytest.raises(ValidationError, match="deleted"):
            await ledger.edit_transaction(OWNER, created.transaction.id, payload)

    @pytest.mark.asyncio
    async def test_concurrent_edits_keep_balance_consistent(self, ledger, wallet, checking):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "100.00",
            "source_account_id": wallet.id,
        })
        await asyncio.gather(
            ledger.edit_transaction(OWNER, created.transaction.id, {
                "type": "expense",
                "amount": "100.00",
                "source_account_id": checking.id,
            }),
            ledger.edit_transaction(OWNER, created.transaction.id, {
                "type": "expense",
                "amount": "40.00",
                "source_account_id": wallet.id,
            }),
        )

        report = await ledger.reconciliation.check(OWNER)
        assert report.is_consistent
        stored = await ledger.engine.get_transaction(OWNER, created.transaction.id)
        assert stored.revision == 2


class TestDeleteTransaction:
    """Deletes reverse the effect and keep the row."""

    @pytest.mark.asyncio
    async def test_delete_restores_balances(self, ledger, wallet, checking):
        created = await ledger.create_transaction(OWNER, {
            "type": "transfer",
            "amount": "250.00",
            "source_account_id": checking.id,
            "destination_account_id": wallet.id,
        })
        result = await ledger.delete_transaction(OWNER, created.transaction.id)

        assert result.already_deleted is False
        assert result.transaction.status == TransactionStatus.DELETED
        assert result.transaction.deleted_at is not None
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("500.00")
        assert await ledger.engine.get_account_balance(checking.id) == Decimal("1000.00")

        stored = await ledger.engine.get_transaction(OWNER, created.transaction.id)
        assert stored.is_deleted

    @pytest.mark.asyncio
    async def test_repeated_delete_is_a_no_op(self, ledger, wallet):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "20.00",
            "source_account_id": wallet.id,
        })
        await ledger.delete_transaction(OWNER, created.transaction.id)
        again = await ledger.delete_transaction(OWNER, created.transaction.id)

        assert again.already_deleted is True
        assert again.balances == []
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_delete_on_inactive_account_allowed(self, ledger, wallet):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "20.00",
            "source_account_id": wallet.id,
        })
        await ledger.engine.deactivate_account(OWNER, wallet.id)
        await ledger.delete_transaction(OWNER, created.transaction.id)
        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_deleted_rows_hidden_unless_asked(self, ledger, wallet):
        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "20.00",
            "source_account_id": wallet.id,
        })
        await ledger.delete_transaction(OWNER, created.transaction.id)

        visible = await ledger.engine.list_transactions(OWNER)
        everything = await ledger.engine.list_transactions(OWNER, include_deleted=True)
        assert created.transaction.id not in {t.id for t in visible}
        assert created.transaction.id in {t.id for t in everything}

    @pytest.mark.asyncio
    async def test_delete_unknown_transaction(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.delete_transaction(OWNER, uuid4())


class TestAtomicity:
    """A failure inside the apply step rolls back the whole unit."""

    @pytest.mark.asyncio
    async def test_failure_after_balance_write_rolls_back(self, ledger, wallet, monkeypatch):
        from ledger_engine.services.storage.sqlite import SQLiteTransactionStore

        async def broken_insert(self, transaction):
            raise StorageError("disk full")

        reported = []

        async def record_error(**kwargs):
            reported.append(kwargs)

        monkeypatch.setattr(SQLiteTransactionStore, "insert", broken_insert)
        monkeypatch.setattr(ledger.audit, "log_error", record_error)

        with pytest.raises(StorageError):
            await ledger.create_transaction(OWNER, {
                "type": "expense",
                "amount": "200.00",
                "source_account_id": wallet.id,
            })

        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("500.00")
        assert reported[0]["error_message"] == "disk full"
        assert reported[0]["details"]["operation"] == "create_transaction"

    @pytest.mark.asyncio
    async def test_failure_during_edit_rolls_back(self, ledger, wallet, monkeypatch):
        from ledger_engine.services.storage.sqlite import SQLiteTransactionStore

        created = await ledger.create_transaction(OWNER, {
            "type": "expense",
            "amount": "200.00",
            "source_account_id": wallet.id,
        })

        async def broken_update(self, transaction):
            raise StorageError("disk full")

        monkeypatch.setattr(SQLiteTransactionStore, "update", broken_update)

        with pytest.raises(StorageError):
            await ledger.edit_transaction(OWNER, created.transaction.id, {
                "type": "expense",
                "amount": "50.00",
                "source_account_id": wallet.id,
            })

        assert await ledger.engine.get_account_balance(wallet.id) == Decimal("300.00")
        stored = await ledger.engine.get_transaction(OWNER, created.transaction.id)
        assert stored.amount == Decimal("200.00")
