"""Tests for the two-stage transaction validator."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_engine.config import LedgerSettings
from ledger_engine.models import Account, AccountKind, TransactionInput
from ledger_engine.validation import TransactionValidator


def account(kind: AccountKind, name: str = "Account") -> Account:
    return Account(owner_id="user-1", name=name, kind=kind)


@pytest.fixture
def validator():
    return TransactionValidator(LedgerSettings(
        large_amount_warning=Decimal("10000.00"),
        future_date_tolerance_days=7,
    ))


class TestSchemaStage:
    """Stage 1 needs nothing but the payload."""

    def test_valid_payload(self, validator):
        payload = TransactionInput(type="expense", amount="10", source_account_id=uuid4())
        result = validator.validate_schema(payload)
        assert result.schema_valid
        assert result.issues == []

    def test_every_slot_problem_reported(self, validator):
        payload = TransactionInput(type="transfer", amount="10")
        result = validator.validate_schema(payload)

        assert result.schema_valid is False
        assert [issue.field for issue in result.issues] == [
            "source_account_id", "destination_account_id"
        ]
        assert all(issue.suggested_fix for issue in result.issues)

    @pytest.mark.asyncio
    async def test_semantic_stage_skipped_when_schema_fails(self, validator):
        card = account(AccountKind.CREDIT)
        payload = TransactionInput(
            type="income",
            amount="10",
            source_account_id=uuid4(),
            destination_account_id=card.id,
        )
        result = await validator.validate(payload, {card.id: card})

        assert result.schema_valid is False
        assert result.semantic_valid is False
        # the credit-account rule did not run
        assert len(result.issues) == 1


class TestSemanticStage:
    """Stage 2 rules."""

    @pytest.mark.asyncio
    async def test_income_into_credit_is_an_error(self, validator):
        card = account(AccountKind.CREDIT, "ICICI Card")
        payload = TransactionInput(type="income", amount="10", destination_account_id=card.id)

        result = await validator.validate(payload, {card.id: card})

        assert result.has_errors
        assert "ICICI Card" in result.errors[0].message
        assert validator.get_summary(result) == result.errors[0].message

    @pytest.mark.asyncio
    async def test_large_amount_is_a_warning(self, validator):
        wallet = account(AccountKind.WALLET)
        payload = TransactionInput(type="expense", amount="50000", source_account_id=wallet.id)

        result = await validator.validate(payload, {wallet.id: wallet})

        assert result.is_valid
        assert len(result.warnings) == 1
        assert "unusually high" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_future_date_beyond_tolerance_warns(self, validator):
        wallet = account(AccountKind.WALLET)
        payload = TransactionInput(
            type="expense",
            amount="10",
            source_account_id=wallet.id,
            occurred_at=datetime.now(timezone.utc) + timedelta(days=30),
        )

        result = await validator.validate(payload, {wallet.id: wallet})

        assert result.is_valid
        assert [issue.issue_type for issue in result.issues] == ["future_date"]

    @pytest.mark.asyncio
    async def test_future_date_within_tolerance_is_fine(self, validator):
        wallet = account(AccountKind.WALLET)
        payload = TransactionInput(
            type="expense",
            amount="10",
            source_account_id=wallet.id,
            occurred_at=datetime.utcnow() + timedelta(days=2),
        )

        result = await validator.validate(payload, {wallet.id: wallet})
        assert result.issues == []

    def test_summary_of_several_errors(self, validator):
        result = validator.validate_schema(TransactionInput(type="transfer", amount="1"))
        summary = validator.get_summary(result)
        assert summary.startswith("2 validation errors")
