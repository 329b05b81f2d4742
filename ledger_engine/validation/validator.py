"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type / account-slot combination
- Same-account transfers
- Needs nothing but the payload

STAGE 2 - SEMANTIC VALIDATION:
- Rules that depend on the referenced accounts (credit kind, etc.)
- One active opening balance per account
- Loan-linked transactions stay expenses
- Suspicious (but allowed) amounts and dates, as warnings

Existence, ownership and active checks are not validation issues:
the engine raises NotFoundError / InactiveAccountError for those
before the validator runs.

IMPORTANT: Validation NEVER silently fixes issues.
Errors block the operation, warnings are logged and let it proceed.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.models.account import Account, AccountInput
from ledger_engine.models.money import format_money
from ledger_engine.models.transaction import (
    Transaction,
    TransactionInput,
    TransactionType,
    slot_violations,
)
from ledger_engine.models.validation import ValidationIssue, ValidationResult
from ledger_engine.services.storage import UnitOfWork


class TransactionValidator:
    """
    Validates transaction and account payloads.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (needs the referenced accounts, and
             a unit of work for log-dependent rules)
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _validate_schema(
        self,
        payload: TransactionInput,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = [
            ValidationIssue(
                field=field,
                issue_type="not_allowed",
                message=message,
                suggested_fix="Set exactly the account slots this transaction type uses",
            )
            for field, message in slot_violations(
                payload.type,
                payload.source_account_id,
                payload.destination_account_id,
            )
        ]

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _validate_semantic(
        self,
        payload: TransactionInput,
        accounts: dict[UUID, Account],
        uow: Optional[UnitOfWork],
        editing: Optional[Transaction],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        destination = accounts.get(payload.destination_account_id)

        if (
            payload.type == TransactionType.INCOME
            and destination is not None
            and destination.is_debt
        ):
            issues.append(ValidationIssue(
                field="destination_account_id",
                issue_type="not_allowed",
                message=f"Income cannot be received into credit account '{destination.name}'",
                suggested_fix="Record a card payment as a transfer from a bank account",
            ))

        if (
            payload.type == TransactionType.OPENING_BALANCE
            and destination is not None
            and uow is not None
        ):
            existing = await uow.transactions.find_active_opening_balance(destination.id)
            if existing is not None and (editing is None or existing.id != editing.id):
                issues.append(ValidationIssue(
                    field="type",
                    issue_type="duplicate",
                    message=f"Account '{destination.name}' already has an opening balance",
                    suggested_fix="Edit the existing opening balance instead",
                ))

        if (
            editing is not None
            and editing.loan_payment_id is not None
            and payload.type != TransactionType.EXPENSE
        ):
            issues.append(ValidationIssue(
                field="type",
                issue_type="not_allowed",
                message="A loan payment must remain an expense",
                suggested_fix="Delete the payment and record it again instead",
            ))

        # Absurd amount check
        if payload.amount > self._settings.large_amount_warning:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({format_money(payload.amount)}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        # Future date check (with tolerance)
        occurred_at = payload.occurred_at
        now = (
            datetime.now(timezone.utc)
            if occurred_at.tzinfo is not None
            else datetime.utcnow()
        )
        tolerance = timedelta(days=self._settings.future_date_tolerance_days)
        if occurred_at > now + tolerance:
            issues.append(ValidationIssue(
                field="occurred_at",
                issue_type="future_date",
                message=f"Transaction date ({occurred_at.date()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate_schema(self, payload: TransactionInput) -> ValidationResult:
        """Stage 1 only. Lets callers reject a malformed payload before touching storage."""
        schema_valid, issues = self._validate_schema(payload)
        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=schema_valid,
            issues=issues,
        )

    async def validate(
        self,
        payload: TransactionInput,
        accounts: dict[UUID, Account],
        uow: Optional[UnitOfWork] = None,
        editing: Optional[Transaction] = None,
    ) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Args:
            payload: Transaction being created, or the replacement on an edit
            accounts: The referenced accounts, already loaded and checked
                for existence and ownership
            uow: Open unit of work, for rules that read the log
            editing: The stored transaction when validating an edit

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = self._validate_schema(payload)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = await self._validate_semantic(
                payload, accounts, uow, editing
            )
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )

    async def validate_account(
        self,
        owner_id: str,
        payload: AccountInput,
        uow: UnitOfWork,
    ) -> ValidationResult:
        """Check a new account against the owner's existing ones."""
        issues = []

        duplicate = await uow.accounts.find_active_by_name(owner_id, payload.name)
        if duplicate is not None:
            issues.append(ValidationIssue(
                field="name",
                issue_type="duplicate",
                message=f"An active account named '{duplicate.name}' already exists",
                suggested_fix="Choose a different name or deactivate the old account",
            ))

        if payload.opening_balance > self._settings.large_amount_warning:
            issues.append(ValidationIssue(
                field="opening_balance",
                issue_type="suspicious_value",
                message=(
                    f"Opening balance ({format_money(payload.opening_balance)}) "
                    f"seems unusually high"
                ),
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return ValidationResult(
            schema_valid=True,
            semantic_valid=is_valid,
            issues=issues,
        )

    def get_summary(self, result: ValidationResult) -> str:
        """One-line summary of the blocking issues, for exception messages."""
        if not result.has_errors:
            return "Validation passed"
        messages = [issue.message for issue in result.errors]
        if len(messages) == 1:
            return messages[0]
        return f"{len(messages)} validation errors: " + "; ".join(messages)
