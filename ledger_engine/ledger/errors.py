"""
Ledger exceptions.

Validation, not-found and inactive-account errors are raised before
any balance is touched. ConsistencyError is only raised on request
(assert_consistent); reconciliation itself reports drift instead.
"""

from typing import Optional
from uuid import UUID

from ledger_engine.models.validation import ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Input rejected by the validator. Carries every issue found."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []

    @classmethod
    def single(cls, field: str, message: str, issue_type: str = "invalid_value") -> "ValidationError":
        return cls(
            message,
            [ValidationIssue(field=field, issue_type=issue_type, message=message)],
        )

    def to_dicts(self) -> list[dict]:
        return [issue.model_dump() for issue in self.issues]


class NotFoundError(LedgerError):
    """Entity missing, or not owned by the caller."""

    def __init__(self, entity_type: str, entity_id: UUID):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InactiveAccountError(LedgerError):
    """A new reference to a deactivated account."""

    def __init__(self, account_id: UUID, name: str = ""):
        label = f"{name} ({account_id})" if name else str(account_id)
        super().__init__(f"Account {label} is inactive")
        self.account_id = account_id


class ConsistencyError(LedgerError):
    """Stored balances disagree with the transaction log."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report
