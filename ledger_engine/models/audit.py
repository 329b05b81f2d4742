"""
Audit Models for the Ledger Engine

Every balance-changing action produces an audit event. Events are
emitted as structured log lines; they are a trace for debugging and
support, not a persisted journal.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_OPENED = "account_opened"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    DEFAULT_WALLET_CREATED = "default_wallet_created"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_EDITED = "transaction_edited"
    TRANSACTION_DELETED = "transaction_deleted"
    VALIDATION_FAILED = "validation_failed"

    # Reconciliation
    RECONCILIATION_RUN = "reconciliation_run"
    DRIFT_DETECTED = "drift_detected"

    # Loans
    LOAN_CREATED = "loan_created"
    LOAN_PAYMENT_RECORDED = "loan_payment_recorded"
    LOAN_PAYMENTS_OVERDUE = "loan_payments_overdue"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    owner_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'loan')"
    )
    entity_id: Optional[UUID] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a loan payment and its expense)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


def _balance_details(balances) -> list[dict]:
    return [
        {
            "account_id": str(b.account_id),
            "name": b.name,
            "before": str(b.balance_before),
            "after": str(b.balance_after),
        }
        for b in balances
    ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(owner_id, result)
        event = AuditEventBuilder.drift_detected(owner_id, report)
    """

    @staticmethod
    def account_opened(owner_id: str, account, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_OPENED,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account.id,
            correlation_id=correlation_id,
            description=f"Account opened: {account.name} ({account.kind.value})",
            details={
                "name": account.name,
                "kind": account.kind.value,
                "institution": account.institution,
            },
        )

    @staticmethod
    def account_deactivated(owner_id: str, account) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DEACTIVATED,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account.id,
            description=f"Account deactivated: {account.name}",
            details={"balance": str(account.balance)},
        )

    @staticmethod
    def default_wallet_created(owner_id: str, account) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFAULT_WALLET_CREATED,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account.id,
            description=f"Default wallet created: {account.name}",
        )

    @staticmethod
    def transaction_created(owner_id: str, result, correlation_id: Optional[UUID] = None) -> AuditEvent:
        txn = result.transaction
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=txn.id,
            correlation_id=correlation_id,
            description=f"{txn.type.value} of {txn.amount} recorded",
            details={
                "type": txn.type.value,
                "amount": str(txn.amount),
                "balances": _balance_details(result.balances),
            },
        )

    @staticmethod
    def transaction_edited(owner_id: str, before, result) -> AuditEvent:
        txn = result.transaction
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_EDITED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=txn.id,
            description=f"Transaction edited (revision {txn.revision})",
            details={
                "before": {"type": before.type.value, "amount": str(before.amount)},
                "after": {"type": txn.type.value, "amount": str(txn.amount)},
                "revision": txn.revision,
                "balances": _balance_details(result.balances),
            },
        )

    @staticmethod
    def transaction_deleted(owner_id: str, result) -> AuditEvent:
        txn = result.transaction
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=txn.id,
            description=(
                "Delete repeated on an already deleted transaction"
                if result.already_deleted
                else f"{txn.type.value} of {txn.amount} deleted and reversed"
            ),
            details={
                "already_deleted": result.already_deleted,
                "balances": _balance_details(result.balances),
            },
        )

    @staticmethod
    def validation_failed(
        owner_id: str,
        operation: str,
        issues: list[dict],
        entity_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=entity_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def reconciliation_run(owner_id: str, report) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_RUN,
            owner_id=owner_id,
            entity_type="owner",
            description=(
                f"Reconciliation {'applied' if report.applied else 'checked'}: "
                f"{len(report.drifted_accounts)} of {len(report.accounts)} accounts drifted"
            ),
            details={
                "applied": report.applied,
                "transactions_replayed": report.transactions_replayed,
                "unexplained": len(report.unexplained),
            },
        )

    @staticmethod
    def drift_detected(owner_id: str, report) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DRIFT_DETECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="owner",
            description=f"Balance drift on {len(report.drifted_accounts)} accounts",
            details={
                "accounts": [
                    {
                        "account_id": str(a.account_id),
                        "name": a.name,
                        "stored": str(a.balance_before),
                        "recomputed": str(a.balance_after),
                    }
                    for a in report.drifted_accounts
                ],
                "unexplained": [str(u.transaction_id) for u in report.unexplained],
            },
        )

    @staticmethod
    def loan_created(owner_id: str, loan) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_CREATED,
            owner_id=owner_id,
            entity_type="loan",
            entity_id=loan.id,
            description=f"Loan created: {loan.name}",
            details={
                "principal": str(loan.principal),
                "annual_rate_percent": str(loan.annual_rate_percent),
                "term_months": loan.term_months,
                "monthly_payment": str(loan.monthly_payment),
            },
        )

    @staticmethod
    def loan_payment_recorded(
        owner_id: str,
        payment,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_PAYMENT_RECORDED,
            owner_id=owner_id,
            entity_type="loan_payment",
            entity_id=payment.id,
            correlation_id=correlation_id,
            description=f"Installment {payment.payment_number} is now {payment.status.value}",
            details={
                "loan_id": str(payment.loan_id),
                "amount_paid": str(payment.amount_paid),
                "transaction_id": str(transaction_id),
            },
        )

    @staticmethod
    def loan_payments_overdue(owner_id: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_PAYMENTS_OVERDUE,
            severity=AuditSeverity.WARNING if count else AuditSeverity.INFO,
            owner_id=owner_id,
            entity_type="loan_payment",
            description=f"{count} installments marked overdue",
            details={"count": count},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
