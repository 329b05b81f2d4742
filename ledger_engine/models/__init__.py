"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the system must conform to these schemas.
"""

from ledger_engine.models.account import (
    ASSET_KINDS,
    Account,
    AccountBalance,
    AccountInput,
    AccountKind,
)
from ledger_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledger_engine.models.loan import (
    AmortizationSchedule,
    Loan,
    LoanInput,
    LoanPayment,
    LoanPaymentResult,
    LoanPaymentStatus,
    LoanWithSchedule,
    ScheduledPayment,
    status_for,
)
from ledger_engine.models.money import CENT, ZERO, format_money, to_money
from ledger_engine.models.reconciliation import (
    AccountReconciliation,
    ReconciliationReport,
    UnexplainedTransaction,
)
from ledger_engine.models.transaction import (
    SLOT_RULES,
    LedgerResult,
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
    slot_violations,
)
from ledger_engine.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Money
    "CENT",
    "ZERO",
    "format_money",
    "to_money",
    # Account models
    "ASSET_KINDS",
    "Account",
    "AccountBalance",
    "AccountInput",
    "AccountKind",
    # Transaction models
    "SLOT_RULES",
    "LedgerResult",
    "Transaction",
    "TransactionInput",
    "TransactionStatus",
    "TransactionType",
    "slot_violations",
    # Loan models
    "AmortizationSchedule",
    "Loan",
    "LoanInput",
    "LoanPayment",
    "LoanPaymentResult",
    "LoanPaymentStatus",
    "LoanWithSchedule",
    "ScheduledPayment",
    "status_for",
    # Reconciliation models
    "AccountReconciliation",
    "ReconciliationReport",
    "UnexplainedTransaction",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
