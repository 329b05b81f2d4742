"""
Audit Logger

DESIGN DECISION: Every balance-changing action is logged.
This provides:
1. Traceability of every balance change (before/after per account)
2. Debugging capability when reconciliation finds drift
3. Correlation of related events (a loan payment and its expense)

The audit logger writes structured log lines only. It is not a
persisted journal: the transaction log itself is the source of truth.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_engine.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and structlog for JSON output."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=numeric_level)
    logging.getLogger().setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class AuditLogger:
    """Central audit logging service."""

    def __init__(self, logger_name: str = "ledger_engine.audit"):
        self._logger = structlog.get_logger(logger_name)

    async def log(self, event: AuditEvent) -> None:
        """Emit an audit event as one structured log line."""
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    async def log_account_opened(
        self,
        owner_id: str,
        account,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log account creation."""
        await self.log(AuditEventBuilder.account_opened(owner_id, account, correlation_id))

    async def log_account_deactivated(self, owner_id: str, account) -> None:
        await self.log(AuditEventBuilder.account_deactivated(owner_id, account))

    async def log_default_wallet_created(self, owner_id: str, account) -> None:
        await self.log(AuditEventBuilder.default_wallet_created(owner_id, account))

    async def log_transaction_created(
        self,
        owner_id: str,
        result,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new transaction and the balances it moved."""
        await self.log(AuditEventBuilder.transaction_created(owner_id, result, correlation_id))

    async def log_transaction_edited(self, owner_id: str, before, result) -> None:
        """Log an edit with the old and new shape of the transaction."""
        await self.log(AuditEventBuilder.transaction_edited(owner_id, before, result))

    async def log_transaction_deleted(self, owner_id: str, result) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(owner_id, result))

    async def log_validation_failed(
        self,
        owner_id: str,
        operation: str,
        issues: list[dict],
        entity_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(
            AuditEventBuilder.validation_failed(owner_id, operation, issues, entity_id)
        )

    async def log_warnings(self, owner_id: str, operation: str, warnings: list[str]) -> None:
        """Non-blocking validation warnings go to the plain log."""
        for warning in warnings:
            self._logger.warning(
                "validation_warning",
                owner_id=owner_id,
                operation=operation,
                message=warning,
            )

    async def log_reconciliation(self, owner_id: str, report) -> None:
        """Log a reconciliation run, plus a drift event when balances disagreed."""
        await self.log(AuditEventBuilder.reconciliation_run(owner_id, report))
        if not report.is_consistent:
            await self.log(AuditEventBuilder.drift_detected(owner_id, report))

    async def log_loan_created(self, owner_id: str, loan) -> None:
        await self.log(AuditEventBuilder.loan_created(owner_id, loan))

    async def log_loan_payment_recorded(
        self,
        owner_id: str,
        payment,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.loan_payment_recorded(
                owner_id, payment, transaction_id, correlation_id
            )
        )

    async def log_overdue_marked(self, owner_id: str, count: int) -> None:
        await self.log(AuditEventBuilder.loan_payments_overdue(owner_id, count))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(
            AuditEventBuilder.system_error(
                error_type=error_type,
                error_message=error_message,
                details=details,
                correlation_id=correlation_id,
            )
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a caller action (e.g., recording a loan
    payment). Pass it through all subsequent operations.
    """
    return uuid4()
