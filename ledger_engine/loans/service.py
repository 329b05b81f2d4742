"""
Loan Service

Registers loans with their full amortization schedule and records
installment payments.

A payment is an ordinary expense from a bank account or wallet,
created through the ledger engine inside the same unit that moves the
installment to 'partial' or 'paid'. Editing or deleting that expense
later keeps the installment in step (see LedgerEngine).
"""

from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID

import structlog

from ledger_engine.audit import AuditLogger, create_correlation_id
from ledger_engine.config import LoanSettings, get_settings
from ledger_engine.ledger.engine import (
    LedgerEngine,
    _duplicate_to_validation,
    coerce_payload,
    retry_on_busy,
)
from ledger_engine.ledger.errors import NotFoundError, ValidationError
from ledger_engine.loans.amortization import build_schedule, validate_annual_rate
from ledger_engine.models.loan import (
    Loan,
    LoanInput,
    LoanPayment,
    LoanPaymentResult,
    LoanPaymentStatus,
    LoanWithSchedule,
    status_for,
)
from ledger_engine.models.money import ZERO, MoneyLike, format_money, to_money
from ledger_engine.models.transaction import TransactionInput, TransactionType
from ledger_engine.services.storage import DuplicateError, UnitOfWork


logger = structlog.get_logger(__name__)


class LoanService:
    """
    Loans and their installments.

    Usage:
        loans = LoanService(engine)
        created = await loans.create_loan(owner_id, {
            "name": "Personal loan",
            "principal": "160000",
            "annual_rate_percent": 26,
            "term_months": 24,
        })
        await loans.record_payment(owner_id, created.loan.id, 1,
                                   created.loan.monthly_payment, checking.id)
    """

    def __init__(
        self,
        engine: LedgerEngine,
        audit: Optional[AuditLogger] = None,
        settings: Optional[LoanSettings] = None,
    ):
        self._engine = engine
        self._storage = engine.storage
        self._audit = audit or AuditLogger()
        self._settings = settings or get_settings().loans
        self.retry_attempts = engine.retry_attempts

    async def _owned_loan(self, uow: UnitOfWork, owner_id: str, loan_id: UUID) -> Loan:
        loan = await uow.loans.get_loan(loan_id)
        if loan is None or loan.owner_id != owner_id:
            raise NotFoundError("loan", loan_id)
        return loan

    async def create_loan(
        self,
        owner_id: str,
        payload: Union[LoanInput, dict],
    ) -> LoanWithSchedule:
        """
        Register a loan and persist its full schedule.

        Raises:
            ValidationError: bad payload, rate out of bounds (or given as
                a fraction), or a term the principal cannot cover
        """
        payload = coerce_payload(LoanInput, payload)
        rate = validate_annual_rate(payload.annual_rate_percent, self._settings)

        if payload.term_months > self._settings.max_term_months:
            raise ValidationError.single(
                "term_months",
                f"Term of {payload.term_months} months exceeds the maximum of "
                f"{self._settings.max_term_months}",
            )

        try:
            schedule = build_schedule(
                payload.principal, rate, payload.term_months, payload.start_date
            )
        except ValueError as e:
            raise ValidationError.single("principal", str(e)) from e

        loan = Loan(
            owner_id=owner_id,
            name=payload.name,
            lender=payload.lender,
            principal=schedule.principal,
            annual_rate_percent=rate,
            term_months=payload.term_months,
            start_date=payload.start_date,
            monthly_payment=schedule.monthly_payment,
        )
        payments = [
            LoanPayment(loan_id=loan.id, **row.model_dump())
            for row in schedule.rows
        ]

        await self._insert_loan(loan, payments)
        await self._audit.log_loan_created(owner_id, loan)
        return LoanWithSchedule(loan=loan, payments=payments)

    @retry_on_busy
    async def _insert_loan(self, loan: Loan, payments: list[LoanPayment]) -> None:
        async with self._storage.unit_of_work() as uow:
            await uow.loans.insert_loan(loan, payments)

    async def get_schedule(self, owner_id: str, loan_id: UUID) -> LoanWithSchedule:
        async with self._storage.unit_of_work(write=False) as uow:
            loan = await self._owned_loan(uow, owner_id, loan_id)
            payments = await uow.loans.get_payments(loan_id)
        return LoanWithSchedule(loan=loan, payments=payments)

    async def list_loans(self, owner_id: str) -> list[Loan]:
        async with self._storage.unit_of_work(write=False) as uow:
            return await uow.loans.list_loans(owner_id)

    async def record_payment(
        self,
        owner_id: str,
        loan_id: UUID,
        payment_number: int,
        amount: MoneyLike,
        source_account_id: UUID,
        paid_at: Optional[datetime] = None,
        category_id: Optional[str] = None,
    ) -> LoanPaymentResult:
        """
        Pay (part of) an installment from an account.

        Creates an expense on the source account and updates the
        installment, in one unit.

        Raises:
            NotFoundError: unknown loan, installment or account
            InactiveAccountError: the source account is deactivated
            ValidationError: non-positive amount, the installment is
                already paid, or the amount exceeds what is still due
        """
        try:
            amount = to_money(amount)
        except ValueError as e:
            raise ValidationError.single("amount", str(e)) from e
        if amount <= ZERO:
            raise ValidationError.single("amount", "Payment amount must be positive")

        correlation_id = create_correlation_id()
        result = await self._record_payment(
            owner_id,
            loan_id,
            payment_number,
            amount,
            source_account_id,
            paid_at or datetime.utcnow(),
            category_id,
        )

        await self._audit.log_transaction_created(owner_id, result.ledger, correlation_id)
        await self._audit.log_loan_payment_recorded(
            owner_id, result.payment, result.ledger.transaction.id, correlation_id
        )
        return result

    @retry_on_busy
    async def _record_payment(
        self,
        owner_id: str,
        loan_id: UUID,
        payment_number: int,
        amount,
        source_account_id: UUID,
        paid_at: datetime,
        category_id: Optional[str],
    ) -> LoanPaymentResult:
        try:
            async with self._engine.locks.hold([source_account_id]):
                async with self._storage.unit_of_work() as uow:
                    loan = await self._owned_loan(uow, owner_id, loan_id)
                    payment = await uow.loans.get_payment_by_number(loan_id, payment_number)
                    if payment is None:
                        raise NotFoundError(f"loan installment #{payment_number} of", loan_id)

                    if payment.status == LoanPaymentStatus.PAID:
                        raise ValidationError.single(
                            "payment_number",
                            f"Installment {payment_number} is already paid",
                            issue_type="not_allowed",
                        )
                    if amount > payment.amount_due:
                        raise ValidationError.single(
                            "amount",
                            f"Payment of {format_money(amount)} exceeds the "
                            f"{format_money(payment.amount_due)} still due",
                        )

                    ledger = await self._engine.create_in_unit(
                        uow,
                        owner_id,
                        TransactionInput(
                            type=TransactionType.EXPENSE,
                            amount=amount,
                            category_id=category_id,
                            source_account_id=source_account_id,
                            occurred_at=paid_at,
                            title=f"{loan.name}: installment {payment_number}",
                        ),
                        loan_payment_id=payment.id,
                    )

                    amount_paid = payment.amount_paid + amount
                    updated = payment.model_copy(update={
                        "amount_paid": amount_paid,
                        "status": status_for(payment, amount_paid),
                        "paid_at": paid_at,
                    })
                    await uow.loans.update_payment(updated)
                    return LoanPaymentResult(payment=updated, ledger=ledger)
        except DuplicateError as e:
            raise _duplicate_to_validation(e) from e

    async def mark_overdue(
        self,
        owner_id: str,
        as_of: Optional[date] = None,
    ) -> list[LoanPayment]:
        """
        Flag unpaid installments whose due date has passed.

        Partially paid installments keep their 'partial' status.
        Returns the installments that changed.
        """
        changed = await self._mark_overdue(owner_id, as_of or date.today())
        await self._audit.log_overdue_marked(owner_id, len(changed))
        return changed

    @retry_on_busy
    async def _mark_overdue(self, owner_id: str, as_of: date) -> list[LoanPayment]:
        changed = []
        async with self._storage.unit_of_work() as uow:
            for payment in await uow.loans.list_unpaid_due_before(owner_id, as_of):
                status = status_for(payment, payment.amount_paid, as_of=as_of)
                if status != payment.status:
                    updated = payment.model_copy(update={"status": status})
                    await uow.loans.update_payment(updated)
                    changed.append(updated)
        return changed
