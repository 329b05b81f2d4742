"""
Loan Models

A loan is repaid in equated monthly installments (EMI). Each
installment splits into interest and principal; the remaining
balance falls with every row and reaches exactly zero on the last.

INTEREST RATE CONVENTION: annual_rate_percent is a whole-number
percentage per annum. 26 means 26% a year, NOT 0.26.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ledger_engine.models.money import ZERO
from ledger_engine.models.transaction import LedgerResult


class LoanPaymentStatus(str, Enum):
    """Status of a single installment."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    PARTIAL = "partial"


class LoanInput(BaseModel):
    """Payload for registering a loan."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    lender: Optional[str] = Field(default=None, max_length=100)
    principal: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount borrowed"
    )
    annual_rate_percent: Decimal = Field(
        ...,
        ge=0,
        description="Whole-number percent per annum (26 = 26%)"
    )
    term_months: int = Field(..., ge=1)
    start_date: date = Field(default_factory=date.today)


class ScheduledPayment(BaseModel):
    """One row of an amortization schedule."""

    payment_number: int = Field(..., ge=1)
    due_date: date
    payment_amount: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    remaining_balance: Decimal = Field(..., ge=0)

    @model_validator(mode='after')
    def validate_split(self) -> 'ScheduledPayment':
        if self.principal_paid + self.interest_paid != self.payment_amount:
            raise ValueError(
                f"Installment {self.payment_number}: principal + interest "
                f"must equal the payment amount"
            )
        return self


class AmortizationSchedule(BaseModel):
    """Full repayment plan for a loan."""

    principal: Decimal
    annual_rate_percent: Decimal
    term_months: int
    monthly_payment: Decimal
    total_interest: Decimal
    total_amount: Decimal
    rows: list[ScheduledPayment] = Field(default_factory=list)

    @property
    def final_balance(self) -> Decimal:
        return self.rows[-1].remaining_balance if self.rows else self.principal


class Loan(BaseModel):
    """A loan record."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    name: str
    lender: Optional[str] = None
    principal: Decimal
    annual_rate_percent: Decimal
    term_months: int
    start_date: date
    monthly_payment: Decimal
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class LoanPayment(ScheduledPayment):
    """
    A persisted installment.

    amount_paid tracks money actually paid against the installment;
    the scheduled split (principal_paid, interest_paid) never changes.
    """

    id: UUID = Field(default_factory=uuid4)
    loan_id: UUID
    status: LoanPaymentStatus = LoanPaymentStatus.PENDING
    amount_paid: Decimal = Field(default=ZERO, ge=0)
    paid_at: Optional[datetime] = None

    @property
    def amount_due(self) -> Decimal:
        return max(self.payment_amount - self.amount_paid, ZERO)


def status_for(
    payment: LoanPayment,
    amount_paid: Decimal,
    as_of: Optional[date] = None,
) -> LoanPaymentStatus:
    """Status an installment should have once amount_paid has been paid."""
    if amount_paid >= payment.payment_amount:
        return LoanPaymentStatus.PAID
    if amount_paid > ZERO:
        return LoanPaymentStatus.PARTIAL
    if as_of is not None and payment.due_date < as_of:
        return LoanPaymentStatus.OVERDUE
    return LoanPaymentStatus.PENDING


class LoanWithSchedule(BaseModel):
    """A loan together with its persisted installments."""

    loan: Loan
    payments: list[LoanPayment] = Field(default_factory=list)


class LoanPaymentResult(BaseModel):
    """Outcome of recording a payment against an installment."""

    payment: LoanPayment
    ledger: LedgerResult
