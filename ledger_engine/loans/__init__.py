"""Loans: amortization schedules and installment payments."""

from ledger_engine.loans.amortization import (
    add_months,
    build_schedule,
    calculate_emi,
    monthly_rate,
    validate_annual_rate,
)
from ledger_engine.loans.service import LoanService

__all__ = [
    "LoanService",
    "add_months",
    "build_schedule",
    "calculate_emi",
    "monthly_rate",
    "validate_annual_rate",
]
