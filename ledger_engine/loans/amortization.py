"""
Loan Amortization

Equated monthly installments (EMI):

    r   = annual_rate_percent / 12 / 100
    EMI = P * r * (1 + r)^n / ((1 + r)^n - 1)
    EMI = P / n                                  when r == 0

Each row: interest = remaining * r (rounded to cents), principal =
EMI - interest. The last row's principal is whatever is left, so the
closing balance is exactly 0.00 and principal + interest always equals
the row's payment.

Rates are whole-number percentages: 26 means 26% a year. A value like
0.26 is almost certainly 26% typed as a fraction and is rejected.
"""

import calendar
from datetime import date
from decimal import Decimal, localcontext
from typing import Optional

from ledger_engine.config import LoanSettings, get_settings
from ledger_engine.ledger.errors import ValidationError
from ledger_engine.models.loan import AmortizationSchedule, ScheduledPayment
from ledger_engine.models.money import CENT, ZERO, MoneyLike, to_money


def validate_annual_rate(
    annual_rate_percent: MoneyLike,
    settings: Optional[LoanSettings] = None,
) -> Decimal:
    """
    Check an annual rate given as a whole-number percentage.

    Raises:
        ValidationError: negative, above the configured maximum, or a
            non-zero value below the configured minimum (a fraction)
    """
    settings = settings or get_settings().loans
    rate = Decimal(str(annual_rate_percent))

    if not rate.is_finite() or rate < 0:
        raise ValidationError.single(
            "annual_rate_percent", f"Interest rate cannot be negative: {rate}"
        )
    if rate > settings.max_annual_rate_percent:
        raise ValidationError.single(
            "annual_rate_percent",
            f"Interest rate {rate}% is above the maximum of "
            f"{settings.max_annual_rate_percent}%",
        )
    if ZERO < rate < settings.min_nonzero_annual_rate_percent:
        as_percent = format((rate * 100).normalize(), "f")
        raise ValidationError.single(
            "annual_rate_percent",
            f"Interest rate {rate} looks like a fraction; "
            f"for {as_percent}% a year enter {as_percent}",
            issue_type="suspicious_value",
        )
    return rate


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    return Decimal(annual_rate_percent) / Decimal(12) / Decimal(100)


def calculate_emi(
    principal: MoneyLike,
    annual_rate_percent: MoneyLike,
    term_months: int,
) -> Decimal:
    """Monthly installment, rounded half-up to cents."""
    if term_months < 1:
        raise ValueError("term_months must be at least 1")

    principal = to_money(principal)
    rate = monthly_rate(Decimal(str(annual_rate_percent)))

    with localcontext() as ctx:
        ctx.prec = 40
        if rate == 0:
            emi = principal / Decimal(term_months)
        else:
            growth = (1 + rate) ** term_months
            emi = principal * rate * growth / (growth - 1)

    return to_money(emi)


def add_months(start: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def build_schedule(
    principal: MoneyLike,
    annual_rate_percent: MoneyLike,
    term_months: int,
    start_date: date,
) -> AmortizationSchedule:
    """
    Build the full amortization schedule.

    Installment k is due start_date + (k - 1) months.

    Raises:
        ValueError: the principal is too small to spread over the term
    """
    principal = to_money(principal)
    rate_percent = Decimal(str(annual_rate_percent))
    rate = monthly_rate(rate_percent)
    emi = calculate_emi(principal, rate_percent, term_months)

    if emi < CENT:
        raise ValueError(f"Principal {principal} is too small for {term_months} installments")

    rows = []
    remaining = principal
    for number in range(1, term_months + 1):
        interest = to_money(remaining * rate)
        if number < term_months:
            principal_part = emi - interest
            payment = emi
        else:
            principal_part = remaining
            payment = principal_part + interest

        if principal_part <= ZERO or principal_part > remaining:
            raise ValueError(
                f"Installment {number} would not reduce the balance; "
                f"term is too long for principal {principal}"
            )

        remaining = remaining - principal_part
        rows.append(ScheduledPayment(
            payment_number=number,
            due_date=add_months(start_date, number - 1),
            payment_amount=payment,
            principal_paid=principal_part,
            interest_paid=interest,
            remaining_balance=remaining,
        ))

    total_amount = sum((row.payment_amount for row in rows), ZERO)
    return AmortizationSchedule(
        principal=principal,
        annual_rate_percent=rate_percent,
        term_months=term_months,
        monthly_payment=emi,
        total_interest=total_amount - principal,
        total_amount=total_amount,
        rows=rows,
    )
