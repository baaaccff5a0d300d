"""
Due Amount Calculator Module

Computes outstanding balance, lateness and accrued late interest for a single
loan as of an injected "now". Late interest is simple daily accrual on the
principal over a fixed 365-day year, with no compounding.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .currency import quantize_amount
from .exceptions import InvalidDateError, InvalidInputError

DAYS_PER_YEAR = Decimal('365')
ZERO = Decimal('0')

DateLike = Union[date, datetime, str]


@dataclass(frozen=True)
class CalculationResult:
    """Derived view of a loan's obligation; never persisted"""
    days_late: int
    days_remaining: int
    interest_amount: Decimal
    total_due: Decimal
    is_overdue: bool
    daily_cost: Decimal

    def to_dict(self, currency: Optional[str] = None) -> dict:
        """Amounts are rounded for display when the loan currency is given"""
        def money(value: Decimal) -> str:
            return str(quantize_amount(value, currency) if currency else value)

        return {
            'days_late': self.days_late,
            'days_remaining': self.days_remaining,
            'interest_amount': money(self.interest_amount),
            'total_due': money(self.total_due),
            'is_overdue': self.is_overdue,
            'daily_cost': money(self.daily_cost)
        }


def local_now() -> datetime:
    """Current time in the local timezone; lateness is counted in local calendar days"""
    return datetime.now().astimezone()


def to_date(value: DateLike) -> date:
    """
    Truncate a date, datetime or ISO string to its calendar date.

    Raises:
        InvalidDateError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
        except ValueError:
            raise InvalidDateError(f"Invalid date: {value!r}")
    raise InvalidDateError(f"Invalid date: {value!r}")


def _to_decimal(value, name: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidInputError(f"Invalid {name}: {value!r}")
    if not result.is_finite():
        raise InvalidInputError(f"Invalid {name}: {value!r}")
    return result


def daily_cost(amount: Decimal, annual_rate: Decimal) -> Decimal:
    """Late interest accrued per overdue day"""
    return amount * (annual_rate / Decimal('100')) / DAYS_PER_YEAR


def compute_due(amount, repayment_date: DateLike, status: str,
                annual_rate=ZERO, now: DateLike = None) -> CalculationResult:
    """
    Compute what is owed on a loan as of ``now``.

    Both ``repayment_date`` and ``now`` are compared at day granularity, so
    lateness changes exactly at midnight rather than at the time of day the
    loan was recorded. A paid loan never carries a penalty.

    Args:
        amount: Principal, positive
        repayment_date: Contractual due date
        status: Loan status value ("paid" freezes the result at the principal)
        annual_rate: Annual late-interest percentage, e.g. 12 for 12%
        now: Current date or datetime, injected by the caller

    Returns:
        CalculationResult

    Raises:
        InvalidDateError: If either date is malformed
        InvalidInputError: If amount or rate is not a number
    """
    if now is None:
        raise InvalidDateError("Current date must be provided")

    amount = _to_decimal(amount, "amount")
    annual_rate = _to_decimal(annual_rate if annual_rate is not None else ZERO, "annual rate")
    status = getattr(status, 'value', status)
    cost = daily_cost(amount, annual_rate)

    if status == 'paid':
        return CalculationResult(
            days_late=0,
            days_remaining=0,
            interest_amount=ZERO,
            total_due=amount,
            is_overdue=False,
            daily_cost=cost
        )

    diff_days = (to_date(now) - to_date(repayment_date)).days

    is_overdue = diff_days > 0
    days_late = diff_days if is_overdue else 0
    days_remaining = 0 if is_overdue else abs(diff_days)
    interest = cost * days_late if is_overdue else ZERO

    return CalculationResult(
        days_late=days_late,
        days_remaining=days_remaining,
        interest_amount=interest,
        total_due=amount + interest,
        is_overdue=is_overdue,
        daily_cost=cost
    )


def compute_loan_due(loan, now: DateLike) -> CalculationResult:
    """compute_due over a Loan record"""
    return compute_due(
        loan.amount,
        loan.repayment_date,
        loan.status,
        loan.late_interest_rate,
        now
    )
