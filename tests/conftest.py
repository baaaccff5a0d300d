"""
Shared fixtures for the private lending test suite
"""

import time
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from private_lending.audit import AuditTrail
from private_lending.loans import Loan, LoanManager, LoanStatus, Party
from private_lending.storage import InMemoryStorage


LENDER = Party(name="Christian Kamdem", email="lender@example.com", civility="M.",
               birth_date=date(1985, 4, 12), birth_place="Douala", address="12 rue de la Paix, Paris")
BORROWER = Party(name="Marie Dupont", email="borrower@example.com", civility="Mme")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def loan_manager(storage, audit_trail):
    return LoanManager(storage, audit_trail)


@pytest.fixture
def local_timezone(monkeypatch):
    """Switch the process timezone for one test"""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")

    def _switch(name: str) -> None:
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield _switch
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def make_loan():
    """Build a Loan record without going through the manager"""
    def _make(amount="1000", currency="EUR", status=LoanStatus.ACTIVE,
              repayment_date=date(2026, 3, 17), rate="12", lender=LENDER, borrower=BORROWER):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        return Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            lender=lender,
            borrower=borrower,
            amount=Decimal(amount),
            currency=currency,
            loan_date=date(2026, 1, 1),
            repayment_date=repayment_date,
            late_interest_rate=Decimal(rate),
            status=status
        )
    return _make
