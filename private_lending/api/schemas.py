"""
Pydantic schemas for API requests and responses
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..calculator import CalculationResult, local_now
from ..loans import Loan, Party


class PartyModel(BaseModel):
    name: str
    email: str
    civility: Optional[str] = Field(None, description="M. or Mme")
    birth_date: Optional[date] = None
    birth_place: Optional[str] = None
    address: Optional[str] = None

    def to_party(self) -> Party:
        return Party(
            name=self.name,
            email=self.email,
            civility=self.civility,
            birth_date=self.birth_date,
            birth_place=self.birth_place,
            address=self.address
        )


class CreateLoanRequest(BaseModel):
    lender: PartyModel
    borrower: PartyModel
    amount: str = Field(..., description="Amount as typed, e.g. \"1000\", \"1 000,50\"")
    currency: str = Field(..., description="Currency code (EUR, USD, XAF, ...)")
    loan_date: date
    repayment_date: date
    late_interest_rate: Optional[str] = Field(None, description="Annual percentage as string")
    lender_iban: Optional[str] = None
    lender_payment_link: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    lender_signature: Optional[str] = None
    borrower_signature: Optional[str] = None
    contract_text: Optional[str] = None


class SignLoanRequest(BaseModel):
    signature: str
    city: Optional[str] = None
    country: Optional[str] = None
    civility: Optional[str] = Field(None, description="M. or Mme")
    birth_date: Optional[date] = None
    birth_place: Optional[str] = None
    address: Optional[str] = None


class RejectRepaymentRequest(BaseModel):
    reason: Optional[str] = None


def loan_to_dict(loan: Loan, calc: Optional[CalculationResult] = None) -> Dict[str, Any]:
    result = {
        "id": loan.id,
        "lender": loan.lender.to_dict(),
        "borrower": loan.borrower.to_dict(),
        "amount": str(loan.amount),
        "currency": loan.currency,
        "loan_date": loan.loan_date.isoformat(),
        "repayment_date": loan.repayment_date.isoformat(),
        "late_interest_rate": str(loan.late_interest_rate),
        "status": loan.status.value,
        "lender_iban": loan.lender_iban,
        "lender_payment_link": loan.lender_payment_link,
        "city": loan.city,
        "country": loan.country,
        "signed_date": loan.signed_date.isoformat() if loan.signed_date else None,
        "has_contract": loan.contract_text is not None,
        "created_at": loan.created_at.isoformat()
    }
    if calc is not None:
        result["calculation"] = calc.to_dict(loan.currency)
    return result


def parse_as_of(value: Optional[date]) -> datetime:
    """Requested evaluation day, or the current local time"""
    if value is None:
        return local_now()
    return datetime(value.year, value.month, value.day).astimezone()
