"""
Loan endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .schemas import CreateLoanRequest, RejectRepaymentRequest, SignLoanRequest, loan_to_dict, parse_as_of
from .system import LendingSystem, get_current_user, get_lending_system, to_http_error
from ..exceptions import LendingError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_loan(
    request: CreateLoanRequest,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a new loan; the caller must be the lender"""
    if request.lender.email.strip().lower() != user:
        raise HTTPException(status_code=403, detail="Only the lender can record a loan")

    try:
        loan = system.loan_manager.create_loan(
            lender=request.lender.to_party(),
            borrower=request.borrower.to_party(),
            amount=request.amount,
            currency=request.currency,
            loan_date=request.loan_date,
            repayment_date=request.repayment_date,
            late_interest_rate=request.late_interest_rate,
            lender_iban=request.lender_iban,
            lender_payment_link=request.lender_payment_link,
            city=request.city,
            country=request.country,
            lender_signature=request.lender_signature,
            borrower_signature=request.borrower_signature,
            contract_text=request.contract_text
        )
    except LendingError as e:
        raise to_http_error(e)

    return {
        "loan": loan_to_dict(loan, loan.calculate(parse_as_of(None))),
        "message": "Loan recorded successfully"
    }


@router.get("")
async def list_loans(
    as_of: Optional[date] = None,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Loans where the caller is lender or borrower"""
    now = parse_as_of(as_of)
    loans = system.loan_manager.get_loans_for_participant(user)
    return {"loans": [loan_to_dict(loan, loan.calculate(now)) for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    as_of: Optional[date] = None,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Loan details with the amount due"""
    try:
        loan = system.loan_manager.get_loan_for_actor(loan_id, user)
    except LendingError as e:
        raise to_http_error(e)
    return loan_to_dict(loan, loan.calculate(parse_as_of(as_of)))


@router.get("/{loan_id}/due")
async def get_amount_due(
    loan_id: str,
    as_of: Optional[date] = None,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Lateness, late interest and total due as of a day"""
    try:
        loan = system.loan_manager.get_loan_for_actor(loan_id, user)
    except LendingError as e:
        raise to_http_error(e)
    return {
        "loan_id": loan.id,
        "currency": loan.currency,
        **loan.calculate(parse_as_of(as_of)).to_dict(loan.currency)
    }


@router.get("/{loan_id}/contract")
async def get_contract(
    loan_id: str,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Stored contract text with signatures"""
    try:
        loan = system.loan_manager.get_loan_for_actor(loan_id, user)
    except LendingError as e:
        raise to_http_error(e)
    return {
        "loan_id": loan.id,
        "contract_text": loan.contract_text,
        "lender_signature": loan.lender_signature,
        "borrower_signature": loan.borrower_signature,
        "city": loan.city,
        "country": loan.country,
        "signed_date": loan.signed_date.isoformat() if loan.signed_date else None
    }


@router.post("/{loan_id}/sign")
def sign_loan(
    loan_id: str,
    request: SignLoanRequest,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower counter-signature; the contract is drafted from the signed loan"""
    try:
        loan = system.loan_manager.sign_as_borrower(
            loan_id, user, request.signature,
            city=request.city,
            country=request.country,
            civility=request.civility,
            birth_date=request.birth_date,
            birth_place=request.birth_place,
            address=request.address
        )
    except LendingError as e:
        raise to_http_error(e)
    return loan_to_dict(loan)


@router.post("/{loan_id}/claim-repayment")
async def claim_repayment(
    loan_id: str,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower declares the loan repaid"""
    try:
        loan = system.loan_manager.claim_repayment(loan_id, user)
    except LendingError as e:
        raise to_http_error(e)
    return loan_to_dict(loan)


@router.post("/{loan_id}/mark-paid")
async def mark_paid(
    loan_id: str,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender confirms the loan is settled"""
    try:
        loan = system.loan_manager.mark_paid(loan_id, user)
    except LendingError as e:
        raise to_http_error(e)
    return loan_to_dict(loan)


@router.post("/{loan_id}/reject-repayment")
async def reject_repayment(
    loan_id: str,
    request: RejectRepaymentRequest,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender disputes a repayment claim; the loan becomes active again"""
    try:
        loan = system.loan_manager.reject_repayment(loan_id, user, reason=request.reason)
    except LendingError as e:
        raise to_http_error(e)
    return loan_to_dict(loan)


@router.get("/{loan_id}/history")
async def get_loan_history(
    loan_id: str,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Audit events recorded for the loan, oldest first"""
    try:
        loan = system.loan_manager.get_loan_for_actor(loan_id, user)
    except LendingError as e:
        raise to_http_error(e)
    if system.audit_trail is None:
        return {"loan_id": loan.id, "events": []}
    events = system.audit_trail.get_events_for_entity("loan", loan.id)
    return {"loan_id": loan.id, "events": [event.to_dict() for event in events]}
