"""
Loan Module

Handles loan creation and validation, the signature/repayment state machine
with per-actor authorization, and persistence of loan records.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, date
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from enum import Enum
import re
import uuid

from .storage import StorageInterface, StorageRecord, to_storable
from .audit import AuditTrail, AuditEventType
from .calculator import CalculationResult, compute_loan_due, local_now, to_date
from .currency import decimal_from_string, normalize_currency_code
from .exceptions import (
    AccessDeniedError,
    InvalidInputError,
    LoanNotFoundError,
    StateTransitionViolation,
)
from .logging_config import get_logger, log_action

logger = get_logger("lending.loans")

if TYPE_CHECKING:
    from .contracts import ContractAssembler

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING_BORROWER = "pending_borrower"    # Awaiting borrower counter-signature
    ACTIVE = "active"                        # Signed, outstanding
    REPAYMENT_PENDING = "repayment_pending"  # Borrower claims payment, lender to confirm
    PAID = "paid"                            # Settled, terminal


OUTSTANDING_STATUSES = (LoanStatus.ACTIVE, LoanStatus.REPAYMENT_PENDING)


class Role(Enum):
    """Party allowed to perform a transition"""
    LENDER = "lender"
    BORROWER = "borrower"


# (from, to) -> role allowed to perform it
TRANSITIONS: Dict[tuple, Role] = {
    (LoanStatus.PENDING_BORROWER, LoanStatus.ACTIVE): Role.BORROWER,
    (LoanStatus.ACTIVE, LoanStatus.REPAYMENT_PENDING): Role.BORROWER,
    (LoanStatus.ACTIVE, LoanStatus.PAID): Role.LENDER,
    (LoanStatus.REPAYMENT_PENDING, LoanStatus.PAID): Role.LENDER,
    (LoanStatus.REPAYMENT_PENDING, LoanStatus.ACTIVE): Role.LENDER,
}


@dataclass(frozen=True)
class Party:
    """Civil details of lender or borrower, as printed on the contract"""
    name: str
    email: str
    civility: Optional[str] = None      # "M." or "Mme"
    birth_date: Optional[date] = None
    birth_place: Optional[str] = None
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'email': self.email,
            'civility': self.civility,
            'birth_date': self.birth_date.isoformat() if self.birth_date else None,
            'birth_place': self.birth_place,
            'address': self.address
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Party':
        return cls(
            name=data['name'],
            email=data['email'],
            civility=data.get('civility'),
            birth_date=date.fromisoformat(data['birth_date']) if data.get('birth_date') else None,
            birth_place=data.get('birth_place'),
            address=data.get('address')
        )


@dataclass
class Loan(StorageRecord):
    """A single private debt obligation between a lender and a borrower"""
    lender: Party
    borrower: Party
    amount: Decimal
    currency: str
    loan_date: date
    repayment_date: date
    late_interest_rate: Decimal = Decimal('0')
    status: LoanStatus = LoanStatus.PENDING_BORROWER

    # Repayment details printed in the contract
    lender_iban: Optional[str] = None
    lender_payment_link: Optional[str] = None

    # Contract metadata
    contract_text: Optional[str] = None
    lender_signature: Optional[str] = None
    borrower_signature: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    signed_date: Optional[date] = None

    @property
    def lender_name(self) -> str:
        return self.lender.name

    @property
    def borrower_name(self) -> str:
        return self.borrower.name

    @property
    def lender_email(self) -> str:
        return self.lender.email

    @property
    def borrower_email(self) -> str:
        return self.borrower.email

    @property
    def is_outstanding(self) -> bool:
        return self.status in OUTSTANDING_STATUSES

    def role_of(self, email: str) -> Optional[Role]:
        """Role of the given identity on this loan, or None for outsiders"""
        email = (email or "").strip().lower()
        if email and email == self.borrower.email.lower():
            return Role.BORROWER
        if email and email == self.lender.email.lower():
            return Role.LENDER
        return None

    def calculate(self, now) -> CalculationResult:
        """Due amount as of now"""
        return compute_loan_due(self, now)


def _to_decimal(value, label: str) -> Decimal:
    """Decimal from a number or a user-typed string ("1 000,50", "1,000.50")"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        return decimal_from_string(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"Invalid {label}: {value!r}")


def _parse_amount(value) -> Decimal:
    amount = _to_decimal(value, "amount")
    if not amount.is_finite() or amount <= 0:
        raise InvalidInputError(f"Amount must be positive, got {value!r}")
    return amount


def _parse_rate(value) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal('0')
    rate = _to_decimal(value, "late interest rate")
    if not rate.is_finite() or rate < 0:
        raise InvalidInputError(f"Late interest rate must be non-negative, got {value!r}")
    return rate


def _validate_party(party: Party, role: str) -> Party:
    if not party.name or not party.name.strip():
        raise InvalidInputError(f"{role} name is required")
    email = (party.email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise InvalidInputError(f"Invalid {role} email: {party.email!r}")
    if party.civility not in (None, "M.", "Mme"):
        raise InvalidInputError(f"Invalid {role} civility: {party.civility!r}")
    return replace(party, name=party.name.strip(), email=email)


class LoanManager:
    """Creates loans, applies authorized transitions and serves reads"""

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None,
                 contract_assembler: Optional["ContractAssembler"] = None):
        self.storage = storage
        self.audit = audit_trail
        self.contract_assembler = contract_assembler
        self.table_name = "loans"

    def create_loan(
        self,
        lender: Party,
        borrower: Party,
        amount,
        currency: str,
        loan_date,
        repayment_date,
        late_interest_rate=None,
        lender_iban: Optional[str] = None,
        lender_payment_link: Optional[str] = None,
        city: Optional[str] = None,
        country: Optional[str] = None,
        lender_signature: Optional[str] = None,
        borrower_signature: Optional[str] = None,
        contract_text: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Loan:
        """
        Create and persist a new loan.

        The loan starts as pending_borrower, unless both parties already
        signed in person, in which case it starts active and its contract is
        drafted right away. Otherwise the contract is drafted when the
        borrower signs.

        Raises:
            InvalidInputError: If amount, rate, dates or parties are malformed
        """
        lender = _validate_party(lender, "lender")
        borrower = _validate_party(borrower, "borrower")
        if lender.email == borrower.email:
            raise InvalidInputError("Lender and borrower must be different people")

        now = now or local_now()
        countersigned = bool(borrower_signature)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            lender=lender,
            borrower=borrower,
            amount=_parse_amount(amount),
            currency=normalize_currency_code(currency),
            loan_date=to_date(loan_date),
            repayment_date=to_date(repayment_date),
            late_interest_rate=_parse_rate(late_interest_rate),
            status=LoanStatus.ACTIVE if countersigned else LoanStatus.PENDING_BORROWER,
            lender_iban=lender_iban or None,
            lender_payment_link=lender_payment_link or None,
            contract_text=contract_text or None,
            lender_signature=lender_signature or None,
            borrower_signature=borrower_signature or None,
            city=city or None,
            country=country or None,
            signed_date=to_date(now) if countersigned else None
        )

        self._save_loan(loan)
        self._audit(AuditEventType.LOAN_CREATED, loan, lender.email, {
            'amount': loan.amount,
            'currency': loan.currency,
            'status': loan.status.value
        })
        log_action(
            logger, "info", f"Loan created: {loan.amount} {loan.currency}",
            user_id=lender.email, action="create_loan", loan_id=loan.id,
            extra={"borrower": borrower.email, "status": loan.status.value}
        )
        if countersigned:
            self._draft_contract(loan, lender.email)
        return loan

    # Reads

    def get_loan(self, loan_id: str) -> Loan:
        """Load a loan; raises LoanNotFoundError if absent"""
        data = self.storage.load(self.table_name, loan_id)
        if not data:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return self._loan_from_dict(data)

    def get_loan_for_actor(self, loan_id: str, actor_email: str) -> Loan:
        """Load a loan readable by the actor (lender or borrower only)"""
        loan = self.get_loan(loan_id)
        if loan.role_of(actor_email) is None:
            raise AccessDeniedError(f"{actor_email} is not a party to loan {loan_id}")
        return loan

    def get_loans_for_participant(self, email: str) -> List[Loan]:
        """All loans where the email is lender or borrower, newest first"""
        email = (email or "").strip().lower()
        records = self.storage.find_any(self.table_name, {
            'lender_email': email,
            'borrower_email': email
        })
        loans = [self._loan_from_dict(data) for data in records]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return loans

    # Transitions

    def sign_as_borrower(self, loan_id: str, actor_email: str, signature: str,
                         city: Optional[str] = None, country: Optional[str] = None,
                         civility: Optional[str] = None, birth_date: Optional[date] = None,
                         birth_place: Optional[str] = None, address: Optional[str] = None,
                         now: Optional[datetime] = None) -> Loan:
        """
        pending_borrower -> active, by the addressed borrower.

        The borrower's civil details, the signing place and the signature date
        are recorded first, then the contract is drafted from the completed
        loan and stored once.
        """
        if not signature:
            raise InvalidInputError("Borrower signature is required")
        now = now or local_now()
        loan = self.get_loan(loan_id)
        self._check_transition(loan, LoanStatus.ACTIVE, actor_email, LoanStatus.PENDING_BORROWER)

        details = {
            'civility': civility,
            'birth_date': to_date(birth_date) if birth_date else None,
            'birth_place': birth_place,
            'address': address
        }
        loan.borrower = _validate_party(
            replace(loan.borrower, **{k: v for k, v in details.items() if v}), "borrower"
        )
        self._set_contract_field(loan, 'borrower_signature', signature)
        self._set_contract_field(loan, 'signed_date', to_date(now))
        if city:
            loan.city = city
        if country:
            loan.country = country
        loan = self._apply(loan, LoanStatus.ACTIVE, actor_email, AuditEventType.LOAN_SIGNED, now)
        self._draft_contract(loan, actor_email)
        return loan

    def claim_repayment(self, loan_id: str, actor_email: str,
                        now: Optional[datetime] = None) -> Loan:
        """active -> repayment_pending, by the borrower"""
        loan = self.get_loan(loan_id)
        self._check_transition(loan, LoanStatus.REPAYMENT_PENDING, actor_email)
        return self._apply(loan, LoanStatus.REPAYMENT_PENDING, actor_email,
                           AuditEventType.REPAYMENT_CLAIMED, now)

    def mark_paid(self, loan_id: str, actor_email: str,
                  now: Optional[datetime] = None) -> Loan:
        """active/repayment_pending -> paid, by the lender"""
        loan = self.get_loan(loan_id)
        self._check_transition(loan, LoanStatus.PAID, actor_email)
        return self._apply(loan, LoanStatus.PAID, actor_email, AuditEventType.LOAN_PAID, now)

    def reject_repayment(self, loan_id: str, actor_email: str, reason: Optional[str] = None,
                         now: Optional[datetime] = None) -> Loan:
        """
        repayment_pending -> active, by the lender disputing a payment claim.

        The repayment date is left untouched, so late interest keeps counting
        from the original due date.
        """
        loan = self.get_loan(loan_id)
        self._check_transition(loan, LoanStatus.ACTIVE, actor_email, LoanStatus.REPAYMENT_PENDING)
        return self._apply(loan, LoanStatus.ACTIVE, actor_email,
                           AuditEventType.REPAYMENT_REJECTED, now, {'reason': reason})

    def _draft_contract(self, loan: Loan, actor_email: str) -> None:
        """Generate and store the contract text unless one was supplied"""
        if loan.contract_text is not None or self.contract_assembler is None:
            return
        document = self.contract_assembler.generate(loan, signed_on=loan.signed_date)
        self._set_contract_field(loan, 'contract_text', document.text)
        loan.updated_at = local_now()
        self._save_loan(loan)
        self._audit(AuditEventType.CONTRACT_GENERATED, loan, actor_email, {'source': document.source})

    def _check_transition(self, loan: Loan, target: LoanStatus, actor_email: str,
                          expected_from: Optional[LoanStatus] = None) -> None:
        role = loan.role_of(actor_email)
        allowed = TRANSITIONS.get((loan.status, target))

        if allowed is None or (expected_from is not None and loan.status != expected_from):
            reason = f"Transition {loan.status.value} -> {target.value} is not permitted"
        elif role != allowed:
            reason = (f"Transition {loan.status.value} -> {target.value} "
                      f"requires the {allowed.value}")
        else:
            return

        logger.warning(f"Rejected transition on loan {loan.id} by {actor_email}: {reason}")
        self._audit(AuditEventType.TRANSITION_REJECTED, loan, actor_email, {
            'from': loan.status.value,
            'to': target.value,
            'reason': reason
        })
        raise StateTransitionViolation(reason)

    def _apply(self, loan: Loan, target: LoanStatus, actor_email: str,
               event_type: AuditEventType, now: Optional[datetime],
               metadata: Optional[Dict[str, Any]] = None) -> Loan:
        previous = loan.status
        loan.status = target
        loan.updated_at = now or local_now()
        self._save_loan(loan)
        self._audit(event_type, loan, actor_email, {
            'from': previous.value,
            'to': target.value,
            **(metadata or {})
        })
        log_action(
            logger, "info", f"Loan status changed: {previous.value} -> {target.value}",
            user_id=actor_email, action=event_type.value, loan_id=loan.id
        )
        return loan

    def _set_contract_field(self, loan: Loan, name: str, value) -> None:
        if getattr(loan, name) is not None:
            raise StateTransitionViolation(f"{name} is already set on loan {loan.id}")
        setattr(loan, name, value)

    def _audit(self, event_type: AuditEventType, loan: Loan, actor_email: str,
               metadata: Dict[str, Any]) -> None:
        if self.audit:
            self.audit.log_event(event_type, "loan", loan.id, metadata, user_id=actor_email)

    # Persistence

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.table_name, loan.id, self._loan_to_dict(loan))

    def _loan_to_dict(self, loan: Loan) -> Dict[str, Any]:
        return to_storable({
            'id': loan.id,
            'created_at': loan.created_at,
            'updated_at': loan.updated_at,
            'lender': loan.lender.to_dict(),
            'borrower': loan.borrower.to_dict(),
            # Flattened for participant queries
            'lender_email': loan.lender.email,
            'borrower_email': loan.borrower.email,
            'amount': loan.amount,
            'currency': loan.currency,
            'loan_date': loan.loan_date,
            'repayment_date': loan.repayment_date,
            'late_interest_rate': loan.late_interest_rate,
            'status': loan.status.value,
            'lender_iban': loan.lender_iban,
            'lender_payment_link': loan.lender_payment_link,
            'contract_text': loan.contract_text,
            'lender_signature': loan.lender_signature,
            'borrower_signature': loan.borrower_signature,
            'city': loan.city,
            'country': loan.country,
            'signed_date': loan.signed_date
        })

    def _loan_from_dict(self, data: Dict[str, Any]) -> Loan:
        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            lender=Party.from_dict(data['lender']),
            borrower=Party.from_dict(data['borrower']),
            amount=Decimal(data['amount']),
            currency=data['currency'],
            loan_date=date.fromisoformat(data['loan_date']),
            repayment_date=date.fromisoformat(data['repayment_date']),
            late_interest_rate=Decimal(data.get('late_interest_rate') or '0'),
            status=LoanStatus(data['status']),
            lender_iban=data.get('lender_iban'),
            lender_payment_link=data.get('lender_payment_link'),
            contract_text=data.get('contract_text'),
            lender_signature=data.get('lender_signature'),
            borrower_signature=data.get('borrower_signature'),
            city=data.get('city'),
            country=data.get('country'),
            signed_date=date.fromisoformat(data['signed_date']) if data.get('signed_date') else None
        )
