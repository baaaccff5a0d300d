"""Exception hierarchy for private lending operations."""


class LendingError(Exception):
    """Base exception for all private lending errors."""


class InvalidInputError(LendingError):
    """Raised when an amount, rate, date or party detail is malformed."""


class InvalidDateError(InvalidInputError):
    """Raised when a date cannot be parsed."""


class LoanNotFoundError(LendingError):
    """Raised when a referenced loan does not exist."""


class StateTransitionViolation(LendingError):
    """Raised when a loan transition is not permitted for the actor or state."""


class AccessDeniedError(StateTransitionViolation):
    """Raised when the actor is neither lender nor borrower of the loan."""


class ExternalServiceUnavailable(LendingError):
    """Raised when a rate lookup or text generation call fails."""


class PersistenceFailure(LendingError):
    """Raised when a storage write fails."""
