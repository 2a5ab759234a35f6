"""
Domain exceptions.

Storage, mail and attachment errors live next to their services; these
are the errors the finance services raise about the user's request.
"""

from typing import Optional
from uuid import UUID

from fintrack.models.finance import ValidationResult


class FinanceError(Exception):
    """Base exception for rejected finance operations."""
    pass


class ValidationFailedError(FinanceError):
    """A record failed validation; the result lists every issue."""

    def __init__(self, result: ValidationResult, message: Optional[str] = None):
        self.result = result
        errors = [issue.message for issue in result.issues if issue.severity == "error"]
        super().__init__(message or "; ".join(errors) or "Validation failed")


class InsufficientFundsError(FinanceError):
    """The source account cannot cover a transfer."""

    def __init__(self, account_id: UUID, available, requested):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"available {available}, requested {requested}"
        )


class DuplicateEmailError(FinanceError):
    """A profile with this email (ignoring case) already exists."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already registered: {email}")


class InvalidReturnAmountError(FinanceError):
    """A lend/borrow return is not positive or exceeds what is owed."""
    pass


class DeletionJobError(FinanceError):
    """A deletion job cannot be run or cancelled in its current state."""
    pass


class RecordNotFoundError(FinanceError):
    """A referenced record does not exist or belongs to another user."""

    def __init__(self, entity_type: str, record_id: UUID):
        self.entity_type = entity_type
        self.record_id = record_id
        super().__init__(f"{entity_type} not found: {record_id}")
