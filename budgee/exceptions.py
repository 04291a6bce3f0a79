"""
Domain Exceptions

DESIGN DECISION: Malformed input and failed authorization raise.
"Nothing to do" outcomes (already deleted, not found on lookup) return
sentinels (False / None / empty list) instead, because they are expected.

Storage-layer exceptions live next to the storage interface.
"""

from datetime import datetime
from typing import Optional

from budgee.models.validation import ValidationIssue


class BudgeeError(Exception):
    """Base exception for the Budgee core."""
    pass


class ValidationError(BudgeeError):
    """
    Malformed input (bad amount, empty name, bad PIN format).

    Carries the individual issues so the UI can show inline field errors.
    """

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


class NotFoundError(BudgeeError):
    """Referenced entity does not exist or is not owned by the caller."""
    pass


class AuthError(BudgeeError):
    """PIN verification failed on a privileged action."""

    def __init__(self, message: str, attempts_remaining: Optional[int] = None):
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


class PinLockedError(AuthError):
    """Too many failed PIN attempts; verification is refused until locked_until."""

    def __init__(self, message: str, locked_until: datetime):
        super().__init__(message, attempts_remaining=0)
        self.locked_until = locked_until


class WeakPinError(BudgeeError):
    """PIN passed format checks but matches a common/guessable pattern."""

    def __init__(self, warning: str):
        super().__init__(warning)
        self.warning = warning
