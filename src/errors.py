"""
Core error taxonomy.

These are the only errors the session manager and sync core raise to
their callers. Storage-level errors are translated at the core boundary.
"""

from enum import Enum


class AuthErrorCode(str, Enum):
    """Why a sign-in was rejected."""
    INVALID_EMAIL = "invalid-email"
    INVALID_CREDENTIALS = "invalid-credentials"
    TOO_MANY_ATTEMPTS = "too-many-attempts"
    UNKNOWN = "unknown"


class ExpenseTrackerError(Exception):
    """Base exception for core operations."""
    pass


class AuthError(ExpenseTrackerError):
    """Sign-in failed."""

    MESSAGES = {
        AuthErrorCode.INVALID_EMAIL: "Invalid email address.",
        AuthErrorCode.INVALID_CREDENTIALS: "Invalid email or password.",
        AuthErrorCode.TOO_MANY_ATTEMPTS: "Too many failed login attempts. Please try again later.",
        AuthErrorCode.UNKNOWN: "Login failed. Please try again.",
    }

    def __init__(self, code: AuthErrorCode, message: str = ""):
        self.code = code
        super().__init__(message or self.MESSAGES[code])


class DuplicateAccountError(ExpenseTrackerError):
    """Email is already registered."""
    pass


class WeakCredentialError(ExpenseTrackerError):
    """Password does not meet the minimum length."""
    pass


class UnauthorizedError(ExpenseTrackerError):
    """Caller may not act on the target account."""
    pass


class InvalidInputError(ExpenseTrackerError):
    """Bad amount, category or missing field."""
    pass


class NotFoundError(ExpenseTrackerError):
    """Target record is not in the caller's visible scope."""
    pass


class FetchFailedError(ExpenseTrackerError):
    """A read exhausted its retries."""

    def __init__(self, collection: str, attempts: int, message: str):
        self.collection = collection
        self.attempts = attempts
        super().__init__(message)


class WriteFailedError(ExpenseTrackerError):
    """The store rejected a mutation."""
    pass
