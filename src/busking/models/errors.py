"""Ledger error kinds.

Every rejected operation maps to exactly one ErrorKind. Inside the engine
the kind travels on a LedgerError; at the service boundary it is returned
as a plain value on the ServiceResult.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Categorical failure kinds surfaced to callers."""
    UNAUTHORIZED = "unauthorized"
    INVALID_AMOUNT = "invalid_amount"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    VALIDATION = "validation"

    @property
    def code(self) -> int:
        """Numeric code, stable across releases."""
        return _ERROR_CODES[self]


_ERROR_CODES: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHORIZED: 100,
    ErrorKind.INVALID_AMOUNT: 101,
    ErrorKind.NOT_FOUND: 102,
    ErrorKind.INVALID_STATE: 103,
    ErrorKind.INSUFFICIENT_BALANCE: 104,
    ErrorKind.VALIDATION: 105,
}


class LedgerError(Exception):
    """Base ledger error with a kind and a user-safe message."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class UnauthorizedError(LedgerError):
    kind = ErrorKind.UNAUTHORIZED


class NotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND


class InvalidAmountError(LedgerError):
    kind = ErrorKind.INVALID_AMOUNT


class InvalidStateError(LedgerError):
    kind = ErrorKind.INVALID_STATE


class InsufficientBalanceError(LedgerError):
    """Raised by a value transfer when the sender cannot cover the amount."""
    kind = ErrorKind.INSUFFICIENT_BALANCE


class ValidationError(LedgerError):
    """Raised when a text field exceeds its length bound."""
    kind = ErrorKind.VALIDATION
