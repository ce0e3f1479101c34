"""Core data models for the busking ledger."""

from busking.models.errors import (
    ErrorKind,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from busking.models.ledger import (
    FeeSplit,
    Performer,
    Session,
    SessionState,
    Tip,
    TransferReceipt,
)

__all__ = [
    "ErrorKind",
    "LedgerError",
    "UnauthorizedError",
    "NotFoundError",
    "InvalidAmountError",
    "InvalidStateError",
    "InsufficientBalanceError",
    "ValidationError",
    "FeeSplit",
    "Performer",
    "Session",
    "SessionState",
    "Tip",
    "TransferReceipt",
]
