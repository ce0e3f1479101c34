"""Ledger records — performers, performance sessions, and tips.

All monetary values are unsigned integers in the smallest unit of the host
currency. No floats in finance.

Invariants carried by these records:
- Performer totals and tip counts only ever increase, except when a host
  withdraws a tip whose audit record could not be written
- A session is open iff end_time is None; end_time is set at most once
- Tips are immutable once recorded, and amount == net_amount + platform_fee
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class SessionState(str, enum.Enum):
    """Lifecycle state of a performance session.

    State machine:
        OPEN → CLOSED
    """
    OPEN = "open"
    CLOSED = "closed"


# Valid session state transitions
SESSION_TRANSITIONS: dict[SessionState, frozenset] = {
    SessionState.OPEN: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


@dataclass
class Performer:
    """A registered performer.

    Mutable: earnings accumulate and the platform owner may deactivate.
    The owner identity never changes after registration.
    """
    performer_id: int
    owner: str
    name: str
    instrument: str
    location: str
    total_earned: int = 0
    tip_count: int = 0
    active: bool = True

    def credit(self, net_amount: int) -> None:
        """Apply one settled tip to the performer's running totals."""
        self.total_earned += net_amount
        self.tip_count += 1

    def revoke(self, net_amount: int) -> None:
        """Withdraw one tip applied by credit()."""
        self.total_earned -= net_amount
        self.tip_count -= 1


@dataclass
class Session:
    """A performance session, open from start_time until end_time is set."""
    session_id: int
    performer_id: int
    start_time: int
    location: str
    end_time: Optional[int] = None
    earnings: int = 0
    tip_count: int = 0

    @property
    def state(self) -> SessionState:
        return SessionState.OPEN if self.end_time is None else SessionState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def credit(self, net_amount: int) -> None:
        self.earnings += net_amount
        self.tip_count += 1

    def revoke(self, net_amount: int) -> None:
        self.earnings -= net_amount
        self.tip_count -= 1

    def transition_to(self, new_state: SessionState, now: int) -> None:
        """Close the session, validating the transition is legal."""
        allowed = SESSION_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid session transition: {self.state.value} → {new_state.value}"
            )
        self.end_time = now

    def reopen(self) -> None:
        """Undo a close that was never audited. Not a lifecycle transition."""
        self.end_time = None


@dataclass(frozen=True)
class FeeSplit:
    """How one gross tip divides between performer and platform.

    Invariant: net_amount + platform_fee == amount
    """
    amount: int
    fee_bps: int
    platform_fee: int
    net_amount: int


@dataclass(frozen=True)
class Tip:
    """An immutable tip event. Never mutated or deleted once recorded."""
    tip_id: int
    session_id: int
    tipper: str
    amount: int
    timestamp: int
    message: Optional[str] = None
    platform_fee: int = 0
    net_amount: int = 0


@dataclass(frozen=True)
class TransferReceipt:
    """Proof that a value transfer completed on the host."""
    amount: int
    sender: str
    recipient: str
