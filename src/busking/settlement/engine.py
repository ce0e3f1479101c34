"""Ledger engine — performers, performance sessions, and tip settlement.

The engine owns three id-keyed tables (performers, sessions, tips), their
id counters, and the platform fee. Every mutation goes through one of the
public operations below; nothing outside the engine holds a live record.

Every operation validates fully before it mutates anything. A failure is
raised as a LedgerError subclass and leaves tables, counters, and balances
exactly as they were.

Tip settlement:
    platform_fee = floor(amount × fee_bps / 10000)
    net_amount = amount - platform_fee
    net_amount   → performer owner
    platform_fee → platform owner
Both legs settle or neither does. Bookkeeping is applied only after every
leg has cleared.

The engine assumes serialized execution and does no locking. Callers that
serve concurrent requests wrap it (see busking.service).

Usage:
    engine = LedgerEngine("platform", InMemoryBalances())
    performer_id = engine.register_performer("Jane", "Sax", "Times Square", caller="jane")
    session_id = engine.start_session(performer_id, "Grand Central", caller="jane")
    tip_id = engine.send_tip(session_id, 2_000_000, None, caller="fan")
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from busking.models.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from busking.models.ledger import (
    Performer,
    Session,
    SessionState,
    Tip,
    TransferReceipt,
)
from busking.policy.resolver import LedgerPolicy
from busking.settlement.clock import BlockClock
from busking.settlement.fees import split_tip
from busking.settlement.transfer import ValueTransfer


class LedgerEngine:
    """State and state transitions for the busking payment ledger."""

    def __init__(
        self,
        platform_owner: str,
        transfers: ValueTransfer,
        clock: Optional[BlockClock] = None,
        policy: Optional[LedgerPolicy] = None,
    ) -> None:
        if not platform_owner:
            raise ValueError("Platform owner identity must be non-empty")
        self._platform_owner = platform_owner
        self._transfers = transfers
        self._clock = clock or BlockClock()
        self._policy = policy or LedgerPolicy()

        self._performers: Dict[int, Performer] = {}
        self._sessions: Dict[int, Session] = {}
        self._tips: Dict[int, Tip] = {}
        self._performer_counter = 0
        self._session_counter = 0
        self._tip_counter = 0
        self._fee_bps = self._policy.default_fee_bps

    @property
    def platform_owner(self) -> str:
        return self._platform_owner

    @property
    def clock(self) -> BlockClock:
        return self._clock

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_performer(
        self,
        name: str,
        instrument: str,
        location: str,
        caller: str,
    ) -> int:
        """Register a performer owned by the caller. Returns the new id."""
        limits = self._policy.text_limits
        self._check_length("name", name, limits.name)
        self._check_length("instrument", instrument, limits.instrument)
        self._check_length("location", location, limits.location)

        self._performer_counter += 1
        performer_id = self._performer_counter
        self._performers[performer_id] = Performer(
            performer_id=performer_id,
            owner=caller,
            name=name,
            instrument=instrument,
            location=location,
        )
        return performer_id

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, performer_id: int, location: str, caller: str) -> int:
        """Open a performance session for a performer the caller owns.

        Raises:
            NotFoundError: Performer missing, or deactivated.
            UnauthorizedError: Caller does not own the performer.
            ValidationError: Location exceeds its length bound.
        """
        performer = self._performers.get(performer_id)
        if performer is None:
            raise NotFoundError(f"Performer not found: {performer_id}")
        if caller != performer.owner:
            raise UnauthorizedError(
                f"{caller} does not own performer {performer_id}"
            )
        if not performer.active:
            raise NotFoundError(f"Performer is deactivated: {performer_id}")
        self._check_length(
            "session location", location, self._policy.text_limits.session_location,
        )

        self._session_counter += 1
        session_id = self._session_counter
        self._sessions[session_id] = Session(
            session_id=session_id,
            performer_id=performer_id,
            start_time=self._clock.now(),
            location=location,
        )
        return session_id

    def end_session(self, session_id: int, caller: str) -> bool:
        """Close an open session. Only the performer's owner may do so.

        Transitions: OPEN → CLOSED
        """
        session, performer = self._session_with_performer(session_id)
        if caller != performer.owner:
            raise UnauthorizedError(
                f"{caller} does not own the performer of session {session_id}"
            )
        if not session.is_open:
            raise InvalidStateError(f"Session already closed: {session_id}")

        session.transition_to(SessionState.CLOSED, self._clock.now())
        return True

    # ------------------------------------------------------------------
    # Tip settlement
    # ------------------------------------------------------------------

    def send_tip(
        self,
        session_id: int,
        amount: int,
        message: Optional[str],
        caller: str,
    ) -> int:
        """Settle a tip on an open session. Returns the new tip id.

        Raises:
            NotFoundError: Session or its performer missing.
            InvalidAmountError: Amount is not positive.
            InvalidStateError: Session is closed.
            ValidationError: Message exceeds its length bound.
            InsufficientBalanceError: Caller cannot cover either leg.
        """
        session, performer = self._session_with_performer(session_id)
        if amount <= 0:
            raise InvalidAmountError(f"Tip amount must be positive, got {amount}")
        if not session.is_open:
            raise InvalidStateError(f"Session is closed: {session_id}")
        if message is not None:
            self._check_length("message", message, self._policy.text_limits.message)

        split = split_tip(amount, self._fee_bps, self._policy.fee_scale_bps)
        self._settle([
            (split.net_amount, caller, performer.owner),
            (split.platform_fee, caller, self._platform_owner),
        ])

        self._tip_counter += 1
        tip_id = self._tip_counter
        self._tips[tip_id] = Tip(
            tip_id=tip_id,
            session_id=session_id,
            tipper=caller,
            amount=amount,
            timestamp=self._clock.now(),
            message=message,
            platform_fee=split.platform_fee,
            net_amount=split.net_amount,
        )
        session.credit(split.net_amount)
        performer.credit(split.net_amount)
        return tip_id

    def _settle(self, legs: List[tuple[int, str, str]]) -> List[TransferReceipt]:
        """Run every transfer leg, or none of them.

        Zero-value legs are skipped. If a leg fails, completed legs are
        reversed in reverse order before the error propagates.
        """
        receipts: List[TransferReceipt] = []
        try:
            for amount, sender, recipient in legs:
                if amount == 0:
                    continue
                receipts.append(self._transfers.transfer(amount, sender, recipient))
        except InsufficientBalanceError:
            for receipt in reversed(receipts):
                self._transfers.transfer(receipt.amount, receipt.recipient, receipt.sender)
            raise
        return receipts

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_platform_fee(self, new_fee_bps: int, caller: str) -> bool:
        """Change the platform fee. Platform owner only; capped at max_fee_bps."""
        if caller != self._platform_owner:
            raise UnauthorizedError(f"{caller} is not the platform owner")
        if not 0 <= new_fee_bps <= self._policy.max_fee_bps:
            raise InvalidAmountError(
                f"Fee must be within 0..{self._policy.max_fee_bps} bps, got {new_fee_bps}"
            )
        self._fee_bps = new_fee_bps
        return True

    def deactivate_performer(self, performer_id: int, caller: str) -> bool:
        """Block new sessions for a performer. Open sessions are left as they are."""
        performer = self._performers.get(performer_id)
        if performer is None:
            raise NotFoundError(f"Performer not found: {performer_id}")
        if caller != self._platform_owner:
            raise UnauthorizedError(f"{caller} is not the platform owner")
        performer.active = False
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_performer(self, performer_id: int) -> Optional[Performer]:
        performer = self._performers.get(performer_id)
        return replace(performer) if performer is not None else None

    def get_session(self, session_id: int) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return replace(session) if session is not None else None

    def get_tip(self, tip_id: int) -> Optional[Tip]:
        return self._tips.get(tip_id)

    def get_platform_fee(self) -> int:
        return self._fee_bps

    def counters(self) -> dict[str, int]:
        return {
            "performers": self._performer_counter,
            "sessions": self._session_counter,
            "tips": self._tip_counter,
        }

    def open_session_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.is_open)

    def active_performer_count(self) -> int:
        return sum(1 for p in self._performers.values() if p.active)

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------
    # Each method undoes the latest successful call of one operation, for a
    # host whose audit write failed after the engine committed. Transfers
    # are the host's to undo; the engine only restores its own records.

    def revert_registration(self, performer_id: int) -> None:
        if performer_id != self._performer_counter:
            raise ValueError(f"Only the latest performer can be reverted, got {performer_id}")
        del self._performers[performer_id]
        self._performer_counter -= 1

    def revert_session_start(self, session_id: int) -> None:
        if session_id != self._session_counter:
            raise ValueError(f"Only the latest session can be reverted, got {session_id}")
        del self._sessions[session_id]
        self._session_counter -= 1

    def revert_session_end(self, session_id: int) -> None:
        self._sessions[session_id].reopen()

    def revert_tip(self, tip_id: int) -> None:
        if tip_id != self._tip_counter:
            raise ValueError(f"Only the latest tip can be reverted, got {tip_id}")
        tip = self._tips.pop(tip_id)
        session, performer = self._session_with_performer(tip.session_id)
        session.revoke(tip.net_amount)
        performer.revoke(tip.net_amount)
        self._tip_counter -= 1

    def revert_platform_fee(self, previous_fee_bps: int) -> None:
        self._fee_bps = previous_fee_bps

    def revert_deactivation(self, performer_id: int, was_active: bool) -> None:
        self._performers[performer_id].active = was_active

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _session_with_performer(self, session_id: int) -> tuple[Session, Performer]:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        performer = self._performers.get(session.performer_id)
        if performer is None:
            raise NotFoundError(
                f"Performer not found for session {session_id}: {session.performer_id}"
            )
        return session, performer

    @staticmethod
    def _check_length(label: str, value: str, limit: int) -> None:
        if len(value) > limit:
            raise ValidationError(
                f"{label} exceeds {limit} characters ({len(value)})"
            )
