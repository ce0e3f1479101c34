"""Busking service — the host boundary around the ledger engine.

This is the primary interface for programmatic access to the ledger.
It supplies everything the engine deliberately leaves to its host:
- Caller identity (passed explicitly on every operation)
- Logical clock (one block per mutating call)
- Value transfer (an in-memory balance sheet)
- Serialisation (one lock around every operation and query)
- Audit (every committed mutation is appended to the event log)

All operations produce typed results. Failures are values, not
exceptions: a rejected operation returns a ServiceResult carrying the
ErrorKind. Audit events are never silently dropped. If the event log
rejects a write, the mutation is rolled back and the call fails closed.

The first record of every log is a ledger_initialized event naming the
platform owner. Replay takes the owner from that record, so the owner
fixed when the ledger was created cannot drift with later configuration.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from busking.models.errors import ErrorKind, LedgerError
from busking.models.ledger import Performer, Session, Tip
from busking.persistence.event_log import EventKind, EventLog, EventRecord
from busking.policy.resolver import LedgerPolicy
from busking.settlement.clock import BlockClock
from busking.settlement.engine import LedgerEngine
from busking.settlement.transfer import InMemoryBalances

logger = logging.getLogger("busking.service")


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None


class BuskingService:
    """Thread-safe ledger facade with audit logging.

    Usage:
        policy = LedgerPolicy.from_config_dir(config_dir)
        service = BuskingService(policy, platform_owner="platform")

        service.fund_account("fan", 5_000_000)
        result = service.register_performer("Jane", "Sax", "Times Square", caller="jane")
        result = service.start_session(result.data["performer_id"], "Grand Central", caller="jane")
        result = service.send_tip(result.data["session_id"], 2_000_000, None, caller="fan")

    Persistence (optional):
        log = EventLog(storage_path=data_dir / "events.jsonl")
        service = BuskingService.from_event_log(policy, log)
        # Prior state is rebuilt by replay; new events are appended to the same file.
    """

    def __init__(
        self,
        policy: LedgerPolicy,
        platform_owner: Optional[str] = None,
        balances: Optional[InMemoryBalances] = None,
        clock: Optional[BlockClock] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        owner = platform_owner or policy.platform_owner
        if not owner:
            raise ValueError("A platform owner identity is required")
        self._policy = policy
        self._balances = balances if balances is not None else InMemoryBalances()
        self._clock = clock or BlockClock()
        self._engine = LedgerEngine(owner, self._balances, self._clock, policy)
        self._event_log = event_log or EventLog()
        self._event_counter = self._event_log.count
        self._lock = threading.RLock()

    @classmethod
    def from_event_log(
        cls,
        policy: LedgerPolicy,
        event_log: EventLog,
        platform_owner: Optional[str] = None,
    ) -> BuskingService:
        """Rebuild a service by replaying every event in the log.

        The platform owner comes from the log's initialization record.
        Raises ValueError if the configured owner differs from it, if a
        replayed operation fails, or if replay assigns a different id than
        the one recorded.
        """
        events = event_log.events()
        configured = platform_owner or policy.platform_owner
        recorded = cls._recorded_owner(events)
        if recorded is not None and configured and configured != recorded:
            raise ValueError(
                f"Platform owner mismatch: ledger was initialized for {recorded}, "
                f"configuration names {configured}"
            )

        service = cls(policy, platform_owner=recorded or configured, event_log=event_log)
        for index, event in enumerate(events):
            if index and event.event_kind == EventKind.LEDGER_INITIALIZED:
                raise ValueError(f"Repeated ledger initialization at {event.event_id}")
            service._replay(event)
        logger.info(
            f"Replayed {event_log.count} events to block {service._clock.now()}"
        )
        return service

    @staticmethod
    def _recorded_owner(events: list[EventRecord]) -> Optional[str]:
        if not events:
            return None
        first = events[0]
        if first.event_kind != EventKind.LEDGER_INITIALIZED:
            raise ValueError(
                f"Event log does not open with a ledger initialization record: {first.event_id}"
            )
        return first.payload["platform_owner"]

    @property
    def engine(self) -> LedgerEngine:
        return self._engine

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def fund_account(self, identity: str, amount: int) -> ServiceResult:
        """Credit an identity's balance from outside the ledger."""
        with self._lock:
            try:
                balance = self._balances.fund(identity, amount)
            except ValueError as e:
                return ServiceResult(
                    success=False, errors=[str(e)], error_kind=ErrorKind.INVALID_AMOUNT,
                )
            err = self._record_event(
                EventKind.ACCOUNT_FUNDED, identity, {"amount": amount},
            )
            if err:
                self._balances.reverse_funding(identity, amount)
                logger.error(f"Funding rolled back for {identity}: {err}")
                return ServiceResult(success=False, errors=[err])
            logger.info(f"Funded {identity} with {amount}")
            return ServiceResult(
                success=True, data={"identity": identity, "balance": balance},
            )

    def get_balance(self, identity: str) -> int:
        with self._lock:
            return self._balances.balance_of(identity)

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    def register_performer(
        self, name: str, instrument: str, location: str, caller: str,
    ) -> ServiceResult:
        return self._execute(
            EventKind.PERFORMER_REGISTERED,
            caller,
            {"name": name, "instrument": instrument, "location": location},
            lambda: {
                "performer_id": self._engine.register_performer(
                    name, instrument, location, caller,
                ),
            },
            lambda data: self._engine.revert_registration(data["performer_id"]),
        )

    def start_session(
        self, performer_id: int, location: str, caller: str,
    ) -> ServiceResult:
        return self._execute(
            EventKind.SESSION_STARTED,
            caller,
            {"performer_id": performer_id, "location": location},
            lambda: {
                "session_id": self._engine.start_session(performer_id, location, caller),
            },
            lambda data: self._engine.revert_session_start(data["session_id"]),
        )

    def end_session(self, session_id: int, caller: str) -> ServiceResult:
        return self._execute(
            EventKind.SESSION_ENDED,
            caller,
            {"session_id": session_id},
            lambda: {"ended": self._engine.end_session(session_id, caller)},
            lambda data: self._engine.revert_session_end(session_id),
        )

    def send_tip(
        self,
        session_id: int,
        amount: int,
        message: Optional[str],
        caller: str,
    ) -> ServiceResult:
        """Settle a tip. On success, data carries the tip id and the split."""

        def _tip() -> dict[str, Any]:
            tip_id = self._engine.send_tip(session_id, amount, message, caller)
            tip = self._engine.get_tip(tip_id)
            return {
                "tip_id": tip_id,
                "net_amount": tip.net_amount,
                "platform_fee": tip.platform_fee,
            }

        return self._execute(
            EventKind.TIP_SENT,
            caller,
            {"session_id": session_id, "amount": amount, "message": message},
            _tip,
            lambda data: self._engine.revert_tip(data["tip_id"]),
        )

    def set_platform_fee(self, new_fee_bps: int, caller: str) -> ServiceResult:
        prior: dict[str, int] = {}

        def _set() -> dict[str, Any]:
            prior["fee_bps"] = self._engine.get_platform_fee()
            return {"updated": self._engine.set_platform_fee(new_fee_bps, caller)}

        return self._execute(
            EventKind.PLATFORM_FEE_SET,
            caller,
            {"new_fee_bps": new_fee_bps},
            _set,
            lambda data: self._engine.revert_platform_fee(prior["fee_bps"]),
        )

    def deactivate_performer(self, performer_id: int, caller: str) -> ServiceResult:
        prior: dict[str, bool] = {}

        def _deactivate() -> dict[str, Any]:
            performer = self._engine.get_performer(performer_id)
            prior["active"] = performer.active if performer is not None else False
            return {
                "deactivated": self._engine.deactivate_performer(performer_id, caller),
            }

        return self._execute(
            EventKind.PERFORMER_DEACTIVATED,
            caller,
            {"performer_id": performer_id},
            _deactivate,
            lambda data: self._engine.revert_deactivation(performer_id, prior["active"]),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_performer(self, performer_id: int) -> Optional[Performer]:
        with self._lock:
            return self._engine.get_performer(performer_id)

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._lock:
            return self._engine.get_session(session_id)

    def get_tip(self, tip_id: int) -> Optional[Tip]:
        with self._lock:
            return self._engine.get_tip(tip_id)

    def get_platform_fee(self) -> int:
        with self._lock:
            return self._engine.get_platform_fee()

    def status(self) -> dict[str, Any]:
        """Return a ledger-wide status summary."""
        with self._lock:
            counters = self._engine.counters()
            return {
                "block_height": self._clock.now(),
                "platform_owner": self._engine.platform_owner,
                "platform_fee_bps": self._engine.get_platform_fee(),
                "platform_balance": self._balances.balance_of(self._engine.platform_owner),
                "performers": {
                    "total": counters["performers"],
                    "active": self._engine.active_performer_count(),
                },
                "sessions": {
                    "total": counters["sessions"],
                    "open": self._engine.open_session_count(),
                },
                "tips": {"total": counters["tips"]},
                "events": self._event_log.count,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(
        self,
        kind: EventKind,
        caller: str,
        payload: dict[str, Any],
        operation: Callable[[], dict[str, Any]],
        on_rollback: Callable[[dict[str, Any]], None],
    ) -> ServiceResult:
        """Run one mutating operation in its own block, under the lock.

        Transfers made during the call are unwound if the operation is
        rejected. Fail-closed: if audit recording fails, on_rollback undoes
        the records the operation touched and its transfers are unwound.
        """
        with self._lock:
            self._clock.advance()
            receipt_count = self._balances.receipt_count

            try:
                data = operation()
            except LedgerError as e:
                self._balances.rollback(receipt_count)
                logger.warning(f"{kind.value} rejected for {caller}: {e}")
                return ServiceResult(success=False, errors=[e.message], error_kind=e.kind)

            err = self._record_event(kind, caller, {**payload, **data})
            if err:
                on_rollback(data)
                self._balances.rollback(receipt_count)
                logger.error(f"{kind.value} rolled back for {caller}: {err}")
                return ServiceResult(success=False, errors=[err])

            logger.info(f"{kind.value} committed for {caller}: {data}")
            return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> Optional[str]:
        """Append an audit event. Returns error string or None.

        An empty log receives the initialization record first.
        """
        if self._event_log.count == 0 and kind != EventKind.LEDGER_INITIALIZED:
            owner = self._engine.platform_owner
            err = self._record_event(
                EventKind.LEDGER_INITIALIZED, owner, {"platform_owner": owner},
            )
            if err:
                return err

        event = EventRecord.create(
            event_id=self._next_event_id(),
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
            block_height=self._clock.now(),
        )
        try:
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            self._event_counter -= 1
            return f"Event log failure: {e}"
        return None

    def _replay(self, event: EventRecord) -> None:
        """Re-apply one logged event to the engine without re-logging it."""
        self._clock.advance_to(event.block_height)
        p = event.payload
        caller = event.actor_id
        try:
            if event.event_kind == EventKind.LEDGER_INITIALIZED:
                return
            if event.event_kind == EventKind.ACCOUNT_FUNDED:
                self._balances.fund(caller, p["amount"])
                return
            if event.event_kind == EventKind.PERFORMER_REGISTERED:
                assigned = self._engine.register_performer(
                    p["name"], p["instrument"], p["location"], caller,
                )
                expected = p["performer_id"]
            elif event.event_kind == EventKind.SESSION_STARTED:
                assigned = self._engine.start_session(
                    p["performer_id"], p["location"], caller,
                )
                expected = p["session_id"]
            elif event.event_kind == EventKind.TIP_SENT:
                assigned = self._engine.send_tip(
                    p["session_id"], p["amount"], p["message"], caller,
                )
                expected = p["tip_id"]
            elif event.event_kind == EventKind.SESSION_ENDED:
                self._engine.end_session(p["session_id"], caller)
                return
            elif event.event_kind == EventKind.PLATFORM_FEE_SET:
                self._engine.set_platform_fee(p["new_fee_bps"], caller)
                return
            elif event.event_kind == EventKind.PERFORMER_DEACTIVATED:
                self._engine.deactivate_performer(p["performer_id"], caller)
                return
            else:
                raise ValueError(f"Unknown event kind: {event.event_kind}")
        except LedgerError as e:
            raise ValueError(f"Replay failed at {event.event_id}: {e}") from e

        if assigned != expected:
            raise ValueError(
                f"Replay diverged at {event.event_id}: assigned id {assigned}, "
                f"log recorded {expected}"
            )
