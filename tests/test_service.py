"""Tests for BuskingService — proves the facade maps errors, audits, and rolls back."""

import threading
from pathlib import Path

import pytest

from busking.models.errors import ErrorKind
from busking.persistence.event_log import EventKind, EventLog, EventRecord
from busking.policy.resolver import LedgerPolicy
from busking.service import BuskingService
from busking.settlement.transfer import InMemoryBalances


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

PLATFORM = "deployer"
PERFORMER = "wallet_1"
TIPPER = "wallet_2"


@pytest.fixture
def policy() -> LedgerPolicy:
    return LedgerPolicy.from_config_dir(CONFIG_DIR)


@pytest.fixture
def service(policy: LedgerPolicy) -> BuskingService:
    svc = BuskingService(policy, platform_owner=PLATFORM)
    svc.fund_account(TIPPER, 50_000_000)
    return svc


def _open_session(service: BuskingService) -> tuple[int, int]:
    performer_id = service.register_performer(
        "Alice Cooper", "Violin", "Grand Central", caller=PERFORMER,
    ).data["performer_id"]
    session_id = service.start_session(
        performer_id, "Grand Central Station", caller=PERFORMER,
    ).data["session_id"]
    return performer_id, session_id


def _initialized_log(path: Path) -> EventLog:
    log = EventLog(path)
    log.append(EventRecord.create(
        "EVT-00000001", EventKind.LEDGER_INITIALIZED, PLATFORM, {"platform_owner": PLATFORM},
        block_height=0,
    ))
    return log


class _FailingLog(EventLog):
    """Event log whose writes fail once armed."""

    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    def append(self, event) -> None:
        if self.fail:
            raise OSError("disk full")
        super().append(event)


class TestConstruction:
    def test_platform_owner_from_config(self, policy: LedgerPolicy) -> None:
        svc = BuskingService(policy)
        assert svc.engine.platform_owner == policy.platform_owner

    def test_missing_platform_owner(self) -> None:
        with pytest.raises(ValueError, match="platform owner"):
            BuskingService(LedgerPolicy())


class TestResults:
    def test_register_success(self, service: BuskingService) -> None:
        result = service.register_performer("Jane Smith", "Saxophone", "Times Square", caller=PERFORMER)
        assert result.success
        assert result.errors == []
        assert result.error_kind is None
        assert result.data == {"performer_id": 1}

    def test_validation_failure(self, service: BuskingService) -> None:
        result = service.register_performer("x" * 60, "Saxophone", "Times Square", caller=PERFORMER)
        assert not result.success
        assert result.error_kind == ErrorKind.VALIDATION
        assert result.errors

    def test_start_session_not_found(self, service: BuskingService) -> None:
        result = service.start_session(999, "Somewhere", caller=PERFORMER)
        assert not result.success
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.error_kind.code == 102

    def test_end_session_result(self, service: BuskingService) -> None:
        _, session_id = _open_session(service)
        result = service.end_session(session_id, caller=PERFORMER)
        assert result.success
        assert result.data == {"ended": True}
        again = service.end_session(session_id, caller=PERFORMER)
        assert again.error_kind == ErrorKind.INVALID_STATE

    def test_send_tip_result(self, service: BuskingService) -> None:
        _, session_id = _open_session(service)
        result = service.send_tip(session_id, 1_000_000, "Great performance!", caller=TIPPER)
        assert result.success
        assert result.data == {"tip_id": 1, "net_amount": 990_000, "platform_fee": 10_000}
        assert service.get_balance(PERFORMER) == 990_000
        assert service.get_balance(PLATFORM) == 10_000

    def test_send_tip_insufficient_balance(self, service: BuskingService) -> None:
        _, session_id = _open_session(service)
        result = service.send_tip(session_id, 1_000, None, caller="stranger")
        assert result.error_kind == ErrorKind.INSUFFICIENT_BALANCE
        assert service.get_tip(1) is None

    def test_zero_tip(self, service: BuskingService) -> None:
        _, session_id = _open_session(service)
        result = service.send_tip(session_id, 0, None, caller=TIPPER)
        assert result.error_kind == ErrorKind.INVALID_AMOUNT
        assert service.status()["tips"]["total"] == 0

    def test_fee_administration(self, service: BuskingService) -> None:
        assert service.get_platform_fee() == 100
        denied = service.set_platform_fee(200, caller=PERFORMER)
        assert denied.error_kind == ErrorKind.UNAUTHORIZED
        assert service.get_platform_fee() == 100

        assert service.set_platform_fee(250, caller=PLATFORM).success
        assert service.get_platform_fee() == 250

        too_high = service.set_platform_fee(1500, caller=PLATFORM)
        assert too_high.error_kind == ErrorKind.INVALID_AMOUNT
        assert service.get_platform_fee() == 250

    def test_deactivate(self, service: BuskingService) -> None:
        performer_id, _ = _open_session(service)
        assert service.deactivate_performer(performer_id, caller=PERFORMER).error_kind == ErrorKind.UNAUTHORIZED
        assert service.deactivate_performer(performer_id, caller=PLATFORM).success
        assert service.get_performer(performer_id).active is False
        assert service.deactivate_performer(77, caller=PLATFORM).error_kind == ErrorKind.NOT_FOUND

    def test_fund_rejects_zero(self, service: BuskingService) -> None:
        result = service.fund_account("fan", 0)
        assert result.error_kind == ErrorKind.INVALID_AMOUNT


class TestClock:
    def test_each_operation_gets_its_own_block(self, service: BuskingService) -> None:
        _, session_id = _open_session(service)
        service.send_tip(session_id, 1_000, None, caller=TIPPER)
        service.end_session(session_id, caller=PERFORMER)

        session = service.get_session(session_id)
        tip = service.get_tip(1)
        assert session.start_time < tip.timestamp < session.end_time


class TestAudit:
    def test_committed_operations_are_logged(self, service: BuskingService) -> None:
        _, session_id = _open_session(service)
        service.send_tip(session_id, 2_000_000, None, caller=TIPPER)

        kinds = [e.event_kind for e in service.event_log.events()]
        assert kinds == [
            EventKind.LEDGER_INITIALIZED,
            EventKind.ACCOUNT_FUNDED,
            EventKind.PERFORMER_REGISTERED,
            EventKind.SESSION_STARTED,
            EventKind.TIP_SENT,
        ]
        tip_event = service.event_log.events(EventKind.TIP_SENT)[0]
        assert tip_event.actor_id == TIPPER
        assert tip_event.payload["tip_id"] == 1
        assert tip_event.payload["platform_fee"] == 20_000
        assert tip_event.event_hash.startswith("sha256:")

    def test_rejected_operations_are_not_logged(self, service: BuskingService) -> None:
        before = service.event_log.count
        service.start_session(999, "Nowhere", caller=PERFORMER)
        service.set_platform_fee(50, caller=TIPPER)
        assert service.event_log.count == before

    def test_audit_failure_rolls_back_tip(self, policy: LedgerPolicy) -> None:
        log = _FailingLog()
        svc = BuskingService(policy, platform_owner=PLATFORM, event_log=log)
        svc.fund_account(TIPPER, 10_000)
        _, session_id = _open_session(svc)

        log.fail = True
        result = svc.send_tip(session_id, 1_000, None, caller=TIPPER)
        assert not result.success
        assert "Event log failure" in result.errors[0]
        assert svc.get_tip(1) is None
        assert svc.get_session(session_id).earnings == 0
        assert svc.get_balance(TIPPER) == 10_000
        assert svc.get_balance(PERFORMER) == 0
        assert svc.status()["tips"]["total"] == 0

        log.fail = False
        retry = svc.send_tip(session_id, 1_000, None, caller=TIPPER)
        assert retry.data["tip_id"] == 1
        assert svc.event_log.last_event.event_id == "EVT-00000005"

    def test_audit_failure_rolls_back_funding(self, policy: LedgerPolicy) -> None:
        log = _FailingLog()
        svc = BuskingService(policy, platform_owner=PLATFORM, event_log=log)
        log.fail = True
        assert not svc.fund_account("fan", 500).success
        assert svc.get_balance("fan") == 0

    def test_audit_failure_rolls_back_registration(self, policy: LedgerPolicy) -> None:
        log = _FailingLog()
        svc = BuskingService(policy, platform_owner=PLATFORM, event_log=log)
        svc.register_performer("Bob", "Guitar", "Bridge", caller=PERFORMER)

        log.fail = True
        assert not svc.register_performer("Ann", "Flute", "Pier", caller=PERFORMER).success
        assert svc.get_performer(2) is None
        assert svc.status()["performers"]["total"] == 1

        log.fail = False
        assert svc.register_performer("Ann", "Flute", "Pier", caller=PERFORMER).data == {"performer_id": 2}

    def test_audit_failure_rolls_back_session_changes(self, policy: LedgerPolicy) -> None:
        log = _FailingLog()
        svc = BuskingService(policy, platform_owner=PLATFORM, event_log=log)
        performer_id, session_id = _open_session(svc)

        log.fail = True
        assert not svc.start_session(performer_id, "Pier", caller=PERFORMER).success
        assert svc.get_session(session_id + 1) is None
        assert svc.status()["sessions"]["total"] == 1

        assert not svc.end_session(session_id, caller=PERFORMER).success
        assert svc.get_session(session_id).is_open

    def test_audit_failure_rolls_back_administration(self, policy: LedgerPolicy) -> None:
        log = _FailingLog()
        svc = BuskingService(policy, platform_owner=PLATFORM, event_log=log)
        performer_id, _ = _open_session(svc)

        log.fail = True
        assert not svc.set_platform_fee(300, caller=PLATFORM).success
        assert svc.get_platform_fee() == 100
        assert not svc.deactivate_performer(performer_id, caller=PLATFORM).success
        assert svc.get_performer(performer_id).active is True

    def test_audit_failure_keeps_earlier_tips(self, policy: LedgerPolicy) -> None:
        log = _FailingLog()
        svc = BuskingService(policy, platform_owner=PLATFORM, event_log=log)
        svc.fund_account(TIPPER, 10_000)
        performer_id, session_id = _open_session(svc)
        svc.send_tip(session_id, 1_000, None, caller=TIPPER)

        log.fail = True
        assert not svc.send_tip(session_id, 2_000, None, caller=TIPPER).success
        assert svc.get_tip(1).amount == 1_000
        assert svc.get_tip(2) is None
        assert svc.get_session(session_id).earnings == 990
        assert svc.get_performer(performer_id).tip_count == 1
        assert svc.get_balance(TIPPER) == 9_000
        assert svc.get_balance(PLATFORM) == 10

    def test_rejected_tip_leaves_no_transfer_history(self, policy: LedgerPolicy) -> None:
        """Balance covers the net leg (990) but not the fee leg."""
        balances = InMemoryBalances()
        svc = BuskingService(policy, platform_owner=PLATFORM, balances=balances)
        _, session_id = _open_session(svc)
        svc.fund_account("fan", 995)

        result = svc.send_tip(session_id, 1_000, None, caller="fan")
        assert result.error_kind == ErrorKind.INSUFFICIENT_BALANCE
        assert balances.receipts == []
        assert balances.balance_of("fan") == 995
        assert balances.balance_of(PERFORMER) == 0


class TestReplay:
    def test_replay_rebuilds_state(self, policy: LedgerPolicy, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        original = BuskingService(policy, platform_owner=PLATFORM, event_log=EventLog(path))
        original.fund_account(TIPPER, 5_000_000)
        performer_id, session_id = _open_session(original)
        original.set_platform_fee(200, caller=PLATFORM)
        original.send_tip(session_id, 1_000_000, "bravo", caller=TIPPER)
        original.end_session(session_id, caller=PERFORMER)
        original.deactivate_performer(performer_id, caller=PLATFORM)

        rebuilt = BuskingService.from_event_log(policy, EventLog(path), platform_owner=PLATFORM)
        assert rebuilt.status() == original.status()
        assert rebuilt.get_performer(performer_id) == original.get_performer(performer_id)
        assert rebuilt.get_session(session_id) == original.get_session(session_id)
        assert rebuilt.get_tip(1) == original.get_tip(1)
        assert rebuilt.get_balance(PERFORMER) == 980_000
        assert rebuilt.get_platform_fee() == 200

    def test_replay_continues_event_ids(self, policy: LedgerPolicy, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        first = BuskingService(policy, platform_owner=PLATFORM, event_log=EventLog(path))
        first.register_performer("Bob", "Guitar", "Bridge", caller=PERFORMER)

        second = BuskingService.from_event_log(policy, EventLog(path), platform_owner=PLATFORM)
        result = second.register_performer("Ann", "Flute", "Pier", caller=PERFORMER)
        assert result.data["performer_id"] == 2
        assert second.event_log.last_event.event_id == "EVT-00000003"

    def test_replay_rejects_divergent_log(self, policy: LedgerPolicy, tmp_path: Path) -> None:
        """A log recording a tip the tipper could never afford cannot be replayed."""
        path = tmp_path / "events.jsonl"
        log = _initialized_log(path)
        log.append(EventRecord.create(
            "EVT-00000002", EventKind.PERFORMER_REGISTERED, PERFORMER,
            {"name": "Bob", "instrument": "Guitar", "location": "Bridge", "performer_id": 1},
            block_height=1,
        ))
        log.append(EventRecord.create(
            "EVT-00000003", EventKind.SESSION_STARTED, PERFORMER,
            {"performer_id": 1, "location": "Park", "session_id": 1},
            block_height=2,
        ))
        log.append(EventRecord.create(
            "EVT-00000004", EventKind.TIP_SENT, TIPPER,
            {"session_id": 1, "amount": 1_000, "message": None, "tip_id": 1},
            block_height=3,
        ))
        with pytest.raises(ValueError, match="Replay failed"):
            BuskingService.from_event_log(policy, EventLog(path), platform_owner=PLATFORM)

    def test_replay_rejects_wrong_id(self, policy: LedgerPolicy, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = _initialized_log(path)
        log.append(EventRecord.create(
            "EVT-00000002", EventKind.PERFORMER_REGISTERED, PERFORMER,
            {"name": "Bob", "instrument": "Guitar", "location": "Bridge", "performer_id": 3},
            block_height=1,
        ))
        with pytest.raises(ValueError, match="diverged"):
            BuskingService.from_event_log(policy, EventLog(path), platform_owner=PLATFORM)


class TestPlatformOwnerRecord:
    def test_first_event_names_the_owner(self, service: BuskingService) -> None:
        first = service.event_log.events()[0]
        assert first.event_kind == EventKind.LEDGER_INITIALIZED
        assert first.event_id == "EVT-00000001"
        assert first.payload == {"platform_owner": PLATFORM}

    def test_replay_takes_owner_from_log(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        original = BuskingService(LedgerPolicy(), platform_owner=PLATFORM, event_log=EventLog(path))
        performer_id = original.register_performer("Bob", "Guitar", "Bridge", caller=PERFORMER).data["performer_id"]
        original.set_platform_fee(300, caller=PLATFORM)
        original.deactivate_performer(performer_id, caller=PLATFORM)

        rebuilt = BuskingService.from_event_log(LedgerPolicy(), EventLog(path))
        assert rebuilt.engine.platform_owner == PLATFORM
        assert rebuilt.get_platform_fee() == 300
        assert rebuilt.get_performer(performer_id).active is False

    def test_changed_owner_is_rejected(self, policy: LedgerPolicy, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        original = BuskingService(policy, platform_owner=PLATFORM, event_log=EventLog(path))
        original.set_platform_fee(200, caller=PLATFORM)

        with pytest.raises(ValueError, match="Platform owner mismatch"):
            BuskingService.from_event_log(policy, EventLog(path), platform_owner="admin")

    def test_owner_from_policy_is_checked(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        BuskingService(LedgerPolicy(), platform_owner=PLATFORM, event_log=EventLog(path)).set_platform_fee(
            200, caller=PLATFORM,
        )
        with pytest.raises(ValueError, match="Platform owner mismatch"):
            BuskingService.from_event_log(LedgerPolicy(platform_owner="admin"), EventLog(path))

    def test_log_without_initialization_rejected(self, policy: LedgerPolicy, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(EventRecord.create(
            "EVT-00000001", EventKind.PLATFORM_FEE_SET, PLATFORM, {"new_fee_bps": 200, "updated": True},
            block_height=1,
        ))
        with pytest.raises(ValueError, match="initialization record"):
            BuskingService.from_event_log(policy, EventLog(path), platform_owner=PLATFORM)

    def test_repeated_initialization_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = _initialized_log(path)
        log.append(EventRecord.create(
            "EVT-00000002", EventKind.LEDGER_INITIALIZED, "admin", {"platform_owner": "admin"},
            block_height=1,
        ))
        with pytest.raises(ValueError, match="Repeated ledger initialization"):
            BuskingService.from_event_log(LedgerPolicy(), EventLog(path))


class TestConcurrency:
    def test_concurrent_tips_are_serialised(self, service: BuskingService) -> None:
        performer_id, session_id = _open_session(service)
        errors: list[str] = []

        def _tip() -> None:
            for _ in range(25):
                result = service.send_tip(session_id, 1_000, None, caller=TIPPER)
                if not result.success:
                    errors.extend(result.errors)

        threads = [threading.Thread(target=_tip) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        session = service.get_session(session_id)
        performer = service.get_performer(performer_id)
        assert session.tip_count == 200
        assert session.earnings == 200 * 990
        assert performer.total_earned == 200 * 990
        assert service.get_balance(PLATFORM) == 200 * 10
        assert service.status()["tips"]["total"] == 200
        tip_ids = sorted(e.payload["tip_id"] for e in service.event_log.events(EventKind.TIP_SENT))
        assert tip_ids == list(range(1, 201))


class TestStatus:
    def test_status_summary(self, service: BuskingService) -> None:
        performer_id, session_id = _open_session(service)
        service.send_tip(session_id, 10_000, None, caller=TIPPER)
        status = service.status()
        assert status["platform_owner"] == PLATFORM
        assert status["platform_fee_bps"] == 100
        assert status["platform_balance"] == 100
        assert status["performers"] == {"total": 1, "active": 1}
        assert status["sessions"] == {"total": 1, "open": 1}
        assert status["tips"] == {"total": 1}
        assert status["events"] == 5
