"""Busking CLI — command-line interface for the tip ledger.

Usage:
    python -m busking.cli status
    python -m busking.cli fund --account fan --amount 5000000
    python -m busking.cli register-performer --caller jane --name "Jane Smith" \\
        --instrument Saxophone --location "Times Square"
    python -m busking.cli start-session --caller jane --performer-id 1 --location "Grand Central"
    python -m busking.cli send-tip --caller fan --session-id 1 --amount 2000000
    python -m busking.cli end-session --caller jane --session-id 1
    python -m busking.cli check-invariants

State persists between invocations in <data-dir>/events.jsonl and is
rebuilt by replay on every run.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from busking.persistence.event_log import EventLog
from busking.policy.invariants import check_file
from busking.policy.resolver import PARAMS_FILE, LedgerPolicy
from busking.service import BuskingService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"

logger = logging.getLogger("busking.cli")


def _make_service(args: argparse.Namespace) -> BuskingService:
    """Create a BuskingService with durable persistence."""
    policy = LedgerPolicy.from_config_dir(args.config)
    data_dir: Path = args.data_dir or policy.data_dir or DEFAULT_DATA
    data_dir.mkdir(parents=True, exist_ok=True)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    return BuskingService.from_event_log(policy, event_log)


def _report(result: ServiceResult, success_message: str) -> int:
    if result.success:
        print(success_message.format(**result.data))
        return 0
    kind = result.error_kind.value if result.error_kind else "error"
    print(f"Failed ({kind}): {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _show(record: Optional[object], label: str, record_id: int) -> int:
    if record is None:
        print(f"{label} not found: {record_id}", file=sys.stderr)
        return 1
    print(json.dumps(asdict(record), indent=2, default=str))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_fund(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.fund_account(args.account, args.amount)
    return _report(result, "Funded {identity}: balance {balance}")


def cmd_register_performer(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.register_performer(
        name=args.name,
        instrument=args.instrument,
        location=args.location,
        caller=args.caller,
    )
    return _report(result, "Registered performer: {performer_id}")


def cmd_start_session(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.start_session(args.performer_id, args.location, caller=args.caller)
    return _report(result, "Started session: {session_id}")


def cmd_end_session(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.end_session(args.session_id, caller=args.caller)
    return _report(result, f"Ended session: {args.session_id}")


def cmd_send_tip(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.send_tip(
        args.session_id, args.amount, args.message, caller=args.caller,
    )
    return _report(
        result,
        "Sent tip: {tip_id} (net {net_amount}, platform fee {platform_fee})",
    )


def cmd_set_fee(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.set_platform_fee(args.bps, caller=args.caller)
    return _report(result, f"Platform fee set to {args.bps} bps")


def cmd_deactivate_performer(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.deactivate_performer(args.performer_id, caller=args.caller)
    return _report(result, f"Deactivated performer: {args.performer_id}")


def cmd_show_performer(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _show(service.get_performer(args.id), "Performer", args.id)


def cmd_show_session(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _show(service.get_session(args.id), "Session", args.id)


def cmd_show_tip(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _show(service.get_tip(args.id), "Tip", args.id)


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run ledger invariant checks on the config directory."""
    return check_file(args.config / PARAMS_FILE)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="busking",
        description="Busking ledger — tips for street performers",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding events.jsonl (default: BUSKING_DATA_DIR or data/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log ledger activity")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show ledger status")

    # fund
    p_fund = sub.add_parser("fund", help="Credit an account balance")
    p_fund.add_argument("--account", required=True, help="Identity to fund")
    p_fund.add_argument("--amount", required=True, type=int, help="Amount in base units")

    # register-performer
    p_reg = sub.add_parser("register-performer", help="Register a performer")
    p_reg.add_argument("--caller", required=True, help="Owner identity")
    p_reg.add_argument("--name", required=True)
    p_reg.add_argument("--instrument", required=True)
    p_reg.add_argument("--location", required=True)

    # start-session
    p_start = sub.add_parser("start-session", help="Open a performance session")
    p_start.add_argument("--caller", required=True, help="Performer owner identity")
    p_start.add_argument("--performer-id", required=True, type=int)
    p_start.add_argument("--location", required=True)

    # end-session
    p_end = sub.add_parser("end-session", help="Close a performance session")
    p_end.add_argument("--caller", required=True, help="Performer owner identity")
    p_end.add_argument("--session-id", required=True, type=int)

    # send-tip
    p_tip = sub.add_parser("send-tip", help="Tip an open session")
    p_tip.add_argument("--caller", required=True, help="Tipper identity")
    p_tip.add_argument("--session-id", required=True, type=int)
    p_tip.add_argument("--amount", required=True, type=int, help="Gross amount in base units")
    p_tip.add_argument("--message", default=None)

    # set-fee
    p_fee = sub.add_parser("set-fee", help="Set the platform fee (platform owner only)")
    p_fee.add_argument("--caller", required=True, help="Platform owner identity")
    p_fee.add_argument("--bps", required=True, type=int, help="Fee in basis points")

    # deactivate-performer
    p_deact = sub.add_parser("deactivate-performer", help="Deactivate a performer")
    p_deact.add_argument("--caller", required=True, help="Platform owner identity")
    p_deact.add_argument("--performer-id", required=True, type=int)

    # show-*
    for name in ("performer", "session", "tip"):
        p_show = sub.add_parser(f"show-{name}", help=f"Show a {name} record")
        p_show.add_argument("--id", required=True, type=int)

    # check-invariants
    sub.add_parser("check-invariants", help="Run ledger invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    commands = {
        "status": cmd_status,
        "fund": cmd_fund,
        "register-performer": cmd_register_performer,
        "start-session": cmd_start_session,
        "end-session": cmd_end_session,
        "send-tip": cmd_send_tip,
        "set-fee": cmd_set_fee,
        "deactivate-performer": cmd_deactivate_performer,
        "show-performer": cmd_show_performer,
        "show-session": cmd_show_session,
        "show-tip": cmd_show_tip,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
