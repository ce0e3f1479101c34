#!/usr/bin/env python3
"""Busking ledger invariant checks against the shipped config."""

import sys
from pathlib import Path

# Add src to path for busking imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from busking.policy.invariants import check_file

PARAMS_PATH = ROOT / "config" / "ledger_params.json"


def check(params_path: Path = PARAMS_PATH) -> int:
    return check_file(params_path)


if __name__ == "__main__":
    raise SystemExit(check())
