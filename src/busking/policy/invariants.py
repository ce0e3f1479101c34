"""Invariant checks against the shipped ledger parameters."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from busking.settlement.fees import FEE_SCALE_BPS, MAX_FEE_BPS

REQUIRED_TEXT_LIMITS = ("name", "instrument", "location", "session_location", "message")


def check_params(params: dict[str, Any]) -> list[str]:
    """Return a list of violations. Empty list means the config is sound."""
    errors: list[str] = []

    # --- Fee invariants ---
    scale = params.get("fee_scale_bps")
    default_fee = params.get("default_fee_bps")
    max_fee = params.get("max_fee_bps")
    if scale != FEE_SCALE_BPS:
        errors.append(f"fee_scale_bps must be {FEE_SCALE_BPS}, got {scale}")
    if not isinstance(max_fee, int) or not 0 <= max_fee <= MAX_FEE_BPS:
        errors.append(f"max_fee_bps must be in [0, {MAX_FEE_BPS}], got {max_fee}")
    if not isinstance(default_fee, int) or default_fee < 0:
        errors.append(f"default_fee_bps must be a non-negative integer, got {default_fee}")
    elif isinstance(max_fee, int) and default_fee > max_fee:
        errors.append(
            f"default_fee_bps ({default_fee}) must not exceed max_fee_bps ({max_fee})"
        )

    # --- Text limit invariants ---
    limits = params.get("text_limits", {})
    for key in REQUIRED_TEXT_LIMITS:
        if key not in limits:
            errors.append(f"text_limits missing field: {key}")
        elif not isinstance(limits[key], int) or limits[key] <= 0:
            errors.append(f"text_limits.{key} must be a positive integer")
    unknown = set(limits) - set(REQUIRED_TEXT_LIMITS)
    if unknown:
        errors.append(f"text_limits has unknown fields: {sorted(unknown)}")

    # --- Ownership invariants ---
    if not params.get("platform_owner"):
        errors.append("platform_owner must be a non-empty identity")

    return errors


def check_file(params_path: Path) -> int:
    """Check a ledger_params.json file and print the outcome. Returns an exit code."""
    try:
        params = json.loads(params_path.read_text(encoding="utf-8"))
    except OSError as e:
        print(f"Invariant check failed:\n- cannot read {params_path}: {e}")
        return 1
    errors = check_params(params)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0
