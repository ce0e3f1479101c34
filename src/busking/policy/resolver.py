"""Ledger policy — loads fee bounds and text limits from config.

Configuration lives in config/ledger_params.json. A .env file beside the
config directory may override deployment values:

    BUSKING_PLATFORM_OWNER   identity that receives platform fees
    BUSKING_DATA_DIR         where the CLI keeps its event log
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from busking.policy.invariants import check_params
from busking.settlement.fees import DEFAULT_FEE_BPS, FEE_SCALE_BPS, MAX_FEE_BPS


PARAMS_FILE = "ledger_params.json"


@dataclass(frozen=True)
class TextLimits:
    """Maximum character length of each free-text field."""
    name: int = 50
    instrument: int = 30
    location: int = 100
    session_location: int = 100
    message: int = 100

    def __post_init__(self) -> None:
        for label, value in self.as_dict().items():
            if value <= 0:
                raise ValueError(f"Text limit for {label} must be positive, got {value}")

    def as_dict(self) -> dict[str, int]:
        return {
            "name": self.name,
            "instrument": self.instrument,
            "location": self.location,
            "session_location": self.session_location,
            "message": self.message,
        }


@dataclass(frozen=True)
class LedgerPolicy:
    """Resolved ledger parameters.

    Invariants:
        fee_scale_bps == 10000
        0 <= default_fee_bps <= max_fee_bps <= 1000
    """
    default_fee_bps: int = DEFAULT_FEE_BPS
    max_fee_bps: int = MAX_FEE_BPS
    fee_scale_bps: int = FEE_SCALE_BPS
    text_limits: TextLimits = field(default_factory=TextLimits)
    platform_owner: Optional[str] = None
    data_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.fee_scale_bps != FEE_SCALE_BPS:
            raise ValueError(
                f"fee_scale_bps must be {FEE_SCALE_BPS}, got {self.fee_scale_bps}"
            )
        if not 0 <= self.default_fee_bps <= self.max_fee_bps <= MAX_FEE_BPS:
            raise ValueError(
                "Fee bounds must satisfy 0 <= default_fee_bps <= max_fee_bps "
                f"<= {MAX_FEE_BPS}, got {self.default_fee_bps}, {self.max_fee_bps}"
            )

    @classmethod
    def from_dict(cls, params: dict[str, Any]) -> LedgerPolicy:
        limits = params.get("text_limits", {})
        return cls(
            default_fee_bps=int(params.get("default_fee_bps", DEFAULT_FEE_BPS)),
            max_fee_bps=int(params.get("max_fee_bps", MAX_FEE_BPS)),
            fee_scale_bps=int(params.get("fee_scale_bps", FEE_SCALE_BPS)),
            text_limits=TextLimits(**{k: int(v) for k, v in limits.items()}),
            platform_owner=params.get("platform_owner") or None,
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> LedgerPolicy:
        """Load ledger_params.json, apply any .env overrides, then check invariants.

        Raises ValueError if the file is missing or violates a ledger invariant.
        """
        params_path = config_dir / PARAMS_FILE
        if not params_path.exists():
            raise ValueError(f"Missing ledger config: {params_path}")
        params = json.loads(params_path.read_text(encoding="utf-8"))

        load_dotenv(config_dir.parent / ".env")
        owner = os.getenv("BUSKING_PLATFORM_OWNER")
        if owner:
            params["platform_owner"] = owner

        errors = check_params(params)
        if errors:
            raise ValueError(f"Invalid ledger config {params_path}: {'; '.join(errors)}")

        policy = cls.from_dict(params)
        data_dir = os.getenv("BUSKING_DATA_DIR")
        if data_dir:
            policy = replace(policy, data_dir=Path(data_dir))
        return policy
