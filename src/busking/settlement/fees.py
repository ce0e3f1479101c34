"""Platform fee split — divides a gross tip between performer and platform.

The formula is fully deterministic:

    platform_fee = floor(amount × fee_bps / FEE_SCALE_BPS)
    net_amount = amount - platform_fee

Integer (floor) division throughout. Any fractional remainder favours the
performer: the fee is rounded down, never up.

Invariants:
- net_amount + platform_fee == amount
- 0 <= platform_fee <= amount
"""

from __future__ import annotations

from busking.models.ledger import FeeSplit


FEE_SCALE_BPS = 10000
DEFAULT_FEE_BPS = 100
MAX_FEE_BPS = 1000


def split_tip(amount: int, fee_bps: int, scale_bps: int = FEE_SCALE_BPS) -> FeeSplit:
    """Compute the performer/platform split for one gross tip.

    Args:
        amount: Gross tip amount (must be positive).
        fee_bps: Platform fee in basis points, read at call time.
        scale_bps: Basis-point scale (10000 = 100%).

    Returns:
        A frozen FeeSplit whose parts always sum to amount.
    """
    if amount <= 0:
        raise ValueError(f"Tip amount must be positive, got {amount}")
    if not 0 <= fee_bps <= scale_bps:
        raise ValueError(f"Fee must be within 0..{scale_bps} bps, got {fee_bps}")

    platform_fee = amount * fee_bps // scale_bps
    return FeeSplit(
        amount=amount,
        fee_bps=fee_bps,
        platform_fee=platform_fee,
        net_amount=amount - platform_fee,
    )
