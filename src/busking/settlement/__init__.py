"""Settlement subsystem — fee split, value transfer, logical clock.

The LedgerEngine lives in busking.settlement.engine and is imported from
there directly, since it depends on busking.policy.
"""

from busking.settlement.clock import BlockClock
from busking.settlement.fees import split_tip
from busking.settlement.transfer import InMemoryBalances, ValueTransfer

__all__ = [
    "BlockClock",
    "InMemoryBalances",
    "ValueTransfer",
    "split_tip",
]
