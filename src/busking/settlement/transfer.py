"""Value transfer — the single capability the ledger consumes from its host.

The engine never touches balances directly. It moves value through the
ValueTransfer protocol, so the settlement backend is pluggable: an
in-memory ledger for tests and the CLI, or any host rail that can move a
fungible amount between two identities and fail cleanly.

Contract for implementations:
- transfer() either moves the full amount and returns a receipt, or
  raises InsufficientBalanceError with no partial effect.
- Identities are opaque strings.
"""

from __future__ import annotations

from typing import Dict, List, Protocol, runtime_checkable

from busking.models.errors import InsufficientBalanceError
from busking.models.ledger import TransferReceipt


@runtime_checkable
class ValueTransfer(Protocol):
    """Abstract contract for a host value-transfer primitive."""

    def transfer(self, amount: int, sender: str, recipient: str) -> TransferReceipt:
        """Move amount from sender to recipient, atomically."""
        ...


class InMemoryBalances:
    """In-memory balance sheet implementing ValueTransfer.

    Usage:
        balances = InMemoryBalances()
        balances.fund("tipper", 5_000_000)
        receipt = balances.transfer(1_000, "tipper", "performer")
    """

    def __init__(self, initial: Dict[str, int] | None = None) -> None:
        self._balances: Dict[str, int] = {}
        self._receipts: List[TransferReceipt] = []
        for identity, amount in (initial or {}).items():
            self.fund(identity, amount)

    def fund(self, identity: str, amount: int) -> int:
        """Credit an identity from outside the ledger. Returns the new balance."""
        if amount <= 0:
            raise ValueError("Funding amount must be positive")
        if not identity:
            raise ValueError("Identity must be non-empty")
        self._balances[identity] = self._balances.get(identity, 0) + amount
        return self._balances[identity]

    def balance_of(self, identity: str) -> int:
        return self._balances.get(identity, 0)

    def transfer(self, amount: int, sender: str, recipient: str) -> TransferReceipt:
        """Move amount between identities, or raise with nothing moved."""
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")
        available = self._balances.get(sender, 0)
        if available < amount:
            raise InsufficientBalanceError(
                f"{sender} holds {available}, needs {amount}"
            )
        self._balances[sender] = available - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        receipt = TransferReceipt(amount=amount, sender=sender, recipient=recipient)
        self._receipts.append(receipt)
        return receipt

    @property
    def receipts(self) -> List[TransferReceipt]:
        return list(self._receipts)

    @property
    def receipt_count(self) -> int:
        return len(self._receipts)

    def rollback(self, receipt_count: int) -> None:
        """Undo every transfer recorded after the first receipt_count receipts.

        Receipts are unwound newest first and removed from the history.
        """
        while len(self._receipts) > receipt_count:
            receipt = self._receipts.pop()
            self._balances[receipt.recipient] -= receipt.amount
            self._balances[receipt.sender] = self._balances.get(receipt.sender, 0) + receipt.amount

    def reverse_funding(self, identity: str, amount: int) -> None:
        """Remove a credit made by fund() that must not stand."""
        if self._balances.get(identity, 0) < amount:
            raise ValueError(f"Cannot reverse funding of {amount} for {identity}")
        self._balances[identity] -= amount
