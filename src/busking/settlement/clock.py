"""Logical clock — a monotonic block height used for every timestamp."""

from __future__ import annotations


class BlockClock:
    """Monotonic block-height counter.

    The host advances the clock; the engine only reads it.
    """

    def __init__(self, height: int = 0) -> None:
        if height < 0:
            raise ValueError("Block height cannot be negative")
        self._height = height

    def now(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        """Move the clock forward and return the new height."""
        if blocks < 1:
            raise ValueError("Clock can only move forward")
        self._height += blocks
        return self._height

    def advance_to(self, height: int) -> int:
        """Jump to a recorded height (used when replaying the event log)."""
        if height < self._height:
            raise ValueError(
                f"Clock cannot move backwards: {self._height} → {height}"
            )
        self._height = height
        return self._height
