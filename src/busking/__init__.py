"""Busking ledger — tips for street performers, split with the platform."""

__version__ = "0.1.0"
