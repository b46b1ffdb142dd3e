"""Ledger access — client contract, backends and the engine-facing adapter."""

from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.ledger.client import LedgerClient
from openfinancing.ledger.memory import InMemoryLedger, LedgerTransaction

__all__ = [
    "LedgerAdapter",
    "LedgerClient",
    "InMemoryLedger",
    "LedgerTransaction",
]
