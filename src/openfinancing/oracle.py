"""Price oracle — the amount due per payback period."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable


@runtime_checkable
class PriceOracle(Protocol):
    """Source of the per-period amount a recipient owes."""

    def amount_due(self, debt_asset_code: str) -> Decimal:
        ...


class FixedPriceOracle:
    """Returns the same amount for every asset and period."""

    def __init__(self, amount: Decimal = Decimal("200")) -> None:
        if amount < Decimal("0"):
            raise ValueError("Oracle amount must be non-negative")
        self._amount = amount

    def amount_due(self, debt_asset_code: str) -> Decimal:
        return self._amount
