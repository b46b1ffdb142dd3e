"""Investment step cursor — persisted progress of one investment attempt.

An investment runs a fixed sequence of steps. After each step succeeds the
cursor is advanced and persisted, so a retry with the same investment id
resumes after the last completed step instead of resubmitting ledger
operations that already went through.

Step order:
    STARTED → BOOTSTRAPPED → PAID → TRUSTED → MINTED → BOOKED → SETTLED
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from openfinancing.errors import InvalidStateError
from openfinancing.models.assets import AssetRole
from openfinancing.models.serialization import dec, parse_ts, ts


class InvestmentStep(str, enum.Enum):
    """Last completed step of an investment."""
    STARTED = "started"
    BOOTSTRAPPED = "bootstrapped"
    PAID = "paid"
    TRUSTED = "trusted"
    MINTED = "minted"
    BOOKED = "booked"
    SETTLED = "settled"

    @property
    def ordinal(self) -> int:
        return _STEP_ORDER.index(self)


_STEP_ORDER = list(InvestmentStep)


@dataclass
class InvestmentRecord:
    """Progress of a single Invest call, keyed by investment_id."""
    investment_id: str
    project_index: int
    investor_index: int
    recipient_index: int
    amount: Decimal
    role: AssetRole
    step: InvestmentStep = InvestmentStep.STARTED
    asset_code: Optional[str] = None
    tx_refs: dict[str, str] = field(default_factory=dict)
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    def has_completed(self, step: InvestmentStep) -> bool:
        return self.step.ordinal >= step.ordinal

    @property
    def awaits_booking(self) -> bool:
        """Paid for but not yet booked into the project."""
        return self.has_completed(InvestmentStep.PAID) and not self.has_completed(
            InvestmentStep.BOOKED
        )

    def advance(
        self,
        step: InvestmentStep,
        tx_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Move the cursor forward. Moving backwards is a programming error."""
        if step.ordinal < self.step.ordinal:
            raise InvalidStateError(
                f"Investment {self.investment_id} cannot move back from "
                f"{self.step.value} to {step.value}"
            )
        self.step = step
        if tx_ref is not None:
            self.tx_refs[step.value] = tx_ref
        if now is not None:
            self.updated_utc = now

    def matches(
        self,
        project_index: int,
        investor_index: int,
        amount: Decimal,
        role: AssetRole,
    ) -> bool:
        """True if a retry describes the same investment."""
        return (
            self.project_index == project_index
            and self.investor_index == investor_index
            and self.amount == amount
            and self.role == role
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "investment_id": self.investment_id,
            "project_index": self.project_index,
            "investor_index": self.investor_index,
            "recipient_index": self.recipient_index,
            "amount": str(self.amount),
            "role": self.role.value,
            "step": self.step.value,
            "asset_code": self.asset_code,
            "tx_refs": dict(self.tx_refs),
            "created_utc": ts(self.created_utc),
            "updated_utc": ts(self.updated_utc),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> InvestmentRecord:
        return InvestmentRecord(
            investment_id=data["investment_id"],
            project_index=int(data["project_index"]),
            investor_index=int(data["investor_index"]),
            recipient_index=int(data["recipient_index"]),
            amount=dec(data["amount"]),
            role=AssetRole(data["role"]),
            step=InvestmentStep(data.get("step", InvestmentStep.STARTED.value)),
            asset_code=data.get("asset_code"),
            tx_refs=dict(data.get("tx_refs", {})),
            created_utc=parse_ts(data.get("created_utc")),
            updated_utc=parse_ts(data.get("updated_utc")),
        )
