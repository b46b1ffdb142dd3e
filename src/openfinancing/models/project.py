"""Project model — a financed asset and its funding lifecycle.

All monetary values use Decimal for exact arithmetic. No floats in finance.

Invariants enforced by this model:
- 0 <= money_raised <= total_value
- Each role's asset code is set at most once and never overwritten
- Stage transitions follow PROJECT_TRANSITIONS (no skipped states)
- An investment id is booked into money_raised at most once

State machine:
    PROPOSED → OPEN                  (contractor accepts the proposal)
    OPEN → PARTIALLY_FUNDED          (first successful investment)
    PARTIALLY_FUNDED → FUNDED        (raise target met exactly, debt minted)
    FUNDED → IN_REPAYMENT            (first payback)
    IN_REPAYMENT → CLOSED            (balance left reaches zero)
    FUNDED → CLOSED                  (single payback retires the whole debt)
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from openfinancing.errors import ConsistencyError, InvalidStateError
from openfinancing.models.assets import AssetRole
from openfinancing.models.serialization import dec, parse_ts, ts


class ProjectStage(str, enum.Enum):
    """Funding stage of a project."""
    PROPOSED = "proposed"
    OPEN = "open"
    PARTIALLY_FUNDED = "partially_funded"
    FUNDED = "funded"
    IN_REPAYMENT = "in_repayment"
    CLOSED = "closed"


PROJECT_TRANSITIONS: Dict[ProjectStage, frozenset] = {
    ProjectStage.PROPOSED: frozenset({ProjectStage.OPEN}),
    ProjectStage.OPEN: frozenset({ProjectStage.PARTIALLY_FUNDED}),
    ProjectStage.PARTIALLY_FUNDED: frozenset({ProjectStage.FUNDED}),
    ProjectStage.FUNDED: frozenset({
        ProjectStage.IN_REPAYMENT,
        ProjectStage.CLOSED,
    }),
    ProjectStage.IN_REPAYMENT: frozenset({ProjectStage.CLOSED}),
    ProjectStage.CLOSED: frozenset(),
}

# Stages in which the project accepts further investment.
INVESTABLE_STAGES = frozenset({ProjectStage.OPEN, ProjectStage.PARTIALLY_FUNDED})

# Stages reached only after debt and payback tokens were delivered.
POST_FUNDING_STAGES = frozenset({
    ProjectStage.FUNDED,
    ProjectStage.IN_REPAYMENT,
    ProjectStage.CLOSED,
})

_CODE_FIELDS = {
    AssetRole.INVESTOR: "investor_asset_code",
    AssetRole.SEED: "seed_asset_code",
    AssetRole.DEBT: "debt_asset_code",
    AssetRole.PAYBACK: "payback_asset_code",
}


@dataclass
class Project:
    """A financed asset under construction or in operation.

    Mutable — money raised, asset codes and stage change over the
    project's life. Descriptive fields (title, metadata, location, years,
    total_value) are fixed at creation and feed asset-code derivation.
    """
    index: int
    title: str
    total_value: Decimal
    years: int
    metadata: str
    recipient_index: int
    location: str = ""
    description: str = ""
    stage: ProjectStage = ProjectStage.PROPOSED
    money_raised: Decimal = Decimal("0")
    balance_left: Decimal = Decimal("0")
    payback_credit: Decimal = Decimal("0")
    investor_asset_code: Optional[str] = None
    seed_asset_code: Optional[str] = None
    debt_asset_code: Optional[str] = None
    payback_asset_code: Optional[str] = None
    issuer_address: Optional[str] = None
    issuer_frozen: bool = False
    originator_index: Optional[int] = None
    contractor_index: Optional[int] = None
    investor_indices: list[int] = field(default_factory=list)
    seed_investor_indices: list[int] = field(default_factory=list)
    booked_investments: list[str] = field(default_factory=list)
    date_initiated: Optional[datetime] = None
    date_funded: Optional[datetime] = None
    date_last_paid: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.total_value <= Decimal("0"):
            raise ValueError("Project total value must be positive")
        if self.years <= 0:
            raise ValueError("Project term must be at least one year")
        if not self.metadata.strip():
            raise ValueError("Project metadata must be non-empty")

    @property
    def remaining(self) -> Decimal:
        """Amount still needed to reach the funding target."""
        return self.total_value - self.money_raised

    @property
    def is_fully_raised(self) -> bool:
        return self.money_raised == self.total_value

    @property
    def accepts_investment(self) -> bool:
        return self.stage in INVESTABLE_STAGES

    def transition_to(self, new_stage: ProjectStage) -> None:
        """Transition to a new stage, validating the transition is legal."""
        allowed = PROJECT_TRANSITIONS.get(self.stage, frozenset())
        if new_stage not in allowed:
            raise InvalidStateError(
                f"Invalid project transition: {self.stage.value} → {new_stage.value}. "
                f"Allowed: {', '.join(sorted(s.value for s in allowed)) or 'none'}"
            )
        self.stage = new_stage

    def asset_code(self, role: AssetRole) -> Optional[str]:
        return getattr(self, _CODE_FIELDS[role])

    def set_asset_code(self, role: AssetRole, code: str) -> None:
        """Record the asset code for a role. Codes are write-once."""
        existing = self.asset_code(role)
        if existing is not None and existing != code:
            raise ConsistencyError(
                f"Project {self.index} already has {role.value} asset code "
                f"{existing}; refusing to overwrite with {code}"
            )
        setattr(self, _CODE_FIELDS[role], code)

    def has_booked(self, investment_id: str) -> bool:
        return investment_id in self.booked_investments

    def record_raise(self, amount: Decimal, investment_id: str) -> None:
        """Add an investment to money raised, preserving raised <= total."""
        if amount <= Decimal("0"):
            raise ValueError("Investment amount must be positive")
        if self.has_booked(investment_id):
            raise ConsistencyError(
                f"Investment {investment_id} is already booked on project {self.index}"
            )
        if self.money_raised + amount > self.total_value:
            raise ConsistencyError(
                f"Raising {amount} would exceed project {self.index} total value "
                f"({self.money_raised} of {self.total_value} raised)"
            )
        self.money_raised += amount
        self.booked_investments.append(investment_id)

    def identity_string(self) -> str:
        """Canonical form of the immutable fields, used to derive asset codes."""
        return json.dumps(
            {
                "index": self.index,
                "metadata": self.metadata,
                "location": self.location,
                "years": self.years,
                "total_value": str(self.total_value),
            },
            sort_keys=True,
            ensure_ascii=False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "title": self.title,
            "total_value": str(self.total_value),
            "years": self.years,
            "metadata": self.metadata,
            "recipient_index": self.recipient_index,
            "location": self.location,
            "description": self.description,
            "stage": self.stage.value,
            "money_raised": str(self.money_raised),
            "balance_left": str(self.balance_left),
            "payback_credit": str(self.payback_credit),
            "investor_asset_code": self.investor_asset_code,
            "seed_asset_code": self.seed_asset_code,
            "debt_asset_code": self.debt_asset_code,
            "payback_asset_code": self.payback_asset_code,
            "issuer_address": self.issuer_address,
            "issuer_frozen": self.issuer_frozen,
            "originator_index": self.originator_index,
            "contractor_index": self.contractor_index,
            "investor_indices": list(self.investor_indices),
            "seed_investor_indices": list(self.seed_investor_indices),
            "booked_investments": list(self.booked_investments),
            "date_initiated": ts(self.date_initiated),
            "date_funded": ts(self.date_funded),
            "date_last_paid": ts(self.date_last_paid),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Project:
        return Project(
            index=int(data["index"]),
            title=data["title"],
            total_value=dec(data["total_value"]),
            years=int(data["years"]),
            metadata=data["metadata"],
            recipient_index=int(data["recipient_index"]),
            location=data.get("location", ""),
            description=data.get("description", ""),
            stage=ProjectStage(data.get("stage", ProjectStage.PROPOSED.value)),
            money_raised=dec(data.get("money_raised", "0")),
            balance_left=dec(data.get("balance_left", "0")),
            payback_credit=dec(data.get("payback_credit", "0")),
            investor_asset_code=data.get("investor_asset_code"),
            seed_asset_code=data.get("seed_asset_code"),
            debt_asset_code=data.get("debt_asset_code"),
            payback_asset_code=data.get("payback_asset_code"),
            issuer_address=data.get("issuer_address"),
            issuer_frozen=bool(data.get("issuer_frozen", False)),
            originator_index=data.get("originator_index"),
            contractor_index=data.get("contractor_index"),
            investor_indices=list(data.get("investor_indices", [])),
            seed_investor_indices=list(data.get("seed_investor_indices", [])),
            booked_investments=list(data.get("booked_investments", [])),
            date_initiated=parse_ts(data.get("date_initiated")),
            date_funded=parse_ts(data.get("date_funded")),
            date_last_paid=parse_ts(data.get("date_last_paid")),
        )
