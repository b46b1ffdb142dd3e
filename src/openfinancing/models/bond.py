"""Construction bond model for the housing platform.

A construction bond is sold in units of fixed cost. Each investment buys
at most one unit's worth of bond tokens; the total raise is bounded by
cost_of_unit * no_of_units.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from openfinancing.models.serialization import dec, parse_ts, ts


@dataclass
class ConstructionBond:
    """Parameters and raise state of a construction bond."""
    index: int
    title: str
    maturation_date: str
    security_type: str
    interest_rate: Decimal
    rating: str
    bond_issuer: str
    underwriter: str
    cost_of_unit: Decimal
    no_of_units: int
    recipient_index: int
    member_rights: str = ""
    instrument_type: str = ""
    tax: str = ""
    location: str = ""
    description: str = ""
    amount_raised: Decimal = Decimal("0")
    investor_asset_code: Optional[str] = None
    issuer_address: Optional[str] = None
    investor_indices: list[int] = field(default_factory=list)
    date_initiated: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.cost_of_unit <= Decimal("0"):
            raise ValueError("Bond unit cost must be positive")
        if self.no_of_units <= 0:
            raise ValueError("Bond must have at least one unit")

    @property
    def total_value(self) -> Decimal:
        return self.cost_of_unit * self.no_of_units

    def identity_string(self) -> str:
        """Canonical form of the bond's terms, used to derive its asset code."""
        return json.dumps(
            {
                "index": self.index,
                "maturation_date": self.maturation_date,
                "security_type": self.security_type,
                "rating": self.rating,
                "bond_issuer": self.bond_issuer,
            },
            sort_keys=True,
            ensure_ascii=False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "title": self.title,
            "maturation_date": self.maturation_date,
            "security_type": self.security_type,
            "interest_rate": str(self.interest_rate),
            "rating": self.rating,
            "bond_issuer": self.bond_issuer,
            "underwriter": self.underwriter,
            "cost_of_unit": str(self.cost_of_unit),
            "no_of_units": self.no_of_units,
            "recipient_index": self.recipient_index,
            "member_rights": self.member_rights,
            "instrument_type": self.instrument_type,
            "tax": self.tax,
            "location": self.location,
            "description": self.description,
            "amount_raised": str(self.amount_raised),
            "investor_asset_code": self.investor_asset_code,
            "issuer_address": self.issuer_address,
            "investor_indices": list(self.investor_indices),
            "date_initiated": ts(self.date_initiated),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ConstructionBond:
        return ConstructionBond(
            index=int(data["index"]),
            title=data["title"],
            maturation_date=data["maturation_date"],
            security_type=data["security_type"],
            interest_rate=dec(data["interest_rate"]),
            rating=data["rating"],
            bond_issuer=data["bond_issuer"],
            underwriter=data["underwriter"],
            cost_of_unit=dec(data["cost_of_unit"]),
            no_of_units=int(data["no_of_units"]),
            recipient_index=int(data["recipient_index"]),
            member_rights=data.get("member_rights", ""),
            instrument_type=data.get("instrument_type", ""),
            tax=data.get("tax", ""),
            location=data.get("location", ""),
            description=data.get("description", ""),
            amount_raised=dec(data.get("amount_raised", "0")),
            investor_asset_code=data.get("investor_asset_code"),
            issuer_address=data.get("issuer_address"),
            investor_indices=list(data.get("investor_indices", [])),
            date_initiated=parse_ts(data.get("date_initiated")),
        )
