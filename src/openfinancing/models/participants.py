"""Participant models — investors, recipients, originators and contractors.

Each participant owns a ledger address. Investors and recipients also
carry an encrypted keystore for their signing key; the engine only ever
reads it (via an unlocked session) and never rewrites it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from openfinancing.models.serialization import dec


class EntityKind(str, enum.Enum):
    """Kind of contract entity."""
    ORIGINATOR = "originator"
    CONTRACTOR = "contractor"


@dataclass
class Investor:
    """An identity that supplies capital."""
    index: int
    name: str
    address: str
    keystore: dict[str, Any] = field(default_factory=dict)
    email: str = ""
    notify: bool = False
    amount_invested: Decimal = Decimal("0")
    invested_assets: list[str] = field(default_factory=list)
    invested_bonds: list[str] = field(default_factory=list)
    investment_ids: list[str] = field(default_factory=list)

    def record_investment(self, amount: Decimal, asset_code: str, investment_id: str) -> bool:
        """Book an investment once. Returns False if it was already booked."""
        if investment_id in self.investment_ids:
            return False
        self.amount_invested += amount
        if asset_code not in self.invested_assets:
            self.invested_assets.append(asset_code)
        self.investment_ids.append(investment_id)
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "address": self.address,
            "keystore": self.keystore,
            "email": self.email,
            "notify": self.notify,
            "amount_invested": str(self.amount_invested),
            "invested_assets": list(self.invested_assets),
            "invested_bonds": list(self.invested_bonds),
            "investment_ids": list(self.investment_ids),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Investor:
        return Investor(
            index=int(data["index"]),
            name=data["name"],
            address=data["address"],
            keystore=dict(data.get("keystore", {})),
            email=data.get("email", ""),
            notify=bool(data.get("notify", False)),
            amount_invested=dec(data.get("amount_invested", "0")),
            invested_assets=list(data.get("invested_assets", [])),
            invested_bonds=list(data.get("invested_bonds", [])),
            investment_ids=list(data.get("investment_ids", [])),
        )


@dataclass
class Recipient:
    """The party that receives financed goods and repays the debt."""
    index: int
    name: str
    address: str
    keystore: dict[str, Any] = field(default_factory=dict)
    email: str = ""
    notify: bool = False
    received_debt_assets: list[str] = field(default_factory=list)
    received_payback_assets: list[str] = field(default_factory=list)
    device_id: str = ""
    device_location: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "address": self.address,
            "keystore": self.keystore,
            "email": self.email,
            "notify": self.notify,
            "received_debt_assets": list(self.received_debt_assets),
            "received_payback_assets": list(self.received_payback_assets),
            "device_id": self.device_id,
            "device_location": self.device_location,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Recipient:
        return Recipient(
            index=int(data["index"]),
            name=data["name"],
            address=data["address"],
            keystore=dict(data.get("keystore", {})),
            email=data.get("email", ""),
            notify=bool(data.get("notify", False)),
            received_debt_assets=list(data.get("received_debt_assets", [])),
            received_payback_assets=list(data.get("received_payback_assets", [])),
            device_id=data.get("device_id", ""),
            device_location=data.get("device_location", ""),
        )


@dataclass
class ContractEntity:
    """An originator (proposes projects) or contractor (accepts and builds them)."""
    index: int
    name: str
    kind: EntityKind
    address: str = ""
    description: str = ""
    email: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "kind": self.kind.value,
            "address": self.address,
            "description": self.description,
            "email": self.email,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ContractEntity:
        return ContractEntity(
            index=int(data["index"]),
            name=data["name"],
            kind=EntityKind(data["kind"]),
            address=data.get("address", ""),
            description=data.get("description", ""),
            email=data.get("email"),
        )
