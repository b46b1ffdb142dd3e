"""Asset roles and ledger asset references."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class AssetRole(str, enum.Enum):
    """The role a token plays for its project.

    The prefix is hashed together with the project's metadata to give the
    token its code, so the role is part of the token's identity.
    """
    INVESTOR = "investor"
    SEED = "seed"
    DEBT = "debt"
    PAYBACK = "payback"
    BOND = "bond"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]


_PREFIXES = {
    AssetRole.INVESTOR: "InvestorAssets_",
    AssetRole.SEED: "SeedAssets_",
    AssetRole.DEBT: "DebtAssets_",
    AssetRole.PAYBACK: "PaybackAssets_",
    AssetRole.BOND: "BondAssets_",
}

# Roles an investor can be paid in.
INVESTMENT_ROLES = frozenset({AssetRole.INVESTOR, AssetRole.SEED})


@dataclass(frozen=True)
class Asset:
    """A ledger token: a code plus the address allowed to issue it."""
    code: str
    issuer: str

    def __post_init__(self) -> None:
        if not self.code:
            raise ValueError("Asset code must be non-empty")
        if not self.issuer:
            raise ValueError("Asset issuer must be non-empty")
