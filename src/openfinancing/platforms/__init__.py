"""Platform-specific financing products."""

from openfinancing.platforms.bonds import BondPlatform, bond_asset_code, bond_issuer_key

__all__ = ["BondPlatform", "bond_asset_code", "bond_issuer_key"]
