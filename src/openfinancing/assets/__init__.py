"""Asset identity — deterministic token codes per project and role."""

from openfinancing.assets.resolver import ASSET_CODE_LENGTH, asset_id, resolve_asset_code

__all__ = [
    "ASSET_CODE_LENGTH",
    "asset_id",
    "resolve_asset_code",
]
