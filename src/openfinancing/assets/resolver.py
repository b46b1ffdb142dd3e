"""Asset identity resolver — content-derived token codes.

A token's code is a digest of its role prefix and the immutable metadata
of the project (or bond) it belongs to. Two independent minting attempts
for the same project and role always agree on the code, so a retried
investment can never mint under a second, different code. Codes for
different projects collide only with negligible probability because the
derivation is a cryptographic digest, not a counter.

Canonical form: prefix + metadata, UTF-8 encoded, hashed with SHA3-512.
The code is a 12-character upper-case slice of the hex digest (12 is the
ledger's maximum asset-code length).
"""

from __future__ import annotations

import hashlib

from openfinancing.errors import ValidationError
from openfinancing.models.assets import AssetRole

ASSET_CODE_LENGTH = 12

# Offset into the 128-character SHA3-512 hex digest where the code starts.
_DIGEST_OFFSET = 96


def asset_id(seed: str) -> str:
    """Derive a ledger asset code from an arbitrary seed string."""
    if not seed:
        raise ValidationError("Cannot derive an asset code from an empty seed")
    digest = hashlib.sha3_512(seed.encode("utf-8")).hexdigest()
    return digest[_DIGEST_OFFSET:_DIGEST_OFFSET + ASSET_CODE_LENGTH].upper()


def resolve_asset_code(role: AssetRole, metadata: str) -> str:
    """Derive the asset code for a role from project metadata.

    Raises:
        ValidationError: if metadata is empty or whitespace.
    """
    if not metadata or not metadata.strip():
        raise ValidationError(
            f"Cannot derive {role.value} asset code: project metadata is empty"
        )
    return asset_id(role.prefix + metadata)
