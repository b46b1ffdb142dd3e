"""JSON-safe encoding helpers for stored records.

Decimals are stored as strings (never floats) and datetimes as ISO-8601
UTC strings, so a record survives a store round trip exactly.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


def dec(value: Any) -> Decimal:
    """Coerce a stored or user-supplied value to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Monetary values must not be floats")
    return Decimal(str(value))


def dec_str(value: Decimal) -> str:
    return str(value)


def ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
