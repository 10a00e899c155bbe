"""Shared base utilities for data models."""
import secrets
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")


def generate_id(prefix: str) -> str:
    """Generate a unique ID with a prefix."""
    return f"{prefix}_{secrets.token_hex(6)}"


def utcnow() -> datetime:
    """Microsecond-resolution creation timestamp (used for earliest-created tie-breaks)."""
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """Coerce ints, floats, strings and Decimals to a two-place Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
