# src/mintlock/amounts.py
"""Exact conversion between whole-token quantities and ledger base units.

The canonical direction (whole -> base) is pure integer arithmetic. Supplies
reach 10^9 * 10^18, far past what a binary float can represent, so a float
never appears on that path. The reverse direction returns a Decimal and is for
display only.
"""

from __future__ import annotations

import re
from decimal import Decimal

from mintlock.errors import InvalidAmount

MIN_DECIMALS = 0
MAX_DECIMALS = 18
U64_MAX = (1 << 64) - 1

_WHOLE_RE = re.compile(r"^[0-9]+$")


def validate_decimals(decimals: int) -> int:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise InvalidAmount("invalid_decimals", "decimals_not_int", {"decimals": repr(decimals)})
    if decimals < MIN_DECIMALS or decimals > MAX_DECIMALS:
        raise InvalidAmount(
            "invalid_decimals",
            "decimals_out_of_range",
            {"decimals": decimals, "min": MIN_DECIMALS, "max": MAX_DECIMALS},
        )
    return decimals


def to_base_units(whole_tokens: str, decimals: int) -> int:
    """Convert a whole-token integer literal to base units exactly."""
    validate_decimals(decimals)
    if not isinstance(whole_tokens, str):
        raise InvalidAmount("invalid_amount", "whole_tokens_not_str", {"value": repr(whole_tokens)})
    s = whole_tokens.strip()
    if not _WHOLE_RE.match(s):
        raise InvalidAmount("invalid_amount", "not_a_non_negative_integer", {"value": whole_tokens})
    return int(s) * (10**decimals)


def to_whole_tokens(base_units: int, decimals: int) -> Decimal:
    validate_decimals(decimals)
    if isinstance(base_units, bool) or not isinstance(base_units, int) or base_units < 0:
        raise InvalidAmount("invalid_amount", "base_units_not_non_negative_int", {"value": repr(base_units)})
    # String construction is exact; arithmetic would round at context precision.
    return Decimal(f"{base_units}E-{decimals}")


def format_whole_tokens(base_units: int, decimals: int) -> str:
    """Human-readable quantity, e.g. 1,000,000,000 or 12.5."""
    whole, frac = divmod(base_units, 10**validate_decimals(decimals))
    out = f"{whole:,}"
    if frac:
        out += "." + str(frac).rjust(decimals, "0").rstrip("0")
    return out


def ensure_u64(amount: int) -> int:
    """Ledger amounts are u64; reject anything else before it reaches the wire."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("invalid_amount", "amount_not_int", {"value": repr(amount)})
    if amount < 0 or amount > U64_MAX:
        raise InvalidAmount("invalid_amount", "amount_exceeds_u64", {"value": str(amount), "max": str(U64_MAX)})
    return amount
