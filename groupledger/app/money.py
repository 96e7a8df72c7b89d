"""
money.py — Decimal helpers shared by the split engine, the ledger and the
balance queries.

All monetary values are Decimal. Float never appears in money arithmetic.
Two amounts within TOLERANCE of each other are treated as equal; edges whose
magnitude falls within TOLERANCE of zero are removed from the ledger.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

TOLERANCE = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Converts int/str/Decimal to Decimal. Floats go through str() first."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"{value!r} is not a valid amount") from exc


def to_money(value) -> Decimal:
    """Quantizes to cents using ROUND_HALF_UP."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = TOLERANCE) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= tolerance


def is_zero(value: Decimal, tolerance: Decimal = TOLERANCE) -> bool:
    return abs(to_decimal(value)) <= tolerance
