"""
services/split_service.py — Split engine.

Turns an expense total and a split policy into per-member owed amounts.

Policies:
  equal       total / n per member, rounded to cents (ROUND_HALF_UP).
              The rounding residual is NOT redistributed unless the caller
              names a remainder member, so 100.00 over three members yields
              3 x 33.33 (sum 99.99). Callers compare totals with tolerance.
  exact       caller-supplied amount per member; must sum to the total
              within tolerance (SPLIT_SUM_MISMATCH).
  percentage  caller-supplied percentage per member; must sum to 100 within
              tolerance (PERCENTAGE_SUM_MISMATCH). amount = total * pct / 100,
              rounded to cents. Both amount and percentage are returned.

Layer rules:
  - No Flask imports, no session. Pure function over Decimals.
  - Output order matches the order of `members`.
"""

from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple, Sequence

from groupledger.app.errors import ErrorCode, ValidationError
from groupledger.app.models.expense import SplitType
from groupledger.app.money import HUNDRED, TOLERANCE, ZERO, to_decimal, to_money


class SplitPolicy(NamedTuple):
    """
    Tagged split policy. `values` is None for equal splits, otherwise one
    amount (exact) or percentage (percentage) per member, in member order.
    """

    split_type: SplitType
    values: tuple[Decimal, ...] | None = None

    @classmethod
    def equal(cls) -> "SplitPolicy":
        return cls(SplitType.EQUAL)

    @classmethod
    def exact(cls, amounts: Sequence) -> "SplitPolicy":
        return cls(SplitType.EXACT, tuple(to_decimal(a) for a in amounts))

    @classmethod
    def percentage(cls, percentages: Sequence) -> "SplitPolicy":
        return cls(SplitType.PERCENTAGE, tuple(to_decimal(p) for p in percentages))


# ── Validation helpers ─────────────────────────────────────────────────────

def _require_members(members: Sequence[int]) -> None:
    if not members:
        raise ValidationError(
            ErrorCode.NO_PARTICIPANTS,
            "An expense needs at least one participant.",
            field="participants",
        )
    if len(set(members)) != len(members):
        raise ValidationError(
            ErrorCode.DUPLICATE_SPLIT_USER,
            "The same member appears more than once in the split.",
            field="participants",
        )


def _require_value_per_member(policy: SplitPolicy, members: Sequence[int]) -> tuple[Decimal, ...]:
    values = policy.values or ()
    if len(values) != len(members):
        raise ValidationError(
            ErrorCode.SPLIT_COUNT_MISMATCH,
            f"Expected {len(members)} split values, got {len(values)}.",
            field="values",
        )
    for value in values:
        if value < ZERO:
            raise ValidationError(
                ErrorCode.INVALID_AMOUNT,
                "Split values must not be negative.",
                field="values",
            )
    return values


def validate_split_total(
        splits: Sequence[dict],
        total: Decimal,
        tolerance: Decimal = TOLERANCE,
) -> None:
    """Raises SPLIT_SUM_MISMATCH unless |sum(split amounts) - total| <= tolerance."""
    split_sum = sum((s["amount"] for s in splits), ZERO)
    if abs(split_sum - total) > tolerance:
        raise ValidationError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Split amounts ({split_sum}) do not equal expense amount ({total}).",
            field="values",
        )


# ── Policies ───────────────────────────────────────────────────────────────

def _equal_splits(
        total: Decimal,
        members: Sequence[int],
        remainder_member_id: int | None,
) -> list[dict]:
    share = to_money(total / Decimal(len(members)))
    splits = [{"user_id": uid, "amount": share, "percentage": None} for uid in members]

    if remainder_member_id is not None:
        residual = total - share * len(members)
        if residual != ZERO:
            # A payer outside the participant list hands the residual to the first participant.
            target = next(
                (s for s in splits if s["user_id"] == remainder_member_id),
                splits[0],
            )
            target["amount"] += residual

    return splits


def _exact_splits(
        total: Decimal,
        values: tuple[Decimal, ...],
        members: Sequence[int],
        tolerance: Decimal,
) -> list[dict]:
    splits = [
        {"user_id": uid, "amount": amount, "percentage": None}
        for uid, amount in zip(members, values)
    ]
    validate_split_total(splits, total, tolerance)
    return splits


def _percentage_splits(
        total: Decimal,
        values: tuple[Decimal, ...],
        members: Sequence[int],
        tolerance: Decimal,
) -> list[dict]:
    pct_sum = sum(values, ZERO)
    if abs(pct_sum - HUNDRED) > tolerance:
        raise ValidationError(
            ErrorCode.PERCENTAGE_SUM_MISMATCH,
            f"Percentages sum to {pct_sum}, expected 100.",
            field="values",
        )
    return [
        {"user_id": uid, "amount": to_money(total * pct / HUNDRED), "percentage": pct}
        for uid, pct in zip(members, values)
    ]


# ── Public API ─────────────────────────────────────────────────────────────

def compute_splits(
        total,
        policy: SplitPolicy,
        members: Sequence[int],
        remainder_member_id: int | None = None,
        tolerance: Decimal = TOLERANCE,
) -> list[dict]:
    """
    Divides `total` among `members` according to `policy`.

    Args:
        total:               Expense amount (Decimal, str or int). Must be > 0.
        policy:              SplitPolicy.equal() / .exact(...) / .percentage(...).
        members:             Ordered participant ids; output follows this order.
        remainder_member_id: Equal splits only. When given, the rounding
                             residual is added to this member's share, or
                             to the first member's if they are not listed.
        tolerance:           Sum tolerance for exact and percentage checks.

    Returns:
        [{"user_id": int, "amount": Decimal, "percentage": Decimal | None}, ...]

    Raises:
        ValidationError(INVALID_AMOUNT | NO_PARTICIPANTS | DUPLICATE_SPLIT_USER |
                        SPLIT_COUNT_MISMATCH | SPLIT_SUM_MISMATCH |
                        PERCENTAGE_SUM_MISMATCH)
    """
    total = to_decimal(total)
    if total <= ZERO:
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            "Amount must be greater than zero.",
            field="amount",
        )
    _require_members(members)

    if policy.split_type == SplitType.EQUAL:
        return _equal_splits(total, members, remainder_member_id)

    values = _require_value_per_member(policy, members)
    if policy.split_type == SplitType.EXACT:
        return _exact_splits(total, values, members, tolerance)
    if policy.split_type == SplitType.PERCENTAGE:
        return _percentage_splits(total, values, members, tolerance)

    raise ValidationError(
        ErrorCode.INVALID_SPLIT_TYPE,
        f"Unknown split type {policy.split_type!r}.",
        field="split_type",
    )
