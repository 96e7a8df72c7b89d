"""
services/expense_service.py — Expense business logic.

An expense is recorded in three steps inside one transaction:
  1. membership checks (payer and every participant must be group members)
  2. the split engine turns amount + policy into per-member shares
  3. the expense and split rows are written and every share is applied to
     the balance ledger as "participant owes payer share"

Deleting an expense is the inverse: each share is applied in the opposite
direction and the row is soft-deleted (deleted_at stamped). Editing the payer,
amount or split inputs reverses the old shares and applies the new ones in the
same transaction.

Checks:
  PAYER_NOT_MEMBER (422)       paid_by_user_id is not a group member
  SPLIT_USER_NOT_MEMBER (422)  a participant is not a group member
  split engine errors (422)    SPLIT_SUM_MISMATCH, PERCENTAGE_SUM_MISMATCH, ...

Equal splits keep the rounding residual unassigned unless the app is
configured with EQUAL_SPLIT_REMAINDER_TO_PAYER; a SPLIT_REMAINDER warning is
returned whenever the shares do not add up to the amount exactly.

Layer rules:
  - No Flask imports. Config values arrive as arguments.
  - Only flush here. The route commits.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import ErrorCode, NotFoundError, ValidationError, WarningCode
from groupledger.app.models.expense import Expense, SplitType
from groupledger.app.models.expense_split import ExpenseSplit
from groupledger.app.money import TOLERANCE, ZERO
from groupledger.app.services import group_service, ledger_service
from groupledger.app.services.balance_store import SqlBalanceStore
from groupledger.app.services.split_service import SplitPolicy, compute_splits


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
        )
    return expense


def _validate_members(
        group_id: int,
        paid_by_user_id: int,
        participants: list[int],
        member_ids: list[int],
) -> None:
    member_set = set(member_ids)
    if paid_by_user_id not in member_set:
        raise _not_member(ErrorCode.PAYER_NOT_MEMBER, paid_by_user_id, group_id, "paid_by_user_id")
    for user_id in participants:
        if user_id not in member_set:
            raise _not_member(ErrorCode.SPLIT_USER_NOT_MEMBER, user_id, group_id, "participants")


def _not_member(code: str, user_id: int, group_id: int, field: str) -> ValidationError:
    return ValidationError(
        code,
        f"User {user_id} is not a member of group {group_id}.",
        field=field,
    )


def _policy_for(split_type: SplitType, values) -> SplitPolicy:
    if split_type == SplitType.EXACT:
        return SplitPolicy.exact(values or [])
    if split_type == SplitType.PERCENTAGE:
        return SplitPolicy.percentage(values or [])
    return SplitPolicy.equal()


def _compute_shares(
        amount: Decimal,
        split_type: SplitType,
        participants: list[int],
        values,
        paid_by_user_id: int,
        remainder_to_payer: bool,
        tolerance: Decimal,
) -> tuple[list[dict], list[dict]]:
    """Runs the split engine and returns (splits, warnings)."""
    splits = compute_splits(
        amount,
        _policy_for(split_type, values),
        participants,
        remainder_member_id=paid_by_user_id if remainder_to_payer else None,
        tolerance=tolerance,
    )

    warnings: list[dict] = []
    split_sum = sum((s["amount"] for s in splits), ZERO)
    if split_sum != amount:
        warnings.append({
            "code": WarningCode.SPLIT_REMAINDER,
            "message": (
                f"Split shares sum to {split_sum}, {amount - split_sum} short of "
                f"the expense amount {amount}."
            ),
        })
    return splits, warnings


def _write_split_rows(expense: Expense, splits: list[dict], session: Session) -> None:
    for s in splits:
        session.add(ExpenseSplit(
            expense_id=expense.id,
            user_id=s["user_id"],
            amount=s["amount"],
            percentage=s["percentage"],
        ))
    session.flush()


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        data: dict,
        session: Session,
        remainder_to_payer: bool = False,
        tolerance: Decimal = TOLERANCE,
) -> tuple[Expense, list[dict]]:
    """
    Records a new expense and applies its splits to the ledger.

    Args:
        data: Validated dict from CreateExpenseSchema. Keys:
              paid_by_user_id, description, amount, split_type,
              participants (optional for equal splits: defaults to every
              group member), values (exact amounts or percentages).
        remainder_to_payer: give the equal-split rounding residual to the payer.

    Returns:
        (Expense, warnings)
    """
    group_service.get_group_or_404(group_id, session)

    paid_by_user_id: int = data["paid_by_user_id"]
    amount: Decimal = data["amount"]
    split_type: SplitType = data.get("split_type", SplitType.EQUAL)

    member_ids = group_service.get_member_ids(group_id, session)
    participants = list(data.get("participants") or member_ids)
    _validate_members(group_id, paid_by_user_id, participants, member_ids)

    splits, warnings = _compute_shares(
        amount, split_type, participants, data.get("values"),
        paid_by_user_id, remainder_to_payer, tolerance,
    )

    expense = Expense(
        group_id=group_id,
        paid_by_user_id=paid_by_user_id,
        description=data["description"],
        amount=amount,
        split_type=split_type,
    )
    session.add(expense)
    session.flush()  # populate expense.id before creating splits

    _write_split_rows(expense, splits, session)

    ledger_service.apply_expense_splits(
        SqlBalanceStore(session), group_id, paid_by_user_id, splits, tolerance,
    )

    session.refresh(expense)
    return expense, warnings


_SHARE_FIELDS = ("paid_by_user_id", "amount", "split_type", "participants", "values")


def edit_expense(
        expense_id: int,
        data: dict,
        session: Session,
        remainder_to_payer: bool = False,
        tolerance: Decimal = TOLERANCE,
) -> tuple[Expense, list[dict]]:
    """
    Partially updates an expense.

    A description-only edit touches nothing else. Any change to the payer,
    amount or split inputs moves the ledger in one step: the old shares are
    reversed against the old payer, the new shares are computed and applied
    against the (possibly new) payer, and the split rows are replaced.

    Args:
        data: Validated partial dict from UpdateExpenseSchema.

    Returns:
        (Expense, warnings)

    Raises:
        NotFoundError(EXPENSE_NOT_FOUND)
        ValidationError(EXPENSE_DELETED | PAYER_NOT_MEMBER | SPLIT_USER_NOT_MEMBER |
                        split engine codes)
    """
    expense = _get_expense_or_404(expense_id, session)
    if expense.is_deleted:
        raise ValidationError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
        )

    if "description" in data:
        expense.description = data["description"]

    warnings: list[dict] = []
    if any(name in data for name in _SHARE_FIELDS):
        old_splits = [
            {"user_id": s.user_id, "amount": s.amount, "percentage": s.percentage}
            for s in expense.splits
        ]
        old_participants = [s["user_id"] for s in old_splits]
        old_payer = expense.paid_by_user_id

        paid_by_user_id = data.get("paid_by_user_id", old_payer)
        amount = data.get("amount", expense.amount)
        split_type = data.get("split_type", expense.split_type)
        participants = list(data.get("participants") or old_participants)

        values = data.get("values")
        if (
                values is None
                and split_type != SplitType.EQUAL
                and split_type == expense.split_type
                and participants == old_participants
        ):
            field = "percentage" if split_type == SplitType.PERCENTAGE else "amount"
            values = [s[field] for s in old_splits]

        member_ids = group_service.get_member_ids(expense.group_id, session)
        _validate_members(expense.group_id, paid_by_user_id, participants, member_ids)

        splits, warnings = _compute_shares(
            amount, split_type, participants, values,
            paid_by_user_id, remainder_to_payer, tolerance,
        )

        store = SqlBalanceStore(session)
        ledger_service.reverse_expense_splits(
            store, expense.group_id, old_payer, old_splits, tolerance,
        )

        expense.splits.clear()
        session.flush()  # old rows go before new rows reuse (expense_id, user_id)

        expense.paid_by_user_id = paid_by_user_id
        expense.amount = amount
        expense.split_type = split_type
        _write_split_rows(expense, splits, session)

        ledger_service.apply_expense_splits(
            store, expense.group_id, paid_by_user_id, splits, tolerance,
        )

    expense.updated_at = datetime.now(timezone.utc)
    session.flush()
    session.refresh(expense)
    return expense, warnings


def list_expenses(group_id: int, session: Session) -> list[Expense]:
    """Returns the group's active expenses, newest first."""
    group_service.get_group_or_404(group_id, session)

    stmt = (
        select(Expense)
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_expense(expense_id: int, session: Session) -> Expense:
    """Returns one expense with its splits, deleted or not."""
    return _get_expense_or_404(expense_id, session)


def delete_expense(
        expense_id: int,
        session: Session,
        tolerance: Decimal = TOLERANCE,
) -> Expense:
    """
    Soft-deletes an expense and reverses its shares on the ledger.

    Idempotent: deleting an already-deleted expense changes nothing.
    """
    expense = _get_expense_or_404(expense_id, session)
    if expense.is_deleted:
        return expense

    ledger_service.reverse_expense_splits(
        SqlBalanceStore(session),
        expense.group_id,
        expense.paid_by_user_id,
        list(expense.splits),
        tolerance,
    )
    expense.deleted_at = datetime.now(timezone.utc)
    session.flush()
    return expense
