"""
services/settlement_service.py — Settlement business logic.

A settlement is a direct payment from one member to another. Recording one:
  1. checks that both parties are group members and are not the same person
  2. appends the immutable settlement record
  3. applies the payment to the pair's balance edge

Steps 2 and 3 run in the same transaction. The record is written first, so a
crash between them leaves a record without its ledger effect, which
ledger_service.rebuild_group_ledger() repairs by replaying history.

Overpayment:
  A payment larger than what the payer currently owes the recipient is still
  recorded. The surplus flips the edge (the recipient now owes the payer) and
  an OVERPAYMENT warning is returned alongside the 201.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Only flush here. The route commits.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import ErrorCode, ValidationError, WarningCode
from groupledger.app.models.settlement import Settlement
from groupledger.app.money import TOLERANCE, ZERO
from groupledger.app.services import group_service, ledger_service
from groupledger.app.services.balance_store import Edge, SqlBalanceStore

logger = logging.getLogger(__name__)


def _current_debt(store: SqlBalanceStore, group_id: int, from_user_id: int, to_user_id: int) -> Decimal:
    """What from_user_id owes to_user_id right now, zero if nothing."""
    edge = store.load_edge(group_id, from_user_id, to_user_id)
    if edge is None or edge.debtor_id != from_user_id:
        return ZERO
    return edge.amount


def create_settlement(
        group_id: int,
        data: dict,
        session: Session,
        tolerance: Decimal = TOLERANCE,
) -> tuple[Settlement, Edge | None, list[dict]]:
    """
    Records a settlement payment and applies it to the ledger.

    Args:
        data: Validated dict from CreateSettlementSchema.
              Keys: from_user_id, to_user_id, amount.

    Returns:
        (Settlement, edge after the payment or None, warnings)

    Raises:
        NotFoundError(GROUP_NOT_FOUND)
        ValidationError(SELF_SETTLEMENT | PAYER_NOT_MEMBER | RECIPIENT_NOT_MEMBER)
    """
    group_service.get_group_or_404(group_id, session)

    from_user_id: int = data["from_user_id"]
    to_user_id: int = data["to_user_id"]
    amount: Decimal = data["amount"]

    if from_user_id == to_user_id:
        raise ValidationError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            field="to_user_id",
        )

    group_service.require_member(
        group_id, from_user_id, session,
        code=ErrorCode.PAYER_NOT_MEMBER, field="from_user_id",
    )
    group_service.require_member(
        group_id, to_user_id, session,
        code=ErrorCode.RECIPIENT_NOT_MEMBER, field="to_user_id",
    )

    store = SqlBalanceStore(session)

    warnings: list[dict] = []
    current_debt = _current_debt(store, group_id, from_user_id, to_user_id)
    if amount > current_debt + tolerance:
        logger.info(
            "Overpayment in group %s: %s pays %s to %s against a debt of %s",
            group_id, from_user_id, amount, to_user_id, current_debt,
        )
        warnings.append({
            "code": WarningCode.OVERPAYMENT,
            "message": (
                f"Settlement of {amount} exceeds current outstanding debt of "
                f"{current_debt} from user {from_user_id} to user {to_user_id}. "
                f"The surplus is now owed back to user {from_user_id}."
            ),
        })

    record = store.append_settlement_record(group_id, from_user_id, to_user_id, amount)
    edge = ledger_service.apply_settlement(
        store, group_id, from_user_id, to_user_id, amount, tolerance,
    )
    return record, edge, warnings


def list_settlements(group_id: int, session: Session) -> list[Settlement]:
    """Returns all settlements for a group, newest first."""
    group_service.get_group_or_404(group_id, session)

    stmt = (
        select(Settlement)
        .where(Settlement.group_id == group_id)
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    return list(session.execute(stmt).scalars().all())
