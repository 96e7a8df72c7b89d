"""
services/balance_service.py — Balance queries over a ledger snapshot.

Read-side derivations over a list of edges (Edge tuples or snapshot dicts)
returning plain Python values. The get_*_response() builders load the
snapshot and member names for the HTTP layer; rebuild_balances() is the one
writer and delegates to ledger_service.

  summarize()              owed / owed_by / net for one member, O(edges)
  balance_between()        signed balance between two members
  settlement_suggestions() who a member should pay and who should pay them
  get_simplified_response() the minimal payment plan for a group
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from groupledger.app.money import ZERO
from groupledger.app.services import group_service, ledger_service
from groupledger.app.services.balance_store import SqlBalanceStore
from groupledger.app.services.simplify_service import net_positions, simplify_debts


def _fields(edge) -> tuple[int, int, Decimal]:
    if isinstance(edge, dict):
        return edge["debtor_id"], edge["creditor_id"], edge["amount"]
    return edge.debtor_id, edge.creditor_id, edge.amount


def summarize(edges: Iterable, member_id: int) -> dict[str, Decimal]:
    """
    Returns {"owed": ..., "owed_by": ..., "net": ...} for member_id.

      owed     sum of edges where the member is the debtor
      owed_by  sum of edges where the member is the creditor
      net      owed_by - owed
    """
    owed = ZERO
    owed_by = ZERO
    for edge in edges:
        debtor, creditor, amount = _fields(edge)
        if debtor == member_id:
            owed += amount
        elif creditor == member_id:
            owed_by += amount
    return {"owed": owed, "owed_by": owed_by, "net": owed_by - owed}


def balance_between(edges: Iterable, member_id: int, other_id: int) -> Decimal:
    """
    Positive when other_id owes member_id, negative when member_id owes
    other_id, zero when the pair has no edge.
    """
    for edge in edges:
        debtor, creditor, amount = _fields(edge)
        if creditor == member_id and debtor == other_id:
            return amount
        if debtor == member_id and creditor == other_id:
            return -amount
    return ZERO


def settlement_suggestions(edges: Iterable, member_id: int) -> list[dict]:
    """
    Lists the member's open edges as actions:
      {"type": "owe", "user_id": creditor, "amount": ...}
      {"type": "receive", "user_id": debtor, "amount": ...}
    """
    suggestions = []
    for edge in edges:
        debtor, creditor, amount = _fields(edge)
        if debtor == member_id:
            suggestions.append({"type": "owe", "user_id": creditor, "amount": amount})
        elif creditor == member_id:
            suggestions.append({"type": "receive", "user_id": debtor, "amount": amount})
    return suggestions


def get_balance_response(
        group_id: int,
        session: Session,
        member_id: int | None = None,
) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Includes every edge with member names, a per-member summary for every
    group member, and the simplified payment plan. With member_id, also the
    member's own summary and suggestions.

    Raises:
        NotFoundError(GROUP_NOT_FOUND)    -- group does not exist.
        ValidationError(NOT_GROUP_MEMBER) -- member_id is not in the group.
    """
    group_service.get_group_or_404(group_id, session)
    member_ids = group_service.get_member_ids(group_id, session)
    if member_id is not None:
        group_service.require_member(group_id, member_id, session, field="user_id")

    names = group_service.member_lookup(session)
    store = SqlBalanceStore(session)
    edges = ledger_service.snapshot(store, group_id, member_lookup=names)

    nets = net_positions(edges)
    name_map = names(set(member_ids))
    members = [
        {
            "user_id": uid,
            "name": name_map.get(uid, f"user_{uid}"),
            **summarize(edges, uid),
        }
        for uid in member_ids
    ]

    simplified = [
        {
            **payment,
            "from_name": name_map.get(payment["from_user_id"], f"user_{payment['from_user_id']}"),
            "to_name": name_map.get(payment["to_user_id"], f"user_{payment['to_user_id']}"),
        }
        for payment in simplify_debts(edges)
    ]

    response = {
        "group_id": group_id,
        "balances": edges,
        "members": members,
        "simplified_debts": simplified,
        "net_sum": sum(nets.values(), ZERO),
    }
    if member_id is not None:
        response["summary"] = summarize(edges, member_id)
        response["suggestions"] = settlement_suggestions(edges, member_id)
    return response


def get_simplified_response(group_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances/simplified: the minimal
    payment plan and the total it moves.
    """
    group_service.get_group_or_404(group_id, session)
    names = group_service.member_lookup(session)
    edges = SqlBalanceStore(session).list_edges(group_id)

    payments = simplify_debts(edges)
    involved = {p["from_user_id"] for p in payments} | {p["to_user_id"] for p in payments}
    name_map = names(involved)
    for payment in payments:
        payment["from_name"] = name_map.get(payment["from_user_id"], f"user_{payment['from_user_id']}")
        payment["to_name"] = name_map.get(payment["to_user_id"], f"user_{payment['to_user_id']}")

    return {
        "group_id": group_id,
        "payments": payments,
        "total": sum((p["amount"] for p in payments), ZERO),
    }


def rebuild_balances(group_id: int, session: Session, tolerance: Decimal) -> list:
    """Replays the group's history into its persisted edges. Flushes only."""
    group_service.get_group_or_404(group_id, session)
    return ledger_service.rebuild_group_ledger(group_id, session, tolerance)
