"""
services/simplify_service.py — Settlement simplification.

Collapses a group's pairwise edges into a short list of payments that clears
every obligation. Greedy net-balance matching:

  1. net(member) = sum of edges where member is creditor
                 - sum of edges where member is debtor
  2. debtors (net < 0) and creditors (net > 0), each ascending by member id
  3. two pointers: pay min(debtor remaining, creditor remaining) from the
     current debtor to the current creditor; advance whichever side hit
     exactly zero.

Every step exhausts at least one party, so a group with k nonzero members
settles in at most k - 1 payments. Each member's net position is reproduced
exactly; the payments total the sum of positive nets, which can be less than
the sum of edge amounts when debt flows through intermediaries.

This is a heuristic. It is optimal when a few members carry large nets but is
not guaranteed minimal for every input.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from groupledger.app.money import ZERO


def net_positions(edges: Iterable) -> dict[int, Decimal]:
    """
    Returns {member_id: credit - debt} for every member on any edge.
    Accepts Edge tuples or dicts with debtor_id / creditor_id / amount.
    """
    nets: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for edge in edges:
        if isinstance(edge, dict):
            debtor, creditor, amount = edge["debtor_id"], edge["creditor_id"], edge["amount"]
        else:
            debtor, creditor, amount = edge.debtor_id, edge.creditor_id, edge.amount
        nets[creditor] += amount
        nets[debtor] -= amount
    return dict(nets)


def simplify_debts(edges: Iterable) -> list[dict]:
    """
    Computes a reduced payment plan from the current edges.

    Returns:
        [{"from_user_id": int, "to_user_id": int, "amount": Decimal}, ...]
        An empty list means every member is already square.
    """
    nets = net_positions(edges)

    debtors = [[uid, -amt] for uid, amt in sorted(nets.items()) if amt < ZERO]
    creditors = [[uid, amt] for uid, amt in sorted(nets.items()) if amt > ZERO]

    payments: list[dict] = []
    i = j = 0

    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]

        transfer = min(debtor[1], creditor[1])
        payments.append({
            "from_user_id": debtor[0],
            "to_user_id": creditor[0],
            "amount": transfer,
        })

        debtor[1] -= transfer
        creditor[1] -= transfer

        if debtor[1] == ZERO:
            i += 1
        if creditor[1] == ZERO:
            j += 1

    return payments
