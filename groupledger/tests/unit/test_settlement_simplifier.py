"""
tests/unit/test_settlement_simplifier.py — Unit tests for simplify_service.

What this file proves:
  - Applying the payment plan reproduces every member's net position exactly
  - A group with k nonzero members settles in at most k - 1 payments
  - Payments run from debtors to creditors, never the reverse
  - Square groups need no payments
  - The plan total equals the sum of positive nets

No database, no Flask. simplify_debts takes plain edges.
"""

from __future__ import annotations

import random
from collections import defaultdict
from decimal import Decimal

from groupledger.app.services.balance_store import Edge
from groupledger.app.services.simplify_service import net_positions, simplify_debts

G = 1
A, B, C, D, E = 1, 2, 3, 4, 5


def _edges(*triples):
    return [Edge(G, debtor, creditor, Decimal(amount)) for debtor, creditor, amount in triples]


def _verify_conservation(edges, payments):
    """Paying the plan must move each member by exactly their net."""
    moved = defaultdict(lambda: Decimal("0"))
    for p in payments:
        moved[p["from_user_id"]] -= p["amount"]
        moved[p["to_user_id"]] += p["amount"]

    for uid, net in net_positions(edges).items():
        assert moved[uid] == net, f"user {uid}: expected {net}, plan moves {moved[uid]}"


def test_three_member_example():
    edges = _edges((B, A, "50"), (C, A, "30"), (C, B, "10"))

    assert net_positions(edges) == {A: Decimal("80"), B: Decimal("-40"), C: Decimal("-40")}

    payments = simplify_debts(edges)
    assert payments == [
        {"from_user_id": B, "to_user_id": A, "amount": Decimal("40")},
        {"from_user_id": C, "to_user_id": A, "amount": Decimal("40")},
    ]
    assert sum(p["amount"] for p in payments) == Decimal("80")
    _verify_conservation(edges, payments)


def test_two_person_debt_is_one_payment():
    edges = _edges((B, A, "25.50"))
    assert simplify_debts(edges) == [
        {"from_user_id": B, "to_user_id": A, "amount": Decimal("25.50")},
    ]


def test_cycle_cancels_out():
    edges = _edges((A, B, "10"), (B, C, "10"), (C, A, "10"))
    assert simplify_debts(edges) == []


def test_empty_ledger():
    assert simplify_debts([]) == []
    assert net_positions([]) == {}


def test_chain_collapses_to_single_payment():
    # A owes B 30, B owes C 30: B is only an intermediary.
    edges = _edges((A, B, "30"), (B, C, "30"))
    assert simplify_debts(edges) == [
        {"from_user_id": A, "to_user_id": C, "amount": Decimal("30")},
    ]


def test_debtors_and_creditors_matched_in_id_order():
    edges = _edges((C, A, "10"), (D, B, "15"), (D, A, "5"))
    payments = simplify_debts(edges)

    assert payments == [
        {"from_user_id": C, "to_user_id": A, "amount": Decimal("10")},
        {"from_user_id": D, "to_user_id": A, "amount": Decimal("5")},
        {"from_user_id": D, "to_user_id": B, "amount": Decimal("15")},
    ]
    _verify_conservation(edges, payments)


def test_accepts_snapshot_dicts():
    edges = [{"debtor_id": B, "creditor_id": A, "amount": Decimal("7.25")}]
    assert simplify_debts(edges) == [
        {"from_user_id": B, "to_user_id": A, "amount": Decimal("7.25")},
    ]


def test_random_ledgers_bounded_and_conserving():
    rng = random.Random(7)
    members = [A, B, C, D, E]

    for _ in range(200):
        edges = []
        for i, debtor in enumerate(members):
            for creditor in members[i + 1:]:
                if rng.random() < 0.5:
                    amount = Decimal(rng.randint(1, 50_000)) / 100
                    if rng.random() < 0.5:
                        edges.append(Edge(G, debtor, creditor, amount))
                    else:
                        edges.append(Edge(G, creditor, debtor, amount))

        nets = net_positions(edges)
        nonzero = [uid for uid, net in nets.items() if net != 0]
        payments = simplify_debts(edges)

        assert len(payments) <= max(len(nonzero) - 1, 0)
        assert all(p["amount"] > 0 for p in payments)
        assert all(nets[p["from_user_id"]] < 0 < nets[p["to_user_id"]] for p in payments)
        assert sum(p["amount"] for p in payments) == sum(n for n in nets.values() if n > 0)
        _verify_conservation(edges, payments)
