"""
tests/unit/test_balance_queries.py — Unit tests for balance_service read helpers.

summarize / balance_between / settlement_suggestions are pure functions over
edges, so no database is needed.
"""

from __future__ import annotations

from decimal import Decimal

from groupledger.app.services.balance_service import (
    balance_between,
    settlement_suggestions,
    summarize,
)
from groupledger.app.services.balance_store import Edge

G = 1
A, B, C = 1, 2, 3

EDGES = [
    Edge(G, B, A, Decimal("50.00")),
    Edge(G, C, A, Decimal("30.00")),
    Edge(G, C, B, Decimal("10.00")),
]


def test_summarize_creditor():
    assert summarize(EDGES, A) == {
        "owed": Decimal("0.00"),
        "owed_by": Decimal("80.00"),
        "net": Decimal("80.00"),
    }


def test_summarize_mixed_member():
    assert summarize(EDGES, B) == {
        "owed": Decimal("50.00"),
        "owed_by": Decimal("10.00"),
        "net": Decimal("-40.00"),
    }


def test_summarize_member_without_edges():
    assert summarize(EDGES, 99) == {
        "owed": Decimal("0.00"),
        "owed_by": Decimal("0.00"),
        "net": Decimal("0.00"),
    }


def test_summarize_nets_sum_to_zero():
    total = sum((summarize(EDGES, uid)["net"] for uid in (A, B, C)), Decimal("0"))
    assert total == Decimal("0")


def test_balance_between_is_signed():
    assert balance_between(EDGES, A, B) == Decimal("50.00")
    assert balance_between(EDGES, B, A) == Decimal("-50.00")
    assert balance_between(EDGES, A, 99) == Decimal("0.00")


def test_settlement_suggestions():
    assert settlement_suggestions(EDGES, B) == [
        {"type": "owe", "user_id": A, "amount": Decimal("50.00")},
        {"type": "receive", "user_id": C, "amount": Decimal("10.00")},
    ]


def test_helpers_accept_snapshot_dicts():
    rows = [{"debtor_id": B, "creditor_id": A, "amount": Decimal("5.00")}]
    assert summarize(rows, A)["owed_by"] == Decimal("5.00")
    assert balance_between(rows, B, A) == Decimal("-5.00")
