"""
tests/integration/test_expense_edit.py — PATCH /expenses/:id and its effect on
balances: old shares are reversed and new ones applied in one transaction.
"""

from __future__ import annotations

from decimal import Decimal

from .conftest import API, balances, edge_map, make_expense, make_user


def _patch(client, expense_id: int, **fields):
    return client.patch(f"{API}/expenses/{expense_id}", json=fields)


def test_description_only_edit_leaves_balances(client, trio):
    g, a, b, c = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"], trio["carol"]["id"]
    expense = make_expense(client, g, a, "90.00").get_json()["data"]

    resp = _patch(client, expense["id"], description="Groceries")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["description"] == "Groceries"
    assert data["updated_at"] is not None

    assert edge_map(balances(client, g)) == {(b, a): Decimal("30.00"), (c, a): Decimal("30.00")}


def test_amount_edit_reapplies_equal_shares(client, trio):
    g, a, b, c = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"], trio["carol"]["id"]
    expense = make_expense(client, g, a, "90.00").get_json()["data"]

    resp = _patch(client, expense["id"], amount="60.00")
    assert resp.status_code == 200
    assert [Decimal(s["amount"]) for s in resp.get_json()["data"]["splits"]] == [Decimal("20.00")] * 3

    assert edge_map(balances(client, g)) == {(b, a): Decimal("20.00"), (c, a): Decimal("20.00")}


def test_payer_change_moves_the_debt(client, trio):
    g, a, b = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"]
    expense = make_expense(client, g, a, "50.00", participants=[a, b]).get_json()["data"]
    assert edge_map(balances(client, g)) == {(b, a): Decimal("25.00")}

    resp = _patch(client, expense["id"], paid_by_user_id=b)
    assert resp.status_code == 200
    assert edge_map(balances(client, g)) == {(a, b): Decimal("25.00")}


def test_switch_to_exact_split(client, trio):
    g, a, b, c = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"], trio["carol"]["id"]
    expense = make_expense(client, g, a, "90.00").get_json()["data"]

    resp = _patch(
        client, expense["id"],
        split_type="exact", participants=[b, c], values=["70.00", "20.00"],
    )
    assert resp.status_code == 200
    assert resp.get_json()["data"]["split_type"] == "exact"
    assert edge_map(balances(client, g)) == {(b, a): Decimal("70.00"), (c, a): Decimal("20.00")}


def test_percentages_carry_over_an_amount_change(client, trio):
    g, a, b = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"]
    expense = make_expense(
        client, g, a, "100.00", split_type="percentage",
        participants=[a, b], values=["60", "40"],
    ).get_json()["data"]

    resp = _patch(client, expense["id"], amount="200.00")
    assert resp.status_code == 200
    assert edge_map(balances(client, g)) == {(b, a): Decimal("80.00")}


def test_invalid_edit_changes_nothing(client, trio):
    g, a, b = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"]
    expense = make_expense(
        client, g, a, "100.00", split_type="exact",
        participants=[a, b], values=["60.00", "40.00"],
    ).get_json()["data"]

    # Exact values carried over no longer match the new amount.
    resp = _patch(client, expense["id"], amount="120.00")
    assert resp.status_code == 422
    assert resp.get_json()["error"]["code"] == "SPLIT_SUM_MISMATCH"

    assert Decimal(client.get(f"{API}/expenses/{expense['id']}").get_json()["data"]["amount"]) == Decimal("100.00")
    assert edge_map(balances(client, g)) == {(b, a): Decimal("40.00")}


def test_edit_with_outsider_rejected(client, trio):
    g, a = trio["group"]["id"], trio["alice"]["id"]
    outsider = make_user(client, "mallory")
    expense = make_expense(client, g, a, "30.00").get_json()["data"]

    resp = _patch(client, expense["id"], paid_by_user_id=outsider["id"])
    assert resp.status_code == 422
    assert resp.get_json()["error"]["code"] == "PAYER_NOT_MEMBER"


def test_deleted_expense_cannot_be_edited(client, trio):
    g, a = trio["group"]["id"], trio["alice"]["id"]
    expense = make_expense(client, g, a, "30.00").get_json()["data"]
    client.delete(f"{API}/expenses/{expense['id']}")

    resp = _patch(client, expense["id"], description="Too late")
    assert resp.status_code == 422
    assert resp.get_json()["error"]["code"] == "EXPENSE_DELETED"


def test_empty_patch_rejected(client, trio):
    expense = make_expense(client, trio["group"]["id"], trio["alice"]["id"], "30.00").get_json()["data"]

    resp = _patch(client, expense["id"])
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "NO_FIELDS_TO_UPDATE"


def test_edit_missing_expense(client):
    resp = _patch(client, 9999, description="Nothing")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"


def test_rebuild_after_edit_matches_live_ledger(client, trio):
    g, a, b, c = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"], trio["carol"]["id"]
    expense = make_expense(client, g, a, "90.00").get_json()["data"]
    _patch(client, expense["id"], amount="30.00")

    live = edge_map(balances(client, g))
    resp = client.post(f"{API}/groups/{g}/balances/rebuild")
    assert resp.status_code == 200
    assert edge_map(resp.get_json()["data"]) == live == {(b, a): Decimal("10.00"), (c, a): Decimal("10.00")}
