"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session with create_app("testing"). The
    testing config points at TEST_DATABASE_URL, or an in-memory SQLite
    database when it is unset.
  - Tables are created once via db.create_all(). split_type is a non-native
    enum, so no database types have to be created first.
  - Between tests every row is deleted in FK-safe order so tests are isolated.

Helper functions (not fixtures) cover the common requests:
  - make_user(client, ...)      → user dict
  - make_group(client, ...)     → group dict
  - add_member(client, ...)     → HTTP response
  - make_expense(client, ...)   → HTTP response
  - settle(client, ...)         → HTTP response
  - balances(client, ...)       → balances data dict
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import text

from groupledger.app import create_app
from groupledger.app.extensions import db as _db

API = "/api/v1"


@pytest.fixture(scope="session")
def app():
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard uncommitted state from a failed test
        for table in (
            "expense_splits",
            "settlements",
            "balances",
            "expenses",
            "memberships",
            "groups",
            "users",
        ):
            _db.session.execute(text(f"DELETE FROM {table}"))
        _db.session.commit()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def trio(client):
    """Three users (alice, bob, carol) in one group created by alice."""
    alice = make_user(client, "alice")
    bob = make_user(client, "bob")
    carol = make_user(client, "carol")
    group = make_group(client, alice["id"])
    for member in (bob, carol):
        resp = add_member(client, group["id"], member["id"])
        assert resp.status_code == 201, resp.get_json()
    return {"group": group, "alice": alice, "bob": bob, "carol": carol}


# ── Shared helper functions (not fixtures) ─────────────────────────────────

def make_user(client, username: str = "alice", email: str | None = None, full_name=None) -> dict:
    payload = {"username": username, "email": email or f"{username}@test.com"}
    if full_name is not None:
        payload["full_name"] = full_name
    resp = client.post(f"{API}/users", json=payload)
    assert resp.status_code == 201, f"make_user failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_group(client, created_by_user_id: int, name: str = "Test Group") -> dict:
    resp = client.post(
        f"{API}/groups",
        json={"name": name, "created_by_user_id": created_by_user_id},
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, group_id: int, user_id: int):
    return client.post(f"{API}/groups/{group_id}/members", json={"user_id": user_id})


def make_expense(
    client,
    group_id: int,
    paid_by_user_id: int,
    amount: str,
    split_type: str = "equal",
    participants: list[int] | None = None,
    values: list[str] | None = None,
    description: str = "Test Expense",
):
    payload: dict = {
        "paid_by_user_id": paid_by_user_id,
        "description": description,
        "amount": amount,
        "split_type": split_type,
    }
    if participants is not None:
        payload["participants"] = participants
    if values is not None:
        payload["values"] = values
    return client.post(f"{API}/groups/{group_id}/expenses", json=payload)


def settle(client, group_id: int, from_user_id: int, to_user_id: int, amount: str):
    return client.post(
        f"{API}/groups/{group_id}/settlements",
        json={"from_user_id": from_user_id, "to_user_id": to_user_id, "amount": amount},
    )


def balances(client, group_id: int, user_id: int | None = None) -> dict:
    url = f"{API}/groups/{group_id}/balances"
    if user_id is not None:
        url += f"?user_id={user_id}"
    resp = client.get(url)
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


def edge_map(data: dict) -> dict[tuple[int, int], Decimal]:
    """{(debtor_id, creditor_id): amount} from a balances payload."""
    return {(e["debtor_id"], e["creditor_id"]): Decimal(e["amount"]) for e in data["balances"]}
