"""
tests/integration/test_users_groups.py — Users, groups and membership over HTTP.
"""

from __future__ import annotations

from .conftest import API, add_member, make_expense, make_group, make_user, settle


def test_create_and_get_user(client):
    user = make_user(client, "dana", full_name="Dana Scully")
    assert user["display_name"] == "Dana Scully"

    resp = client.get(f"{API}/users/{user['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["username"] == "dana"


def test_display_name_falls_back_to_username(client):
    assert make_user(client, "eve")["display_name"] == "eve"


def test_duplicate_username_rejected(client):
    make_user(client, "alice")
    resp = client.post(f"{API}/users", json={"username": "ALICE", "email": "other@test.com"})
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "DUPLICATE_USERNAME"


def test_duplicate_email_rejected(client):
    make_user(client, "alice")
    resp = client.post(f"{API}/users", json={"username": "alice2", "email": "alice@test.com"})
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "DUPLICATE_EMAIL"


def test_missing_user_is_404(client):
    resp = client.get(f"{API}/users/9999")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


def test_invalid_user_payload(client):
    resp = client.post(f"{API}/users", json={"username": "bob"})
    assert resp.status_code == 400
    body = resp.get_json()["error"]
    assert body["code"] == "MISSING_FIELD"
    assert body["field"] == "email"


def test_creator_is_first_member(client):
    alice = make_user(client, "alice")
    group = make_group(client, alice["id"], name="Lisbon")

    resp = client.get(f"{API}/groups/{group['id']}")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["name"] == "Lisbon"
    assert [m["id"] for m in data["members"]] == [alice["id"]]


def test_group_with_unknown_creator(client):
    resp = client.post(f"{API}/groups", json={"name": "Ghosts", "created_by_user_id": 404})
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


def test_add_member(client):
    alice = make_user(client, "alice")
    bob = make_user(client, "bob")
    group = make_group(client, alice["id"])

    resp = add_member(client, group["id"], bob["id"])
    assert resp.status_code == 201

    members = client.get(f"{API}/groups/{group['id']}").get_json()["data"]["members"]
    assert [m["id"] for m in members] == [alice["id"], bob["id"]]


def test_add_member_twice(client):
    alice = make_user(client, "alice")
    group = make_group(client, alice["id"])

    resp = add_member(client, group["id"], alice["id"])
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "ALREADY_MEMBER"


def test_add_unknown_user(client):
    alice = make_user(client, "alice")
    group = make_group(client, alice["id"])

    resp = add_member(client, group["id"], 9999)
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


def test_missing_group_is_404(client):
    resp = client.get(f"{API}/groups/9999")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"


# ── Lookup ─────────────────────────────────────────────────────────────────

def test_lookup_by_email_ignores_case(client):
    user = make_user(client, "frank", email="Frank@Example.com")

    resp = client.get(f"{API}/users/lookup", query_string={"email": "frank@example.COM"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["id"] == user["id"]


def test_lookup_by_username(client):
    user = make_user(client, "grace")

    resp = client.get(f"{API}/users/lookup", query_string={"username": "GRACE"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["id"] == user["id"]


def test_lookup_unknown_user(client):
    resp = client.get(f"{API}/users/lookup", query_string={"email": "nobody@test.com"})
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


def test_lookup_without_key_rejected(client):
    resp = client.get(f"{API}/users/lookup")
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "MISSING_LOOKUP_KEY"


# ── A user's groups ────────────────────────────────────────────────────────

def test_user_groups_lists_memberships(client):
    alice = make_user(client, "alice")
    bob = make_user(client, "bob")
    trip = make_group(client, alice["id"], name="Trip")
    flat = make_group(client, bob["id"], name="Flat")
    add_member(client, flat["id"], alice["id"])

    resp = client.get(f"{API}/users/{alice['id']}/groups")
    assert resp.status_code == 200
    assert [g["id"] for g in resp.get_json()["data"]] == [trip["id"], flat["id"]]

    resp = client.get(f"{API}/users/{bob['id']}/groups")
    assert [g["name"] for g in resp.get_json()["data"]] == ["Flat"]


def test_user_without_groups_gets_empty_list(client):
    user = make_user(client, "loner")
    resp = client.get(f"{API}/users/{user['id']}/groups")
    assert resp.status_code == 200
    assert resp.get_json()["data"] == []


def test_user_groups_missing_user(client):
    resp = client.get(f"{API}/users/9999/groups")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


# ── Removing members ───────────────────────────────────────────────────────

def test_remove_settled_member(client, trio):
    g, c = trio["group"]["id"], trio["carol"]["id"]

    resp = client.delete(f"{API}/groups/{g}/members/{c}")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["removed"] is True

    members = client.get(f"{API}/groups/{g}").get_json()["data"]["members"]
    assert c not in [m["id"] for m in members]


def test_remove_member_with_open_balance_refused(client, trio):
    g, a, b = trio["group"]["id"], trio["alice"]["id"], trio["bob"]["id"]
    make_expense(client, g, a, "40.00", participants=[a, b])

    resp = client.delete(f"{API}/groups/{g}/members/{b}")
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "MEMBER_HAS_BALANCE"

    # Once bob pays alice back he can leave.
    assert settle(client, g, b, a, "20.00").status_code == 201
    assert client.delete(f"{API}/groups/{g}/members/{b}").status_code == 200


def test_remove_non_member(client, trio):
    outsider = make_user(client, "mallory")

    resp = client.delete(f"{API}/groups/{trio['group']['id']}/members/{outsider['id']}")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "NOT_GROUP_MEMBER"


def test_remove_member_missing_group(client, trio):
    resp = client.delete(f"{API}/groups/9999/members/{trio['alice']['id']}")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"
