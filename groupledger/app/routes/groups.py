"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                  → 201  create group (creator is first member)
  GET    /groups/:id              → 200  get group + members
  POST   /groups/:id/members      → 201  add member
  DELETE /groups/:id/members/:uid → 200  remove member (balances must be settled)
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.schemas.group_schema import AddMemberSchema, CreateGroupSchema
from groupledger.app.services import group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("", methods=["POST"])
def create_group():
    """POST /groups — Create a new group."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        name=data["name"].strip(),
        created_by_user_id=data["created_by_user_id"],
        session=db.session,
        description=data.get("description"),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>", methods=["GET"])
def get_group(group_id: int):
    result = group_service.get_group(group_id=group_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
def add_member(group_id: int):
    """POST /groups/:id/members — Add an existing user to the group."""
    data = AddMemberSchema().load(request.get_json(force=True) or {})
    result = group_service.add_member(
        group_id=group_id,
        user_id=data["user_id"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members/<int:user_id>", methods=["DELETE"])
def remove_member(group_id: int, user_id: int):
    group_service.remove_member(group_id=group_id, user_id=user_id, session=db.session)
    db.session.commit()
    return jsonify({
        "data": {"removed": True, "group_id": group_id, "user_id": user_id},
        "warnings": [],
    }), 200
