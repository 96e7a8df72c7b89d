"""
routes/users.py — User route handlers.

Endpoints (base url_prefix=/api/v1/users):
  POST   /users                           → 201  register a user
  GET    /users/lookup?email=|username=   → 200  find a user to invite
  GET    /users/:id                       → 200  get a user
  GET    /users/:id/groups                → 200  groups the user belongs to
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.models.user import User
from groupledger.app.schemas.user_schema import CreateUserSchema
from groupledger.app.services import group_service, user_service

users_bp = Blueprint("users", __name__)


def _serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "full_name": user.full_name,
        "display_name": user.display_name,
        "email": user.email,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


@users_bp.route("", methods=["POST"])
def create_user():
    data = CreateUserSchema().load(request.get_json(force=True) or {})
    user = user_service.create_user(data, session=db.session)
    db.session.commit()
    return jsonify({"data": _serialize_user(user), "warnings": []}), 201


@users_bp.route("/lookup", methods=["GET"])
def lookup_user():
    user = user_service.find_user(
        db.session,
        email=request.args.get("email"),
        username=request.args.get("username"),
    )
    return jsonify({"data": _serialize_user(user), "warnings": []}), 200


@users_bp.route("/<int:user_id>", methods=["GET"])
def get_user(user_id: int):
    user = user_service.get_user(user_id, session=db.session)
    return jsonify({"data": _serialize_user(user), "warnings": []}), 200


@users_bp.route("/<int:user_id>/groups", methods=["GET"])
def list_user_groups(user_id: int):
    groups = group_service.list_groups(user_id=user_id, session=db.session)
    return jsonify({"data": groups, "warnings": []}), 200
