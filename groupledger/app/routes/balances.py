"""
routes/balances.py — Balance route handlers.

Endpoints (base url_prefix=/api/v1/groups):
  GET  /groups/:id/balances               → 200  edges, per-member summaries, plan
  GET  /groups/:id/balances?user_id=N     → 200  ... plus N's summary and suggestions
  GET  /groups/:id/balances/simplified    → 200  minimal payment plan only
  POST /groups/:id/balances/rebuild       → 200  replay history into the ledger
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from groupledger.app.errors import ErrorCode, ValidationError
from groupledger.app.extensions import db
from groupledger.app.services import balance_service, ledger_service

balances_bp = Blueprint("balances", __name__)


def _member_param() -> int | None:
    raw = request.args.get("user_id")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        raise ValidationError(
            ErrorCode.INVALID_FIELD,
            "user_id must be a positive integer.",
            field="user_id",
            http_status=400,
        )
    return value


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
def get_balances(group_id: int):
    result = balance_service.get_balance_response(
        group_id=group_id,
        session=db.session,
        member_id=_member_param(),
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/simplified", methods=["GET"])
def get_simplified(group_id: int):
    result = balance_service.get_simplified_response(group_id=group_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/rebuild", methods=["POST"])
def rebuild(group_id: int):
    """
    POST /groups/:id/balances/rebuild — Recompute every edge of the group by
    replaying its active expenses and settlements in creation order.
    """
    config = current_app.config
    ledger_service.run_in_transaction(
        db.session,
        lambda: balance_service.rebuild_balances(
            group_id=group_id,
            session=db.session,
            tolerance=config["LEDGER_TOLERANCE"],
        ),
        config["LEDGER_MAX_RETRIES"],
    )
    result = balance_service.get_balance_response(group_id=group_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200
