"""
routes/settlements.py — Settlement route handlers.

create_settlement returns warnings (e.g. OVERPAYMENT) alongside the record;
the route puts them in the envelope and still answers 201.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups/:id/settlements  → 201  record a payment, update the balance edge
  GET    /groups/:id/settlements  → 200  list settlements, newest first
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.models.settlement import Settlement
from groupledger.app.schemas.settlement_schema import CreateSettlementSchema
from groupledger.app.services import ledger_service, settlement_service

settlements_bp = Blueprint("settlements", __name__)


def _serialize_settlement(s: Settlement) -> dict:
    return {
        "id": s.id,
        "group_id": s.group_id,
        "from_user_id": s.from_user_id,
        "to_user_id": s.to_user_id,
        "amount": str(s.amount),
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


def _serialize_edge(edge) -> dict | None:
    if edge is None:
        return None
    return {
        "debtor_id": edge.debtor_id,
        "creditor_id": edge.creditor_id,
        "amount": str(edge.amount),
    }


@settlements_bp.route("/<int:group_id>/settlements", methods=["POST"])
def create_settlement(group_id: int):
    """
    POST /groups/:id/settlements — Record a payment between two members.

    The response carries the pair's balance after the payment ("balance" is
    null when the pair is settled).
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    config = current_app.config

    settlement, edge, warnings = ledger_service.run_in_transaction(
        db.session,
        lambda: settlement_service.create_settlement(
            group_id=group_id,
            data=data,
            session=db.session,
            tolerance=config["LEDGER_TOLERANCE"],
        ),
        config["LEDGER_MAX_RETRIES"],
    )
    payload = _serialize_settlement(settlement)
    payload["balance"] = _serialize_edge(edge)
    return jsonify({"data": payload, "warnings": warnings}), 201


@settlements_bp.route("/<int:group_id>/settlements", methods=["GET"])
def list_settlements(group_id: int):
    settlements = settlement_service.list_settlements(group_id=group_id, session=db.session)
    return jsonify({
        "data": [_serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200
