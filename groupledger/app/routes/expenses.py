"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns both the group-scoped paths (/groups/:id/expenses) and the expense-ID
paths (/expenses/:id).

Writes that touch the balance ledger run through
ledger_service.run_in_transaction(), which commits and retries the whole unit
of work when a concurrent writer changed the same balance edge.

Endpoints:
  POST   /groups/:id/expenses   → 201  create expense, apply splits to ledger
  GET    /groups/:id/expenses   → 200  list active expenses
  GET    /expenses/:id          → 200  get expense + splits
  PATCH  /expenses/:id          → 200  edit; shares re-applied to ledger
  DELETE /expenses/:id          → 200  soft-delete, reverse splits on ledger
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.models.expense import Expense
from groupledger.app.schemas.expense_schema import CreateExpenseSchema, UpdateExpenseSchema
from groupledger.app.services import expense_service, ledger_service

expenses_bp = Blueprint("expenses", __name__)


def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "paid_by_user_id": expense.paid_by_user_id,
        "paid_by_name": expense.payer.display_name,
        "description": expense.description,
        "amount": str(expense.amount),
        "split_type": expense.split_type.value,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "deleted_at": expense.deleted_at.isoformat() if expense.deleted_at else None,
        "splits": [
            {
                "user_id": s.user_id,
                "name": s.user.display_name,
                "amount": str(s.amount),
                "percentage": str(s.percentage) if s.percentage is not None else None,
            }
            for s in expense.splits
        ],
    }


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
def create_expense(group_id: int):
    """
    POST /groups/:id/expenses — Record an expense and update balances.
    A SPLIT_REMAINDER warning is returned when equal shares leave a residual.
    """
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    config = current_app.config

    expense, warnings = ledger_service.run_in_transaction(
        db.session,
        lambda: expense_service.create_expense(
            group_id=group_id,
            data=data,
            session=db.session,
            remainder_to_payer=config["EQUAL_SPLIT_REMAINDER_TO_PAYER"],
            tolerance=config["LEDGER_TOLERANCE"],
        ),
        config["LEDGER_MAX_RETRIES"],
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": warnings}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
def list_expenses(group_id: int):
    expenses = expense_service.list_expenses(group_id=group_id, session=db.session)
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
def get_expense(expense_id: int):
    expense = expense_service.get_expense(expense_id=expense_id, session=db.session)
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
def edit_expense(expense_id: int):
    """
    PATCH /expenses/:id — Partial update. Changing the payer, amount or split
    inputs reverses the old shares and applies the new ones atomically.
    """
    data = UpdateExpenseSchema().load(request.get_json(force=True) or {})
    config = current_app.config

    expense, warnings = ledger_service.run_in_transaction(
        db.session,
        lambda: expense_service.edit_expense(
            expense_id=expense_id,
            data=data,
            session=db.session,
            remainder_to_payer=config["EQUAL_SPLIT_REMAINDER_TO_PAYER"],
            tolerance=config["LEDGER_TOLERANCE"],
        ),
        config["LEDGER_MAX_RETRIES"],
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": warnings}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
def delete_expense(expense_id: int):
    """
    DELETE /expenses/:id — Soft-delete. The row and its splits stay for
    audit; their effect on balances is reversed.
    """
    config = current_app.config
    ledger_service.run_in_transaction(
        db.session,
        lambda: expense_service.delete_expense(
            expense_id=expense_id,
            session=db.session,
            tolerance=config["LEDGER_TOLERANCE"],
        ),
        config["LEDGER_MAX_RETRIES"],
    )
    return jsonify({
        "data": {"deleted": True, "expense_id": expense_id},
        "warnings": [],
    }), 200
