"""
routes/expenses.py — Expense route handlers.

Layer rules:
  - Parse, validate, call ONE service inside run_in_transaction(), return envelope.
  - No business logic. No DB queries. No bare SQL.
  - serialize_expense() is a pure data-shape helper — not business logic.

Every mutating endpoint runs the expense write and the balance update in one
transaction; a persistent aggregate conflict surfaces as BALANCE_CONFLICT (409).

Endpoints (url_prefix=/api/v1/expenses):
  POST   /                                   → 201  create expense
  GET    /                                   → 200  caller's expenses
  GET    /?group_id=:gid                     → 200  a group's expenses (members only)
  GET    /:id                                → 200  get expense + participants
  PATCH  /:id                                → 200  partial update
  DELETE /:id                                → 200  delete
  PATCH  /:id/participants/:pid/payment      → 200  mark a share paid / unpaid
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.splitbuddy.errors import AppError, ErrorCode
from backend.splitbuddy.extensions import db
from backend.splitbuddy.middleware.auth_middleware import require_auth
from backend.splitbuddy.models.expense import Expense
from backend.splitbuddy.models.participant import ExpenseParticipant
from backend.splitbuddy.schemas.expense_schema import (
    CreateExpenseSchema,
    PaymentStatusSchema,
    UpdateExpenseSchema,
)
from backend.splitbuddy.services import expense_service
from backend.splitbuddy.services.transaction import run_in_transaction

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────
# Pure data-shaping: no DB access, no logic. Amounts as strings.

def serialize_participant(p: ExpenseParticipant) -> dict:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "amount": str(p.amount),
        "source": p.source.value,
        "source_id": p.source_id,
        "is_active": p.is_active,
        "is_paid": p.is_paid,
        "paid_at": p.paid_at.isoformat() if p.paid_at else None,
    }


def serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "paid_by_user_id": expense.paid_by_user_id,
        "title": expense.title,
        "description": expense.description,
        "amount": str(expense.amount),
        "currency": expense.currency,
        "category": expense.category,
        "paid_at": expense.paid_at.isoformat() if expense.paid_at else None,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "participants": [serialize_participant(p) for p in expense.participants],
    }


def _max_attempts() -> int:
    return current_app.config["BALANCE_UPDATE_MAX_RETRIES"]


def _tolerance():
    return current_app.config["BALANCE_TOLERANCE"]


# ── Collection routes ──────────────────────────────────────────────────────

@expenses_bp.route("", methods=["POST"])
@require_auth
def create_expense():
    """POST /expenses — Record a new expense and apply it to balances."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    caller_id = g.user_id

    def work():
        expense = expense_service.create_expense(
            caller_id=caller_id,
            data=data,
            session=db.session,
            tolerance=_tolerance(),
        )
        return serialize_expense(expense)

    body = run_in_transaction(db.session, work, _max_attempts())
    return jsonify({"data": body, "warnings": []}), 201


@expenses_bp.route("", methods=["GET"])
@require_auth
def list_expenses():
    """
    GET /expenses — Expenses the caller paid for or takes part in.

    Optional query param:
      ?group_id=<int>  Expenses with a participant sourced from that group.
                       The caller must be a member.
    """
    group_param = request.args.get("group_id")

    if group_param is None:
        expenses = expense_service.list_expenses_for_user(g.user_id, db.session)
    else:
        try:
            group_id = int(group_param)
        except ValueError:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                f"'{group_param}' is not a valid group id.",
                400,
                field="group_id",
            )
        expenses = expense_service.list_group_expenses(group_id, g.user_id, db.session)

    return jsonify({
        "data": [serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/<int:expense_id>", methods=["PATCH"])
@require_auth
def update_expense(expense_id: int):
    """
    PATCH /expenses/:id — Partial update.
    A participants array replaces the existing participants.
    """
    data = UpdateExpenseSchema().load(request.get_json(force=True) or {})
    caller_id = g.user_id

    def work():
        expense = expense_service.update_expense(
            expense_id=expense_id,
            caller_id=caller_id,
            data=data,
            session=db.session,
            tolerance=_tolerance(),
        )
        return serialize_expense(expense)

    body = run_in_transaction(db.session, work, _max_attempts())
    return jsonify({"data": body, "warnings": []}), 200


@expenses_bp.route("/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Reverse the expense's balances, then delete it."""
    caller_id = g.user_id

    def work():
        expense_service.delete_expense(
            expense_id=expense_id,
            caller_id=caller_id,
            session=db.session,
        )

    run_in_transaction(db.session, work, _max_attempts())
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200


@expenses_bp.route(
    "/<int:expense_id>/participants/<int:participant_id>/payment",
    methods=["PATCH"],
)
@require_auth
def set_payment_status(expense_id: int, participant_id: int):
    """PATCH /expenses/:id/participants/:pid/payment — body {"is_paid": bool}."""
    data = PaymentStatusSchema().load(request.get_json(force=True) or {})
    caller_id = g.user_id

    def work():
        participant = expense_service.set_payment_status(
            expense_id=expense_id,
            participant_id=participant_id,
            caller_id=caller_id,
            is_paid=data["is_paid"],
            session=db.session,
        )
        return serialize_participant(participant)

    body = run_in_transaction(db.session, work, _max_attempts())
    return jsonify({"data": body, "warnings": []}), 200
