"""
routes/balances.py — Balance query route handlers.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - Every balance is read from balance_aggregates; expenses are never re-scanned
    to compute one. The friend view also lists recent shared expenses.

Endpoints (url_prefix=/api/v1/balances):
  GET /summary                 → 200  caller's totals
  GET /friends                 → 200  caller's balance with each friend
  GET /friends/:friend_id      → 200  caller's balance with one friend + shared expenses
  GET /groups                  → 200  caller's balance with each group
  GET /groups/:group_id        → 200  every member row of a group (members only)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.splitbuddy.extensions import db
from backend.splitbuddy.middleware.auth_middleware import require_auth
from backend.splitbuddy.routes.expenses import serialize_expense
from backend.splitbuddy.services import balance_service, expense_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/summary", methods=["GET"])
@require_auth
def get_summary():
    """
    net_balance > 0: others owe the caller overall.
    total_owed / total_owes are max(0, ±net_balance).
    """
    result = balance_service.get_user_balance_summary(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/friends", methods=["GET"])
@require_auth
def get_friend_balances():
    result = balance_service.get_friend_balances(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/friends/<int:friend_id>", methods=["GET"])
@require_auth
def get_friend_balance(friend_id: int):
    """
    Balance with one friend plus the two users' most recent shared expenses
    (newest first, at most 50). The totals come from balance_aggregates only.
    """
    result = expense_service.get_friend_expenses(g.user_id, friend_id, db.session)
    result["shared_expenses"] = [serialize_expense(e) for e in result["shared_expenses"]]
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/groups", methods=["GET"])
@require_auth
def get_group_balances():
    result = balance_service.get_group_balances(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/groups/<int:group_id>", methods=["GET"])
@require_auth
def get_group_balances_for_group(group_id: int):
    """Membership is enforced inside get_group_balance_response()."""
    result = balance_service.get_group_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
