"""
routes/admin.py — Operator endpoints.

Endpoints (url_prefix=/api/v1/admin):
  POST /balances/recalculate  → 200  rebuild balance_aggregates from expenses
  GET  /balances/drift        → 200  stored vs replayed balances, read-only
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from backend.splitbuddy.extensions import db
from backend.splitbuddy.middleware.auth_middleware import require_admin
from backend.splitbuddy.services import balance_service
from backend.splitbuddy.services.balance_engine import FriendKey
from backend.splitbuddy.services.transaction import run_in_transaction

admin_bp = Blueprint("admin", __name__)


def _serialize_drift(entry: dict) -> dict:
    key = entry["key"]
    if isinstance(key, FriendKey):
        shape = {"type": "FRIEND_TO_FRIEND", "user1_id": key.lo_id, "user2_id": key.hi_id}
    else:
        shape = {"type": "USER_TO_GROUP", "user_id": key.user_id, "group_id": key.group_id}
    shape["stored"] = entry["stored"]
    shape["expected"] = entry["expected"]
    return shape


@admin_bp.route("/balances/recalculate", methods=["POST"])
@require_admin
def recalculate_balances():
    """Single attempt: a full rebuild is not retried on conflict."""
    result = run_in_transaction(
        db.session,
        lambda: balance_service.recalculate_all(db.session),
        max_attempts=1,
    )
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/balances/drift", methods=["GET"])
@require_admin
def get_drift():
    drift = balance_service.find_drift(db.session)
    return jsonify({
        "data": {
            "in_sync": not drift,
            "rows": [_serialize_drift(d) for d in drift],
        },
        "warnings": [],
    }), 200
