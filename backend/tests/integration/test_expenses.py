"""
tests/integration/test_expenses.py — Expense lifecycle over HTTP.

Endpoints covered:
  POST   /api/v1/expenses                                 → 201
  GET    /api/v1/expenses                                 → 200
  GET    /api/v1/expenses?group_id=:gid                   → 200
  GET    /api/v1/expenses/:id                             → 200
  PATCH  /api/v1/expenses/:id                             → 200
  DELETE /api/v1/expenses/:id                             → 200
  PATCH  /api/v1/expenses/:id/participants/:pid/payment   → 200

Every mutation must leave balance_aggregates equal to a full replay.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from backend.splitbuddy.extensions import db
from backend.splitbuddy.services import balance_service

from .conftest import (
    auth_headers,
    befriend,
    get_json,
    make_expense,
    make_group,
    make_user,
    share,
)


@pytest.fixture
def people(app):
    """alice is friends with bob and carol; alice and carol share a group."""
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")
    carol = make_user(app, "carol")
    befriend(app, alice, bob)
    befriend(app, alice, carol)
    group = make_group(app, [alice, carol])
    return {"alice": alice, "bob": bob, "carol": carol, "group": group}


def _friend_balance(client, app, user_id, friend_id) -> Decimal:
    resp = get_json(client, app, user_id, f"/api/v1/balances/friends/{friend_id}")
    assert resp.status_code == 200
    return Decimal(resp.get_json()["data"]["net_balance"])


def _assert_in_sync(app):
    with app.app_context():
        assert balance_service.find_drift(db.session) == []


# ═══════════════════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateExpense:

    def test_create_returns_expense_with_participants(self, client, app, people):
        a, b = people["alice"], people["bob"]
        resp = make_expense(client, app, a, "40.00", [share(b, "40.00")])

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["warnings"] == []
        data = body["data"]
        assert data["paid_by_user_id"] == a
        assert data["amount"] == "40.00"
        assert data["currency"] == "USD"
        assert data["category"] == "general"
        assert len(data["participants"]) == 1
        assert data["participants"][0]["source"] == "FRIEND"
        assert data["participants"][0]["is_paid"] is False

    def test_create_moves_friend_balance(self, client, app, people):
        a, b = people["alice"], people["bob"]
        make_expense(client, app, a, "40.00", [share(b, "40.00")])

        assert _friend_balance(client, app, a, b) == Decimal("40.00")
        assert _friend_balance(client, app, b, a) == Decimal("-40.00")
        _assert_in_sync(app)

    def test_participant_may_record_expense_for_payer(self, client, app, people):
        a, b = people["alice"], people["bob"]
        resp = make_expense(client, app, b, "40.00", [share(b, "40.00")], paid_by_user_id=a)

        assert resp.status_code == 201
        assert _friend_balance(client, app, b, a) == Decimal("-40.00")

    def test_outsider_cannot_record_expense(self, client, app, people):
        a, b, c = people["alice"], people["bob"], people["carol"]
        resp = make_expense(client, app, c, "40.00", [share(b, "40.00")], paid_by_user_id=a)

        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_missing_token_is_401(self, client, people):
        resp = client.post("/api/v1/expenses", json={"title": "x", "amount": "1.00", "participants": []})

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_sum_mismatch_is_422_and_writes_nothing(self, client, app, people):
        a, b = people["alice"], people["bob"]
        resp = make_expense(client, app, a, "50.00", [share(b, "40.00")])

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_SUM_MISMATCH"
        listing = get_json(client, app, a, "/api/v1/expenses").get_json()["data"]
        assert listing == []
        assert _friend_balance(client, app, a, b) == Decimal("0")

    def test_rounding_within_tolerance_is_accepted(self, client, app, people):
        a, b, c = people["alice"], people["bob"], people["carol"]
        resp = make_expense(
            client, app, a, "100.00",
            [share(a, "33.33"), share(b, "33.33"), share(c, "33.33")],
        )
        assert resp.status_code == 201

    def test_duplicate_participant_is_422(self, client, app, people):
        a, b = people["alice"], people["bob"]
        resp = make_expense(client, app, a, "40.00", [share(b, "20.00"), share(b, "20.00")])

        assert resp.status_code == 422
        body = resp.get_json()["error"]
        assert body["code"] == "DUPLICATE_PARTICIPANT"
        assert body["field"] == "participants"

    def test_non_friend_is_rejected(self, client, app, people):
        b, c = people["bob"], people["carol"]
        resp = make_expense(client, app, b, "40.00", [share(c, "40.00")])

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "NOT_A_FRIEND"

    def test_non_member_is_rejected(self, client, app, people):
        a, b, g = people["alice"], people["bob"], people["group"]
        resp = make_expense(client, app, a, "40.00", [share(b, "40.00", group_id=g)])

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "NOT_A_GROUP_MEMBER"

    def test_unknown_participant_is_404(self, client, app, people):
        a = people["alice"]
        resp = make_expense(client, app, a, "40.00", [share(999999, "40.00")])

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"

    def test_three_decimal_places_is_400(self, client, app, people):
        a, b = people["alice"], people["bob"]
        resp = make_expense(client, app, a, "40.001", [share(b, "40.001")])

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_AMOUNT_PRECISION"

    def test_missing_title_is_400(self, client, app, people):
        a, b = people["alice"], people["bob"]
        resp = client.post(
            "/api/v1/expenses",
            json={"amount": "1.00", "participants": [share(b, "1.00")]},
            headers=auth_headers(app, a),
        )

        assert resp.status_code == 400
        body = resp.get_json()["error"]
        assert body["code"] == "MISSING_FIELD"
        assert body["field"] == "title"


# ═══════════════════════════════════════════════════════════════════════════
# Read
# ═══════════════════════════════════════════════════════════════════════════

class TestReadExpense:

    def test_get_by_participant(self, client, app, people):
        a, b = people["alice"], people["bob"]
        expense_id = make_expense(client, app, a, "40.00", [share(b, "40.00")]).get_json()["data"]["id"]

        resp = get_json(client, app, b, f"/api/v1/expenses/{expense_id}")

        assert resp.status_code == 200
        assert resp.get_json()["data"]["id"] == expense_id

    def test_get_by_outsider_is_403(self, client, app, people):
        a, b, c = people["alice"], people["bob"], people["carol"]
        expense_id = make_expense(client, app, a, "40.00", [share(b, "40.00")]).get_json()["data"]["id"]

        resp = get_json(client, app, c, f"/api/v1/expenses/{expense_id}")

        assert resp.status_code == 403

    def test_get_missing_is_404(self, client, app, people):
        resp = get_json(client, app, people["alice"], "/api/v1/expenses/999999")

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"

    def test_list_contains_paid_and_shared_expenses(self, client, app, people):
        a, b, c = people["alice"], people["bob"], people["carol"]
        make_expense(client, app, a, "40.00", [share(b, "40.00")])
        make_expense(client, app, a, "10.00", [share(c, "10.00")])

        ids_for_b = [e["paid_by_user_id"] for e in get_json(client, app, b, "/api/v1/expenses").get_json()["data"]]
        ids_for_a = get_json(client, app, a, "/api/v1/expenses").get_json()["data"]

        assert ids_for_b == [a]
        assert len(ids_for_a) == 2


class TestGroupExpenseListing:

    def test_member_sees_group_sourced_expenses_only(self, client, app, people):
        a, b, c, g = people["alice"], people["bob"], people["carol"], people["group"]
        first = make_expense(
            client, app, a, "60.00", [share(a, "30.00", g), share(c, "30.00", g)],
            title="Groceries", paid_at="2026-02-01T10:00:00+00:00",
        ).get_json()["data"]["id"]
        second = make_expense(
            client, app, a, "50.00", [share(b, "25.00"), share(c, "25.00", g)],
            title="Museum", paid_at="2026-02-09T10:00:00+00:00",
        ).get_json()["data"]["id"]
        make_expense(client, app, a, "40.00", [share(b, "40.00")], title="Dinner")

        resp = get_json(client, app, c, f"/api/v1/expenses?group_id={g}")

        assert resp.status_code == 200
        assert [e["id"] for e in resp.get_json()["data"]] == [second, first]

    def test_group_without_expenses_is_empty(self, client, app, people):
        resp = get_json(client, app, people["alice"], f"/api/v1/expenses?group_id={people['group']}")

        assert resp.status_code == 200
        assert resp.get_json()["data"] == []

    def test_non_member_is_403(self, client, app, people):
        resp = get_json(client, app, people["bob"], f"/api/v1/expenses?group_id={people['group']}")

        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_group_is_404(self, client, app, people):
        resp = get_json(client, app, people["alice"], "/api/v1/expenses?group_id=999999")

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"

    def test_non_numeric_group_id_is_400(self, client, app, people):
        resp = get_json(client, app, people["alice"], "/api/v1/expenses?group_id=trip")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "group_id"


# ═══════════════════════════════════════════════════════════════════════════
# Update
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdateExpense:

    def test_amount_change_nets_into_balance(self, client, app, people):
        a, b = people["alice"], people["bob"]
        expense_id = make_expense(client, app, a, "40.00", [share(b, "40.00")]).get_json()["data"]["id"]

        resp = client.patch(
            f"/api/v1/expenses/{expense_id}",
            json={"amount": "60.00", "participants": [share(b, "60.00")]},
            headers=auth_headers(app, a),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"]["amount"] == "60.00"
        assert _friend_balance(client, app, a, b) == Decimal("60.00")
        _assert_in_sync(app)

    def test_payer_change_flips_balance(self, client, app, people):
        a, b = people["alice"], people["bob"]
        expense_id = make_expense(client, app, a, "40.00", [share(b, "40.00")]).get_json()["data"]["id"]

        resp = client.patch(
            f"/api/v1/expenses/{expense_id}",
            json={"paid_by_user_id": b, "participants": [share(a, "40.00")]},
            headers=auth_headers(app, a),
        )

        assert resp.status_code == 200
        assert _friend_balance(client, app, a, b) == Decimal("-40.00")
        _assert_in_sync(app)

    def test_title_only_update_keeps_balances(self, client, app, people):
        a, b = people["alice"], people["bob"]
        expense_id = make_expense(client, app, a, "40.00", [share(b, "40.00")]).get_json()["data"]["id"]

        resp = client.patch(
            f"/api/v1/expenses/{expense_id}",
            json={"title": "Groceries"},
            headers=auth_headers(app, b),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"]["title"] == "Groceries"
        assert _friend_balance(client, app, a, b) == Decimal("40.00")

    def test_amount_without_participants_must_still_add_up(self, client, app, people):
        a, b = people["alice"], people["bob"]
        expense_id = make_expense(client, app, a, "40.00", [share(b, "40.00")]).get_json()["data"]["id"]

        resp = client.patch(
            f"/api/v1/expenses/{expense_id}",
            json={"amount": "50.00"},
            headers=auth_headers(app, a),
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_SUM_MISMATCH"
        assert _friend_balance(client, app, a, b) == Decimal("40.00")


# ═══════════════════════════════════════════════════════════════════════════
# Delete
# ═══════════════════════════════════════════════════════════════════════════

class TestDeleteExpense:

    def test_delete_reverses_balances(self, client, app, people):
        a, b, c, g = people["alice"], people["bob"], people["carol"], people["group"]
        expense_id = make_expense(
            client, app, a, "90.00",
            [share(a, "30.00", g), share(b, "30.00"), share(c, "30.00", g)],
        ).get_json()["data"]["id"]

        resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(app, a))

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"deleted": True, "expense_id": expense_id}
        summary = get_json(client, app, a, "/api/v1/balances/summary").get_json()["data"]
        assert Decimal(summary["net_balance"]) == Decimal("0")
        assert get_json(client, app, a, f"/api/v1/expenses/{expense_id}").status_code == 404
        _assert_in_sync(app)

    def test_only_payer_may_delete(self, client, app, people):
        a, b = people["alice"], people["bob"]
        expense_id = make_expense(client, app, a, "40.00", [share(b, "40.00")]).get_json()["data"]["id"]

        resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(app, b))

        assert resp.status_code == 403
        assert _friend_balance(client, app, a, b) == Decimal("40.00")


# ═══════════════════════════════════════════════════════════════════════════
# Payment status
# ═══════════════════════════════════════════════════════════════════════════

class TestPaymentStatus:

    def _create_mixed(self, client, app, people):
        a, b, c, g = people["alice"], people["bob"], people["carol"], people["group"]
        data = make_expense(
            client, app, a, "90.00",
            [share(a, "30.00", g), share(b, "30.00"), share(c, "30.00", g)],
        ).get_json()["data"]
        by_user = {p["user_id"]: p["id"] for p in data["participants"]}
        return data["id"], by_user

    def _toggle(self, client, app, caller, expense_id, participant_id, is_paid):
        return client.patch(
            f"/api/v1/expenses/{expense_id}/participants/{participant_id}/payment",
            json={"is_paid": is_paid},
            headers=auth_headers(app, caller),
        )

    def test_paid_settles_friend_and_group_rows(self, client, app, people):
        a, c, g = people["alice"], people["carol"], people["group"]
        expense_id, pids = self._create_mixed(client, app, people)

        resp = self._toggle(client, app, a, expense_id, pids[c], True)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["is_paid"] is True
        assert resp.get_json()["data"]["paid_at"] is not None
        assert _friend_balance(client, app, a, c) == Decimal("0")

        rows = get_json(client, app, a, f"/api/v1/balances/groups/{g}").get_json()["data"]
        by_user = {r["user_id"]: Decimal(r["balance"]) for r in rows}
        assert by_user[c] == Decimal("0")
        assert by_user[a] == Decimal("30.00")  # payer's group row is untouched
        _assert_in_sync(app)

    def test_paid_then_unpaid_restores(self, client, app, people):
        a, c = people["alice"], people["carol"]
        expense_id, pids = self._create_mixed(client, app, people)
        before = get_json(client, app, a, "/api/v1/balances/summary").get_json()["data"]

        self._toggle(client, app, a, expense_id, pids[c], True)
        resp = self._toggle(client, app, a, expense_id, pids[c], False)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["paid_at"] is None
        after = get_json(client, app, a, "/api/v1/balances/summary").get_json()["data"]
        assert after == before

    def test_repeated_toggle_is_idempotent(self, client, app, people):
        a, c = people["alice"], people["carol"]
        expense_id, pids = self._create_mixed(client, app, people)

        self._toggle(client, app, a, expense_id, pids[c], True)
        self._toggle(client, app, a, expense_id, pids[c], True)

        assert _friend_balance(client, app, a, c) == Decimal("0")
        _assert_in_sync(app)

    def test_only_payer_may_toggle(self, client, app, people):
        c = people["carol"]
        expense_id, pids = self._create_mixed(client, app, people)

        resp = self._toggle(client, app, c, expense_id, pids[c], True)

        assert resp.status_code == 403

    def test_participant_of_another_expense_is_422(self, client, app, people):
        a, b = people["alice"], people["bob"]
        expense_id, _ = self._create_mixed(client, app, people)
        other = make_expense(client, app, a, "5.00", [share(b, "5.00")]).get_json()["data"]
        foreign_pid = other["participants"][0]["id"]

        resp = self._toggle(client, app, a, expense_id, foreign_pid, True)

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_IN_EXPENSE"

    def test_missing_flag_is_400(self, client, app, people):
        a, c = people["alice"], people["carol"]
        expense_id, pids = self._create_mixed(client, app, people)

        resp = client.patch(
            f"/api/v1/expenses/{expense_id}/participants/{pids[c]}/payment",
            json={},
            headers=auth_headers(app, a),
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"
