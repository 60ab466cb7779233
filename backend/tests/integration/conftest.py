"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at in-memory SQLite unless TEST_DATABASE_URL names a PostgreSQL
    database.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Users, friendships and groups are owned by another service, so helpers
insert them directly. Expenses always go through the HTTP API so every
balance change passes through the lifecycle hooks.

Helper functions (not fixtures):
  - make_user(app, ...)        → user id
  - befriend(app, a, b)        → None
  - make_group(app, members)   → group id
  - auth_headers(app, user_id) → {"Authorization": "Bearer <token>"}
  - share(user_id, amount)     → participant payload
  - make_expense(...)          → HTTP response
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from backend.splitbuddy import create_app
from backend.splitbuddy.extensions import db as _db
from backend.splitbuddy.models.friendship import Friendship
from backend.splitbuddy.models.group import Group
from backend.splitbuddy.models.membership import Membership
from backend.splitbuddy.models.user import User


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Flask application in 'testing' mode, shared by the whole session."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM balance_aggregates"))
            conn.execute(text("DELETE FROM expense_participants"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM friendships"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


@pytest.fixture
def client(app):
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Social graph helpers (direct inserts)
# ═══════════════════════════════════════════════════════════════════════════

def make_user(app, name: str = "alice", email: str | None = None) -> int:
    with app.app_context():
        user = User(name=name, email=email or f"{name}@example.com")
        _db.session.add(user)
        _db.session.commit()
        return user.id


def befriend(app, a: int, b: int) -> None:
    with app.app_context():
        _db.session.add(Friendship(user_min=min(a, b), user_max=max(a, b)))
        _db.session.commit()


def make_group(app, members: list[int], name: str = "Trip") -> int:
    with app.app_context():
        group = Group(name=name)
        _db.session.add(group)
        _db.session.flush()
        for user_id in members:
            _db.session.add(Membership(user_id=user_id, group_id=group.id))
        _db.session.commit()
        return group.id


# ═══════════════════════════════════════════════════════════════════════════
# Request helpers
# ═══════════════════════════════════════════════════════════════════════════

def token_for(app, user_id: int, expires_in: timedelta = timedelta(minutes=15)) -> str:
    """Mints an access token the way the identity service does."""
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, app.config["JWT_SECRET_KEY"], algorithm="HS256")


def auth_headers(app, user_id: int) -> dict:
    return {"Authorization": f"Bearer {token_for(app, user_id)}"}


def share(user_id: int, amount: str, group_id: int | None = None) -> dict:
    """One entry of the `participants` array."""
    if group_id is None:
        return {"user_id": user_id, "amount": amount}
    return {"user_id": user_id, "amount": amount, "source": "GROUP", "source_id": group_id}


def make_expense(
    client,
    app,
    caller_id: int,
    amount: str,
    participants: list[dict],
    title: str = "Dinner",
    **extra,
):
    """POSTs an expense and returns the raw response."""
    payload = {"title": title, "amount": amount, "participants": participants, **extra}
    return client.post(
        "/api/v1/expenses",
        json=payload,
        headers=auth_headers(app, caller_id),
    )


def get_json(client, app, caller_id: int, url: str):
    return client.get(url, headers=auth_headers(app, caller_id))
