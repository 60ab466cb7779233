"""
services/balance_service.py — Balance aggregation: update, repair and query.

Three responsibilities, all built on balance_engine (deltas) and
AggregateStore (rows):

  1. Update engine — apply / reverse / payment toggle, and the lifecycle hooks
     (on_expense_created, on_expense_updated, on_expense_deleted,
     on_payment_status_changed) that expense_service calls inside the same
     transaction as the expense write.
  2. Recalculation job — recalculate_all() wipes the aggregate table and
     replays every persisted expense. find_drift() reports differences
     between the stored rows and a replay without writing anything.
  3. Query façade — per-user summary, per-friend and per-group balances,
     read only from balance_aggregates, never from expenses.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy Session.
  - Never commits; routes wrap calls in run_in_transaction().
  - Returns plain dicts with Decimal amounts; the JSON provider renders them
    as strings.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backend.splitbuddy.errors import AppError, ErrorCode
from backend.splitbuddy.models.expense import Expense
from backend.splitbuddy.services import balance_engine, social_graph
from backend.splitbuddy.services.aggregate_store import AggregateStore
from backend.splitbuddy.services.balance_engine import (
    ZERO,
    Deltas,
    ExpenseSnapshot,
    FriendKey,
    ParticipationSnapshot,
)

logger = logging.getLogger(__name__)


# ── Update engine ──────────────────────────────────────────────────────────

def _write_deltas(deltas: Deltas, expense_id: int, store: AggregateStore) -> int:
    """
    Adds each non-zero delta to its row, in key order.

    A fixed write order means two events touching the same keys lock them
    in the same sequence. Returns the number of rows touched.
    """
    touched = 0
    for key in sorted(deltas, key=lambda k: (type(k).__name__, k)):
        amount = deltas[key]
        if amount == ZERO:
            continue
        store.add(key, amount, expense_id)
        touched += 1
    return touched


def apply_expense(expense: ExpenseSnapshot, payer_id: int, store: AggregateStore) -> int:
    """Adds every contribution of `expense` to the store."""
    return _write_deltas(
        balance_engine.apply_deltas(expense, payer_id),
        expense.expense_id,
        store,
    )


def reverse_expense(expense: ExpenseSnapshot, payer_id: int, store: AggregateStore) -> int:
    """Removes every contribution apply_expense() made for the same state."""
    return _write_deltas(
        balance_engine.reverse_deltas(expense, payer_id),
        expense.expense_id,
        store,
    )


def apply_payment_toggle(
        expense: ExpenseSnapshot,
        participation: ParticipationSnapshot,
        is_paid: bool,
        store: AggregateStore,
) -> int:
    """
    Settles (is_paid=True) or reopens (is_paid=False) one participant's share.

    Only the (payer, participant) friend row and the participant's own group
    row move. The payer's group row is left alone.
    """
    return _write_deltas(
        balance_engine.payment_toggle_deltas(expense, participation, is_paid),
        expense.expense_id,
        store,
    )


# ── Lifecycle hooks ────────────────────────────────────────────────────────

def on_expense_created(expense: ExpenseSnapshot, session: Session) -> int:
    touched = apply_expense(expense, expense.payer_id, AggregateStore(session))
    logger.info("Applied expense %s to balances (%d rows)", expense.expense_id, touched)
    return touched


def on_expense_updated(old: ExpenseSnapshot, new: ExpenseSnapshot, session: Session) -> int:
    """reverse(old) then apply(new), netted per row so each row is written once."""
    touched = _write_deltas(
        balance_engine.update_deltas(old, new),
        new.expense_id,
        AggregateStore(session),
    )
    logger.info("Re-applied expense %s to balances (%d rows)", new.expense_id, touched)
    return touched


def on_expense_deleted(expense: ExpenseSnapshot, session: Session) -> int:
    touched = reverse_expense(expense, expense.payer_id, AggregateStore(session))
    logger.info("Reversed expense %s from balances (%d rows)", expense.expense_id, touched)
    return touched


def on_payment_status_changed(
        expense: ExpenseSnapshot,
        participation: ParticipationSnapshot,
        is_paid: bool,
        session: Session,
) -> int:
    touched = apply_payment_toggle(expense, participation, is_paid, AggregateStore(session))
    logger.info(
        "Payment toggle on expense %s for user %s (paid=%s, %d rows)",
        expense.expense_id, participation.user_id, is_paid, touched,
    )
    return touched


# ── Recalculation job ──────────────────────────────────────────────────────

def get_all_expenses(session: Session) -> list[ExpenseSnapshot]:
    """Every persisted expense with its participants, frozen for replay."""
    stmt = select(Expense).options(selectinload(Expense.participants)).order_by(Expense.id)
    expenses = session.execute(stmt).scalars().all()
    return [ExpenseSnapshot.from_model(e) for e in expenses]


def recalculate_all(session: Session) -> dict:
    """
    Rebuilds balance_aggregates from scratch.

    clear_all() followed by apply() for every expense. Safe to re-run at any
    time; the only table written is balance_aggregates.

    Returns:
        {"expenses_replayed": int, "rows_deleted": int, "aggregates_written": int}
    """
    logger.info("Starting full balance recalculation")
    store = AggregateStore(session)
    rows_deleted = store.clear_all()

    expenses = get_all_expenses(session)
    for expense in expenses:
        apply_expense(expense, expense.payer_id, store)

    aggregates_written = len(store.all_rows())
    logger.info(
        "Completed balance recalculation: %d expenses replayed, %d rows removed, %d rows written",
        len(expenses), rows_deleted, aggregates_written,
    )
    return {
        "expenses_replayed": len(expenses),
        "rows_deleted": rows_deleted,
        "aggregates_written": aggregates_written,
    }


def find_drift(session: Session) -> list[dict]:
    """
    Compares stored balances with a fresh replay of every expense.

    Read-only. Returns one entry per key whose stored balance differs from
    the replayed one (a missing row counts as zero), sorted by key.
    """
    expected = balance_engine.replay(get_all_expenses(session))
    store = AggregateStore(session)
    stored = {store.key_of(row): Decimal(row.balance) for row in store.all_rows()}

    drift = []
    for key in sorted(set(expected) | set(stored), key=lambda k: (type(k).__name__, k)):
        want = expected.get(key, ZERO)
        have = stored.get(key, ZERO)
        if want != have:
            drift.append({"key": key, "stored": have, "expected": want})
    if drift:
        logger.warning("Balance drift detected on %d aggregate rows", len(drift))
    return drift


# ── Query façade ───────────────────────────────────────────────────────────

def get_friend_balances(user_id: int, session: Session) -> list[dict]:
    """
    One entry per friend the user shares a balance with.

    `balance` is from the user's point of view: positive means the friend
    owes the user, negative means the user owes the friend.
    """
    store = AggregateStore(session)
    rows = store.friend_rows_for_user(user_id)
    keys = [store.key_of(row) for row in rows]
    names = social_graph.user_names({k.counterpart(user_id) for k in keys}, session)

    result = []
    for key, row in zip(keys, rows):
        friend_id = key.counterpart(user_id)
        result.append({
            "friend_id": friend_id,
            "friend_name": names.get(friend_id, f"user_{friend_id}"),
            "balance": key.oriented(Decimal(row.balance), user_id),
        })
    return result


def get_friend_balance(user_id: int, friend_id: int, session: Session) -> dict:
    """
    Net balance between two users, zero when they never shared an expense.

    Raises:
        AppError(INVALID_FIELD, 400)   — friend_id is the user themselves.
        AppError(USER_NOT_FOUND, 404)  — friend does not exist.
    """
    if user_id == friend_id:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "A user has no balance with themselves.",
            400,
            field="friend_id",
        )
    friend = social_graph.get_user_or_404(friend_id, session, field="friend_id")

    key = FriendKey.of(user_id, friend_id)
    net = key.oriented(AggregateStore(session).balance(key), user_id)
    return {
        "friend_id": friend_id,
        "friend_name": friend.name,
        "net_balance": net,
        "total_owed_by_friend": net if net > ZERO else ZERO,
        "total_owed_to_friend": -net if net < ZERO else ZERO,
    }


def get_group_balances(user_id: int, session: Session) -> list[dict]:
    """
    The user's balance with each group they have a row for.

    Positive: the group owes the user. Negative: the user owes the group.
    """
    rows = AggregateStore(session).group_rows_for_user(user_id)
    names = social_graph.group_names({row.group_id for row in rows}, session)
    return [
        {
            "group_id": row.group_id,
            "group_name": names.get(row.group_id, f"group_{row.group_id}"),
            "balance": Decimal(row.balance),
        }
        for row in rows
    ]


def get_group_balances_for_group(group_id: int, session: Session) -> list[dict]:
    """Every member row of one group, ordered by user id."""
    group = social_graph.get_group_or_404(group_id, session)
    rows = AggregateStore(session).group_rows_for_group(group_id)
    names = social_graph.user_names({row.user_id for row in rows}, session)
    return [
        {
            "group_id": group_id,
            "group_name": group.name,
            "user_id": row.user_id,
            "user_name": names.get(row.user_id, f"user_{row.user_id}"),
            "balance": Decimal(row.balance),
        }
        for row in rows
    ]


def get_group_balance_response(group_id: int, caller_id: int, session: Session) -> list[dict]:
    """
    get_group_balances_for_group() for a caller who must belong to the group.

    Raises:
        AppError(GROUP_NOT_FOUND, 404) — group does not exist.
        AppError(FORBIDDEN, 403)       — caller is not a member.
    """
    social_graph.get_group_or_404(group_id, session)
    social_graph.require_group_member(group_id, caller_id, session)
    return get_group_balances_for_group(group_id, session)


def get_user_balance_summary(user_id: int, session: Session) -> dict:
    """
    Totals across every friend and group row of one user.

      net_balance  = Σ friend balances (user's view) + Σ group balances
      total_owed   = max(0, net_balance)   — others owe the user
      total_owes   = max(0, -net_balance)  — the user owes others

    Raises:
        AppError(USER_NOT_FOUND, 404) — user does not exist.
    """
    user = social_graph.get_user_or_404(user_id, session)
    store = AggregateStore(session)

    friend_total = sum(
        (
            store.key_of(row).oriented(Decimal(row.balance), user_id)
            for row in store.friend_rows_for_user(user_id)
        ),
        ZERO,
    )
    group_total = sum(
        (Decimal(row.balance) for row in store.group_rows_for_user(user_id)),
        ZERO,
    )
    net = friend_total + group_total

    return {
        "user_id": user_id,
        "user_name": user.name,
        "total_owed": net if net > ZERO else ZERO,
        "total_owes": -net if net < ZERO else ZERO,
        "net_balance": net,
        "friend_balance": friend_total,
        "group_balance": group_total,
    }
