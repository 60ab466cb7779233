"""
services/expense_service.py — Expense lifecycle: create, read, update, delete, pay.

Every mutation here is paired with exactly one balance_service hook, called in
the same session before the route commits:

  create_expense      → on_expense_created(new)
  update_expense      → on_expense_updated(old, new)
  delete_expense      → on_expense_deleted(old)
  set_payment_status  → on_payment_status_changed(expense, participation, is_paid)

Validation (422 unless noted):
  PARTICIPANT_SUM_MISMATCH   — |Σ participant amounts − amount| > tolerance
  DUPLICATE_PARTICIPANT      — a user listed twice
  GROUP_SOURCE_REQUIRED      — GROUP participation without a source group
  NOT_A_FRIEND               — FRIEND participant is not a friend of the payer
  NOT_A_GROUP_MEMBER         — GROUP participant is not a member of the group
  USER_NOT_FOUND (404)       — payer or participant does not exist
  GROUP_NOT_FOUND (404)      — source group does not exist

Authorization rules:
  - Create: caller must be the payer or one of the participants
  - Get:    caller must be the payer or a participant
  - Update: caller must be the payer or a participant (before the update)
  - Delete: caller must be the payer
  - Pay:    caller must be the payer
  - Group listing: caller must be a member of the group

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from backend.splitbuddy.errors import AppError, ErrorCode
from backend.splitbuddy.models.expense import DEFAULT_CATEGORY, DEFAULT_CURRENCY, Expense
from backend.splitbuddy.models.participant import ExpenseParticipant, ParticipantSource
from backend.splitbuddy.services import balance_service, social_graph
from backend.splitbuddy.services.balance_engine import ExpenseSnapshot, ParticipationSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("0.01")
SHARED_EXPENSE_LIMIT = 50


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _is_payer_or_participant(expense: Expense, user_id: int) -> bool:
    if expense.paid_by_user_id == user_id:
        return True
    return any(p.user_id == user_id for p in expense.participants)


def _require_payer_or_participant(expense: Expense, caller_id: int, action: str) -> None:
    if not _is_payer_or_participant(expense, caller_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the payer or a participant may {action} this expense.",
            403,
        )


def _require_payer(expense: Expense, caller_id: int, action: str) -> None:
    if expense.paid_by_user_id != caller_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the payer may {action} this expense.",
            403,
        )


def _validate_sum(participants: list[dict], amount: Decimal, tolerance: Decimal) -> None:
    total = sum((p["amount"] for p in participants), Decimal("0"))
    if abs(total - amount) > tolerance:
        raise AppError(
            ErrorCode.PARTICIPANT_SUM_MISMATCH,
            f"Participant amounts ({total}) do not add up to the expense amount ({amount}).",
            422,
            field="participants",
        )


def _validate_unique(participants: list[dict]) -> None:
    seen: set[int] = set()
    for p in participants:
        if p["user_id"] in seen:
            raise AppError(
                ErrorCode.DUPLICATE_PARTICIPANT,
                f"User {p['user_id']} is listed more than once.",
                422,
                field="participants",
            )
        seen.add(p["user_id"])


def _validate_participant(payer_id: int, p: dict, session: Session) -> None:
    """Checks one participation against the social graph."""
    user_id = p["user_id"]
    social_graph.get_user_or_404(user_id, session, field="participants")

    if p["source"] == ParticipantSource.GROUP:
        group_id = p.get("source_id")
        if group_id is None:
            raise AppError(
                ErrorCode.GROUP_SOURCE_REQUIRED,
                f"Participant {user_id} is sourced from a group but no group id was given.",
                422,
                field="participants",
            )
        social_graph.get_group_or_404(group_id, session, field="participants")
        if not social_graph.is_group_member(user_id, group_id, session):
            raise AppError(
                ErrorCode.NOT_A_GROUP_MEMBER,
                f"User {user_id} is not a member of group {group_id}.",
                422,
                field="participants",
            )
        return

    # The payer is always allowed to list themselves.
    if user_id != payer_id and not social_graph.are_friends(payer_id, user_id, session):
        raise AppError(
            ErrorCode.NOT_A_FRIEND,
            f"User {user_id} is not a friend of the payer {payer_id}.",
            422,
            field="participants",
        )


def _validate_participants(
        payer_id: int,
        amount: Decimal,
        participants: list[dict],
        session: Session,
        tolerance: Decimal,
) -> None:
    social_graph.get_user_or_404(payer_id, session, field="paid_by_user_id")
    _validate_unique(participants)
    _validate_sum(participants, amount, tolerance)
    for p in participants:
        _validate_participant(payer_id, p, session)


def _build_participants(participants: list[dict]) -> list[ExpenseParticipant]:
    rows = []
    for p in participants:
        source = p["source"]
        rows.append(
            ExpenseParticipant(
                user_id=p["user_id"],
                amount=p["amount"],
                source=source,
                source_id=p.get("source_id") if source == ParticipantSource.GROUP else None,
                is_active=True,
                is_paid=False,
            )
        )
    return rows


def _participants_as_input(expense: Expense) -> list[dict]:
    """Current participant rows in the shape the validators expect."""
    return [
        {
            "user_id":   p.user_id,
            "amount":    Decimal(p.amount),
            "source":    ParticipantSource(p.source),
            "source_id": p.source_id,
        }
        for p in expense.participants
    ]


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        caller_id: int,
        data: dict,
        session: Session,
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Expense:
    """
    Records a new expense and applies it to the balance aggregates.

    Args:
        caller_id: The authenticated user (from flask.g).
        data:      Validated dict from CreateExpenseSchema. paid_by_user_id
                   defaults to the caller.
        tolerance: Allowed |Σ participants − amount|.

    Returns:
        The new Expense with its participants loaded.
    """
    payer_id: int = data.get("paid_by_user_id") or caller_id
    amount: Decimal = data["amount"]
    participants: list[dict] = data["participants"]

    if caller_id != payer_id and all(p["user_id"] != caller_id for p in participants):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only record expenses you paid for or take part in.",
            403,
        )

    _validate_participants(payer_id, amount, participants, session, tolerance)

    expense = Expense(
        paid_by_user_id=payer_id,
        title=data["title"],
        description=data.get("description"),
        amount=amount,
        currency=data.get("currency") or DEFAULT_CURRENCY,
        category=data.get("category") or DEFAULT_CATEGORY,
        participants=_build_participants(participants),
    )
    if data.get("paid_at") is not None:
        expense.paid_at = data["paid_at"]

    session.add(expense)
    session.flush()  # assigns expense.id and participant ids

    balance_service.on_expense_created(ExpenseSnapshot.from_model(expense), session)
    logger.info("Created expense %s paid by user %s", expense.id, payer_id)
    return expense


def get_expense(expense_id: int, caller_id: int, session: Session) -> Expense:
    expense = _get_expense_or_404(expense_id, session)
    _require_payer_or_participant(expense, caller_id, "view")
    return expense


def _involving(user_id: int):
    """WHERE clause: the user paid for the expense or takes part in it."""
    participant_of = select(ExpenseParticipant.expense_id).where(
        ExpenseParticipant.user_id == user_id
    )
    return or_(
        Expense.paid_by_user_id == user_id,
        Expense.id.in_(participant_of),
    )


def list_expenses_for_user(user_id: int, session: Session) -> list[Expense]:
    """Expenses the user paid for or takes part in, most recent first."""
    stmt = (
        select(Expense)
        .options(selectinload(Expense.participants))
        .where(_involving(user_id))
        .order_by(Expense.paid_at.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def list_shared_expenses(
        user_id: int,
        friend_id: int,
        session: Session,
        limit: int = SHARED_EXPENSE_LIMIT,
) -> list[Expense]:
    """
    Expenses both users are involved in, as payer or participant, most recent
    first and at most `limit` of them.
    """
    stmt = (
        select(Expense)
        .options(selectinload(Expense.participants))
        .where(_involving(user_id), _involving(friend_id))
        .order_by(Expense.paid_at.desc(), Expense.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def get_friend_expenses(user_id: int, friend_id: int, session: Session) -> dict:
    """
    The friend balance from balance_aggregates plus the recent expenses the
    two users share. The balance never depends on the expense list.

    Raises:
        AppError(INVALID_FIELD, 400)   — friend_id is the user themselves.
        AppError(USER_NOT_FOUND, 404)  — friend does not exist.
    """
    result = balance_service.get_friend_balance(user_id, friend_id, session)
    result["shared_expenses"] = list_shared_expenses(user_id, friend_id, session)
    return result


def list_group_expenses(group_id: int, caller_id: int, session: Session) -> list[Expense]:
    """
    Expenses with at least one participant sourced from the group, most
    recent first.

    Raises:
        AppError(GROUP_NOT_FOUND, 404) — group does not exist.
        AppError(FORBIDDEN, 403)       — caller is not a member.
    """
    social_graph.get_group_or_404(group_id, session, field="group_id")
    social_graph.require_group_member(group_id, caller_id, session)

    sourced_from_group = select(ExpenseParticipant.expense_id).where(
        ExpenseParticipant.source == ParticipantSource.GROUP,
        ExpenseParticipant.source_id == group_id,
    )
    stmt = (
        select(Expense)
        .options(selectinload(Expense.participants))
        .where(Expense.id.in_(sourced_from_group))
        .order_by(Expense.paid_at.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def update_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Expense:
    """
    Partially updates an expense and re-applies it to the balances.

    Only keys present in `data` change. A `participants` list replaces the
    existing participants wholesale; the replacements start active and unpaid.
    The amount invariant and the social-graph checks are re-run against the
    resulting state whether or not participants were sent.

    Balances move by reverse(old) + apply(new), netted per aggregate row.
    """
    expense = _get_expense_or_404(expense_id, session)
    _require_payer_or_participant(expense, caller_id, "update")

    old = ExpenseSnapshot.from_model(expense)

    payer_id = data.get("paid_by_user_id", expense.paid_by_user_id)
    amount = data.get("amount", Decimal(expense.amount))
    participants = data.get("participants")
    if participants is None:
        participants = _participants_as_input(expense)

    _validate_participants(payer_id, amount, participants, session, tolerance)

    for field in ("title", "description", "currency", "category", "paid_at"):
        if field in data:
            setattr(expense, field, data[field])
    expense.paid_by_user_id = payer_id
    expense.amount = amount

    if "participants" in data:
        expense.participants.clear()
        session.flush()  # delete-orphan before re-inserting the same users
        expense.participants.extend(_build_participants(participants))

    expense.updated_at = datetime.now(timezone.utc)
    session.flush()

    balance_service.on_expense_updated(old, ExpenseSnapshot.from_model(expense), session)
    logger.info("Updated expense %s", expense.id)
    return expense


def delete_expense(expense_id: int, caller_id: int, session: Session) -> None:
    """
    Reverses the expense's contribution and deletes it with its participants.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) — expense does not exist.
        AppError(FORBIDDEN, 403)         — caller is not the payer.
    """
    expense = _get_expense_or_404(expense_id, session)
    _require_payer(expense, caller_id, "delete")

    balance_service.on_expense_deleted(ExpenseSnapshot.from_model(expense), session)

    session.delete(expense)
    session.flush()
    logger.info("Deleted expense %s", expense_id)


def set_payment_status(
        expense_id: int,
        participant_id: int,
        caller_id: int,
        is_paid: bool,
        session: Session,
) -> ExpenseParticipant:
    """
    Marks one participant's share as paid or unpaid.

    Setting the status it already has is a no-op: no balance moves.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404)           — expense does not exist.
        AppError(FORBIDDEN, 403)                   — caller is not the payer.
        AppError(PARTICIPANT_NOT_FOUND, 404)       — participant does not exist.
        AppError(PARTICIPANT_NOT_IN_EXPENSE, 422)  — participant belongs to another expense.
    """
    expense = _get_expense_or_404(expense_id, session)
    _require_payer(expense, caller_id, "change payment status on")

    participant = session.get(ExpenseParticipant, participant_id)
    if participant is None:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_FOUND,
            f"Participant {participant_id} does not exist.",
            404,
        )
    if participant.expense_id != expense.id:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_IN_EXPENSE,
            f"Participant {participant_id} is not part of expense {expense_id}.",
            422,
        )

    if bool(participant.is_paid) == is_paid:
        return participant

    balance_service.on_payment_status_changed(
        ExpenseSnapshot.from_model(expense),
        ParticipationSnapshot.from_model(participant),
        is_paid,
        session,
    )

    participant.is_paid = is_paid
    participant.paid_at = datetime.now(timezone.utc) if is_paid else None
    session.flush()
    return participant
