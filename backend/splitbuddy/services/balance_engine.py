"""
services/balance_engine.py — Pure delta computation for balance aggregates.

This file is the SINGLE SOURCE OF TRUTH for how an expense moves balances.
Every write path (create, update, delete, payment toggle, recalculation)
derives its deltas from the functions below; nothing else in the codebase
may recompute a sign or a share.

Layer rules:
  - No Flask, no session, no I/O. Input is flat value records, output is
    {key: Decimal} dicts. Fully unit-testable.
  - ORM rows are converted with ExpenseSnapshot.from_model() at the service
    boundary so the engine never sees lazy relationships.

Sign conventions:
  FriendKey(lo, hi)   balance > 0  → hi owes lo
                      balance < 0  → lo owes hi
  GroupKey(user, g)   balance > 0  → group g owes user
                      balance < 0  → user owes group g

Contribution of one expense (payer y, total T):
  For each active, unpaid participation p != y with share a:
    friend (y, p)   +a if y < p else -a
    group (p, g)    -a                          (GROUP participations only)
  For each active GROUP participation of y itself in group g:
    group (y, g)    + Σ shares of the other active GROUP participations in g
                    (== T - a when every participation is sourced from g)

A paid participation contributes nothing to its friend row or its own group
row: marking it paid is exactly the negation of its contribution. The payer's
group credit ignores payment status, so toggles never touch it.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Union

from backend.splitbuddy.models.participant import ParticipantSource


ZERO = Decimal("0.00")


# ── Keys ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True, order=True)
class FriendKey:
    """Canonical unordered user pair: lo_id < hi_id always."""

    lo_id: int
    hi_id: int

    def __post_init__(self) -> None:
        if self.lo_id >= self.hi_id:
            raise ValueError(
                f"FriendKey requires lo_id < hi_id, got ({self.lo_id}, {self.hi_id})."
            )

    @classmethod
    def of(cls, a: int, b: int) -> "FriendKey":
        """Builds the canonical key for two distinct users in any order."""
        if a == b:
            raise ValueError(f"A user cannot have a friend balance with themselves ({a}).")
        return cls(min(a, b), max(a, b))

    def counterpart(self, user_id: int) -> int:
        """Returns the other user of the pair."""
        if user_id == self.lo_id:
            return self.hi_id
        if user_id == self.hi_id:
            return self.lo_id
        raise ValueError(f"User {user_id} is not part of pair ({self.lo_id}, {self.hi_id}).")

    def oriented(self, balance: Decimal, user_id: int) -> Decimal:
        """
        Re-expresses a canonical balance from `user_id`'s point of view.

        Positive result: the counterpart owes `user_id`.
        """
        if user_id == self.lo_id:
            return balance
        if user_id == self.hi_id:
            return ZERO - balance  # never renders as "-0.00"
        raise ValueError(f"User {user_id} is not part of pair ({self.lo_id}, {self.hi_id}).")


@dataclass(frozen=True, order=True)
class GroupKey:
    user_id: int
    group_id: int


AggregateKey = Union[FriendKey, GroupKey]
Deltas = dict[AggregateKey, Decimal]


# ── Value records ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ParticipationSnapshot:
    user_id: int
    amount: Decimal
    source: ParticipantSource = ParticipantSource.FRIEND
    source_id: int | None = None
    is_active: bool = True
    is_paid: bool = False
    participant_id: int | None = None

    @property
    def group_id(self) -> int | None:
        """The group this share belongs to, or None for friend shares."""
        if self.source == ParticipantSource.GROUP:
            return self.source_id
        return None

    @classmethod
    def from_model(cls, participant) -> "ParticipationSnapshot":
        return cls(
            user_id=participant.user_id,
            amount=Decimal(participant.amount),
            source=ParticipantSource(participant.source),
            source_id=participant.source_id,
            is_active=bool(participant.is_active),
            is_paid=bool(participant.is_paid),
            participant_id=participant.id,
        )


@dataclass(frozen=True)
class ExpenseSnapshot:
    expense_id: int
    payer_id: int
    amount: Decimal
    participations: tuple[ParticipationSnapshot, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, expense) -> "ExpenseSnapshot":
        """Freezes an Expense ORM row (and its participants) into a value record."""
        return cls(
            expense_id=expense.id,
            payer_id=expense.paid_by_user_id,
            amount=Decimal(expense.amount),
            participations=tuple(
                ParticipationSnapshot.from_model(p) for p in expense.participants
            ),
        )


# ── Single-rule helpers ────────────────────────────────────────────────────

def friend_delta(payer_id: int, participant_id: int, amount: Decimal) -> Decimal:
    """
    Signed change to the (payer, participant) friend row when the participant
    owes `amount` to the payer.

    payer is the lower id  → +amount (the higher id, the participant, owes)
    payer is the higher id → -amount
    """
    if payer_id < participant_id:
        return amount
    return -amount


def _add(deltas: Deltas, key: AggregateKey, amount: Decimal) -> None:
    deltas[key] = deltas.get(key, ZERO) + amount


def participant_contribution(
        payer_id: int,
        participation: ParticipationSnapshot,
) -> Deltas:
    """
    Deltas owed by one non-payer participation, ignoring its paid flag.

    This is the unit that a payment toggle removes (paid) or restores
    (unpaid). Returns {} for the payer's own participation.
    """
    deltas: Deltas = {}
    if participation.user_id == payer_id:
        return deltas

    _add(
        deltas,
        FriendKey.of(payer_id, participation.user_id),
        friend_delta(payer_id, participation.user_id, participation.amount),
    )
    if participation.group_id is not None:
        _add(deltas, GroupKey(participation.user_id, participation.group_id), -participation.amount)
    return deltas


def payer_group_credits(expense: ExpenseSnapshot, payer_id: int) -> Deltas:
    """
    Credit on the payer's own group rows: for each group the payer takes part
    in through this expense, the sum of the other members' shares in that group.
    """
    payer_groups = {
        p.group_id
        for p in expense.participations
        if p.is_active and p.user_id == payer_id and p.group_id is not None
    }

    deltas: Deltas = {}
    for group_id in sorted(payer_groups):
        credit = sum(
            (
                p.amount
                for p in expense.participations
                if p.is_active and p.user_id != payer_id and p.group_id == group_id
            ),
            ZERO,
        )
        _add(deltas, GroupKey(payer_id, group_id), credit)
    return deltas


def merge(*delta_maps: Deltas) -> Deltas:
    """Sums several delta maps key by key."""
    merged: Deltas = {}
    for deltas in delta_maps:
        for key, amount in deltas.items():
            _add(merged, key, amount)
    return merged


def negate(deltas: Deltas) -> Deltas:
    return {key: -amount for key, amount in deltas.items()}


# ── Event-level deltas ─────────────────────────────────────────────────────

def apply_deltas(expense: ExpenseSnapshot, payer_id: int) -> Deltas:
    """Every delta a newly recorded expense contributes, summed per key."""
    parts = [
        participant_contribution(payer_id, p)
        for p in expense.participations
        if p.is_active and not p.is_paid
    ]
    return merge(*parts, payer_group_credits(expense, payer_id))


def reverse_deltas(expense: ExpenseSnapshot, payer_id: int) -> Deltas:
    """Exact negation of apply_deltas() for the same expense state."""
    return negate(apply_deltas(expense, payer_id))


def update_deltas(old: ExpenseSnapshot, new: ExpenseSnapshot) -> Deltas:
    """reverse(old) followed by apply(new), netted per key."""
    return merge(
        reverse_deltas(old, old.payer_id),
        apply_deltas(new, new.payer_id),
    )


def payment_toggle_deltas(
        expense: ExpenseSnapshot,
        participation: ParticipationSnapshot,
        is_paid: bool,
) -> Deltas:
    """
    Deltas for flipping one participation's paid flag.

    to paid   → negation of the participant's own contribution
    to unpaid → the contribution re-applied
    The payer's group row is never part of the result.
    """
    if not participation.is_active:
        return {}
    contribution = participant_contribution(expense.payer_id, participation)
    return negate(contribution) if is_paid else contribution


def replay(expenses: Iterable[ExpenseSnapshot]) -> Deltas:
    """
    Balances obtained by applying every expense to an empty store.

    Addition per key is commutative, so the result is independent of the
    order of `expenses`. Keys whose total is zero are kept.
    """
    totals: Deltas = defaultdict(lambda: ZERO)
    for expense in expenses:
        for key, amount in apply_deltas(expense, expense.payer_id).items():
            totals[key] += amount
    return dict(totals)
