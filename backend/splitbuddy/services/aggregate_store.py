"""
services/aggregate_store.py — Keyed access to balance_aggregates rows.

The ONLY sanctioned way to read or write balance aggregate rows. Services
never query BalanceAggregate directly; they go through AggregateStore so the
locking and versioning rules below hold everywhere.

Contract:
  get(key)                          → Decimal | None   (None == no row == 0)
  upsert(key, balance_fn, expense)  → row              balance_fn(old or 0) → new
  add(key, delta, expense)          → row              upsert with old + delta
  clear_all()                       → rows deleted

Atomicity per key:
  - The row is read with SELECT ... FOR UPDATE, so a second writer on the same
    key waits until the first transaction ends (PostgreSQL; SQLite serialises
    writers at the database level instead).
  - The UPDATE is version-checked (BalanceAggregate.version), so a writer that
    read a stale row fails with StaleDataError instead of losing an update.
  - A lazily created row is flushed immediately; two transactions racing to
    create the same key collide on the unique constraint (IntegrityError).
  Both failures roll back the whole event; run_in_transaction() retries it.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy Session.
  - Never commits; the caller owns the transaction.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from backend.splitbuddy.models.balance_aggregate import BalanceAggregate, BalanceType
from backend.splitbuddy.services.balance_engine import (
    ZERO,
    AggregateKey,
    FriendKey,
    GroupKey,
)


class AggregateStore:

    def __init__(self, session: Session) -> None:
        self.session = session

    # ── Key ↔ row mapping ──────────────────────────────────────────────────

    @staticmethod
    def key_of(row: BalanceAggregate) -> AggregateKey:
        """Returns the engine key a stored row represents."""
        if row.balance_type == BalanceType.FRIEND_TO_FRIEND:
            return FriendKey(row.user1_id, row.user2_id)
        return GroupKey(row.user_id, row.group_id)

    @staticmethod
    def _where(key: AggregateKey):
        if isinstance(key, FriendKey):
            return (
                BalanceAggregate.balance_type == BalanceType.FRIEND_TO_FRIEND,
                BalanceAggregate.user1_id == key.lo_id,
                BalanceAggregate.user2_id == key.hi_id,
            )
        return (
            BalanceAggregate.balance_type == BalanceType.USER_TO_GROUP,
            BalanceAggregate.user_id == key.user_id,
            BalanceAggregate.group_id == key.group_id,
        )

    @staticmethod
    def _new_row(key: AggregateKey, expense_id: int) -> BalanceAggregate:
        if isinstance(key, FriendKey):
            return BalanceAggregate(
                balance_type=BalanceType.FRIEND_TO_FRIEND,
                user1_id=key.lo_id,
                user2_id=key.hi_id,
                balance=ZERO,
                last_expense_id=expense_id,
            )
        return BalanceAggregate(
            balance_type=BalanceType.USER_TO_GROUP,
            user_id=key.user_id,
            group_id=key.group_id,
            balance=ZERO,
            last_expense_id=expense_id,
        )

    # ── Reads ──────────────────────────────────────────────────────────────

    def get_row(self, key: AggregateKey, for_update: bool = False) -> BalanceAggregate | None:
        stmt = select(BalanceAggregate).where(*self._where(key))
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, key: AggregateKey) -> Decimal | None:
        """Current balance for `key`, or None when no row exists."""
        row = self.get_row(key)
        return None if row is None else Decimal(row.balance)

    def balance(self, key: AggregateKey) -> Decimal:
        """Current balance for `key`; a missing row reads as zero."""
        value = self.get(key)
        return ZERO if value is None else value

    def friend_rows_for_user(self, user_id: int) -> list[BalanceAggregate]:
        stmt = (
            select(BalanceAggregate)
            .where(
                BalanceAggregate.balance_type == BalanceType.FRIEND_TO_FRIEND,
                or_(
                    BalanceAggregate.user1_id == user_id,
                    BalanceAggregate.user2_id == user_id,
                ),
            )
            .order_by(BalanceAggregate.user1_id, BalanceAggregate.user2_id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def group_rows_for_user(self, user_id: int) -> list[BalanceAggregate]:
        stmt = (
            select(BalanceAggregate)
            .where(
                BalanceAggregate.balance_type == BalanceType.USER_TO_GROUP,
                BalanceAggregate.user_id == user_id,
            )
            .order_by(BalanceAggregate.group_id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def group_rows_for_group(self, group_id: int) -> list[BalanceAggregate]:
        stmt = (
            select(BalanceAggregate)
            .where(
                BalanceAggregate.balance_type == BalanceType.USER_TO_GROUP,
                BalanceAggregate.group_id == group_id,
            )
            .order_by(BalanceAggregate.user_id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def friend_row(self, a: int, b: int) -> BalanceAggregate | None:
        """The friend row for two users in any order, or None."""
        return self.get_row(FriendKey.of(a, b))

    def all_rows(self) -> list[BalanceAggregate]:
        return list(self.session.execute(select(BalanceAggregate)).scalars().all())

    # ── Writes ─────────────────────────────────────────────────────────────

    def upsert(
            self,
            key: AggregateKey,
            balance_fn: Callable[[Decimal], Decimal],
            expense_id: int,
    ) -> BalanceAggregate:
        """
        Atomic read-modify-write of one aggregate row.

        A missing row is created with balance_fn(0). The row is stamped with
        `expense_id` as its last contributing expense.
        """
        row = self.get_row(key, for_update=True)
        if row is None:
            row = self._new_row(key, expense_id)
            row.balance = balance_fn(ZERO)
            self.session.add(row)
        else:
            row.balance = balance_fn(Decimal(row.balance))
            row.last_expense_id = expense_id
        # Flush now so version and unique-key conflicts surface inside the
        # caller's retry boundary, not at commit time of an unrelated write.
        self.session.flush()
        return row

    def add(self, key: AggregateKey, delta: Decimal, expense_id: int) -> BalanceAggregate:
        return self.upsert(key, lambda old: old + delta, expense_id)

    def clear_all(self) -> int:
        """Deletes every aggregate row. Used only by the recalculation job."""
        # "evaluate" drops already-loaded rows from the identity map, so rows
        # re-created with a reused primary key do not collide with them.
        result = self.session.execute(
            delete(BalanceAggregate).execution_options(synchronize_session="evaluate")
        )
        self.session.expire_all()
        return result.rowcount or 0
