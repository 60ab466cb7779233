"""
models/balance_aggregate.py — Running balance rows.

Two row shapes share one table, told apart by `balance_type`:

  FRIEND_TO_FRIEND  key (user1_id, user2_id), user1_id < user2_id.
                    balance > 0  → user2 owes user1
                    balance < 0  → user1 owes user2
  USER_TO_GROUP     key (user_id, group_id).
                    balance > 0  → the group owes the user
                    balance < 0  → the user owes the group

A missing row means balance 0. Rows are created lazily by the aggregate store
and only removed by a full recalculation.

`version` is SQLAlchemy's version_id_col: every UPDATE is issued as
"... WHERE id = :id AND version = :seen" and raises StaleDataError when a
concurrent writer got there first. The store relies on this to detect lost
updates.

`last_expense_id` is deliberately not a foreign key: it keeps pointing at a
deleted expense after that expense is reversed.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.splitbuddy.extensions import db


class BalanceType(str, enum.Enum):
    FRIEND_TO_FRIEND = "FRIEND_TO_FRIEND"
    USER_TO_GROUP    = "USER_TO_GROUP"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BalanceAggregate(db.Model):
    __tablename__ = "balance_aggregates"

    __table_args__ = (
        UniqueConstraint(
            "balance_type", "user1_id", "user2_id",
            name="uq_balance_aggregates_friend_pair",
        ),
        UniqueConstraint(
            "balance_type", "user_id", "group_id",
            name="uq_balance_aggregates_user_group",
        ),
        CheckConstraint(
            "balance_type <> 'FRIEND_TO_FRIEND' OR user1_id < user2_id",
            name="ck_balance_aggregates_canonical_pair",
        ),
        Index("idx_balance_aggregates_user1", "user1_id"),
        Index("idx_balance_aggregates_user2", "user2_id"),
        Index("idx_balance_aggregates_group", "group_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    balance_type: Mapped[BalanceType] = mapped_column(
        Enum(
            BalanceType,
            name="balance_type_enum",
            native_enum=False,
            length=20,
            values_callable=lambda cls: [m.value for m in cls],
        ),
        nullable=False,
    )

    # FRIEND_TO_FRIEND key
    user1_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
    )
    user2_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
    )

    # USER_TO_GROUP key
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=True,
    )

    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    last_expense_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:  # pragma: no cover
        if self.balance_type == BalanceType.FRIEND_TO_FRIEND:
            key = f"pair=({self.user1_id},{self.user2_id})"
        else:
            key = f"user_id={self.user_id} group_id={self.group_id}"
        return f"<BalanceAggregate {key} balance={self.balance}>"
