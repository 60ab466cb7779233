"""
models/participant.py — ExpenseParticipant table definition.

One row per (expense, user) pair: the user's owed share, where the user came
from (a friend of the payer or a member of a group) and whether the share has
been marked paid.

Key design points:
  - UNIQUE(expense_id, user_id): a user appears at most once per expense.
  - `source_id` is the group id for GROUP participants and NULL for FRIEND.
  - `is_paid` / `paid_at` change only through the payment-status toggle.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.splitbuddy.extensions import db


class ParticipantSource(str, enum.Enum):
    FRIEND = "FRIEND"
    GROUP  = "GROUP"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values, not member names."""
    return [member.value for member in enum_cls]


class ExpenseParticipant(db.Model):
    __tablename__ = "expense_participants"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_participants_expense_user"),
        CheckConstraint("amount >= 0", name="ck_participants_amount_non_negative"),
        CheckConstraint(
            "source <> 'GROUP' OR source_id IS NOT NULL",
            name="ck_participants_group_source_id",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # Stored as VARCHAR + CHECK so the same model runs on PostgreSQL and SQLite.
    source: Mapped[ParticipantSource] = mapped_column(
        Enum(
            ParticipantSource,
            name="participant_source_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ParticipantSource.FRIEND,
    )

    source_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    is_paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="participants",
    )

    user: Mapped["User"] = relationship("User")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ExpenseParticipant id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"amount={self.amount} "
            f"source={self.source.value}>"
        )
