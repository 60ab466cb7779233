"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - Expenses are hard-deleted as a unit; participants cascade with them.
    Balance aggregates are reversed by the service before the delete.
  - `currency` is stored for display only. It is never converted or netted.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.splitbuddy.extensions import db


DEFAULT_CATEGORY = "general"
DEFAULT_CURRENCY = "USD"


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_expenses_title_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE RESTRICT: cannot delete a user who has paid expenses.
    paid_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default=DEFAULT_CURRENCY,
        server_default=DEFAULT_CURRENCY,
    )

    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=DEFAULT_CATEGORY,
        server_default=DEFAULT_CATEGORY,
    )

    # When the money actually changed hands (supplied by the client).
    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="expenses_paid",
        foreign_keys=[paid_by_user_id],
    )

    # ON DELETE CASCADE: participants are owned by their expense.
    participants: Mapped[list["ExpenseParticipant"]] = relationship(  # noqa: F821
        "ExpenseParticipant",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ExpenseParticipant.id",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"paid_by_user_id={self.paid_by_user_id} "
            f"amount={self.amount}>"
        )
