"""
models/friendship.py — Friendship table definition.

One row per unordered pair of users, stored as (user_min, user_max) with
user_min < user_max. The ledger only reads it to check that a FRIEND-sourced
participant is actually a friend of the payer.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.splitbuddy.extensions import db


class Friendship(db.Model):
    __tablename__ = "friendships"

    __table_args__ = (
        UniqueConstraint("user_min", "user_max", name="uq_friendships_pair"),
        CheckConstraint("user_min < user_max", name="ck_friendships_min_lt_max"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_min: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_max: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Friendship user_min={self.user_min} user_max={self.user_max}>"
