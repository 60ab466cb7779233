"""Initial schema — users, groups, friendships, expenses, balance aggregates.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order (FK dependency order):
  users → groups → memberships, friendships → expenses
  → expense_participants → balance_aggregates

Enums are stored as VARCHAR + CHECK (models use native_enum=False) so the
same schema runs on PostgreSQL and SQLite.

ON DELETE policies:
  memberships.*                   → RESTRICT
  friendships.*                   → CASCADE   (pair dies with either user)
  expenses.paid_by_user_id        → RESTRICT
  expense_participants.expense_id → CASCADE   (owned by the expense)
  expense_participants.user_id    → RESTRICT
  expense_participants.source_id  → RESTRICT
  balance_aggregates.*            → CASCADE
  balance_aggregates.last_expense_id has no FK: it outlives deleted expenses.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration: no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:

    # ── users ──────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_users_name_nonempty"),
    )

    # ── groups ─────────────────────────────────────────────────────────────
    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
    )

    # ── memberships ────────────────────────────────────────────────────────
    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_memberships_group"),
            nullable=False,
        ),
        _created_at("joined_at"),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
    )

    # ── friendships ────────────────────────────────────────────────────────
    # One row per unordered pair, stored canonically with user_min < user_max.
    op.create_table(
        "friendships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_min",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_friendships_user_min"),
            nullable=False,
        ),
        sa.Column(
            "user_max",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_friendships_user_max"),
            nullable=False,
        ),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_friendships"),
        sa.UniqueConstraint("user_min", "user_max", name="uq_friendships_pair"),
        sa.CheckConstraint("user_min < user_max", name="ck_friendships_min_lt_max"),
    )

    # ── expenses ───────────────────────────────────────────────────────────
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "paid_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_payer"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        _created_at("paid_at"),
        _created_at(),
        _created_at("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint("LENGTH(TRIM(title)) > 0", name="ck_expenses_title_nonempty"),
    )

    # ── expense_participants ───────────────────────────────────────────────
    op.create_table(
        "expense_participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_participants_expense"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_participants_user"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "source",
            sa.Enum(
                "FRIEND", "GROUP",
                name="participant_source_enum",
                native_enum=False,
                length=16,
                create_constraint=True,
            ),
            nullable=False,
            server_default="FRIEND",
        ),
        sa.Column(
            "source_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_participants_source_group"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expense_participants"),
        sa.UniqueConstraint("expense_id", "user_id", name="uq_participants_expense_user"),
        sa.CheckConstraint("amount >= 0", name="ck_participants_amount_non_negative"),
        sa.CheckConstraint(
            "source <> 'GROUP' OR source_id IS NOT NULL",
            name="ck_participants_group_source_id",
        ),
    )

    # ── balance_aggregates ─────────────────────────────────────────────────
    # version is the optimistic-lock counter (SQLAlchemy version_id_col).
    op.create_table(
        "balance_aggregates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "balance_type",
            sa.Enum(
                "FRIEND_TO_FRIEND", "USER_TO_GROUP",
                name="balance_type_enum",
                native_enum=False,
                length=20,
                create_constraint=True,
            ),
            nullable=False,
        ),
        sa.Column(
            "user1_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_balance_aggregates_user1"),
            nullable=True,
        ),
        sa.Column(
            "user2_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_balance_aggregates_user2"),
            nullable=True,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_balance_aggregates_user"),
            nullable=True,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_balance_aggregates_group"),
            nullable=True,
        ),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("last_expense_id", sa.Integer(), nullable=False),
        _created_at("last_updated"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_balance_aggregates"),
        sa.UniqueConstraint(
            "balance_type", "user1_id", "user2_id",
            name="uq_balance_aggregates_friend_pair",
        ),
        sa.UniqueConstraint(
            "balance_type", "user_id", "group_id",
            name="uq_balance_aggregates_user_group",
        ),
        sa.CheckConstraint(
            "balance_type <> 'FRIEND_TO_FRIEND' OR user1_id < user2_id",
            name="ck_balance_aggregates_canonical_pair",
        ),
    )

    # ── Indexes ────────────────────────────────────────────────────────────
    # Names match SQLAlchemy's ix_<table>_<column> for index=True columns.
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_friendships_user_min", "friendships", ["user_min"])
    op.create_index("ix_friendships_user_max", "friendships", ["user_max"])
    op.create_index("ix_expenses_paid_by_user_id", "expenses", ["paid_by_user_id"])
    op.create_index("ix_expense_participants_expense_id", "expense_participants", ["expense_id"])
    op.create_index("ix_expense_participants_user_id", "expense_participants", ["user_id"])
    op.create_index("ix_balance_aggregates_user_id", "balance_aggregates", ["user_id"])
    op.create_index("idx_balance_aggregates_user1", "balance_aggregates", ["user1_id"])
    op.create_index("idx_balance_aggregates_user2", "balance_aggregates", ["user2_id"])
    op.create_index("idx_balance_aggregates_group", "balance_aggregates", ["group_id"])


def downgrade() -> None:
    """Drop everything created in upgrade(), in reverse dependency order."""
    op.drop_index("idx_balance_aggregates_group", table_name="balance_aggregates")
    op.drop_index("idx_balance_aggregates_user2", table_name="balance_aggregates")
    op.drop_index("idx_balance_aggregates_user1", table_name="balance_aggregates")
    op.drop_index("ix_balance_aggregates_user_id", table_name="balance_aggregates")
    op.drop_index("ix_expense_participants_user_id", table_name="expense_participants")
    op.drop_index("ix_expense_participants_expense_id", table_name="expense_participants")
    op.drop_index("ix_expenses_paid_by_user_id", table_name="expenses")
    op.drop_index("ix_friendships_user_max", table_name="friendships")
    op.drop_index("ix_friendships_user_min", table_name="friendships")
    op.drop_index("ix_memberships_group_id", table_name="memberships")
    op.drop_index("ix_memberships_user_id", table_name="memberships")

    op.drop_table("balance_aggregates")
    op.drop_table("expense_participants")
    op.drop_table("expenses")
    op.drop_table("friendships")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("users")
