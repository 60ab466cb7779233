"""
services/social_graph.py — Read-only predicates over users, groups and friendships.

The friend and group graph is managed elsewhere; the ledger only needs to ask
yes/no questions about it and to fail with the right NotFound code.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy Session.
  - Never writes.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.splitbuddy.errors import AppError, ErrorCode
from backend.splitbuddy.models.friendship import Friendship
from backend.splitbuddy.models.group import Group
from backend.splitbuddy.models.membership import Membership
from backend.splitbuddy.models.user import User


def get_user_or_404(user_id: int, session: Session, field: str | None = None) -> User:
    """Returns the User or raises USER_NOT_FOUND (404)."""
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
            field=field,
        )
    return user


def get_group_or_404(group_id: int, session: Session, field: str | None = None) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
            field=field,
        )
    return group


def are_friends(user_a: int, user_b: int, session: Session) -> bool:
    """True if a friendship row exists for the unordered pair."""
    if user_a == user_b:
        return False
    lo, hi = (user_a, user_b) if user_a < user_b else (user_b, user_a)
    row = session.execute(
        select(Friendship.id).where(
            Friendship.user_min == lo,
            Friendship.user_max == hi,
        )
    ).scalar_one_or_none()
    return row is not None


def is_group_member(user_id: int, group_id: int, session: Session) -> bool:
    row = session.execute(
        select(Membership.id).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()
    return row is not None


def require_group_member(group_id: int, user_id: int, session: Session) -> None:
    """Raises FORBIDDEN (403) if user_id is not a member of group_id."""
    if not is_group_member(user_id, group_id, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )


def user_names(user_ids: set[int], session: Session) -> dict[int, str]:
    """Returns {user_id: name} for the given ids; unknown ids are omitted."""
    if not user_ids:
        return {}
    rows = session.execute(
        select(User.id, User.name).where(User.id.in_(user_ids))
    ).all()
    return {uid: name for uid, name in rows}


def group_names(group_ids: set[int], session: Session) -> dict[int, str]:
    """Returns {group_id: name} for the given ids; unknown ids are omitted."""
    if not group_ids:
        return {}
    rows = session.execute(
        select(Group.id, Group.name).where(Group.id.in_(group_ids))
    ).all()
    return {gid: name for gid, name in rows}
