"""
services/transaction.py — All-or-nothing execution of one lifecycle event.

One expense event touches the expense row, its participants and several
aggregate rows. run_in_transaction() runs the whole event, commits once, and
on an aggregate conflict rolls everything back and runs it again from
scratch. Re-running is safe: deltas depend only on the expense state, which
the rollback restored.

Retryable failures:
  StaleDataError     — version check on a balance_aggregates UPDATE failed
  IntegrityError     — two writers created the same aggregate key (unique
                       constraint only; foreign-key failures propagate)
  OperationalError   — lock wait timed out or a deadlock was detected

After the last attempt the event surfaces as BALANCE_CONFLICT (409), which
the client may resubmit. AppError raised by the work itself is never retried.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.splitbuddy.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3

# Unique keys of balance_aggregates. PostgreSQL names the constraint in the
# error; SQLite names the table and columns instead.
AGGREGATE_UNIQUE_MARKERS = (
    "uq_balance_aggregates_friend_pair",
    "uq_balance_aggregates_user_group",
    "unique constraint failed: balance_aggregates.",
)


def is_retryable_conflict(exc: Exception) -> bool:
    """True if `exc` is a transient aggregate-row conflict."""
    if isinstance(exc, StaleDataError):
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    if isinstance(exc, IntegrityError):
        return any(marker in message for marker in AGGREGATE_UNIQUE_MARKERS)
    if isinstance(exc, OperationalError):
        return "lock" in message or "deadlock" in message
    return False


def run_in_transaction(
        session: Session,
        work: Callable[[], T],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """
    Runs `work`, commits, and returns its result.

    Raises:
        AppError(BALANCE_CONFLICT, 409) — conflict persisted through every attempt.
        AppError                         — from `work`, after rolling back.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            session.commit()
            return result
        except (StaleDataError, IntegrityError, OperationalError) as exc:
            session.rollback()
            if not is_retryable_conflict(exc):
                raise
            if attempt == attempts:
                logger.error(
                    "Balance update gave up after %d attempts: %s", attempts, exc,
                )
                raise AppError(
                    ErrorCode.BALANCE_CONFLICT,
                    "Balances were changed concurrently. Nothing was saved; "
                    "please retry the request.",
                    409,
                ) from exc
            logger.warning(
                "Balance update conflict (attempt %d of %d), retrying: %s",
                attempt, attempts, exc,
            )
        except Exception:
            # AppError and anything unexpected: nothing from this event survives.
            session.rollback()
            raise
    raise AssertionError("unreachable")  # pragma: no cover
