"""
errors.py — AppError base class and error code registry.

Every error returned by the SplitBuddy ledger must use a code defined here.
Services raise AppError; the app-level handler renders it. Routes never
catch it.

Error kinds:
  NotFound           (404) — referenced user, group, expense or participant is missing
  InvalidOperation   (422) — amount mismatch, bad participant source, duplicates
  Forbidden          (403) — acting user may not mutate or read the resource
  ConflictRetryable  (409) — aggregate row conflict that survived internal retries
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    @property
    def retryable(self) -> bool:
        """True for transient conflicts the caller may safely resubmit."""
        return self.code == ErrorCode.BALANCE_CONFLICT

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        if self.retryable:
            payload["retryable"] = True
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response; do not rename them.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    PARTICIPANT_NOT_FOUND      = "PARTICIPANT_NOT_FOUND"

    # ── Invalid Operations (422) ───────────────────────────────────────────
    PARTICIPANT_SUM_MISMATCH   = "PARTICIPANT_SUM_MISMATCH"
    DUPLICATE_PARTICIPANT      = "DUPLICATE_PARTICIPANT"
    NOT_A_FRIEND               = "NOT_A_FRIEND"
    NOT_A_GROUP_MEMBER         = "NOT_A_GROUP_MEMBER"
    GROUP_SOURCE_REQUIRED      = "GROUP_SOURCE_REQUIRED"
    PARTICIPANT_NOT_IN_EXPENSE = "PARTICIPANT_NOT_IN_EXPENSE"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    # Retryable: the whole event was rolled back, nothing was applied.
    BALANCE_CONFLICT           = "BALANCE_CONFLICT"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
