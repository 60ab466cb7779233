"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - DUPLICATE_PARTICIPANT      — same user_id twice in one request
      - GROUP_SOURCE_REQUIRED      — GROUP participant without source_id
      - Non-empty-after-trim enforcement for title
  - services/expense_service.py:
      - PARTICIPANT_SUM_MISMATCH (422) — needs the effective amount on PATCH
      - NOT_A_FRIEND / NOT_A_GROUP_MEMBER (422) — requires DB lookups
      - USER_NOT_FOUND / GROUP_NOT_FOUND (404)  — requires DB lookups
      - Permission checks (FORBIDDEN, 403)

The duplicate and group-source checks are repeated in the service so that
callers bypassing HTTP get the same guarantees.

IMPORTANT: Inherits from marshmallow.Schema directly.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from backend.splitbuddy.errors import ErrorCode
from backend.splitbuddy.models.participant import ParticipantSource


# ── Shared monetary validators ─────────────────────────────────────────────
#
# Input with more than 2 decimal places is REJECTED with
# INVALID_AMOUNT_PRECISION, never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _check_precision(value: Decimal) -> None:
    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → reject
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_expense_amount(value: Decimal) -> None:
    """Strictly positive, at most 2 decimal places."""
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    _check_precision(value)


def _validate_share_amount(value: Decimal) -> None:
    """Zero or positive, at most 2 decimal places."""
    if value < Decimal("0"):
        raise ValidationError("Participant amount must not be negative.")
    _check_precision(value)


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _check_participants(participants: list[dict] | None) -> None:
    """Request-shape rules shared by create and update."""
    if participants is None:
        return

    user_ids = [p["user_id"] for p in participants]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError({"participants": [ErrorCode.DUPLICATE_PARTICIPANT]})

    for p in participants:
        if p["source"] == ParticipantSource.GROUP and p.get("source_id") is None:
            raise ValidationError({"participants": [ErrorCode.GROUP_SOURCE_REQUIRED]})


# ── Sub-schema: one entry in the `participants` array ──────────────────────

class ParticipantInputSchema(Schema):

    user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_share_amount,
    )

    # FRIEND: a friend of the payer. GROUP: a member of group `source_id`.
    source = fields.Enum(
        ParticipantSource,
        load_default=ParticipantSource.FRIEND,
        by_value=True,
    )

    source_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error="source_id must be a positive integer."),
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /api/v1/expenses

    paid_by_user_id defaults to the caller when omitted. currency and
    category fall back to the model defaults ("USD", "general").
    """

    paid_by_user_id = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=255, error="Title must be between 1 and 255 characters."),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=1000),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_expense_amount,
    )

    currency = fields.Str(
        load_default=None,
        validate=validate.Regexp(r"^[A-Z]{3}$", error="currency must be a 3-letter ISO code."),
    )

    category = fields.Str(
        load_default=None,
        validate=validate.Length(min=1, max=50),
    )

    paid_at = fields.AwareDateTime(load_default=None)

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        required=True,
        validate=validate.Length(min=1, error="At least one participant is required."),
    )

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        _check_participants(data.get("participants"))


# ── Update expense ─────────────────────────────────────────────────────────

class UpdateExpenseSchema(Schema):
    """
    PATCH /api/v1/expenses/:id

    All fields are optional. A `participants` array replaces the existing
    participants wholesale. The amount invariant is checked by the service
    against the effective amount and participants after the update.
    """

    paid_by_user_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    title = fields.Str(
        validate=[
            validate.Length(min=1, max=255, error="Title must be between 1 and 255 characters."),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.Str(
        allow_none=True,
        validate=validate.Length(max=1000),
    )

    amount = fields.Decimal(validate=_validate_expense_amount)

    currency = fields.Str(
        validate=validate.Regexp(r"^[A-Z]{3}$", error="currency must be a 3-letter ISO code."),
    )

    category = fields.Str(validate=validate.Length(min=1, max=50))

    paid_at = fields.AwareDateTime()

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        validate=validate.Length(min=1, error="At least one participant is required."),
    )

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        _check_participants(data.get("participants"))


# ── Payment status ─────────────────────────────────────────────────────────

class PaymentStatusSchema(Schema):
    """PATCH /api/v1/expenses/:id/participants/:pid/payment"""

    is_paid = fields.Bool(required=True)
