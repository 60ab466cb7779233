"""
Unit tests for the expense request schemas.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from marshmallow import ValidationError

from backend.splitbuddy.errors import ErrorCode
from backend.splitbuddy.models.participant import ParticipantSource
from backend.splitbuddy.schemas.expense_schema import (
    CreateExpenseSchema,
    PaymentStatusSchema,
    UpdateExpenseSchema,
)


def _payload(**overrides) -> dict:
    payload = {
        "title": "Dinner",
        "amount": "90.00",
        "participants": [
            {"user_id": 1, "amount": "30.00"},
            {"user_id": 2, "amount": "30.00"},
            {"user_id": 3, "amount": "30.00", "source": "GROUP", "source_id": 10},
        ],
    }
    payload.update(overrides)
    return payload


def test_create_loads_defaults():
    data = CreateExpenseSchema().load(_payload())

    assert data["amount"] == Decimal("90.00")
    assert data["paid_by_user_id"] is None
    assert data["currency"] is None
    assert data["paid_at"] is None
    assert data["participants"][0]["source"] == ParticipantSource.FRIEND
    assert data["participants"][0]["source_id"] is None
    assert data["participants"][2]["source"] == ParticipantSource.GROUP


def test_create_requires_participants():
    payload = _payload()
    del payload["participants"]

    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(payload)

    assert "participants" in exc_info.value.messages


def test_create_rejects_empty_participants():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_payload(participants=[]))

    assert "participants" in exc_info.value.messages


@pytest.mark.parametrize("amount", ["0", "-5.00"])
def test_create_rejects_non_positive_amount(amount):
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_payload(amount=amount))

    assert "amount" in exc_info.value.messages


def test_create_rejects_three_decimal_places():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_payload(amount="90.001"))

    assert exc_info.value.messages["amount"] == [ErrorCode.INVALID_AMOUNT_PRECISION]


def test_negative_share_is_rejected():
    participants = [{"user_id": 1, "amount": "100.00"}, {"user_id": 2, "amount": "-10.00"}]
    with pytest.raises(ValidationError):
        CreateExpenseSchema().load(_payload(participants=participants))


def test_zero_share_is_accepted():
    participants = [{"user_id": 1, "amount": "90.00"}, {"user_id": 2, "amount": "0"}]
    data = CreateExpenseSchema().load(_payload(participants=participants))
    assert data["participants"][1]["amount"] == Decimal("0")


def test_duplicate_participant_is_reported_as_code():
    participants = [{"user_id": 2, "amount": "45.00"}, {"user_id": 2, "amount": "45.00"}]
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_payload(participants=participants))

    assert exc_info.value.messages == {"participants": [ErrorCode.DUPLICATE_PARTICIPANT]}


def test_group_participant_without_source_id_is_reported_as_code():
    participants = [{"user_id": 2, "amount": "90.00", "source": "GROUP"}]
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_payload(participants=participants))

    assert exc_info.value.messages == {"participants": [ErrorCode.GROUP_SOURCE_REQUIRED]}


def test_unknown_source_is_rejected():
    participants = [{"user_id": 2, "amount": "90.00", "source": "COWORKER"}]
    with pytest.raises(ValidationError):
        CreateExpenseSchema().load(_payload(participants=participants))


def test_float_user_id_is_rejected():
    participants = [{"user_id": 2.0, "amount": "90.00"}]
    with pytest.raises(ValidationError):
        CreateExpenseSchema().load(_payload(participants=participants))


def test_blank_title_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_payload(title="   "))

    assert "title" in exc_info.value.messages


@pytest.mark.parametrize("currency", ["usd", "EURO", "E1"])
def test_currency_must_be_iso_code(currency):
    with pytest.raises(ValidationError):
        CreateExpenseSchema().load(_payload(currency=currency))


def test_naive_paid_at_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_payload(paid_at="2026-03-01T12:00:00"))

    assert "paid_at" in exc_info.value.messages


def test_update_accepts_partial_payload():
    data = UpdateExpenseSchema().load({"title": "Lunch"})
    assert data == {"title": "Lunch"}


def test_update_checks_duplicates_when_participants_sent():
    participants = [{"user_id": 2, "amount": "1.00"}, {"user_id": 2, "amount": "1.00"}]
    with pytest.raises(ValidationError) as exc_info:
        UpdateExpenseSchema().load({"participants": participants})

    assert exc_info.value.messages == {"participants": [ErrorCode.DUPLICATE_PARTICIPANT]}


def test_payment_status_requires_flag():
    with pytest.raises(ValidationError):
        PaymentStatusSchema().load({})
    assert PaymentStatusSchema().load({"is_paid": True}) == {"is_paid": True}
