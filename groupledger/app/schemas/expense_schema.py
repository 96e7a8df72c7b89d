"""
schemas/expense_schema.py — Marshmallow schemas for expense creation and edits.

Validation responsibility:
  - This file:
      - Field types, lengths, split_type enum, decimal precision
      - VALUES_SENT_FOR_EQUAL_SPLIT — values array sent with split_type='equal'
      - participants and values required for 'exact' / 'percentage'
      - DUPLICATE_SPLIT_USER — the same participant listed twice
      - SPLIT_COUNT_MISMATCH — one value per participant
      - NO_FIELDS_TO_UPDATE — empty PATCH body
  - services/split_service.py:
      - SPLIT_SUM_MISMATCH, PERCENTAGE_SUM_MISMATCH (Decimal arithmetic
        with tolerance)
  - services/expense_service.py:
      - PAYER_NOT_MEMBER, SPLIT_USER_NOT_MEMBER (membership lookups)

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from groupledger.app.errors import ErrorCode
from groupledger.app.models.expense import SplitType


def _validate_precision(value: Decimal) -> None:
    """
    At most 2 decimal places. Input with more is REJECTED, never rounded:
    Decimal("10.123").as_tuple().exponent == -3.
    """
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_monetary_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    _validate_precision(value)


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    Split type behaviour:
      - 'equal'       participants optional (defaults to every group member);
                      values must NOT be sent.
      - 'exact'       participants and values required; values are amounts.
      - 'percentage'  participants and values required; values are percents.

    values[i] belongs to participants[i].
    """

    paid_by_user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    split_type = fields.Enum(
        SplitType,
        load_default=SplitType.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    participants = fields.List(
        fields.Int(
            strict=True,
            validate=validate.Range(min=1, error="participant ids must be positive integers."),
        ),
        load_default=None,
    )

    values = fields.List(
        fields.Decimal(validate=_validate_precision),
        load_default=None,
    )

    @validates_schema
    def validate_split_shape(self, data: dict, **kwargs) -> None:
        split_type = data.get("split_type", SplitType.EQUAL)
        participants = data.get("participants")
        values = data.get("values")

        if participants is not None:
            if not participants:
                raise ValidationError({"participants": [ErrorCode.NO_PARTICIPANTS]})
            if len(participants) != len(set(participants)):
                raise ValidationError({"participants": [ErrorCode.DUPLICATE_SPLIT_USER]})

        if split_type == SplitType.EQUAL:
            if values is not None:
                raise ValidationError({"values": [ErrorCode.VALUES_SENT_FOR_EQUAL_SPLIT]})
            return

        if participants is None:
            raise ValidationError({
                "participants": [
                    f"participants is required when split_type is '{split_type.value}'."
                ],
            })
        if values is None:
            raise ValidationError({
                "values": [f"values is required when split_type is '{split_type.value}'."],
            })
        if len(values) != len(participants):
            raise ValidationError({"values": [ErrorCode.SPLIT_COUNT_MISMATCH]})


class UpdateExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    Every field is optional; at least one must be sent. Fields left out keep
    their current value. Changing the payer, amount, split_type, participants
    or values recomputes the shares:
      - participants default to the current participants;
      - values default to the current ones only while split_type and
        participants are unchanged (percentages carry over an amount change,
        exact amounts must then match the new amount).
    """

    paid_by_user_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(validate=_validate_monetary_amount)

    split_type = fields.Enum(
        SplitType,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    participants = fields.List(
        fields.Int(
            strict=True,
            validate=validate.Range(min=1, error="participant ids must be positive integers."),
        ),
    )

    values = fields.List(fields.Decimal(validate=_validate_precision))

    @validates_schema
    def validate_patch_shape(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError(ErrorCode.NO_FIELDS_TO_UPDATE)

        participants = data.get("participants")
        values = data.get("values")

        if participants is not None:
            if not participants:
                raise ValidationError({"participants": [ErrorCode.NO_PARTICIPANTS]})
            if len(participants) != len(set(participants)):
                raise ValidationError({"participants": [ErrorCode.DUPLICATE_SPLIT_USER]})

        if data.get("split_type") == SplitType.EQUAL and values is not None:
            raise ValidationError({"values": [ErrorCode.VALUES_SENT_FOR_EQUAL_SPLIT]})

        if participants is not None and values is not None and len(values) != len(participants):
            raise ValidationError({"values": [ErrorCode.SPLIT_COUNT_MISMATCH]})
