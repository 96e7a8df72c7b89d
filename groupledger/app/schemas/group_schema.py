"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/group_service.py:
      - USER_NOT_FOUND  (creator / new member existence needs a DB lookup)
      - ALREADY_MEMBER  (membership existence needs a DB lookup)
      - GROUP_NOT_FOUND

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """validate.Length(min=1) accepts "   "; strip first."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateGroupSchema(Schema):
    """
    POST /groups

    The creator is named in the body and becomes the first member.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=1000),
    )

    created_by_user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="created_by_user_id must be a positive integer."),
    )


class AddMemberSchema(Schema):
    """POST /groups/:id/members"""

    user_id = fields.Int(
        required=True,
        strict=True,  # reject floats like 1.0
        validate=validate.Range(
            min=1,
            error="user_id must be a positive integer.",
        ),
    )
