"""
schemas/user_schema.py — Marshmallow schema for user registration.

Uniqueness of username and email needs a DB lookup and is checked in
services/user_service.py.

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates


class CreateUserSchema(Schema):
    """POST /users"""

    username = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                r"^[a-zA-Z0-9_]+$",
                error="Username may only contain letters, numbers, and underscores.",
            ),
        ],
    )

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    # Optional display name; falls back to username when absent.
    full_name = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=100),
    )

    @validates("full_name")
    def validate_full_name(self, value, **kwargs) -> None:
        if value is not None and not value.strip():
            raise ValidationError("full_name must not be blank.")
