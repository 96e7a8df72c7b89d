"""
services/user_service.py — User registration and lookup.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Only flush here. The route commits.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, ErrorCode, NotFoundError, ValidationError
from groupledger.app.models.user import User


def create_user(data: dict, session: Session) -> User:
    """
    Creates a user from a validated CreateUserSchema dict.

    Username and email are compared case-insensitively.

    Raises:
        AppError(DUPLICATE_USERNAME | DUPLICATE_EMAIL, 409)
    """
    username = data["username"].strip()
    email = data["email"].strip().lower()

    taken = session.execute(
        select(User).where(func.lower(User.username) == username.lower())
    ).scalar_one_or_none()
    if taken is not None:
        raise AppError(
            ErrorCode.DUPLICATE_USERNAME,
            f"Username '{username}' is already taken.",
            409,
            field="username",
        )

    taken = session.execute(
        select(User).where(func.lower(User.email) == email)
    ).scalar_one_or_none()
    if taken is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            "An account with this email already exists.",
            409,
            field="email",
        )

    user = User(username=username, email=email, full_name=data.get("full_name"))
    session.add(user)
    session.flush()
    return user


def get_user(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
        )
    return user


def find_user(session: Session, email: str | None = None, username: str | None = None) -> User:
    """
    Looks a user up by email or username (case-insensitive), the way members
    are found before being added to a group. Email wins when both are given.

    Raises:
        ValidationError(MISSING_LOOKUP_KEY, 400) -- neither key given.
        NotFoundError(USER_NOT_FOUND)
    """
    if email:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        shown = email
    elif username:
        stmt = select(User).where(func.lower(User.username) == username.strip().lower())
        shown = username
    else:
        raise ValidationError(
            ErrorCode.MISSING_LOOKUP_KEY,
            "Pass an email or username query parameter.",
            http_status=400,
        )

    user = session.execute(stmt).scalar_one_or_none()
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"No user matches '{shown}'.",
        )
    return user
