"""
services/group_service.py — Groups, membership and member display data.

The ledger only knows member ids. This module owns the membership checks the
other services run before touching the ledger, and the member_lookup()
collaborator that joins display names onto balance snapshots.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Only flush here. The route commits.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, ErrorCode, NotFoundError, ValidationError
from groupledger.app.models.group import Group
from groupledger.app.models.membership import Membership
from groupledger.app.models.user import User
from groupledger.app.services.balance_store import SqlBalanceStore


# ── Lookups shared with the other services ─────────────────────────────────

def get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises NotFoundError(GROUP_NOT_FOUND)."""
    group = session.get(Group, group_id)
    if group is None:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def get_member_ids(group_id: int, session: Session) -> list[int]:
    """User ids of the group's members in the order they joined."""
    stmt = (
        select(Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def require_member(
        group_id: int,
        user_id: int,
        session: Session,
        code: str = ErrorCode.NOT_GROUP_MEMBER,
        field: str | None = None,
) -> None:
    """Raises ValidationError(code) if user_id is not a member of group_id."""
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise ValidationError(
            code,
            f"User {user_id} is not a member of group {group_id}.",
            field=field,
        )


def member_lookup(session: Session) -> Callable[[set[int]], dict[int, str]]:
    """
    Returns a callable mapping user ids to display names, the collaborator
    ledger_service.snapshot() uses to decorate edges.
    """
    def lookup(user_ids: set[int]) -> dict[int, str]:
        if not user_ids:
            return {}
        users = session.execute(
            select(User).where(User.id.in_(user_ids))
        ).scalars().all()
        return {u.id: u.display_name for u in users}

    return lookup


def _build_group_dict(group: Group, members: list[User]) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "created_by_user_id": group.created_by_user_id,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "members": [
            {
                "id": m.id,
                "username": m.username,
                "full_name": m.full_name,
            }
            for m in members
        ],
    }


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        name: str,
        created_by_user_id: int,
        session: Session,
        description: str | None = None,
) -> dict:
    """
    Creates a group. The creator becomes its first member.

    Raises:
        NotFoundError(USER_NOT_FOUND) -- creator does not exist.
    """
    creator = session.get(User, created_by_user_id)
    if creator is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {created_by_user_id} does not exist.",
            field="created_by_user_id",
        )

    group = Group(name=name, description=description, created_by_user_id=created_by_user_id)
    session.add(group)
    session.flush()  # populate group.id before creating membership

    session.add(Membership(user_id=created_by_user_id, group_id=group.id))
    session.flush()

    return _build_group_dict(group, [creator])


def get_group(group_id: int, session: Session) -> dict:
    """Returns group details including the current member list."""
    group = get_group_or_404(group_id, session)

    stmt = (
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    members = list(session.execute(stmt).scalars().all())
    return _build_group_dict(group, members)


def add_member(group_id: int, user_id: int, session: Session) -> dict:
    """
    Adds a user to a group.

    Raises:
        NotFoundError(GROUP_NOT_FOUND | USER_NOT_FOUND)
        AppError(ALREADY_MEMBER, 409)
    """
    get_group_or_404(group_id, session)

    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            field="user_id",
        )

    existing = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()

    if existing is not None:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {user_id} is already a member of group {group_id}.",
            409,
            field="user_id",
        )

    membership = Membership(user_id=user_id, group_id=group_id)
    session.add(membership)
    session.flush()

    return {
        "group_id": group_id,
        "user_id": user_id,
        "username": user.username,
        "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
    }


def list_groups(user_id: int, session: Session) -> list[dict]:
    """
    Returns every group the user belongs to, oldest first. Lightweight dicts
    without member lists; get_group() has those.

    Raises:
        NotFoundError(USER_NOT_FOUND)
    """
    if session.get(User, user_id) is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
        )

    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(Membership.user_id == user_id)
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    return [
        {
            "id": g.id,
            "name": g.name,
            "description": g.description,
            "created_by_user_id": g.created_by_user_id,
            "created_at": g.created_at.isoformat() if g.created_at else None,
        }
        for g in session.execute(stmt).scalars().all()
    ]


def remove_member(group_id: int, user_id: int, session: Session) -> None:
    """
    Removes a user from a group. A member who still owes or is owed anything
    in the group cannot leave until those balances are settled.

    Raises:
        NotFoundError(GROUP_NOT_FOUND | NOT_GROUP_MEMBER)
        AppError(MEMBER_HAS_BALANCE, 409)
    """
    get_group_or_404(group_id, session)

    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()
    if membership is None:
        raise NotFoundError(
            ErrorCode.NOT_GROUP_MEMBER,
            f"User {user_id} is not a member of group {group_id}.",
        )

    open_edges = [
        e for e in SqlBalanceStore(session).list_edges(group_id)
        if user_id in (e.debtor_id, e.creditor_id)
    ]
    if open_edges:
        raise AppError(
            ErrorCode.MEMBER_HAS_BALANCE,
            f"User {user_id} has {len(open_edges)} unsettled balance(s) in "
            f"group {group_id}; settle them before leaving.",
            409,
        )

    session.delete(membership)
    session.flush()
