"""Initial schema — users, groups, memberships, expenses, splits, balances, settlements.

Revision: 001_initial_schema

Append-only: never edit this file after it has been applied to a database.
Schema changes go in a new migration.

Creation order follows FK dependencies:
  users → groups → memberships → expenses → expense_splits
        → balances, settlements

ON DELETE policies:
  expense_splits.expense_id → CASCADE   (splits owned by expense)
  everything else           → RESTRICT  (history is never silently dropped)

split_type is stored as VARCHAR with a CHECK (non-native enum), so no
PostgreSQL type has to exist before the expenses table.

The balances table holds at most one row per unordered member pair per
group (uq_balances_group_pair); `version` backs optimistic locking.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(),
    )


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("full_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        _created_at(),
        sa.CheckConstraint("LENGTH(TRIM(username)) > 0", name="ck_users_username_nonempty"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_users_email_format"),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "created_by_user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        _created_at(),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
    )

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "group_id", sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("group_id", "user_id", name="uq_memberships_group_user"),
    )
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "group_id", sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "paid_by_user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("description", sa.String(255), nullable=False),
        _money("amount"),
        sa.Column(
            "split_type",
            sa.Enum(
                "equal", "exact", "percentage",
                name="split_type_enum", native_enum=False, length=20,
                create_constraint=True,
            ),
            nullable=False,
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0", name="ck_expenses_description_nonempty",
        ),
    )
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id", sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        _money("amount"),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.UniqueConstraint("expense_id", "user_id", name="uq_expense_splits_expense_user"),
        sa.CheckConstraint("amount >= 0", name="ck_expense_splits_amount_non_negative"),
    )
    op.create_index("ix_expense_splits_expense_id", "expense_splits", ["expense_id"])

    op.create_table(
        "balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "group_id", sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "debtor_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "creditor_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("pair_low_id", sa.Integer(), nullable=False),
        sa.Column("pair_high_id", sa.Integer(), nullable=False),
        _money("amount"),
        sa.Column("version", sa.Integer(), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "group_id", "pair_low_id", "pair_high_id", name="uq_balances_group_pair",
        ),
        sa.CheckConstraint("amount > 0", name="ck_balances_amount_positive"),
        sa.CheckConstraint("debtor_id <> creditor_id", name="ck_balances_no_self_edge"),
        sa.CheckConstraint("pair_low_id < pair_high_id", name="ck_balances_pair_ordered"),
    )
    op.create_index("ix_balances_group_id", "balances", ["group_id"])

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "group_id", sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "from_user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "to_user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        _money("amount"),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        sa.CheckConstraint("from_user_id <> to_user_id", name="ck_settlements_no_self_settlement"),
    )
    op.create_index("ix_settlements_group_id", "settlements", ["group_id"])


def downgrade() -> None:
    """Drop in reverse FK order."""
    op.drop_index("ix_settlements_group_id", table_name="settlements")
    op.drop_table("settlements")
    op.drop_index("ix_balances_group_id", table_name="balances")
    op.drop_table("balances")
    op.drop_index("ix_expense_splits_expense_id", table_name="expense_splits")
    op.drop_table("expense_splits")
    op.drop_index("ix_expenses_group_id", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_memberships_user_id", table_name="memberships")
    op.drop_index("ix_memberships_group_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("users")
