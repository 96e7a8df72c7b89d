"""
models/balance.py — Pairwise balance edge.

One row means "debtor owes creditor `amount`" inside a group.

Key design points:
  - `amount` is always strictly positive. An edge that nets to zero (within
    the ledger tolerance) is deleted, never stored as zero.
  - `pair_low_id` / `pair_high_id` hold the two member ids in ascending order
    regardless of direction. UNIQUE(group_id, pair_low_id, pair_high_id) means
    the database itself cannot hold both A->B and B->A for one pair: a
    direction flip is an UPDATE of debtor/creditor on the same row.
  - `version` is the optimistic-locking counter (SQLAlchemy version_id_col).
    A flush that finds the row changed underneath it raises StaleDataError,
    which the store turns into ConcurrencyConflict.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from groupledger.app.extensions import db


class Balance(db.Model):
    __tablename__ = "balances"

    __table_args__ = (
        UniqueConstraint(
            "group_id", "pair_low_id", "pair_high_id",
            name="uq_balances_group_pair",
        ),
        CheckConstraint("amount > 0", name="ck_balances_amount_positive"),
        CheckConstraint("debtor_id <> creditor_id", name="ck_balances_no_self_edge"),
        CheckConstraint("pair_low_id < pair_high_id", name="ck_balances_pair_ordered"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    debtor_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    creditor_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    pair_low_id: Mapped[int] = mapped_column(nullable=False)
    pair_high_id: Mapped[int] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    version: Mapped[int] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __mapper_args__ = {"version_id_col": version}

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="balances",
    )

    debtor: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[debtor_id],
    )

    creditor: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[creditor_id],
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Balance group_id={self.group_id} "
            f"{self.debtor_id}->{self.creditor_id} "
            f"amount={self.amount} v{self.version}>"
        )
