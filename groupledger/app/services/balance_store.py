"""
services/balance_store.py — Persistence collaborator for the balance ledger.

The ledger service never touches tables directly. It reads and writes edges
through a BalanceStore, which guarantees that at most one direction of an
edge exists per (group, unordered member pair).

Implementations:
  SqlBalanceStore       SQLAlchemy session. The pair row is read with
                        SELECT ... FOR UPDATE, the row carries an optimistic
                        version counter, and UNIQUE(group, low, high) makes a
                        second direction impossible. Lost races surface as
                        ConcurrencyConflict. Flushes only; the caller commits.
  InMemoryBalanceStore  Dict keyed by (group, low, high) with one lock per
                        pair. Used by unit tests and by ledger replay.

Edges handed out by a store are immutable Edge tuples, so a reader can
never see an amount without its matching direction.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock, RLock
from typing import Iterator, NamedTuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from groupledger.app.errors import ConcurrencyConflict, InvariantViolation
from groupledger.app.models.balance import Balance
from groupledger.app.models.settlement import Settlement
from groupledger.app.money import to_money

logger = logging.getLogger(__name__)

# session.info slot holding edge changes not yet committed.
PENDING_CHANGES_KEY = "groupledger.pending_edge_changes"

PAIR_CONSTRAINT = "uq_balances_group_pair"


class Edge(NamedTuple):
    """debtor owes creditor `amount` (always > 0) within group."""

    group_id: int
    debtor_id: int
    creditor_id: int
    amount: Decimal


def pair_key(a: int, b: int) -> tuple[int, int]:
    """Orders a member pair so (a, b) and (b, a) address the same edge."""
    return (a, b) if a < b else (b, a)


class BalanceStore(ABC):

    @abstractmethod
    def load_edge(self, group_id: int, member_a: int, member_b: int) -> Edge | None:
        """Returns the single edge between the pair in either direction, or None."""

    @abstractmethod
    def upsert_edge(self, group_id: int, debtor_id: int, creditor_id: int, amount: Decimal) -> Edge:
        """Creates or overwrites the pair's edge, replacing any opposite direction."""

    @abstractmethod
    def delete_edge(self, group_id: int, member_a: int, member_b: int) -> None:
        """Removes the pair's edge. No-op when absent."""

    @abstractmethod
    def list_edges(self, group_id: int) -> list[Edge]:
        """All current edges of a group."""

    @abstractmethod
    def append_settlement_record(
            self,
            group_id: int,
            from_user_id: int,
            to_user_id: int,
            amount: Decimal,
            created_at: datetime | None = None,
    ):
        """Appends an immutable settlement history entry."""

    def pair_lock(self, group_id: int, member_a: int, member_b: int):
        """
        Serialises a read-modify-write on one pair. Stores that lock rows
        inside the database transaction need nothing extra here.
        """
        return nullcontext()

    def pending_changes(self) -> list | None:
        """
        List that collects edge changes until the store's transaction commits,
        or None when writes are visible immediately.
        """
        return None


# ── SQLAlchemy store ───────────────────────────────────────────────────────

def _to_edge(row: Balance) -> Edge:
    return Edge(row.group_id, row.debtor_id, row.creditor_id, row.amount)


def is_pair_conflict(exc: IntegrityError) -> bool:
    """
    True when the violation is the one-row-per-pair unique constraint, i.e.
    another writer inserted the same pair first. PostgreSQL reports the
    constraint name; SQLite only names the columns.
    """
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == PAIR_CONSTRAINT
    message = str(exc.orig)
    return PAIR_CONSTRAINT in message or (
        "UNIQUE constraint failed" in message and "balances.pair_low_id" in message
    )


class SqlBalanceStore(BalanceStore):

    def __init__(self, session: Session) -> None:
        self.session = session

    def _pair_rows(self, group_id: int, member_a: int, member_b: int, lock: bool) -> list[Balance]:
        low, high = pair_key(member_a, member_b)
        stmt = select(Balance).where(
            Balance.group_id == group_id,
            Balance.pair_low_id == low,
            Balance.pair_high_id == high,
        )
        if lock:
            stmt = stmt.with_for_update()
        return list(self.session.execute(stmt).scalars().all())

    def _single_row(self, group_id: int, member_a: int, member_b: int) -> Balance | None:
        rows = self._pair_rows(group_id, member_a, member_b, lock=True)
        if len(rows) > 1:
            logger.error(
                "Group %s has %d balance rows for pair (%s, %s); refusing to pick one",
                group_id, len(rows), member_a, member_b,
            )
            raise InvariantViolation(
                f"Group {group_id} holds more than one balance between "
                f"users {member_a} and {member_b}."
            )
        return rows[0] if rows else None

    def pending_changes(self) -> list:
        return self.session.info.setdefault(PENDING_CHANGES_KEY, [])

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            if not is_pair_conflict(exc):
                raise
            logger.warning("Balance insert lost a race: %s", exc.orig)
            raise ConcurrencyConflict(
                "The balance was changed by another request. Please retry."
            ) from exc
        except StaleDataError as exc:
            logger.warning("Balance write lost a race: %s", exc)
            raise ConcurrencyConflict(
                "The balance was changed by another request. Please retry."
            ) from exc

    def load_edge(self, group_id: int, member_a: int, member_b: int) -> Edge | None:
        row = self._single_row(group_id, member_a, member_b)
        return _to_edge(row) if row is not None else None

    def upsert_edge(self, group_id: int, debtor_id: int, creditor_id: int, amount: Decimal) -> Edge:
        amount = to_money(amount)
        row = self._single_row(group_id, debtor_id, creditor_id)
        if row is None:
            low, high = pair_key(debtor_id, creditor_id)
            row = Balance(
                group_id=group_id,
                debtor_id=debtor_id,
                creditor_id=creditor_id,
                pair_low_id=low,
                pair_high_id=high,
                amount=amount,
            )
            self.session.add(row)
        else:
            # A direction flip rewrites both ids in the same row.
            row.debtor_id = debtor_id
            row.creditor_id = creditor_id
            row.amount = amount
            row.updated_at = datetime.now(timezone.utc)
        self._flush()
        return _to_edge(row)

    def delete_edge(self, group_id: int, member_a: int, member_b: int) -> None:
        row = self._single_row(group_id, member_a, member_b)
        if row is None:
            return
        self.session.delete(row)
        self._flush()

    def list_edges(self, group_id: int) -> list[Edge]:
        stmt = (
            select(Balance)
            .where(Balance.group_id == group_id)
            .order_by(Balance.pair_low_id, Balance.pair_high_id)
        )
        return [_to_edge(row) for row in self.session.execute(stmt).scalars().all()]

    def clear_group(self, group_id: int) -> None:
        """Removes every edge of a group. Used by ledger rebuild only."""
        self.session.execute(delete(Balance).where(Balance.group_id == group_id))
        self.session.flush()

    def append_settlement_record(
            self,
            group_id: int,
            from_user_id: int,
            to_user_id: int,
            amount: Decimal,
            created_at: datetime | None = None,
    ) -> Settlement:
        record = Settlement(
            group_id=group_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=to_money(amount),
        )
        if created_at is not None:
            record.created_at = created_at
        self.session.add(record)
        self.session.flush()
        return record


# ── In-memory store ────────────────────────────────────────────────────────

class SettlementRecord(NamedTuple):
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal
    created_at: datetime


class InMemoryBalanceStore(BalanceStore):

    def __init__(self) -> None:
        self._edges: dict[tuple[int, int, int], Edge] = {}
        self._records: list[SettlementRecord] = []
        self._pair_locks: dict[tuple[int, int, int], RLock] = defaultdict(RLock)
        self._lock = Lock()

    def _key(self, group_id: int, member_a: int, member_b: int) -> tuple[int, int, int]:
        return (group_id, *pair_key(member_a, member_b))

    @contextmanager
    def pair_lock(self, group_id: int, member_a: int, member_b: int) -> Iterator[None]:
        key = self._key(group_id, member_a, member_b)
        with self._lock:
            pair_lock = self._pair_locks[key]
        with pair_lock:
            yield

    def load_edge(self, group_id: int, member_a: int, member_b: int) -> Edge | None:
        with self._lock:
            return self._edges.get(self._key(group_id, member_a, member_b))

    def upsert_edge(self, group_id: int, debtor_id: int, creditor_id: int, amount: Decimal) -> Edge:
        edge = Edge(group_id, debtor_id, creditor_id, to_money(amount))
        with self._lock:
            self._edges[self._key(group_id, debtor_id, creditor_id)] = edge
        return edge

    def delete_edge(self, group_id: int, member_a: int, member_b: int) -> None:
        with self._lock:
            self._edges.pop(self._key(group_id, member_a, member_b), None)

    def list_edges(self, group_id: int) -> list[Edge]:
        with self._lock:
            return [
                edge for key, edge in sorted(self._edges.items())
                if key[0] == group_id
            ]

    def append_settlement_record(
            self,
            group_id: int,
            from_user_id: int,
            to_user_id: int,
            amount: Decimal,
            created_at: datetime | None = None,
    ) -> SettlementRecord:
        record = SettlementRecord(
            group_id,
            from_user_id,
            to_user_id,
            to_money(amount),
            created_at or datetime.now(timezone.utc),
        )
        with self._lock:
            self._records.append(record)
        return record

    def settlement_records(self, group_id: int) -> list[SettlementRecord]:
        with self._lock:
            return [r for r in self._records if r.group_id == group_id]
