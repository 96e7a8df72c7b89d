"""
services/ledger_service.py — The balance ledger.

This file is the single place where pairwise balance edges change. Expense
creation and deletion, settlement recording and ledger rebuild all go through
apply_split() / apply_settlement().

Model:
  For a pair (a, b) the ledger holds at most one edge. Read as a signed
  position p = "amount a owes b" (positive: a owes b, negative: b owes a):

    apply_split(debtor, creditor, delta)        p(debtor, creditor) += delta
    apply_settlement(from_user, to_user, amt)   p(from_user, to_user) -= amt

  and the result is written back by one rule:

    p >  t     edge debtor->creditor with amount p
    p < -t     edge creditor->debtor with amount |p|   (direction flip)
    otherwise  no edge                                 (settled)

  where t is the ledger tolerance when the change moves an existing position
  toward zero (a split against a reverse debt, a settlement against the
  payer's debt) and zero otherwise. A new edge or a growing one is stored
  exactly, so one-cent shares accumulate; only a reduction that nets to
  within tolerance of zero deletes the edge.

  This covers every transition: adding to an existing debt, reducing or
  flipping a reverse debt, an overpayment flipping direction, a settlement
  deepening a debt the recipient already owed the payer, and a payment with
  no prior edge leaving the recipient owing the payer.

Notification:
  Listeners see an edge change only once it is durable. Stores bound to a
  transaction queue changes; run_in_transaction() delivers them after commit
  and drops them on rollback. Stores without a transaction (in-memory)
  notify immediately.

Concurrency:
  Each mutation touches exactly one pair. It runs under store.pair_lock() and
  reads the edge through the store (SELECT ... FOR UPDATE for SQL), so the
  read-modify-write is serialised per pair and no operation ever waits on two
  pairs at once. run_in_transaction() commits one unit of work and retries it
  from a fresh read when another writer won the race.

Layer rules:
  - No Flask imports. Stores and sessions are passed in.
  - Only run_in_transaction() commits.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import ConcurrencyConflict, ErrorCode, ValidationError
from groupledger.app.models.expense import Expense
from groupledger.app.models.settlement import Settlement
from groupledger.app.money import TOLERANCE, ZERO, to_decimal
from groupledger.app.services.balance_store import (
    PENDING_CHANGES_KEY,
    BalanceStore,
    Edge,
    InMemoryBalanceStore,
    SqlBalanceStore,
)

logger = logging.getLogger(__name__)

LedgerListener = Callable[[int, "Edge | None", "Edge | None"], None]

_listeners: list[LedgerListener] = []


# ── Change notification ────────────────────────────────────────────────────

def subscribe(listener: LedgerListener) -> None:
    """
    Registers `listener(group_id, before, after)`; called after every
    committed edge change. Views that render balances use this to know when
    to re-read.
    """
    if listener not in _listeners:
        _listeners.append(listener)


def unsubscribe(listener: LedgerListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def _notify(group_id: int, before: Edge | None, after: Edge | None) -> None:
    for listener in list(_listeners):
        try:
            listener(group_id, before, after)
        except Exception:
            logger.exception("Ledger listener %r failed for group %s", listener, group_id)


# ── Core transition ────────────────────────────────────────────────────────

def _position(edge: Edge | None, member_a: int, member_b: int) -> Decimal:
    """Signed amount member_a owes member_b according to `edge`."""
    if edge is None:
        return ZERO
    if edge.debtor_id == member_a and edge.creditor_id == member_b:
        return edge.amount
    return -edge.amount


def _moves_toward_zero(previous: Decimal, change: Decimal) -> bool:
    """True when `change` reduces (or flips) an existing position."""
    return previous != ZERO and (previous > ZERO) != (change > ZERO)


def _publish(store: BalanceStore, group_id: int, before: Edge | None, after: Edge | None) -> None:
    pending = store.pending_changes()
    if pending is None:
        _notify(group_id, before, after)
    else:
        pending.append((group_id, before, after))


def _shift(
        store: BalanceStore,
        group_id: int,
        member_a: int,
        member_b: int,
        change: Decimal,
        tolerance: Decimal,
) -> Edge | None:
    """Adds `change` to what member_a owes member_b and persists the result."""
    with store.pair_lock(group_id, member_a, member_b):
        before = store.load_edge(group_id, member_a, member_b)
        previous = _position(before, member_a, member_b)
        position = previous + change

        # Only a reduction can leave dust; a new or growing debt is kept exactly.
        threshold = tolerance if _moves_toward_zero(previous, change) else ZERO

        if position > threshold:
            after = store.upsert_edge(group_id, member_a, member_b, position)
        elif position < -threshold:
            after = store.upsert_edge(group_id, member_b, member_a, -position)
        else:
            if before is not None:
                store.delete_edge(group_id, member_a, member_b)
            after = None

    if before != after:
        logger.debug("Group %s edge %s -> %s", group_id, before, after)
        _publish(store, group_id, before, after)
    return after


def apply_split(
        store: BalanceStore,
        group_id: int,
        debtor_id: int,
        creditor_id: int,
        delta,
        tolerance: Decimal = TOLERANCE,
) -> Edge | None:
    """
    Records that debtor_id owes creditor_id a further `delta` (one split line).

    A payer's own share (debtor == creditor) and zero deltas change nothing.

    Returns:
        The pair's edge after the change, or None if the pair is settled.

    Raises:
        ValidationError(INVALID_AMOUNT) for a negative delta.
    """
    delta = to_decimal(delta)
    if delta < ZERO:
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            "Split amount must not be negative.",
            field="amount",
        )
    if debtor_id == creditor_id:
        return None
    if delta == ZERO:
        return store.load_edge(group_id, debtor_id, creditor_id)
    return _shift(store, group_id, debtor_id, creditor_id, delta, tolerance)


def apply_settlement(
        store: BalanceStore,
        group_id: int,
        from_user_id: int,
        to_user_id: int,
        amount,
        tolerance: Decimal = TOLERANCE,
) -> Edge | None:
    """
    Applies a payment of `amount` from from_user_id to to_user_id.

      from owes to E:   E - amount; reduced, deleted within tolerance, or
                        flipped to "to owes from" on overpayment.
      to owes from E:   deepened to E + amount.
      no edge:          "to owes from amount".
      amount == 0:      no-op.

    Raises:
        ValidationError(SELF_SETTLEMENT | INVALID_AMOUNT)
    """
    amount = to_decimal(amount)
    if from_user_id == to_user_id:
        raise ValidationError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            field="to_user_id",
        )
    if amount < ZERO:
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            "Settlement amount must not be negative.",
            field="amount",
        )
    if amount == ZERO:
        return store.load_edge(group_id, from_user_id, to_user_id)
    return _shift(store, group_id, from_user_id, to_user_id, -amount, tolerance)


def apply_expense_splits(
        store: BalanceStore,
        group_id: int,
        payer_id: int,
        splits: Iterable,
        tolerance: Decimal = TOLERANCE,
) -> None:
    """
    Applies every split line of one expense: each participant owes the payer
    their share. Accepts split dicts or ExpenseSplit rows.
    """
    for split in splits:
        user_id, amount = _split_fields(split)
        apply_split(store, group_id, user_id, payer_id, amount, tolerance)


def reverse_expense_splits(
        store: BalanceStore,
        group_id: int,
        payer_id: int,
        splits: Iterable,
        tolerance: Decimal = TOLERANCE,
) -> None:
    """Undoes apply_expense_splits() for the same lines (expense deletion)."""
    for split in splits:
        user_id, amount = _split_fields(split)
        apply_split(store, group_id, payer_id, user_id, amount, tolerance)


def _split_fields(split) -> tuple[int, Decimal]:
    if isinstance(split, dict):
        return split["user_id"], split["amount"]
    return split.user_id, split.amount


# ── Read side ──────────────────────────────────────────────────────────────

def snapshot(
        store: BalanceStore,
        group_id: int,
        member_lookup: Callable[[set[int]], dict[int, str]] | None = None,
) -> list[dict]:
    """
    Returns every current edge of a group, joined with member display data.

    Args:
        member_lookup: collaborator mapping user ids to display names. When
                       omitted, names fall back to "user_<id>".
    """
    edges = store.list_edges(group_id)
    member_ids = {e.debtor_id for e in edges} | {e.creditor_id for e in edges}
    names = member_lookup(member_ids) if member_lookup and member_ids else {}

    return [
        {
            "group_id": e.group_id,
            "debtor_id": e.debtor_id,
            "debtor_name": names.get(e.debtor_id, f"user_{e.debtor_id}"),
            "creditor_id": e.creditor_id,
            "creditor_name": names.get(e.creditor_id, f"user_{e.creditor_id}"),
            "amount": e.amount,
        }
        for e in edges
    ]


# ── Transactions ───────────────────────────────────────────────────────────

def run_in_transaction(session: Session, work: Callable[[], object], max_attempts: int = 3):
    """
    Runs `work()` and commits. If another writer changed a touched edge
    (ConcurrencyConflict), rolls back and re-runs `work()` from a fresh read,
    up to `max_attempts` times. Any other failure rolls back and propagates,
    so no partial edge state survives.

    Edge changes queued by the attempt are delivered to listeners only after
    its commit succeeds.
    """
    attempt = 1
    while True:
        session.info.pop(PENDING_CHANGES_KEY, None)
        try:
            result = work()
            session.commit()
        except ConcurrencyConflict:
            session.rollback()
            session.info.pop(PENDING_CHANGES_KEY, None)
            if attempt >= max_attempts:
                logger.warning("Giving up after %d conflicting attempts", attempt)
                raise
            logger.warning("Ledger write conflict, retrying (attempt %d)", attempt + 1)
            attempt += 1
        except Exception:
            session.rollback()
            session.info.pop(PENDING_CHANGES_KEY, None)
            raise
        else:
            for group_id, before, after in session.info.pop(PENDING_CHANGES_KEY, None) or ():
                _notify(group_id, before, after)
            return result


# ── Recovery ───────────────────────────────────────────────────────────────

def replay_group_history(
        group_id: int,
        session: Session,
        tolerance: Decimal = TOLERANCE,
) -> InMemoryBalanceStore:
    """
    Rebuilds a group's ledger from history into a fresh in-memory store:
    the split lines of every active (not deleted) expense and every
    settlement record, in the order they were created.
    """
    expenses = session.execute(
        select(Expense).where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
    ).scalars().all()
    settlements = session.execute(
        select(Settlement).where(Settlement.group_id == group_id)
    ).scalars().all()

    events = sorted(
        [(e.created_at, 0, e.id, e) for e in expenses]
        + [(s.created_at, 1, s.id, s) for s in settlements],
        key=lambda event: event[:3],
    )

    replay = InMemoryBalanceStore()
    for _, kind, _, item in events:
        if kind == 0:
            apply_expense_splits(replay, group_id, item.paid_by_user_id, item.splits, tolerance)
        else:
            apply_settlement(
                replay, group_id, item.from_user_id, item.to_user_id, item.amount, tolerance,
            )
    return replay


def rebuild_group_ledger(
        group_id: int,
        session: Session,
        tolerance: Decimal = TOLERANCE,
) -> list[Edge]:
    """
    Replaces the persisted edges of a group with the result of replaying its
    history. Recovers from a crash between a settlement record being written
    and its ledger update. Flushes only; the caller commits.
    """
    replay = replay_group_history(group_id, session, tolerance)
    store = SqlBalanceStore(session)
    store.clear_group(group_id)

    rebuilt = []
    for edge in replay.list_edges(group_id):
        rebuilt.append(store.upsert_edge(group_id, edge.debtor_id, edge.creditor_id, edge.amount))

    logger.info("Rebuilt ledger for group %s: %d edge(s)", group_id, len(rebuilt))
    return rebuilt
