"""
tests/unit/test_run_in_transaction.py — Commit / retry / rollback behaviour of
ledger_service.run_in_transaction with a mocked session, and delivery of edge
change notifications only after a successful commit.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from groupledger.app.errors import ConcurrencyConflict, ValidationError
from groupledger.app.services import ledger_service
from groupledger.app.services.balance_store import PENDING_CHANGES_KEY, Edge, InMemoryBalanceStore
from groupledger.app.services.ledger_service import run_in_transaction


def test_commits_once_on_success():
    session = MagicMock()
    work = MagicMock(return_value="done")

    assert run_in_transaction(session, work) == "done"
    session.commit.assert_called_once()
    session.rollback.assert_not_called()


def test_retries_conflicts_then_succeeds():
    session = MagicMock()
    work = MagicMock(side_effect=[ConcurrencyConflict("raced"), ConcurrencyConflict("raced"), 42])

    assert run_in_transaction(session, work, max_attempts=3) == 42
    assert work.call_count == 3
    assert session.rollback.call_count == 2
    session.commit.assert_called_once()


def test_gives_up_after_max_attempts():
    session = MagicMock()
    work = MagicMock(side_effect=ConcurrencyConflict("raced"))

    with pytest.raises(ConcurrencyConflict):
        run_in_transaction(session, work, max_attempts=2)

    assert work.call_count == 2
    session.commit.assert_not_called()


def test_commit_conflict_is_retried():
    session = MagicMock()
    session.commit.side_effect = [ConcurrencyConflict("stale"), None]
    work = MagicMock(return_value="ok")

    assert run_in_transaction(session, work) == "ok"
    assert work.call_count == 2


def test_other_errors_roll_back_without_retry():
    session = MagicMock()
    work = MagicMock(side_effect=ValidationError("INVALID_AMOUNT", "bad"))

    with pytest.raises(ValidationError):
        run_in_transaction(session, work, max_attempts=5)

    work.assert_called_once()
    session.rollback.assert_called_once()
    session.commit.assert_not_called()


# ── Notifications follow the commit ────────────────────────────────────────

class SessionBoundStore(InMemoryBalanceStore):
    """In-memory edges, but changes queue on the session like the SQL store."""

    def __init__(self, session):
        super().__init__()
        self.session = session

    def pending_changes(self):
        return self.session.info.setdefault(PENDING_CHANGES_KEY, [])


@pytest.fixture
def listener():
    seen = []

    def record(group_id, before, after):
        seen.append((group_id, before, after))

    ledger_service.subscribe(record)
    yield seen
    ledger_service.unsubscribe(record)


def _session():
    session = MagicMock()
    session.info = {}
    return session


def test_listener_runs_after_commit(listener):
    session = _session()
    store = SessionBoundStore(session)
    seen_at_commit = []
    session.commit.side_effect = lambda: seen_at_commit.extend(listener)

    run_in_transaction(session, lambda: ledger_service.apply_split(store, 1, 2, 3, Decimal("5.00")))

    assert seen_at_commit == []
    assert listener == [(1, None, Edge(1, 2, 3, Decimal("5.00")))]
    assert PENDING_CHANGES_KEY not in session.info


def test_failed_work_sends_no_notification(listener):
    session = _session()
    store = SessionBoundStore(session)

    def work():
        ledger_service.apply_split(store, 1, 2, 3, Decimal("5.00"))
        raise ValidationError("INVALID_AMOUNT", "bad")

    with pytest.raises(ValidationError):
        run_in_transaction(session, work)

    assert listener == []
    assert PENDING_CHANGES_KEY not in session.info


def test_conflicting_attempt_changes_are_dropped(listener):
    session = _session()
    session.commit.side_effect = [ConcurrencyConflict("stale"), None]
    attempts = []

    def work():
        # Each attempt starts from a fresh store, as a rolled-back session would.
        store = SessionBoundStore(session)
        attempts.append(store)
        return ledger_service.apply_split(store, 1, 2, 3, Decimal(len(attempts)))

    run_in_transaction(session, work)

    assert len(attempts) == 2
    assert listener == [(1, None, Edge(1, 2, 3, Decimal("2.00")))]
