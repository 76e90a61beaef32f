"""
Transaction runner tests (mocked session, then the real db.session).

Tests cover:
  - Commit then post-commit hooks, in registration order
  - Callback failure: rollback, original error, hooks discarded
  - Begin failure: no rollback attempted
  - Commit failure: rollback attempted, commit error wins even if rollback fails
  - IntegrityError translated to StateConflictError
  - Nested calls join the outer transaction
  - Hook failures are logged, never propagated
  - The default Flask-SQLAlchemy scoped session commits and rolls back
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from sheetflow.core.exceptions import StateConflictError
from sheetflow.models import db as _db
from sheetflow.models.base import Tenant
from sheetflow.services.transaction import after_commit, in_transaction_scope, run_in_transaction


@pytest.fixture()
def fake_session():
    s = MagicMock()
    s.in_transaction.return_value = False
    return s


class TestHappyPath:
    def test_commits_and_returns_result(self, fake_session):
        assert run_in_transaction(lambda: 42, session=fake_session) == 42
        fake_session.begin.assert_called_once()
        fake_session.commit.assert_called_once()
        fake_session.rollback.assert_not_called()

    def test_joins_already_open_session_transaction(self, fake_session):
        fake_session.in_transaction.return_value = True
        run_in_transaction(lambda: None, session=fake_session)
        fake_session.begin.assert_not_called()
        fake_session.commit.assert_called_once()

    def test_hooks_run_after_commit_in_order(self, fake_session):
        calls = []
        fake_session.commit.side_effect = lambda: calls.append("commit")

        def work():
            after_commit(calls.append, "first")
            after_commit(calls.append, "second")
            assert calls == []
            return "done"

        assert run_in_transaction(work, session=fake_session) == "done"
        assert calls == ["commit", "first", "second"]

    def test_scope_flag(self, fake_session):
        seen = []
        run_in_transaction(lambda: seen.append(in_transaction_scope()), session=fake_session)
        assert seen == [True]
        assert in_transaction_scope() is False


class TestFailures:
    def test_callback_error_rolls_back_and_drops_hooks(self, fake_session):
        hook = MagicMock()

        def work():
            after_commit(hook)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            run_in_transaction(work, session=fake_session)
        fake_session.rollback.assert_called_once()
        fake_session.commit.assert_not_called()
        hook.assert_not_called()

    def test_begin_error_skips_rollback(self, fake_session):
        fake_session.begin.side_effect = RuntimeError("no connection")
        work = MagicMock()

        with pytest.raises(RuntimeError, match="no connection"):
            run_in_transaction(work, session=fake_session)
        work.assert_not_called()
        fake_session.rollback.assert_not_called()

    def test_commit_error_is_raised_after_rollback(self, fake_session):
        fake_session.commit.side_effect = RuntimeError("commit failed")
        hook = MagicMock()

        with pytest.raises(RuntimeError, match="commit failed"):
            run_in_transaction(lambda: after_commit(hook), session=fake_session)
        fake_session.rollback.assert_called_once()
        hook.assert_not_called()

    def test_commit_error_wins_over_rollback_error(self, fake_session):
        fake_session.commit.side_effect = RuntimeError("commit failed")
        fake_session.rollback.side_effect = RuntimeError("rollback failed")

        with pytest.raises(RuntimeError, match="commit failed"):
            run_in_transaction(lambda: None, session=fake_session)

    def test_integrity_error_becomes_state_conflict(self, fake_session):
        def work():
            raise IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(StateConflictError) as exc_info:
            run_in_transaction(work, session=fake_session)
        assert isinstance(exc_info.value.__cause__, IntegrityError)
        fake_session.rollback.assert_called_once()

    def test_integrity_error_on_commit_becomes_state_conflict(self, fake_session):
        fake_session.commit.side_effect = IntegrityError("INSERT ...", {}, Exception("dup"))
        with pytest.raises(StateConflictError):
            run_in_transaction(lambda: None, session=fake_session)


class TestNestingAndHooks:
    def test_nested_call_joins_outer(self, fake_session):
        calls = []

        def inner():
            after_commit(calls.append, "inner-hook")
            return "inner"

        def outer():
            assert run_in_transaction(inner, session=fake_session) == "inner"
            assert calls == []
            return "outer"

        assert run_in_transaction(outer, session=fake_session) == "outer"
        fake_session.begin.assert_called_once()
        fake_session.commit.assert_called_once()
        assert calls == ["inner-hook"]

    def test_failing_hook_does_not_propagate(self, fake_session, caplog):
        later = MagicMock()

        def bad_hook():
            raise ValueError("mail server down")

        def work():
            after_commit(bad_hook)
            after_commit(later)
            return 1

        assert run_in_transaction(work, session=fake_session) == 1
        later.assert_called_once()
        assert "bad_hook" in caplog.text

    def test_after_commit_outside_transaction_runs_immediately(self):
        hook = MagicMock()
        after_commit(hook, 1, key="v")
        hook.assert_called_once_with(1, key="v")


# ═════════════════════════════════════════════════════════════════════════
# REAL SESSION (Flask-SQLAlchemy scoped_session)
# ═════════════════════════════════════════════════════════════════════════

class TestDefaultSession:
    def test_commits_through_scoped_session(self):
        hook = MagicMock()

        def work():
            _db.session.add(Tenant(name="Initech", slug="initech"))
            after_commit(hook, "created")
            return "ok"

        assert run_in_transaction(work) == "ok"
        hook.assert_called_once_with("created")
        _db.session.expire_all()
        assert Tenant.query.filter_by(slug="initech").count() == 1

    def test_callback_error_rolls_back_real_session(self):
        def work():
            _db.session.add(Tenant(name="Initech", slug="initech"))
            _db.session.flush()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            run_in_transaction(work)
        assert Tenant.query.filter_by(slug="initech").count() == 0

    def test_duplicate_key_becomes_state_conflict(self):
        def work():
            _db.session.add(Tenant(name="Acme again", slug="acme"))
            _db.session.flush()

        with pytest.raises(StateConflictError):
            run_in_transaction(work)
        assert Tenant.query.filter_by(slug="acme").count() == 1
