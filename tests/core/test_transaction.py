"""Tests for deferdb.core.transaction — commit/abort wrappers."""

from __future__ import annotations

import pytest

from deferdb.core.errors import TransactionError
from deferdb.core.transaction import AutoCommitGuard, Transaction, auto_commit

INSERT = "INSERT INTO widget (id, name) VALUES (:id, :name)"


def _names(conn) -> list[str]:
    return [r["name"] for r in conn.fetch("SELECT name FROM widget ORDER BY id")]


class TestTransaction:
    def test_decorator_commits_on_success(self, widget_conn):
        @Transaction(widget_conn)
        def add(id, name):
            widget_conn.enqueue(INSERT, {"id": id, "name": name})
            return name

        assert add(1, "a") == "a"
        assert add.__name__ == "add"
        assert _names(widget_conn) == ["a"]

    def test_decorator_aborts_and_reraises(self, widget_conn, sink):
        @Transaction(widget_conn)
        def add_then_fail():
            widget_conn.enqueue(INSERT, {"id": 1, "name": "a"})
            raise KeyError("nope")

        with pytest.raises(KeyError):
            add_then_fail()

        assert len(widget_conn) == 0
        assert _names(widget_conn) == []
        ((_, _, fields),) = sink.named("transaction.failed")
        assert fields["error_type"] == "KeyError"
        assert fields["discarded"] == 1

    def test_context_manager(self, widget_conn):
        with Transaction(widget_conn) as c:
            c.enqueue(INSERT, {"id": 1, "name": "a"})
        assert _names(widget_conn) == ["a"]

    def test_context_manager_abort(self, widget_conn):
        with pytest.raises(ValueError):
            with Transaction(widget_conn) as c:
                c.enqueue(INSERT, {"id": 1, "name": "a"})
                raise ValueError("stop")
        assert _names(widget_conn) == []

    def test_commit_failure_propagates(self, widget_conn):
        with pytest.raises(TransactionError):
            with Transaction(widget_conn) as c:
                c.enqueue(INSERT, {"id": 1, "name": "a"})
                c.enqueue(INSERT, {"id": 1, "name": "b"})
        assert _names(widget_conn) == []


class TestAutoCommit:
    def test_commits_after_return(self, widget_conn):
        @auto_commit(widget_conn)
        def add():
            widget_conn.enqueue(INSERT, {"id": 1, "name": "a"})
            return 42

        assert add() == 42
        assert _names(widget_conn) == ["a"]

    def test_failure_leaves_queue(self, widget_conn):
        @auto_commit(widget_conn)
        def add_then_fail():
            widget_conn.enqueue(INSERT, {"id": 1, "name": "a"})
            raise RuntimeError("later")

        with pytest.raises(RuntimeError):
            add_then_fail()
        assert len(widget_conn) == 1


class TestAutoCommitGuard:
    def test_commits_on_exit(self, widget_conn):
        with AutoCommitGuard(widget_conn) as guard:
            widget_conn.enqueue(INSERT, {"id": 1, "name": "a"})
        assert guard.failure is None
        assert _names(widget_conn) == ["a"]

    def test_commit_failure_is_swallowed(self, widget_conn, sink):
        with AutoCommitGuard(widget_conn) as guard:
            widget_conn.enqueue("INSERT INTO nowhere VALUES (1)")
        assert isinstance(guard.failure, TransactionError)
        assert sink.levels("alert") == ["guard.commit_failed"]

    def test_body_error_still_commits_and_propagates(self, widget_conn):
        with pytest.raises(LookupError):
            with AutoCommitGuard(widget_conn):
                widget_conn.enqueue(INSERT, {"id": 1, "name": "a"})
                raise LookupError("body")
        assert _names(widget_conn) == ["a"]

    def test_close_reports_outcome(self, widget_conn):
        guard = AutoCommitGuard(widget_conn)
        assert guard.close() is True
        widget_conn.enqueue("INSERT INTO nowhere VALUES (1)")
        assert guard.close() is False
