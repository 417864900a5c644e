"""Transactional wrappers around a ``Connection``.

Three shapes, differing only in what happens when things go wrong:

==================  ==========================  ===========================
Wrapper             Body raises                 Commit raises
==================  ==========================  ===========================
``Transaction``     abort queue, re-raise       propagates
``auto_commit``     queue left as is, re-raise  propagates
``AutoCommitGuard`` commit anyway, re-raise     reported to sink, swallowed
==================  ==========================  ===========================

Usage::

    @Transaction(conn)
    def rename(widget_id, name):
        w = table.fetch_one(id=widget_id)
        w.name = name
        w.update()
        w.release()

    with Transaction(conn):
        ...

    with AutoCommitGuard(conn) as guard:
        ...
    guard.failure   # swallowed TransactionError, if any
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, TypeVar

from deferdb.core.connection import Connection
from deferdb.core.errors import DatabaseError
from deferdb.core.protocols import EventSink

F = TypeVar("F", bound=Callable[..., Any])


class Transaction:
    """Run a unit of work, then commit on success or abort on failure.

    Works as a decorator and as a context manager. The original exception
    is always re-raised after the queue is aborted.
    """

    def __init__(self, connection: Connection, sink: EventSink | None = None) -> None:
        self._connection = connection
        self._sink = sink

    @property
    def sink(self) -> EventSink:
        return self._sink if self._sink is not None else self._connection.sink

    def __call__(self, fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with self:
                return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    def __enter__(self) -> Connection:
        return self._connection

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            self._connection.commit()
            return False

        self.sink.error(
            "transaction.failed",
            error_type=exc_type.__name__,
            error=str(exc_val),
            discarded=len(self._connection),
        )
        self._connection.abort()
        return False


def auto_commit(connection: Connection) -> Callable[[F], F]:
    """Decorator: commit after the wrapped callable returns.

    If the callable raises, nothing is committed or aborted; the queue is
    left for the caller to deal with.
    """

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            rc = fn(*args, **kwargs)
            connection.commit()
            return rc

        return wrapper  # type: ignore[return-value]

    return decorator


class AutoCommitGuard:
    """Opt-in scope that commits on every exit and never raises doing so.

    Mirrors a connection's end-of-life commit: a commit failure is sent to
    the sink at ``alert`` severity and kept on ``failure``. Exceptions from
    the body itself still propagate.
    """

    def __init__(self, connection: Connection, sink: EventSink | None = None) -> None:
        self._connection = connection
        self._sink = sink
        self.failure: DatabaseError | None = None

    @property
    def sink(self) -> EventSink:
        return self._sink if self._sink is not None else self._connection.sink

    def close(self) -> bool:
        """Commit now. Returns ``False`` if the commit failed."""
        try:
            self._connection.commit()
        except DatabaseError as e:
            self.failure = e
            self.sink.alert("guard.commit_failed", **e.to_dict())
            return False
        return True

    def __enter__(self) -> AutoCommitGuard:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


__all__ = [
    "Transaction",
    "auto_commit",
    "AutoCommitGuard",
]
