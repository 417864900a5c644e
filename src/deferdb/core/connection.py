"""Connection — one database handle plus a deferred statement queue.

Manifesto:
    Writes are described first and executed later. Callers (and rows at
    end-of-life) ``enqueue`` parameterized statements; nothing touches the
    database until ``commit()`` runs the whole queue as one transaction.
    Reads (``fetch``) bypass the queue and run immediately.

Lifecycle
---------
::

    Connection(url)            ──► handle checked out, queue empty
        │ enqueue(q, values)   ──► QueuedStatement appended (FIFO)
        │ abort()              ──► queue discarded
        │ commit()             ──► BEGIN; execute all; COMMIT | ROLLBACK
        │                          queue cleared either way
        ▼
    close() / __exit__         ──► implicit commit, failures reported to
                                   the sink and swallowed; handle released

Usage
-----
::

    from deferdb.core.connection import connect

    with connect("sqlite:///app.db") as conn:
        conn.enqueue("INSERT INTO widget (id, name) VALUES (:id, :name)",
                     {"id": 1, "name": "a"})
        conn.commit()
        rows = conn.fetch("SELECT * FROM widget WHERE id = :id", {"id": 1})

A ``Connection`` is not synchronized. Use one per thread/worker.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection as SAConnection
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from deferdb.core.dialect import Dialect, get_dialect
from deferdb.core.driver import (
    DriverOptions,
    create_driver_engine,
    parse_url,
    resolve_options,
    safe_url,
)
from deferdb.core.errors import (
    ConnectError,
    ConnectionClosedError,
    DatabaseError,
    PrepareError,
    QueryError,
    TransactionError,
)
from deferdb.core.logging import (
    NullEventSink,
    StructlogEventSink,
    configure_logging,
    get_logger,
)
from deferdb.core.protocols import EventSink
from deferdb.core.settings import DeferSettings


@dataclass(frozen=True)
class PreparedTemplate:
    """A compiled, reusable query bound to named placeholders."""

    sql: str
    placeholders: frozenset[str]
    clause: TextClause = field(repr=False, compare=False)


@dataclass(frozen=True)
class QueuedStatement:
    """A prepared template plus the values bound to it, awaiting commit."""

    template: PreparedTemplate
    values: Mapping[str, Any]

    @property
    def sql(self) -> str:
        return self.template.sql


class Connection:
    """Owns one database handle and a FIFO queue of pending statements.

    Parameters
    ----------
    url:
        Connection descriptor; see :func:`deferdb.core.driver.parse_url`.
    options:
        Driver options; ``case``, ``nulls`` and ``errmode`` are forced,
        ``persistent`` defaults to ``True``, the rest is passed through.
    sink:
        Event sink receiving leveled events. Defaults to a no-op sink.

    Raises
    ------
    ConnectError
        If the engine cannot be created or the handle cannot be opened.
    """

    def __init__(
        self,
        url: str | None = None,
        options: Mapping[str, Any] | DriverOptions | None = None,
        *,
        sink: EventSink | None = None,
    ) -> None:
        self._sink: EventSink = sink if sink is not None else NullEventSink()
        self._statements: list[QueuedStatement] = []
        self._templates: dict[str, PreparedTemplate] = {}
        self._closed = False
        display = str(url)

        try:
            self._options = resolve_options(options)
            self._url = parse_url(url)
            display = safe_url(self._url)
            self._engine: Engine = create_driver_engine(self._url, self._options)
            try:
                self._handle: SAConnection = self._engine.connect()
            except SQLAlchemyError:
                self._engine.dispose()
                raise
        except (SQLAlchemyError, OSError, TypeError, ValueError) as e:
            self._sink.emergency("connect.failed", url=display, error=str(e))
            raise ConnectError(
                f"Can't connect to {display}",
                retryable=isinstance(e, DBAPIError),
                cause=e,
            ) from e

        self._sink.info("connect.ok", url=safe_url(self._url), backend=self.backend)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def options(self) -> DriverOptions:
        """Effective driver options after forcing and defaults."""
        return self._options

    @property
    def backend(self) -> str:
        """SQLAlchemy dialect name: ``"sqlite"``, ``"postgresql"``, ..."""
        return self._engine.dialect.name

    @property
    def dialect(self) -> Dialect:
        return get_dialect(self.backend)

    @property
    def sink(self) -> EventSink:
        return self._sink

    @sink.setter
    def sink(self, sink: EventSink | None) -> None:
        self._sink = sink if sink is not None else NullEventSink()

    @property
    def pending(self) -> tuple[QueuedStatement, ...]:
        """Snapshot of the queue, in execution order."""
        return tuple(self._statements)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._statements)

    def handle(self) -> SAConnection:
        """Raw SQLAlchemy connection, for work outside this abstraction."""
        self._ensure_open()
        return self._handle

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def prepare(self, query: str) -> PreparedTemplate:
        """Compile ``query`` into a template bound to its named placeholders.

        Templates are cached per query text.

        Raises
        ------
        PrepareError
            If the query is empty or cannot be compiled.
        """
        self._ensure_open()
        cached = self._templates.get(query) if isinstance(query, str) else None
        if cached is not None:
            return cached

        try:
            if not isinstance(query, str):
                raise TypeError(f"query must be str, not {type(query).__name__}")
            if not query.strip():
                raise ValueError("query is empty")
            clause = text(query)
            placeholders = frozenset(clause.compile().params)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            self._sink.error("prepare.failed", query=query, error=str(e))
            raise PrepareError(
                "Can't prepare query", cause=e
            ).with_context(query=str(query)) from e

        template = PreparedTemplate(sql=query, placeholders=placeholders, clause=clause)
        self._templates[query] = template
        return template

    def enqueue(
        self,
        template_or_query: PreparedTemplate | str,
        values: Mapping[str, Any] | None = None,
    ) -> QueuedStatement:
        """Append a statement to the queue. Nothing is executed yet.

        Raises
        ------
        PrepareError
            If ``template_or_query`` is a string that fails to compile.
        """
        template = self._resolve(template_or_query)
        bound = dict(values or {})
        statement = QueuedStatement(template=template, values=MappingProxyType(bound))
        self._statements.append(statement)
        self._sink.debug(
            "statement.enqueued",
            query=template.sql,
            values=bound,
            pending=len(self._statements),
        )
        return statement

    def abort(self) -> None:
        """Discard every pending statement. Idempotent, never fails."""
        discarded = len(self._statements)
        self._statements = []
        self._sink.info("transaction.aborted", discarded=discarded)

    def commit(self) -> bool:
        """Execute the queue as one transaction.

        Returns ``True`` (also when the queue is empty). The queue is
        cleared whether the commit succeeds or raises.

        Raises
        ------
        TransactionError
            If any statement, the commit or the rollback fails. The
            failing ``QueuedStatement`` is available as ``.statement``.
        """
        self._ensure_open()
        if not self._statements:
            return True

        statements, self._statements = self._statements, []
        index: int | None = None
        statement: QueuedStatement | None = None
        trans = None

        try:
            trans = self._handle.get_transaction() or self._handle.begin()
            for index, statement in enumerate(statements):
                self._handle.execute(statement.template.clause, dict(statement.values))
            statement = None
            index = None
            # DDL may have ended the transaction implicitly on some backends
            if trans.is_active:
                trans.commit()
        except Exception as e:
            if trans is not None and trans.is_active:
                try:
                    trans.rollback()
                except SQLAlchemyError as rollback_error:
                    self._sink.alert("rollback.failed", error=str(rollback_error))

            values = dict(statement.values) if statement is not None else None
            query = statement.sql if statement is not None else None
            self._sink.error(
                "commit.failed",
                statement_index=index,
                query=query,
                values=values,
                statements=len(statements),
                error=str(e),
            )
            raise TransactionError(
                "Can't commit transaction",
                statement=statement,
                cause=e,
            ).with_context(query=query, values=values, statement_index=index) from e

        self._sink.info("commit.ok", statements=len(statements))
        return True

    def fetch(
        self,
        template_or_query: PreparedTemplate | str,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run a read immediately, bypassing the queue.

        Rows come back as dicts keyed by column name exactly as the driver
        reports it.

        Raises
        ------
        QueryError
            On any preparation or driver failure.
        """
        bound = dict(params or {})
        sql = template_or_query.sql if isinstance(template_or_query, PreparedTemplate) else template_or_query
        try:
            template = self._resolve(template_or_query)
            if self._handle.in_transaction():
                result = self._handle.execute(template.clause, bound)
                rows = [dict(row) for row in result.mappings()]
            else:
                with self._handle.begin():
                    result = self._handle.execute(template.clause, bound)
                    rows = [dict(row) for row in result.mappings()]
        except ConnectionClosedError:
            raise
        except (DatabaseError, SQLAlchemyError) as e:
            self._sink.error("fetch.failed", query=sql, values=bound, error=str(e))
            raise QueryError(
                "Can't query database", cause=e
            ).with_context(query=str(sql), values=bound) from e
        return rows

    # ------------------------------------------------------------------
    # End of life
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Commit whatever is pending, then release the handle.

        Commit failures here have no caller to report to: they are sent to
        the sink at ``alert`` severity and swallowed. Idempotent.
        """
        if self._closed:
            return
        try:
            self.commit()
        except TransactionError as e:
            self._sink.alert("connection.close_commit_failed", **e.to_dict())
        finally:
            self._closed = True
            self._templates.clear()
            try:
                self._handle.close()
                self._engine.dispose()
            except SQLAlchemyError as e:
                self._sink.alert("connection.release_failed", error=str(e))
        self._sink.info("connection.closed")

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"pending={len(self._statements)}"
        return f"Connection(url={safe_url(self._url)!r}, {state})"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, template_or_query: PreparedTemplate | str) -> PreparedTemplate:
        if isinstance(template_or_query, PreparedTemplate):
            self._ensure_open()
            return template_or_query
        return self.prepare(template_or_query)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConnectionClosedError("Connection is closed")


def connect(
    url: str | None = None,
    options: Mapping[str, Any] | DriverOptions | None = None,
    *,
    settings: DeferSettings | None = None,
    sink: EventSink | None = None,
) -> Connection:
    """Create a ``Connection``, filling gaps from ``DeferSettings``.

    When ``url`` is omitted, ``settings.database_url`` is used. When no
    ``sink`` is given and ``settings.log_events`` is set, structlog is
    configured from ``settings.log_level`` and ``settings.log_json`` (once per
    process) and events go to a logger named ``deferdb.connection``.
    """
    settings = settings or DeferSettings()
    if url is None:
        url = settings.database_url
    if options is None:
        options = {"persistent": settings.persistent}
    if sink is None and settings.log_events:
        configure_logging(level=settings.log_level, json_format=settings.log_json)
        sink = StructlogEventSink(get_logger("deferdb.connection"))
    return Connection(url, options, sink=sink)


__all__ = [
    "PreparedTemplate",
    "QueuedStatement",
    "Connection",
    "connect",
]
