"""deferdb core -- deferred-transaction row dispatch above SQLAlchemy Core.

Manifesto:
    Callers describe row-level intents (insert / update / delete / ignore)
    on plain Python objects and queue raw statements on a connection. Both
    resolve into a single atomic transaction at a well-defined commit
    point: an explicit ``commit()``, a ``Transaction`` wrapper, an
    ``AutoCommitGuard`` or the connection's own ``close()``.

    - **Deferred writes:** Nothing hits the database before commit
    - **One transaction per commit:** FIFO, all-or-nothing
    - **Explicit end-of-life:** Rows dispatch on ``release()`` / scope exit
    - **Side-channel events:** An ``EventSink`` never changes control flow

Architecture::

    Layer 1 -- Types, Errors & Ambient
        errors.py          DeferError hierarchy
        protocols.py       EventSink protocol
        logging.py         structlog configuration + event sinks
        settings.py        DeferSettings (pydantic-settings)

    Layer 2 -- Driver & Connection
        dialect.py         Versioning-table SQL per backend
        driver.py          Driver options, URL parsing, engine factory
        connection.py      Connection: prepare / enqueue / commit / abort

    Layer 3 -- Rows & Registries
        row.py             PendingAction, Column, Row, UnitOfWork
        registry.py        EntityRegistry + Registries (kind -> instance)
        transaction.py     Transaction, auto_commit, AutoCommitGuard
        versioning.py      VersionTracker + ordered migrations
"""

from deferdb.core.connection import Connection, PreparedTemplate, QueuedStatement, connect
from deferdb.core.driver import DriverOptions
from deferdb.core.errors import (
    AlreadyInitializedError,
    ConfigError,
    ConnectError,
    ConnectionClosedError,
    DatabaseError,
    DeferError,
    DispatchError,
    ErrorCategory,
    ErrorContext,
    NotInitializedError,
    PrepareError,
    QueryError,
    RegistryError,
    RowReleasedError,
    TransactionError,
)
from deferdb.core.logging import (
    NullEventSink,
    StructlogEventSink,
    configure_logging,
    get_logger,
    is_configured,
)
from deferdb.core.protocols import EventSink
from deferdb.core.registry import EntityRegistry, Registries, registries
from deferdb.core.row import Column, PendingAction, Row, UnitOfWork
from deferdb.core.settings import DeferSettings
from deferdb.core.transaction import AutoCommitGuard, Transaction, auto_commit
from deferdb.core.versioning import Migration, MigrationResult, VersionTracker, run_migrations

__all__ = [
    # connection
    "Connection",
    "PreparedTemplate",
    "QueuedStatement",
    "connect",
    "DriverOptions",
    # errors
    "DeferError",
    "ErrorCategory",
    "ErrorContext",
    "DatabaseError",
    "ConnectError",
    "PrepareError",
    "DispatchError",
    "TransactionError",
    "QueryError",
    "ConnectionClosedError",
    "ConfigError",
    "RegistryError",
    "AlreadyInitializedError",
    "NotInitializedError",
    "RowReleasedError",
    # logging
    "EventSink",
    "NullEventSink",
    "StructlogEventSink",
    "configure_logging",
    "get_logger",
    "is_configured",
    # rows & registries
    "PendingAction",
    "Column",
    "Row",
    "UnitOfWork",
    "EntityRegistry",
    "Registries",
    "registries",
    # wrappers
    "Transaction",
    "auto_commit",
    "AutoCommitGuard",
    # versioning
    "VersionTracker",
    "Migration",
    "MigrationResult",
    "run_migrations",
    # settings
    "DeferSettings",
]
