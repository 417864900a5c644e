"""Schema-version tracking and ordered migrations.

Manifesto:
    Each entity kind's table evolves through numbered steps. The version
    table maps kind → last applied version; a missing row means the kind
    was never migrated. Steps are applied from ``current + 1`` through the
    latest, the final version is written, and the whole batch is committed
    once, so re-running a fully migrated kind applies nothing.

Versioning table
----------------
::

    tables_versions
    ┌──────────────┬──────────────────────────────┐
    │ name (PK)    │ version (SMALLINT, default 0) │
    └──────────────┴──────────────────────────────┘

Writes go through the connection queue; reads commit the queue first so
they see earlier writes.

Example::

    tracker = VersionTracker(conn)
    result = run_migrations(
        tracker,
        "widget",
        [
            Migration(1, "ALTER TABLE widget ADD COLUMN color TEXT"),
            Migration(2, add_widget_index),
        ],
        create="CREATE TABLE widget (id INTEGER PRIMARY KEY, name TEXT)",
    )
    result.applied   # [1, 2] on first run, [] afterwards
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from deferdb.core.connection import Connection, QueuedStatement
from deferdb.core.errors import ConfigError, QueryError
from deferdb.core.logging import get_logger
from deferdb.core.settings import get_settings, is_identifier

logger = get_logger(__name__)

DEFAULT_VERSIONS_TABLE = "tables_versions"

Step = str | Callable[[Connection], Any]


class VersionTracker:
    """Persistent kind → schema version mapping on one connection.

    ``table`` defaults to ``DeferSettings.versions_table``; an explicit
    name must be a plain identifier (``ConfigError`` otherwise).
    """

    def __init__(self, connection: Connection, table: str | None = None) -> None:
        if table is not None and not is_identifier(table):
            raise ConfigError(f"Version table must be a plain identifier: {table!r}")
        self._connection = connection
        self._table = table or get_settings().versions_table

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def table(self) -> str:
        return self._table

    def create_versioning_table(self) -> QueuedStatement:
        """Queue a create-if-absent statement for the versioning table.

        Commit before reading versions in the same step.
        """
        return self._connection.enqueue(
            self._connection.dialect.create_versions_table(self._table)
        )

    def get_current_version(self, kind: str) -> int | None:
        """Commit the queue, then read the stored version for ``kind``.

        Returns ``None`` when ``kind`` was never migrated.

        Raises:
            TransactionError: If committing the pending queue fails.
            QueryError: If the read fails.
        """
        self._connection.commit()
        try:
            rows = self._connection.fetch(
                f"SELECT version FROM {self._table} WHERE name = :name",
                {"name": kind},
            )
        except QueryError as e:
            self._connection.sink.alert(
                "version.read_failed", kind=kind, table=self._table, error=str(e.cause)
            )
            e.with_context(kind=kind)
            raise
        return int(rows[0]["version"]) if rows else None

    def set_current_version(self, kind: str, version: int) -> QueuedStatement:
        """Queue an upsert of ``version`` for ``kind``. Visible after commit."""
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise ValueError(f"version must be a non-negative int, got {version!r}")
        query = self._connection.dialect.upsert(self._table, ["name", "version"], ["name"])
        return self._connection.enqueue(query, {"name": kind, "version": version})


@dataclass(frozen=True)
class Migration:
    """One numbered migration step.

    ``apply`` is either SQL text (queued as-is) or a callable receiving
    the connection and queuing its own statements.
    """

    version: int
    apply: Step
    description: str = ""

    def run(self, connection: Connection) -> None:
        if isinstance(self.apply, str):
            connection.enqueue(self.apply)
        else:
            self.apply(connection)


@dataclass
class MigrationResult:
    """Outcome of one ``run_migrations`` call."""

    kind: str
    previous: int | None
    current: int
    applied: list[int] = field(default_factory=list)
    created: bool = False

    @property
    def first_run(self) -> bool:
        return self.previous is None

    @property
    def changed(self) -> bool:
        return self.created or bool(self.applied)


def normalize_steps(steps: Iterable[Migration | tuple[int, Step]]) -> list[Migration]:
    """Coerce ``(version, step)`` pairs and check the ordering.

    Raises:
        ConfigError: If versions are not positive and strictly increasing.
    """
    plan = [s if isinstance(s, Migration) else Migration(*s) for s in steps]
    previous = 0
    for migration in plan:
        if isinstance(migration.version, bool) or not isinstance(migration.version, int):
            raise ConfigError(f"Migration version must be int, got {migration.version!r}")
        if migration.version <= previous:
            raise ConfigError(
                f"Migration versions must be positive and strictly increasing: "
                f"{[m.version for m in plan]}"
            )
        previous = migration.version
    return plan


def run_migrations(
    tracker: VersionTracker,
    kind: str,
    steps: Iterable[Migration | tuple[int, Step]] = (),
    *,
    create: Step | None = None,
) -> MigrationResult:
    """Apply every step above the stored version of ``kind``, then commit.

    On first run (no stored version) ``create`` is queued and the version
    is treated as 0. The final version is always written, so a kind that is
    already current gets one harmless version write and no steps.

    If a step raises, the queue is aborted and the error propagates.
    """
    plan = normalize_steps(steps)
    connection = tracker.connection

    tracker.create_versioning_table()
    stored = tracker.get_current_version(kind)
    current = stored if stored is not None else 0
    created = False
    applied: list[int] = []

    try:
        if stored is None and create is not None:
            Migration(0, create, "create").run(connection)
            created = True

        for migration in plan:
            if migration.version <= current:
                continue
            migration.run(connection)
            applied.append(migration.version)
            logger.debug("migration.queued", kind=kind, version=migration.version)

        latest = applied[-1] if applied else current
        tracker.set_current_version(kind, latest)
    except Exception:
        connection.abort()
        raise

    connection.commit()
    logger.info(
        "migration.complete",
        kind=kind,
        previous=stored,
        current=latest,
        applied=applied,
        created=created,
    )
    return MigrationResult(
        kind=kind,
        previous=stored,
        current=latest,
        applied=applied,
        created=created,
    )


__all__ = [
    "DEFAULT_VERSIONS_TABLE",
    "VersionTracker",
    "Migration",
    "MigrationResult",
    "normalize_steps",
    "run_migrations",
]
