"""Entity registries — one per entity kind, routing rows to SQL templates.

Manifesto:
    Each entity kind declares its table SQL once, statically, on an
    ``EntityRegistry`` subclass. Exactly one live instance per kind is
    bound to a ``Connection``; rows stay lightweight and carry no SQL of
    their own.

    Process-wide state is an explicit ``Registries`` mapping (kind →
    instance) instead of class-level singletons, so tests can build as
    many independent mappings as they need and tear them down again.

Features:
    - ``init()`` fails fast with ``AlreadyInitializedError`` on a second call
    - ``instance()`` fails fast with ``NotInitializedError`` before ``init()``
    - ``dispatch(row)`` picks the insert/update/delete template for the
      row's pending action and binds the columns whose names are exact
      placeholders of that template
    - ``fetch_all()`` / ``fetch_one()`` for eager reads
    - ``migrate()`` runs the kind's versioned migration steps

Usage::

    class WidgetTable(EntityRegistry):
        kind = "widget"
        row_type = Widget
        create_query = "CREATE TABLE widget (id INTEGER PRIMARY KEY, name TEXT)"
        insert_query = "INSERT INTO widget (id, name) VALUES (:id, :name)"
        update_query = "UPDATE widget SET name = :name WHERE id = :id"
        delete_query = "DELETE FROM widget WHERE id = :id"
        select_query = "SELECT id, name FROM widget WHERE id = :id"

    table = WidgetTable.init(conn)
    table.migrate()
    with table.unit_of_work() as uow:
        uow.new(id=1, name="a").insert()
    conn.commit()

Tags:
    registry, singleton, dispatch, entity-kind, deferdb
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from deferdb.core.connection import Connection, PreparedTemplate, QueuedStatement
from deferdb.core.errors import (
    AlreadyInitializedError,
    ConfigError,
    ConnectionClosedError,
    DispatchError,
    NotInitializedError,
    QueryError,
    RegistryError,
)
from deferdb.core.logging import get_logger
from deferdb.core.protocols import EventSink
from deferdb.core.row import PendingAction, Row, UnitOfWork

if TYPE_CHECKING:
    from deferdb.core.versioning import Migration, MigrationResult, VersionTracker

logger = get_logger(__name__)

R = TypeVar("R", bound="EntityRegistry")


class Registries:
    """Mapping of entity kind → live ``EntityRegistry`` instance."""

    def __init__(self) -> None:
        self._instances: dict[str, EntityRegistry] = {}

    def init(self, registry_class: type[R], connection: Connection) -> R:
        """Construct and store the registry for ``registry_class.kind``.

        Raises:
            AlreadyInitializedError: If the kind already has an instance.
            ConfigError: If the class declares no ``kind``.
        """
        kind = registry_class.kind
        if not kind:
            raise ConfigError(f"{registry_class.__name__} declares no entity kind")
        if kind in self._instances:
            raise AlreadyInitializedError(
                f"Registry for {kind!r} is already initialized"
            ).with_context(kind=kind)

        instance = registry_class(connection)
        self._instances[kind] = instance
        logger.debug("registry.initialized", kind=kind, registry=registry_class.__name__)
        return instance

    def instance(self, kind: str) -> EntityRegistry:
        """Return the registry for ``kind``.

        Raises:
            NotInitializedError: If ``init()`` was never called for ``kind``.
        """
        try:
            return self._instances[kind]
        except KeyError:
            raise NotInitializedError(
                f"Registry for {kind!r} is not initialized"
            ).with_context(kind=kind) from None

    def get(self, kind: str) -> EntityRegistry | None:
        return self._instances.get(kind)

    def teardown(self, kind: str | None = None) -> None:
        """Forget one kind, or every kind when ``kind`` is ``None``."""
        if kind is None:
            self._instances.clear()
        else:
            self._instances.pop(kind, None)

    def kinds(self) -> list[str]:
        return sorted(self._instances)

    def __contains__(self, kind: object) -> bool:
        return kind in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    def __iter__(self) -> Iterator[EntityRegistry]:
        return iter(list(self._instances.values()))


# Process-wide default mapping
registries = Registries()


class EntityRegistry:
    """Routes rows of one entity kind to that kind's SQL templates.

    Subclasses set the class attributes; instances are created only by
    :meth:`init` (through a ``Registries`` mapping).
    """

    kind: ClassVar[str] = ""
    row_type: ClassVar[type[Row]] = Row

    insert_query: ClassVar[str] = ""
    update_query: ClassVar[str] = ""
    delete_query: ClassVar[str] = ""
    select_query: ClassVar[str] = ""
    create_query: ClassVar[str | Callable[[Connection], Any]] = ""

    migrations: ClassVar[Sequence[Migration | tuple[int, Any]]] = ()

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._templates: dict[PendingAction, PreparedTemplate] = {}

    # ------------------------------------------------------------------
    # Singleton access
    # ------------------------------------------------------------------

    @classmethod
    def init(cls: type[R], connection: Connection, *, using: Registries | None = None) -> R:
        """Create the one instance for this kind."""
        return (using if using is not None else registries).init(cls, connection)

    @classmethod
    def instance(cls: type[R], *, using: Registries | None = None) -> R:
        """Return the instance created by :meth:`init`."""
        found = (using if using is not None else registries).instance(cls.kind)
        if not isinstance(found, cls):
            raise RegistryError(
                f"Kind {cls.kind!r} is registered to {type(found).__name__}, not {cls.__name__}"
            ).with_context(kind=cls.kind)
        return found

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def sink(self) -> EventSink:
        return self._connection.sink

    def query_for(self, action: PendingAction) -> str:
        """SQL text used for ``action`` (empty for IGNORE)."""
        return {
            PendingAction.INSERT: self.insert_query,
            PendingAction.UPDATE: self.update_query,
            PendingAction.DELETE: self.delete_query,
        }.get(action, "")

    def template_for(self, action: PendingAction) -> PreparedTemplate:
        """Prepared template for ``action``, compiled on first use."""
        template = self._templates.get(action)
        if template is None:
            template = self._connection.prepare(self.query_for(action))
            self._templates[action] = template
        return template

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def new(self, *args: Any, **values: Any) -> Row:
        """Construct a ``row_type`` bound to this registry."""
        return self.row_type(*args, **values).bind(self)

    def unit_of_work(self) -> UnitOfWork:
        """Scope that releases its rows on exit. See ``UnitOfWork``."""
        return UnitOfWork(self)

    def dispatch(self, row: Row) -> QueuedStatement | None:
        """Queue the statement for ``row``'s pending action.

        IGNORE is a no-op and returns ``None``. Only columns whose names
        are exact placeholders of the chosen template are bound.

        Raises:
            DispatchError: If the row belongs to another kind, the kind has
                no query for the action, the query fails to prepare or a
                column accessor raises.
            ConnectionClosedError: If the connection was already closed.
        """
        action = row.action()
        if action is PendingAction.IGNORE:
            return None

        query = self.query_for(action)
        try:
            if row.kind and row.kind != self.kind:
                raise ValueError(f"row of kind {row.kind!r} sent to registry {self.kind!r}")
            if not query:
                raise ValueError(f"no {action.value} query declared for {self.kind!r}")
            template = self.template_for(action)
            values = {
                column.name: column.read(row)
                for column in row.column_map()
                if column.name in template.placeholders
            }
        except ConnectionClosedError:
            raise
        except Exception as e:
            self.sink.error(
                "dispatch.failed",
                kind=self.kind,
                action=action.value,
                query=query,
                error=str(e),
            )
            raise DispatchError(
                f"Can't dispatch {action.value} for {self.kind!r}", cause=e
            ).with_context(kind=self.kind, query=query) from e

        return self._connection.enqueue(template, values)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_all(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
        result_kind: Callable[..., Any] | None = None,
        result_ctor_args: Sequence[Any] = (),
    ) -> list[Any]:
        """Run ``query`` now and build one ``result_kind`` per result row.

        Each object is constructed as ``result_kind(*result_ctor_args,
        **columns)``. Results are materialized eagerly; rows of this
        registry's ``row_type`` come back bound to it with action IGNORE.

        Raises:
            QueryError: On driver failure or if ``result_kind`` rejects
                the fetched columns.
        """
        result_kind = result_kind if result_kind is not None else self.row_type
        try:
            records = self._connection.fetch(query, params)
        except QueryError as e:
            e.with_context(kind=self.kind)
            raise

        try:
            results = [result_kind(*result_ctor_args, **record) for record in records]
        except TypeError as e:
            self.sink.error(
                "fetch.materialize_failed",
                kind=self.kind,
                query=query,
                values=dict(params or {}),
                error=str(e),
            )
            raise QueryError(
                f"Can't build {getattr(result_kind, '__name__', result_kind)} from result", cause=e
            ).with_context(kind=self.kind, query=query, values=dict(params or {})) from e

        for result in results:
            if isinstance(result, self.row_type) and result._registry is None:
                result.bind(self)
        return results

    def fetch_one(self, **params: Any) -> Row | None:
        """First row matched by ``select_query``, or ``None`` if absent."""
        if not self.select_query:
            raise ConfigError(f"No select query declared for {self.kind!r}")
        results = self.fetch_all(self.select_query, params)
        return results[0] if results else None

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def migrate(self, tracker: VersionTracker | None = None) -> MigrationResult:
        """Bring this kind's table to the latest declared version."""
        from deferdb.core.versioning import VersionTracker, run_migrations

        tracker = tracker if tracker is not None else VersionTracker(self._connection)
        return run_migrations(
            tracker,
            self.kind,
            self.migrations,
            create=self.create_query or None,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r})"


__all__ = [
    "Registries",
    "registries",
    "EntityRegistry",
]
