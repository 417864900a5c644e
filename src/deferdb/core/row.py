"""Rows — in-memory records carrying a pending CRUD intent.

A ``Row`` holds a fixed, statically declared set of columns and a
``PendingAction``. Nothing is written while the row is alive. At
end-of-life the row asks its ``EntityRegistry`` to dispatch it, which
queues exactly one statement on the shared ``Connection``.

End of life is explicit. It happens when:

- ``row.release()`` is called,
- a ``with row:`` block exits, or
- the ``UnitOfWork`` the row was added to exits (normally or by exception).

State machine
-------------
::

        ┌────────── ignore()/insert()/update()/delete() ──────────┐
        ▼                                                          │
    IGNORE ◄──► INSERT ◄──► UPDATE ◄──► DELETE  (any → any, last call wins)
        │            │            │            │
        └────────────┴─── release() ───────────┘
                           │
             IGNORE: nothing happens
             other:  registry.dispatch(row) exactly once
                           │
                       RELEASED (action changes raise RowReleasedError)

Declaring a row
---------------
::

    @dataclass
    class Widget(Row):
        kind = "widget"
        columns = ("id", "name")

        id: int
        name: str

Columns may also carry an accessor: ``Column("name", accessor=lambda r:
r.name.strip())``. Undeclared ``columns`` on a dataclass row default to
its public dataclass fields, resolved once per class.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from deferdb.core.errors import ConfigError, DispatchError, RowReleasedError
from deferdb.core.logging import get_logger

if TYPE_CHECKING:
    from deferdb.core.registry import EntityRegistry

logger = get_logger(__name__)


class PendingAction(str, Enum):
    """CRUD intent resolved when a row reaches end-of-life."""

    IGNORE = "ignore"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Column:
    """One ``(name, accessor)`` pair of a row's column mapping."""

    name: str
    accessor: Callable[[Any], Any] | None = None

    def read(self, row: Any) -> Any:
        if self.accessor is not None:
            return self.accessor(row)
        return getattr(row, self.name)


class Row:
    """Base class for one record of an entity kind."""

    kind: ClassVar[str] = ""
    columns: ClassVar[tuple[str | Column, ...]] = ()

    # Instance state; class-level defaults keep dataclass subclasses working
    # without calling this __init__.
    _action = PendingAction.IGNORE
    _registry: EntityRegistry | None = None
    _released = False

    def __init__(self, **values: Any) -> None:
        for name, value in values.items():
            setattr(self, name, value)

    # ------------------------------------------------------------------
    # Column mapping
    # ------------------------------------------------------------------

    @classmethod
    def column_map(cls) -> tuple[Column, ...]:
        """Ordered column mapping for this row type, built once per class."""
        cached = cls.__dict__.get("_column_cache")
        if cached is not None:
            return cached

        declared = cls.columns
        if not declared and dataclasses.is_dataclass(cls):
            declared = tuple(
                f.name for f in dataclasses.fields(cls) if not f.name.startswith("_")
            )

        mapping = tuple(c if isinstance(c, Column) else Column(c) for c in declared)
        names = [c.name for c in mapping]
        if len(names) != len(set(names)):
            raise ConfigError(f"Duplicate column names on {cls.__name__}: {names}")

        cls._column_cache = mapping
        return mapping

    @classmethod
    def column_names(cls) -> tuple[str, ...]:
        return tuple(c.name for c in cls.column_map())

    def values(self) -> dict[str, Any]:
        """Current value of every declared column."""
        return {c.name: c.read(self) for c in self.column_map()}

    # ------------------------------------------------------------------
    # Pending action
    # ------------------------------------------------------------------

    def ignore(self) -> None:
        self._set_action(PendingAction.IGNORE)

    def insert(self) -> None:
        self._set_action(PendingAction.INSERT)

    def update(self) -> None:
        self._set_action(PendingAction.UPDATE)

    def delete(self) -> None:
        self._set_action(PendingAction.DELETE)

    def action(self) -> PendingAction:
        return self._action

    def _set_action(self, action: PendingAction) -> None:
        if self._released:
            raise RowReleasedError(
                f"{type(self).__name__} was already released; "
                f"can't change action to {action.value}"
            )
        self._action = action

    # ------------------------------------------------------------------
    # Registry binding
    # ------------------------------------------------------------------

    def bind(self, registry: EntityRegistry) -> Row:
        """Attach this row to ``registry`` (non-owning). Returns the row."""
        self._registry = registry
        return self

    @property
    def registry(self) -> EntityRegistry:
        """Bound registry, or the process-wide one for ``kind``."""
        if self._registry is not None:
            return self._registry
        from deferdb.core.registry import registries

        return registries.instance(self.kind)

    # ------------------------------------------------------------------
    # End of life
    # ------------------------------------------------------------------

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """End this row's life, dispatching its pending action.

        Returns ``True`` if a statement was queued. Dispatch failures are
        reported to the sink and swallowed; call
        ``registry.dispatch(row)`` directly to see them. Registry misuse
        (``NotInitializedError``) still raises.
        """
        if self._released:
            return False
        self._released = True

        if self._action is PendingAction.IGNORE:
            return False

        registry = self.registry
        try:
            registry.dispatch(self)
        except DispatchError as e:
            registry.sink.error("row.release_failed", **e.to_dict())
            logger.debug("row.release_failed", kind=self.kind, action=self._action.value)
            return False
        return True

    def __enter__(self) -> Row:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self.values().items())
        return f"{type(self).__name__}({fields}, action={self._action.value})"


class UnitOfWork:
    """Scope that releases every tracked row when it exits.

    Rows are released in the order they were added, on every exit path
    of the ``with`` block.

    Usage::

        with WidgetTable.instance().unit_of_work() as uow:
            w = uow.new(id=1, name="a")
            w.insert()
        # one INSERT queued here
    """

    def __init__(self, registry: EntityRegistry | None = None) -> None:
        self._registry = registry
        self._rows: list[Row] = []
        self._closed = False

    def add(self, row: Row) -> Row:
        """Track ``row``; binds it to this unit's registry if it has none."""
        if self._closed:
            raise RowReleasedError("Unit of work already closed")
        if self._registry is not None and row._registry is None:
            row.bind(self._registry)
        self._rows.append(row)
        return row

    def new(self, *args: Any, **values: Any) -> Row:
        """Create a row through the registry factory and track it."""
        if self._registry is None:
            raise ConfigError("UnitOfWork.new() needs a registry")
        return self.add(self._registry.new(*args, **values))

    def close(self) -> int:
        """Release all tracked rows. Returns how many were dispatched.

        Every row is released even if an earlier release raises; the first
        such error is re-raised once all rows are done.
        """
        if self._closed:
            return 0
        self._closed = True
        dispatched = 0
        first_error: Exception | None = None
        for row in self._rows:
            try:
                if row.release():
                    dispatched += 1
            except Exception as e:
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
        return dispatched

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __enter__(self) -> UnitOfWork:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = [
    "PendingAction",
    "Column",
    "Row",
    "UnitOfWork",
]
