"""Entity kinds used across the test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from deferdb.core.registry import EntityRegistry
from deferdb.core.row import Column, Row
from deferdb.core.versioning import Migration

WIDGET_DDL = "CREATE TABLE widget (id INTEGER PRIMARY KEY, name TEXT NOT NULL)"


@dataclass
class Widget(Row):
    kind = "widget"
    columns = ("id", "name")

    id: int
    name: str


class WidgetTable(EntityRegistry):
    kind = "widget"
    row_type = Widget
    create_query = WIDGET_DDL
    insert_query = "INSERT INTO widget (id, name) VALUES (:id, :name)"
    update_query = "UPDATE widget SET name = :name WHERE id = :id"
    delete_query = "DELETE FROM widget WHERE id = :id"
    select_query = "SELECT id, name FROM widget WHERE id = :id"


@dataclass
class Part(Row):
    """Row whose column names overlap as substrings of each other."""

    kind = "part"
    columns = ("id", "widget_id", Column("label", accessor=lambda r: r.label.strip()))

    id: int
    widget_id: int
    label: str = ""


class PartTable(EntityRegistry):
    kind = "part"
    row_type = Part
    create_query = (
        "CREATE TABLE part (id INTEGER PRIMARY KEY, widget_id INTEGER, label TEXT)"
    )
    insert_query = "INSERT INTO part (id, widget_id, label) VALUES (:id, :widget_id, :label)"
    update_query = "UPDATE part SET label = :label WHERE widget_id = :widget_id"
    delete_query = "DELETE FROM part WHERE id = :id"
    select_query = "SELECT id, widget_id, label FROM part WHERE id = :id"
    migrations = (
        Migration(1, "ALTER TABLE part ADD COLUMN weight INTEGER", "add weight"),
        Migration(2, "CREATE INDEX ix_part_widget ON part (widget_id)", "index widget_id"),
    )


@dataclass
class RecordingSink:
    """EventSink that keeps every event for assertions."""

    events: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    def _record(self, level: str, event: str, fields: dict[str, Any]) -> None:
        self.events.append((level, event, fields))

    def debug(self, event: str, **fields: Any) -> None:
        self._record("debug", event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._record("info", event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._record("error", event, fields)

    def alert(self, event: str, **fields: Any) -> None:
        self._record("alert", event, fields)

    def emergency(self, event: str, **fields: Any) -> None:
        self._record("emergency", event, fields)

    def named(self, event: str) -> list[tuple[str, str, dict[str, Any]]]:
        return [e for e in self.events if e[1] == event]

    def levels(self, level: str) -> list[str]:
        return [e[1] for e in self.events if e[0] == level]
