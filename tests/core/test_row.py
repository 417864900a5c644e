"""Tests for deferdb.core.row — pending actions and end-of-life dispatch."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from deferdb.core.errors import ConfigError, DispatchError, NotInitializedError, RowReleasedError
from deferdb.core.registry import EntityRegistry
from deferdb.core.row import Column, PendingAction, Row, UnitOfWork
from tests._support.entities import Part, Widget, WidgetTable


@pytest.fixture
def table(widget_conn, scope) -> WidgetTable:
    return WidgetTable.init(widget_conn, using=scope)


# ── Pending action state machine ─────────────────────────────────────────


class TestPendingAction:
    def test_default_is_ignore(self):
        assert Widget(id=1, name="a").action() is PendingAction.IGNORE

    def test_last_call_wins(self):
        w = Widget(id=1, name="a")
        w.insert()
        w.delete()
        w.update()
        assert w.action() is PendingAction.UPDATE
        w.ignore()
        assert w.action() is PendingAction.IGNORE

    def test_setters_are_idempotent(self):
        w = Widget(id=1, name="a")
        w.insert()
        w.insert()
        assert w.action() is PendingAction.INSERT

    def test_action_is_per_instance(self):
        a, b = Widget(id=1, name="a"), Widget(id=2, name="b")
        a.delete()
        assert b.action() is PendingAction.IGNORE


# ── Column mapping ───────────────────────────────────────────────────────


class TestColumns:
    def test_declared_columns_in_order(self):
        assert Widget.column_names() == ("id", "name")

    def test_accessor_column(self):
        part = Part(id=1, widget_id=2, label="  bolt ")
        assert part.values() == {"id": 1, "widget_id": 2, "label": "bolt"}

    def test_dataclass_fields_used_when_undeclared(self):
        @dataclass
        class Gadget(Row):
            kind = "gadget"

            id: int
            colour: str
            _cache: int = 0

        assert Gadget.column_names() == ("id", "colour")

    def test_plain_row_subclass(self):
        class Note(Row):
            kind = "note"
            columns = ("id", Column("body", accessor=lambda r: r.text))

        note = Note(id=3, text="hi")
        assert note.values() == {"id": 3, "body": "hi"}

    def test_duplicate_columns_rejected(self):
        class Broken(Row):
            columns = ("id", Column("id"))

        with pytest.raises(ConfigError):
            Broken.column_map()


# ── release() ────────────────────────────────────────────────────────────


class TestRelease:
    def test_ignore_queues_nothing(self, table, widget_conn):
        w = table.new(id=1, name="a")
        assert w.release() is False
        assert len(widget_conn) == 0

    @pytest.mark.parametrize("action", ["insert", "update", "delete"])
    def test_each_action_queues_exactly_one(self, table, widget_conn, action):
        w = table.new(id=1, name="a")
        getattr(w, action)()
        assert w.release() is True
        assert len(widget_conn) == 1

    def test_release_dispatches_once(self, table, widget_conn):
        w = table.new(id=1, name="a")
        w.insert()
        w.release()
        assert w.release() is False
        assert len(widget_conn) == 1

    def test_no_action_changes_after_release(self, table):
        w = table.new(id=1, name="a")
        w.release()
        assert w.released
        with pytest.raises(RowReleasedError):
            w.insert()

    def test_with_block_releases(self, table, widget_conn):
        with table.new(id=1, name="a") as w:
            w.insert()
        assert w.released
        assert len(widget_conn) == 1

    def test_unbound_row_uses_process_registry(self, widget_conn):
        WidgetTable.init(widget_conn)
        w = Widget(id=1, name="a")
        w.insert()
        w.release()
        widget_conn.commit()
        assert widget_conn.fetch("SELECT name FROM widget") == [{"name": "a"}]

    def test_unbound_row_without_registry_fails_fast(self):
        w = Widget(id=1, name="a")
        w.insert()
        with pytest.raises(NotInitializedError):
            w.release()

    def test_dispatch_failure_is_swallowed_and_reported(self, widget_conn, scope, sink):
        class NoDeleteTable(EntityRegistry):
            kind = "widget"
            row_type = Widget
            insert_query = WidgetTable.insert_query

        registry = NoDeleteTable.init(widget_conn, using=scope)
        w = registry.new(id=1, name="a")
        w.delete()

        with pytest.raises(DispatchError):
            registry.dispatch(w)

        assert w.release() is False
        assert len(widget_conn) == 0
        assert "row.release_failed" in sink.levels("error")


# ── UnitOfWork ───────────────────────────────────────────────────────────


class TestUnitOfWork:
    def test_releases_in_insertion_order(self, table, widget_conn):
        with table.unit_of_work() as uow:
            uow.new(id=1, name="a").insert()
            uow.new(id=2, name="b")
            uow.new(id=3, name="c").insert()

        assert len(uow) == 3
        assert [dict(s.values)["id"] for s in widget_conn.pending] == [1, 3]

    def test_releases_on_error_exit(self, table, widget_conn):
        with pytest.raises(RuntimeError):
            with table.unit_of_work() as uow:
                uow.new(id=1, name="a").insert()
                raise RuntimeError("boom")

        assert all(row.released for row in uow)
        assert len(widget_conn) == 1

    def test_add_binds_unbound_rows(self, table, widget_conn):
        with table.unit_of_work() as uow:
            w = uow.add(Widget(id=5, name="e"))
            w.insert()
        assert w.registry is table
        assert len(widget_conn) == 1

    def test_closed_unit_rejects_rows(self, table):
        uow = table.unit_of_work()
        uow.close()
        with pytest.raises(RowReleasedError):
            uow.add(Widget(id=1, name="a"))

    def test_new_without_registry(self):
        with pytest.raises(ConfigError):
            UnitOfWork().new(id=1)


# ── Accessor failures at end of life ─────────────────────────────────────


class Tagged(Row):
    kind = "widget"
    columns = ("id", Column("name", accessor=lambda r: r.meta["name"]))


class TestAccessorFailures:
    def test_release_swallows_any_accessor_error(self, table, widget_conn, sink):
        row = Tagged(id=1, meta={}).bind(table)
        row.insert()
        assert row.release() is False
        assert row.released
        assert len(widget_conn) == 0
        assert "row.release_failed" in sink.levels("error")

    def test_unit_of_work_dispatches_rows_after_a_failing_one(self, table, widget_conn):
        with table.unit_of_work() as uow:
            uow.add(Tagged(id=1, meta={})).insert()
            uow.new(id=2, name="b").insert()

        assert [row.released for row in uow] == [True, True]
        assert [dict(s.values)["id"] for s in widget_conn.pending] == [2]

    def test_unit_of_work_reraises_first_error_after_releasing_all(self, table, widget_conn):
        uow = UnitOfWork()
        orphan = uow.add(Widget(id=1, name="a"))
        orphan.insert()
        bound = uow.add(table.new(id=2, name="b"))
        bound.insert()

        with pytest.raises(NotInitializedError):
            uow.close()

        assert orphan.released and bound.released
        assert len(widget_conn) == 1
