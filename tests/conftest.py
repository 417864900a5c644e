"""
Shared pytest fixtures for deferdb tests.

This module provides:
- An in-memory SQLite ``Connection`` wired to a recording event sink
- A private ``Registries`` mapping per test, plus cleanup of the
  process-wide default
- The ``widget`` table created and committed

All tests run against SQLite; no external database is required.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

# Ensure deferdb package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deferdb.core import logging as deferdb_logging
from deferdb.core.connection import Connection
from deferdb.core.registry import Registries, registries
from tests._support.entities import WIDGET_DDL, RecordingSink


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests as unit unless they already carry a marker."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Registry Cleanup
# =============================================================================


@pytest.fixture(autouse=True)
def clean_default_registries() -> Generator[None, None, None]:
    """Tear down the process-wide registries before and after each test."""
    registries.teardown()
    yield
    registries.teardown()


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Undo any structlog configuration a test performed."""
    yield
    structlog.reset_defaults()
    deferdb_logging._configured = False


@pytest.fixture
def scope() -> Registries:
    """A private registry mapping, independent of the process-wide one."""
    return Registries()


# =============================================================================
# Connections
# =============================================================================


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def conn(sink: RecordingSink) -> Generator[Connection, None, None]:
    """In-memory SQLite connection; closed (and implicitly committed) after the test."""
    c = Connection("memory", sink=sink)
    yield c
    c.close()


@pytest.fixture
def widget_conn(conn: Connection, sink: RecordingSink) -> Connection:
    """Connection with the ``widget`` table created and the sink emptied."""
    conn.enqueue(WIDGET_DDL)
    conn.commit()
    sink.events.clear()
    return conn
