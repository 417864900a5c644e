"""SQL dialect fragments used by the version-tracking table.

deferdb does not abstract SQL dialects: table definitions supply their
own SQL text. The one exception is the versioning table, which the core
owns and therefore has to create and upsert on every supported backend.
Placeholders are always named (``:name``), which SQLAlchemy's ``text()``
translates to each DBAPI's paramstyle.

Examples:
    >>> from deferdb.core.dialect import get_dialect
    >>> d = get_dialect("sqlite")
    >>> d.upsert("tables_versions", ["name", "version"], ["name"])
    'INSERT INTO tables_versions (name, version) VALUES (:name, :version) ON CONFLICT (name) DO UPDATE SET version = excluded.version'
"""

from __future__ import annotations

from typing import Protocol


def _named(columns: list[str]) -> str:
    return ", ".join(f":{c}" for c in columns)


class Dialect(Protocol):
    """Fragments the version tracker needs from a backend."""

    @property
    def name(self) -> str: ...

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str: ...

    def create_versions_table(self, table: str) -> str: ...


class SQLiteDialect:
    """SQLite dialect — ``ON CONFLICT ... DO UPDATE`` (3.24+)."""

    @property
    def name(self) -> str:
        return "sqlite"

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str:
        cols = ", ".join(columns)
        keys = ", ".join(key_columns)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in columns if c not in key_columns
        )
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({_named(columns)}) "
            f"ON CONFLICT ({keys}) DO UPDATE SET {updates}"
        )

    def create_versions_table(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "name VARCHAR(255) PRIMARY KEY, "
            "version SMALLINT NOT NULL DEFAULT 0 CHECK (version >= 0))"
        )


class PostgreSQLDialect(SQLiteDialect):
    """PostgreSQL dialect — same upsert grammar as SQLite."""

    @property
    def name(self) -> str:
        return "postgresql"


class MySQLDialect:
    """MySQL dialect — ``ON DUPLICATE KEY UPDATE``."""

    @property
    def name(self) -> str:
        return "mysql"

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str:
        cols = ", ".join(columns)
        updates = ", ".join(
            f"{c} = VALUES({c})" for c in columns if c not in key_columns
        )
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({_named(columns)}) "
            f"ON DUPLICATE KEY UPDATE {updates}"
        )

    def create_versions_table(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "name VARCHAR(255) PRIMARY KEY, "
            "version SMALLINT UNSIGNED NOT NULL DEFAULT 0)"
        )


_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),
    "mysql": MySQLDialect(),
    "mariadb": MySQLDialect(),
}


def get_dialect(name: str) -> Dialect:
    """Get a dialect by backend name (SQLAlchemy ``dialect.name``).

    Raises:
        ValueError: If ``name`` is not recognised.
    """
    key = name.lower()
    if key not in _DIALECTS:
        raise ValueError(
            f"Unknown dialect '{name}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres', 'mariadb'})}"
        )
    return _DIALECTS[key]


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "get_dialect",
]
