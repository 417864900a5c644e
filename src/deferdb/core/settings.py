"""Settings for deferdb.

Configuration is explicit, validated and environment-driven. Every field
can be set through a ``DEFERDB_``-prefixed environment variable or a
``.env`` file.

Fields
──────
database_url    Connection descriptor (URL, file path or ``memory``)
persistent      Reuse pooled DBAPI connections (driver default option)
log_level       Structlog log level
log_json        JSON renderer (True), console (False) or auto (None)
log_events      Attach a structlog event sink in ``connect()``
versions_table  Table used by ``VersionTracker``

Examples:
    >>> from deferdb.core.settings import DeferSettings
    >>> settings = DeferSettings(database_url="sqlite:///app.db")
    >>> settings.versions_table
    'tables_versions'
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_identifier(value: object) -> bool:
    """True for a plain ASCII SQL identifier such as ``tables_versions``."""
    return isinstance(value, str) and value.isascii() and value.isidentifier()


class DeferSettings(BaseSettings):
    """Process-level configuration for connections and logging."""

    model_config = SettingsConfigDict(
        env_prefix="DEFERDB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(
        default="memory",
        description="Database URL, SQLite file path or 'memory'",
    )
    persistent: bool = True

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None
    log_events: bool = True

    # ── Versioning ───────────────────────────────────────────────
    versions_table: str = "tables_versions"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("versions_table")
    @classmethod
    def _identifier(cls, value: str) -> str:
        if not is_identifier(value):
            raise ValueError(f"versions_table must be a plain identifier: {value!r}")
        return value


def get_settings(**overrides: object) -> DeferSettings:
    """Build settings from the environment, applying keyword overrides."""
    return DeferSettings(**overrides)


__all__ = ["DeferSettings", "get_settings", "is_identifier"]
