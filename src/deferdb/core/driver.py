"""Driver boundary — URL parsing, driver options and engine construction.

deferdb sits above SQLAlchemy Core. This module is the only place that
talks to ``sqlalchemy.create_engine``; ``Connection`` receives a ready
engine and owns exactly one DBAPI connection checked out from it.

Supported descriptors
---------------------
==================  ==========================================  ============
Descriptor          Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/my.db`` or ``/tmp/app.db``          SQLite file
``postgres``        ``postgres://user:pw@host:port/db``          PostgreSQL
``(any URL)``       ``mysql+pymysql://user:pw@host/db``          via SQLAlchemy
==================  ==========================================  ============

Driver options
--------------
Three options are forced no matter what the caller passes:

- ``case="natural"``: column names are returned exactly as the driver
  reports them
- ``nulls="natural"``: SQL NULL stays ``None``; empty strings and zeros are
  never folded into it
- ``errmode="exception"``: driver failures raise, never return codes

``persistent`` defaults to ``True`` (pooled connection reuse). Every other
key is passed through to ``sqlalchemy.create_engine``.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import NullPool

FORCED_OPTIONS: dict[str, str] = {
    "case": "natural",
    "nulls": "natural",
    "errmode": "exception",
}


class DriverOptions(BaseModel):
    """Effective options for one connection."""

    model_config = ConfigDict(frozen=True)

    case: Literal["natural"] = "natural"
    nulls: Literal["natural"] = "natural"
    errmode: Literal["exception"] = "exception"
    persistent: bool = True
    extra: dict[str, Any] = Field(default_factory=dict)


def resolve_options(options: Mapping[str, Any] | DriverOptions | None = None) -> DriverOptions:
    """Apply forced options and defaults to caller-supplied options.

    Caller values for ``case``, ``nulls`` and ``errmode`` are discarded.

    Examples:
        >>> resolve_options({"case": "upper", "echo": True}).case
        'natural'
        >>> resolve_options({"echo": True}).extra
        {'echo': True}
        >>> resolve_options({"persistent": False}).persistent
        False
    """
    if isinstance(options, DriverOptions):
        return options

    raw = dict(options or {})
    for key in FORCED_OPTIONS:
        raw.pop(key, None)
    persistent = bool(raw.pop("persistent", True))
    return DriverOptions(persistent=persistent, extra=raw)


def parse_url(db: str | None) -> str:
    """Normalise a connection descriptor into a SQLAlchemy URL string.

    Examples:
        >>> parse_url(None)
        'sqlite://'
        >>> parse_url("postgres://u:p@localhost/app")
        'postgresql://u:p@localhost/app'
    """
    if db is None or db in ("", "memory", ":memory:", "sqlite://", "sqlite:///:memory:"):
        return "sqlite://"

    if db.startswith("postgres://"):
        return "postgresql://" + db[len("postgres://"):]

    if "://" in db:
        return db

    # Bare file path — treat as SQLite file
    path = Path(db)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path.resolve()}"


def safe_url(url: str) -> str:
    """Render ``url`` with the password masked, for logging."""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return url


def create_driver_engine(url: str, options: DriverOptions) -> Engine:
    """Create the SQLAlchemy engine backing a ``Connection``.

    Raises whatever ``create_engine`` raises (``ArgumentError``,
    ``NoSuchModuleError``, ``TypeError`` for unknown keyword options);
    ``Connection`` wraps those into ``ConnectError``.
    """
    kwargs = dict(options.extra)
    is_sqlite = url.startswith("sqlite")

    if is_sqlite:
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args

    if not options.persistent:
        kwargs["poolclass"] = NullPool

    engine = create_engine(url, **kwargs)

    if is_sqlite:

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


__all__ = [
    "FORCED_OPTIONS",
    "DriverOptions",
    "resolve_options",
    "parse_url",
    "safe_url",
    "create_driver_engine",
]
