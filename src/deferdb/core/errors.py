"""
Structured error types for deferdb.

Every failure that crosses the driver boundary is caught where the driver
call happens, reported to the event sink with full context, and re-raised
as one of the typed errors below with the original exception chained as
``cause``.

Manifesto:
    - **Typed Error Hierarchy:** One error type per failure point
      (connect, prepare, dispatch, transaction, query)
    - **Rich Context:** Errors carry the query, bound values and entity kind
    - **Error Chaining:** The driver exception is never lost
    - **Programming errors stay loud:** Registry misuse fails fast

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        DeferError                             │
        │          (category, retryable, context, cause)                │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  DatabaseError (DATABASE)          ConfigError (CONFIG)       │
        │       │                                                       │
        │  ConnectError      PrepareError    RegistryError (INTERNAL)   │
        │  DispatchError     QueryError           │                     │
        │  TransactionError                  AlreadyInitializedError    │
        │  ConnectionClosedError             NotInitializedError        │
        │                                                               │
        │  RowReleasedError (INTERNAL)                                  │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> try:
    ...     raise ValueError("near 'SELEC': syntax error")
    ... except ValueError as e:
    ...     error = PrepareError("Can't prepare query", cause=e)
    >>> error.category
    <ErrorCategory.DATABASE: 'DATABASE'>
    >>> error.with_context(query="SELEC 1").context.query
    'SELEC 1'

Guardrails:
    ❌ DON'T: Swallow the driver exception
    ✅ DO: Pass it as cause= for error chaining

    ❌ DON'T: Catch AlreadyInitializedError to paper over double init
    ✅ DO: Call init() exactly once per entity kind

Tags:
    error-handling, exception-hierarchy, error-context, deferdb
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        DATABASE: Driver, statement or transaction failures
        CONFIG: Missing or invalid settings and migration plans
        INTERNAL: Programming errors (registry misuse, released rows)
        UNKNOWN: Uncategorized errors
    """

    DATABASE = "DATABASE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that were set are serialized by ``to_dict()``, so a
    context can be built up incrementally via ``DeferError.with_context``.

    Attributes:
        kind: Entity kind the failing operation belongs to
        query: SQL text of the failing statement
        values: Values bound to the failing statement
        statement_index: Position of the failing statement in the queue
        metadata: Additional key-value pairs
    """

    kind: str | None = None
    query: str | None = None
    values: dict[str, Any] | None = None
    statement_index: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["kind", "query", "values", "statement_index"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DeferError(Exception):
    """
    Base exception for all deferdb errors.

    Carries a category, a retryable flag, structured context and the
    chained cause. Subclasses set ``default_category`` and
    ``default_retryable``.

    Examples:
        >>> error = DeferError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["error_type"]
        'DeferError'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DeferError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueryError("Can't query database", cause=e).with_context(
                query=query, values=params
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(DeferError):
    """Database statement or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class ConnectError(DatabaseError):
    """Connection construction or authentication failed."""

    default_retryable = True


class PrepareError(DatabaseError):
    """Query text could not be compiled into a template."""


class DispatchError(DatabaseError):
    """A row could not be resolved into a queued statement."""


class TransactionError(DatabaseError):
    """Executing, committing or rolling back the queued statements failed.

    ``statement`` holds the queued statement that failed, if any.
    """

    def __init__(self, message: str, *, statement: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.statement = statement


class QueryError(DatabaseError):
    """An immediate (non-queued) read failed."""


class ConnectionClosedError(DatabaseError):
    """Operation attempted on a connection that was already closed."""


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(DeferError):
    """Invalid settings, driver options or migration plan."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# PROGRAMMING ERRORS
# =============================================================================


class RegistryError(DeferError):
    """Entity registry misuse."""

    default_category = ErrorCategory.INTERNAL


class AlreadyInitializedError(RegistryError):
    """``init()`` was called twice for the same entity kind."""


class NotInitializedError(RegistryError):
    """A registry was used before ``init()`` was called for its kind."""


class RowReleasedError(DeferError):
    """A row was modified after its end-of-life dispatch."""

    default_category = ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DeferError",
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
]
