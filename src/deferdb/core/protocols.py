"""
Protocol definitions for deferdb collaborators.

The core never depends on a concrete logger. It calls into an
``EventSink``: a structured, leveled side channel. Anything with the five
methods below satisfies the protocol (structural typing), so tests can
pass a plain recording object and applications can pass a structlog
adapter.

Manifesto:
    - **Side channel only:** A sink must never change control flow
    - **Structural typing:** No inheritance required
    - **No-op default:** Absence of a sink is always safe

Guardrails:
    ❌ DON'T: Raise from a sink method
    ✅ DO: Keep sinks cheap; they are called on every enqueue

Tags:
    protocols, event-sink, logging, structural-typing, deferdb
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventSink(Protocol):
    """
    Leveled structured event receiver.

    Each method takes an event name and keyword fields, mirroring the
    structlog ``BoundLogger`` calling convention.

    Examples:
        >>> class Recorder:
        ...     def __init__(self): self.events = []
        ...     def debug(self, event, **kw): self.events.append(("debug", event))
        ...     def info(self, event, **kw): self.events.append(("info", event))
        ...     def error(self, event, **kw): self.events.append(("error", event))
        ...     def alert(self, event, **kw): self.events.append(("alert", event))
        ...     def emergency(self, event, **kw): self.events.append(("emergency", event))
        >>> isinstance(Recorder(), EventSink)
        True
    """

    def debug(self, event: str, **fields: Any) -> None:
        """Verbose diagnostics (enqueue, cache hits)."""
        ...

    def info(self, event: str, **fields: Any) -> None:
        """Normal lifecycle events (connect, commit)."""
        ...

    def error(self, event: str, **fields: Any) -> None:
        """Failures surfaced to a synchronous caller."""
        ...

    def alert(self, event: str, **fields: Any) -> None:
        """Failures nobody is left to observe (end-of-life commit)."""
        ...

    def emergency(self, event: str, **fields: Any) -> None:
        """The connection itself is unusable."""
        ...


__all__ = ["EventSink"]
