"""Structured diagnostic events for non-fatal synchronization warnings.

Fallback titles, duplicate identities, dropped fetch failures, and invalid
documents never interrupt a run. They are logged and published here so a
caller can subscribe to them instead of scraping log output.
"""

from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable

import structlog
from pydantic import BaseModel, Field

log = structlog.stdlib.get_logger()


class DiagnosticKind(str, Enum):
    """Categories of non-fatal warnings."""

    FALLBACK_TITLE = "fallback_title"
    DUPLICATE_IDENTITY = "duplicate_identity"
    FETCH_FAILED = "fetch_failed"
    INVALID_DOCUMENT = "invalid_document"
    ENTRY_SKIPPED = "entry_skipped"


class DiagnosticEvent(BaseModel):
    """A single non-fatal warning raised during a run."""

    kind: DiagnosticKind
    message: str
    identity: str | None = None
    path: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[DiagnosticEvent], None]


class DiagnosticChannel:
    """Publish/subscribe hub for DiagnosticEvents.

    Listeners are called synchronously in subscription order. Emission is
    thread-safe since fetch batches report from worker threads.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._events: list[DiagnosticEvent] = []
        self._lock = Lock()

    @property
    def events(self) -> list[DiagnosticEvent]:
        """Events emitted so far, oldest first."""
        with self._lock:
            return list(self._events)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Callable receiving each DiagnosticEvent

        Returns:
            Callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(
        self,
        kind: DiagnosticKind,
        message: str,
        identity: str | None = None,
        path: str | None = None,
        **context: Any,
    ) -> DiagnosticEvent:
        """
        Log a warning and deliver it to every listener.

        Args:
            kind: Warning category
            message: Human-readable description
            identity: Document identity concerned, if any
            path: Source path concerned, if any
            **context: Extra structured fields

        Returns:
            The emitted event
        """
        event = DiagnosticEvent(
            kind=kind, message=message, identity=identity, path=path, context=context
        )
        log.warning(kind.value, message=message, identity=identity, path=path, **context)

        with self._lock:
            self._events.append(event)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                log.error(
                    "diagnostic_listener_failed",
                    kind=kind.value,
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e),
                )

        return event

    def clear(self) -> None:
        """Drop recorded events; listeners stay subscribed. Call between runs."""
        with self._lock:
            self._events.clear()

    def of_kind(self, kind: DiagnosticKind) -> list[DiagnosticEvent]:
        """Events of a single kind emitted so far."""
        return [event for event in self.events if event.kind == kind]
