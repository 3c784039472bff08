"""
Batch Events
============

The engine reports batch progress through typed events. Each event kind has
its own frozen dataclass; `EventKind` carries the wire name used by
dashboards (``documentStarted``, ``completed``, ...).

Listeners subscribe to an `EventBus`. Emission is fire-and-forget: it works
with no listeners, and a failing listener is logged without affecting the
batch or the other listeners. Listeners run on the batch thread, so anything
slow should go through a `QueueListener` and be consumed elsewhere.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Union

import structlog

log = structlog.get_logger(__name__)


class EventKind(str, enum.Enum):
    STARTED = "started"
    DOCUMENT_STARTED = "documentStarted"
    DOCUMENT_COMPLETED = "documentCompleted"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class _Event:
    kind: ClassVar[EventKind]

    def to_dict(self) -> dict[str, Any]:
        payload = dataclasses.asdict(self)
        payload["kind"] = self.kind.value
        return payload


@dataclass(frozen=True)
class BatchStarted(_Event):
    kind: ClassVar[EventKind] = EventKind.STARTED

    session_id: str
    total_documents: int
    skipped_documents: int
    timestamp: dt.datetime = field(default_factory=_now)


@dataclass(frozen=True)
class DocumentStarted(_Event):
    kind: ClassVar[EventKind] = EventKind.DOCUMENT_STARTED

    document_id: int
    document_index: int
    total_documents: int
    timestamp: dt.datetime = field(default_factory=_now)


@dataclass(frozen=True)
class DocumentCompleted(_Event):
    kind: ClassVar[EventKind] = EventKind.DOCUMENT_COMPLETED

    result: dict[str, Any]
    progress: float
    processed_documents: int
    total_documents: int
    successful_documents: int
    failed_documents: int
    timestamp: dt.datetime = field(default_factory=_now)

    @property
    def document_id(self) -> int:
        return self.result["document_id"]


@dataclass(frozen=True)
class _BatchSummaryEvent(_Event):
    session_id: str | None
    total_documents: int
    processed_documents: int
    successful_documents: int
    failed_documents: int
    skipped_documents: int
    errors: list[dict[str, Any]]
    start_time: dt.datetime
    end_time: dt.datetime
    duration_ms: int


@dataclass(frozen=True)
class BatchCompleted(_BatchSummaryEvent):
    kind: ClassVar[EventKind] = EventKind.COMPLETED


@dataclass(frozen=True)
class BatchStopped(_BatchSummaryEvent):
    kind: ClassVar[EventKind] = EventKind.STOPPED


@dataclass(frozen=True)
class BatchFailed(_Event):
    kind: ClassVar[EventKind] = EventKind.ERROR

    session_id: str | None
    error: str
    timestamp: dt.datetime = field(default_factory=_now)


BatchEvent = Union[
    BatchStarted,
    DocumentStarted,
    DocumentCompleted,
    BatchCompleted,
    BatchStopped,
    BatchFailed,
]

Listener = Callable[[BatchEvent], None]


class EventBus:
    """Synchronous publish/subscribe channel for batch events."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: BatchEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                log.exception("Event listener failed", event_kind=event.kind.value)


class QueueListener:
    """
    Listener that hands events to a bounded queue without blocking.

    Events are dropped (and logged) when the queue is full.
    """

    def __init__(self, maxsize: int = 1000):
        self.queue: queue.Queue[BatchEvent] = queue.Queue(maxsize=maxsize)

    def __call__(self, event: BatchEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except queue.Full:
            log.warning("Event queue full; dropping event", event_kind=event.kind.value)

    def drain(self) -> list[BatchEvent]:
        """Return every queued event without waiting."""
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events
