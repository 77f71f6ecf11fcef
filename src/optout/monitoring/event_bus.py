"""Event bus: decouples the run engine and recorder from consumers (CLI, WebSocket, logs).

* Type-safe event types via ``EventType`` enum.
* Multiple sink pattern: a single bus emits to all registered
  ``EventSink`` implementations (JSONL file, WebSocket broadcaster, logger).
* Emission is awaited sink by sink, so a single emitting task delivers
  events to every sink in the order it emitted them.
* A sink that raises is logged and skipped; it never breaks the run.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from optout.models.run import OptOutComplete, OptOutProgress

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """All event types emitted by runs and recordings."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    PROGRESS = "progress"
    RUN_COMPLETED = "run_completed"

    # Recording
    RECORDING_STARTED = "recording_started"
    RECORDING_STOPPED = "recording_stopped"

    # Info
    LOG = "log"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Event payload model
# ---------------------------------------------------------------------------


class Event(BaseModel):
    """Structured event emitted by the event bus."""

    event_type: EventType
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    run_id: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    def to_jsonl(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        return self.model_dump_json()


# ---------------------------------------------------------------------------
# Sink protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class EventSink(Protocol):
    """Protocol for event consumers.

    Implementations may write to JSONL files, WebSocket connections,
    loggers, or in-memory buffers for testing.
    """

    async def handle_event(self, event: Event) -> None:
        """Process a single event."""
        ...


# ---------------------------------------------------------------------------
# Built-in sinks
# ---------------------------------------------------------------------------


class LoggingSink:
    """Emit events to the Python logger at DEBUG level."""

    def __init__(self, logger_name: str = "optout.events") -> None:
        self._logger = logging.getLogger(logger_name)

    async def handle_event(self, event: Event) -> None:
        """Log the event."""
        self._logger.debug(
            "[%s] %s: %s",
            event.run_id or "?",
            event.event_type.value,
            json.dumps(event.data, default=str)[:200],
        )


class InMemorySink:
    """Collect events in a list: useful for testing."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def handle_event(self, event: Event) -> None:
        """Append the event to the in-memory list."""
        self.events.append(event)

    def clear(self) -> None:
        """Clear all collected events."""
        self.events.clear()

    def of_type(self, event_type: EventType) -> list[Event]:
        """Return collected events of one type, in arrival order."""
        return [e for e in self.events if e.event_type == event_type]

    @property
    def count(self) -> int:
        """Return the number of collected events."""
        return len(self.events)


class JsonlSink:
    """Write events as JSONL lines to a file-like object.

    Works with ``sys.stdout``, ``sys.stderr``, or an open file handle.
    """

    def __init__(self, stream: Any) -> None:
        self._stream = stream

    async def handle_event(self, event: Event) -> None:
        """Write one JSON line to the stream."""
        self._stream.write(event.to_jsonl() + "\n")
        if hasattr(self._stream, "flush"):
            self._stream.flush()


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBus:
    """Central event dispatcher shared by the run engine, recorder and surfaces."""

    def __init__(self) -> None:
        self._sinks: list[EventSink] = []

    # ------------------------------------------------------------------
    # Sink management
    # ------------------------------------------------------------------

    def add_sink(self, sink: EventSink) -> None:
        """Register an event sink."""
        self._sinks.append(sink)

    def remove_sink(self, sink: EventSink) -> None:
        """Remove a previously registered sink."""
        self._sinks = [s for s in self._sinks if s is not sink]

    @property
    def sink_count(self) -> int:
        """Return the number of registered sinks."""
        return len(self._sinks)

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    async def emit(
        self,
        event_type: EventType | str,
        data: dict[str, Any] | None = None,
        *,
        run_id: str = "",
    ) -> None:
        """Emit an event to all registered sinks.

        Args:
            event_type: The event type (``EventType`` enum or raw string).
            data: Optional payload data.
            run_id: Run the event belongs to, if any.
        """
        # Normalise string → enum
        if isinstance(event_type, str):
            try:
                event_type = EventType(event_type)
            except ValueError:
                event_type = EventType.LOG

        event = Event(event_type=event_type, run_id=run_id, data=data or {})

        # Snapshot the list so a sink removing itself mid-emit is safe
        for sink in list(self._sinks):
            try:
                await sink.handle_event(event)
            except Exception as exc:
                logger.warning("EventBus sink error (%s): %s", type(sink).__name__, exc)

    async def emit_progress(self, progress: OptOutProgress) -> None:
        """Emit a ``PROGRESS`` event carrying *progress*."""
        await self.emit(EventType.PROGRESS, progress.model_dump(mode="json"), run_id=progress.run_id)

    async def emit_complete(self, complete: OptOutComplete) -> None:
        """Emit a ``RUN_COMPLETED`` event carrying *complete*."""
        await self.emit(EventType.RUN_COMPLETED, complete.model_dump(mode="json"), run_id=complete.run_id)
