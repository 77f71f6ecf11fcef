"""Run monitoring: event dispatch for CLI (JSONL), WebSocket (live UI) and logging sinks.

Usage::

    from optout.monitoring.event_bus import EventBus, EventType, LoggingSink

    bus = EventBus()
    bus.add_sink(LoggingSink())
    await bus.emit(EventType.RUN_STARTED, {"brokers_total": 3}, run_id="abc123")
"""

from optout.monitoring.event_bus import Event, EventBus, EventSink, EventType, InMemorySink, JsonlSink, LoggingSink

__all__ = ["Event", "EventBus", "EventSink", "EventType", "InMemorySink", "JsonlSink", "LoggingSink"]
