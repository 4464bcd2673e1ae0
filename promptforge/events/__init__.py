"""Analytics event log."""

from .recorder import (
    EventRecord,
    EventRecorder,
    EventType,
    init_event_recorder,
    shutdown_event_recorder,
)

__all__ = [
    "EventType",
    "EventRecord",
    "EventRecorder",
    "init_event_recorder",
    "shutdown_event_recorder",
]
