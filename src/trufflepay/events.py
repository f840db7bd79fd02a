"""
Event sinks for the activity feed.

Components receive a sink explicitly instead of appending to a process-wide
list, so each one can be tested with its own ``MemoryEventSink``.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Event:
    """An observation emitted by the gateway or negotiation engine."""

    topic: str
    payload: dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "payload": self.payload, "timestamp": self.timestamp}


@runtime_checkable
class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class NullEventSink:
    def emit(self, event: Event) -> None:
        return None


class MemoryEventSink:
    """Bounded in-memory feed backing the dashboard endpoint."""

    def __init__(self, maxlen: int = 500):
        self._events: deque[Event] = deque(maxlen=maxlen)

    def emit(self, event: Event) -> None:
        self._events.append(event)

    def recent(self, limit: int = 50) -> list[Event]:
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def topics(self) -> list[str]:
        return [event.topic for event in self._events]

    def clear(self) -> None:
        self._events.clear()


class LoggingEventSink:
    def emit(self, event: Event) -> None:
        logger.info("activity_event", topic=event.topic, **event.payload)


class FanOutEventSink:
    def __init__(self, *sinks: EventSink):
        self.sinks = sinks

    def emit(self, event: Event) -> None:
        for sink in self.sinks:
            sink.emit(event)
