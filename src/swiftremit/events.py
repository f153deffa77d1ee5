"""Notification events emitted after each committed state change."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol


class EventTopic(str, Enum):
    CREATED = "created"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    AGENT_REGISTERED = "agent_reg"
    AGENT_REMOVED = "agent_rem"
    FEE_UPDATED = "fee_upd"
    FEES_WITHDRAWN = "fees_with"
    LIMIT_UPDATED = "limit_upd"


@dataclass(frozen=True)
class Event:
    topic: EventTopic
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"topic": self.topic.value, "payload": dict(self.payload)}


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class EventLog:
    """In-memory sink that keeps every event in emission order."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of(self, topic: EventTopic) -> list[Event]:
        return [e for e in self.events if e.topic is topic]

    @property
    def last(self) -> Optional[Event]:
        return self.events[-1] if self.events else None


class FanOut:
    """Broadcast each event to several sinks."""

    def __init__(self, *sinks: EventSink):
        self.sinks = list(sinks)

    def emit(self, event: Event) -> None:
        for sink in self.sinks:
            sink.emit(event)
