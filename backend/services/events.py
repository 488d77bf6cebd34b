"""
Survey Review Hub - Status Change Events

Emitted after a transition is committed, for notifications and statistics
invalidation. Delivery is fire-and-forget: the review service never blocks on
or retries a sink.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import List, Optional, Dict, Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChanged:
    record_id: str
    old_status: str
    new_status: str
    actor: Optional[str]
    action: str = ""
    assigned_user_id: Optional[str] = None
    occurred_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventSink(ABC):
    @abstractmethod
    def emit(self, event: StatusChanged) -> None:
        pass


class NullEventSink(EventSink):
    def emit(self, event: StatusChanged) -> None:
        return None


class InMemoryEventSink(EventSink):
    """Collects events; used by tests and the dashboard's recent feed."""

    def __init__(self, max_events: int = 1000):
        self.events: List[StatusChanged] = []
        self.max_events = max_events

    def emit(self, event: StatusChanged) -> None:
        self.events.append(event)
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]


class LoggingEventSink(EventSink):
    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def emit(self, event: StatusChanged) -> None:
        self.log.info(
            "Status changed: record=%s, %s -> %s (action=%s, actor=%s, assigned=%s)",
            event.record_id, event.old_status, event.new_status,
            event.action, event.actor, event.assigned_user_id
        )


class CompositeEventSink(EventSink):
    """
    Fans an event out to several sinks. A failing sink does not stop the
    others; failures are collected and re-raised together.
    """

    def __init__(self, sinks: List[EventSink]):
        self.sinks = list(sinks)

    def add(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    def emit(self, event: StatusChanged) -> None:
        errors = []
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception as e:
                errors.append(f"{type(sink).__name__}: {e}")
        if errors:
            raise EventDeliveryError(errors)


class EventDeliveryError(Exception):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors
