"""Structured notifications for every gateway state mutation.

Every mutation (submodule change, window open, flag recorded, quorum or
duration change, watcher configuration, delivery) is published as a
GatewayEvent carrying the mutated identifiers. Sinks are pluggable:

- MemorySink: keeps events in a list (tests, embedding applications)
- LoggingSink: one structured log record per event
- AuditLogSink: appends to the tamper-evident audit log

A failing sink is logged and skipped. Events are emitted after the state
change is committed, and a sink cannot roll that change back.
"""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .audit_log import TamperEvidentAuditLog

logger = logging.getLogger("ogp_gateway")

SUBMODULE_CHANGED = "submodule_changed"
WINDOW_OPENED = "window_opened"
SUBMODULE_FLAGGED = "submodule_flagged"
MESSAGE_FLAGGED = "message_flagged"
QUORUM_CHANGED = "quorum_changed"
WINDOW_DURATION_CHANGED = "window_duration_changed"
WATCHERS_CONFIGURED = "watchers_configured"
MESSAGE_DELIVERED = "message_delivered"


@dataclass(frozen=True)
class GatewayEvent:
    name: str
    ts: int
    fields: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"event": self.name, "ts": self.ts}
        d.update(self.fields)
        return d


class EventSink(abc.ABC):
    """Receiver of gateway events."""

    @abc.abstractmethod
    def publish(self, event: GatewayEvent) -> None:
        raise NotImplementedError


class MemorySink(EventSink):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: List[GatewayEvent] = []

    def publish(self, event: GatewayEvent) -> None:
        with self._lock:
            self.events.append(event)

    def named(self, name: str) -> List[GatewayEvent]:
        with self._lock:
            return [e for e in self.events if e.name == name]


class LoggingSink(EventSink):
    def __init__(self, level: int = logging.INFO, log: Optional[logging.Logger] = None):
        self.level = level
        self.log = log or logger

    def publish(self, event: GatewayEvent) -> None:
        self.log.log(self.level, "event %s %s", event.name, event.fields, extra={"ogp_event": event.as_dict()})


class AuditLogSink(EventSink):
    def __init__(self, audit_log: TamperEvidentAuditLog):
        self.audit_log = audit_log

    def publish(self, event: GatewayEvent) -> None:
        self.audit_log.append_event(event.as_dict())


class EventBus:
    """Fan-out of gateway events to registered sinks."""

    def __init__(self, sinks: Optional[List[EventSink]] = None):
        self._sinks: List[EventSink] = list(sinks or [])

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> List[EventSink]:
        return list(self._sinks)

    def emit(self, name: str, ts: int, **fields: Any) -> GatewayEvent:
        event = GatewayEvent(name=name, ts=int(ts), fields=fields)
        for sink in self._sinks:
            try:
                sink.publish(event)
            except Exception as e:
                logger.error("Event sink %s failed for %s: %s", type(sink).__name__, name, e)
        return event
