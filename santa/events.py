import threading
from collections import deque
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

import structlog

from .models import EventRecord, LedgerEvent

log = structlog.get_logger(__name__)


class EventSink(Protocol):
    def emit(self, event: LedgerEvent) -> None: ...


class InMemoryEventSink:
    def __init__(self, max_events: int = 1000):
        self._events: deque[EventRecord] = deque(maxlen=max_events)
        self._sequence = 0
        self._lock = threading.Lock()

    def emit(self, event: LedgerEvent) -> None:
        with self._lock:
            self._sequence += 1
            self._events.append(EventRecord(
                sequence=self._sequence,
                emitted_at=datetime.now(timezone.utc),
                event=event,
            ))

    def recent(self, limit: int = 50, offset: int = 0) -> list[EventRecord]:
        with self._lock:
            newest_first = list(reversed(self._events))
        return newest_first[offset:offset + limit]

    def __len__(self) -> int:
        return len(self._events)


class LoggingEventSink:
    def emit(self, event: LedgerEvent) -> None:
        log.info("ledger_event", **event.model_dump(mode="json"))


class FanOutEventSink:
    """Delivers to every sink; a failing sink never reaches the caller."""

    def __init__(self, sinks: Optional[Iterable[EventSink]] = None):
        self.sinks: list[EventSink] = list(sinks or [])

    def emit(self, event: LedgerEvent) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception:
                log.exception("event_sink_failed", sink=type(sink).__name__, kind=event.kind)
