import logging
import threading
from typing import List, Optional, Protocol

from abengine.models.schemas.event import AnalyticsEvent

logger = logging.getLogger("abengine.events")


class EventSink(Protocol):
    """Where named analytics events go. Transport and storage are the sink's business."""

    def emit(self, event: AnalyticsEvent) -> None: ...


class LoggingEventSink:
    """Writes every event as one structured log line."""

    def emit(self, event: AnalyticsEvent) -> None:
        logger.info("%s %s", event.name, event.model_dump_json(exclude={"name"}))


class InMemoryEventSink:
    """Keeps emitted events in a list, for debugging tools and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[AnalyticsEvent] = []

    def emit(self, event: AnalyticsEvent) -> None:
        with self._lock:
            self.events.append(event)

    def named(self, name: str, experiment_id: Optional[str] = None) -> List[AnalyticsEvent]:
        return [
            e
            for e in self.events
            if e.name == name and (experiment_id is None or e.properties.get("test_id") == experiment_id)
        ]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()
