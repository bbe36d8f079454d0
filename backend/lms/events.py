"""In-process domain events published by use-cases after commit."""
from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: str(uuid4()), kw_only=True)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), kw_only=True)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["event_type"] = type(self).__name__
        return payload


@dataclass(frozen=True)
class TrainingCompleted(DomainEvent):
    enrollment_id: UUID
    user_id: UUID
    module_id: UUID


@dataclass(frozen=True)
class ExamPassed(DomainEvent):
    enrollment_id: UUID
    user_id: UUID
    module_id: UUID
    score: float


@dataclass(frozen=True)
class ComplianceEscalated(DomainEvent):
    enrollment_id: UUID
    user_id: UUID
    module_id: UUID
    level: int
    target: str
    reason: str | None = None


EventHandler = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event class.

    A failing handler is logged and does not stop the other handlers; the
    publishing operation has already committed by the time handlers run.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {event_type.__name__}")

    def unsubscribe(self, event_type: type, handler: EventHandler) -> bool:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def handlers_for(self, event_type: type) -> list[EventHandler]:
        with self._lock:
            return list(self._handlers.get(event_type, []))

    def publish(self, event: DomainEvent) -> int:
        """Deliver an event to its subscribers. Returns the number of handlers that succeeded."""
        delivered = 0
        for handler in self.handlers_for(type(event)):
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)} failed for "
                    f"{type(event).__name__} {event.event_id}",
                    exc_info=True,
                )
        return delivered


event_bus = EventBus()


def publish(event: DomainEvent) -> int:
    return event_bus.publish(event)
