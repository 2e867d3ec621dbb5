"""
Event bus for group lifecycle and analytics events.

Usage:
    bus = get_event_bus()
    bus.subscribe(EventType.GROUP_REOPENED, notify_on_call)
    await bus.publish(Event(EventType.GROUP_REOPENED, application_id, group_id))

Senior Engineering Note:
- The core publishes; it never imports a subscriber
- Handlers may be plain functions or coroutines
- A failing handler is logged and never reaches the publisher
"""
import asyncio
import enum
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

from errorscope.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    """Lifecycle events published by the core."""

    GROUP_CREATED = "group.created"
    GROUP_RECURRED = "group.recurred"
    GROUP_REOPENED = "group.reopened"
    GROUP_RESOLVED = "group.resolved"
    GROUP_VIEWED = "group.viewed"
    BASELINE_ALERT = "baseline.alert"
    CASCADE_DETECTED = "cascade.detected"


@dataclass(frozen=True)
class Event:
    event_type: EventType
    application_id: Optional[UUID] = None
    group_id: Optional[UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """In-process observer registry."""

    def __init__(self):
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)
        self._wildcard: list[Handler] = []

    def subscribe(self, event_type: Optional[EventType], handler: Handler) -> None:
        """Register a handler. event_type=None receives every event."""
        if event_type is None:
            self._wildcard.append(handler)
        else:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Optional[EventType], handler: Handler) -> None:
        handlers = self._wildcard if event_type is None else self._handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()
        self._wildcard.clear()

    async def publish(self, event: Event) -> int:
        """
        Deliver an event to its subscribers.

        Returns:
            Number of handlers that completed without error
        """
        handlers = [*self._handlers.get(event.event_type, ()), *self._wildcard]
        if not handlers:
            return 0

        results = await asyncio.gather(
            *(self._dispatch(handler, event) for handler in handlers),
            return_exceptions=True,
        )
        delivered = 0
        for handler, result in zip(handlers, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for {event.event_type.value}: {result}",
                    exc_info=result,
                    extra={"event_type": event.event_type.value},
                )
            else:
                delivered += 1
        return delivered

    @staticmethod
    async def _dispatch(handler: Handler, event: Event) -> None:
        result = handler(event)
        if inspect.isawaitable(result):
            await result


# Global bus instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
