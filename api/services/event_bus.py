"""In-process event bus for same-process side effects.

Nothing here is durable: a restart drops undelivered events. Anything that
must survive one has to be re-derivable from storage (pending feed items that
were never marked processed, for example).
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from shared.utils import generate_event_id, get_utc_now

logger = logging.getLogger(__name__)

NEW_FEED_ITEMS_DETECTED = "sources.feed_items.new_items_detected"
AUTOMATION_ACTION_REQUESTED = "automation.action_requested"


@dataclass
class DomainEvent:
    """Event delivered through the bus."""
    event_type: str
    aggregate_id: str
    aggregate_type: str
    data: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=generate_event_id)
    occurred_at: datetime = field(default_factory=get_utc_now)
    version: int = 1


def new_feed_items_detected(
    source_id: str,
    source_configuration: Dict[str, Any],
    new_feed_items: List[Dict[str, Any]],
    source_name: Optional[str] = None,
    source_type: Optional[str] = None,
    has_auto_generation: bool = False
) -> DomainEvent:
    """Build the event announcing freshly ingested feed items."""
    return DomainEvent(
        event_type=NEW_FEED_ITEMS_DETECTED,
        aggregate_id=source_id,
        aggregate_type="Source",
        data={
            "source_id": source_id,
            "source_name": source_name,
            "source_type": source_type,
            "source_configuration": source_configuration,
            "new_feed_items": new_feed_items,
            "total_new_items": len(new_feed_items),
        },
        metadata={"has_auto_generation": has_auto_generation},
    )


Handler = Union[Callable[[DomainEvent], Awaitable[None]], Any]


def _handler_name(handler: Handler) -> str:
    name = getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None)
    return name or type(handler).__name__


class EventBus:
    """Maps event type names to ordered handler lists."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_type: str, handler: Handler):
        """Register a handler (an async callable or an object with async ``handle``)."""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {_handler_name(handler)} to {event_type}")

    def unsubscribe(self, event_type: str, handler: Handler):
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[event_type]

    async def publish(self, event: DomainEvent):
        """Deliver to every subscriber concurrently; failures stay with their handler."""
        handlers = list(self._handlers.get(event.event_type, []))
        if not handlers:
            logger.debug(f"No handlers for {event.event_type}")
            return

        logger.info(f"Publishing {event.event_type} ({event.event_id}) to {len(handlers)} handler(s)")
        await asyncio.gather(*(self._deliver(handler, event) for handler in handlers))

    async def publish_many(self, events: List[DomainEvent]):
        """Publish events one after another to keep their order."""
        for event in events:
            await self.publish(event)

    async def _deliver(self, handler: Handler, event: DomainEvent):
        name = _handler_name(handler)
        started = time.monotonic()
        try:
            if callable(handler):
                await handler(event)
            else:
                await handler.handle(event)
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.debug(f"Handler {name} processed {event.event_id} in {duration_ms}ms")
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                f"Handler {name} failed for event {event.event_id} "
                f"({event.event_type}) after {duration_ms}ms: {e}"
            )

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    def registered_event_types(self) -> List[str]:
        return list(self._handlers.keys())

    def clear(self):
        self._handlers.clear()


_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Process-wide bus, created on first use."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus():
    """Drop the process-wide bus and all of its subscriptions."""
    global _event_bus
    if _event_bus is not None:
        _event_bus.clear()
    _event_bus = None
