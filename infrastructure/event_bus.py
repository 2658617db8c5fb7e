"""
Lightweight event bus for link mutation and recompute notifications.

Follows publisher-subscriber pattern so a live view can react to changes
without the engine knowing about it.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Supports both sync and async handlers
- Non-blocking (async handlers scheduled via create_task)
- Singleton for global access
- Type-safe events via msgspec

Architecture:
    LinkRepository / MessageGraph -> EventBus -> [UI refresh, audit log, ...]

Usage:
    from infrastructure.event_bus import get_event_bus, EventType

    def on_link_created(event):
        print(event.payload["link_id"])

    get_event_bus().subscribe(EventType.LINK_CREATED, on_link_created)
"""
from typing import Callable, List, Dict, Any, Optional, Set
from enum import Enum
import msgspec
import asyncio
import time
from collections import defaultdict
import logging


logger = logging.getLogger("lineage.event_bus")


class EventType(str, Enum):
    """Types of events published by the engine."""
    LINK_CREATED = "link_created"
    LINKS_CREATED = "links_created"
    LINK_UPDATED = "link_updated"
    LINK_DELETED = "link_deleted"
    LINKS_LOADED = "links_loaded"
    MESSAGES_LOADED = "messages_loaded"
    GRAPH_RECOMPUTED = "graph_recomputed"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    Event emitted when links or the assembled graph change.

    Attributes:
        type: Type of event (LINK_CREATED, GRAPH_RECOMPUTED, etc.)
        payload: Event-specific data (link_id, group_count, etc.)
        timestamp: Unix timestamp when event occurred
        source: Source of event ("link_repository", "message_graph")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float = msgspec.field(default_factory=time.time)
    source: str = "unknown"


class EventBus:
    """
    Event bus for engine change notifications.

    Thread Safety:
        NOT thread-safe. The engine is single-threaded; async handlers are
        scheduled on the running loop.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._async_subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        # Scheduled async handlers; a reference is held until each one finishes
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: Callable[[GraphEvent], None]):
        """Subscribe to events with a synchronous handler."""
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed sync handler to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: Callable[[GraphEvent], Any]):
        """Subscribe to events with an async handler."""
        if handler not in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].append(handler)
            logger.debug(f"Subscribed async handler to {event_type.value}")

    def publish(self, event: GraphEvent):
        """
        Publish an event to all subscribers.

        Note:
            - Sync handlers run immediately (blocking)
            - Async handlers are scheduled on the running loop
            - Exceptions in handlers are logged but don't propagate
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in sync handler for {event.type.value}: {e}",
                    exc_info=True
                )

        for handler in list(self._async_subscribers[event.type]):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"Cannot schedule async handler for {event.type.value}: "
                    "no event loop running"
                )
                continue
            try:
                task = loop.create_task(handler(event))
            except Exception as e:
                logger.error(
                    f"Error scheduling async handler for {event.type.value}: {e}",
                    exc_info=True
                )
                continue
            self._pending.add(task)
            task.add_done_callback(self._make_done_callback(event.type))

    def _make_done_callback(self, event_type: EventType) -> Callable[[asyncio.Task], None]:
        def _on_done(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.error(
                    f"Error in async handler for {event_type.value}: {error}",
                    exc_info=error
                )
        return _on_done

    @property
    def pending_count(self) -> int:
        """Async handlers scheduled but not yet finished."""
        return len(self._pending)

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """Unsubscribe a handler (must be the same instance)."""
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed sync handler from {event_type.value}")

        if handler in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed async handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None):
        """
        Clear all subscribers for an event type (or all types).

        Warning:
            This is primarily for testing.
        """
        if event_type is None:
            self._subscribers.clear()
            self._async_subscribers.clear()
            logger.info("Cleared all event subscribers")
        else:
            self._subscribers[event_type].clear()
            self._async_subscribers[event_type].clear()
            logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """Count of subscribers (sync + async) for a type, or for all types."""
        if event_type is None:
            total = sum(len(handlers) for handlers in self._subscribers.values())
            total += sum(len(handlers) for handlers in self._async_subscribers.values())
            return total
        return (
            len(self._subscribers[event_type]) +
            len(self._async_subscribers[event_type])
        )


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance (singleton)."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
        logger.info("Initialized global event bus")
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global bus and all of its subscribers."""
    global _event_bus
    _event_bus = None


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def publish_event(
    event_type: EventType,
    payload: Dict[str, Any],
    source: str = "unknown",
    bus: Optional[EventBus] = None,
):
    """Publish an event on `bus` (default: the global bus)."""
    (bus or get_event_bus()).publish(GraphEvent(
        type=event_type,
        payload=payload,
        timestamp=time.time(),
        source=source,
    ))
