"""
In-memory event bus connecting the dispatch components.

The state machine and the assignment queue publish events; the assignment
queue, the notification orchestrator and the realtime hub subscribe to them.
In a real deployment this would be a message broker (Redis streams, RabbitMQ,
Kafka).

Design decisions:
- Synchronous delivery; subscribers that do slow work hand it off to their
  own workers so publishing never waits on a channel provider
- Type-based subscriptions (subscribe to event types, not topics)
- Events are delivered to all subscribers in registration order
- Thread-safe: the subscriber table is copied under a lock and handlers run
  outside it
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

logger = logging.getLogger("event_bus")


@dataclass
class Event:
    """
    Base class for all events in the system.

    Events are immutable records of something that happened. They carry all the
    information subscribers need to react.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: String name of the event type (used for routing)
        timestamp: When the event occurred
        source: Which component published the event
        payload: The event-specific data
    """
    event_type: str
    payload: dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def __str__(self) -> str:
        return f"Event({self.event_type}, id={self.event_id[:8]}, source={self.source})"


# Type alias for event handler functions
EventHandler = Callable[[Event], None]


class EventBus:
    """
    Simple in-memory event bus implementing pub/sub.

    Example usage:
        bus = EventBus()

        def handle_status_change(event):
            print(f"Order event received: {event}")
        bus.subscribe("OrderStatusChanged", handle_status_change)

        bus.publish(Event(
            event_type="OrderStatusChanged",
            source="state-machine",
            payload={"order_id": "ord-001", "new_status": "confirmed"}
        ))
    """

    def __init__(self):
        """Initialize the event bus with empty subscriber lists."""
        # Map of event_type -> list of handlers
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

        # Track all events for debugging/replay
        self._event_log: list[Event] = []
        self._log_events: bool = True

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: The type of event to subscribe to (e.g., "OrderStatusChanged")
            handler: Function to call when an event of this type is published

        Note: The same handler can be subscribed multiple times (will be called multiple times).
        """
        with self._lock:
            self._subscribers[event_type].append(handler)
        logger.debug(f"Subscribed handler to '{event_type}' events")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to ALL events (useful for logging, debugging, or audit)."""
        with self._lock:
            self._subscribers["*"].append(handler)
        logger.debug("Subscribed handler to ALL events")

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """
        Unsubscribe a handler from an event type.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        with self._lock:
            try:
                self._subscribers[event_type].remove(handler)
            except ValueError:
                return False
        logger.debug(f"Unsubscribed handler from '{event_type}' events")
        return True

    def publish(self, event: Event) -> int:
        """
        Publish an event to all subscribers.

        Returns:
            Number of handlers that received the event

        Note: Handlers are called synchronously in the order they subscribed.
        If a handler raises an exception, it's logged but doesn't stop other handlers.
        """
        with self._lock:
            if self._log_events:
                self._event_log.append(event)
            handlers = list(self._subscribers.get(event.event_type, []))
            handlers += self._subscribers.get("*", [])

        logger.info(f"Publishing: {event}")

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Handler raised exception for {event}: {e}")

        if not handlers:
            logger.warning(f"No handlers for event type '{event.event_type}'")

        return len(handlers)

    def get_subscriber_count(self, event_type: str) -> int:
        """Get the number of subscribers for an event type."""
        with self._lock:
            return len(self._subscribers.get(event_type, []))

    def get_event_log(self) -> list[Event]:
        """Get the log of all published events."""
        with self._lock:
            return self._event_log.copy()

    def get_events_of_type(self, event_type: str) -> list[Event]:
        return [e for e in self.get_event_log() if e.event_type == event_type]

    def clear_event_log(self) -> None:
        with self._lock:
            self._event_log.clear()

    def clear_subscribers(self) -> None:
        """Remove all subscribers (useful for testing)."""
        with self._lock:
            self._subscribers.clear()

    def set_logging(self, enabled: bool) -> None:
        """Enable or disable event logging."""
        self._log_events = enabled


# Module-level singleton for convenience
_default_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the default event bus singleton."""
    global _default_bus
    if _default_bus is None:
        _default_bus = EventBus()
    return _default_bus


def reset_event_bus() -> EventBus:
    """Reset the default event bus (useful for testing)."""
    global _default_bus
    _default_bus = EventBus()
    return _default_bus
