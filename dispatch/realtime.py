"""
Realtime broadcast hub.

Fans every order status change, rider movement and dispatch alert out to live
client connections, independently of the email/SMS/push decision. Delivery is
best-effort: no replay, no acknowledgement, and never gated by quiet hours.

Design decisions:
- Topics are a small closed set of typed values (OrderTopic, RiderLocationTopic,
  RoleTopic) instead of free-form strings
- Frames are pydantic models serialised to the JSON clients expect
  ({type, orderId, status | location, message?, timestamp})
- The topic registry is guarded by a lock; broadcasts copy the handles under
  the lock and send outside it
- A client handle buffers frames in a bounded queue and drops on full, so a
  slow client never blocks a broadcast
- The connection layer (websocket accept, auth, subscribe messages) is out of
  scope; it only needs register / unregister / drain
- There is no per-rider topic: delivery offers use role:rider and carry
  riderId, which the rider app filters on
"""

import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field

from dispatch.event_bus import Event, EventBus
from dispatch.events import EventTypes
from domain.config import Settings, get_settings
from domain.models import Location, UserRole
from domain.templates import status_message

logger = logging.getLogger("realtime")


# =============================================================================
# Topics
# =============================================================================

@dataclass(frozen=True)
class OrderTopic:
    """Everything about one order: status, rider assignment, rider position."""
    order_id: str

    @property
    def key(self) -> str:
        return f"order:{self.order_id}"


@dataclass(frozen=True)
class RiderLocationTopic:
    """Live position of the rider carrying one order."""
    order_id: str

    @property
    def key(self) -> str:
        return f"rider_location:{self.order_id}"


@dataclass(frozen=True)
class RoleTopic:
    """Dashboards for a whole role (vendor order feed, rider offers, admin alerts)."""
    role: UserRole

    @property
    def key(self) -> str:
        return f"role:{UserRole(self.role).value}"


Topic = Union[OrderTopic, RiderLocationTopic, RoleTopic]


class RealtimeFrame(BaseModel):
    """One JSON message pushed to subscribed clients."""
    model_config = ConfigDict(populate_by_name=True)

    type: str
    order_id: Optional[str] = Field(default=None, alias="orderId")
    rider_id: Optional[str] = Field(default=None, alias="riderId")
    status: Optional[str] = None
    location: Optional[Location] = None
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# =============================================================================
# Client handles
# =============================================================================

class ClientHandle(Protocol):
    def offer(self, message: str) -> bool:
        """Accept a frame without blocking. False if it was dropped."""
        ...


class ClientConnection:
    """
    A connected client with a bounded outbound buffer.

    The hub offers frames; the connection layer's writer drains them. When the
    buffer is full new frames are dropped and counted.
    """

    def __init__(self, client_id: str, buffer_size: int = 100):
        self.client_id = client_id
        self._buffer: queue.Queue = queue.Queue(maxsize=buffer_size)
        self._lock = threading.Lock()
        self.dropped = 0

    def offer(self, message: str) -> bool:
        try:
            self._buffer.put_nowait(message)
        except queue.Full:
            with self._lock:
                self.dropped += 1
            logger.warning(f"Client {self.client_id} buffer full; frame dropped")
            return False
        return True

    def drain(self) -> list[str]:
        """Take every buffered frame, oldest first."""
        messages = []
        while True:
            try:
                messages.append(self._buffer.get_nowait())
            except queue.Empty:
                return messages

    @property
    def pending(self) -> int:
        return self._buffer.qsize()

    def __repr__(self) -> str:
        return f"ClientConnection({self.client_id})"


# =============================================================================
# Hub
# =============================================================================

class RealtimeHub:
    """
    Topic registry and broadcaster.

    Example:
        hub = RealtimeHub()
        client = hub.connect("browser-1")
        hub.register(OrderTopic("ord-001"), client)

        hub.broadcast(OrderTopic("ord-001"), RealtimeFrame(type="order_update", ...))
        client.drain()   # ['{"type":"order_update","orderId":"ord-001",...}']
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._subscribers: dict[str, list[ClientHandle]] = {}
        self._lock = threading.Lock()
        self._event_bus: Optional[EventBus] = None

        self._handlers = {
            EventTypes.ORDER_PLACED: self._on_order_placed,
            EventTypes.ORDER_STATUS_CHANGED: self._on_order_status_changed,
            EventTypes.ASSIGNMENT_OFFERED: self._on_assignment_offered,
            EventTypes.RIDER_ASSIGNED: self._on_rider_assigned,
            EventTypes.ASSIGNMENT_EXHAUSTED: self._on_assignment_exhausted,
            EventTypes.RIDER_LOCATION_UPDATED: self._on_rider_location_updated,
            EventTypes.RIDER_NEARBY: self._on_rider_nearby,
        }

    def connect(self, client_id: str) -> ClientConnection:
        """Build a handle with the configured buffer size."""
        return ClientConnection(client_id, buffer_size=self.settings.realtime_client_buffer)

    def register(self, topic: Topic, handle: ClientHandle) -> None:
        with self._lock:
            handles = self._subscribers.setdefault(topic.key, [])
            if handle not in handles:
                handles.append(handle)
        logger.debug(f"{handle!r} subscribed to {topic.key}")

    def unregister(self, topic: Topic, handle: ClientHandle) -> bool:
        with self._lock:
            handles = self._subscribers.get(topic.key, [])
            if handle not in handles:
                return False
            handles.remove(handle)
            if not handles:
                del self._subscribers[topic.key]
        logger.debug(f"{handle!r} unsubscribed from {topic.key}")
        return True

    def unregister_all(self, handle: ClientHandle) -> int:
        """Drop a disconnected client from every topic. Returns how many it left."""
        removed = 0
        with self._lock:
            for key in list(self._subscribers):
                handles = self._subscribers[key]
                if handle in handles:
                    handles.remove(handle)
                    removed += 1
                if not handles:
                    del self._subscribers[key]
        return removed

    def subscriber_count(self, topic: Topic) -> int:
        with self._lock:
            return len(self._subscribers.get(topic.key, []))

    def broadcast(self, topic: Topic, frame: RealtimeFrame) -> int:
        """
        Send a frame to every handle registered for topic.

        Returns:
            Number of handles that accepted the frame
        """
        with self._lock:
            handles = list(self._subscribers.get(topic.key, []))
        if not handles:
            return 0

        message = frame.to_json()
        delivered = 0
        for handle in handles:
            try:
                if handle.offer(message):
                    delivered += 1
            except Exception as e:
                logger.error(f"Realtime send to {handle!r} on {topic.key} failed: {e}")

        logger.debug(f"Broadcast {frame.type} on {topic.key} to {delivered}/{len(handles)} clients")
        return delivered

    # =========================================================================
    # Event bridge
    # =========================================================================

    def start(self, event_bus: EventBus) -> None:
        """Subscribe to the bus; every relevant event becomes a frame."""
        if self._event_bus is not None:
            logger.warning("RealtimeHub already started")
            return
        for event_type, handler in self._handlers.items():
            event_bus.subscribe(event_type, handler)
        self._event_bus = event_bus
        logger.info("RealtimeHub started - subscribed to events")

    def stop(self) -> None:
        if self._event_bus is None:
            return
        for event_type, handler in self._handlers.items():
            self._event_bus.unsubscribe(event_type, handler)
        self._event_bus = None
        logger.info("RealtimeHub stopped")

    def _on_order_status_changed(self, event: Event) -> None:
        payload = event.payload
        frame = RealtimeFrame(
            type="order_update",
            order_id=payload["order_id"],
            status=payload["new_status"],
            message=status_message(payload["new_status"], payload["restaurant_name"]),
            timestamp=event.timestamp,
        )
        self.broadcast(OrderTopic(payload["order_id"]), frame)
        self.broadcast(RoleTopic(UserRole.ADMIN), frame)

    def _on_order_placed(self, event: Event) -> None:
        payload = event.payload
        self.broadcast(RoleTopic(UserRole.VENDOR), RealtimeFrame(
            type="new_order",
            order_id=payload["order_id"],
            status="pending",
            message=f"New order with {payload['item_count']} item(s)",
            data={"vendorId": payload["vendor_id"], "totalAmount": payload["total_amount"]},
            timestamp=event.timestamp,
        ))

    def _on_assignment_offered(self, event: Event) -> None:
        """
        Offers go out on the shared rider feed; each rider app keeps only the
        frames whose riderId is its own. The frame carries no customer data.
        """
        payload = event.payload
        self.broadcast(RoleTopic(UserRole.RIDER), RealtimeFrame(
            type="order_assigned",
            order_id=payload["order_id"],
            rider_id=payload["rider_id"],
            message=f"Pickup from {payload['restaurant_name']} - {payload['distance_km']:.1f} km away",
            data={
                "distanceKm": payload["distance_km"],
                "timeoutSeconds": payload["timeout_seconds"],
            },
            timestamp=event.timestamp,
        ))

    def _on_rider_assigned(self, event: Event) -> None:
        payload = event.payload
        self.broadcast(OrderTopic(payload["order_id"]), RealtimeFrame(
            type="rider_assigned",
            order_id=payload["order_id"],
            rider_id=payload["rider_id"],
            message=f"{payload['rider_name']} will deliver your order",
            timestamp=event.timestamp,
        ))

    def _on_assignment_exhausted(self, event: Event) -> None:
        payload = event.payload
        self.broadcast(RoleTopic(UserRole.ADMIN), RealtimeFrame(
            type="assignment_exhausted",
            order_id=payload["order_id"],
            message=f"No rider after {payload['attempts']} attempts; manual dispatch needed",
            data={"attempts": payload["attempts"], "radiusKm": payload["radius_km"]},
            timestamp=event.timestamp,
        ))

    def _on_rider_location_updated(self, event: Event) -> None:
        payload = event.payload
        frame = RealtimeFrame(
            type="rider_location_update",
            order_id=payload["order_id"],
            rider_id=payload["rider_id"],
            location=Location(**payload["location"]),
            timestamp=event.timestamp,
        )
        self.broadcast(RiderLocationTopic(payload["order_id"]), frame)
        self.broadcast(OrderTopic(payload["order_id"]), frame)

    def _on_rider_nearby(self, event: Event) -> None:
        payload = event.payload
        frame = RealtimeFrame(
            type="rider_nearby",
            order_id=payload["order_id"],
            rider_id=payload["rider_id"],
            location=Location(**payload["location"]),
            message=f"Your rider {payload['rider_name']} is nearby! ETA: {payload['eta_minutes']:.0f} min",
            timestamp=event.timestamp,
        )
        self.broadcast(RiderLocationTopic(payload["order_id"]), frame)
        self.broadcast(OrderTopic(payload["order_id"]), frame)
