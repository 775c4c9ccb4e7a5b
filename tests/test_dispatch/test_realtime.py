"""
Tests for the realtime hub.
"""

import json
from datetime import datetime

import pytest

from dispatch.event_bus import EventBus
from dispatch.events import (
    assignment_exhausted,
    assignment_offered,
    order_placed,
    rider_assigned,
    rider_location_updated,
    rider_nearby,
)
from dispatch.realtime import (
    ClientConnection,
    OrderTopic,
    RealtimeFrame,
    RealtimeHub,
    RiderLocationTopic,
    RoleTopic,
)
from dispatch.state_machine import OrderStateMachine
from domain.config import Settings
from domain.models import AssignmentRequest, Location, OrderStatus, UserRole
from tests.conftest import RESTAURANT_LOCATION


@pytest.fixture
def hub(settings: Settings, event_bus: EventBus) -> RealtimeHub:
    hub = RealtimeHub(settings=settings)
    hub.start(event_bus)
    yield hub
    hub.stop()


def frames(client: ClientConnection) -> list[dict]:
    return [json.loads(message) for message in client.drain()]


class TestTopics:

    def test_keys(self):
        assert OrderTopic("ord-001").key == "order:ord-001"
        assert RiderLocationTopic("ord-001").key == "rider_location:ord-001"
        assert RoleTopic(UserRole.ADMIN).key == "role:admin"

    def test_topics_are_values(self):
        assert OrderTopic("ord-001") == OrderTopic("ord-001")
        assert OrderTopic("ord-001").key != RiderLocationTopic("ord-001").key


class TestRealtimeFrame:

    def test_json_uses_client_field_names(self):
        frame = RealtimeFrame(
            type="order_update",
            order_id="ord-001",
            status="ready",
            timestamp=datetime(2024, 3, 15, 12, 0),
        )

        data = json.loads(frame.to_json())

        assert data == {
            "type": "order_update",
            "orderId": "ord-001",
            "status": "ready",
            "timestamp": "2024-03-15T12:00:00",
        }

    def test_accepts_alias(self):
        frame = RealtimeFrame(type="rider_nearby", orderId="ord-003", riderId="rider-002")
        assert frame.order_id == "ord-003"
        assert frame.rider_id == "rider-002"


class TestClientConnection:

    def test_drain_in_order(self):
        client = ClientConnection("c1")
        client.offer("a")
        client.offer("b")

        assert client.pending == 2
        assert client.drain() == ["a", "b"]
        assert client.drain() == []

    def test_drops_when_full(self):
        client = ClientConnection("slow", buffer_size=2)

        assert client.offer("1") is True
        assert client.offer("2") is True
        assert client.offer("3") is False

        assert client.dropped == 1
        assert client.drain() == ["1", "2"]


class TestRegistry:

    def test_register_and_broadcast(self, hub: RealtimeHub):
        client = hub.connect("browser-1")
        hub.register(OrderTopic("ord-001"), client)

        delivered = hub.broadcast(OrderTopic("ord-001"), RealtimeFrame(type="order_update", order_id="ord-001"))

        assert delivered == 1
        assert frames(client)[0]["orderId"] == "ord-001"

    def test_register_twice_delivers_once(self, hub: RealtimeHub):
        client = hub.connect("browser-1")
        hub.register(OrderTopic("ord-001"), client)
        hub.register(OrderTopic("ord-001"), client)

        assert hub.subscriber_count(OrderTopic("ord-001")) == 1

    def test_other_topics_not_delivered(self, hub: RealtimeHub):
        client = hub.connect("browser-1")
        hub.register(OrderTopic("ord-001"), client)

        assert hub.broadcast(OrderTopic("ord-002"), RealtimeFrame(type="order_update")) == 0
        assert client.drain() == []

    def test_unregister(self, hub: RealtimeHub):
        client = hub.connect("browser-1")
        hub.register(OrderTopic("ord-001"), client)

        assert hub.unregister(OrderTopic("ord-001"), client) is True
        assert hub.unregister(OrderTopic("ord-001"), client) is False
        assert hub.subscriber_count(OrderTopic("ord-001")) == 0

    def test_unregister_all(self, hub: RealtimeHub):
        client = hub.connect("browser-1")
        other = hub.connect("browser-2")
        hub.register(OrderTopic("ord-001"), client)
        hub.register(RiderLocationTopic("ord-001"), client)
        hub.register(OrderTopic("ord-001"), other)

        assert hub.unregister_all(client) == 2
        assert hub.subscriber_count(OrderTopic("ord-001")) == 1
        assert hub.subscriber_count(RiderLocationTopic("ord-001")) == 0

    def test_broken_handle_does_not_stop_broadcast(self, hub: RealtimeHub):
        class BrokenHandle:
            def offer(self, message):
                raise ConnectionResetError("socket closed")

        good = hub.connect("good")
        hub.register(OrderTopic("ord-001"), BrokenHandle())
        hub.register(OrderTopic("ord-001"), good)

        delivered = hub.broadcast(OrderTopic("ord-001"), RealtimeFrame(type="order_update"))

        assert delivered == 1
        assert len(good.drain()) == 1

    def test_slow_client_does_not_affect_others(self, event_bus):
        hub = RealtimeHub(settings=Settings(realtime_client_buffer=1))
        slow = hub.connect("slow")
        fast = hub.connect("fast")
        hub.register(OrderTopic("ord-001"), slow)
        hub.register(OrderTopic("ord-001"), fast)

        for _ in range(3):
            hub.broadcast(OrderTopic("ord-001"), RealtimeFrame(type="order_update"))
            fast.drain()

        assert slow.dropped == 2
        assert fast.dropped == 0


class TestEventBridge:

    def test_status_change(self, hub, event_bus, data_store):
        machine = OrderStateMachine(event_bus=event_bus, data_store=data_store)
        customer = hub.connect("customer")
        admin = hub.connect("admin")
        hub.register(OrderTopic("ord-001"), customer)
        hub.register(RoleTopic(UserRole.ADMIN), admin)

        machine.transition("ord-001", OrderStatus.CONFIRMED, actor_id="vendor-001")

        frame = frames(customer)[0]
        assert frame["type"] == "order_update"
        assert frame["orderId"] == "ord-001"
        assert frame["status"] == "confirmed"
        assert frame["message"] == "Great news! Lomi Haus has confirmed your order."
        assert frames(admin)[0]["status"] == "confirmed"

    def test_realtime_ignores_quiet_hours_and_preferences(self, hub, event_bus, data_store):
        """Ana switched order updates off, but her tracking page still updates."""
        machine = OrderStateMachine(event_bus=event_bus, data_store=data_store)
        page = hub.connect("ana")
        hub.register(OrderTopic("ord-003"), page)

        machine.transition("ord-003", OrderStatus.IN_TRANSIT, actor_id="rider-002")

        assert frames(page)[0]["status"] == "in_transit"

    def test_order_placed_reaches_vendors(self, hub, event_bus, data_store):
        vendor = hub.connect("vendor")
        hub.register(RoleTopic(UserRole.VENDOR), vendor)

        event_bus.publish(order_placed(data_store.get_order("ord-001")))

        frame = frames(vendor)[0]
        assert frame["type"] == "new_order"
        assert frame["data"]["totalAmount"] == 450.0

    def test_offer_reaches_riders(self, hub, event_bus):
        riders = hub.connect("rider-app")
        hub.register(RoleTopic(UserRole.RIDER), riders)
        request = AssignmentRequest(
            order_id="ord-002",
            search_radius_km=5.0,
            max_radius_km=15.0,
            restaurant_location=RESTAURANT_LOCATION,
            delivery_location=Location(lat=13.75, lng=121.05),
        )

        event_bus.publish(assignment_offered(request, "rider-001", 1.0, 45.0, "Lomi Haus"))

        frame = frames(riders)[0]
        assert frame["type"] == "order_assigned"
        assert frame["riderId"] == "rider-001"
        assert frame["data"]["timeoutSeconds"] == 45.0

    def test_offer_frame_is_addressed_but_carries_no_customer_data(self, hub, event_bus):
        """Every rider app sees the shared feed and keeps only frames with its own riderId."""
        riders = hub.connect("rider-app")
        hub.register(RoleTopic(UserRole.RIDER), riders)
        request = AssignmentRequest(
            order_id="ord-002",
            search_radius_km=5.0,
            max_radius_km=15.0,
            restaurant_location=RESTAURANT_LOCATION,
            delivery_location=Location(lat=13.75, lng=121.05),
        )

        event_bus.publish(assignment_offered(request, "rider-002", 2.0, 45.0, "Lomi Haus"))

        frame = frames(riders)[0]
        assert set(frame) == {"type", "orderId", "riderId", "message", "data", "timestamp"}
        assert set(frame["data"]) == {"distanceKm", "timeoutSeconds"}
        assert frame["riderId"] == "rider-002"

    def test_rider_assigned(self, hub, event_bus, data_store):
        page = hub.connect("customer")
        hub.register(OrderTopic("ord-001"), page)

        event_bus.publish(rider_assigned(data_store.get_order("ord-001"), "rider-001", "Carlo Mendoza"))

        frame = frames(page)[0]
        assert frame["type"] == "rider_assigned"
        assert frame["message"] == "Carlo Mendoza will deliver your order"

    def test_exhausted_reaches_admins(self, hub, event_bus):
        admin = hub.connect("admin")
        hub.register(RoleTopic(UserRole.ADMIN), admin)
        request = AssignmentRequest(
            order_id="ord-002",
            search_radius_km=15.0,
            max_radius_km=15.0,
            restaurant_location=RESTAURANT_LOCATION,
            delivery_location=Location(lat=13.75, lng=121.05),
            attempts=3,
        )

        event_bus.publish(assignment_exhausted(request))

        frame = frames(admin)[0]
        assert frame["type"] == "assignment_exhausted"
        assert frame["data"] == {"attempts": 3, "radiusKm": 15.0}

    def test_location_update_reaches_both_topics(self, hub, event_bus):
        tracker_view = hub.connect("map")
        order_page = hub.connect("page")
        hub.register(RiderLocationTopic("ord-003"), tracker_view)
        hub.register(OrderTopic("ord-003"), order_page)

        event_bus.publish(rider_location_updated("ord-003", "rider-002", Location(lat=13.75, lng=121.06)))

        for client in (tracker_view, order_page):
            frame = frames(client)[0]
            assert frame["type"] == "rider_location_update"
            assert frame["location"] == {"lat": 13.75, "lng": 121.06}

    def test_rider_nearby(self, hub, event_bus, data_store):
        page = hub.connect("page")
        tracker_view = hub.connect("map")
        hub.register(OrderTopic("ord-003"), page)
        hub.register(RiderLocationTopic("ord-003"), tracker_view)

        event_bus.publish(rider_nearby(
            data_store.get_order("ord-003"), "rider-002", "Dina Flores",
            location=Location(lat=13.7455, lng=121.0600),
            distance_km=0.06,
            eta_minutes=0.1,
        ))

        frame = frames(page)[0]
        assert frame["type"] == "rider_nearby"
        assert frame["message"] == "Your rider Dina Flores is nearby! ETA: 0 min"
        assert frames(tracker_view)[0]["type"] == "rider_nearby"

    def test_stop_unsubscribes(self, settings, event_bus, data_store):
        hub = RealtimeHub(settings=settings)
        hub.start(event_bus)
        client = hub.connect("page")
        hub.register(OrderTopic("ord-001"), client)

        hub.stop()
        OrderStateMachine(event_bus=event_bus, data_store=data_store).transition(
            "ord-001", OrderStatus.CONFIRMED, actor_id="vendor-001"
        )

        assert client.drain() == []
