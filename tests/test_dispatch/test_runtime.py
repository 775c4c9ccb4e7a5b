"""
End-to-end tests: the whole pipeline wired by DispatchRuntime.

A transition goes in; history, rider offers, notification records and
realtime frames come out.
"""

import json

import pytest

from dispatch.realtime import OrderTopic, RoleTopic
from dispatch.runtime import DispatchRuntime
from domain.config import Settings
from domain.errors import InvalidTransition
from domain.models import AssignmentStatus, Location, OrderStatus, UserRole


@pytest.fixture
def runtime(data_dir, timers, noon) -> DispatchRuntime:
    runtime = DispatchRuntime(
        settings=Settings(),
        data_dir=data_dir,
        timer_factory=timers,
        clock=noon,
    ).start()
    yield runtime
    runtime.shutdown()


class TestOrderToDoor:

    def test_full_delivery(self, runtime: DispatchRuntime):
        machine = runtime.state_machine
        page = runtime.realtime_hub.connect("maria")
        runtime.realtime_hub.register(OrderTopic("ord-001"), page)

        for status in ("confirmed", "preparing", "ready"):
            machine.transition("ord-001", status, actor_id="vendor-001")

        offer = runtime.assignment_queue.get_assignment_status("ord-001")
        assert offer.status == AssignmentStatus.OFFERED
        assert offer.assigned_rider_id == "rider-001"

        assert runtime.assignment_queue.accept_offer("ord-001", "rider-001")
        for status in ("picked_up", "in_transit"):
            machine.transition("ord-001", status, actor_id="rider-001")
        runtime.tracker.update_location("rider-001", Location(lat=13.7402, lng=121.0700))
        machine.transition("ord-001", "delivered", actor_id="rider-001")

        assert machine.current_status("ord-001") == OrderStatus.DELIVERED
        assert len(machine.get_history("ord-001")) == 6
        assert runtime.data_store.get_order("ord-001").rider_id == "rider-001"

        runtime.notification_service.flush()
        triggers = {r.trigger for r in runtime.data_store.get_notifications(recipient_id="cust-001")}
        assert triggers == {
            "order_confirmed", "order_preparing", "order_ready", "rider_assigned",
            "order_picked_up", "order_in_transit", "rider_arriving", "order_delivered",
        }
        offers = runtime.data_store.get_notifications(recipient_id="rider-001", order_id="ord-001")
        assert {r.trigger for r in offers} == {"delivery_offer"}

        frame_types = [json.loads(m)["type"] for m in page.drain()]
        assert frame_types.count("order_update") == 6
        assert "rider_assigned" in frame_types
        assert "rider_location_update" in frame_types
        assert "rider_nearby" in frame_types

    def test_invalid_transition_changes_nothing(self, runtime: DispatchRuntime):
        with pytest.raises(InvalidTransition):
            runtime.state_machine.transition("ord-001", "delivered", actor_id="rider-001")

        runtime.notification_service.flush()
        assert runtime.data_store.get_notifications(order_id="ord-001") == []
        assert runtime.event_bus.get_events_of_type("OrderStatusChanged") == []

    def test_nobody_accepts(self, runtime: DispatchRuntime, timers):
        admin = runtime.realtime_hub.connect("ops")
        runtime.realtime_hub.register(RoleTopic(UserRole.ADMIN), admin)
        queue = runtime.assignment_queue

        runtime.state_machine.transition("ord-002", "ready", actor_id="vendor-001")
        # rider-001 declines, rider-002 lets it time out, rider-003 declines
        queue.reject_offer("ord-002", "rider-001")
        timers.latest.fire()
        queue.reject_offer("ord-002", "rider-003")

        request = queue.get_assignment_status("ord-002")
        assert request.status == AssignmentStatus.EXHAUSTED
        assert request.rejected_by == ["rider-001", "rider-002", "rider-003"]
        assert runtime.data_store.get_order("ord-002").status == OrderStatus.READY

        runtime.notification_service.flush()
        alerts = runtime.data_store.get_notifications(recipient_id="admin-001")
        assert {r.trigger for r in alerts} == {"assignment_exhausted"}
        assert "assignment_exhausted" in [json.loads(m)["type"] for m in admin.drain()]

    def test_shutdown_is_quiet(self, data_dir, timers, noon):
        runtime = DispatchRuntime(data_dir=data_dir, timer_factory=timers, clock=noon).start()
        runtime.shutdown()

        assert runtime.event_bus.get_subscriber_count("OrderStatusChanged") == 0
