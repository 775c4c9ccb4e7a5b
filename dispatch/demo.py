"""
Demonstration scripts for the dispatch core.

These functions walk orders through the pipeline against the JSON fixtures.
Run them to see transitions being committed, riders being offered orders and
notifications being routed (or held back by quiet hours).
"""

import logging
from datetime import datetime

from dispatch.realtime import OrderTopic
from dispatch.runtime import DispatchRuntime
from domain.errors import InvalidTransition

# Configure logging to see what's happening
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)


def _print_sent(runtime: DispatchRuntime) -> None:
    runtime.notification_service.flush()
    print("\nNotifications sent:")
    for msg in runtime.channels.get_all_sent_messages():
        print(f"  {msg}")


def run_lifecycle_demo():
    """
    Walk order ord-001 from pending to delivered.

    This shows:
    1. Every transition is validated against the graph and recorded in history
    2. Reaching "ready" starts the rider search automatically
    3. Customer, vendor and rider are notified along the way
    4. An illegal transition is rejected and changes nothing
    """
    print("\n" + "=" * 70)
    print("DEMO: Order Lifecycle")
    print("=" * 70 + "\n")

    runtime = DispatchRuntime().start()
    machine = runtime.state_machine
    order_id = "ord-001"

    for status, actor in [
        ("confirmed", "vendor-001"),
        ("preparing", "vendor-001"),
        ("ready", "vendor-001"),
    ]:
        machine.transition(order_id, status, actor_id=actor)

    offer = runtime.assignment_queue.get_assignment_status(order_id)
    print(f"\nRider offered: {offer.assigned_rider_id} (status {offer.status.value})")
    runtime.assignment_queue.accept_offer(order_id, offer.assigned_rider_id)

    for status in ("picked_up", "in_transit", "delivered"):
        machine.transition(order_id, status, actor_id=offer.assigned_rider_id)

    print("\n" + "-" * 70)
    print("ACTION: Trying to move a delivered order back to pending")
    print("-" * 70)
    try:
        machine.transition(order_id, "pending", actor_id="admin-001")
    except InvalidTransition as e:
        print(f"Rejected: {e}")

    print("\nStatus history:")
    for entry in machine.get_history(order_id):
        print(f"  {entry.previous_status.value:>10} -> {entry.status.value:<10} by {entry.changed_by}")

    _print_sent(runtime)
    runtime.shutdown()
    return runtime


def run_assignment_demo():
    """
    Demonstrate rider matching with a rejection.

    Order ord-002 becomes ready, the nearest rider declines, and the offer
    moves on to the next candidate, who accepts.
    """
    print("\n" + "=" * 70)
    print("DEMO: Rider Assignment")
    print("=" * 70 + "\n")

    runtime = DispatchRuntime().start()
    queue = runtime.assignment_queue
    order_id = "ord-002"

    runtime.state_machine.transition(order_id, "ready", actor_id="vendor-001")

    first = queue.get_assignment_status(order_id)
    print(f"\nFirst offer: {first.assigned_rider_id} within {first.search_radius_km:.2f} km")
    queue.reject_offer(order_id, first.assigned_rider_id)

    second = queue.get_assignment_status(order_id)
    print(f"Second offer: {second.assigned_rider_id} within {second.search_radius_km:.2f} km")
    print(f"Rejected by: {second.rejected_by}, attempts: {second.attempts}")

    # A late accept from the rider who already declined is a no-op
    print(f"Late accept by {first.assigned_rider_id}: "
          f"{queue.accept_offer(order_id, first.assigned_rider_id)}")
    queue.accept_offer(order_id, second.assigned_rider_id)

    final = queue.get_assignment_status(order_id)
    print(f"\nFinal status: {final.status.value}, rider {final.assigned_rider_id}")

    _print_sent(runtime)
    runtime.shutdown()
    return runtime


def run_quiet_hours_demo():
    """
    Demonstrate quiet hours.

    Jose (cust-002) has quiet hours 22:00-08:00. At 23:00 a medium-urgency
    update ("ready") sends nothing on email, SMS or push, but the realtime
    frame still reaches his open tracking page.
    """
    print("\n" + "=" * 70)
    print("DEMO: Quiet Hours")
    print("=" * 70 + "\n")

    runtime = DispatchRuntime(clock=lambda: datetime(2024, 1, 1, 23, 0)).start()
    order_id = "ord-002"

    tracking_page = runtime.realtime_hub.connect("jose-browser")
    runtime.realtime_hub.register(OrderTopic(order_id), tracking_page)

    runtime.state_machine.transition(order_id, "ready", actor_id="vendor-001")
    runtime.notification_service.flush()

    to_jose = runtime.data_store.get_notifications(order_id=order_id, recipient_id="cust-002")
    print(f"\nPersistent notifications to Jose: {len(to_jose)}")
    print("Realtime frames on his tracking page:")
    for frame in tracking_page.drain():
        print(f"  {frame}")

    runtime.shutdown()
    return runtime


if __name__ == "__main__":
    print("\nRunning Dispatch Demos")
    print("=" * 70)

    run_lifecycle_demo()
    print("\n")

    run_assignment_demo()
    print("\n")

    run_quiet_hours_demo()
