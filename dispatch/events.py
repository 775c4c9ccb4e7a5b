"""
Event definitions for the dispatch core.

Events represent facts about things that have happened: an order was placed,
its status changed, a rider was offered or accepted a delivery, a rider moved.

Design decisions:
- Events are named in past tense (OrderStatusChanged, not ChangeOrderStatus)
- Events carry everything subscribers need, so they rarely query back
- Status and location values are plain JSON-friendly types
- Helper functions create properly structured Event objects
"""

from datetime import datetime
from typing import Optional

from dispatch.event_bus import Event
from domain.models import AssignmentRequest, Location, Order, OrderStatus


class EventTypes:
    """Constants for event type names."""
    # Order lifecycle (state machine)
    ORDER_PLACED = "OrderPlaced"
    ORDER_STATUS_CHANGED = "OrderStatusChanged"

    # Assignment lifecycle (assignment queue)
    ASSIGNMENT_OFFERED = "AssignmentOffered"
    RIDER_ASSIGNED = "RiderAssigned"
    ASSIGNMENT_EXHAUSTED = "AssignmentExhausted"

    # Rider movement (rider tracker)
    RIDER_LOCATION_UPDATED = "RiderLocationUpdated"
    RIDER_NEARBY = "RiderNearby"


# =============================================================================
# Order Events
# =============================================================================

def order_placed(order: Order, source: str = "state-machine") -> Event:
    """Published when a new order enters the pipeline in its initial status."""
    return Event(
        event_type=EventTypes.ORDER_PLACED,
        source=source,
        payload={
            "order_id": order.id,
            "customer_id": order.customer_id,
            "vendor_id": order.vendor_id,
            "restaurant_name": order.restaurant_name,
            "total_amount": order.total_amount,
            "item_count": sum(item.quantity for item in order.line_items),
        },
    )


def order_status_changed(
    order: Order,
    previous_status: OrderStatus,
    new_status: OrderStatus,
    changed_by: str,
    timestamp: datetime,
    notes: Optional[str] = None,
    source: str = "state-machine",
) -> Event:
    """
    Published after a transition is committed.

    Consumed by the assignment queue (courier-needed and cancelled statuses),
    the notification orchestrator and the realtime hub.
    """
    return Event(
        event_type=EventTypes.ORDER_STATUS_CHANGED,
        source=source,
        timestamp=timestamp,
        payload={
            "order_id": order.id,
            "customer_id": order.customer_id,
            "vendor_id": order.vendor_id,
            "rider_id": order.rider_id,
            "restaurant_name": order.restaurant_name,
            "previous_status": previous_status.value,
            "new_status": new_status.value,
            "changed_by": changed_by,
            "notes": notes,
        },
    )


# =============================================================================
# Assignment Events
# =============================================================================

def assignment_offered(
    request: AssignmentRequest,
    rider_id: str,
    distance_km: float,
    timeout_seconds: float,
    restaurant_name: str,
    source: str = "assignment-queue",
) -> Event:
    """Published when an offer is made to a rider."""
    return Event(
        event_type=EventTypes.ASSIGNMENT_OFFERED,
        source=source,
        payload={
            "assignment_id": request.id,
            "order_id": request.order_id,
            "rider_id": rider_id,
            "priority": request.priority,
            "attempt": request.attempts + 1,
            "distance_km": distance_km,
            "timeout_seconds": timeout_seconds,
            "restaurant_name": restaurant_name,
        },
    )


def rider_assigned(
    order: Order,
    rider_id: str,
    rider_name: str,
    source: str = "assignment-queue",
) -> Event:
    """Published when a rider accepts an offer."""
    return Event(
        event_type=EventTypes.RIDER_ASSIGNED,
        source=source,
        payload={
            "order_id": order.id,
            "customer_id": order.customer_id,
            "rider_id": rider_id,
            "rider_name": rider_name,
            "restaurant_name": order.restaurant_name,
        },
    )


def assignment_exhausted(
    request: AssignmentRequest,
    source: str = "assignment-queue",
) -> Event:
    """Published when no rider could be found; needs manual dispatch."""
    return Event(
        event_type=EventTypes.ASSIGNMENT_EXHAUSTED,
        source=source,
        payload={
            "assignment_id": request.id,
            "order_id": request.order_id,
            "attempts": request.attempts,
            "radius_km": request.search_radius_km,
            "rejected_by": list(request.rejected_by),
        },
    )


# =============================================================================
# Rider Movement Events
# =============================================================================

def rider_location_updated(
    order_id: str,
    rider_id: str,
    location: Location,
    source: str = "rider-tracker",
) -> Event:
    return Event(
        event_type=EventTypes.RIDER_LOCATION_UPDATED,
        source=source,
        payload={
            "order_id": order_id,
            "rider_id": rider_id,
            "location": location.model_dump(),
        },
    )


def rider_nearby(
    order: Order,
    rider_id: str,
    rider_name: str,
    location: Location,
    distance_km: float,
    eta_minutes: float,
    source: str = "rider-tracker",
) -> Event:
    """Published once per order when the rider gets close to the customer."""
    return Event(
        event_type=EventTypes.RIDER_NEARBY,
        source=source,
        payload={
            "order_id": order.id,
            "customer_id": order.customer_id,
            "rider_id": rider_id,
            "rider_name": rider_name,
            "restaurant_name": order.restaurant_name,
            "location": location.model_dump(),
            "distance_km": distance_km,
            "eta_minutes": eta_minutes,
        },
    )
