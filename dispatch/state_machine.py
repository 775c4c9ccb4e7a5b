"""
Order state machine.

The single gate through which any order status change must pass. It owns the
transition graph, validates requested changes against it, commits the history
entry and the new status together, and publishes OrderStatusChanged.

    pending -> confirmed -> preparing -> ready -> picked_up -> in_transit -> delivered
    pending | confirmed | preparing -> cancelled

delivered and cancelled are terminal.

Transitions are serialized per order: each order has its own lock, held for
the read-validate-commit sequence only. The event is published after the lock
is released so subscribers never run while an order is locked.
"""

import logging
import threading
from datetime import datetime
from typing import Optional, Union

from dispatch.event_bus import EventBus, get_event_bus
from dispatch.events import order_placed, order_status_changed
from domain.data_store import DataStore, get_data_store
from domain.errors import InvalidTransition, OrderNotFound
from domain.models import Order, OrderStatus, OrderStatusHistoryEntry

logger = logging.getLogger("state_machine")


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.PICKED_UP}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.IN_TRANSIT}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """True if to_status is an outgoing edge of from_status."""
    return to_status in TRANSITIONS.get(from_status, frozenset())


class OrderStateMachine:
    """
    Validates and commits order status changes.

    Example:
        machine = OrderStateMachine()
        machine.transition("ord-001", "confirmed", actor_id="vendor-001")
        machine.transition("ord-001", OrderStatus.PREPARING, actor_id="vendor-001")
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        data_store: Optional[DataStore] = None,
    ):
        self.event_bus = event_bus or get_event_bus()
        self.data_store = data_store or get_data_store()
        self._order_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, order_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._order_locks.get(order_id)
            if lock is None:
                lock = self._order_locks[order_id] = threading.Lock()
            return lock

    def place_order(self, order: Order) -> Order:
        """
        Register a new order in its initial status and announce it.

        No history entry is written: history records transitions only.

        Raises:
            InvalidTransition: If the order is not in the initial status
        """
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(order.id, "new", order.status.value)

        self.data_store.save_order(order)
        logger.info(f"Order {order.id} placed with {order.restaurant_name}")
        self.event_bus.publish(order_placed(order))
        return order

    def transition(
        self,
        order_id: str,
        requested_status: Union[OrderStatus, str],
        actor_id: str,
        notes: Optional[str] = None,
    ) -> OrderStatusHistoryEntry:
        """
        Move an order to requested_status.

        Args:
            order_id: The order to change
            requested_status: Target status (enum or its string value)
            actor_id: Who requested the change, recorded in history
            notes: Optional free text recorded in history

        Returns:
            The committed history entry

        Raises:
            OrderNotFound: If the order does not exist
            InvalidTransition: If the graph has no such edge; the order is unchanged
        """
        with self._lock_for(order_id):
            order = self.data_store.get_order(order_id)
            if order is None:
                raise OrderNotFound(order_id)

            current = order.status
            try:
                target = OrderStatus(requested_status)
            except ValueError:
                raise InvalidTransition(order_id, current.value, str(requested_status))

            if not can_transition(current, target):
                logger.warning(
                    f"Rejected transition for order {order_id}: {current.value} -> {target.value}"
                )
                raise InvalidTransition(order_id, current.value, target.value)

            entry = OrderStatusHistoryEntry(
                order_id=order_id,
                status=target,
                previous_status=current,
                changed_by=actor_id,
                notes=notes,
                timestamp=datetime.utcnow(),
            )
            updated = self.data_store.commit_transition(entry)

        logger.info(f"Order {order_id} {current.value} -> {target.value} (by {actor_id})")
        self.event_bus.publish(order_status_changed(
            order=updated,
            previous_status=current,
            new_status=target,
            changed_by=actor_id,
            timestamp=entry.timestamp,
            notes=notes,
        ))
        return entry

    def get_history(self, order_id: str) -> list[OrderStatusHistoryEntry]:
        """
        Raises:
            OrderNotFound: If the order does not exist
        """
        if self.data_store.get_order(order_id) is None:
            raise OrderNotFound(order_id)
        return self.data_store.get_status_history(order_id)

    def current_status(self, order_id: str) -> OrderStatus:
        """
        Replay the status from history.

        An order with no transitions is still in the status it was registered
        with.
        """
        history = self.get_history(order_id)
        if history:
            return history[-1].status
        return self.data_store.get_order(order_id).status
