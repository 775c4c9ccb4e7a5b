"""
Rider assignment queue.

When an order reaches the courier-needed status, the queue searches for nearby
riders, offers the delivery to the best one, and on rejection or timeout moves
on to the next candidate with a wider search radius, until a rider accepts or
the search is exhausted.

Design decisions:
- One AssignmentRequest per order; at most one of them is non-terminal
- Every state change of a request happens under that request's lock, and
  resolving an offer is a compare-and-swap on status: the first move away from
  "offered" wins and every later accept, reject or timer expiry is a no-op
- Candidate queries and event publishing happen outside the lock; after a
  query the request is re-checked, so a cancellation in between stops the
  next offer
- Offer timeouts are cancellable timers built by an injectable factory, so
  tests can fire them by hand
- Exhaustion is an operational alert (event + callbacks), never an error for
  the order pipeline; the order stays in the courier-needed status
- Once the order is picked up (or is over) the open request is cancelled, and
  every offer or resolution re-reads the order under the request lock
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from dispatch.event_bus import Event, EventBus, get_event_bus
from dispatch.events import (
    EventTypes,
    assignment_exhausted,
    assignment_offered,
    rider_assigned,
)
from domain.config import Settings, get_settings
from domain.data_store import DataStore, get_data_store
from domain.errors import AssignmentExhausted, AssignmentRaceLoss, OrderNotFound
from domain.geo import DistanceProvider, HaversineDistanceProvider
from domain.models import (
    AssignmentRequest,
    AssignmentStatus,
    Location,
    OfferRecord,
    Order,
    OrderStatus,
    RiderState,
)

logger = logging.getLogger("assignment_queue")


# (delay_seconds, callback) -> handle with a cancel() method
TimerFactory = Callable[[float, Callable[[], None]], Any]
ExhaustedCallback = Callable[[AssignmentExhausted], None]


def start_daemon_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Default timer factory."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


# Order value thresholds for priority tiers, highest first
PRIORITY_TIERS = [
    (2000.0, 5),
    (1000.0, 4),
    (500.0, 3),
    (200.0, 2),
]

# A rider already carries the order, or the order is over
NO_RIDER_NEEDED_STATUSES = frozenset({
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})


def derive_priority(order: Order) -> int:
    """Bigger orders get matched first when riders are scarce."""
    for threshold, priority in PRIORITY_TIERS:
        if order.total_amount >= threshold:
            return priority
    return 1


def rank_candidates(
    candidates: list[RiderState],
    pickup: Location,
    distance_provider: DistanceProvider,
) -> list[tuple[RiderState, float]]:
    """
    Order candidates best first.

    Nearest first, ties broken by higher rating, then higher performance score.
    Returns (rider, distance_km) pairs.
    """
    scored = [
        (rider, distance_provider.distance_km(rider.location, pickup))
        for rider in candidates
    ]
    scored.sort(key=lambda pair: (pair[1], -pair[0].rating, -pair[0].performance_score))
    return scored


class RiderAssignmentQueue:
    """
    Matches orders to riders.

    Example:
        queue = RiderAssignmentQueue()
        queue.start()   # reacts to orders becoming "ready"

        queue.accept_offer("ord-002", "rider-001")
        queue.get_assignment_status("ord-002").status   # AssignmentStatus.ACCEPTED
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        data_store: Optional[DataStore] = None,
        settings: Optional[Settings] = None,
        distance_provider: Optional[DistanceProvider] = None,
        timer_factory: Optional[TimerFactory] = None,
    ):
        """
        Args:
            event_bus: Bus to subscribe to and publish on (defaults to singleton)
            data_store: Order and rider lookups (defaults to singleton)
            settings: Radius, attempt and timeout tunables (defaults to singleton)
            distance_provider: Used for ranking (defaults to haversine)
            timer_factory: Builds offer timeout timers (defaults to daemon threads)
        """
        self.event_bus = event_bus or get_event_bus()
        self.data_store = data_store or get_data_store()
        self.settings = settings or get_settings()
        self.distance_provider = distance_provider or HaversineDistanceProvider()
        self.timer_factory = timer_factory or start_daemon_timer

        # order_id -> latest request for that order
        self._requests: dict[str, AssignmentRequest] = {}
        self._request_locks: dict[str, threading.Lock] = {}
        self._timers: dict[str, Any] = {}
        self._guard = threading.Lock()

        self._exhausted_callbacks: list[ExhaustedCallback] = []
        self._started = False

    def start(self) -> None:
        """Subscribe to order status changes."""
        if self._started:
            logger.warning("RiderAssignmentQueue already started")
            return

        self.event_bus.subscribe(
            EventTypes.ORDER_STATUS_CHANGED,
            self._handle_order_status_changed,
        )
        self._started = True
        logger.info("RiderAssignmentQueue started - subscribed to events")

    def stop(self) -> None:
        """Unsubscribe and cancel every running offer timer."""
        if not self._started:
            return

        self.event_bus.unsubscribe(
            EventTypes.ORDER_STATUS_CHANGED,
            self._handle_order_status_changed,
        )
        with self._guard:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

        self._started = False
        logger.info("RiderAssignmentQueue stopped")

    def on_exhausted(self, callback: ExhaustedCallback) -> None:
        """
        Register an operations alert for exhausted searches.

        The callback receives the AssignmentExhausted error describing the order.
        """
        self._exhausted_callbacks.append(callback)

    def _handle_order_status_changed(self, event: Event) -> None:
        payload = event.payload
        order_id = payload["order_id"]
        new_status = payload["new_status"]

        if new_status == self.settings.courier_needed_status:
            self.request_assignment(order_id)
        elif OrderStatus(new_status) in NO_RIDER_NEEDED_STATUSES:
            self.cancel(order_id)

    # =========================================================================
    # Operations
    # =========================================================================

    def request_assignment(self, order_id: str) -> Optional[AssignmentRequest]:
        """
        Start matching an order to a rider.

        Returns a snapshot of the request. If the order already has an active
        request, that one is returned unchanged. Terminal orders get none.

        Raises:
            OrderNotFound: If the order does not exist
        """
        order = self.data_store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.is_terminal:
            logger.warning(f"Order {order_id} is {order.status.value}; no assignment needed")
            return None

        with self._guard:
            existing = self._requests.get(order_id)
            if existing is not None and not existing.is_terminal:
                logger.info(f"Order {order_id} already has active request {existing.id}")
                return existing.model_copy(deep=True)

            request = AssignmentRequest(
                order_id=order_id,
                priority=derive_priority(order),
                search_radius_km=min(
                    self.settings.initial_search_radius_km,
                    self.settings.max_search_radius_km,
                ),
                max_radius_km=self.settings.max_search_radius_km,
                estimated_value=order.total_amount,
                restaurant_location=order.restaurant_location,
                delivery_location=order.delivery_location,
            )
            self._requests[order_id] = request
            self._request_locks.setdefault(order_id, threading.Lock())

        logger.info(
            f"Assignment {request.id} created for order {order_id} "
            f"(priority {request.priority}, radius {request.search_radius_km:.2f} km)"
        )
        self._search_and_offer(request)
        return self.get_assignment_status(order_id)

    def accept_offer(self, order_id: str, rider_id: str) -> bool:
        """
        Rider accepts the offer for an order.

        Returns:
            True if this rider won the offer; False if it was no longer available
        """
        try:
            self._resolve_offer(order_id, rider_id, AssignmentStatus.ACCEPTED)
        except AssignmentRaceLoss as e:
            logger.warning(str(e))
            return False

        rider = self.data_store.increment_active_orders(rider_id)
        order = self.data_store.assign_rider(order_id, rider_id)
        rider_name = rider.name if rider and rider.name else rider_id

        logger.info(f"Rider {rider_id} accepted order {order_id}")
        self.event_bus.publish(rider_assigned(order, rider_id, rider_name))
        return True

    def reject_offer(self, order_id: str, rider_id: str) -> bool:
        """
        Rider declines the offer; the next candidate is searched for.

        Returns:
            True if the rejection was applied; False if the offer was no longer
            available
        """
        try:
            request = self._resolve_offer(order_id, rider_id, AssignmentStatus.REJECTED)
        except AssignmentRaceLoss as e:
            logger.warning(str(e))
            return False

        logger.info(f"Rider {rider_id} rejected order {order_id}; searching again")
        self._search_and_offer(request)
        return True

    def cancel(self, order_id: str) -> bool:
        """
        Stop matching an order (cancelled, or picked up without this queue).

        Returns:
            True if an active request was cancelled
        """
        with self._guard:
            request = self._requests.get(order_id)
        if request is None:
            return False

        with self._lock_for(order_id):
            if request.is_terminal:
                return False
            self._cancel_locked(request)
        return True

    def retry_exhausted(self, order_id: str) -> Optional[AssignmentRequest]:
        """
        Manual re-dispatch by an operator.

        Starts a fresh search for an order whose last request was exhausted and
        which still waits in the courier-needed status. Returns None otherwise.
        """
        order = self.data_store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status.value != self.settings.courier_needed_status:
            logger.warning(f"Order {order_id} is {order.status.value}; nothing to retry")
            return None

        with self._guard:
            existing = self._requests.get(order_id)
            if existing is None or existing.status != AssignmentStatus.EXHAUSTED:
                return None
            del self._requests[order_id]

        logger.info(f"Retrying assignment for order {order_id}")
        return self.request_assignment(order_id)

    def get_assignment_status(self, order_id: str) -> Optional[AssignmentRequest]:
        """Snapshot of the latest request for an order, for dashboards."""
        with self._guard:
            request = self._requests.get(order_id)
        if request is None:
            return None
        with self._lock_for(order_id):
            return request.model_copy(deep=True)

    def get_rider_pending_offers(self, rider_id: str) -> list[AssignmentRequest]:
        """Offers currently waiting on a rider, highest priority first."""
        with self._guard:
            requests = list(self._requests.values())

        pending = []
        for request in requests:
            with self._lock_for(request.order_id):
                if (
                    request.status == AssignmentStatus.OFFERED
                    and request.assigned_rider_id == rider_id
                ):
                    pending.append(request.model_copy(deep=True))
        pending.sort(key=lambda r: (-r.priority, r.offered_at))
        return pending

    # =========================================================================
    # Matching internals
    # =========================================================================

    def _lock_for(self, order_id: str) -> threading.Lock:
        with self._guard:
            lock = self._request_locks.get(order_id)
            if lock is None:
                lock = self._request_locks[order_id] = threading.Lock()
            return lock

    def _order_needs_rider(self, order_id: str) -> bool:
        order = self.data_store.get_order(order_id)
        return order is not None and order.status not in NO_RIDER_NEEDED_STATUSES

    def _cancel_locked(self, request: AssignmentRequest) -> None:
        """Caller holds the request lock; request is not terminal."""
        if request.status == AssignmentStatus.OFFERED and request.offers:
            request.offers[-1].outcome = AssignmentStatus.CANCELLED
        request.status = AssignmentStatus.CANCELLED
        request.resolved_at = datetime.utcnow()
        self._cancel_timer(request.order_id)
        logger.info(f"Assignment {request.id} for order {request.order_id} cancelled")

    def _cancel_timer(self, order_id: str) -> None:
        with self._guard:
            timer = self._timers.pop(order_id, None)
        if timer is not None:
            timer.cancel()

    def _search_and_offer(self, request: AssignmentRequest) -> None:
        """
        Find the best candidate and offer, widening the radius while empty.

        Ends with an offer, with exhaustion, or silently if the request stopped
        being pending while the directory was queried.
        """
        order_id = request.order_id
        lock = self._lock_for(order_id)

        while True:
            with lock:
                if request.status != AssignmentStatus.PENDING:
                    return
                if request.attempts >= self.settings.max_assignment_attempts:
                    self._mark_exhausted(request)
                    break
                radius = request.search_radius_km
                excluding = list(request.rejected_by)
                pickup = request.restaurant_location

            candidates = rank_candidates(
                self.data_store.find_candidates(pickup, radius, excluding=excluding),
                pickup,
                self.distance_provider,
            )
            order = self.data_store.get_order(order_id)
            restaurant_name = order.restaurant_name if order else "the restaurant"

            with lock:
                if request.status != AssignmentStatus.PENDING:
                    logger.info(f"Assignment {request.id} changed during search; no offer made")
                    return
                if not self._order_needs_rider(order_id):
                    self._cancel_locked(request)
                    return

                if not candidates:
                    if request.search_radius_km >= request.max_radius_km:
                        self._mark_exhausted(request)
                        break
                    request.search_radius_km = self._widen(request)
                    logger.info(
                        f"No riders within {radius:.2f} km of order {order_id}; "
                        f"widening to {request.search_radius_km:.2f} km"
                    )
                    continue

                rider, distance_km = candidates[0]
                offered = assignment_offered(
                    request,
                    rider_id=rider.rider_id,
                    distance_km=round(distance_km, 2),
                    timeout_seconds=self.settings.offer_timeout_seconds,
                    restaurant_name=restaurant_name,
                )
                self._make_offer(request, rider.rider_id)

            logger.info(
                f"Offered order {order_id} to rider {rider.rider_id} "
                f"({distance_km:.2f} km, attempt {request.attempts + 1})"
            )
            self.event_bus.publish(offered)
            return

        self._announce_exhausted(request)

    def _widen(self, request: AssignmentRequest) -> float:
        return min(
            request.search_radius_km * self.settings.radius_growth_factor,
            request.max_radius_km,
        )

    def _make_offer(self, request: AssignmentRequest, rider_id: str) -> None:
        """Caller holds the request lock."""
        now = datetime.utcnow()
        timeout = self.settings.offer_timeout_seconds

        request.status = AssignmentStatus.OFFERED
        request.assigned_rider_id = rider_id
        request.offered_at = now
        request.timeout_at = now + timedelta(seconds=timeout)
        request.offers.append(OfferRecord(rider_id=rider_id, offered_at=now))
        offer_number = len(request.offers)

        order_id = request.order_id
        timer = self.timer_factory(
            timeout,
            lambda: self._handle_offer_timeout(order_id, rider_id, offer_number),
        )
        with self._guard:
            previous = self._timers.pop(order_id, None)
            self._timers[order_id] = timer
        if previous is not None:
            previous.cancel()

    def _handle_offer_timeout(self, order_id: str, rider_id: str, offer_number: int) -> None:
        try:
            request = self._resolve_offer(
                order_id, rider_id, AssignmentStatus.TIMEOUT, offer_number=offer_number
            )
        except AssignmentRaceLoss as e:
            logger.info(f"Timer expired after resolution: {e}")
            return

        logger.info(f"Offer of order {order_id} to rider {rider_id} timed out; searching again")
        self._search_and_offer(request)

    def _resolve_offer(
        self,
        order_id: str,
        rider_id: str,
        outcome: AssignmentStatus,
        offer_number: Optional[int] = None,
    ) -> AssignmentRequest:
        """
        Compare-and-swap the request away from "offered".

        Only the rider holding the current offer (and, for timers, only the
        timer of that exact offer) can resolve it.

        Raises:
            AssignmentRaceLoss: If the offer was already resolved or belongs to
                someone else
        """
        with self._guard:
            request = self._requests.get(order_id)
        if request is None:
            raise AssignmentRaceLoss(order_id, rider_id, outcome.value)

        with self._lock_for(order_id):
            if (
                request.status != AssignmentStatus.OFFERED
                or request.assigned_rider_id != rider_id
                or (offer_number is not None and offer_number != len(request.offers))
            ):
                raise AssignmentRaceLoss(order_id, rider_id, outcome.value)
            if not self._order_needs_rider(order_id):
                self._cancel_locked(request)
                raise AssignmentRaceLoss(order_id, rider_id, outcome.value)

            request.offers[-1].outcome = outcome
            if outcome == AssignmentStatus.ACCEPTED:
                request.status = AssignmentStatus.ACCEPTED
                request.resolved_at = datetime.utcnow()
            else:
                # rejected and timeout are transient: back to pending for the next search
                request.rejected_by.append(rider_id)
                request.attempts += 1
                request.assigned_rider_id = None
                request.offered_at = None
                request.timeout_at = None
                request.search_radius_km = self._widen(request)
                request.status = AssignmentStatus.PENDING

            self._cancel_timer(order_id)

        return request

    def _mark_exhausted(self, request: AssignmentRequest) -> None:
        """Caller holds the request lock."""
        request.status = AssignmentStatus.EXHAUSTED
        request.resolved_at = datetime.utcnow()

    def _announce_exhausted(self, request: AssignmentRequest) -> None:
        error = AssignmentExhausted(
            request.order_id,
            attempts=request.attempts,
            radius_km=request.search_radius_km,
        )
        logger.warning(str(error))

        snapshot = self.get_assignment_status(request.order_id)
        self.event_bus.publish(assignment_exhausted(snapshot or request))

        for callback in self._exhausted_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Assignment exhausted callback failed: {e}")
