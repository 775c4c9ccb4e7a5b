"""
Rider location tracking.

Riders report their position from the app. Each report is stored, broadcast to
the orders the rider is carrying, and once per order turned into a "rider
nearby" event when the rider gets close to the delivery address.
"""

import logging
import threading
from typing import Optional

from dispatch.event_bus import EventBus, get_event_bus
from dispatch.events import rider_location_updated, rider_nearby
from domain.config import Settings, get_settings
from domain.data_store import DataStore, get_data_store
from domain.geo import HaversineDistanceProvider
from domain.models import Location, OrderStatus

logger = logging.getLogger("rider_tracker")


# Statuses in which the rider is on the way to the customer
EN_ROUTE_STATUSES = frozenset({OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT})


class RiderTracker:
    """Turns rider GPS reports into location and proximity events."""

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        data_store: Optional[DataStore] = None,
        settings: Optional[Settings] = None,
        distance_provider: Optional[HaversineDistanceProvider] = None,
    ):
        self.event_bus = event_bus or get_event_bus()
        self.data_store = data_store or get_data_store()
        self.settings = settings or get_settings()
        self.distance_provider = distance_provider or HaversineDistanceProvider()

        # Orders whose customer was already told the rider is nearby
        self._nearby_sent: set[str] = set()
        self._lock = threading.Lock()

    def update_location(self, rider_id: str, location: Location) -> int:
        """
        Record a rider's position.

        Returns:
            Number of active orders the update was broadcast to

        Raises:
            KeyError: If the rider is unknown
        """
        rider = self.data_store.update_rider_location(rider_id, location)
        if rider is None:
            raise KeyError(f"Rider not found: {rider_id}")

        orders = self.data_store.get_active_orders_for_rider(rider_id)
        for order in orders:
            self.event_bus.publish(rider_location_updated(order.id, rider_id, location))

            if order.status not in EN_ROUTE_STATUSES:
                continue

            distance_km = self.distance_provider.distance_km(location, order.delivery_location)
            if distance_km > self.settings.rider_nearby_km:
                continue

            with self._lock:
                if order.id in self._nearby_sent:
                    continue
                self._nearby_sent.add(order.id)

            eta = self.distance_provider.eta_minutes(
                location, order.delivery_location, self.settings.average_rider_speed_kmh
            )
            logger.info(f"Rider {rider_id} is {distance_km:.2f} km from order {order.id}")
            self.event_bus.publish(rider_nearby(
                order,
                rider_id=rider_id,
                rider_name=rider.name or rider_id,
                location=location,
                distance_km=round(distance_km, 2),
                eta_minutes=round(eta, 1),
            ))

        return len(orders)
