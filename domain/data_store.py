"""
JSON-backed data store standing in for the dispatch core's collaborators.

This module provides the data access layer the core talks to. It plays the part
of several services at once:
- OrderService: orders and their append-only status history
- PreferenceStore: per-user notification preferences
- RiderDirectory: rider state and candidate search
- NotificationStore: the write-only notification audit trail
- User directory: contact details for recipients

Design decisions:
- Fixtures are loaded lazily from JSON files in data/
- Writes update in-memory state only
- Records are replaced, never edited in place, so readers holding an old
  object see a consistent snapshot
- One re-entrant lock guards all state; nothing slow happens under it
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from domain.errors import OrderNotFound
from domain.geo import DistanceProvider, HaversineDistanceProvider
from domain.models import (
    Location,
    NotificationPreference,
    NotificationRecord,
    Order,
    OrderStatusHistoryEntry,
    RiderState,
    User,
    UserRole,
)


class DataStore:
    """
    Central data store that loads and manages JSON fixtures.

    In production each concern would be a separate service or table; this
    unified store lets the core and its tests run without infrastructure.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        distance_provider: Optional[DistanceProvider] = None,
    ):
        """
        Initialize the data store.

        Args:
            data_dir: Path to the directory containing JSON fixtures.
                     Defaults to ./data relative to project root.
            distance_provider: Used by find_candidates(). Defaults to haversine.
        """
        if data_dir is None:
            data_dir = Path(__file__).parent.parent / "data"

        self.data_dir = Path(data_dir)
        self.distance_provider = distance_provider or HaversineDistanceProvider()
        self._lock = threading.RLock()

        # In-memory caches - loaded lazily
        self._users: Optional[dict[str, User]] = None
        self._orders: Optional[dict[str, Order]] = None
        self._riders: Optional[dict[str, RiderState]] = None
        self._preferences: Optional[dict[str, NotificationPreference]] = None  # keyed by user_id
        self._history: dict[str, list[OrderStatusHistoryEntry]] = {}
        self._notifications: list[NotificationRecord] = []

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file."""
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with open(filepath, "r") as f:
            return json.load(f)

    def _ensure_users_loaded(self):
        with self._lock:
            if self._users is None:
                data = self._load_json("users.json")
                self._users = {u["id"]: User(**u) for u in data}

    def _ensure_orders_loaded(self):
        with self._lock:
            if self._orders is None:
                data = self._load_json("orders.json")
                self._orders = {o["id"]: Order(**o) for o in data}

    def _ensure_riders_loaded(self):
        with self._lock:
            if self._riders is None:
                data = self._load_json("riders.json")
                self._riders = {r["rider_id"]: RiderState(**r) for r in data}

    def _ensure_preferences_loaded(self):
        with self._lock:
            if self._preferences is None:
                data = self._load_json("notification_preferences.json")
                self._preferences = {p["user_id"]: NotificationPreference(**p) for p in data}

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: str) -> Optional[User]:
        """Get a user by ID."""
        self._ensure_users_loaded()
        return self._users.get(user_id)

    def get_users(self) -> list[User]:
        self._ensure_users_loaded()
        return list(self._users.values())

    def get_users_by_role(self, role: UserRole) -> list[User]:
        """Used to find the admins who receive operational alerts."""
        self._ensure_users_loaded()
        return [u for u in self._users.values() if u.role == role]

    def save_user(self, user: User) -> User:
        self._ensure_users_loaded()
        with self._lock:
            self._users[user.id] = user
        return user

    # =========================================================================
    # Orders (OrderService)
    # =========================================================================

    def get_order(self, order_id: str) -> Optional[Order]:
        """Get an order by ID."""
        self._ensure_orders_loaded()
        return self._orders.get(order_id)

    def get_orders(self) -> list[Order]:
        self._ensure_orders_loaded()
        return list(self._orders.values())

    def save_order(self, order: Order) -> Order:
        """Register or replace an order record."""
        self._ensure_orders_loaded()
        with self._lock:
            self._orders[order.id] = order
        return order

    def commit_transition(self, entry: OrderStatusHistoryEntry) -> Order:
        """
        Append a history entry and move the order to its status, together.

        Callers are responsible for validating the transition; this only
        guarantees that status and history never disagree.

        Raises:
            OrderNotFound: If the order does not exist
        """
        self._ensure_orders_loaded()
        with self._lock:
            order = self._orders.get(entry.order_id)
            if order is None:
                raise OrderNotFound(entry.order_id)
            updated = order.model_copy(update={
                "status": entry.status,
                "updated_at": entry.timestamp,
            })
            self._history.setdefault(entry.order_id, []).append(entry)
            self._orders[entry.order_id] = updated
            return updated

    def get_status_history(self, order_id: str) -> list[OrderStatusHistoryEntry]:
        """Get an order's transitions, oldest first."""
        with self._lock:
            return list(self._history.get(order_id, []))

    def assign_rider(self, order_id: str, rider_id: str) -> Order:
        """
        Record the rider who accepted the order.

        Raises:
            OrderNotFound: If the order does not exist
        """
        self._ensure_orders_loaded()
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            updated = order.model_copy(update={
                "rider_id": rider_id,
                "updated_at": datetime.utcnow(),
            })
            self._orders[order_id] = updated
            return updated

    def get_active_orders_for_rider(self, rider_id: str) -> list[Order]:
        """Orders carried by a rider that are not yet delivered or cancelled."""
        self._ensure_orders_loaded()
        return [
            o for o in self._orders.values()
            if o.rider_id == rider_id and not o.is_terminal
        ]

    # =========================================================================
    # Notification preferences (PreferenceStore)
    # =========================================================================

    def get_notification_preferences(self, user_id: str) -> Optional[NotificationPreference]:
        """
        Get a user's stored preferences.

        Returns None when the user never saved any; callers treat that as
        everything enabled.
        """
        self._ensure_preferences_loaded()
        return self._preferences.get(user_id)

    def save_notification_preferences(self, pref: NotificationPreference) -> NotificationPreference:
        self._ensure_preferences_loaded()
        with self._lock:
            self._preferences[pref.user_id] = pref
        return pref

    # =========================================================================
    # Riders (RiderDirectory)
    # =========================================================================

    def get_rider(self, rider_id: str) -> Optional[RiderState]:
        self._ensure_riders_loaded()
        return self._riders.get(rider_id)

    def get_riders(self) -> list[RiderState]:
        self._ensure_riders_loaded()
        return list(self._riders.values())

    def save_rider(self, rider: RiderState) -> RiderState:
        self._ensure_riders_loaded()
        with self._lock:
            self._riders[rider.rider_id] = rider
        return rider

    def find_candidates(
        self,
        location: Location,
        radius_km: float,
        excluding: Iterable[str] = (),
    ) -> list[RiderState]:
        """
        Find riders who could take an order picked up at location.

        A candidate is online, available, verified, below capacity, has a known
        location within radius_km, and is not in excluding. Ranking is left to
        the caller.
        """
        self._ensure_riders_loaded()
        excluded = set(excluding)
        with self._lock:
            riders = list(self._riders.values())

        candidates = []
        for rider in riders:
            if rider.rider_id in excluded:
                continue
            if not (rider.is_online and rider.is_available and rider.is_verified):
                continue
            if not rider.has_capacity or rider.location is None:
                continue
            if self.distance_provider.distance_km(rider.location, location) > radius_km:
                continue
            candidates.append(rider)
        return candidates

    def increment_active_orders(self, rider_id: str) -> Optional[RiderState]:
        """Count one more order against a rider's capacity."""
        self._ensure_riders_loaded()
        with self._lock:
            rider = self._riders.get(rider_id)
            if rider is None:
                return None
            updated = rider.model_copy(update={
                "active_orders_count": rider.active_orders_count + 1,
            })
            self._riders[rider_id] = updated
            return updated

    def update_rider_location(self, rider_id: str, location: Location) -> Optional[RiderState]:
        self._ensure_riders_loaded()
        with self._lock:
            rider = self._riders.get(rider_id)
            if rider is None:
                return None
            updated = rider.model_copy(update={"location": location})
            self._riders[rider_id] = updated
            return updated

    # =========================================================================
    # Notification records (NotificationStore)
    # =========================================================================

    def create_order_notification(self, record: NotificationRecord) -> NotificationRecord:
        """Persist one delivery attempt. Write-only from the core's side."""
        with self._lock:
            self._notifications.append(record)
        return record

    def get_notifications(
        self,
        order_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
        trigger: Optional[str] = None,
    ) -> list[NotificationRecord]:
        """Query the audit trail (dashboards and tests)."""
        with self._lock:
            records = list(self._notifications)
        return [
            r for r in records
            if (order_id is None or r.order_id == order_id)
            and (recipient_id is None or r.recipient_id == recipient_id)
            and (trigger is None or r.trigger == trigger)
        ]


# Module-level singleton for convenience
_default_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get the default data store singleton."""
    global _default_store
    if _default_store is None:
        _default_store = DataStore()
    return _default_store


def reset_data_store(data_dir: Optional[Path] = None) -> DataStore:
    """Reset the default data store (useful for testing)."""
    global _default_store
    _default_store = DataStore(data_dir=data_dir)
    return _default_store
