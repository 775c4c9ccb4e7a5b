"""
Shared pytest fixtures for the dispatch core tests.

These fixtures provide consistent test data and reset state between tests.
Timers and clocks are fakes so timeouts and quiet hours are deterministic.
"""

import pytest
from datetime import datetime
from pathlib import Path

from dispatch.event_bus import EventBus
from domain.channels import NotificationChannels, EmailChannel, SMSChannel, PushChannel
from domain.config import Settings
from domain.data_store import DataStore
from domain.models import LineItem, Location, Order, OrderStatus, RiderState


# Lomi Haus, the restaurant every fixture order comes from
RESTAURANT_LOCATION = Location(lat=13.7565, lng=121.0583)

# Roughly one kilometre of latitude
KM = 1 / 111.19


class FakeTimer:
    """Stands in for threading.Timer; fire() runs the callback by hand."""

    def __init__(self, delay: float, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> bool:
        """Expire the timer unless it was cancelled."""
        if self.cancelled or self.fired:
            return False
        self.fired = True
        self.callback()
        return True


class FakeTimerFactory:
    """Timer factory that records every timer it builds."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def latest(self) -> FakeTimer:
        return self.timers[-1]


@pytest.fixture
def data_dir() -> Path:
    """Path to the fixture data directory."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def data_store(data_dir: Path) -> DataStore:
    """
    Fresh DataStore instance for each test.

    Uses the real JSON fixtures but creates a new instance
    so tests don't interfere with each other.
    """
    return DataStore(data_dir=data_dir)


@pytest.fixture
def empty_store(tmp_path: Path) -> DataStore:
    """DataStore with no fixtures at all, for tests that build their own world."""
    return DataStore(data_dir=tmp_path)


@pytest.fixture
def event_bus() -> EventBus:
    """Fresh event bus for each test."""
    return EventBus()


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the environment."""
    return Settings()


@pytest.fixture
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def noon():
    """Clock fixed at midday, outside any quiet hours."""
    return lambda: datetime(2024, 3, 15, 12, 0)


@pytest.fixture
def late_night():
    """Clock fixed at 23:00, inside the 22:00-08:00 quiet window."""
    return lambda: datetime(2024, 3, 15, 23, 0)


@pytest.fixture
def email_channel() -> EmailChannel:
    """Fresh EmailChannel for each test."""
    return EmailChannel(fail_rate=0.0)


@pytest.fixture
def sms_channel() -> SMSChannel:
    """Fresh SMSChannel for each test."""
    return SMSChannel(fail_rate=0.0)


@pytest.fixture
def channels() -> NotificationChannels:
    """Fresh NotificationChannels registry for each test."""
    return NotificationChannels(
        email=EmailChannel(),
        sms=SMSChannel(),
        push=PushChannel(),
    )


@pytest.fixture
def make_order(data_store: DataStore):
    """
    Factory registering an order from Lomi Haus in the fixture store.

    Usage: make_order("ord-x", status=OrderStatus.PREPARING, customer_id="cust-003")
    """
    def _make(
        order_id: str = "ord-test",
        status: OrderStatus = OrderStatus.PENDING,
        customer_id: str = "cust-001",
        total_amount: float = 300.0,
        store: DataStore = data_store,
        **overrides,
    ) -> Order:
        fields = dict(
            id=order_id,
            customer_id=customer_id,
            restaurant_id="rest-001",
            vendor_id="vendor-001",
            restaurant_name="Lomi Haus",
            status=status,
            line_items=[LineItem(name="Special Lomi", quantity=2, unit_price=125.0)],
            subtotal=250.0,
            delivery_fee=50.0,
            total_amount=total_amount,
            restaurant_location=RESTAURANT_LOCATION,
            delivery_location=Location(lat=13.7400, lng=121.0700),
        )
        fields.update(overrides)
        return store.save_order(Order(**fields))

    return _make


def _rider_at(rider_id: str, km_north: float, **overrides) -> RiderState:
    fields = dict(
        rider_id=rider_id,
        name=rider_id.replace("-", " ").title(),
        phone=f"+63-917-555-0{rider_id[-3:]}",
        push_token=f"push-{rider_id}",
        is_online=True,
        location=Location(
            lat=RESTAURANT_LOCATION.lat + km_north * KM,
            lng=RESTAURANT_LOCATION.lng,
        ),
        rating=4.5,
        performance_score=80,
    )
    fields.update(overrides)
    return RiderState(**fields)


@pytest.fixture
def rider_at():
    """
    Factory for an eligible rider km_north kilometres due north of the restaurant.

    Usage: store.save_rider(rider_at("rider-a", 2.0, rating=4.9))
    """
    return _rider_at


# =============================================================================
# Fixture IDs
# =============================================================================

@pytest.fixture
def maria_customer_id() -> str:
    """Maria (cust-001): every contact, no stored preferences."""
    return "cust-001"


@pytest.fixture
def jose_customer_id() -> str:
    """Jose (cust-002): quiet hours 22:00-08:00 enabled."""
    return "cust-002"


@pytest.fixture
def ana_customer_id() -> str:
    """Ana (cust-003): order updates switched off."""
    return "cust-003"


@pytest.fixture
def ben_customer_id() -> str:
    """Ben (cust-004): email only (no phone, no push token, push off)."""
    return "cust-004"
