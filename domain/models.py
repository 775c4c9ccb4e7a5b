"""
Domain models for the order dispatch core.

These models describe the records the dispatch core reads and writes: orders
and their status history, rider assignment requests, rider state, users and
their notification preferences, and the notification audit trail.

Design decisions:
- Using Pydantic for validation and serialization
- Orders, riders and users are owned by collaborator services; the core only
  mutates Order.status, Order.rider_id and RiderState.active_orders_count
- Notification preferences are stored partially populated and resolved into an
  EffectivePreference by a single function, merge_defaults()
"""

from datetime import datetime, time
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================

class OrderStatus(str, Enum):
    """Order lifecycle states. The legal edges live in dispatch.state_machine."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class AssignmentStatus(str, Enum):
    """
    States of a rider assignment request.

    REJECTED and TIMEOUT are transient: the request moves back to PENDING
    while the next candidate is searched for.
    """
    PENDING = "pending"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


TERMINAL_ASSIGNMENT_STATUSES = frozenset({
    AssignmentStatus.ACCEPTED,
    AssignmentStatus.EXHAUSTED,
    AssignmentStatus.CANCELLED,
})


class UserRole(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    RIDER = "rider"
    ADMIN = "admin"


class ChannelType(str, Enum):
    """Persistent notification channels. Realtime frames are not a channel here."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


# =============================================================================
# Orders
# =============================================================================

class Location(BaseModel):
    """A GPS coordinate."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class LineItem(BaseModel):
    """A single menu item within an order."""
    name: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)


class Order(BaseModel):
    """
    Order entity as seen by the dispatch core.

    Owned by the order service. Status changes go through
    OrderStateMachine.transition(); rider_id is set on assignment acceptance.
    """
    id: str = Field(..., description="Unique order identifier")
    customer_id: str = Field(..., description="Customer who placed the order")
    restaurant_id: str = Field(..., description="Restaurant preparing the order")
    vendor_id: Optional[str] = Field(
        default=None,
        description="User id of the restaurant owner, for vendor alerts"
    )
    rider_id: Optional[str] = Field(default=None, description="Assigned rider")
    status: OrderStatus = Field(default=OrderStatus.PENDING)
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: float = Field(default=0.0, ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)
    total_amount: float = Field(..., ge=0)
    restaurant_name: str = Field(default="the restaurant")
    restaurant_location: Location
    delivery_location: Location
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES


class OrderStatusHistoryEntry(BaseModel):
    """One committed transition. Append-only."""
    model_config = ConfigDict(frozen=True)

    order_id: str
    status: OrderStatus
    previous_status: OrderStatus
    changed_by: str
    notes: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Riders and assignment
# =============================================================================

class RiderState(BaseModel):
    """
    The slice of rider data the assignment queue needs.

    Read-only from the core's perspective except active_orders_count, which is
    incremented when the rider accepts an offer.
    """
    rider_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    push_token: Optional[str] = None
    is_online: bool = False
    is_available: bool = True
    is_verified: bool = True
    location: Optional[Location] = None
    active_orders_count: int = Field(default=0, ge=0)
    max_active_orders: int = Field(default=3, ge=1)
    rating: float = Field(default=0.0, ge=0, le=5)
    performance_score: float = Field(default=0.0, ge=0, le=100)

    @property
    def has_capacity(self) -> bool:
        return self.active_orders_count < self.max_active_orders


class OfferRecord(BaseModel):
    """One offer made to one rider, and how it ended."""
    rider_id: str
    offered_at: datetime = Field(default_factory=datetime.utcnow)
    outcome: Optional[AssignmentStatus] = None


class AssignmentRequest(BaseModel):
    """
    The mutable record tracking one order's courier-matching attempt.

    rejected_by only grows and attempts only increases. At most one
    non-terminal request exists per order.
    """
    id: str = Field(default_factory=lambda: f"asg-{uuid4().hex[:12]}")
    order_id: str
    priority: int = Field(default=1, ge=1, le=5)
    search_radius_km: float = Field(..., gt=0)
    max_radius_km: float = Field(..., gt=0)
    estimated_value: float = Field(default=0.0, ge=0)
    restaurant_location: Location
    delivery_location: Location
    assigned_rider_id: Optional[str] = None
    rejected_by: list[str] = Field(default_factory=list)
    attempts: int = Field(default=0, ge=0)
    status: AssignmentStatus = Field(default=AssignmentStatus.PENDING)
    offers: list[OfferRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    offered_at: Optional[datetime] = None
    timeout_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ASSIGNMENT_STATUSES


# =============================================================================
# Users and notification preferences
# =============================================================================

class User(BaseModel):
    """Contact details for a notification recipient."""
    id: str
    name: str
    role: UserRole = UserRole.CUSTOMER
    email: Optional[str] = None
    phone: Optional[str] = None
    push_token: Optional[str] = None

    def contact_for(self, channel: ChannelType) -> Optional[str]:
        """The address to use for a channel, or None if the user has none."""
        if channel == ChannelType.EMAIL:
            return self.email
        if channel == ChannelType.SMS:
            return self.phone
        return self.push_token


class NotificationPreference(BaseModel):
    """
    A user's stored notification preferences.

    Every switch is optional: the record may be partially populated, and a
    missing switch means "on". Resolve with merge_defaults() before use.
    """
    user_id: str

    # Channel master switches
    email_notifications: Optional[bool] = None
    sms_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None

    # Order updates and their per-status switches
    order_updates: Optional[bool] = None
    order_placed: Optional[bool] = None
    order_confirmed: Optional[bool] = None
    order_preparing: Optional[bool] = None
    order_ready: Optional[bool] = None
    order_delivered: Optional[bool] = None

    # Rider updates
    rider_updates: Optional[bool] = None
    rider_assigned: Optional[bool] = None
    rider_arriving: Optional[bool] = None

    promotions: Optional[bool] = None

    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")
    quiet_hours_end: Optional[str] = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _valid_time_of_day(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_time_of_day(value)
        return value


class EffectivePreference(BaseModel):
    """Fully resolved preferences. Only merge_defaults() builds these."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email_notifications: bool = True
    sms_notifications: bool = True
    push_notifications: bool = True
    order_updates: bool = True
    order_placed: bool = True
    order_confirmed: bool = True
    order_preparing: bool = True
    order_ready: bool = True
    order_delivered: bool = True
    rider_updates: bool = True
    rider_assigned: bool = True
    rider_arriving: bool = True
    promotions: bool = True
    quiet_hours_enabled: bool = False
    quiet_hours_start: time = time(22, 0)
    quiet_hours_end: time = time(8, 0)

    def channel_enabled(self, channel: ChannelType) -> bool:
        return getattr(self, f"{channel.value}_notifications")


def parse_time_of_day(value: str) -> time:
    """
    Parse "HH:MM" (00:00 to 23:59, or 24:00) into a time.

    "24:00" is the end of the day, so a 22:00-24:00 window runs up to midnight
    and 00:00-24:00 covers the whole day.

    Raises:
        ValueError: If the value is not a time of day
    """
    hours, minutes = (int(part) for part in value.split(":"))
    if (hours, minutes) == (24, 0):
        return time.max
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"{value!r} is not a time of day between 00:00 and 24:00")
    return time(hours, minutes)


def merge_defaults(
    pref: Optional[NotificationPreference],
    user_id: str = "",
    default_quiet_start: str = "22:00",
    default_quiet_end: str = "08:00",
) -> EffectivePreference:
    """
    Resolve stored preferences into effective ones.

    The one rule: an absent switch is on, quiet hours are off unless enabled,
    and the quiet window falls back to the configured defaults. No record at
    all yields every switch on.
    """
    resolved: dict = {
        "user_id": pref.user_id if pref else user_id,
        "quiet_hours_start": parse_time_of_day(default_quiet_start),
        "quiet_hours_end": parse_time_of_day(default_quiet_end),
    }
    if pref is None:
        return EffectivePreference(**resolved)

    for name, value in pref.model_dump(exclude={"user_id"}).items():
        if value is None:
            continue
        if name in ("quiet_hours_start", "quiet_hours_end"):
            value = parse_time_of_day(value)
        resolved[name] = value
    return EffectivePreference(**resolved)


# =============================================================================
# Notification audit trail and bulk sends
# =============================================================================

class NotificationRecord(BaseModel):
    """
    One delivery attempt on one channel. Immutable once written.

    Retries produce new records; records are never deduplicated.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(default_factory=lambda: f"ntf-{uuid4().hex[:12]}")
    order_id: str = ""
    recipient_id: str
    recipient_role: UserRole = UserRole.CUSTOMER
    channel: ChannelType
    trigger: str
    subject: Optional[str] = None
    message: str
    status: DeliveryStatus
    sent_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BulkNotificationRequest(BaseModel):
    """A platform announcement to many users at once."""
    user_ids: list[str] = Field(..., description="Users to notify")
    title: str
    message: str
    channels: list[ChannelType] = Field(
        default_factory=lambda: [ChannelType.EMAIL, ChannelType.SMS, ChannelType.PUSH],
        description="Channels to attempt for every user"
    )
    urgency: Urgency = Urgency.LOW


class BulkNotificationResult(BaseModel):
    """
    Aggregate outcome of a bulk send.

    Every (user, requested channel) pair is counted exactly once, so
    successful + failed + skipped == len(user_ids) * len(channels).
    """
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
