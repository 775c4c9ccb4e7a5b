"""
Shared domain layer for the order dispatch core.

This package contains the records and collaborator stand-ins the dispatch
components work against:
- Domain models (Order, AssignmentRequest, RiderState, NotificationPreference, etc.)
- Errors and runtime settings
- Data store for JSON-backed orders, riders, users and preferences
- Mock notification channels (Email, SMS, Push)
- Notification templates and the distance provider
"""

from domain.models import (
    AssignmentRequest,
    AssignmentStatus,
    ChannelType,
    EffectivePreference,
    Location,
    NotificationPreference,
    NotificationRecord,
    Order,
    OrderStatus,
    OrderStatusHistoryEntry,
    RiderState,
    Urgency,
    User,
    UserRole,
    merge_defaults,
)
from domain.config import Settings, get_settings
from domain.data_store import DataStore
from domain.channels import EmailChannel, SMSChannel, PushChannel, NotificationChannels
from domain.errors import (
    AssignmentExhausted,
    AssignmentRaceLoss,
    ChannelDeliveryFailure,
    DispatchError,
    InvalidTransition,
    OrderNotFound,
)

__all__ = [
    "AssignmentRequest",
    "AssignmentStatus",
    "ChannelType",
    "EffectivePreference",
    "Location",
    "NotificationPreference",
    "NotificationRecord",
    "Order",
    "OrderStatus",
    "OrderStatusHistoryEntry",
    "RiderState",
    "Urgency",
    "User",
    "UserRole",
    "merge_defaults",
    "Settings",
    "get_settings",
    "DataStore",
    "EmailChannel",
    "SMSChannel",
    "PushChannel",
    "NotificationChannels",
    "AssignmentExhausted",
    "AssignmentRaceLoss",
    "ChannelDeliveryFailure",
    "DispatchError",
    "InvalidTransition",
    "OrderNotFound",
]
