"""
Order dispatch core.

This package implements the order pipeline:
- The state machine validates and commits status changes and publishes events
- The assignment queue matches ready orders to riders
- The notification service routes events to email, SMS and push
- The realtime hub fans the same events out to live connections
Components are decoupled via the event bus.
"""

from dispatch.event_bus import Event, EventBus, get_event_bus, reset_event_bus
from dispatch.state_machine import OrderStateMachine, can_transition
from dispatch.assignment_queue import RiderAssignmentQueue
from dispatch.notification_service import NotificationService
from dispatch.realtime import RealtimeHub
from dispatch.tracking import RiderTracker
from dispatch.runtime import DispatchRuntime

__all__ = [
    "Event",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
    "OrderStateMachine",
    "can_transition",
    "RiderAssignmentQueue",
    "NotificationService",
    "RealtimeHub",
    "RiderTracker",
    "DispatchRuntime",
]
