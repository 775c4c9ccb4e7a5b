"""
Errors raised by the dispatch core.

Only InvalidTransition and OrderNotFound reach callers of the order pipeline.
The others are operational signals: they are logged, recorded or handed to
alert callbacks, never allowed to break a committed transition.
"""

from typing import Optional


class DispatchError(Exception):
    """Base class for dispatch core errors."""


class OrderNotFound(DispatchError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidTransition(DispatchError):
    """The requested status is not an outgoing edge of the current status."""

    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_id} cannot move from '{from_status}' to '{to_status}'"
        )


class AssignmentExhausted(DispatchError):
    """No rider accepted before the radius and attempt caps were reached."""

    def __init__(self, order_id: str, attempts: int, radius_km: float):
        self.order_id = order_id
        self.attempts = attempts
        self.radius_km = radius_km
        super().__init__(
            f"No rider found for order {order_id} after {attempts} attempts "
            f"(search radius {radius_km:.2f} km); manual dispatch required"
        )


class AssignmentRaceLoss(DispatchError):
    """A rider action or timer arrived after the offer was already resolved."""

    def __init__(self, order_id: str, rider_id: Optional[str], action: str):
        self.order_id = order_id
        self.rider_id = rider_id
        self.action = action
        super().__init__(f"Offer for order {order_id} no longer available ({action})")


class ChannelDeliveryFailure(DispatchError):
    """A channel provider returned failure or raised."""

    def __init__(self, channel: str, recipient: str, reason: str):
        self.channel = channel
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"{channel} delivery to {recipient} failed: {reason}")
