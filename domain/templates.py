"""
Notification message templates.

This module provides templates for every notification trigger. Templates
support variable substitution using Python's string formatting.

Design decisions:
- Templates are simple strings with {variable} placeholders
- Each trigger has an email (longer), SMS (short, 160 char target) and push
  (title + one line) variant
- Every template addresses the recipient as {name}
- Realtime frames reuse the short status messages in STATUS_MESSAGES
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from domain.models import ChannelType


class NotificationTrigger(str, Enum):
    """
    Everything that can cause a notification.

    The value is what gets stored as NotificationRecord.trigger.
    """
    # Customer order lifecycle
    ORDER_PLACED = "order_placed"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_PREPARING = "order_preparing"
    ORDER_READY = "order_ready"
    ORDER_PICKED_UP = "order_picked_up"
    ORDER_IN_TRANSIT = "order_in_transit"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"

    # Customer rider updates
    RIDER_ASSIGNED = "rider_assigned"
    RIDER_ARRIVING = "rider_arriving"

    # Vendor
    NEW_ORDER = "new_order"
    VENDOR_ORDER_CANCELLED = "vendor_order_cancelled"

    # Rider
    DELIVERY_OFFER = "delivery_offer"

    # Admin
    ASSIGNMENT_EXHAUSTED = "assignment_exhausted"

    # Platform announcements
    BULK_NOTIFICATION = "bulk_notification"


STATUS_MESSAGES: dict[str, str] = {
    "pending": "Your order has been placed and sent to {restaurant_name}.",
    "confirmed": "Great news! {restaurant_name} has confirmed your order.",
    "preparing": "Your food is being prepared by {restaurant_name}. Estimated completion in 15-20 minutes.",
    "ready": "Your order is ready for pickup! A rider will collect it soon.",
    "picked_up": "Your order has been picked up and is on the way to you!",
    "in_transit": "Your rider is on the way! Track their location in real-time.",
    "delivered": "Enjoy your meal! Your order has been delivered successfully.",
    "cancelled": "Your order has been cancelled. We apologize for any inconvenience.",
}


def status_message(status: str, restaurant_name: str = "the restaurant") -> str:
    """Short human message for an order status, used by SMS, push and realtime."""
    template = STATUS_MESSAGES.get(status, "Your order status has been updated to {status}.")
    return template.format(restaurant_name=restaurant_name, status=status)


@dataclass
class NotificationTemplate:
    """
    A notification template with email, SMS and push variants.

    Email templates can be longer and include more detail.
    SMS templates must be concise (ideally under 160 characters).
    """
    trigger: NotificationTrigger
    email_subject: str
    email_body: str
    sms_body: str
    push_title: str
    push_body: str

    def render_email(self, **kwargs) -> tuple[str, str]:
        """
        Render the email template with provided variables.

        Returns:
            Tuple of (subject, body)
        """
        return (
            self.email_subject.format(**kwargs),
            self.email_body.format(**kwargs),
        )

    def render_sms(self, **kwargs) -> str:
        """Render the SMS template with provided variables."""
        return self.sms_body.format(**kwargs)

    def render_push(self, **kwargs) -> tuple[str, str]:
        """Render the push template. Returns (title, body)."""
        return (
            self.push_title.format(**kwargs),
            self.push_body.format(**kwargs),
        )


def _status_update_template(trigger: NotificationTrigger, headline: str) -> NotificationTemplate:
    """Order status updates share one layout and differ in headline."""
    return NotificationTemplate(
        trigger=trigger,
        email_subject="Order Update - {restaurant_name} #{order_id}",
        email_body="""Hi {name},

""" + headline + """

{status_message}

Track your order any time from the order page.

Thank you for ordering with us!
""",
        sms_body="Order #{order_id}: {status_message}",
        push_title=headline,
        push_body="{status_message}",
    )


# =============================================================================
# Template Definitions
# =============================================================================

TEMPLATES: dict[NotificationTrigger, NotificationTemplate] = {

    # -------------------------------------------------------------------------
    # Customer order lifecycle
    # -------------------------------------------------------------------------

    NotificationTrigger.ORDER_PLACED: NotificationTemplate(
        trigger=NotificationTrigger.ORDER_PLACED,
        email_subject="Order Confirmed - #{order_id}",
        email_body="""Hi {name},

Thank you for your order! Your meal from {restaurant_name} has been sent to the kitchen.

Order Total: ₱{total_amount:.2f}

We'll keep you updated on your order status.
""",
        sms_body="Hi {name}! Your order #{order_id} from {restaurant_name} has been placed. Total: ₱{total_amount:.2f}.",
        push_title="Order Placed!",
        push_body="Your order from {restaurant_name} has been placed",
    ),

    NotificationTrigger.ORDER_CONFIRMED: _status_update_template(
        NotificationTrigger.ORDER_CONFIRMED, "Order Confirmed"
    ),
    NotificationTrigger.ORDER_PREPARING: _status_update_template(
        NotificationTrigger.ORDER_PREPARING, "Order Being Prepared"
    ),
    NotificationTrigger.ORDER_READY: _status_update_template(
        NotificationTrigger.ORDER_READY, "Order Ready"
    ),
    NotificationTrigger.ORDER_PICKED_UP: _status_update_template(
        NotificationTrigger.ORDER_PICKED_UP, "Order Picked Up"
    ),
    NotificationTrigger.ORDER_IN_TRANSIT: _status_update_template(
        NotificationTrigger.ORDER_IN_TRANSIT, "Rider On The Way"
    ),
    NotificationTrigger.ORDER_DELIVERED: _status_update_template(
        NotificationTrigger.ORDER_DELIVERED, "Order Delivered"
    ),
    NotificationTrigger.ORDER_CANCELLED: _status_update_template(
        NotificationTrigger.ORDER_CANCELLED, "Order Cancelled"
    ),

    # -------------------------------------------------------------------------
    # Rider updates for the customer
    # -------------------------------------------------------------------------

    NotificationTrigger.RIDER_ASSIGNED: NotificationTemplate(
        trigger=NotificationTrigger.RIDER_ASSIGNED,
        email_subject="A Rider Is Assigned To Order #{order_id}",
        email_body="""Hi {name},

{rider_name} will pick up your order #{order_id} from {restaurant_name}.

You can follow the delivery live from the order page.
""",
        sms_body="Order #{order_id}: {rider_name} will deliver your order.",
        push_title="Rider Assigned",
        push_body="{rider_name} will deliver your order from {restaurant_name}",
    ),

    NotificationTrigger.RIDER_ARRIVING: NotificationTemplate(
        trigger=NotificationTrigger.RIDER_ARRIVING,
        email_subject="Your Rider Is Nearby - Order #{order_id}",
        email_body="""Hi {name},

Your rider {rider_name} is nearby! ETA: {eta_minutes:.0f} minutes.
""",
        sms_body="Order #{order_id}: Your rider {rider_name} is nearby! ETA: {eta_minutes:.0f} min.",
        push_title="Rider Nearby!",
        push_body="Your rider {rider_name} is nearby! ETA: {eta_minutes:.0f} min",
    ),

    # -------------------------------------------------------------------------
    # Vendor alerts
    # -------------------------------------------------------------------------

    NotificationTrigger.NEW_ORDER: NotificationTemplate(
        trigger=NotificationTrigger.NEW_ORDER,
        email_subject="New Order Received - #{order_id}",
        email_body="""Hi {name},

You have a new order #{order_id} with {item_count} item(s).

Total: ₱{total_amount:.2f}

Please respond within 10 minutes to maintain your restaurant rating.
""",
        sms_body="New order #{order_id}. Total: ₱{total_amount:.2f}. {item_count} items. Check your dashboard to accept.",
        push_title="New Order Received!",
        push_body="Order #{order_id} - ₱{total_amount:.2f}",
    ),

    NotificationTrigger.VENDOR_ORDER_CANCELLED: NotificationTemplate(
        trigger=NotificationTrigger.VENDOR_ORDER_CANCELLED,
        email_subject="Order Cancelled - #{order_id}",
        email_body="""Hi {name},

Order #{order_id} has been cancelled. Please stop preparing it.
""",
        sms_body="Order #{order_id} has been cancelled. Please stop preparing it.",
        push_title="Order Cancelled",
        push_body="Order #{order_id} has been cancelled",
    ),

    # -------------------------------------------------------------------------
    # Rider offers
    # -------------------------------------------------------------------------

    NotificationTrigger.DELIVERY_OFFER: NotificationTemplate(
        trigger=NotificationTrigger.DELIVERY_OFFER,
        email_subject="New Delivery Offer - #{order_id}",
        email_body="""Hi {name},

A delivery from {restaurant_name} is waiting for you ({distance_km:.1f} km away).

Accept within {timeout_seconds:.0f} seconds in the app.
""",
        sms_body="New delivery offer! Order #{order_id} from {restaurant_name}, {distance_km:.1f} km away. Accept in app.",
        push_title="New Delivery Offer!",
        push_body="Pickup from {restaurant_name} - {distance_km:.1f} km away",
    ),

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    NotificationTrigger.ASSIGNMENT_EXHAUSTED: NotificationTemplate(
        trigger=NotificationTrigger.ASSIGNMENT_EXHAUSTED,
        email_subject="HIGH Order Issue - No Rider For #{order_id}",
        email_body="""Hi {name},

No rider accepted order #{order_id} after {attempts} attempts (search radius {radius_km:.2f} km).

The order is waiting for manual dispatch.
""",
        sms_body="URGENT: Order #{order_id} has no rider after {attempts} attempts. Manual dispatch needed.",
        push_title="Manual Dispatch Needed",
        push_body="Order #{order_id} has no rider",
    ),

    # -------------------------------------------------------------------------
    # Platform announcements
    # -------------------------------------------------------------------------

    NotificationTrigger.BULK_NOTIFICATION: NotificationTemplate(
        trigger=NotificationTrigger.BULK_NOTIFICATION,
        email_subject="{title}",
        email_body="""Hi {name},

{message}

You received this because you're subscribed to platform notifications.
""",
        sms_body="{message}",
        push_title="{title}",
        push_body="{message}",
    ),
}


# =============================================================================
# Template Access Functions
# =============================================================================

def get_template(trigger: NotificationTrigger) -> Optional[NotificationTemplate]:
    """Get a template by trigger."""
    return TEMPLATES.get(trigger)


def render_notification(
    trigger: NotificationTrigger,
    channel: ChannelType,
    **context
) -> tuple[Optional[str], str]:
    """
    Render a notification for a specific channel.

    Args:
        trigger: What caused the notification
        channel: email, sms or push
        **context: Variables to substitute in the template

    Returns:
        For email: (subject, body)
        For SMS: (None, body)
        For push: (title, body)

    Raises:
        ValueError: If template not found or channel invalid
    """
    template = get_template(trigger)
    if not template:
        raise ValueError(f"No template found for trigger: {trigger}")

    if channel == ChannelType.EMAIL:
        return template.render_email(**context)
    elif channel == ChannelType.SMS:
        return (None, template.render_sms(**context))
    elif channel == ChannelType.PUSH:
        return template.render_push(**context)
    else:
        raise ValueError(f"Unknown channel: {channel}")
