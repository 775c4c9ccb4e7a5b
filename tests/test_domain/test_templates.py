"""
Tests for notification templates.
"""

import pytest

from domain.models import ChannelType
from domain.templates import (
    NotificationTrigger,
    TEMPLATES,
    get_template,
    render_notification,
    status_message,
)


ORDER_CONTEXT = dict(
    name="Maria Santos",
    order_id="ord-001",
    restaurant_name="Lomi Haus",
    total_amount=450.0,
    status_message="Your order is ready for pickup! A rider will collect it soon.",
)


class TestTemplateCoverage:

    @pytest.mark.parametrize("trigger", list(NotificationTrigger))
    def test_every_trigger_has_a_template(self, trigger):
        template = get_template(trigger)

        assert template is not None
        assert template.trigger == trigger

    def test_no_orphan_templates(self):
        assert set(TEMPLATES) == set(NotificationTrigger)


class TestStatusMessage:

    def test_known_status(self):
        message = status_message("confirmed", restaurant_name="Lomi Haus")
        assert message == "Great news! Lomi Haus has confirmed your order."

    def test_unknown_status_falls_back(self):
        assert status_message("lost") == "Your order status has been updated to lost."


class TestRenderNotification:

    def test_render_email(self):
        subject, body = render_notification(
            NotificationTrigger.ORDER_READY, ChannelType.EMAIL, **ORDER_CONTEXT
        )

        assert subject == "Order Update - Lomi Haus #ord-001"
        assert "Hi Maria Santos" in body
        assert "Order Ready" in body
        assert ORDER_CONTEXT["status_message"] in body

    def test_render_sms_has_no_subject(self):
        subject, body = render_notification(
            NotificationTrigger.ORDER_READY, ChannelType.SMS, **ORDER_CONTEXT
        )

        assert subject is None
        assert body.startswith("Order #ord-001:")
        assert len(body) <= 160

    def test_render_push(self):
        title, body = render_notification(
            NotificationTrigger.ORDER_READY, ChannelType.PUSH, **ORDER_CONTEXT
        )

        assert title == "Order Ready"
        assert body == ORDER_CONTEXT["status_message"]

    def test_order_placed_formats_amount(self):
        _, body = render_notification(
            NotificationTrigger.ORDER_PLACED, ChannelType.SMS, **ORDER_CONTEXT
        )
        assert "₱450.00" in body

    def test_rider_arriving(self):
        title, body = render_notification(
            NotificationTrigger.RIDER_ARRIVING,
            ChannelType.PUSH,
            name="Maria Santos",
            order_id="ord-003",
            rider_name="Dina Flores",
            eta_minutes=1.6,
        )

        assert title == "Rider Nearby!"
        assert body == "Your rider Dina Flores is nearby! ETA: 2 min"

    def test_missing_variable_raises(self):
        with pytest.raises(KeyError):
            render_notification(NotificationTrigger.ORDER_PLACED, ChannelType.EMAIL, name="x")

    def test_bulk_uses_title_and_message(self):
        subject, body = render_notification(
            NotificationTrigger.BULK_NOTIFICATION,
            ChannelType.EMAIL,
            name="Ana",
            title="Holiday Hours",
            message="We close early on the 24th.",
        )

        assert subject == "Holiday Hours"
        assert "We close early on the 24th." in body
