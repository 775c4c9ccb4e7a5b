"""
Notification orchestrator.

This service subscribes to order and assignment events and decides, for every
recipient, whether to notify, on which channels, and when quiet hours keep a
channel silent. It encapsulates all notification logic in one place.

Design decisions:
- Subscribes to events, doesn't poll or get called directly
- Event handlers only enqueue work on a bounded thread pool; each channel send
  is its own task, so the thread that committed a transition never waits on a
  provider
- The decision is a pipeline of small pure functions: merge_defaults,
  preference_allows, urgency_for, is_in_quiet_hours, channel_matrix
- Every provider call ends in a NotificationRecord, sent or failed. Failures
  are not retried and records are not deduplicated
- Cancellations override the recipient's update preferences; channel
  switches and quiet-hours gating still apply
- Realtime frames are not gated here; the realtime hub handles those

Decision matrix (in quiet hours):
    critical: email, sms, push
    high:     sms, push
    medium:   nothing
    low:      nothing
Outside quiet hours every channel is allowed.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, time
from time import monotonic
from typing import Callable, Optional

from dispatch.event_bus import Event, EventBus, get_event_bus
from dispatch.events import EventTypes
from domain.channels import NotificationChannels
from domain.config import Settings, get_settings
from domain.data_store import DataStore, get_data_store
from domain.errors import ChannelDeliveryFailure
from domain.models import (
    BulkNotificationRequest,
    BulkNotificationResult,
    ChannelType,
    DeliveryStatus,
    EffectivePreference,
    NotificationRecord,
    Urgency,
    User,
    UserRole,
    merge_defaults,
)
from domain.templates import NotificationTrigger, render_notification, status_message

logger = logging.getLogger("notification_service")


# =============================================================================
# Decision helpers (pure)
# =============================================================================

# trigger -> (category master switch, per-trigger switch)
TRIGGER_PREFERENCES: dict[NotificationTrigger, tuple[Optional[str], Optional[str]]] = {
    NotificationTrigger.ORDER_PLACED: ("order_updates", "order_placed"),
    NotificationTrigger.ORDER_CONFIRMED: ("order_updates", "order_confirmed"),
    NotificationTrigger.ORDER_PREPARING: ("order_updates", "order_preparing"),
    NotificationTrigger.ORDER_READY: ("order_updates", "order_ready"),
    NotificationTrigger.ORDER_PICKED_UP: ("order_updates", None),
    NotificationTrigger.ORDER_IN_TRANSIT: ("order_updates", None),
    NotificationTrigger.ORDER_DELIVERED: ("order_updates", "order_delivered"),
    NotificationTrigger.ORDER_CANCELLED: ("order_updates", None),
    NotificationTrigger.RIDER_ASSIGNED: ("rider_updates", "rider_assigned"),
    NotificationTrigger.RIDER_ARRIVING: ("rider_updates", "rider_arriving"),
}

# Always notify, whatever the update preferences say
PREFERENCE_OVERRIDES = frozenset({
    NotificationTrigger.ORDER_CANCELLED,
    NotificationTrigger.VENDOR_ORDER_CANCELLED,
})

HIGH_URGENCY_TRIGGERS = frozenset({
    NotificationTrigger.ORDER_IN_TRANSIT,
    NotificationTrigger.ORDER_DELIVERED,
    NotificationTrigger.ORDER_CANCELLED,
    NotificationTrigger.VENDOR_ORDER_CANCELLED,
    NotificationTrigger.RIDER_ARRIVING,
    NotificationTrigger.DELIVERY_OFFER,
    NotificationTrigger.ASSIGNMENT_EXHAUSTED,
})

MEDIUM_URGENCY_TRIGGERS = frozenset({
    NotificationTrigger.ORDER_PLACED,
    NotificationTrigger.ORDER_CONFIRMED,
    NotificationTrigger.ORDER_PREPARING,
    NotificationTrigger.ORDER_READY,
    NotificationTrigger.ORDER_PICKED_UP,
    NotificationTrigger.RIDER_ASSIGNED,
    NotificationTrigger.NEW_ORDER,
})

STATUS_TRIGGERS: dict[str, NotificationTrigger] = {
    "confirmed": NotificationTrigger.ORDER_CONFIRMED,
    "preparing": NotificationTrigger.ORDER_PREPARING,
    "ready": NotificationTrigger.ORDER_READY,
    "picked_up": NotificationTrigger.ORDER_PICKED_UP,
    "in_transit": NotificationTrigger.ORDER_IN_TRANSIT,
    "delivered": NotificationTrigger.ORDER_DELIVERED,
    "cancelled": NotificationTrigger.ORDER_CANCELLED,
}


def preference_allows(pref: EffectivePreference, trigger: NotificationTrigger) -> bool:
    """
    Check the category master switch, then the trigger's own switch.

    Triggers with no switch (vendor, rider and admin alerts) are always allowed.
    """
    category, key = TRIGGER_PREFERENCES.get(trigger, (None, None))
    if category and not getattr(pref, category):
        return False
    if key and not getattr(pref, key):
        return False
    return True


def urgency_for(trigger: NotificationTrigger) -> Urgency:
    """Critical is reserved for security-class events; order flow never derives it."""
    if trigger in HIGH_URGENCY_TRIGGERS:
        return Urgency.HIGH
    if trigger in MEDIUM_URGENCY_TRIGGERS:
        return Urgency.MEDIUM
    return Urgency.LOW


def is_in_quiet_hours(pref: EffectivePreference, current_time: time) -> bool:
    """
    True if current_time falls in the recipient's quiet window.

    A window whose start is after its end wraps midnight (22:00-08:00). The end
    is exclusive in both cases.
    """
    if not pref.quiet_hours_enabled:
        return False

    start, end = pref.quiet_hours_start, pref.quiet_hours_end
    if start > end:
        return current_time >= start or current_time < end
    return start <= current_time < end


def channel_matrix(urgency: Urgency, in_quiet_hours: bool) -> dict[ChannelType, bool]:
    """Which channels an urgency tier may use, before the user's own switches."""
    if urgency == Urgency.CRITICAL:
        return {channel: True for channel in ChannelType}
    if urgency == Urgency.HIGH:
        return {
            ChannelType.EMAIL: not in_quiet_hours,
            ChannelType.SMS: True,
            ChannelType.PUSH: True,
        }
    return {channel: not in_quiet_hours for channel in ChannelType}


def decide_channels(
    pref: EffectivePreference,
    urgency: Urgency,
    current_time: time,
) -> list[ChannelType]:
    """Channels allowed by both the urgency matrix and the user's channel switches."""
    matrix = channel_matrix(urgency, is_in_quiet_hours(pref, current_time))
    return [
        channel for channel in ChannelType
        if matrix[channel] and pref.channel_enabled(channel)
    ]


# =============================================================================
# Orchestrator
# =============================================================================

class NotificationService:
    """
    Event-driven notification orchestrator.

    Example:
        service = NotificationService()
        service.start()

        # Transitions now notify customers, vendors, riders and admins
        machine.transition("ord-001", "confirmed", actor_id="vendor-001")
        service.flush()
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        data_store: Optional[DataStore] = None,
        channels: Optional[NotificationChannels] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Initialize the notification service.

        Args:
            event_bus: Event bus to subscribe to (defaults to singleton)
            data_store: Users, preferences and the notification store (defaults to singleton)
            channels: Channel providers (defaults to the mock providers)
            settings: Worker counts and quiet-hours defaults (defaults to singleton)
            clock: Local wall clock used for quiet hours (defaults to datetime.now)
            executor: Pool running channel sends (defaults to a new bounded pool)
        """
        self.event_bus = event_bus or get_event_bus()
        self.data_store = data_store or get_data_store()
        self.channels = channels or NotificationChannels()
        self.settings = settings or get_settings()
        self.clock = clock or datetime.now
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.notification_workers,
            thread_name_prefix="notify",
        )

        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        self._started = False

        self._handlers: dict[str, Callable[[Event], None]] = {
            EventTypes.ORDER_PLACED: self._handle_order_placed,
            EventTypes.ORDER_STATUS_CHANGED: self._handle_order_status_changed,
            EventTypes.ASSIGNMENT_OFFERED: self._handle_assignment_offered,
            EventTypes.RIDER_ASSIGNED: self._handle_rider_assigned,
            EventTypes.RIDER_NEARBY: self._handle_rider_nearby,
            EventTypes.ASSIGNMENT_EXHAUSTED: self._handle_assignment_exhausted,
        }

    def start(self) -> None:
        """Start the notification service by subscribing to events."""
        if self._started:
            logger.warning("NotificationService already started")
            return

        for event_type, handler in self._handlers.items():
            self.event_bus.subscribe(event_type, handler)

        self._started = True
        logger.info("NotificationService started - subscribed to events")

    def stop(self) -> None:
        """Stop the service by unsubscribing from events."""
        if not self._started:
            return

        for event_type, handler in self._handlers.items():
            self.event_bus.unsubscribe(event_type, handler)

        self._started = False
        logger.info("NotificationService stopped")

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """
        Wait for queued notification work to finish.

        Returns:
            True if everything finished within timeout
        """
        deadline = None if timeout is None else monotonic() + timeout
        while True:
            with self._pending_lock:
                pending = list(self._pending)
            if not pending:
                return True
            remaining = None
            if deadline is not None:
                remaining = deadline - monotonic()
                if remaining <= 0:
                    return False
            wait(pending, timeout=remaining)

    def shutdown(self) -> None:
        """Unsubscribe, finish queued work and stop the worker pool."""
        self.stop()
        self.executor.shutdown(wait=True)

    def _submit(self, fn: Callable, *args) -> Future:
        future = self.executor.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._task_done)
        return future

    def _task_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.error(f"Notification task failed: {error}")

    # =========================================================================
    # Event Handlers
    # =========================================================================

    def _handle_order_placed(self, event: Event) -> None:
        """Customer gets a confirmation; the restaurant owner gets a new-order alert."""
        payload = event.payload
        order_id = payload["order_id"]

        self._enqueue(
            payload["customer_id"],
            NotificationTrigger.ORDER_PLACED,
            order_id,
            restaurant_name=payload["restaurant_name"],
            total_amount=payload["total_amount"],
        )
        if payload.get("vendor_id"):
            self._enqueue(
                payload["vendor_id"],
                NotificationTrigger.NEW_ORDER,
                order_id,
                item_count=payload["item_count"],
                total_amount=payload["total_amount"],
            )

    def _handle_order_status_changed(self, event: Event) -> None:
        payload = event.payload
        order_id = payload["order_id"]
        new_status = payload["new_status"]

        trigger = STATUS_TRIGGERS.get(new_status)
        if trigger is None:
            return

        logger.info(f"Handling OrderStatusChanged: order={order_id}, status={new_status}")
        self._enqueue(
            payload["customer_id"],
            trigger,
            order_id,
            restaurant_name=payload["restaurant_name"],
            status_message=status_message(new_status, payload["restaurant_name"]),
        )
        if trigger == NotificationTrigger.ORDER_CANCELLED and payload.get("vendor_id"):
            self._enqueue(
                payload["vendor_id"],
                NotificationTrigger.VENDOR_ORDER_CANCELLED,
                order_id,
            )

    def _handle_assignment_offered(self, event: Event) -> None:
        payload = event.payload
        rider = self.data_store.get_rider(payload["rider_id"])
        if rider is None:
            logger.error(f"Rider not found: {payload['rider_id']}")
            return

        recipient = User(
            id=rider.rider_id,
            name=rider.name or rider.rider_id,
            role=UserRole.RIDER,
            email=rider.email,
            phone=rider.phone,
            push_token=rider.push_token,
        )
        self._enqueue(
            recipient,
            NotificationTrigger.DELIVERY_OFFER,
            payload["order_id"],
            restaurant_name=payload["restaurant_name"],
            distance_km=payload["distance_km"],
            timeout_seconds=payload["timeout_seconds"],
        )

    def _handle_rider_assigned(self, event: Event) -> None:
        payload = event.payload
        self._enqueue(
            payload["customer_id"],
            NotificationTrigger.RIDER_ASSIGNED,
            payload["order_id"],
            rider_name=payload["rider_name"],
            restaurant_name=payload["restaurant_name"],
        )

    def _handle_rider_nearby(self, event: Event) -> None:
        payload = event.payload
        self._enqueue(
            payload["customer_id"],
            NotificationTrigger.RIDER_ARRIVING,
            payload["order_id"],
            rider_name=payload["rider_name"],
            eta_minutes=payload["eta_minutes"],
        )

    def _handle_assignment_exhausted(self, event: Event) -> None:
        """Every admin hears about orders waiting for manual dispatch."""
        payload = event.payload
        admins = self.data_store.get_users_by_role(UserRole.ADMIN)
        if not admins:
            logger.warning(f"No admin to alert about order {payload['order_id']}")

        for admin in admins:
            self._enqueue(
                admin,
                NotificationTrigger.ASSIGNMENT_EXHAUSTED,
                payload["order_id"],
                attempts=payload["attempts"],
                radius_km=payload["radius_km"],
            )

    # =========================================================================
    # Notification Sending Logic
    # =========================================================================

    def _enqueue(self, recipient, trigger: NotificationTrigger, order_id: str, **context) -> None:
        """Hand one (event, recipient) pair to the workers."""
        self._submit(self._notify, recipient, trigger, order_id, context)

    def _load_preference(self, user_id: str) -> EffectivePreference:
        return merge_defaults(
            self.data_store.get_notification_preferences(user_id),
            user_id=user_id,
            default_quiet_start=self.settings.default_quiet_start,
            default_quiet_end=self.settings.default_quiet_end,
        )

    def _notify(self, recipient, trigger: NotificationTrigger, order_id: str, context: dict) -> None:
        """
        Decide the channels for one recipient and queue a send per channel.

        1. Load preferences (defaults when the user has none)
        2. Check the update switches, unless the trigger overrides them
        3. Urgency and quiet hours pick the channels, and the user's channel
           switches narrow them further
        4. One send task per channel that has contact details
        """
        if isinstance(recipient, str):
            user = self.data_store.get_user(recipient)
            if user is None:
                logger.error(f"User not found: {recipient}")
                return
            recipient = user

        pref = self._load_preference(recipient.id)
        if trigger not in PREFERENCE_OVERRIDES and not preference_allows(pref, trigger):
            logger.info(f"User {recipient.id} has disabled {trigger.value} notifications")
            return

        urgency = urgency_for(trigger)
        channels = decide_channels(pref, urgency, self.clock().time())
        if not channels:
            logger.info(
                f"No channel allowed for {trigger.value} to {recipient.id} "
                f"(urgency {urgency.value})"
            )
            return

        for channel in channels:
            if not recipient.contact_for(channel):
                logger.info(f"Skipping {channel.value} for {recipient.id}: no contact details")
                continue
            self._submit(self._send_on_channel, recipient, channel, trigger, order_id, context)

    def _send_on_channel(
        self,
        recipient: User,
        channel: ChannelType,
        trigger: NotificationTrigger,
        order_id: str,
        context: dict,
    ) -> NotificationRecord:
        """
        Render, send and record one message.

        A record is persisted whatever the provider returns or raises.
        """
        address = recipient.contact_for(channel)
        subject, body = render_notification(
            trigger, channel, name=recipient.name, order_id=order_id, **context
        )

        status = DeliveryStatus.SENT
        failure_reason = None
        try:
            if not self.channels.send(channel, address, subject, body):
                raise ChannelDeliveryFailure(channel.value, address, "provider reported failure")
        except ChannelDeliveryFailure as e:
            status, failure_reason = DeliveryStatus.FAILED, e.reason
            logger.error(str(e))
        except Exception as e:
            failure = ChannelDeliveryFailure(channel.value, address, str(e))
            status, failure_reason = DeliveryStatus.FAILED, failure.reason
            logger.error(str(failure))

        record = self.data_store.create_order_notification(NotificationRecord(
            order_id=order_id,
            recipient_id=recipient.id,
            recipient_role=recipient.role,
            channel=channel,
            trigger=trigger.value,
            subject=subject,
            message=body,
            status=status,
            sent_at=self.clock() if status == DeliveryStatus.SENT else None,
            failure_reason=failure_reason,
        ))

        if status == DeliveryStatus.SENT:
            logger.info(f"Sent {trigger.value} via {channel.value} to {recipient.id}")
        return record

    # =========================================================================
    # Bulk notifications
    # =========================================================================

    def send_bulk_notification(self, request: BulkNotificationRequest) -> BulkNotificationResult:
        """
        Send one announcement to many users.

        Users are processed in parallel, at most bulk_max_concurrency at a time.
        Every (user, requested channel) pair is counted exactly once:
        successful, failed, or skipped (unknown user, channel switched off or
        gated by quiet hours, missing contact details). One user's failure never
        fails the batch.
        """
        result = BulkNotificationResult(total=len(request.user_ids) * len(request.channels))
        if not request.user_ids or not request.channels:
            return result

        workers = min(self.settings.bulk_max_concurrency, len(request.user_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk") as pool:
            per_user = list(pool.map(lambda user_id: self._bulk_for_user(user_id, request), request.user_ids))

        for outcomes in per_user:
            for outcome in outcomes:
                setattr(result, outcome, getattr(result, outcome) + 1)

        logger.info(
            f"Bulk notification complete: {result.successful} successful, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result

    def _bulk_for_user(self, user_id: str, request: BulkNotificationRequest) -> list[str]:
        """One outcome per requested channel: successful, failed or skipped."""
        try:
            user = self.data_store.get_user(user_id)
            if user is None:
                logger.info(f"Bulk: unknown user {user_id}")
                return ["skipped"] * len(request.channels)

            pref = self._load_preference(user_id)
            allowed = decide_channels(pref, request.urgency, self.clock().time())

            outcomes = []
            for channel in request.channels:
                if channel not in allowed or not user.contact_for(channel):
                    outcomes.append("skipped")
                    continue
                record = self._send_on_channel(
                    user,
                    channel,
                    NotificationTrigger.BULK_NOTIFICATION,
                    "",
                    {"title": request.title, "message": request.message},
                )
                outcomes.append("successful" if record.status == DeliveryStatus.SENT.value else "failed")
            return outcomes
        except Exception as e:
            logger.error(f"Bulk notification to {user_id} failed: {e}")
            return ["failed"] * len(request.channels)
