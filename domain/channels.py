"""
Mock notification channel providers.

These providers simulate email, SMS and push delivery by logging the output.
In a real deployment they would wrap:
- Email: SMTP / Nodemailer-style relays, SendGrid, AWS SES
- SMS: Twilio, Semaphore, AWS SNS
- Push: Web Push / FCM

Design decisions:
- One ChannelProvider contract: send(recipient, subject, body) -> bool
- All sends are logged for visibility
- Providers track sent messages for test assertions
- Failures can be simulated by rate or for specific recipients
- Thread-safe: the orchestrator calls providers from worker threads
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Protocol

from domain.models import ChannelType

# Configure logging for notification channels
logger = logging.getLogger("notifications")
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter(
    "%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S"
))
logger.addHandler(handler)
logger.setLevel(logging.INFO)


class ChannelProvider(Protocol):
    """The single contract every channel implements."""

    def send(self, recipient: str, subject: Optional[str], body: str) -> bool:
        ...


@dataclass
class NotificationResult:
    """
    Result of a send attempt, kept by the mock providers.

    Captures success/failure and metadata for debugging and testing.
    """
    success: bool
    channel: ChannelType
    recipient: str
    subject: Optional[str]
    body: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    error: Optional[str] = None

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        if self.channel == ChannelType.SMS:
            return f"{status} SMS to {self.recipient}: {self.body[:50]}..."
        return f"{status} {self.channel.value.upper()} to {self.recipient}: {self.subject}"


class MockChannel:
    """
    Shared behaviour of the mock providers.

    Subclasses set channel_type and may override _check_message().
    """

    channel_type: ChannelType

    def __init__(
        self,
        fail_rate: float = 0.0,
        failing_recipients: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            fail_rate: Probability of send failure (0.0 to 1.0), for testing.
            failing_recipients: Recipients whose sends always fail.
        """
        self.fail_rate = fail_rate
        self.failing_recipients = set(failing_recipients or ())
        self.sent_messages: list[NotificationResult] = []
        self._lock = threading.Lock()

    def send(self, recipient: str, subject: Optional[str], body: str) -> bool:
        """
        Send a message (mock implementation).

        Returns:
            True if the provider accepted the message
        """
        label = self.channel_type.value.upper()
        self._check_message(body)

        if recipient in self.failing_recipients or random.random() < self.fail_rate:
            result = NotificationResult(
                success=False,
                channel=self.channel_type,
                recipient=recipient,
                subject=subject,
                body=body,
                error=f"Simulated {self.channel_type.value} delivery failure",
            )
            logger.error(f"[{label} FAILED] To: {recipient} | Error: {result.error}")
        else:
            result = NotificationResult(
                success=True,
                channel=self.channel_type,
                recipient=recipient,
                subject=subject,
                body=body,
            )
            logger.info(f"[{label}] To: {recipient} | {subject or body}")
            logger.debug(f"[{label} BODY] {body}")

        with self._lock:
            self.sent_messages.append(result)
        return result.success

    def _check_message(self, body: str) -> None:
        pass

    def get_sent_count(self) -> int:
        """Get the number of messages sent (for testing)."""
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[NotificationResult]:
        """Get all successful sends."""
        return [m for m in self.sent_messages if m.success]

    def clear_history(self):
        """Clear sent message history (useful between tests)."""
        with self._lock:
            self.sent_messages.clear()

    def find_message_to(self, recipient: str) -> Optional[NotificationResult]:
        """Find a message sent to a specific recipient."""
        for msg in self.sent_messages:
            if msg.recipient == recipient:
                return msg
        return None


class EmailChannel(MockChannel):
    """Mock email provider."""

    channel_type = ChannelType.EMAIL


class SMSChannel(MockChannel):
    """
    Mock SMS provider.

    SMS messages are typically shorter than emails.
    """

    channel_type = ChannelType.SMS

    # SMS typically have character limits
    MAX_LENGTH = 160

    def _check_message(self, body: str) -> None:
        if len(body) > self.MAX_LENGTH:
            logger.warning(
                f"[SMS] Message length ({len(body)}) exceeds {self.MAX_LENGTH} chars, "
                "may be split into multiple messages"
            )


class PushChannel(MockChannel):
    """Mock push provider. Recipients are device push tokens."""

    channel_type = ChannelType.PUSH


class NotificationChannels:
    """
    Registry of channel providers.

    The orchestrator is written against ChannelProvider only; adding a channel
    means registering another provider here.
    """

    def __init__(
        self,
        email: Optional[ChannelProvider] = None,
        sms: Optional[ChannelProvider] = None,
        push: Optional[ChannelProvider] = None,
    ):
        self.email = email or EmailChannel()
        self.sms = sms or SMSChannel()
        self.push = push or PushChannel()
        self._providers: dict[ChannelType, ChannelProvider] = {
            ChannelType.EMAIL: self.email,
            ChannelType.SMS: self.sms,
            ChannelType.PUSH: self.push,
        }

    def get(self, channel: ChannelType) -> ChannelProvider:
        """
        Look up the provider for a channel.

        Raises:
            ValueError: If no provider is registered for the channel
        """
        provider = self._providers.get(ChannelType(channel))
        if provider is None:
            raise ValueError(f"Unknown channel: {channel}")
        return provider

    def send(
        self,
        channel: ChannelType,
        recipient: str,
        subject: Optional[str],
        body: str,
    ) -> bool:
        """Send via a named channel."""
        return self.get(channel).send(recipient, subject, body)

    def get_all_sent_messages(self) -> list[NotificationResult]:
        """Get all sent messages across the mock providers."""
        messages = []
        for provider in self._providers.values():
            messages.extend(getattr(provider, "sent_messages", []))
        return messages

    def get_total_sent_count(self) -> int:
        """Get total number of messages sent across all channels."""
        return len(self.get_all_sent_messages())

    def clear_all_history(self):
        """Clear history for all mock providers."""
        for provider in self._providers.values():
            if isinstance(provider, MockChannel):
                provider.clear_history()
