"""
Wiring for the dispatch core.

Builds every component around one event bus and one data store, and starts the
subscribers in a fixed order: the assignment queue first, then notifications,
then the realtime hub. The API and the demos use this; tests mostly build the
pieces they need directly.
"""

import logging
from pathlib import Path
from typing import Optional

from dispatch.assignment_queue import RiderAssignmentQueue, TimerFactory
from dispatch.event_bus import EventBus
from dispatch.notification_service import NotificationService
from dispatch.realtime import RealtimeHub
from dispatch.state_machine import OrderStateMachine
from dispatch.tracking import RiderTracker
from domain.channels import NotificationChannels
from domain.config import Settings, get_settings
from domain.data_store import DataStore

logger = logging.getLogger("dispatch")


class DispatchRuntime:
    """All dispatch components sharing one bus and one store."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        data_dir: Optional[Path] = None,
        channels: Optional[NotificationChannels] = None,
        timer_factory: Optional[TimerFactory] = None,
        clock=None,
    ):
        self.settings = settings or get_settings()
        self.event_bus = EventBus()
        self.data_store = DataStore(data_dir=data_dir)
        self.channels = channels or NotificationChannels()

        self.state_machine = OrderStateMachine(
            event_bus=self.event_bus,
            data_store=self.data_store,
        )
        self.assignment_queue = RiderAssignmentQueue(
            event_bus=self.event_bus,
            data_store=self.data_store,
            settings=self.settings,
            timer_factory=timer_factory,
        )
        self.notification_service = NotificationService(
            event_bus=self.event_bus,
            data_store=self.data_store,
            channels=self.channels,
            settings=self.settings,
            clock=clock,
        )
        self.realtime_hub = RealtimeHub(settings=self.settings)
        self.tracker = RiderTracker(
            event_bus=self.event_bus,
            data_store=self.data_store,
            settings=self.settings,
        )

    def start(self) -> "DispatchRuntime":
        self.assignment_queue.start()
        self.notification_service.start()
        self.realtime_hub.start(self.event_bus)
        logger.info("Dispatch runtime started")
        return self

    def shutdown(self) -> None:
        self.realtime_hub.stop()
        self.assignment_queue.stop()
        self.notification_service.shutdown()
        logger.info("Dispatch runtime stopped")
