"""In-process fan-out of real-time appointment payloads."""

import logging
from typing import Any

from .base import AppointmentEventSource, EventHandler, Unsubscribe

logger = logging.getLogger(__name__)


class LocalEventBus(AppointmentEventSource):
    """
    Event source fed by whatever transport delivers the push stream.

    The transport calls ``publish`` with each raw payload; every subscriber
    receives it synchronously, in subscription order.
    """

    def __init__(self):
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Unsubscribe:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, payload: dict[str, Any]) -> None:
        for handler in list(self._handlers):
            try:
                handler(payload)
            except Exception:
                # Remaining subscribers still receive the payload
                logger.exception("Appointment event handler failed")

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
