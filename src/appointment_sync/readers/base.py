"""Abstract base classes for appointment readers and event sources."""

from abc import ABC, abstractmethod
from typing import Any, Callable

from ..models.appointment import Appointment, ConflictScope, TimeRange
from ..models.calendar import DateRange

EventHandler = Callable[[dict[str, Any]], None]
Unsubscribe = Callable[[], None]


class AppointmentReader(ABC):
    """Abstract base class for appointment readers."""

    @abstractmethod
    async def fetch_appointments(self, date_range: DateRange) -> list[Appointment]:
        """
        Read all appointments whose date falls inside ``date_range``.

        Args:
            date_range: Inclusive local date range

        Returns:
            List of normalized Appointment objects

        Raises:
            NetworkError: If the service cannot be reached
            AuthError: If the credentials are rejected
        """

    @abstractmethod
    async def check_conflict(
        self,
        candidate: TimeRange,
        scope: ConflictScope,
    ) -> list[Appointment]:
        """
        Run the authoritative server-side overlap check.

        Args:
            candidate: Time range being booked
            scope: Owner whose calendar is checked, and the appointment being edited

        Returns:
            Conflicting appointments (empty when the slot is free)

        Raises:
            NetworkError: If the service cannot be reached
            AuthError: If the credentials are rejected
        """


class AppointmentEventSource(ABC):
    """Abstract source of real-time appointment change payloads."""

    @abstractmethod
    def subscribe(self, handler: EventHandler) -> Unsubscribe:
        """
        Register ``handler`` for every create/update/delete payload.

        Returns:
            Callable that removes the handler
        """
