"""Abstract base classes for appointment writers and calendar mirrors."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from ..models.appointment import Appointment, Reminder, ReminderUnit


class AppointmentWriter(ABC):
    """Abstract base class for the appointment service's write side."""

    @abstractmethod
    async def create_appointment(self, fields: dict[str, Any]) -> Appointment:
        """
        Create a new appointment.

        Args:
            fields: Canonical appointment fields (without ``id``)

        Returns:
            The appointment as stored by the service

        Raises:
            ConflictError: If the service refuses an overlapping slot
            NetworkError: If the request fails
        """

    @abstractmethod
    async def update_appointment(self, appointment_id: str, fields: dict[str, Any]) -> Appointment:
        """
        Update an existing appointment.

        Args:
            appointment_id: Appointment identifier
            fields: Canonical fields to change

        Returns:
            The appointment as stored by the service

        Raises:
            ConflictError: If the service refuses an overlapping slot
            NetworkError: If the request fails
        """

    @abstractmethod
    async def delete_appointment(self, appointment_id: str) -> None:
        """
        Delete an appointment.

        Raises:
            NetworkError: If the request fails
        """

    @abstractmethod
    async def resend_reminder(
        self,
        appointment_id: str,
        at: Optional[datetime] = None,
    ) -> Reminder:
        """Ask the service to send the reminder again, now or at ``at``."""

    @abstractmethod
    async def reschedule_reminder(
        self,
        appointment_id: str,
        value: int,
        unit: ReminderUnit,
    ) -> Reminder:
        """Change the reminder offset of a still scheduled reminder."""


class CalendarMirror(ABC):
    """Abstract base class for a secondary calendar kept in sync best-effort."""

    @abstractmethod
    def create_event(self, appointment: Appointment) -> str:
        """
        Create a shadow event.

        Returns:
            The mirror's event id

        Raises:
            MirrorSyncError: If event creation fails
        """

    @abstractmethod
    def update_event(self, appointment: Appointment) -> None:
        """
        Update the shadow event referenced by ``appointment.google_event_id``.

        Raises:
            MirrorSyncError: If event update fails
        """

    @abstractmethod
    def delete_event(self, event_id: str) -> None:
        """
        Delete a shadow event.

        Raises:
            MirrorSyncError: If event deletion fails
        """
