"""Reminder lifecycle.

    scheduled -> sending -> sent | failed
    scheduled -> cancelled
    sent | failed -> scheduled    (resend, now or at a chosen future time)
    scheduled -> scheduled        (reschedule: new offset value/unit)

Delivery itself happens in the backend; this module only validates the
transitions the user asks for and the ones the backend reports.
"""

from datetime import datetime, time
from typing import Optional, Union

import pytz

from ..models.appointment import Appointment, Reminder, ReminderStatus, ReminderUnit, TimeRange
from ..utils.date_utils import local_datetime
from ..utils.exceptions import InvalidTransitionError

TRANSITIONS: dict[ReminderStatus, frozenset[ReminderStatus]] = {
    ReminderStatus.SCHEDULED: frozenset({ReminderStatus.SENDING, ReminderStatus.CANCELLED, ReminderStatus.SCHEDULED}),
    ReminderStatus.SENDING: frozenset({ReminderStatus.SENT, ReminderStatus.FAILED}),
    ReminderStatus.SENT: frozenset({ReminderStatus.SCHEDULED}),
    ReminderStatus.FAILED: frozenset({ReminderStatus.SCHEDULED}),
    ReminderStatus.CANCELLED: frozenset(),
}


def reminder_due_at(
    appointment: Union[Appointment, TimeRange], reminder: Reminder, timezone_name: str = "UTC"
) -> datetime:
    """Appointment start (00:00 for all-day) minus the reminder offset."""
    start = time.min if appointment.is_all_day else appointment.start_time
    return local_datetime(appointment.date, start, timezone_name) - reminder.offset


class ReminderStateMachine:
    """Validates and performs reminder state transitions."""

    def __init__(self, timezone_name: str = "UTC"):
        self.timezone_name = timezone_name

    def _now(self) -> datetime:
        return datetime.now(pytz.timezone(self.timezone_name))

    @staticmethod
    def can_transition(current: Optional[ReminderStatus], target: ReminderStatus) -> bool:
        if current is None:
            return False
        return target in TRANSITIONS[current]

    def transition(self, reminder: Reminder, target: ReminderStatus, **changes) -> Reminder:
        """
        Move ``reminder`` to ``target``.

        Raises:
            InvalidTransitionError: If the lifecycle does not allow it
        """
        if not reminder.enabled:
            raise InvalidTransitionError("Reminder is not enabled")
        if not self.can_transition(reminder.status, target):
            current = reminder.status.value if reminder.status else "none"
            raise InvalidTransitionError(f"Reminder cannot go from {current} to {target.value}")
        return reminder.model_copy(update={"status": target, **changes})

    def initial(
        self,
        enabled: bool,
        value: int = 15,
        unit: ReminderUnit = ReminderUnit.MINUTES,
        appointment: Optional[Union[Appointment, TimeRange]] = None,
    ) -> Reminder:
        """Reminder for a newly created appointment."""
        reminder = Reminder(enabled=enabled, value=value, unit=unit)
        if not enabled:
            return reminder
        scheduled_at = reminder_due_at(appointment, reminder, self.timezone_name) if appointment else None
        return reminder.model_copy(update={"status": ReminderStatus.SCHEDULED, "scheduled_at": scheduled_at})

    def begin_sending(self, reminder: Reminder) -> Reminder:
        return self.transition(reminder, ReminderStatus.SENDING)

    def mark_sent(self, reminder: Reminder, at: Optional[datetime] = None) -> Reminder:
        return self.transition(reminder, ReminderStatus.SENT, sent_at=at or self._now())

    def mark_failed(self, reminder: Reminder) -> Reminder:
        return self.transition(reminder, ReminderStatus.FAILED)

    def cancel(self, reminder: Reminder) -> Reminder:
        return self.transition(reminder, ReminderStatus.CANCELLED)

    def resend(self, reminder: Reminder, at: Optional[datetime] = None) -> Reminder:
        """
        Schedule a sent or failed reminder again, immediately or at ``at``.

        Raises:
            InvalidTransitionError: If the reminder was not sent/failed, or ``at`` is in the past
        """
        if reminder.status not in (ReminderStatus.SENT, ReminderStatus.FAILED):
            current = reminder.status.value if reminder.status else "none"
            raise InvalidTransitionError(f"Only sent or failed reminders can be resent (is {current})")
        now = self._now()
        if at is not None:
            if at.tzinfo is None:
                at = pytz.timezone(self.timezone_name).localize(at)
            if at <= now:
                raise InvalidTransitionError(f"Resend time {at.isoformat()} is not in the future")
        return self.transition(reminder, ReminderStatus.SCHEDULED, scheduled_at=at or now, sent_at=None)

    def reschedule(
        self,
        reminder: Reminder,
        value: int,
        unit: ReminderUnit,
        appointment: Optional[Union[Appointment, TimeRange]] = None,
    ) -> Reminder:
        """
        Change the offset of a reminder that has not been sent yet.

        Raises:
            InvalidTransitionError: If the reminder is not scheduled or the value is not positive
        """
        if reminder.status != ReminderStatus.SCHEDULED:
            current = reminder.status.value if reminder.status else "none"
            raise InvalidTransitionError(f"Only scheduled reminders can be rescheduled (is {current})")
        if value <= 0:
            raise InvalidTransitionError(f"Reminder offset must be positive, got {value}")

        updated = reminder.model_copy(update={"value": value, "unit": unit})
        scheduled_at = (
            reminder_due_at(appointment, updated, self.timezone_name) if appointment else reminder.scheduled_at
        )
        return self.transition(updated, ReminderStatus.SCHEDULED, scheduled_at=scheduled_at)
