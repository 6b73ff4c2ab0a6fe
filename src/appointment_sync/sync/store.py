"""In-memory appointment store for the active calendar window."""

import datetime as dt
import logging
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models.appointment import Appointment
from ..models.calendar import DateRange
from ..utils.date_utils import buffered_range
from ..utils.exceptions import StaleEventError, ValidationError
from .strategies import MergeStrategy, VersionMarkerStrategy

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    MERGED = "merged"


def _sort_key(appointment: Appointment) -> tuple:
    return (
        appointment.date,
        not appointment.is_all_day,
        appointment.start_time or dt.time.min,
        appointment.end_time or dt.time.min,
        appointment.id,
    )


class AppointmentStore:
    """
    Authoritative in-memory collection of appointments, keyed by id.

    Appointments are immutable; every mutation replaces the entry, so
    snapshots handed out by ``all()`` never change underneath the caller.
    Cancelled and completed appointments stay here for history and are
    filtered out by ``active()``.
    """

    def __init__(self, buffer_days: int = 7, strategy: Optional[MergeStrategy] = None):
        """
        Initialize the store.

        Args:
            buffer_days: Days kept on each side of the window when evicting
            strategy: Merge strategy (defaults to VersionMarkerStrategy)
        """
        self.buffer_days = buffer_days
        self.strategy = strategy or VersionMarkerStrategy()
        self.window: Optional[DateRange] = None
        self._items: dict[str, Appointment] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, appointment_id: object) -> bool:
        return str(appointment_id) in self._items

    def get(self, appointment_id: str) -> Optional[Appointment]:
        return self._items.get(str(appointment_id))

    def upsert(self, appointment: Appointment) -> UpsertOutcome:
        """
        Insert ``appointment`` or merge the fields it explicitly carries.

        Raises:
            StaleEventError: If the held copy has a newer marker
        """
        fields = appointment.model_dump(include=appointment.model_fields_set | {"id"})
        return self.upsert_fields(fields)

    def upsert_fields(self, fields: dict[str, Any]) -> UpsertOutcome:
        """
        Insert or field-merge a (possibly partial) canonical field dict.

        Raises:
            ValidationError: If the result is not a valid appointment
            StaleEventError: If the held copy has a newer marker
        """
        if fields.get("id") is None:
            raise ValidationError("Cannot upsert an appointment without an id")
        key = str(fields["id"])

        held = self._items.get(key)
        if held is None:
            self._items[key] = self._validate(fields)
            return UpsertOutcome.INSERTED

        if self.strategy.is_stale(fields, held):
            raise StaleEventError(
                f"Appointment {key}: incoming copy (version={fields.get('version')}, "
                f"updated_at={fields.get('updated_at')}) is older than held "
                f"(version={held.version}, updated_at={held.updated_at})"
            )

        self._items[key] = self._validate(self.strategy.merge(held, fields))
        return UpsertOutcome.MERGED

    def remove(self, appointment_id: str) -> bool:
        """Delete an appointment. Returns False if it was not present."""
        return self._items.pop(str(appointment_id), None) is not None

    def clear(self) -> None:
        self._items.clear()

    def all(self) -> list[Appointment]:
        """Snapshot of every held appointment, including inactive ones."""
        return sorted(self._items.values(), key=_sort_key)

    def active(self) -> list[Appointment]:
        """Snapshot of appointments that are neither cancelled nor completed."""
        return [a for a in self.all() if a.is_active]

    def between(self, start: dt.date, end: dt.date) -> list[Appointment]:
        """Active appointments dated ``start``..``end`` inclusive."""
        return [a for a in self.active() if start <= a.date <= end]

    def set_window(self, window: DateRange) -> list[str]:
        """
        Replace the loaded window and evict everything outside its buffer.

        Returns:
            Ids of evicted appointments
        """
        self.window = window
        low, high = buffered_range(window.start, window.end, self.buffer_days)
        evicted = [key for key, a in self._items.items() if not (low <= a.date <= high)]
        for key in evicted:
            del self._items[key]

        if evicted:
            logger.debug(f"Evicted {len(evicted)} appointment(s) outside {low} to {high}")
        return evicted

    @property
    def buffered_window(self) -> Optional[DateRange]:
        if self.window is None:
            return None
        low, high = buffered_range(self.window.start, self.window.end, self.buffer_days)
        return DateRange(start=low, end=high)

    def covers(self, window: DateRange) -> bool:
        """Whether ``window`` lies inside the range this store keeps."""
        buffered = self.buffered_window
        return buffered is not None and buffered.covers(window)

    def in_window(self, day: dt.date) -> bool:
        """Whether ``day`` is in the visible window (always True before one is set)."""
        return self.window is None or day in self.window

    @staticmethod
    def _validate(fields: dict[str, Any]) -> Appointment:
        try:
            return Appointment.model_validate(fields)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid appointment {fields.get('id')!r}: {e}") from e
