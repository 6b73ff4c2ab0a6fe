"""Shared factories and fakes for the appointment sync tests."""

import asyncio
import datetime as dt
from pathlib import Path
from typing import Any, Optional

import pytest

from appointment_sync.config import AccessConfig, AppConfig
from appointment_sync.models.appointment import (
    Appointment,
    ConflictScope,
    Reminder,
    ReminderStatus,
    ReminderUnit,
    TimeRange,
    Viewer,
)
from appointment_sync.models.calendar import DateRange
from appointment_sync.readers.base import AppointmentReader
from appointment_sync.utils.exceptions import MirrorSyncError
from appointment_sync.writers.base import AppointmentWriter, CalendarMirror

MONDAY = dt.date(2024, 1, 1)


def make_appointment(
    id: str = "1",
    owner_id: str = "7",
    date: dt.date = MONDAY,
    start: Optional[str] = "09:00",
    end: Optional[str] = "10:00",
    **kwargs: Any,
) -> Appointment:
    if kwargs.get("is_all_day"):
        start = end = None
    return Appointment(
        id=id,
        owner_id=owner_id,
        date=date,
        start_time=start,
        end_time=end,
        title=kwargs.pop("title", f"Appointment {id}"),
        **kwargs,
    )


def make_range(start: str, end: str, date: dt.date = MONDAY, is_all_day: bool = False) -> TimeRange:
    if is_all_day:
        return TimeRange(date=date, is_all_day=True)
    return TimeRange(date=date, start_time=start, end_time=end)


@pytest.fixture
def access(tmp_path: Path) -> AccessConfig:
    """Default access rules (no YAML file)."""
    return AccessConfig(tmp_path / "missing.yaml")


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig().model_copy(
        update={
            "timezone": "Europe/Istanbul",
            "conflict_debounce_ms": 10,
            "window_buffer_days": 7,
            "hour_height": 60.0,
            "min_block_hours": 0.5,
            "month_preview_limit": 2,
        }
    )


@pytest.fixture
def owner() -> Viewer:
    return Viewer(id="7", role="staff", department="Sales", email="owner@example.com")


class FakeReader(AppointmentReader):
    """In-memory reader recording every call."""

    def __init__(self, appointments=(), conflicts=(), error: Optional[Exception] = None):
        self.appointments = list(appointments)
        self.conflicts = list(conflicts)
        self.error = error
        self.fetch_calls: list[DateRange] = []
        self.conflict_calls: list[tuple[TimeRange, ConflictScope]] = []
        # Seconds to wait per fetch call, consumed in order
        self.fetch_delays: list[float] = []

    async def fetch_appointments(self, date_range: DateRange) -> list[Appointment]:
        self.fetch_calls.append(date_range)
        if self.fetch_delays:
            await asyncio.sleep(self.fetch_delays.pop(0))
        if self.error:
            raise self.error
        return [a for a in self.appointments if a.date in date_range]

    async def check_conflict(self, candidate: TimeRange, scope: ConflictScope) -> list[Appointment]:
        self.conflict_calls.append((candidate, scope))
        if self.error:
            raise self.error
        return list(self.conflicts)


class FakeWriter(AppointmentWriter):
    """In-memory appointment service."""

    def __init__(self, records=()):
        self.records: dict[str, Appointment] = {a.id: a for a in records}
        self.calls: list[tuple] = []
        self.error: Optional[Exception] = None
        self._next_id = 100

    def _fail(self) -> None:
        if self.error:
            raise self.error

    async def create_appointment(self, fields: dict[str, Any]) -> Appointment:
        self.calls.append(("create", fields))
        self._fail()
        self._next_id += 1
        appointment = Appointment.model_validate({**fields, "id": str(self._next_id), "version": 1})
        self.records[appointment.id] = appointment
        return appointment

    async def update_appointment(self, appointment_id: str, fields: dict[str, Any]) -> Appointment:
        self.calls.append(("update", appointment_id, fields))
        self._fail()
        held = self.records[appointment_id]
        appointment = Appointment.model_validate(
            {**held.model_dump(), **fields, "version": (held.version or 0) + 1}
        )
        self.records[appointment_id] = appointment
        return appointment

    async def delete_appointment(self, appointment_id: str) -> None:
        self.calls.append(("delete", appointment_id))
        self._fail()
        self.records.pop(appointment_id, None)

    async def resend_reminder(self, appointment_id: str, at: Optional[dt.datetime] = None) -> Reminder:
        self.calls.append(("resend", appointment_id, at))
        self._fail()
        return Reminder(enabled=True, status=ReminderStatus.SCHEDULED, scheduled_at=at)

    async def reschedule_reminder(self, appointment_id: str, value: int, unit: ReminderUnit) -> Reminder:
        self.calls.append(("reschedule", appointment_id, value, unit))
        self._fail()
        return Reminder(enabled=True, value=value, unit=unit, status=ReminderStatus.SCHEDULED)


class FakeMirror(CalendarMirror):
    """Mirror that records calls and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple] = []

    def create_event(self, appointment: Appointment) -> str:
        self.calls.append(("create", appointment.id))
        if self.fail:
            raise MirrorSyncError("mirror down")
        return f"g-{appointment.id}"

    def update_event(self, appointment: Appointment) -> None:
        self.calls.append(("update", appointment.google_event_id))
        if self.fail:
            raise MirrorSyncError("mirror down")

    def delete_event(self, event_id: str) -> None:
        self.calls.append(("delete", event_id))
        if self.fail:
            raise MirrorSyncError("mirror down")
