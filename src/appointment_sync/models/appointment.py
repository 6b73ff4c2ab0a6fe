"""Normalized appointment data model."""

import datetime as dt
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator

from ..utils.date_utils import ensure_utc, parse_date, parse_time
from ..utils.exceptions import ParseError

DEFAULT_COLOR = "#3C02AA"


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


# Kept in the store for history, but never shown or conflict-checked
INACTIVE_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})


class ReminderUnit(str, Enum):
    """Unit of a reminder offset."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ReminderStatus(str, Enum):
    """Reminder delivery state."""

    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _to_time(value: Any) -> Any:
    if value is None or value == "":
        return None
    try:
        return parse_time(value)
    except ParseError as e:
        raise ValueError(str(e)) from e


def _to_date(value: Any) -> Any:
    try:
        return parse_date(value)
    except ParseError as e:
        raise ValueError(str(e)) from e


LocalDate = Annotated[dt.date, BeforeValidator(_to_date)]
LocalTime = Annotated[Optional[dt.time], BeforeValidator(_to_time)]


def _check_times(
    is_all_day: bool,
    start_time: Optional[dt.time],
    end_time: Optional[dt.time],
) -> None:
    if is_all_day:
        return
    if start_time is None or end_time is None:
        raise ValueError("start_time and end_time are required unless is_all_day")
    if end_time <= start_time:
        raise ValueError(
            f"end_time {end_time:%H:%M} must be after start_time {start_time:%H:%M}"
        )


class TimeRange(BaseModel):
    """A date plus a local start/end time, or a whole day."""

    date: LocalDate
    start_time: LocalTime = None
    end_time: LocalTime = None
    is_all_day: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _validate_order(self) -> "TimeRange":
        _check_times(self.is_all_day, self.start_time, self.end_time)
        return self


class Visibility(BaseModel):
    """Who besides the owner may see an appointment."""

    all_users: bool = Field(default=False, alias="all")
    user_ids: frozenset[str] = frozenset()
    # Older records share by email only
    emails: frozenset[str] = frozenset()

    model_config = {"frozen": True, "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def _ignore_ids_when_shared(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("all", data.get("all_users", False)):
            data = {k: v for k, v in data.items() if k not in ("user_ids", "emails")}
        return data

    @field_validator("user_ids", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        return frozenset(str(v) for v in value)

    @field_validator("emails", mode="before")
    @classmethod
    def _coerce_emails(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        return frozenset(str(v).strip().casefold() for v in value)


class Invitee(BaseModel):
    """External contact invited to an appointment."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    model_config = {"frozen": True}


class Reminder(BaseModel):
    """Reminder settings and delivery state."""

    enabled: bool = False
    value: int = 15
    unit: ReminderUnit = ReminderUnit.MINUTES
    status: Optional[ReminderStatus] = None
    scheduled_at: Optional[dt.datetime] = None
    sent_at: Optional[dt.datetime] = None

    model_config = {"frozen": True}

    @field_validator("unit", "status", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @property
    def offset(self) -> dt.timedelta:
        return dt.timedelta(**{self.unit.value: self.value})


class Viewer(BaseModel):
    """Resolved identity of the user looking at the calendar."""

    id: str
    role: Optional[str] = None
    department: Optional[str] = None
    email: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class Appointment(BaseModel):
    """Normalized appointment model."""

    # Identifiers
    id: str
    owner_id: str

    # Time properties
    date: LocalDate
    start_time: LocalTime = None
    end_time: LocalTime = None
    is_all_day: bool = False

    # Display
    title: str = ""
    description: Optional[str] = None
    location: Optional[str] = None
    color: str = DEFAULT_COLOR
    attendee_name: Optional[str] = None

    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    visibility: Visibility = Field(default_factory=Visibility)
    invitees: tuple[Invitee, ...] = ()
    reminder: Optional[Reminder] = None

    # Mirror reference, passed through untouched
    google_event_id: Optional[str] = None

    # Staleness markers
    version: Optional[int] = None
    updated_at: Optional[dt.datetime] = None

    model_config = {"frozen": True}

    @field_validator("id", "owner_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("status", mode="before")
    @classmethod
    def _lowercase_status(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("updated_at", mode="after")
    @classmethod
    def _updated_at_utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _validate_order(self) -> "Appointment":
        _check_times(self.is_all_day, self.start_time, self.end_time)
        return self

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(
            date=self.date,
            start_time=self.start_time,
            end_time=self.end_time,
            is_all_day=self.is_all_day,
        )


class ConflictScope(BaseModel):
    """Whose calendar a candidate range is checked against."""

    owner_id: str
    exclude_id: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("owner_id", "exclude_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value
