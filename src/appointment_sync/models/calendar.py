"""Calendar windows and the projections shown for them."""

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

from ..utils.date_utils import month_bounds, start_of_week
from .appointment import Appointment


class Granularity(str, Enum):
    """Display granularity of the calendar."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class DateRange(BaseModel):
    """Inclusive range of local dates."""

    start: dt.date
    end: dt.date

    model_config = {"frozen": True}

    def __contains__(self, value: dt.date) -> bool:
        return self.start <= value <= self.end

    def covers(self, other: "DateRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    @classmethod
    def for_granularity(cls, anchor: dt.date, granularity: Granularity) -> "DateRange":
        """Return the window shown for ``anchor`` at ``granularity``."""
        if granularity == Granularity.DAY:
            return cls(start=anchor, end=anchor)
        if granularity == Granularity.WEEK:
            week = WeekWindow.containing(anchor)
            return cls(start=week.start, end=week.end)
        if granularity == Granularity.MONTH:
            first, last = month_bounds(anchor.year, anchor.month)
            return cls(start=first, end=last)
        return cls(start=dt.date(anchor.year, 1, 1), end=dt.date(anchor.year, 12, 31))


class WeekWindow(BaseModel):
    """Monday-first week. ``start`` is always a Monday."""

    start: dt.date

    model_config = {"frozen": True}

    @field_validator("start")
    @classmethod
    def _must_be_monday(cls, value: dt.date) -> dt.date:
        if value.weekday() != 0:
            raise ValueError(f"Week window must start on a Monday, got {value:%A} {value}")
        return value

    @classmethod
    def containing(cls, value: dt.date) -> "WeekWindow":
        return cls(start=start_of_week(value))

    @property
    def end(self) -> dt.date:
        return self.start + dt.timedelta(days=6)

    @property
    def days(self) -> list[dt.date]:
        return [self.start + dt.timedelta(days=i) for i in range(7)]


class PositionedAppointment(BaseModel):
    """An appointment placed on the hourly grid of a day column."""

    appointment: Appointment
    day_index: int
    # None for all-day entries, which sit above the grid
    top: Optional[float] = None
    height: Optional[float] = None
    duration_hours: Optional[float] = None

    model_config = {"frozen": True}


class DayColumn(BaseModel):
    """One day of a day or week view."""

    date: dt.date
    day_index: int
    appointments: list[PositionedAppointment]


class DayView(BaseModel):
    granularity: Granularity = Granularity.DAY
    date: dt.date
    column: DayColumn


class WeekView(BaseModel):
    granularity: Granularity = Granularity.WEEK
    window: WeekWindow
    days: list[DayColumn]


class MonthCell(BaseModel):
    """One day cell of a month grid."""

    date: dt.date
    appointments: list[Appointment]
    # Appointments beyond the preview limit ("+N more")
    overflow: int = 0

    @property
    def preview(self) -> list[Appointment]:
        return self.appointments[: len(self.appointments) - self.overflow]


class MonthView(BaseModel):
    granularity: Granularity = Granularity.MONTH
    year: int
    month: int
    cells: list[MonthCell]


class MonthSummary(BaseModel):
    """Per-month aggregate used by the year view."""

    month: int
    count: int
    busy_days: int
    titles: list[str]


class YearView(BaseModel):
    granularity: Granularity = Granularity.YEAR
    year: int
    months: list[MonthSummary]
