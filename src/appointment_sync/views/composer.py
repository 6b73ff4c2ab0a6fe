"""Day, week, month and year projections of the appointment store."""

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, Union

from ..config import AccessConfig, AppConfig
from ..models.appointment import Appointment, Viewer
from ..models.calendar import (
    DateRange,
    DayColumn,
    DayView,
    Granularity,
    MonthCell,
    MonthSummary,
    MonthView,
    PositionedAppointment,
    WeekView,
    WeekWindow,
    YearView,
)
from ..sync.store import AppointmentStore
from ..sync.visibility import is_visible
from ..utils.date_utils import (
    day_index,
    display_duration_hours,
    duration_hours,
    iter_dates,
    minutes_since_midnight,
    month_bounds,
)

CalendarView = Union[DayView, WeekView, MonthView, YearView]
WindowLike = Union[dt.date, WeekWindow, DateRange]


@dataclass(frozen=True)
class Layout:
    """Grid scale used to position timed appointments."""

    hour_height: float = 60.0
    min_block_hours: float = 0.5
    month_preview_limit: int = 2
    year_preview_limit: int = 3

    @classmethod
    def from_config(cls, config: AppConfig) -> "Layout":
        return cls(
            hour_height=config.hour_height,
            min_block_hours=config.min_block_hours,
            month_preview_limit=config.month_preview_limit,
        )


def display_order(appointment: Appointment) -> tuple:
    """All-day entries first, then by start time; ties broken by end time and id."""
    return (
        not appointment.is_all_day,
        appointment.start_time or dt.time.min,
        appointment.end_time or dt.time.min,
        appointment.id,
    )


def position(appointment: Appointment, index: int, layout: Layout) -> PositionedAppointment:
    """Place an appointment on the hourly grid of its day column."""
    if appointment.is_all_day:
        return PositionedAppointment(appointment=appointment, day_index=index)

    start_hours = minutes_since_midnight(appointment.start_time) / 60
    block_hours = display_duration_hours(
        appointment.start_time, appointment.end_time, layout.min_block_hours
    )
    return PositionedAppointment(
        appointment=appointment,
        day_index=index,
        top=start_hours * layout.hour_height,
        height=block_hours * layout.hour_height,
        duration_hours=duration_hours(appointment.start_time, appointment.end_time),
    )


def _anchor(window: WindowLike) -> dt.date:
    if isinstance(window, (WeekWindow, DateRange)):
        return window.start
    return window


def _visible(
    store: AppointmentStore,
    start: dt.date,
    end: dt.date,
    viewer: Viewer,
    access: Optional[AccessConfig],
) -> list[Appointment]:
    return [a for a in store.between(start, end) if is_visible(a, viewer, access)]


def _day_column(
    day: dt.date,
    week: WeekWindow,
    appointments: list[Appointment],
    layout: Layout,
) -> DayColumn:
    index = day_index(day, week)
    return DayColumn(
        date=day,
        day_index=index,
        appointments=[position(a, index, layout) for a in sorted(appointments, key=display_order)],
    )


def compose_week(
    store: AppointmentStore,
    week: WeekWindow,
    viewer: Viewer,
    layout: Layout,
    access: Optional[AccessConfig] = None,
) -> WeekView:
    by_day: dict[int, list[Appointment]] = defaultdict(list)
    for appointment in _visible(store, week.start, week.end, viewer, access):
        index = day_index(appointment.date, week)
        if index != -1:
            by_day[index].append(appointment)

    return WeekView(
        window=week,
        days=[_day_column(day, week, by_day[i], layout) for i, day in enumerate(week.days)],
    )


def compose_day(
    store: AppointmentStore,
    day: dt.date,
    viewer: Viewer,
    layout: Layout,
    access: Optional[AccessConfig] = None,
) -> DayView:
    week = WeekWindow.containing(day)
    appointments = _visible(store, day, day, viewer, access)
    return DayView(date=day, column=_day_column(day, week, appointments, layout))


def compose_month(
    store: AppointmentStore,
    year: int,
    month: int,
    viewer: Viewer,
    layout: Layout,
    access: Optional[AccessConfig] = None,
) -> MonthView:
    first, last = month_bounds(year, month)
    by_date: dict[dt.date, list[Appointment]] = defaultdict(list)
    for appointment in _visible(store, first, last, viewer, access):
        by_date[appointment.date].append(appointment)

    cells = []
    for day in iter_dates(first, last):
        appointments = sorted(by_date[day], key=display_order)
        cells.append(
            MonthCell(
                date=day,
                appointments=appointments,
                overflow=max(0, len(appointments) - layout.month_preview_limit),
            )
        )
    return MonthView(year=year, month=month, cells=cells)


def compose_year(
    store: AppointmentStore,
    year: int,
    viewer: Viewer,
    layout: Layout,
    access: Optional[AccessConfig] = None,
) -> YearView:
    by_month: dict[int, list[Appointment]] = defaultdict(list)
    for appointment in _visible(store, dt.date(year, 1, 1), dt.date(year, 12, 31), viewer, access):
        by_month[appointment.date.month].append(appointment)

    months = []
    for month in range(1, 13):
        appointments = sorted(by_month[month], key=lambda a: (a.date, display_order(a)))
        months.append(
            MonthSummary(
                month=month,
                count=len(appointments),
                busy_days=len({a.date for a in appointments}),
                titles=[a.title for a in appointments[: layout.year_preview_limit]],
            )
        )
    return YearView(year=year, months=months)


def compose(
    store: AppointmentStore,
    window: WindowLike,
    viewer: Viewer,
    granularity: Granularity,
    layout: Optional[Layout] = None,
    access: Optional[AccessConfig] = None,
) -> CalendarView:
    """
    Build the view of ``store`` at ``granularity`` for the window around ``window``.

    ``window`` may be any date inside the period, a WeekWindow or a DateRange
    (its start is used). Only active appointments visible to ``viewer`` are
    included. The result depends only on the arguments.
    """
    layout = layout or Layout()
    anchor = _anchor(window)
    granularity = Granularity(granularity)

    if granularity == Granularity.DAY:
        return compose_day(store, anchor, viewer, layout, access)
    if granularity == Granularity.WEEK:
        week = window if isinstance(window, WeekWindow) else WeekWindow.containing(anchor)
        return compose_week(store, week, viewer, layout, access)
    if granularity == Granularity.MONTH:
        return compose_month(store, anchor.year, anchor.month, viewer, layout, access)
    return compose_year(store, anchor.year, viewer, layout, access)
