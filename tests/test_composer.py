import datetime as dt

from appointment_sync.models.appointment import AppointmentStatus, Viewer, Visibility
from appointment_sync.models.calendar import DateRange, Granularity, MonthView, WeekView, WeekWindow, YearView
from appointment_sync.sync.store import AppointmentStore
from appointment_sync.views.composer import Layout, compose

from conftest import MONDAY, make_appointment

VIEWER = Viewer(id="7")


def store_with(*appointments):
    store = AppointmentStore()
    for appointment in appointments:
        store.upsert(appointment)
    return store


def test_week_view_has_seven_monday_first_columns(access):
    store = store_with(
        make_appointment(id="mon", date=MONDAY),
        make_appointment(id="sun", date=dt.date(2024, 1, 7)),
        make_appointment(id="next", date=dt.date(2024, 1, 8)),
    )

    view = compose(store, dt.date(2024, 1, 4), VIEWER, Granularity.WEEK, access=access)

    assert isinstance(view, WeekView)
    assert view.window.start == MONDAY
    assert [c.day_index for c in view.days] == list(range(7))
    assert [p.appointment.id for p in view.days[0].appointments] == ["mon"]
    assert [p.appointment.id for p in view.days[6].appointments] == ["sun"]
    assert all(p.appointment.id != "next" for c in view.days for p in c.appointments)


def test_positions_use_hour_height_and_minimum_block(access):
    store = store_with(
        make_appointment(id="long", start="09:30", end="11:00"),
        make_appointment(id="short", start="13:00", end="13:10"),
        make_appointment(id="allday", is_all_day=True),
    )

    view = compose(store, WeekWindow(start=MONDAY), VIEWER, Granularity.WEEK, layout=Layout(hour_height=60), access=access)
    placed = {p.appointment.id: p for p in view.days[0].appointments}

    assert [p.appointment.id for p in view.days[0].appointments] == ["allday", "long", "short"]
    assert placed["long"].top == 570
    assert placed["long"].height == 90
    assert placed["long"].duration_hours == 1.5
    assert placed["short"].height == 30
    assert placed["allday"].top is None


def test_hidden_and_inactive_excluded(access):
    store = store_with(
        make_appointment(id="mine"),
        make_appointment(id="theirs", owner_id="8"),
        make_appointment(id="shared", owner_id="8", visibility=Visibility(user_ids={"7"})),
        make_appointment(id="cancelled", status=AppointmentStatus.CANCELLED),
    )

    view = compose(store, MONDAY, VIEWER, Granularity.DAY, access=access)

    assert sorted(p.appointment.id for p in view.column.appointments) == ["mine", "shared"]


def test_day_view_keeps_week_day_index(access):
    store = store_with(make_appointment(id="wed", date=dt.date(2024, 1, 3)))
    view = compose(store, dt.date(2024, 1, 3), VIEWER, Granularity.DAY, access=access)
    assert view.column.day_index == 2
    assert view.column.appointments[0].day_index == 2


def test_month_view_overflow(access):
    store = store_with(*(make_appointment(id=str(i), start=f"0{i}:00", end=f"0{i}:30") for i in range(1, 5)))

    view = compose(store, DateRange(start=MONDAY, end=dt.date(2024, 1, 31)), VIEWER, Granularity.MONTH, access=access)

    assert isinstance(view, MonthView)
    assert len(view.cells) == 31
    first = view.cells[0]
    assert first.overflow == 2
    assert [a.id for a in first.preview] == ["1", "2"]
    assert view.cells[1].appointments == []


def test_year_view_summaries(access):
    store = store_with(
        make_appointment(id="1", date=dt.date(2024, 1, 1)),
        make_appointment(id="2", date=dt.date(2024, 1, 1), start="11:00", end="12:00"),
        make_appointment(id="3", date=dt.date(2024, 3, 5)),
    )

    view = compose(store, dt.date(2024, 6, 1), VIEWER, Granularity.YEAR, access=access)

    assert isinstance(view, YearView)
    assert len(view.months) == 12
    assert (view.months[0].count, view.months[0].busy_days) == (2, 1)
    assert view.months[2].titles == ["Appointment 3"]
    assert view.months[1].count == 0


def test_compose_is_pure(access):
    store = store_with(make_appointment(id="1"))
    first = compose(store, MONDAY, VIEWER, Granularity.WEEK, access=access)
    second = compose(store, MONDAY, VIEWER, Granularity.WEEK, access=access)
    assert first == second
    assert len(store) == 1
