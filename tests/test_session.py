import asyncio
import datetime as dt
import json
import logging

import httpx
import pytest
import pytz

from appointment_sync.models.appointment import Reminder, ReminderStatus, ReminderUnit, Viewer
from appointment_sync.models.calendar import DayView, Granularity, MonthView, WeekView
from appointment_sync.readers.event_bus import LocalEventBus
from appointment_sync.sync.session import CalendarSession
from appointment_sync.utils.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NetworkError,
    ValidationError,
)
from appointment_sync.writers.api_writer import AppointmentApiWriter

from conftest import MONDAY, FakeMirror, FakeReader, FakeWriter, make_appointment, make_range

DRAFT = {"date": MONDAY, "start_time": "13:00", "end_time": "14:00", "title": "New patient"}


def make_session(app_config, access, owner, appointments=(), **kwargs):
    reader = kwargs.pop("reader", None) or FakeReader(appointments)
    writer = kwargs.pop("writer", None) or FakeWriter(appointments)
    views = []
    session = CalendarSession(
        reader, writer, owner, config=app_config, access=access, on_change=views.append, **kwargs
    )
    return session, reader, writer, views


def ids(view: WeekView) -> list[str]:
    return [p.appointment.id for column in view.days for p in column.appointments]


@pytest.mark.asyncio
async def test_open_fetches_buffered_window(app_config, access, owner):
    session, reader, _, views = make_session(
        app_config, access, owner, [make_appointment(id="1"), make_appointment(id="2", date=dt.date(2024, 1, 10))]
    )

    assert await session.open(dt.date(2024, 1, 3))

    assert reader.fetch_calls[0].start == dt.date(2023, 12, 25)
    assert reader.fetch_calls[0].end == dt.date(2024, 1, 14)
    assert isinstance(session.view, WeekView)
    assert ids(session.view) == ["1"]
    assert len(session.store) == 2
    assert views[-1] is session.view


@pytest.mark.asyncio
async def test_navigation_inside_loaded_range_does_not_refetch(app_config, access, owner):
    session, reader, _, _ = make_session(
        app_config, access, owner, [make_appointment(id="2", date=dt.date(2024, 1, 10))]
    )
    await session.open(MONDAY)

    await session.navigate(dt.date(2024, 1, 8))

    assert len(reader.fetch_calls) == 1
    assert ids(session.view) == ["2"]

    await session.navigate(dt.date(2024, 1, 15))

    assert len(reader.fetch_calls) == 2
    assert reader.fetch_calls[1].start == dt.date(2024, 1, 8)


@pytest.mark.asyncio
async def test_far_navigation_rebuilds_store(app_config, access, owner):
    session, reader, _, _ = make_session(
        app_config, access, owner, [make_appointment(id="1"), make_appointment(id="far", date=dt.date(2024, 6, 5))]
    )
    await session.open(MONDAY)

    await session.navigate(dt.date(2024, 6, 5), Granularity.DAY)

    assert isinstance(session.view, DayView)
    assert "1" not in session.store
    assert [p.appointment.id for p in session.view.column.appointments] == ["far"]


@pytest.mark.asyncio
async def test_month_navigation(app_config, access, owner):
    session, _, _, _ = make_session(app_config, access, owner, [make_appointment(id="1", date=dt.date(2024, 1, 20))])

    await session.open(dt.date(2024, 1, 5), Granularity.MONTH)

    assert isinstance(session.view, MonthView)
    assert [a.id for a in session.view.cells[19].appointments] == ["1"]


@pytest.mark.asyncio
async def test_superseded_fetch_is_discarded(app_config, access, owner):
    reader = FakeReader([make_appointment(id="jan"), make_appointment(id="jun", date=dt.date(2024, 6, 3))])
    reader.fetch_delays = [0.05, 0]
    session, _, _, _ = make_session(app_config, access, owner, reader=reader)

    first, second = await asyncio.gather(
        session.navigate(MONDAY, Granularity.WEEK),
        session.navigate(dt.date(2024, 6, 3), Granularity.WEEK),
    )

    assert (first, second) == (False, True)
    assert "jan" not in session.store
    assert ids(session.view) == ["jun"]


@pytest.mark.asyncio
async def test_fetch_failure_propagates(app_config, access, owner):
    session, _, _, _ = make_session(app_config, access, owner, reader=FakeReader(error=NetworkError("offline")))
    with pytest.raises(NetworkError):
        await session.open(MONDAY)


@pytest.mark.asyncio
async def test_stream_events_update_view(app_config, access, owner):
    bus = LocalEventBus()
    session, _, _, views = make_session(app_config, access, owner, events=bus)
    await session.open(MONDAY)

    bus.publish(
        {
            "type": "appointment-created",
            "data": {"id": 30, "user_id": 7, "date": "2024-01-02", "start_time": "08:00", "end_time": "09:00"},
        }
    )
    bus.publish({"type": "appointment-created", "data": {"id": 31, "user_id": 7, "date": "2024-03-01", "is_all_day": True}})

    assert ids(session.view) == ["30"]
    assert len(views) == 2

    await session.close()
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_viewer_change_recomposes(app_config, access, owner):
    session, _, _, _ = make_session(app_config, access, owner, [make_appointment(id="1", owner_id="99")])
    await session.open(MONDAY)
    assert ids(session.view) == []

    view = session.set_viewer(Viewer(id="5", role="admin"))

    assert ids(view) == ["1"]


@pytest.mark.asyncio
async def test_create_validates_before_network(app_config, access, owner):
    session, reader, writer, _ = make_session(app_config, access, owner)

    with pytest.raises(ValidationError):
        await session.create({**DRAFT, "end_time": "12:00"})
    with pytest.raises(ValidationError):
        await session.create({**DRAFT, "title": "  "})

    assert reader.conflict_calls == []
    assert writer.calls == []


@pytest.mark.asyncio
async def test_create_blocked_by_authoritative_conflict(app_config, access, owner):
    clash = make_appointment(id="1", start="13:30", end="14:30")
    session, reader, writer, _ = make_session(app_config, access, owner, reader=FakeReader(conflicts=[clash]))
    await session.open(MONDAY)

    with pytest.raises(ConflictError) as excinfo:
        await session.create(DRAFT)

    assert [a.id for a in excinfo.value.conflicts] == ["1"]
    assert writer.calls == []
    assert len(session.store) == 0


@pytest.mark.asyncio
async def test_create_applies_response_and_mirrors(app_config, access, owner):
    mirror = FakeMirror()
    session, _, writer, views = make_session(app_config, access, owner, mirror=mirror)
    await session.open(MONDAY)

    created = await session.create({**DRAFT, "reminder": Reminder(enabled=True, value=30)})

    assert created.owner_id == "7"
    assert session.store.get(created.id) == created
    assert ids(session.view) == [created.id]
    assert writer.calls[0][1]["reminder"].status == ReminderStatus.SCHEDULED

    await session.flush_mirror()

    assert mirror.calls == [("create", created.id)]
    assert session.engine.is_pending(created.id)


@pytest.mark.asyncio
async def test_all_day_create_skips_conflict_check(app_config, access, owner):
    session, reader, _, _ = make_session(app_config, access, owner)
    await session.open(MONDAY)

    await session.create({"date": MONDAY, "is_all_day": True, "title": "Holiday"})

    assert reader.conflict_calls == []


@pytest.mark.asyncio
async def test_network_failure_leaves_store_unchanged(app_config, access, owner):
    existing = make_appointment(id="1", version=1)
    session, _, writer, _ = make_session(app_config, access, owner, [existing])
    await session.open(MONDAY)
    writer.error = NetworkError("timeout")

    with pytest.raises(NetworkError):
        await session.update("1", {"title": "Renamed"})
    with pytest.raises(NetworkError):
        await session.delete("1")

    assert session.store.get("1") == existing


@pytest.mark.asyncio
async def test_update_excludes_itself_from_conflict_check(app_config, access, owner):
    existing = make_appointment(id="5", start="10:00", end="11:00", version=1)
    session, reader, _, _ = make_session(app_config, access, owner, [existing])
    await session.open(MONDAY)

    updated = await session.update("5", {"start_time": "10:30", "end_time": "11:30"})

    candidate, scope = reader.conflict_calls[0]
    assert (candidate.start_time, candidate.end_time) == (dt.time(10, 30), dt.time(11, 30))
    assert scope.exclude_id == "5"
    assert updated.start_time == dt.time(10, 30)
    assert session.store.get("5").version == 2


@pytest.mark.asyncio
async def test_update_without_time_change_skips_check(app_config, access, owner):
    session, reader, _, _ = make_session(app_config, access, owner, [make_appointment(id="5", version=1)])
    await session.open(MONDAY)

    await session.update("5", {"title": "Renamed"})

    assert reader.conflict_calls == []
    assert session.store.get("5").title == "Renamed"


@pytest.mark.asyncio
async def test_delete_removes_and_mirrors(app_config, access, owner):
    mirror = FakeMirror()
    session, _, _, _ = make_session(
        app_config, access, owner, [make_appointment(id="1", google_event_id="g-1")], mirror=mirror
    )
    await session.open(MONDAY)

    await session.delete("1")
    await session.flush_mirror()

    assert "1" not in session.store
    assert mirror.calls == [("delete", "g-1")]


@pytest.mark.asyncio
async def test_mirror_failure_keeps_primary_save(app_config, access, owner, caplog):
    session, _, _, _ = make_session(app_config, access, owner, mirror=FakeMirror(fail=True))
    await session.open(MONDAY)

    with caplog.at_level(logging.WARNING):
        created = await session.create(DRAFT)
        await session.flush_mirror()

    assert created.id in session.store
    assert "Mirror create failed" in caplog.text


@pytest.mark.asyncio
async def test_edit_draft_reports_local_conflicts(app_config, access, owner):
    session, _, _, _ = make_session(app_config, access, owner, [make_appointment(id="1", start="13:00", end="14:00")])
    await session.open(MONDAY)

    session.edit_draft(make_range("13:30", "14:30"))
    result = await session.conflicts.wait()

    assert [a.id for a in result.local] == ["1"]
    assert result.is_authoritative


@pytest.mark.asyncio
async def test_resend_and_reschedule_reminder(app_config, access, owner):
    sent = make_appointment(id="1", version=1, reminder=Reminder(enabled=True, status=ReminderStatus.SENT))
    scheduled = make_appointment(
        id="2", start="11:00", end="12:00", version=1, reminder=Reminder(enabled=True, status=ReminderStatus.SCHEDULED)
    )
    session, _, writer, _ = make_session(app_config, access, owner, [sent, scheduled])
    await session.open(MONDAY)

    resent = await session.resend_reminder("1")
    moved = await session.reschedule_reminder("2", 1, ReminderUnit.HOURS)

    assert resent.status == ReminderStatus.SCHEDULED
    assert session.store.get("1").reminder.status == ReminderStatus.SCHEDULED
    assert session.store.get("2").reminder.unit == ReminderUnit.HOURS
    assert moved.value == 1
    assert [c[0] for c in writer.calls] == ["resend", "reschedule"]


@pytest.mark.asyncio
async def test_invalid_reminder_actions_rejected_locally(app_config, access, owner):
    scheduled = make_appointment(id="1", version=1, reminder=Reminder(enabled=True, status=ReminderStatus.SCHEDULED))
    session, _, writer, _ = make_session(app_config, access, owner, [scheduled, make_appointment(id="2")])
    await session.open(MONDAY)

    with pytest.raises(InvalidTransitionError):
        await session.resend_reminder("1")
    with pytest.raises(InvalidTransitionError):
        await session.reschedule_reminder("2", 5, ReminderUnit.MINUTES)
    with pytest.raises(InvalidTransitionError):
        await session.reschedule_reminder("1", 0, ReminderUnit.MINUTES)

    assert writer.calls == []


@pytest.mark.asyncio
async def test_mirror_id_is_saved_and_used_for_later_changes(app_config, access, owner):
    mirror = FakeMirror()
    session, _, writer, _ = make_session(app_config, access, owner, mirror=mirror)
    await session.open(MONDAY)

    created = await session.create(DRAFT)
    await session.flush_mirror()

    assert writer.calls[1] == ("update", created.id, {"google_event_id": "g-101"})
    assert session.store.get(created.id).google_event_id == "g-101"
    assert session.store.get(created.id).version == 2

    await session.update(created.id, {"title": "Follow-up"})
    await session.flush_mirror()
    await session.delete(created.id)
    await session.flush_mirror()

    assert mirror.calls == [("create", "101"), ("update", "g-101"), ("delete", "g-101")]
    assert created.id not in session.store


@pytest.mark.asyncio
async def test_mirror_id_kept_locally_when_saving_it_fails(app_config, access, owner, caplog):
    mirror = FakeMirror()
    session, _, writer, _ = make_session(app_config, access, owner, mirror=mirror)
    await session.open(MONDAY)

    created = await session.create(DRAFT)
    writer.error = NetworkError("offline")
    with caplog.at_level(logging.WARNING):
        await session.flush_mirror()

    assert session.store.get(created.id).google_event_id == "g-101"
    assert "Could not save mirror id g-101" in caplog.text


@pytest.mark.asyncio
async def test_dict_reminder_starts_scheduled(app_config, access, owner):
    session, _, writer, _ = make_session(app_config, access, owner)
    await session.open(MONDAY)

    created = await session.create({**DRAFT, "reminder": {"enabled": True, "value": 1, "unit": "HOURS"}})

    sent = writer.calls[0][1]["reminder"]
    assert sent.status == ReminderStatus.SCHEDULED
    assert sent.scheduled_at == pytz.timezone("Europe/Istanbul").localize(dt.datetime(2024, 1, 1, 12, 0))
    assert created.reminder.status == ReminderStatus.SCHEDULED


@pytest.mark.asyncio
async def test_disabled_reminder_has_no_state(app_config, access, owner):
    session, _, _, _ = make_session(app_config, access, owner)
    await session.open(MONDAY)

    created = await session.create({**DRAFT, "reminder": {"enabled": False}})

    assert created.reminder.status is None
    with pytest.raises(ValidationError):
        await session.create({**DRAFT, "reminder": "soon"})


@pytest.mark.asyncio
async def test_reminder_state_survives_service_echo(app_config, access, owner):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        requests.append((request.method, request.url.path, body))
        if request.method == "POST" and request.url.path == "/api/appointments":
            return httpx.Response(201, json={"success": True, "data": {**body, "id": 77}})
        if request.url.path == "/api/appointments/77/reminder-time":
            return httpx.Response(
                200,
                json={"success": True, "data": {"status": "scheduled", "value": body["reminderValue"], "unit": "HOURS"}},
            )
        if request.method == "PUT" and request.url.path == "/api/appointments/77":
            # Echo without any delivery state
            record = {**stored, **body, "reminder_enabled": True, "reminder_value": 30}
            return httpx.Response(200, json={"success": True, "data": record})
        return httpx.Response(404, json={"message": "not found"})

    stored = {"id": 77, "user_id": 7, "date": "2024-01-01", "start_time": "13:00", "end_time": "14:00"}

    client = httpx.AsyncClient(base_url="https://api.example.com/api", transport=httpx.MockTransport(handler))
    session, _, _, _ = make_session(app_config, access, owner, writer=AppointmentApiWriter(client))
    await session.open(MONDAY)

    created = await session.create({**DRAFT, "reminder": {"enabled": True, "value": 30}})

    due = pytz.timezone("Europe/Istanbul").localize(dt.datetime(2024, 1, 1, 12, 30))
    assert requests[0][2]["reminder_datetime"] == due.isoformat()
    assert created.reminder.status == ReminderStatus.SCHEDULED
    assert created.reminder.scheduled_at == due

    await session.update("77", {"title": "Renamed"})
    assert session.store.get("77").reminder.status == ReminderStatus.SCHEDULED

    moved = await session.reschedule_reminder("77", 1, ReminderUnit.HOURS)

    assert moved.status == ReminderStatus.SCHEDULED
    assert session.store.get("77").reminder.unit == ReminderUnit.HOURS
    assert requests[-1][1] == "/api/appointments/77/reminder-time"
    await client.aclose()


@pytest.mark.asyncio
async def test_close_forgets_unacknowledged_writes(app_config, access, owner):
    bus = LocalEventBus()
    session, _, _, _ = make_session(app_config, access, owner, [make_appointment(id="1", version=1)], events=bus)
    await session.open(MONDAY)

    created = await session.create(DRAFT)
    await session.update("1", {"title": "Renamed"})
    assert session.engine.is_pending(created.id) and session.engine.is_pending("1")

    await session.close()

    assert not session.engine.is_pending(created.id)
    assert not session.engine.is_pending("1")
