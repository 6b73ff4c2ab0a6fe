"""The calendar screen's session: store, window, viewer and the calls that feed them."""

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, Coroutine, Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import AccessConfig, AppConfig
from ..config import config as default_config
from ..models.appointment import Appointment, ConflictScope, Reminder, ReminderUnit, TimeRange, Viewer
from ..models.calendar import DateRange, Granularity
from ..models.events import AppointmentEvent, EventKind
from ..models.normalize import normalize_reminder
from ..readers.base import AppointmentEventSource, AppointmentReader
from ..utils.date_utils import buffered_range, local_today
from ..utils.exceptions import (
    AuthError,
    ConflictError,
    InvalidTransitionError,
    MirrorSyncError,
    NetworkError,
    StaleEventError,
    ValidationError,
)
from ..views.composer import CalendarView, Layout, compose
from ..writers.base import AppointmentWriter, CalendarMirror
from .conflicts import ConflictChecker
from .engine import ApplyOutcome, ReconciliationEngine, event_from_appointment
from .reminders import ReminderStateMachine
from .store import AppointmentStore

logger = logging.getLogger(__name__)

TIME_FIELDS = ("date", "start_time", "end_time", "is_all_day")


def _intersect(a: Optional[DateRange], b: DateRange) -> Optional[DateRange]:
    if a is None:
        return None
    start, end = max(a.start, b.start), min(a.end, b.end)
    return DateRange(start=start, end=end) if start <= end else None


class CalendarSession:
    """
    Everything the open calendar screen owns.

    One store per session; it is cleared when the user navigates outside
    the range it buffers. Every mutation, whether from a fetch, the event
    stream or a confirmed write, runs on the event loop, so the store is
    never touched concurrently.
    """

    def __init__(
        self,
        reader: AppointmentReader,
        writer: AppointmentWriter,
        viewer: Viewer,
        events: Optional[AppointmentEventSource] = None,
        mirror: Optional[CalendarMirror] = None,
        config: Optional[AppConfig] = None,
        access: Optional[AccessConfig] = None,
        on_change: Optional[Callable[[CalendarView], None]] = None,
    ):
        self.config = config or default_config
        self.reader = reader
        self.writer = writer
        self.viewer = viewer
        self.mirror = mirror
        self.access = access
        self.on_change = on_change
        self.layout = Layout.from_config(self.config)

        self.store = AppointmentStore(buffer_days=self.config.window_buffer_days)
        self.engine = ReconciliationEngine(self.store, on_change=self._on_store_change)
        self.reminders = ReminderStateMachine(self.config.timezone)
        self.conflicts = ConflictChecker(
            pool=self.store.active,
            reader=reader,
            debounce_ms=self.config.conflict_debounce_ms,
        )

        self.anchor: dt.date = local_today(self.config.timezone)
        self.granularity = Granularity.WEEK
        self.view: Optional[CalendarView] = None

        self._loaded: Optional[DateRange] = None
        self._fetch_generation = 0
        self._fetch_task: Optional[asyncio.Task] = None
        self._mirror_tasks: set[asyncio.Task] = set()
        self._unsubscribe = events.subscribe(self.engine.handle_payload) if events else None

    # Window and view

    @property
    def window(self) -> DateRange:
        return DateRange.for_granularity(self.anchor, self.granularity)

    def refresh(self) -> CalendarView:
        """Recompose the current view and notify the listener."""
        self.view = compose(
            self.store, self.anchor, self.viewer, self.granularity, layout=self.layout, access=self.access
        )
        if self.on_change:
            self.on_change(self.view)
        return self.view

    def set_viewer(self, viewer: Viewer) -> CalendarView:
        self.viewer = viewer
        return self.refresh()

    def _on_store_change(self, outcome: ApplyOutcome) -> None:
        self.refresh()

    async def open(
        self,
        anchor: Optional[dt.date] = None,
        granularity: Granularity = Granularity.WEEK,
    ) -> bool:
        return await self.navigate(anchor or local_today(self.config.timezone), granularity)

    async def navigate(self, anchor: dt.date, granularity: Optional[Granularity] = None) -> bool:
        """
        Show the window around ``anchor`` and load what it needs.

        Returns:
            False if a later navigation superseded this one before its fetch
            returned (its result is discarded), True otherwise

        Raises:
            NetworkError, AuthError: If the fetch fails
        """
        self.anchor = anchor
        if granularity is not None:
            self.granularity = Granularity(granularity)
        window = self.window

        self._fetch_generation += 1
        generation = self._fetch_generation
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()

        if not self.store.covers(window):
            logger.debug(f"Window {window.start} to {window.end} outside buffer, rebuilding store")
            self.store.clear()
            self._loaded = None
        self.store.set_window(window)
        self._loaded = _intersect(self._loaded, self.store.buffered_window)

        if self._loaded is not None and self._loaded.covers(window):
            self.refresh()
            return True

        low, high = buffered_range(window.start, window.end, self.config.window_buffer_days)
        fetch_range = DateRange(start=low, end=high)
        self._fetch_task = asyncio.create_task(self.reader.fetch_appointments(fetch_range))
        try:
            appointments = await self._fetch_task
        except asyncio.CancelledError:
            if generation != self._fetch_generation:
                logger.debug(f"Fetch for {fetch_range.start} to {fetch_range.end} cancelled by navigation")
                return False
            raise

        if generation != self._fetch_generation:
            logger.info(f"Discarding fetch for superseded window {fetch_range.start} to {fetch_range.end}")
            return False

        for appointment in appointments:
            try:
                self.store.upsert(appointment)
            except StaleEventError as e:
                # The stream already delivered a newer copy
                logger.debug(str(e))
            except ValidationError as e:
                logger.warning(f"Skipping fetched appointment: {e}")
        self._loaded = fetch_range
        self.refresh()
        return True

    # Draft editing

    def edit_draft(
        self,
        candidate: TimeRange,
        exclude_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> int:
        """Queue a debounced conflict check for the draft being edited."""
        scope = ConflictScope(owner_id=owner_id or self.viewer.id, exclude_id=exclude_id)
        return self.conflicts.request(candidate, scope)

    @staticmethod
    def _time_range(fields: dict[str, Any]) -> TimeRange:
        try:
            return TimeRange(**{k: fields.get(k) for k in TIME_FIELDS if fields.get(k) is not None})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid time range: {e}") from e

    async def _ensure_free(self, candidate: TimeRange, scope: ConflictScope) -> None:
        if candidate.is_all_day:
            return
        conflicts = await self.reader.check_conflict(candidate, scope)
        if conflicts:
            raise ConflictError(
                f"{len(conflicts)} appointment(s) overlap {candidate.date} "
                f"{candidate.start_time:%H:%M}-{candidate.end_time:%H:%M}",
                conflicts,
            )

    # Writes

    async def create(self, fields: dict[str, Any]) -> Appointment:
        """
        Validate, check and create an appointment.

        Raises:
            ValidationError: Before any network call, if the draft is invalid
            ConflictError: If the authoritative check finds overlaps
            NetworkError, AuthError: If the service call fails (store unchanged)
        """
        fields = dict(fields)
        fields.setdefault("owner_id", self.viewer.id)
        if not str(fields.get("title") or "").strip():
            raise ValidationError("title is required")
        candidate = self._time_range(fields)

        planned = self._initial_reminder(fields.get("reminder"), candidate)
        if planned is not None:
            fields["reminder"] = planned

        await self._ensure_free(candidate, ConflictScope(owner_id=fields["owner_id"]))
        appointment = await self.writer.create_appointment(fields)

        self.engine.apply(event_from_appointment(EventKind.CREATED, appointment))
        self.engine.mark_pending(appointment.id)

        held = self.store.get(appointment.id)
        if planned is not None and planned.enabled and held is not None:
            # The service may echo the reminder settings without a delivery state
            if held.reminder is None or (held.reminder.enabled and held.reminder.status is None):
                self._apply_reminder(appointment.id, planned)

        stored = self.store.get(appointment.id) or appointment
        if self.mirror is not None:
            self._spawn(self._mirror_create(stored))
        return stored

    def _initial_reminder(self, raw: Any, candidate: TimeRange) -> Optional[Reminder]:
        """Validate a draft reminder and put an enabled one in its starting state."""
        if raw is None:
            return None
        if isinstance(raw, Reminder):
            reminder = raw
        elif isinstance(raw, dict):
            reminder = normalize_reminder({"reminder": raw})
        else:
            raise ValidationError(f"Invalid reminder: {raw!r}")

        if not reminder.enabled or reminder.status is not None:
            return reminder
        return self.reminders.initial(True, reminder.value, reminder.unit, appointment=candidate)

    async def update(self, appointment_id: str, changes: dict[str, Any]) -> Appointment:
        """
        Validate, check and update an appointment.

        Raises:
            ValidationError: Before any network call, if the result would be invalid
            ConflictError: If the new time overlaps other appointments
            NetworkError, AuthError: If the service call fails (store unchanged)
        """
        appointment_id = str(appointment_id)
        held = self.store.get(appointment_id)
        changes = dict(changes)

        if any(k in changes for k in TIME_FIELDS):
            base = held.model_dump(include=set(TIME_FIELDS)) if held else {}
            candidate = self._time_range({**base, **changes})
            owner_id = held.owner_id if held else changes.get("owner_id", self.viewer.id)
            await self._ensure_free(candidate, ConflictScope(owner_id=owner_id, exclude_id=appointment_id))

        appointment = await self.writer.update_appointment(appointment_id, changes)

        self.engine.apply(self._response_event(appointment))
        self.engine.mark_pending(appointment.id)
        stored = self.store.get(appointment.id) or appointment
        if self.mirror is not None and stored.google_event_id:
            self._spawn(self._run_mirror("update", self.mirror.update_event, stored))
        return stored

    def _response_event(self, appointment: Appointment) -> AppointmentEvent:
        """Wrap an update reply, keeping the known reminder state if the reply has none."""
        event = event_from_appointment(EventKind.UPDATED, appointment)
        held = self.store.get(appointment.id)
        reminder = event.fields.get("reminder")
        if (
            held is None
            or held.reminder is None
            or held.reminder.status is None
            or not isinstance(reminder, dict)
            or not reminder.get("enabled")
            or reminder.get("status") is not None
        ):
            return event

        kept = {
            **reminder,
            "status": held.reminder.status,
            "scheduled_at": reminder.get("scheduled_at") or held.reminder.scheduled_at,
        }
        return event.model_copy(update={"fields": {**event.fields, "reminder": kept}})

    async def delete(self, appointment_id: str) -> None:
        """
        Delete an appointment.

        Raises:
            NetworkError, AuthError: If the service call fails (store unchanged)
        """
        appointment_id = str(appointment_id)
        held = self.store.get(appointment_id)
        await self.writer.delete_appointment(appointment_id)

        self.engine.apply(AppointmentEvent(kind=EventKind.DELETED, id=appointment_id))
        self.engine.mark_pending(appointment_id)
        if self.mirror is not None and held is not None and held.google_event_id:
            self._spawn(self._run_mirror("delete", self.mirror.delete_event, held.google_event_id))

    # Reminders

    def _reminder_of(self, appointment_id: str) -> tuple[Appointment, Reminder]:
        held = self.store.get(appointment_id)
        if held is None:
            raise ValidationError(f"Appointment {appointment_id} is not loaded")
        if held.reminder is None or not held.reminder.enabled:
            raise InvalidTransitionError(f"Appointment {appointment_id} has no reminder")
        return held, held.reminder

    def _apply_reminder(self, appointment_id: str, reminder: Reminder) -> Reminder:
        self.engine.apply(
            AppointmentEvent(
                kind=EventKind.UPDATED,
                id=appointment_id,
                fields={"id": appointment_id, "reminder": reminder},
            )
        )
        return reminder

    async def resend_reminder(self, appointment_id: str, at: Optional[dt.datetime] = None) -> Reminder:
        """
        Resend a sent or failed reminder, now or at ``at``.

        Raises:
            InvalidTransitionError: Before any network call, if the reminder cannot be resent
        """
        appointment_id = str(appointment_id)
        _, reminder = self._reminder_of(appointment_id)
        self.reminders.resend(reminder, at)

        updated = await self.writer.resend_reminder(appointment_id, at)
        return self._apply_reminder(appointment_id, updated)

    async def reschedule_reminder(self, appointment_id: str, value: int, unit: ReminderUnit) -> Reminder:
        """
        Change the offset of a scheduled reminder.

        Raises:
            InvalidTransitionError: Before any network call, if the reminder is not scheduled
        """
        appointment_id = str(appointment_id)
        held, reminder = self._reminder_of(appointment_id)
        unit = ReminderUnit(unit)
        self.reminders.reschedule(reminder, value, unit, appointment=held)

        updated = await self.writer.reschedule_reminder(appointment_id, value, unit)
        return self._apply_reminder(appointment_id, updated)

    # Mirror

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._mirror_tasks.add(task)
        task.add_done_callback(self._mirror_tasks.discard)

    async def _mirror_create(self, appointment: Appointment) -> None:
        """Create the shadow event and store its id on the appointment."""
        event_id = await self._run_mirror("create", self.mirror.create_event, appointment)
        if not event_id:
            return

        try:
            saved = await self.writer.update_appointment(appointment.id, {"google_event_id": event_id})
        except (NetworkError, AuthError, ValidationError) as e:
            # Keep the link for this session so later edits still reach the mirror
            logger.warning(f"Could not save mirror id {event_id} for appointment {appointment.id}: {e}")
            self.engine.apply(
                AppointmentEvent(
                    kind=EventKind.UPDATED,
                    id=appointment.id,
                    fields={"id": appointment.id, "google_event_id": event_id},
                )
            )
            return

        fields = {"id": saved.id, "google_event_id": saved.google_event_id or event_id}
        fields.update({k: v for k, v in (("version", saved.version), ("updated_at", saved.updated_at)) if v is not None})
        self.engine.apply(AppointmentEvent(kind=EventKind.UPDATED, id=saved.id, fields=fields))
        self.engine.mark_pending(saved.id)

    async def _run_mirror(self, action: str, func: Callable, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except MirrorSyncError as e:
            logger.warning(f"Mirror {action} failed, primary save kept: {e}")
            return None

    async def flush_mirror(self) -> None:
        """Wait for outstanding mirror calls."""
        if self._mirror_tasks:
            await asyncio.gather(*list(self._mirror_tasks))

    async def close(self) -> None:
        """Tear the session down: stop listening and cancel pending work."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.conflicts.cancel_pending()
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_generation += 1
            self._fetch_task.cancel()
        await self.flush_mirror()
        self.engine.clear_pending()
