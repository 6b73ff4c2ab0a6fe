"""Reconciliation of remote and local appointment changes into the store."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..models.appointment import Appointment
from ..models.events import AppointmentEvent, EventKind
from ..models.normalize import parse_event
from ..utils.exceptions import StaleEventError, ValidationError
from .store import AppointmentStore, UpsertOutcome

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Running totals of the events folded into the store."""

    events_received: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    events_stale: int = 0
    events_ignored: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ApplyOutcome:
    """What a single event did to the store."""

    event: AppointmentEvent
    applied: bool
    # True when the change touches the visible window and views must be recomposed
    visible: bool = False


def event_from_appointment(kind: EventKind, appointment: Appointment, seq: int = 0) -> AppointmentEvent:
    """Wrap a service response as if it had arrived on the event stream."""
    fields = appointment.model_dump(include=appointment.model_fields_set | {"id"})
    return AppointmentEvent(kind=kind, id=appointment.id, seq=seq, fields=fields)


class ReconciliationEngine:
    """
    Fold created/updated/deleted events into an AppointmentStore.

    Events are applied in arrival order. Delivery is at-least-once and may be
    out of order: duplicates merge idempotently and older copies are dropped
    by the store's marker check. A delete is final, but a later create for
    the same id is accepted as a recreation.
    """

    def __init__(
        self,
        store: AppointmentStore,
        on_change: Optional[Callable[[ApplyOutcome], None]] = None,
    ):
        """
        Initialize reconciliation engine.

        Args:
            store: Store to mutate
            on_change: Called after any change that lands in the visible window
        """
        self.store = store
        self.on_change = on_change
        self.result = ReconcileResult()
        self.last_seq = 0
        self._pending: set[str] = set()

    def mark_pending(self, appointment_id: str) -> None:
        """Remember a local mutation whose echo is expected on the stream."""
        self._pending.add(str(appointment_id))

    def is_pending(self, appointment_id: str) -> bool:
        return str(appointment_id) in self._pending

    def clear_pending(self) -> None:
        """Forget echoes that will never arrive, e.g. once the stream is closed."""
        if self._pending:
            logger.debug(f"Dropping {len(self._pending)} unacknowledged local change(s)")
        self._pending.clear()

    def handle_payload(self, payload: dict[str, Any]) -> Optional[ApplyOutcome]:
        """Parse a raw stream payload and apply it. Malformed payloads are recorded and skipped."""
        try:
            event = parse_event(payload)
        except ValidationError as e:
            error_msg = f"Dropped malformed event: {e}"
            logger.error(error_msg)
            self.result.errors.append(error_msg)
            return None
        return self.apply(event)

    def apply(self, event: AppointmentEvent) -> ApplyOutcome:
        """Apply one event to the store."""
        self.result.events_received += 1
        self.last_seq = max(self.last_seq, event.seq)

        if event.id in self._pending:
            # Echo of our own write: applying it again is a no-op merge
            logger.debug(f"Echo of local change to {event.id} (seq={event.seq})")
            self._pending.discard(event.id)

        before = self.store.get(event.id)

        if event.kind == EventKind.DELETED:
            if not self.store.remove(event.id):
                self.result.events_ignored += 1
                return ApplyOutcome(event=event, applied=False)
            self.result.events_deleted += 1
            return self._changed(event, before, None)

        try:
            outcome = self.store.upsert_fields(event.fields)
        except StaleEventError as e:
            logger.debug(f"Dropped stale {event.kind.value} event (seq={event.seq}): {e}")
            self.result.events_stale += 1
            return ApplyOutcome(event=event, applied=False)
        except ValidationError as e:
            error_msg = f"Failed to apply {event.kind.value} event for {event.id}: {e}"
            logger.error(error_msg)
            self.result.errors.append(error_msg)
            return ApplyOutcome(event=event, applied=False)

        if outcome == UpsertOutcome.INSERTED:
            self.result.events_created += 1
        else:
            self.result.events_updated += 1
        return self._changed(event, before, self.store.get(event.id))

    def apply_all(self, events: list[AppointmentEvent]) -> ReconcileResult:
        for event in events:
            self.apply(event)
        return self.result

    def _changed(
        self,
        event: AppointmentEvent,
        before: Optional[Appointment],
        after: Optional[Appointment],
    ) -> ApplyOutcome:
        visible = any(a is not None and self.store.in_window(a.date) for a in (before, after))
        outcome = ApplyOutcome(event=event, applied=True, visible=visible)
        if visible and self.on_change:
            self.on_change(outcome)
        return outcome
