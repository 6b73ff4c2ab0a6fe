"""Normalization of raw appointment payloads.

The appointment service and the real-time socket both send loosely shaped
records (snake_case or camelCase keys, times with seconds, visibility lists
as JSON strings). Everything is mapped onto the strict models here and only
here.
"""

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ..utils.date_utils import parse_date
from ..utils.exceptions import ValidationError
from .appointment import DEFAULT_COLOR, Appointment, Invitee, Reminder, Viewer, Visibility
from .events import AppointmentEvent, EventKind

logger = logging.getLogger(__name__)

# canonical field -> accepted payload keys, first match wins
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "_id"),
    "owner_id": ("owner_id", "ownerId", "user_id", "userId", "created_by"),
    "date": ("date",),
    "start_time": ("start_time", "startTime", "time"),
    "end_time": ("end_time", "endTime"),
    "is_all_day": ("is_all_day", "isAllDay", "all_day"),
    "title": ("title",),
    "description": ("description",),
    "location": ("location",),
    "status": ("status",),
    "google_event_id": ("google_event_id", "googleEventId"),
    "version": ("version",),
    "updated_at": ("updated_at", "updatedAt"),
}

COLOR_KEYS = ("creator_color", "color")
ATTENDEE_NAME_KEYS = ("creator_name", "created_by_name", "attendee_name")
VISIBILITY_KEYS = ("visibility", "visible_to_all", "visibleToAll", "visible_to_users", "visibleToUsers")
REMINDER_KEYS = (
    "reminder",
    "reminder_enabled",
    "reminderEnabled",
    "reminder_value",
    "reminder_unit",
    "reminder_status",
    "reminder_info",
    "reminder_datetime",
)


def _first(raw: dict[str, Any], keys: tuple[str, ...]) -> tuple[bool, Any]:
    for key in keys:
        if key in raw:
            return True, raw[key]
    return False, None


def _parse_shared_with(entries: Any) -> tuple[set[str], set[str]]:
    """Split a ``visible_to_users`` payload into user ids and emails."""
    if entries is None:
        return set(), set()
    if isinstance(entries, str):
        entries = json.loads(entries) if entries.strip() else []
    if not isinstance(entries, (list, tuple, set, frozenset)):
        raise TypeError(f"expected a list, got {type(entries).__name__}")

    ids: set[str] = set()
    emails: set[str] = set()
    for entry in entries:
        if isinstance(entry, dict):
            if entry.get("id") is not None:
                ids.add(str(entry["id"]))
            if entry.get("email"):
                emails.add(str(entry["email"]))
        elif isinstance(entry, (str, int)) and not isinstance(entry, bool):
            value = str(entry)
            (emails if "@" in value else ids).add(value)
        else:
            raise TypeError(f"unexpected visibility entry {entry!r}")
    return ids, emails


def normalize_visibility(raw: dict[str, Any]) -> Visibility:
    """
    Build a Visibility from any of the accepted payload shapes.

    A malformed payload is shared with nobody: the owner and privileged
    viewers still see the appointment, everyone else does not.
    """
    nested = raw.get("visibility")
    if isinstance(nested, dict):
        everyone = nested.get("all", nested.get("all_users", False))
        shared_with = nested.get("user_ids", nested.get("userIds"))
        extra_emails = nested.get("emails") or []
    else:
        everyone = raw.get("visible_to_all", raw.get("visibleToAll", False))
        shared_with = raw.get("visible_to_users", raw.get("visibleToUsers"))
        extra_emails = []

    if everyone is True or everyone in (1, "1", "true", "True"):
        return Visibility(all_users=True)

    try:
        ids, emails = _parse_shared_with(shared_with)
        emails.update(str(e) for e in extra_emails)
    except (ValueError, TypeError) as e:
        logger.warning(f"Malformed visibility for appointment {raw.get('id')}: {e}")
        return Visibility(all_users=False)

    return Visibility(all_users=False, user_ids=ids, emails=emails)


def normalize_reminder(raw: dict[str, Any], base: Optional[Reminder] = None) -> Reminder:
    """Build a Reminder from nested or flat reminder keys, on top of ``base``."""
    data: dict[str, Any] = base.model_dump() if base else {}

    nested = raw.get("reminder")
    if isinstance(nested, dict):
        source = nested
        info = nested
    else:
        source = raw
        info = raw.get("reminder_info") if isinstance(raw.get("reminder_info"), dict) else raw

    found, enabled = _first(source, ("enabled", "reminder_enabled", "reminderEnabled"))
    if found:
        data["enabled"] = bool(enabled)
    found, value = _first(source, ("value", "reminder_value", "reminderValue"))
    if found and value is not None:
        data["value"] = value
    found, unit = _first(source, ("unit", "reminder_unit", "reminderUnit"))
    if found and unit:
        data["unit"] = unit
    found, status = _first(info, ("status", "reminder_status"))
    if found:
        data["status"] = status
    found, scheduled_at = _first(info, ("scheduled_at", "scheduledAt", "reminder_datetime"))
    if found:
        data["scheduled_at"] = scheduled_at or None
    found, sent_at = _first(info, ("sent_at", "sentAt"))
    if found:
        data["sent_at"] = sent_at or None

    try:
        return Reminder.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid reminder payload: {e}") from e


def normalize_fields(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Map a raw payload onto canonical Appointment field names.

    Only fields present in the payload are returned, so a partial update
    yields a partial dict.

    Raises:
        ValidationError: If the payload is not a mapping or a date is malformed
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"Appointment payload must be an object, got {type(raw).__name__}")

    fields: dict[str, Any] = {}
    for name, keys in FIELD_ALIASES.items():
        found, value = _first(raw, keys)
        if found:
            fields[name] = value

    if "date" in fields:
        fields["date"] = parse_date(fields["date"])
    for name in ("start_time", "end_time"):
        if isinstance(fields.get(name), str):
            fields[name] = fields[name].strip()[:5] or None

    if any(key in raw for key in COLOR_KEYS):
        fields["color"] = next((raw[k] for k in COLOR_KEYS if raw.get(k)), DEFAULT_COLOR)

    attendee = _attendee_name(raw)
    if attendee is not None:
        fields["attendee_name"] = attendee

    if "invitees" in raw:
        fields["invitees"] = tuple(
            Invitee(
                name=i.get("name"),
                email=i.get("email"),
                phone=i.get("phone") or i.get("phone1") or i.get("phone2"),
            )
            for i in (raw["invitees"] or [])
            if isinstance(i, dict)
        )

    if any(key in raw for key in VISIBILITY_KEYS):
        fields["visibility"] = normalize_visibility(raw)

    if any(key in raw for key in REMINDER_KEYS):
        fields["reminder"] = normalize_reminder(raw)

    return fields


def _attendee_name(raw: dict[str, Any]) -> Optional[str]:
    for key in ATTENDEE_NAME_KEYS:
        if raw.get(key):
            return raw[key]
    for key in ("invitees", "attendees"):
        people = raw.get(key)
        if isinstance(people, list) and people and isinstance(people[0], dict):
            return people[0].get("name") or people[0].get("email")
    return None


def normalize_appointment(raw: dict[str, Any]) -> Appointment:
    """
    Normalize a complete appointment record.

    Raises:
        ValidationError: If required fields are missing or the time range is invalid
    """
    fields = normalize_fields(raw)
    try:
        return Appointment.model_validate(fields)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid appointment {fields.get('id')!r}: {e}") from e


def normalize_viewer(raw: dict[str, Any]) -> Viewer:
    """Normalize the auth context's user record into a Viewer."""
    try:
        return Viewer(
            id=raw.get("id"),
            role=raw.get("role"),
            department=raw.get("department"),
            email=raw.get("email"),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid viewer: {e}") from e


def parse_event(raw: dict[str, Any]) -> AppointmentEvent:
    """
    Normalize a real-time payload into an AppointmentEvent.

    Accepts both ``{"kind": "updated", "appointment": {...}, "seq": 3}`` and
    the socket form ``{"type": "appointment-updated", "data": {...}}``.

    Raises:
        ValidationError: If the kind or id is missing or unknown
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"Event payload must be an object, got {type(raw).__name__}")

    kind_value = str(raw.get("kind") or raw.get("type") or raw.get("event") or "")
    kind_value = kind_value.removeprefix("appointment-").removeprefix("appointment_")
    try:
        kind = EventKind(kind_value.lower())
    except ValueError as e:
        raise ValidationError(f"Unknown event kind: {kind_value!r}") from e

    payload = raw.get("appointment", raw.get("data"))
    if isinstance(payload, dict):
        fields = normalize_fields(payload)
    else:
        fields = {}

    event_id = fields.get("id", raw.get("id"))
    if event_id is None and payload is not None and not isinstance(payload, dict):
        event_id = payload
    if event_id is None:
        raise ValidationError(f"{kind.value} event without an appointment id")

    if kind == EventKind.DELETED:
        fields = {}
    else:
        fields["id"] = str(event_id)

    try:
        return AppointmentEvent(kind=kind, id=str(event_id), seq=raw.get("seq") or 0, fields=fields)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {kind.value} event: {e}") from e


def to_api_payload(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert canonical appointment fields into the service's snake_case body."""
    payload: dict[str, Any] = {}
    for name, value in fields.items():
        if name in ("id", "version", "updated_at", "attendee_name"):
            continue
        if name == "owner_id":
            payload["user_id"] = value
        elif name == "date":
            payload["date"] = value.isoformat() if hasattr(value, "isoformat") else value
        elif name in ("start_time", "end_time"):
            payload[name] = value.strftime("%H:%M") if hasattr(value, "strftime") else value
        elif name == "visibility":
            visibility = Visibility.model_validate(value)
            payload["visible_to_all"] = visibility.all_users
            payload["visible_to_users"] = [{"id": uid} for uid in sorted(visibility.user_ids)] + [
                {"email": email} for email in sorted(visibility.emails)
            ]
        elif name == "reminder":
            if value is None:
                payload["reminder_enabled"] = False
                continue
            reminder = Reminder.model_validate(value)
            payload["reminder_enabled"] = reminder.enabled
            payload["reminder_value"] = reminder.value
            payload["reminder_unit"] = reminder.unit.value.upper()
            if reminder.scheduled_at is not None:
                payload["reminder_datetime"] = reminder.scheduled_at.isoformat()
        elif name == "invitees":
            payload["invitees"] = [Invitee.model_validate(i).model_dump(exclude_none=True) for i in value]
        elif name == "status":
            payload["status"] = getattr(value, "value", value)
        else:
            payload[name] = value
    return payload
