"""Google Calendar mirror using the Calendar v3 REST API directly."""

import logging
from datetime import datetime, timedelta
from typing import Optional

import requests

from ..config import GoogleMirrorConfig
from ..models.appointment import Appointment
from ..utils.exceptions import ConfigurationError, MirrorSyncError
from .base import CalendarMirror

logger = logging.getLogger(__name__)

CALENDAR_BASE = "https://www.googleapis.com/calendar/v3"


# Appointment hex colors -> Google event colorId
# See https://developers.google.com/calendar/api/v3/reference/colors
EVENT_COLORS = {
    "#7986cb": "1",
    "#33b679": "2",
    "#8e24aa": "3",
    "#e67c73": "4",
    "#f6bf26": "5",
    "#f4511e": "6",
    "#039be5": "7",
    "#616161": "8",
    "#3f51b5": "9",
    "#0b8043": "10",
    "#d50000": "11",
}


class GoogleCalendarMirror(CalendarMirror):
    """Mirror appointments into a Google calendar."""

    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        timezone: str = "UTC",
        timeout: float = 15.0,
    ):
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.timezone = timezone
        self.timeout = timeout

    @classmethod
    def from_config(cls, google: GoogleMirrorConfig, timezone: str) -> Optional["GoogleCalendarMirror"]:
        """Build the mirror, or return None when mirroring is disabled."""
        if not google.enabled:
            return None
        if not google.access_token:
            raise ConfigurationError("GOOGLE_ACCESS_TOKEN is required when GOOGLE_MIRROR_ENABLED is set")
        return cls(google.access_token, calendar_id=google.calendar_id, timezone=timezone)

    @property
    def _events_url(self) -> str:
        return f"{CALENDAR_BASE}/calendars/{self.calendar_id}/events"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _to_google_format(self, appointment: Appointment) -> dict:
        if appointment.is_all_day:
            # Google all-day end dates are exclusive
            start = {"date": appointment.date.isoformat()}
            end = {"date": (appointment.date + timedelta(days=1)).isoformat()}
        else:
            start = {
                "dateTime": datetime.combine(appointment.date, appointment.start_time).strftime("%Y-%m-%dT%H:%M:%S"),
                "timeZone": self.timezone,
            }
            end = {
                "dateTime": datetime.combine(appointment.date, appointment.end_time).strftime("%Y-%m-%dT%H:%M:%S"),
                "timeZone": self.timezone,
            }

        data = {
            "summary": appointment.title,
            "start": start,
            "end": end,
        }

        if appointment.description:
            data["description"] = appointment.description

        if appointment.location:
            data["location"] = appointment.location

        color_id = EVENT_COLORS.get(appointment.color.lower())
        if color_id:
            data["colorId"] = color_id

        if appointment.invitees:
            data["attendees"] = [
                {"email": i.email, "displayName": i.name} for i in appointment.invitees if i.email
            ]

        return data

    def create_event(self, appointment: Appointment) -> str:
        try:
            resp = requests.post(
                self._events_url,
                headers=self._headers(),
                json=self._to_google_format(appointment),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            event_id = resp.json().get("id", "")
            logger.info(f"Mirrored appointment {appointment.id} as Google event {event_id}")
            return event_id

        except Exception as e:
            raise MirrorSyncError(f"Failed to create Google event for {appointment.id}: {e}") from e

    def update_event(self, appointment: Appointment) -> None:
        if not appointment.google_event_id:
            raise MirrorSyncError(f"Appointment {appointment.id} has no Google event to update")
        try:
            resp = requests.patch(
                f"{self._events_url}/{appointment.google_event_id}",
                headers=self._headers(),
                json=self._to_google_format(appointment),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            logger.info(f"Updated Google event {appointment.google_event_id}")

        except Exception as e:
            raise MirrorSyncError(
                f"Failed to update Google event {appointment.google_event_id}: {e}"
            ) from e

    def delete_event(self, event_id: str) -> None:
        try:
            resp = requests.delete(
                f"{self._events_url}/{event_id}",
                headers=self._headers(),
                timeout=self.timeout,
            )
            # Already gone on the Google side
            if resp.status_code == 410:
                return
            resp.raise_for_status()
            logger.info(f"Deleted Google event {event_id}")

        except Exception as e:
            raise MirrorSyncError(f"Failed to delete Google event {event_id}: {e}") from e
