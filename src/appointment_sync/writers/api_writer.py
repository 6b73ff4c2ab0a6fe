"""Appointment writer for the REST appointment service."""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from ..config import AppConfig
from ..models.appointment import Appointment, Reminder, ReminderUnit
from ..models.normalize import normalize_appointment, normalize_reminder, to_api_payload
from ..readers.api_reader import normalize_records
from ..utils.exceptions import ConflictError
from ..utils.http import api_request, create_client, unwrap
from .base import AppointmentWriter

logger = logging.getLogger(__name__)


class AppointmentApiWriter(AppointmentWriter):
    """Write appointments to the appointment service over HTTP."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @classmethod
    def from_config(cls, config: AppConfig, client: Optional[httpx.AsyncClient] = None) -> "AppointmentApiWriter":
        if client is None:
            api_url, token = config.require_api()
            client = create_client(api_url, token, timeout=config.api_timeout)
        return cls(client)

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            return await api_request(self.client, method, path, **kwargs)
        except ConflictError as e:
            raise ConflictError(str(e), normalize_records(e.conflicts)) from e

    async def create_appointment(self, fields: dict[str, Any]) -> Appointment:
        data = await self._send("POST", "/appointments", json=to_api_payload(fields))
        appointment = normalize_appointment(unwrap(data))
        logger.info(f"Created appointment {appointment.id}: {appointment.title}")
        return appointment

    async def update_appointment(self, appointment_id: str, fields: dict[str, Any]) -> Appointment:
        data = await self._send(
            "PUT", f"/appointments/{appointment_id}", json=to_api_payload(fields)
        )
        appointment = normalize_appointment(unwrap(data))
        logger.info(f"Updated appointment {appointment.id}: {appointment.title}")
        return appointment

    async def delete_appointment(self, appointment_id: str) -> None:
        await self._send("DELETE", f"/appointments/{appointment_id}")
        logger.info(f"Deleted appointment {appointment_id}")

    async def resend_reminder(
        self,
        appointment_id: str,
        at: Optional[datetime] = None,
    ) -> Reminder:
        data = await self._send(
            "POST",
            f"/appointments/{appointment_id}/resend-reminder",
            json={"reminderDateTime": at.isoformat() if at else None},
        )
        return normalize_reminder({"reminder": {"enabled": True, **(unwrap(data) or {})}})

    async def reschedule_reminder(
        self,
        appointment_id: str,
        value: int,
        unit: ReminderUnit,
    ) -> Reminder:
        data = await self._send(
            "PUT",
            f"/appointments/{appointment_id}/reminder-time",
            json={"reminderValue": value, "reminderUnit": unit.value.upper()},
        )
        return normalize_reminder({"reminder": {"enabled": True, **(unwrap(data) or {})}})

    async def aclose(self) -> None:
        await self.client.aclose()
