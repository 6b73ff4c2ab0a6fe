"""Appointment reader for the REST appointment service."""

import logging
from typing import Any, Iterable, Optional

import httpx

from ..config import AppConfig
from ..models.appointment import Appointment, ConflictScope, TimeRange
from ..models.calendar import DateRange
from ..models.normalize import normalize_appointment
from ..utils.exceptions import ValidationError
from ..utils.http import api_request, create_client, unwrap
from .base import AppointmentReader

logger = logging.getLogger(__name__)


def normalize_records(records: Iterable[Any]) -> list[Appointment]:
    """Normalize a list of raw records, skipping the ones that do not validate."""
    result = []
    for record in records or []:
        try:
            result.append(normalize_appointment(record))
        except ValidationError as e:
            logger.warning(f"Skipping malformed appointment record: {e}")
    return result


class AppointmentApiReader(AppointmentReader):
    """Read appointments from the appointment service over HTTP."""

    def __init__(self, client: httpx.AsyncClient):
        """
        Initialize API reader.

        Args:
            client: Authenticated client whose base_url points at the API root
        """
        self.client = client

    @classmethod
    def from_config(cls, config: AppConfig, client: Optional[httpx.AsyncClient] = None) -> "AppointmentApiReader":
        if client is None:
            api_url, token = config.require_api()
            client = create_client(api_url, token, timeout=config.api_timeout)
        return cls(client)

    async def fetch_appointments(self, date_range: DateRange) -> list[Appointment]:
        data = await api_request(
            self.client,
            "GET",
            "/appointments/range",
            params={"start": date_range.start.isoformat(), "end": date_range.end.isoformat()},
        )
        appointments = normalize_records(unwrap(data))
        logger.info(
            f"Fetched {len(appointments)} appointments for {date_range.start} to {date_range.end}"
        )
        return appointments

    async def check_conflict(
        self,
        candidate: TimeRange,
        scope: ConflictScope,
    ) -> list[Appointment]:
        if candidate.is_all_day:
            return []

        params = {
            "date": candidate.date.isoformat(),
            "startTime": candidate.start_time.strftime("%H:%M"),
            "endTime": candidate.end_time.strftime("%H:%M"),
        }
        if scope.exclude_id is not None:
            params["excludeId"] = scope.exclude_id

        data = await api_request(self.client, "GET", "/appointments/check-conflict", params=params)
        return normalize_records(unwrap(data, "conflicts"))

    async def aclose(self) -> None:
        await self.client.aclose()
