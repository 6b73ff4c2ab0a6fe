"""Merge strategies for folding incoming copies into held appointments."""

from datetime import datetime
from typing import Any, Optional, Protocol

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..models.appointment import Appointment
from ..utils.date_utils import ensure_utc
from ..utils.exceptions import ValidationError

_datetime_adapter = TypeAdapter(datetime)


class MergeStrategy(Protocol):
    """Protocol for merge strategies."""

    def is_stale(self, incoming: dict[str, Any], held: Appointment) -> bool:
        """
        Determine if an incoming copy is older than the held one.

        Args:
            incoming: Canonical fields of the incoming copy (possibly partial)
            held: Appointment currently in the store

        Returns:
            True if the incoming copy must be dropped
        """
        ...

    def merge(self, held: Appointment, incoming: dict[str, Any]) -> dict[str, Any]:
        """
        Combine the held appointment with the incoming fields.

        Returns:
            Complete field dict for the merged appointment
        """
        ...


def _version(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid version marker: {value!r}") from e


def _updated_at(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return ensure_utc(_datetime_adapter.validate_python(value))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid updated_at marker: {value!r}") from e


class VersionMarkerStrategy:
    """
    Field-level merge guarded by the version/updated_at markers.

    ``version`` wins when both copies carry one; otherwise ``updated_at`` is
    compared. A copy without a comparable marker is never stale. Equal
    markers are accepted so redelivery is harmless.
    """

    def is_stale(self, incoming: dict[str, Any], held: Appointment) -> bool:
        incoming_version = _version(incoming.get("version"))
        if incoming_version is not None and held.version is not None:
            return incoming_version < held.version

        incoming_updated = _updated_at(incoming.get("updated_at"))
        if incoming_updated is not None and held.updated_at is not None:
            return incoming_updated < held.updated_at

        return False

    def merge(self, held: Appointment, incoming: dict[str, Any]) -> dict[str, Any]:
        """Only fields present in ``incoming`` replace the held values."""
        merged = held.model_dump()
        merged.update(incoming)
        return merged
