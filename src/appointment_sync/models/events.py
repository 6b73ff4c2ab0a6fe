"""Real-time appointment change events."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, model_validator


class EventKind(str, Enum):
    """Kind of remote appointment change."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class AppointmentEvent(BaseModel):
    """
    A create/update/delete notification.

    ``fields`` holds the normalized appointment fields present in the payload,
    which may be a partial update. ``id`` is always set.
    """

    kind: EventKind
    id: str
    seq: int = 0
    fields: dict[str, Any] = {}

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _deleted_has_no_fields(self) -> "AppointmentEvent":
        if self.kind == EventKind.DELETED and self.fields:
            raise ValueError("deleted events carry only an id")
        return self

    @property
    def date(self) -> Optional[Any]:
        return self.fields.get("date")
