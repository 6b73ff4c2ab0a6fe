"""Per-viewer visibility rules for appointments."""

import logging
from typing import Iterable, Optional

from ..config import AccessConfig, access_config
from ..models.appointment import Appointment, Viewer

logger = logging.getLogger(__name__)


def is_privileged(viewer: Viewer, access: Optional[AccessConfig] = None) -> bool:
    """Whether the viewer may see every appointment in the tenant."""
    access = access or access_config
    role = (viewer.role or "").casefold()
    department = (viewer.department or "").casefold()
    return role in access.privileged_roles or department in access.privileged_departments


def is_visible(
    appointment: Appointment,
    viewer: Viewer,
    access: Optional[AccessConfig] = None,
) -> bool:
    """
    Decide whether ``viewer`` may see ``appointment``.

    Rules, first match wins: privileged role or department, owner,
    shared with everyone, shared with the viewer's id or email.
    Never raises; anything unreadable counts as not visible.
    """
    try:
        if is_privileged(viewer, access):
            return True
        if appointment.owner_id == viewer.id:
            return True

        visibility = appointment.visibility
        if visibility.all_users:
            return True
        if viewer.id in visibility.user_ids:
            return True
        if viewer.email and viewer.email.strip().casefold() in visibility.emails:
            return True
        return False
    except (AttributeError, TypeError) as e:
        logger.debug(f"Treating appointment as hidden, unreadable visibility: {e}")
        return False


def filter_visible(
    appointments: Iterable[Appointment],
    viewer: Viewer,
    access: Optional[AccessConfig] = None,
) -> list[Appointment]:
    return [a for a in appointments if is_visible(a, viewer, access)]
