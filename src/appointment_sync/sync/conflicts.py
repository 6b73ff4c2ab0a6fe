"""Double-booking detection."""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Optional

from ..models.appointment import Appointment, ConflictScope, TimeRange
from ..readers.base import AppointmentReader
from ..utils.date_utils import overlaps
from ..utils.exceptions import AuthError, NetworkError

logger = logging.getLogger(__name__)


def find_conflicts(
    candidate: TimeRange,
    scope: ConflictScope,
    pool: Iterable[Appointment],
) -> list[Appointment]:
    """
    Return the appointments in ``pool`` that overlap ``candidate``.

    Only the scope owner's active, timed appointments are considered. All-day
    entries are whole-day blocks and never conflict, neither as candidate nor
    as existing appointment.
    """
    if candidate.is_all_day:
        return []

    conflicts = []
    for appointment in pool:
        if appointment.owner_id != scope.owner_id:
            continue
        if not appointment.is_active or appointment.is_all_day:
            continue
        if scope.exclude_id is not None and appointment.id == scope.exclude_id:
            continue
        if overlaps(candidate, appointment.time_range):
            conflicts.append(appointment)

    return sorted(conflicts, key=lambda a: (a.start_time, a.id))


@dataclass(frozen=True)
class ConflictCheckResult:
    """Outcome of one debounced conflict check."""

    seq: int
    candidate: TimeRange
    local: list[Appointment] = field(default_factory=list)
    # None until the authoritative answer arrives
    remote: Optional[list[Appointment]] = None
    error: Optional[str] = None

    @property
    def is_authoritative(self) -> bool:
        return self.remote is not None

    @property
    def conflicts(self) -> list[Appointment]:
        return self.remote if self.remote is not None else self.local


class ConflictChecker:
    """
    Debounced conflict checking for a draft being edited.

    Every ``request`` supersedes the previous one. After the debounce delay
    the local pool is checked immediately and the authoritative remote check
    is issued; results carrying an outdated sequence number are dropped.
    Must be used from inside a running event loop.
    """

    def __init__(
        self,
        pool: Callable[[], list[Appointment]],
        reader: Optional[AppointmentReader] = None,
        debounce_ms: int = 300,
        on_result: Optional[Callable[[ConflictCheckResult], None]] = None,
    ):
        self._pool = pool
        self.reader = reader
        self.debounce = debounce_ms / 1000
        self.on_result = on_result
        self.latest: Optional[ConflictCheckResult] = None
        self._seq = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def seq(self) -> int:
        return self._seq

    def request(self, candidate: TimeRange, scope: ConflictScope) -> int:
        """Schedule a check for ``candidate``, cancelling any pending one."""
        self._seq += 1
        self.cancel_pending()
        self._task = asyncio.create_task(self._run(self._seq, candidate, scope))
        return self._seq

    def cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> Optional[ConflictCheckResult]:
        """Wait for the current check to settle and return the latest result."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self.latest

    async def _run(self, seq: int, candidate: TimeRange, scope: ConflictScope) -> None:
        await asyncio.sleep(self.debounce)
        if seq != self._seq:
            return

        result = ConflictCheckResult(
            seq=seq,
            candidate=candidate,
            local=find_conflicts(candidate, scope, self._pool()),
        )
        self._publish(result)

        if self.reader is None or candidate.is_all_day:
            return

        try:
            remote = await self.reader.check_conflict(candidate, scope)
            result = replace(result, remote=remote)
        except (NetworkError, AuthError) as e:
            logger.warning(f"Remote conflict check failed: {e}")
            result = replace(result, error=str(e))

        if seq != self._seq:
            logger.debug(f"Discarding superseded conflict check #{seq}")
            return
        self._publish(result)

    def _publish(self, result: ConflictCheckResult) -> None:
        self.latest = result
        if result.conflicts:
            logger.info(f"{len(result.conflicts)} conflicting appointment(s) for {result.candidate.date}")
        if self.on_result:
            self.on_result(result)
