"""CLI entry point for the appointment calendar."""

import argparse
import asyncio
import sys
from datetime import datetime

from .config import access_config, config
from .models.appointment import ConflictScope, TimeRange, Viewer
from .models.calendar import DayView, Granularity, MonthView, WeekView, YearView
from .readers.api_reader import AppointmentApiReader
from .sync.session import CalendarSession
from .utils.date_utils import local_today
from .utils.exceptions import AppointmentSyncError, ConfigurationError, ConflictError
from .utils.http import create_client
from .utils.logging import setup_logging
from .views.composer import CalendarView
from .writers.api_writer import AppointmentApiWriter
from .writers.google_mirror import GoogleCalendarMirror

DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _when(appointment) -> str:
    if appointment.is_all_day:
        return "all day"
    return f"{appointment.start_time:%H:%M}-{appointment.end_time:%H:%M}"


def print_view(view: CalendarView) -> None:
    """Print a composed view to stdout."""
    if isinstance(view, DayView):
        columns = [view.column]
    elif isinstance(view, WeekView):
        print(f"\n=== Week of {view.window.start} ===")
        columns = view.days
    else:
        columns = []

    for column in columns:
        print(f"\n{DAY_NAMES[column.date.weekday()]} {column.date}")
        if not column.appointments:
            print("  (free)")
        for placed in column.appointments:
            a = placed.appointment
            print(f"  - [{_when(a)}] {a.title}")
            if a.location:
                print(f"    Location: {a.location}")
            if a.attendee_name:
                print(f"    With: {a.attendee_name}")

    if isinstance(view, MonthView):
        print(f"\n=== {view.year}-{view.month:02d} ===")
        for cell in view.cells:
            if not cell.appointments:
                continue
            titles = ", ".join(a.title for a in cell.preview)
            more = f" (+{cell.overflow} more)" if cell.overflow else ""
            print(f"  {cell.date}: {titles}{more}")

    if isinstance(view, YearView):
        print(f"\n=== {view.year} ===")
        for summary in view.months:
            print(f"  {view.year}-{summary.month:02d}: {summary.count} appointment(s) on {summary.busy_days} day(s)")
            for title in summary.titles:
                print(f"    - {title}")


async def run(args: argparse.Namespace, logger) -> int:
    api_url, token = config.require_api()
    client = create_client(api_url, token, timeout=config.api_timeout)
    reader = AppointmentApiReader(client)
    writer = AppointmentApiWriter(client)

    try:
        day = datetime.strptime(args.date, "%Y-%m-%d").date() if args.date else local_today(config.timezone)
        viewer = Viewer(id=args.viewer_id, role=args.role, department=args.department, email=args.email)

        if args.check_conflict:
            start, end = args.check_conflict
            candidate = TimeRange(date=day, start_time=start, end_time=end)
            scope = ConflictScope(owner_id=args.owner_id or viewer.id, exclude_id=args.exclude_id)
            conflicts = await reader.check_conflict(candidate, scope)
            if not conflicts:
                print(f"\n{day} {start}-{end} is free")
                return 0
            print(f"\n{len(conflicts)} conflict(s) on {day} {start}-{end}:")
            for a in conflicts:
                print(f"  - [{_when(a)}] {a.title} (ID: {a.id})")
            return 2

        mirror = GoogleCalendarMirror.from_config(config.google, config.timezone)
        session = CalendarSession(reader, writer, viewer, mirror=mirror, config=config, access=access_config)
        try:
            await session.navigate(day, Granularity(args.view))
            print_view(session.view)
            logger.debug(f"Store holds {len(session.store)} appointment(s)")
        finally:
            await session.close()
        return 0
    finally:
        await client.aclose()


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Appointment calendar - view appointments and check for conflicts"
    )
    parser.add_argument(
        "--view",
        choices=[g.value for g in Granularity],
        default=Granularity.WEEK.value,
        help="Granularity to display (default: week)",
    )
    parser.add_argument(
        "--date",
        type=str,
        default=None,
        help="Date inside the period to show (YYYY-MM-DD, default: today)",
    )
    parser.add_argument(
        "--viewer-id",
        type=str,
        required=True,
        help="Id of the user looking at the calendar",
    )
    parser.add_argument("--role", type=str, default=None, help="Viewer role")
    parser.add_argument("--department", type=str, default=None, help="Viewer department")
    parser.add_argument("--email", type=str, default=None, help="Viewer email")
    parser.add_argument(
        "--check-conflict",
        nargs=2,
        metavar=("START", "END"),
        default=None,
        help="Check HH:MM START to END on --date against the service instead of showing a view",
    )
    parser.add_argument(
        "--owner-id",
        type=str,
        default=None,
        help="Calendar owner for --check-conflict (default: --viewer-id)",
    )
    parser.add_argument(
        "--exclude-id",
        type=str,
        default=None,
        help="Appointment to ignore in --check-conflict (the one being edited)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output",
    )

    args = parser.parse_args()

    # Setup logging
    log_level = "DEBUG" if args.verbose else config.log_level
    try:
        logger = setup_logging(level=log_level, log_file=config.log_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(run(args, logger))
    except ValueError as e:
        logger.error(f"Invalid argument: {e}. Dates are YYYY-MM-DD, times HH:MM")
        return 1
    except ConflictError as e:
        logger.error(f"Conflict: {e}")
        return 2
    except AppointmentSyncError as e:
        logger.error(f"Appointment sync error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
