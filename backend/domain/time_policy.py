"""Wall-clock conversions and the timing constants behind overdue detection.

Every place that needs "which weekday is it" or "how many minutes past
midnight" goes through this module so timetable rows and the clock never
disagree about the current day.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Protocol
from zoneinfo import ZoneInfo


OVERDUE_BUFFER_MINUTES = 5
NO_SCHEDULE_TIMEOUT = timedelta(minutes=60)
DUPLICATE_SUPPRESSION_WINDOW = timedelta(minutes=5)
HISTORY_CLEANUP_WINDOW = timedelta(seconds=30)
RECONCILE_INTERVAL_SECONDS = 60

# Index matches datetime.weekday().
DAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
WORKING_DAY_NAMES = DAY_NAMES[:5]

_TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class TimedBlock(Protocol):
    start_time: str
    end_time: str


def to_minutes(time_of_day: str) -> int:
    """Convert ``HH:MM`` to minutes since midnight."""
    hours, minutes = time_of_day.split(":")
    return int(hours) * 60 + int(minutes)


def is_time_of_day(value: str) -> bool:
    return bool(_TIME_OF_DAY_PATTERN.match(value))


def is_day_name(value: str) -> bool:
    return value in DAY_NAMES


def minutes_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def day_name(moment: date) -> str:
    """Resolve the canonical weekday name used by timetable entries."""
    return DAY_NAMES[moment.weekday()]


def expected_return_for(
    now: datetime,
    todays_sessions: Iterable[TimedBlock],
    *,
    buffer_minutes: int = OVERDUE_BUFFER_MINUTES,
    no_schedule_timeout: timedelta = NO_SCHEDULE_TIMEOUT,
) -> datetime:
    """Estimate when a device picked up at ``now`` should come back.

    With sessions today the estimate is the latest session end plus the
    overdue buffer on the same calendar day; otherwise it is the no-schedule
    timeout from ``now``.
    """
    end_minutes = [to_minutes(session.end_time) for session in todays_sessions]
    if not end_minutes:
        return now + no_schedule_timeout
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(minutes=max(end_minutes) + buffer_minutes)


def system_clock(timezone_name: str) -> Callable[[], datetime]:
    """Return a callable producing timezone-aware local wall-clock time."""
    zone = ZoneInfo(timezone_name)

    def _now() -> datetime:
        return datetime.now(zone)

    return _now
