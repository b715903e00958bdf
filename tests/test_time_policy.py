from __future__ import annotations

from datetime import date, datetime, timedelta
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from backend.domain.time_policy import (
    day_name,
    expected_return_for,
    is_day_name,
    is_time_of_day,
    minutes_of_day,
    system_clock,
    to_minutes,
)


KIGALI = ZoneInfo("Africa/Kigali")


def _block(start: str, end: str) -> SimpleNamespace:
    return SimpleNamespace(start_time=start, end_time=end)


def test_to_minutes_and_minutes_of_day_agree() -> None:
    assert to_minutes("00:00") == 0
    assert to_minutes("08:30") == 510
    assert to_minutes("23:59") == 1439
    assert minutes_of_day(datetime(2026, 3, 2, 8, 30, 45, tzinfo=KIGALI)) == 510


def test_time_of_day_validation() -> None:
    assert is_time_of_day("09:05")
    assert is_time_of_day("23:59")
    assert not is_time_of_day("9:05")
    assert not is_time_of_day("24:00")
    assert not is_time_of_day("12:60")
    assert not is_time_of_day("noon")


def test_day_names_follow_weekday_index() -> None:
    # 2026-03-02 is a Monday.
    assert day_name(date(2026, 3, 2)) == "Monday"
    assert day_name(date(2026, 3, 6)) == "Friday"
    assert day_name(datetime(2026, 3, 8, 12, 0, tzinfo=KIGALI)) == "Sunday"
    assert is_day_name("Wednesday")
    assert not is_day_name("wednesday")


def test_expected_return_is_latest_session_end_plus_buffer() -> None:
    now = datetime(2026, 3, 2, 7, 45, tzinfo=KIGALI)
    sessions = [_block("13:00", "15:00"), _block("08:00", "10:00")]

    expected = expected_return_for(now, sessions, buffer_minutes=5)

    assert expected == datetime(2026, 3, 2, 15, 5, tzinfo=KIGALI)


def test_expected_return_without_sessions_uses_timeout() -> None:
    now = datetime(2026, 3, 2, 7, 45, tzinfo=KIGALI)

    expected = expected_return_for(now, [], no_schedule_timeout=timedelta(minutes=60))

    assert expected == now + timedelta(minutes=60)


def test_system_clock_is_timezone_aware() -> None:
    moment = system_clock("Africa/Kigali")()
    assert moment.tzinfo is not None
    assert moment.utcoffset() == timedelta(hours=2)
