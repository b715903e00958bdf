from __future__ import annotations

from dataclasses import replace
from datetime import date

from backend.repository.data_repository import DataRepository
from backend.services.statistics_service import DeviceDemandStatisticsService
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        seed_demo_data=False,
        reconcile_scheduler_enabled=False,
    )


def _build_service(tmp_path, filename: str = "statistics.db"):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    return DeviceDemandStatisticsService(repository=repository, settings=settings), repository


def _seed_timetable(repository: DataRepository) -> None:
    alpha = repository.create_holder("Alpha Instructor")
    beta = repository.create_holder("Beta Instructor")
    repository.create_session(alpha.holder_id, alpha.name, "Programming", "Monday", "08:00", "10:00")
    repository.create_session(alpha.holder_id, alpha.name, "Databases", "Monday", "10:30", "12:00")
    repository.create_session(alpha.holder_id, alpha.name, "Programming", "Monday", "14:00", "15:00")
    repository.create_session(beta.holder_id, beta.name, "Calculus", "Monday", "09:00", "11:00")
    repository.create_session(beta.holder_id, beta.name, "Statistics", "Wednesday", "09:00", "11:00")
    repository.create_session(beta.holder_id, beta.name, "Seminar", "Saturday", "09:00", "11:00")


def test_daily_counts_one_device_per_distinct_course(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    _seed_timetable(repository)

    # 2026-03-02 is a Monday.
    daily = service.daily(date(2026, 3, 2))

    assert daily["day"] == "Monday"
    assert daily["date"] == "2026-03-02"
    assert daily["total_sessions"] == 4
    assert daily["total_devices_needed"] == 3
    assert [item["holder_name"] for item in daily["breakdown"]] == [
        "Alpha Instructor",
        "Beta Instructor",
    ]
    assert daily["breakdown"][0]["courses"] == ["Databases", "Programming"]
    assert daily["breakdown"][0]["devices_needed"] == 2


def test_daily_without_sessions_is_empty(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    _seed_timetable(repository)

    daily = service.daily(date(2026, 3, 3))

    assert daily["day"] == "Tuesday"
    assert daily["total_devices_needed"] == 0
    assert daily["breakdown"] == []


def test_weekly_summarizes_working_days(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    _seed_timetable(repository)

    weekly = service.weekly(date(2026, 3, 4))

    assert weekly["week_start"] == "2026-03-02"
    assert weekly["week_end"] == "2026-03-08"
    assert [item["day"] for item in weekly["daily_breakdown"]] == [
        "Monday",
        "Tuesday",
        "Wednesday",
        "Thursday",
        "Friday",
    ]
    assert weekly["daily_breakdown"][0] == {
        "day": "Monday",
        "devices_needed": 2,
        "session_count": 4,
    }
    assert weekly["peak_devices_needed"] == 2
    assert weekly["average_devices_needed"] == 1


def test_weekly_with_empty_timetable(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "statistics_empty.db")

    weekly = service.weekly(date(2026, 3, 2))

    assert weekly["peak_devices_needed"] == 0
    assert weekly["average_devices_needed"] == 0
