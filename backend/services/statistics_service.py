"""Timetable-derived estimates of how many devices the pool must cover."""

from __future__ import annotations

import math
from datetime import date, timedelta
from typing import Any, Optional

import pandas as pd

from backend.domain.time_policy import WORKING_DAY_NAMES, day_name
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings


_SESSION_FRAME_COLUMNS = ["holder_id", "holder_name", "course", "day"]


class DeviceDemandStatisticsService:
    """Estimates one device per holder per distinct course taught that day."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def _load_frame(self) -> pd.DataFrame:
        sessions = self._repository.list_sessions()
        return pd.DataFrame(
            [
                {
                    "holder_id": session.holder_id,
                    "holder_name": session.holder_name,
                    "course": session.course,
                    "day": session.day,
                }
                for session in sessions
            ],
            columns=_SESSION_FRAME_COLUMNS,
        )

    def daily(self, target_date: date) -> dict[str, Any]:
        frame = self._load_frame()
        target_day = day_name(target_date)
        day_frame = frame[frame["day"] == target_day]

        breakdown: list[dict[str, Any]] = []
        if not day_frame.empty:
            courses_by_holder = day_frame.groupby("holder_id")["course"].unique()
            grouped = (
                day_frame.groupby("holder_id", sort=False)
                .agg(
                    holder_name=("holder_name", "first"),
                    devices_needed=("course", "nunique"),
                )
                .reset_index()
                .sort_values(["holder_name", "holder_id"])
            )
            breakdown = [
                {
                    "holder_id": str(row.holder_id),
                    "holder_name": str(row.holder_name),
                    "courses": sorted(str(course) for course in courses_by_holder[row.holder_id]),
                    "devices_needed": int(row.devices_needed),
                }
                for row in grouped.itertuples(index=False)
            ]

        return {
            "date": target_date.isoformat(),
            "day": target_day,
            "total_devices_needed": sum(item["devices_needed"] for item in breakdown),
            "total_sessions": int(len(day_frame)),
            "breakdown": breakdown,
        }

    def weekly(self, target_date: date) -> dict[str, Any]:
        frame = self._load_frame()
        week_start = target_date - timedelta(days=target_date.weekday())
        week_end = week_start + timedelta(days=6)

        working = frame[frame["day"].isin(WORKING_DAY_NAMES)]
        unique_holders = working.groupby("day")["holder_id"].nunique()
        session_counts = working.groupby("day").size()

        daily_breakdown = [
            {
                "day": name,
                "devices_needed": int(unique_holders.get(name, 0)),
                "session_count": int(session_counts.get(name, 0)),
            }
            for name in WORKING_DAY_NAMES
        ]
        needed = [item["devices_needed"] for item in daily_breakdown]
        return {
            "week_start": week_start.isoformat(),
            "week_end": week_end.isoformat(),
            "peak_devices_needed": max(needed),
            "average_devices_needed": math.ceil(sum(needed) / len(needed)),
            "daily_breakdown": daily_breakdown,
        }
