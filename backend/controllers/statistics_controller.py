"""HTTP controller layer for timetable-derived device demand."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import get_statistics_service
from backend.services.statistics_service import DeviceDemandStatisticsService


router = APIRouter(prefix="/statistics", tags=["statistics"])


class HolderDemand(BaseModel):
    holder_id: str
    holder_name: str
    courses: list[str]
    devices_needed: int = Field(ge=0)


class DailyStatisticsResponse(BaseModel):
    date: str
    day: str
    total_devices_needed: int = Field(ge=0)
    total_sessions: int = Field(ge=0)
    breakdown: list[HolderDemand]


class DayDemand(BaseModel):
    day: str
    devices_needed: int = Field(ge=0)
    session_count: int = Field(ge=0)


class WeeklyStatisticsResponse(BaseModel):
    week_start: str
    week_end: str
    peak_devices_needed: int = Field(ge=0)
    average_devices_needed: int = Field(ge=0)
    daily_breakdown: list[DayDemand]


def _resolve_date(request: Request, requested: Optional[date]) -> date:
    if requested is not None:
        return requested
    clock: Callable[[], datetime] = request.app.state.clock
    return clock().date()


@router.get("/daily", response_model=DailyStatisticsResponse, status_code=status.HTTP_200_OK)
async def daily_statistics(
    request: Request,
    target_date: Optional[date] = Query(default=None, alias="date"),
    service: DeviceDemandStatisticsService = Depends(get_statistics_service),
) -> DailyStatisticsResponse:
    """Defaults to today in the configured timezone."""
    return DailyStatisticsResponse(**service.daily(_resolve_date(request, target_date)))


@router.get("/weekly", response_model=WeeklyStatisticsResponse, status_code=status.HTTP_200_OK)
async def weekly_statistics(
    request: Request,
    target_date: Optional[date] = Query(default=None, alias="date"),
    service: DeviceDemandStatisticsService = Depends(get_statistics_service),
) -> WeeklyStatisticsResponse:
    return WeeklyStatisticsResponse(**service.weekly(_resolve_date(request, target_date)))
