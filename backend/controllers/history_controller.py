"""HTTP controller layer for checkout history."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import get_history_service
from backend.services.history_service import HistoryService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/history", tags=["history"])


class HistoryEventResponse(BaseModel):
    event_id: Optional[int] = None
    device_id: str
    holder_id: str
    holder_name: str
    action: Literal["pickup", "return"]
    timestamp: datetime


class CleanupResponse(BaseModel):
    checked: int = Field(ge=0)
    duplicates_deleted: int = Field(ge=0)
    remaining: int = Field(ge=0)


@router.get("", response_model=list[HistoryEventResponse], status_code=status.HTTP_200_OK)
async def list_history(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    device_id: Optional[str] = Query(default=None),
    service: HistoryService = Depends(get_history_service),
) -> list[HistoryEventResponse]:
    """Most recent events first."""
    return [
        HistoryEventResponse(**event.to_api_dict())
        for event in service.list_recent(limit=limit, device_id=device_id)
    ]


@router.post("/cleanup-duplicates", response_model=CleanupResponse, status_code=status.HTTP_200_OK)
async def cleanup_duplicates(
    service: HistoryService = Depends(get_history_service),
) -> CleanupResponse:
    try:
        return CleanupResponse(**service.cleanup_duplicates().to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected history cleanup failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clean up history",
        ) from exc
