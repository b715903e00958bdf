"""HTTP controller layer for holders and their weekly timetables."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import get_registry_service
from backend.domain.errors import (
    ConcurrentModificationError,
    LedgerValidationError,
    NotFoundError,
)
from backend.domain.time_policy import DAY_NAMES, is_time_of_day
from backend.services.registry_service import RegistryService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["timetable"])


class HolderResponse(BaseModel):
    holder_id: str
    name: str
    email: Optional[str] = None
    department: Optional[str] = None


class HolderRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)
    department: Optional[str] = Field(default=None, max_length=120)


class SessionResponse(BaseModel):
    session_id: int
    holder_id: str
    holder_name: str
    course: str
    location: Optional[str] = None
    day: str
    start_time: str
    end_time: str


class SessionRequest(BaseModel):
    """Payload for creating or replacing one timetable entry."""

    holder_id: str = Field(min_length=1)
    holder_name: Optional[str] = None
    course: str = Field(min_length=1, max_length=120)
    location: Optional[str] = Field(default=None, max_length=120)
    day: str
    start_time: str
    end_time: str

    @field_validator("day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        normalized = value.strip().capitalize()
        if normalized not in DAY_NAMES:
            raise ValueError(f"day must be one of {', '.join(DAY_NAMES)}")
        return normalized

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not is_time_of_day(value):
            raise ValueError("time must follow HH:MM format")
        return value


@router.get("/holders", response_model=list[HolderResponse], status_code=status.HTTP_200_OK)
async def list_holders(
    service: RegistryService = Depends(get_registry_service),
) -> list[HolderResponse]:
    try:
        return [HolderResponse(**holder.to_api_dict()) for holder in service.list_holders()]
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected holder listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list holders",
        ) from exc


@router.post("/holders", response_model=HolderResponse, status_code=status.HTTP_201_CREATED)
async def add_holder(
    payload: HolderRequest,
    service: RegistryService = Depends(get_registry_service),
) -> HolderResponse:
    try:
        holder = service.add_holder(payload.name, payload.email, payload.department)
        return HolderResponse(**holder.to_api_dict())
    except LedgerValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected holder creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add holder",
        ) from exc


@router.put(
    "/holders/{holder_id}",
    response_model=HolderResponse,
    status_code=status.HTTP_200_OK,
)
async def update_holder(
    holder_id: str,
    payload: HolderRequest,
    service: RegistryService = Depends(get_registry_service),
) -> HolderResponse:
    try:
        holder = service.update_holder(
            holder_id,
            payload.name,
            payload.email,
            payload.department,
        )
        return HolderResponse(**holder.to_api_dict())
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except LedgerValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ConcurrentModificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected holder update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update holder",
        ) from exc


@router.delete("/holders/{holder_id}", status_code=status.HTTP_200_OK)
async def remove_holder(
    holder_id: str,
    service: RegistryService = Depends(get_registry_service),
) -> dict[str, str]:
    try:
        service.remove_holder(holder_id)
        return {"message": "Holder deleted successfully"}
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (LedgerValidationError, ConcurrentModificationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected holder deletion failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete holder",
        ) from exc


@router.get("/timetable", response_model=list[SessionResponse], status_code=status.HTTP_200_OK)
async def list_timetable(
    service: RegistryService = Depends(get_registry_service),
) -> list[SessionResponse]:
    try:
        return [SessionResponse(**session.to_api_dict()) for session in service.list_sessions()]
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected timetable listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list timetable",
        ) from exc


@router.get(
    "/timetable/holder/{holder_id}",
    response_model=list[SessionResponse],
    status_code=status.HTTP_200_OK,
)
async def list_holder_timetable(
    holder_id: str,
    service: RegistryService = Depends(get_registry_service),
) -> list[SessionResponse]:
    try:
        return [
            SessionResponse(**session.to_api_dict())
            for session in service.list_sessions_for_holder(holder_id)
        ]
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected holder timetable listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list holder timetable",
        ) from exc


@router.post("/timetable", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def add_session(
    payload: SessionRequest,
    service: RegistryService = Depends(get_registry_service),
) -> SessionResponse:
    try:
        session = service.add_session(**payload.model_dump())
        return SessionResponse(**session.to_api_dict())
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except LedgerValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected timetable creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add timetable entry",
        ) from exc


@router.put(
    "/timetable/{session_id}",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
)
async def update_session(
    session_id: int,
    payload: SessionRequest,
    service: RegistryService = Depends(get_registry_service),
) -> SessionResponse:
    try:
        session = service.update_session(session_id, **payload.model_dump())
        return SessionResponse(**session.to_api_dict())
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except LedgerValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected timetable update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update timetable entry",
        ) from exc


@router.delete("/timetable/{session_id}", status_code=status.HTTP_200_OK)
async def remove_session(
    session_id: int,
    service: RegistryService = Depends(get_registry_service),
) -> dict[str, str]:
    try:
        service.remove_session(session_id)
        return {"message": "Timetable entry deleted successfully"}
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected timetable deletion failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete timetable entry",
        ) from exc
