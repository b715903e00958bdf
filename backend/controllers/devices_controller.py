"""HTTP controller layer for device listing, checkout and return."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import (
    get_ledger_service,
    get_reconciliation_service,
    get_registry_service,
)
from backend.domain.errors import (
    ConcurrentModificationError,
    HolderAlreadyHasDeviceError,
    LedgerValidationError,
    NotFoundError,
    ScheduleLookupFailure,
)
from backend.domain.models import Device
from backend.services.ledger_service import CheckoutLedgerService
from backend.services.reconciliation_service import ReconciliationService
from backend.services.registry_service import RegistryService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/devices", tags=["devices"])


class DeviceResponse(BaseModel):
    device_id: str
    label: str
    status: Literal["available", "in_use", "overdue"]
    holder_id: Optional[str] = None
    holder_name: Optional[str] = None
    checked_out_at: Optional[datetime] = None
    expected_return_at: Optional[datetime] = None
    last_returned_at: Optional[datetime] = None
    last_holder_id: Optional[str] = None
    last_holder_name: Optional[str] = None


class DeviceLabelRequest(BaseModel):
    label: str = Field(min_length=1, max_length=64)

    @field_validator("label")
    @classmethod
    def validate_label(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("label must contain non-whitespace characters")
        return value.strip()


class HolderActionRequest(BaseModel):
    """Identifies who is scanning the device in or out."""

    holder_id: str = Field(min_length=1)
    holder_name: str = Field(min_length=1)


class DeviceReconciliationRow(BaseModel):
    device_id: str
    label: str
    outcome: str
    detail: str


class ReconcileResponse(BaseModel):
    evaluated_at: datetime
    scanned: int = Field(ge=0)
    counts: dict[str, int]
    results: list[DeviceReconciliationRow]


def _to_response(device: Device) -> DeviceResponse:
    return DeviceResponse(**device.to_api_dict())


@router.get("", response_model=list[DeviceResponse], status_code=status.HTTP_200_OK)
async def list_devices(
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> list[DeviceResponse]:
    """List every device after a synchronous reconciliation pass."""
    try:
        return [_to_response(device) for device in service.list_devices()]
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected device listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch devices",
        ) from exc


@router.post("", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
async def add_device(
    payload: DeviceLabelRequest,
    service: RegistryService = Depends(get_registry_service),
) -> DeviceResponse:
    try:
        return _to_response(service.add_device(payload.label))
    except LedgerValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected device creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add device",
        ) from exc


@router.post("/reconcile", response_model=ReconcileResponse, status_code=status.HTTP_200_OK)
async def reconcile(
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconcileResponse:
    """Run one reconciliation pass on demand and report per-device outcomes."""
    try:
        return ReconcileResponse(**service.reconcile_all().to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reconciliation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reconcile devices",
        ) from exc


@router.put("/{device_id}", response_model=DeviceResponse, status_code=status.HTTP_200_OK)
async def rename_device(
    device_id: str,
    payload: DeviceLabelRequest,
    service: RegistryService = Depends(get_registry_service),
) -> DeviceResponse:
    try:
        return _to_response(service.rename_device(device_id, payload.label))
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
        logger.exception("Unexpected device update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update device",
        ) from exc


@router.delete("/{device_id}", status_code=status.HTTP_200_OK)
async def remove_device(
    device_id: str,
    service: RegistryService = Depends(get_registry_service),
) -> dict[str, str]:
    try:
        service.remove_device(device_id)
        return {"message": "Device deleted successfully"}
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected device deletion failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete device",
        ) from exc


@router.post("/{device_id}/pickup", response_model=DeviceResponse, status_code=status.HTTP_200_OK)
async def pickup_device(
    device_id: str,
    payload: HolderActionRequest,
    service: CheckoutLedgerService = Depends(get_ledger_service),
) -> DeviceResponse:
    try:
        device = service.checkout(device_id, payload.holder_id, payload.holder_name)
        return _to_response(device)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (HolderAlreadyHasDeviceError, ConcurrentModificationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except ScheduleLookupFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected pickup failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to pickup device",
        ) from exc


@router.post("/{device_id}/return", response_model=DeviceResponse, status_code=status.HTTP_200_OK)
async def return_device(
    device_id: str,
    payload: HolderActionRequest,
    service: CheckoutLedgerService = Depends(get_ledger_service),
) -> DeviceResponse:
    try:
        device = service.return_device(device_id, payload.holder_id, payload.holder_name)
        return _to_response(device)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except ConcurrentModificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected return failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to return device",
        ) from exc
