"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from backend.services.history_service import HistoryService
from backend.services.ledger_service import CheckoutLedgerService
from backend.services.reconciliation_service import ReconciliationService
from backend.services.registry_service import RegistryService
from backend.services.statistics_service import DeviceDemandStatisticsService


def _service_from_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_ledger_service(request: Request) -> CheckoutLedgerService:
    return _service_from_state(request, "ledger_service", "Checkout ledger")


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return _service_from_state(request, "reconciliation_service", "Reconciliation service")


def get_registry_service(request: Request) -> RegistryService:
    return _service_from_state(request, "registry_service", "Registry service")


def get_history_service(request: Request) -> HistoryService:
    return _service_from_state(request, "history_service", "History service")


def get_statistics_service(request: Request) -> DeviceDemandStatisticsService:
    return _service_from_state(request, "statistics_service", "Statistics service")
