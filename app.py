"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and services, registers routers, runs startup
initialization and owns the background reconciliation loop.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import FastAPI

from backend.controllers.devices_controller import router as devices_router
from backend.controllers.history_controller import router as history_router
from backend.controllers.statistics_controller import router as statistics_router
from backend.controllers.timetable_controller import router as timetable_router
from backend.domain.constraints import policy_config_from_settings
from backend.domain.time_policy import system_clock
from backend.repository.data_repository import DataRepository
from backend.services.history_service import HistoryService
from backend.services.ledger_service import CheckoutLedgerService
from backend.services.reconciliation_service import (
    ReconciliationScheduler,
    ReconciliationService,
)
from backend.services.registry_service import RegistryService
from backend.services.statistics_service import DeviceDemandStatisticsService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service shares one repository and one clock; both are reachable
    through app.state so tests can inject temporary databases and fixed time.
    """
    settings = settings or get_settings()
    # Fail at startup on an invalid timing policy rather than on first scan.
    policy_config_from_settings(settings)
    clock = clock or system_clock(settings.timezone)

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    ledger_service = CheckoutLedgerService(
        repository=repository,
        settings=settings,
        clock=clock,
    )
    reconciliation_service = ReconciliationService(
        repository=repository,
        settings=settings,
        clock=clock,
    )
    registry_service = RegistryService(repository=repository, settings=settings)
    history_service = HistoryService(repository=repository, settings=settings)
    statistics_service = DeviceDemandStatisticsService(
        repository=repository,
        settings=settings,
    )
    scheduler = ReconciliationScheduler(
        reconciliation_service,
        interval_seconds=settings.reconcile_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        try:
            yield
        finally:
            _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(devices_router)
    app.include_router(timetable_router)
    app.include_router(history_router)
    app.include_router(statistics_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "time": app.state.clock().isoformat(),
            "timezone": settings.timezone,
            "reconciliation_running": app.state.scheduler.is_running,
        }

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.clock = clock
    app.state.repository = repository
    app.state.ledger_service = ledger_service
    app.state.reconciliation_service = reconciliation_service
    app.state.registry_service = registry_service
    app.state.history_service = history_service
    app.state.statistics_service = statistics_service
    app.state.scheduler = scheduler

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. Demo data is seeded only into an empty database.
      3. One reconciliation pass runs before the first request so listings
         never start from a stale status.
      4. The background loop starts last.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository
    scheduler: ReconciliationScheduler = app.state.scheduler

    logger.info("Startup: initializing database schema | path=%s", repository.database_path)
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo holders, timetable and devices")
        seeded = repository.seed_demo_data_if_empty()
        logger.info("Startup: demo seed finished | devices=%s", seeded)

    logger.info("Startup: initial reconciliation pass")
    scheduler.run_once()

    if settings.reconcile_scheduler_enabled:
        scheduler.start()

    logger.info("Startup complete | system ready")


def _shutdown(app: FastAPI) -> None:
    scheduler: ReconciliationScheduler = app.state.scheduler
    scheduler.stop(timeout=5.0)
    logger.info("Shutdown complete")


# Module-level app object for uvicorn
app = create_app()
