"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from backend.domain.time_policy import (
    DUPLICATE_SUPPRESSION_WINDOW,
    HISTORY_CLEANUP_WINDOW,
    NO_SCHEDULE_TIMEOUT,
    OVERDUE_BUFFER_MINUTES,
    RECONCILE_INTERVAL_SECONDS,
)


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable settings snapshot shared by repository and services."""

    app_name: str = "TapTrack Device Checkout"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    database_path: Path = PROJECT_ROOT / "data" / "taptrack.db"
    sqlite_busy_timeout_seconds: float = 5.0
    timezone: str = "Africa/Kigali"

    overdue_buffer_minutes: int = OVERDUE_BUFFER_MINUTES
    no_schedule_timeout_minutes: int = int(NO_SCHEDULE_TIMEOUT.total_seconds() // 60)
    duplicate_suppression_minutes: int = int(DUPLICATE_SUPPRESSION_WINDOW.total_seconds() // 60)
    history_cleanup_window_seconds: int = int(HISTORY_CLEANUP_WINDOW.total_seconds())
    history_list_limit: int = 100

    reconcile_interval_seconds: float = float(RECONCILE_INTERVAL_SECONDS)
    reconcile_scheduler_enabled: bool = True
    ledger_max_attempts: int = 3
    enforce_single_device_per_holder: bool = True

    seed_demo_data: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment overrides."""
    defaults = Settings()
    return Settings(
        app_name=os.environ.get("TAPTRACK_APP_NAME", defaults.app_name),
        app_version=os.environ.get("TAPTRACK_APP_VERSION", defaults.app_version),
        log_level=os.environ.get("TAPTRACK_LOG_LEVEL", defaults.log_level),
        database_path=Path(
            os.environ.get("TAPTRACK_DATABASE_PATH", str(defaults.database_path))
        ),
        sqlite_busy_timeout_seconds=float(
            os.environ.get(
                "TAPTRACK_SQLITE_BUSY_TIMEOUT_SECONDS",
                defaults.sqlite_busy_timeout_seconds,
            )
        ),
        timezone=os.environ.get("TAPTRACK_TIMEZONE", defaults.timezone),
        overdue_buffer_minutes=int(
            os.environ.get("TAPTRACK_OVERDUE_BUFFER_MINUTES", defaults.overdue_buffer_minutes)
        ),
        no_schedule_timeout_minutes=int(
            os.environ.get(
                "TAPTRACK_NO_SCHEDULE_TIMEOUT_MINUTES",
                defaults.no_schedule_timeout_minutes,
            )
        ),
        duplicate_suppression_minutes=int(
            os.environ.get(
                "TAPTRACK_DUPLICATE_SUPPRESSION_MINUTES",
                defaults.duplicate_suppression_minutes,
            )
        ),
        history_cleanup_window_seconds=int(
            os.environ.get(
                "TAPTRACK_HISTORY_CLEANUP_WINDOW_SECONDS",
                defaults.history_cleanup_window_seconds,
            )
        ),
        history_list_limit=int(
            os.environ.get("TAPTRACK_HISTORY_LIST_LIMIT", defaults.history_list_limit)
        ),
        reconcile_interval_seconds=float(
            os.environ.get(
                "TAPTRACK_RECONCILE_INTERVAL_SECONDS",
                defaults.reconcile_interval_seconds,
            )
        ),
        reconcile_scheduler_enabled=_env_bool(
            "TAPTRACK_RECONCILE_SCHEDULER_ENABLED",
            defaults.reconcile_scheduler_enabled,
        ),
        ledger_max_attempts=int(
            os.environ.get("TAPTRACK_LEDGER_MAX_ATTEMPTS", defaults.ledger_max_attempts)
        ),
        enforce_single_device_per_holder=_env_bool(
            "TAPTRACK_ENFORCE_SINGLE_DEVICE_PER_HOLDER",
            defaults.enforce_single_device_per_holder,
        ),
        seed_demo_data=_env_bool("TAPTRACK_SEED_DEMO_DATA", defaults.seed_demo_data),
    )
