"""Domain-level validation rules for the checkout timing policy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from backend.utils.config import Settings


@dataclass(frozen=True)
class PolicyConfig:
    overdue_buffer_minutes: int
    no_schedule_timeout_minutes: int
    duplicate_suppression_minutes: int
    history_cleanup_window_seconds: int
    reconcile_interval_seconds: float
    ledger_max_attempts: int

    @property
    def no_schedule_timeout(self) -> timedelta:
        return timedelta(minutes=self.no_schedule_timeout_minutes)

    @property
    def duplicate_suppression_window(self) -> timedelta:
        return timedelta(minutes=self.duplicate_suppression_minutes)

    @property
    def history_cleanup_window(self) -> timedelta:
        return timedelta(seconds=self.history_cleanup_window_seconds)


def policy_config_from_settings(settings: Settings) -> PolicyConfig:
    config = PolicyConfig(
        overdue_buffer_minutes=settings.overdue_buffer_minutes,
        no_schedule_timeout_minutes=settings.no_schedule_timeout_minutes,
        duplicate_suppression_minutes=settings.duplicate_suppression_minutes,
        history_cleanup_window_seconds=settings.history_cleanup_window_seconds,
        reconcile_interval_seconds=settings.reconcile_interval_seconds,
        ledger_max_attempts=settings.ledger_max_attempts,
    )
    validate_policy_config(config)
    return config


def validate_policy_config(config: PolicyConfig) -> None:
    if config.overdue_buffer_minutes < 0:
        raise ValueError("overdue_buffer_minutes must be >= 0")
    if config.no_schedule_timeout_minutes <= 0:
        raise ValueError("no_schedule_timeout_minutes must be > 0")
    if config.duplicate_suppression_minutes < 0:
        raise ValueError("duplicate_suppression_minutes must be >= 0")
    if config.history_cleanup_window_seconds <= 0:
        raise ValueError("history_cleanup_window_seconds must be > 0")
    if config.reconcile_interval_seconds <= 0:
        raise ValueError("reconcile_interval_seconds must be > 0")
    if config.ledger_max_attempts < 2:
        raise ValueError("ledger_max_attempts must be >= 2")
