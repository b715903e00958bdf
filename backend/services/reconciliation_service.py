"""Periodic overdue reconciliation over every checked-out device."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Event, Lock, Thread
from typing import Any, Callable, Optional

from backend.domain.constraints import PolicyConfig, policy_config_from_settings
from backend.domain.errors import (
    DataIntegrityError,
    DeviceNotFoundError,
    ScheduleLookupFailure,
)
from backend.domain.models import CHECKED_OUT_STATUSES, Device, DeviceStatus
from backend.domain.overdue import OverdueAssessment, decide
from backend.domain.time_policy import day_name, system_clock
from backend.repository.data_repository import DataRepository
from backend.services.ledger_service import lookup_sessions, retry_on_conflict
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class ReconcileOutcome(str, Enum):
    FLAGGED = "flagged"
    ALREADY_OVERDUE = "already_overdue"
    NOT_OVERDUE = "not_overdue"
    STATE_CHANGED = "state_changed"
    SKIPPED_INTEGRITY = "skipped_integrity"
    SKIPPED_SCHEDULE = "skipped_schedule"
    FAILED = "failed"


@dataclass(frozen=True)
class DeviceReconciliation:
    device_id: str
    label: str
    outcome: ReconcileOutcome
    detail: str

    def to_api_dict(self) -> dict[str, str]:
        return {
            "device_id": self.device_id,
            "label": self.label,
            "outcome": self.outcome.value,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ReconciliationReport:
    evaluated_at: datetime
    results: list[DeviceReconciliation] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        return len(self.results)

    def count(self, outcome: ReconcileOutcome) -> int:
        return sum(1 for result in self.results if result.outcome is outcome)

    def outcome_for(self, device_id: str) -> Optional[ReconcileOutcome]:
        for result in self.results:
            if result.device_id == device_id:
                return result.outcome
        return None

    def to_api_dict(self) -> dict[str, Any]:
        counts = Counter(result.outcome.value for result in self.results)
        return {
            "evaluated_at": self.evaluated_at.isoformat(),
            "scanned": self.scanned,
            "counts": {outcome.value: counts.get(outcome.value, 0) for outcome in ReconcileOutcome},
            "results": [result.to_api_dict() for result in self.results],
        }


class ReconciliationService:
    """Applies the overdue decision to the ledger, one device at a time.

    Overdue is sticky: a NOT_OVERDUE decision never clears an existing
    ``overdue`` status, only an explicit return does. Failures are isolated
    per device and the rest of the pass continues.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        schedule_lookup: Optional[DataRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._schedule_lookup = schedule_lookup or self._repository
        self._clock = clock or system_clock(self._settings.timezone)
        self._policy: PolicyConfig = policy_config_from_settings(self._settings)

    def reconcile_all(self) -> ReconciliationReport:
        now = self._clock()
        today = day_name(now)
        devices = self._repository.list_devices_by_status(CHECKED_OUT_STATUSES)

        results: list[DeviceReconciliation] = []
        for device in devices:
            results.append(self._reconcile_isolated(device, now, today))

        report = ReconciliationReport(evaluated_at=now, results=results)
        logger.info(
            "Reconciliation pass completed | day=%s | scanned=%s | flagged=%s | skipped=%s | failed=%s",
            today,
            report.scanned,
            report.count(ReconcileOutcome.FLAGGED),
            report.count(ReconcileOutcome.SKIPPED_INTEGRITY)
            + report.count(ReconcileOutcome.SKIPPED_SCHEDULE),
            report.count(ReconcileOutcome.FAILED),
        )
        return report

    def list_devices(self) -> list[Device]:
        """Reconcile first so the listing never shows a stale overdue status."""
        self.reconcile_all()
        return self._repository.list_devices()

    def _reconcile_isolated(
        self,
        device: Device,
        now: datetime,
        today: str,
    ) -> DeviceReconciliation:
        try:
            return self._reconcile_device(device, now, today)
        except DataIntegrityError as exc:
            logger.warning(
                "Skipping device with incomplete checkout data | device_id=%s | detail=%s",
                device.device_id,
                exc,
            )
            return self._result(device, ReconcileOutcome.SKIPPED_INTEGRITY, str(exc))
        except ScheduleLookupFailure as exc:
            logger.warning(
                "Skipping device until next pass | device_id=%s | detail=%s",
                device.device_id,
                exc,
            )
            return self._result(device, ReconcileOutcome.SKIPPED_SCHEDULE, str(exc))
        except Exception as exc:
            logger.exception("Device reconciliation failed | device_id=%s", device.device_id)
            return self._result(device, ReconcileOutcome.FAILED, str(exc))

    def _reconcile_device(
        self,
        device: Device,
        now: datetime,
        today: str,
    ) -> DeviceReconciliation:
        if not device.holder_id or device.checked_out_at is None:
            raise DataIntegrityError(
                f"Device {device.label} is {device.status.value} without holder or checkout time"
            )

        sessions = lookup_sessions(self._schedule_lookup, device.holder_id, today)
        assessment = decide(
            now,
            device.checked_out_at,
            sessions,
            buffer_minutes=self._policy.overdue_buffer_minutes,
            no_schedule_timeout=self._policy.no_schedule_timeout,
        )
        logger.debug(
            "Overdue decision | device_id=%s | holder_id=%s | sessions=%s | decision=%s | reason=%s",
            device.device_id,
            device.holder_id,
            len(sessions),
            assessment.decision.value,
            assessment.reason.value,
        )

        if not assessment.is_overdue:
            return self._result(device, ReconcileOutcome.NOT_OVERDUE, assessment.reason.value)
        if device.status is DeviceStatus.OVERDUE:
            return self._result(device, ReconcileOutcome.ALREADY_OVERDUE, assessment.reason.value)
        return self._flag_overdue(device, assessment)

    def _flag_overdue(
        self,
        snapshot: Device,
        assessment: OverdueAssessment,
    ) -> DeviceReconciliation:
        def _mutate(current: Device) -> Optional[Device]:
            # Only flag the exact checkout that was evaluated.
            if (
                current.status is not DeviceStatus.IN_USE
                or current.holder_id != snapshot.holder_id
                or current.checked_out_at != snapshot.checked_out_at
            ):
                return None
            return current.flagged_overdue()

        try:
            updated = retry_on_conflict(
                lambda: self._repository.atomic_update_device(snapshot.device_id, _mutate),
                attempts=self._policy.ledger_max_attempts,
                description="reconcile",
            )
        except DeviceNotFoundError:
            return self._result(snapshot, ReconcileOutcome.STATE_CHANGED, "device deleted during pass")

        if updated is None:
            return self._result(snapshot, ReconcileOutcome.STATE_CHANGED, "device changed during pass")
        logger.info(
            "Device flagged overdue | device_id=%s | label=%s | holder_id=%s | reason=%s",
            snapshot.device_id,
            snapshot.label,
            snapshot.holder_id,
            assessment.reason.value,
        )
        return self._result(snapshot, ReconcileOutcome.FLAGGED, assessment.reason.value)

    @staticmethod
    def _result(device: Device, outcome: ReconcileOutcome, detail: str) -> DeviceReconciliation:
        return DeviceReconciliation(
            device_id=device.device_id,
            label=device.label,
            outcome=outcome,
            detail=detail,
        )


class ReconciliationScheduler:
    """Background thread running a reconciliation pass on a fixed interval."""

    def __init__(
        self,
        service: ReconciliationService,
        interval_seconds: float,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._service = service
        self._interval_seconds = interval_seconds
        self._stop_event = Event()
        self._lock = Lock()
        self._thread: Optional[Thread] = None
        self._passes_completed = 0

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def passes_completed(self) -> int:
        return self._passes_completed

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = Thread(
                target=self._run,
                name="reconciliation-loop",
                daemon=True,
            )
            self._thread.start()
        logger.info("Reconciliation loop started | interval_seconds=%s", self._interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout)
        logger.info("Reconciliation loop stopped")

    def run_once(self) -> Optional[ReconciliationReport]:
        """Run one pass; a failed pass is logged and retried on the next tick."""
        try:
            report = self._service.reconcile_all()
        except Exception:
            logger.exception("Reconciliation pass failed")
            return None
        self._passes_completed += 1
        return report

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self._interval_seconds)
