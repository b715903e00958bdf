"""Checkout ledger: pickup and return transitions with duplicate suppression.

Each transition runs as one ``BEGIN IMMEDIATE`` unit that re-reads the
device, checks for a recent identical history event, writes the new device
snapshot and (unless suppressed) appends the history event. Concurrent
callers on the same device are serialized by the database write lock, so a
double-tapped scan sees the first tap's event and records nothing new.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, TypeVar

from backend.domain.constraints import PolicyConfig, policy_config_from_settings
from backend.domain.errors import (
    ConcurrentModificationError,
    DeviceNotFoundError,
    HolderAlreadyHasDeviceError,
    HolderNotFoundError,
    ScheduleLookupFailure,
)
from backend.domain.models import CheckoutEvent, Device, HistoryAction, Session
from backend.domain.time_policy import day_name, expected_return_for, system_clock
from backend.repository.data_repository import DataRepository, LedgerTransaction
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    attempts: int,
    description: str,
) -> T:
    """Run ``operation``, retrying when it loses a write race."""
    attempt = 1
    while True:
        try:
            return operation()
        except ConcurrentModificationError as exc:
            logger.warning(
                "Concurrent modification | operation=%s | attempt=%s/%s | detail=%s",
                description,
                attempt,
                attempts,
                exc,
            )
            if attempt >= attempts:
                raise
            attempt += 1


def lookup_sessions(
    schedule_lookup: DataRepository,
    holder_id: str,
    day: str,
) -> list[Session]:
    """Read today's sessions, normalizing collaborator failures."""
    try:
        return list(schedule_lookup.get_sessions_for_holder_on_day(holder_id, day))
    except ScheduleLookupFailure:
        raise
    except Exception as exc:
        raise ScheduleLookupFailure(
            f"Schedule lookup failed for holder {holder_id} on {day}: {exc}"
        ) from exc


class CheckoutLedgerService:
    """Owns every device status write made on behalf of a holder."""

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

    def checkout(self, device_id: str, holder_id: str, holder_name: str) -> Device:
        """Hand ``device_id`` to the holder and return the updated device."""
        self._require_holder(holder_id)
        now = self._clock()
        sessions = lookup_sessions(self._schedule_lookup, holder_id, day_name(now))
        expected_return_at = expected_return_for(
            now,
            sessions,
            buffer_minutes=self._policy.overdue_buffer_minutes,
            no_schedule_timeout=self._policy.no_schedule_timeout,
        )

        def _transition(device: Device) -> Device:
            return device.checked_out_by(holder_id, holder_name, now, expected_return_at)

        device = retry_on_conflict(
            lambda: self._apply(
                device_id=device_id,
                holder_id=holder_id,
                holder_name=holder_name,
                action=HistoryAction.PICKUP,
                now=now,
                transition=_transition,
                precheck=self._ensure_holder_is_free,
            ),
            attempts=self._policy.ledger_max_attempts,
            description="checkout",
        )
        logger.info(
            "Device checked out | device_id=%s | label=%s | holder_id=%s | expected_return_at=%s",
            device.device_id,
            device.label,
            holder_id,
            expected_return_at.isoformat(),
        )
        return device

    def return_device(self, device_id: str, holder_id: str, holder_name: str) -> Device:
        """Mark ``device_id`` available again; works from in_use and overdue alike."""
        self._require_holder(holder_id)
        now = self._clock()

        def _transition(device: Device) -> Device:
            return device.returned_by(holder_id, holder_name, now)

        device = retry_on_conflict(
            lambda: self._apply(
                device_id=device_id,
                holder_id=holder_id,
                holder_name=holder_name,
                action=HistoryAction.RETURN,
                now=now,
                transition=_transition,
            ),
            attempts=self._policy.ledger_max_attempts,
            description="return",
        )
        logger.info(
            "Device returned | device_id=%s | label=%s | holder_id=%s",
            device.device_id,
            device.label,
            holder_id,
        )
        return device

    def _require_holder(self, holder_id: str) -> None:
        if self._repository.get_holder(holder_id) is None:
            raise HolderNotFoundError(f"Holder {holder_id} does not exist")

    def _ensure_holder_is_free(
        self,
        txn: LedgerTransaction,
        device: Device,
        holder_id: str,
    ) -> None:
        if not self._settings.enforce_single_device_per_holder:
            return
        others = [
            held for held in txn.devices_held_by(holder_id)
            if held.device_id != device.device_id
        ]
        if others:
            raise HolderAlreadyHasDeviceError(
                f"Holder {holder_id} already has device {others[0].label}; return it first"
            )

    def _apply(
        self,
        *,
        device_id: str,
        holder_id: str,
        holder_name: str,
        action: HistoryAction,
        now: datetime,
        transition: Callable[[Device], Device],
        precheck: Optional[Callable[[LedgerTransaction, Device, str], None]] = None,
    ) -> Device:
        with self._repository.transaction() as txn:
            current = txn.read_device(device_id)
            if current is None:
                raise DeviceNotFoundError(f"Device {device_id} does not exist")
            if precheck is not None:
                precheck(txn, current, holder_id)

            previous = txn.find_recent_history_event(
                device_id,
                holder_id,
                action,
                since=now - self._policy.duplicate_suppression_window,
            )
            # The status write is re-applied even for a suppressed duplicate so a
            # device row that drifted from its history heals itself.
            updated = txn.save_device(transition(current), expected_version=current.version)
            if previous is None:
                txn.append_history_event(
                    CheckoutEvent(
                        device_id=device_id,
                        holder_id=holder_id,
                        holder_name=holder_name,
                        action=action,
                        timestamp=now,
                    )
                )
            else:
                logger.info(
                    "Duplicate %s suppressed | device_id=%s | holder_id=%s | previous_event_id=%s",
                    action.value,
                    device_id,
                    holder_id,
                    previous.event_id,
                )
            return updated
