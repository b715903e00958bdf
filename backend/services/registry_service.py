"""Admin maintenance of devices, holders and timetable entries."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from backend.domain.errors import (
    DeviceNotFoundError,
    HolderNotFoundError,
    LedgerValidationError,
    SessionNotFoundError,
)
from backend.domain.models import Device, Holder, Session
from backend.domain.time_policy import DAY_NAMES, is_day_name, is_time_of_day, to_minutes
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def validate_session_fields(day: str, start_time: str, end_time: str) -> None:
    if not is_day_name(day):
        raise LedgerValidationError(f"day must be one of {', '.join(DAY_NAMES)}")
    if not is_time_of_day(start_time) or not is_time_of_day(end_time):
        raise LedgerValidationError("start_time and end_time must follow HH:MM format")
    if to_minutes(start_time) >= to_minutes(end_time):
        raise LedgerValidationError("start_time must be earlier than end_time")


class RegistryService:
    """Creates, renames and removes the records the ledger operates on.

    Device status is never written here; that belongs to the ledger and
    reconciliation services.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    # Devices

    def add_device(self, label: str) -> Device:
        cleaned = label.strip()
        if not cleaned:
            raise LedgerValidationError("Device label must be non-empty")
        device = self._repository.create_device(cleaned)
        logger.info("Device registered | device_id=%s | label=%s", device.device_id, cleaned)
        return device

    def rename_device(self, device_id: str, label: str) -> Device:
        cleaned = label.strip()
        if not cleaned:
            raise LedgerValidationError("Device label must be non-empty")
        updated = self._repository.atomic_update_device(
            device_id,
            lambda current: None if current.label == cleaned else current.renamed(cleaned),
        )
        if updated is not None:
            logger.info("Device renamed | device_id=%s | label=%s", device_id, cleaned)
            return updated
        # Same label: nothing was written.
        unchanged = self._repository.read_device(device_id)
        if unchanged is None:
            raise DeviceNotFoundError(f"Device {device_id} does not exist")
        return unchanged

    def remove_device(self, device_id: str) -> None:
        if not self._repository.delete_device(device_id):
            raise DeviceNotFoundError(f"Device {device_id} does not exist")
        logger.info("Device removed | device_id=%s", device_id)

    # Holders

    def add_holder(
        self,
        name: str,
        email: Optional[str] = None,
        department: Optional[str] = None,
    ) -> Holder:
        if not name.strip():
            raise LedgerValidationError("Holder name must be non-empty")
        return self._repository.create_holder(name.strip(), email, department)

    def list_holders(self) -> list[Holder]:
        return self._repository.list_holders()

    def update_holder(
        self,
        holder_id: str,
        name: str,
        email: Optional[str] = None,
        department: Optional[str] = None,
    ) -> Holder:
        """Replace a holder's details; timetable entries pick up the new name.

        Device rows and history keep the name that was scanned at the time.
        """
        if not name.strip():
            raise LedgerValidationError("Holder name must be non-empty")
        holder = Holder(
            holder_id=holder_id,
            name=name.strip(),
            email=email,
            department=department,
        )
        if not self._repository.update_holder(holder):
            raise HolderNotFoundError(f"Holder {holder_id} does not exist")
        logger.info("Holder updated | holder_id=%s", holder_id)
        return holder

    def remove_holder(self, holder_id: str) -> None:
        # Same write lock as checkout, so no pickup can land between check and delete.
        with self._repository.transaction() as txn:
            held = txn.devices_held_by(holder_id)
            if held:
                raise LedgerValidationError(
                    f"Holder {holder_id} still holds device {held[0].label}"
                )
            if not txn.delete_holder(holder_id):
                raise HolderNotFoundError(f"Holder {holder_id} does not exist")
        logger.info("Holder removed | holder_id=%s", holder_id)

    # Timetable

    def add_session(
        self,
        *,
        holder_id: str,
        course: str,
        day: str,
        start_time: str,
        end_time: str,
        location: Optional[str] = None,
        holder_name: Optional[str] = None,
    ) -> Session:
        holder = self._repository.get_holder(holder_id)
        if holder is None:
            raise HolderNotFoundError(f"Holder {holder_id} does not exist")
        validate_session_fields(day, start_time, end_time)
        return self._repository.create_session(
            holder_id=holder_id,
            holder_name=holder_name or holder.name,
            course=course,
            day=day,
            start_time=start_time,
            end_time=end_time,
            location=location,
        )

    def update_session(
        self,
        session_id: int,
        *,
        holder_id: str,
        course: str,
        day: str,
        start_time: str,
        end_time: str,
        location: Optional[str] = None,
        holder_name: Optional[str] = None,
    ) -> Session:
        existing = self._repository.get_session(session_id)
        if existing is None:
            raise SessionNotFoundError(f"Timetable entry {session_id} does not exist")
        holder = self._repository.get_holder(holder_id)
        if holder is None:
            raise HolderNotFoundError(f"Holder {holder_id} does not exist")
        validate_session_fields(day, start_time, end_time)
        updated = replace(
            existing,
            holder_id=holder_id,
            holder_name=holder_name or holder.name,
            course=course,
            day=day,
            start_time=start_time,
            end_time=end_time,
            location=location,
        )
        if not self._repository.update_session(updated):
            raise SessionNotFoundError(f"Timetable entry {session_id} does not exist")
        return updated

    def remove_session(self, session_id: int) -> None:
        if not self._repository.delete_session(session_id):
            raise SessionNotFoundError(f"Timetable entry {session_id} does not exist")

    def list_sessions(self) -> list[Session]:
        return self._repository.list_sessions()

    def list_sessions_for_holder(self, holder_id: str) -> list[Session]:
        return self._repository.list_sessions_for_holder(holder_id)
