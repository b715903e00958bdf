"""Domain models for the device checkout ledger and holder timetables."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from backend.domain.time_policy import to_minutes


class DeviceStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    OVERDUE = "overdue"


CHECKED_OUT_STATUSES = (DeviceStatus.IN_USE, DeviceStatus.OVERDUE)


class HistoryAction(str, Enum):
    PICKUP = "pickup"
    RETURN = "return"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Holder:
    holder_id: str
    name: str
    email: Optional[str] = None
    department: Optional[str] = None

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "holder_id": self.holder_id,
            "name": self.name,
            "email": self.email,
            "department": self.department,
        }


@dataclass(frozen=True)
class Session:
    """One weekly timetable block for a holder."""

    session_id: int
    holder_id: str
    holder_name: str
    course: str
    day: str
    start_time: str
    end_time: str
    location: Optional[str] = None

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "holder_id": self.holder_id,
            "holder_name": self.holder_name,
            "course": self.course,
            "location": self.location,
            "day": self.day,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


@dataclass(frozen=True)
class CheckoutEvent:
    """Append-only history record of an accepted pickup or return."""

    device_id: str
    holder_id: str
    holder_name: str
    action: HistoryAction
    timestamp: datetime
    event_id: Optional[int] = None

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "device_id": self.device_id,
            "holder_id": self.holder_id,
            "holder_name": self.holder_name,
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Device:
    """Snapshot of one pooled device.

    Transition helpers return new snapshots and never touch storage; the
    repository persists them inside a transaction and bumps ``version``.
    """

    device_id: str
    label: str
    status: DeviceStatus = DeviceStatus.AVAILABLE
    holder_id: Optional[str] = None
    holder_name: Optional[str] = None
    checked_out_at: Optional[datetime] = None
    expected_return_at: Optional[datetime] = None
    last_returned_at: Optional[datetime] = None
    last_holder_id: Optional[str] = None
    last_holder_name: Optional[str] = None
    version: int = 0

    def checked_out_by(
        self,
        holder_id: str,
        holder_name: str,
        checked_out_at: datetime,
        expected_return_at: datetime,
    ) -> Device:
        return replace(
            self,
            status=DeviceStatus.IN_USE,
            holder_id=holder_id,
            holder_name=holder_name,
            checked_out_at=checked_out_at,
            expected_return_at=expected_return_at,
        )

    def returned_by(
        self,
        holder_id: str,
        holder_name: str,
        returned_at: datetime,
    ) -> Device:
        return replace(
            self,
            status=DeviceStatus.AVAILABLE,
            holder_id=None,
            holder_name=None,
            checked_out_at=None,
            expected_return_at=None,
            last_returned_at=returned_at,
            last_holder_id=holder_id,
            last_holder_name=holder_name,
        )

    def flagged_overdue(self) -> Device:
        return replace(self, status=DeviceStatus.OVERDUE)

    def renamed(self, label: str) -> Device:
        return replace(self, label=label)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "label": self.label,
            "status": self.status.value,
            "holder_id": self.holder_id,
            "holder_name": self.holder_name,
            "checked_out_at": _isoformat(self.checked_out_at),
            "expected_return_at": _isoformat(self.expected_return_at),
            "last_returned_at": _isoformat(self.last_returned_at),
            "last_holder_id": self.last_holder_id,
            "last_holder_name": self.last_holder_name,
        }
