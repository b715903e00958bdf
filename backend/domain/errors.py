"""Failure kinds shared by the repository, ledger and reconciliation layers."""

from __future__ import annotations


class LedgerError(Exception):
    """Base failure for checkout ledger workflows."""


class LedgerValidationError(LedgerError):
    """Raised when caller input is malformed or conflicts with stored data."""


class NotFoundError(LedgerError):
    """Raised when a referenced record does not exist."""


class DeviceNotFoundError(NotFoundError):
    """Raised when a device id is unknown."""


class HolderNotFoundError(NotFoundError):
    """Raised when a holder id is unknown."""


class SessionNotFoundError(NotFoundError):
    """Raised when a timetable entry id is unknown."""


class HolderAlreadyHasDeviceError(LedgerError):
    """Raised when a holder tries to check out a second device."""


class ConcurrentModificationError(LedgerError):
    """Raised when a device write lost a race with another writer."""


class DataIntegrityError(LedgerError):
    """Raised when a checked-out device lacks its holder or checkout time."""


class ScheduleLookupFailure(LedgerError):
    """Raised when the timetable could not be read for a holder."""
