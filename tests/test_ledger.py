from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from backend.domain.errors import (
    ConcurrentModificationError,
    DeviceNotFoundError,
    HolderAlreadyHasDeviceError,
    HolderNotFoundError,
    ScheduleLookupFailure,
)
from backend.domain.models import DeviceStatus, HistoryAction
from backend.repository.data_repository import DataRepository
from backend.services.ledger_service import CheckoutLedgerService, retry_on_conflict
from backend.utils.config import get_settings


KIGALI = ZoneInfo("Africa/Kigali")


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class _FailingScheduleLookup:
    def get_sessions_for_holder_on_day(self, holder_id: str, day_name: str):
        raise RuntimeError("timetable service unreachable")


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    options = {"seed_demo_data": False, "reconcile_scheduler_enabled": False, **overrides}
    return replace(get_settings(), database_path=tmp_path / filename, **options)


def _build_ledger(tmp_path, filename: str = "ledger.db", **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    # 2026-03-02 is a Monday.
    clock = _Clock(datetime(2026, 3, 2, 7, 45, tzinfo=KIGALI))
    ledger = CheckoutLedgerService(repository=repository, settings=settings, clock=clock)
    return ledger, repository, clock


def _assert_holder_fields_match_status(repository: DataRepository) -> None:
    for device in repository.list_devices():
        if device.status is DeviceStatus.AVAILABLE:
            assert device.holder_id is None
            assert device.holder_name is None
            assert device.checked_out_at is None
        else:
            assert device.holder_id is not None
            assert device.holder_name is not None
            assert device.checked_out_at is not None


def test_checkout_uses_latest_session_end_plus_buffer(tmp_path) -> None:
    ledger, repository, _ = _build_ledger(tmp_path)
    holder = repository.create_holder("Prof. James Mugabo", "james@kepler.edu")
    repository.create_session(holder.holder_id, holder.name, "Programming", "Monday", "08:00", "10:00")
    repository.create_session(holder.holder_id, holder.name, "Databases", "Monday", "13:00", "14:30")
    repository.create_session(holder.holder_id, holder.name, "Algorithms", "Tuesday", "15:00", "18:00")
    device = repository.create_device("TAP-001")

    updated = ledger.checkout(device.device_id, holder.holder_id, holder.name)

    assert updated.status is DeviceStatus.IN_USE
    assert updated.holder_id == holder.holder_id
    assert updated.holder_name == holder.name
    assert updated.checked_out_at == datetime(2026, 3, 2, 7, 45, tzinfo=KIGALI)
    assert updated.expected_return_at == datetime(2026, 3, 2, 14, 35, tzinfo=KIGALI)
    assert repository.read_device(device.device_id) == updated


def test_checkout_without_sessions_expects_return_after_timeout(tmp_path) -> None:
    ledger, repository, clock = _build_ledger(tmp_path)
    holder = repository.create_holder("Dr. Marie Claire")
    device = repository.create_device("TAP-001")

    updated = ledger.checkout(device.device_id, holder.holder_id, holder.name)

    assert updated.expected_return_at == clock.now + timedelta(minutes=60)


def test_double_checkout_within_window_records_one_event(tmp_path) -> None:
    ledger, repository, clock = _build_ledger(tmp_path)
    holder = repository.create_holder("Prof. Emmanuel Nziza")
    device = repository.create_device("TAP-001")

    first = ledger.checkout(device.device_id, holder.holder_id, holder.name)
    clock.advance(minutes=2)
    second = ledger.checkout(device.device_id, holder.holder_id, holder.name)

    assert repository.count_history_events(device.device_id, HistoryAction.PICKUP) == 1
    assert second.status is first.status is DeviceStatus.IN_USE
    assert second.holder_id == first.holder_id
    # The status refresh still lands with the later timestamp.
    assert second.checked_out_at == clock.now


def test_checkout_after_window_records_new_event(tmp_path) -> None:
    ledger, repository, clock = _build_ledger(tmp_path)
    holder = repository.create_holder("Prof. Emmanuel Nziza")
    device = repository.create_device("TAP-001")

    ledger.checkout(device.device_id, holder.holder_id, holder.name)
    clock.advance(minutes=6)
    ledger.checkout(device.device_id, holder.holder_id, holder.name)

    assert repository.count_history_events(device.device_id, HistoryAction.PICKUP) == 2


def test_round_trip_records_pickup_then_return(tmp_path) -> None:
    ledger, repository, clock = _build_ledger(tmp_path)
    holder = repository.create_holder("Dr. Aline Uwimana")
    device = repository.create_device("TAP-001")

    ledger.checkout(device.device_id, holder.holder_id, holder.name)
    clock.advance(minutes=30)
    returned = ledger.return_device(device.device_id, holder.holder_id, holder.name)

    assert returned.status is DeviceStatus.AVAILABLE
    assert returned.holder_id is None
    assert returned.holder_name is None
    assert returned.checked_out_at is None
    assert returned.expected_return_at is None
    assert returned.last_returned_at == clock.now
    assert returned.last_holder_id == holder.holder_id
    assert returned.last_holder_name == holder.name

    events = repository.list_history_events_chronological()
    assert [event.action for event in events] == [HistoryAction.PICKUP, HistoryAction.RETURN]
    _assert_holder_fields_match_status(repository)


def test_double_return_within_window_records_one_event(tmp_path) -> None:
    ledger, repository, clock = _build_ledger(tmp_path)
    holder = repository.create_holder("Dr. Aline Uwimana")
    device = repository.create_device("TAP-001")

    ledger.checkout(device.device_id, holder.holder_id, holder.name)
    clock.advance(minutes=20)
    ledger.return_device(device.device_id, holder.holder_id, holder.name)
    clock.advance(seconds=10)
    ledger.return_device(device.device_id, holder.holder_id, holder.name)

    assert repository.count_history_events(device.device_id, HistoryAction.RETURN) == 1


def test_return_clears_overdue_device(tmp_path) -> None:
    ledger, repository, clock = _build_ledger(tmp_path)
    holder = repository.create_holder("Prof. David Habimana")
    device = repository.create_device("TAP-001")
    ledger.checkout(device.device_id, holder.holder_id, holder.name)
    repository.atomic_update_device(device.device_id, lambda current: current.flagged_overdue())

    clock.advance(hours=3)
    returned = ledger.return_device(device.device_id, holder.holder_id, holder.name)

    assert returned.status is DeviceStatus.AVAILABLE


def test_unknown_device_raises_not_found_without_side_effects(tmp_path) -> None:
    ledger, repository, _ = _build_ledger(tmp_path)
    holder = repository.create_holder("Prof. James Mugabo")

    with pytest.raises(DeviceNotFoundError):
        ledger.checkout("missing-device", holder.holder_id, holder.name)
    with pytest.raises(DeviceNotFoundError):
        ledger.return_device("missing-device", holder.holder_id, holder.name)

    assert repository.count_history_events() == 0


def test_unknown_holder_raises_not_found(tmp_path) -> None:
    ledger, repository, _ = _build_ledger(tmp_path)
    device = repository.create_device("TAP-001")

    with pytest.raises(HolderNotFoundError):
        ledger.checkout(device.device_id, "missing-holder", "Nobody")

    assert repository.read_device(device.device_id).status is DeviceStatus.AVAILABLE


def test_holder_cannot_hold_two_devices(tmp_path) -> None:
    ledger, repository, _ = _build_ledger(tmp_path)
    holder = repository.create_holder("Prof. James Mugabo")
    first = repository.create_device("TAP-001")
    second = repository.create_device("TAP-002")
    ledger.checkout(first.device_id, holder.holder_id, holder.name)

    with pytest.raises(HolderAlreadyHasDeviceError):
        ledger.checkout(second.device_id, holder.holder_id, holder.name)

    assert repository.read_device(second.device_id).status is DeviceStatus.AVAILABLE
    assert repository.count_history_events(second.device_id) == 0


def test_single_device_rule_can_be_disabled(tmp_path) -> None:
    ledger, repository, _ = _build_ledger(
        tmp_path,
        enforce_single_device_per_holder=False,
    )
    holder = repository.create_holder("Prof. James Mugabo")
    first = repository.create_device("TAP-001")
    second = repository.create_device("TAP-002")

    ledger.checkout(first.device_id, holder.holder_id, holder.name)
    ledger.checkout(second.device_id, holder.holder_id, holder.name)

    assert {device.status for device in repository.list_devices()} == {DeviceStatus.IN_USE}


def test_schedule_lookup_failure_leaves_device_untouched(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "ledger_lookup.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    holder = repository.create_holder("Prof. James Mugabo")
    device = repository.create_device("TAP-001")
    ledger = CheckoutLedgerService(
        repository=repository,
        settings=settings,
        schedule_lookup=_FailingScheduleLookup(),
    )

    with pytest.raises(ScheduleLookupFailure):
        ledger.checkout(device.device_id, holder.holder_id, holder.name)

    assert repository.read_device(device.device_id).status is DeviceStatus.AVAILABLE
    assert repository.count_history_events() == 0


def test_concurrent_double_tap_produces_single_pickup(tmp_path) -> None:
    ledger, repository, _ = _build_ledger(tmp_path, "ledger_concurrent.db")
    holder = repository.create_holder("Prof. James Mugabo")
    device = repository.create_device("TAP-001")

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [
            pool.submit(ledger.checkout, device.device_id, holder.holder_id, holder.name)
            for _ in range(8)
        ]
        results = [future.result() for future in futures]

    assert all(result.status is DeviceStatus.IN_USE for result in results)
    assert repository.count_history_events(device.device_id, HistoryAction.PICKUP) == 1
    stored = repository.read_device(device.device_id)
    assert stored.holder_id == holder.holder_id
    assert stored.version == 8


def test_concurrent_checkouts_of_different_devices(tmp_path) -> None:
    ledger, repository, _ = _build_ledger(tmp_path, "ledger_parallel.db")
    holders = [repository.create_holder(f"Holder {index}") for index in range(5)]
    devices = [repository.create_device(f"TAP-{index:03d}") for index in range(5)]

    with ThreadPoolExecutor(max_workers=5) as pool:
        list(
            pool.map(
                lambda pair: ledger.checkout(pair[0].device_id, pair[1].holder_id, pair[1].name),
                zip(devices, holders),
            )
        )

    assert repository.count_history_events(action=HistoryAction.PICKUP) == 5
    _assert_holder_fields_match_status(repository)


def test_retry_on_conflict_retries_then_succeeds() -> None:
    calls = {"count": 0}

    def _flaky() -> str:
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConcurrentModificationError("lost race")
        return "ok"

    assert retry_on_conflict(_flaky, attempts=3, description="test") == "ok"
    assert calls["count"] == 2


def test_retry_on_conflict_surfaces_after_exhausting_attempts() -> None:
    calls = {"count": 0}

    def _always_conflicts() -> None:
        calls["count"] += 1
        raise ConcurrentModificationError("lost race")

    with pytest.raises(ConcurrentModificationError):
        retry_on_conflict(_always_conflicts, attempts=2, description="test")
    assert calls["count"] == 2
