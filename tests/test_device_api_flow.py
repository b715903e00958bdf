from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from fastapi.testclient import TestClient

from app import create_app
from backend.utils.config import get_settings


KIGALI = ZoneInfo("Africa/Kigali")


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    options = {"seed_demo_data": False, "reconcile_scheduler_enabled": False, **overrides}
    return replace(get_settings(), database_path=tmp_path / filename, **options)


def _build_client(tmp_path, filename: str = "api_flow.db", **overrides):
    # 2026-03-02 is a Monday.
    clock = _Clock(datetime(2026, 3, 2, 7, 45, tzinfo=KIGALI))
    app = create_app(_build_test_settings(tmp_path, filename, **overrides), clock=clock)
    return TestClient(app), clock


def _create_holder(client: TestClient, name: str) -> dict:
    response = client.post("/holders", json={"name": name, "department": "Computer Science"})
    assert response.status_code == 201, response.text
    return response.json()


def _create_device(client: TestClient, label: str) -> dict:
    response = client.post("/devices", json={"label": label})
    assert response.status_code == 201, response.text
    return response.json()


def test_pickup_overdue_and_return_flow(tmp_path) -> None:
    client, clock = _build_client(tmp_path)
    with client:
        holder = _create_holder(client, "Prof. James Mugabo")
        session = client.post(
            "/timetable",
            json={
                "holder_id": holder["holder_id"],
                "course": "Introduction to Programming",
                "location": "Lab 1",
                "day": "Monday",
                "start_time": "08:00",
                "end_time": "09:00",
            },
        )
        assert session.status_code == 201, session.text
        device = _create_device(client, "TAP-001")
        scan = {"holder_id": holder["holder_id"], "holder_name": holder["name"]}

        pickup = client.post(f"/devices/{device['device_id']}/pickup", json=scan)
        assert pickup.status_code == 200, pickup.text
        body = pickup.json()
        assert body["status"] == "in_use"
        assert body["holder_id"] == holder["holder_id"]
        assert datetime.fromisoformat(body["expected_return_at"]) == datetime(
            2026, 3, 2, 9, 5, tzinfo=KIGALI
        )

        clock.advance(minutes=81)  # 09:06
        listing = client.get("/devices")
        assert listing.status_code == 200
        assert listing.json()[0]["status"] == "overdue"

        reconcile = client.post("/devices/reconcile")
        assert reconcile.status_code == 200
        assert reconcile.json()["counts"]["already_overdue"] == 1

        clock.advance(minutes=10)
        returned = client.post(f"/devices/{device['device_id']}/return", json=scan)
        assert returned.status_code == 200, returned.text
        assert returned.json()["status"] == "available"
        assert returned.json()["holder_id"] is None
        assert returned.json()["last_holder_id"] == holder["holder_id"]

        history = client.get("/history")
        assert history.status_code == 200
        assert [event["action"] for event in history.json()] == ["return", "pickup"]

        cleanup = client.post("/history/cleanup-duplicates")
        assert cleanup.status_code == 200
        assert cleanup.json() == {"checked": 2, "duplicates_deleted": 0, "remaining": 2}


def test_double_tap_pickup_returns_same_device_and_one_event(tmp_path) -> None:
    client, clock = _build_client(tmp_path, "api_double_tap.db")
    with client:
        holder = _create_holder(client, "Dr. Marie Claire")
        device = _create_device(client, "TAP-001")
        scan = {"holder_id": holder["holder_id"], "holder_name": holder["name"]}

        first = client.post(f"/devices/{device['device_id']}/pickup", json=scan)
        clock.advance(seconds=3)
        second = client.post(f"/devices/{device['device_id']}/pickup", json=scan)

        assert first.status_code == second.status_code == 200
        assert len(client.get("/history").json()) == 1


def test_device_errors_map_to_http_statuses(tmp_path) -> None:
    client, _ = _build_client(tmp_path, "api_errors.db")
    with client:
        holder = _create_holder(client, "Prof. Emmanuel Nziza")
        first = _create_device(client, "TAP-001")
        second = _create_device(client, "TAP-002")
        scan = {"holder_id": holder["holder_id"], "holder_name": holder["name"]}

        duplicate_label = client.post("/devices", json={"label": "TAP-001"})
        assert duplicate_label.status_code == 400

        blank_label = client.post("/devices", json={"label": "   "})
        assert blank_label.status_code == 422

        unknown_device = client.post("/devices/missing/pickup", json=scan)
        assert unknown_device.status_code == 404

        unknown_holder = client.post(
            f"/devices/{first['device_id']}/pickup",
            json={"holder_id": "missing", "holder_name": "Nobody"},
        )
        assert unknown_holder.status_code == 404

        assert client.post(f"/devices/{first['device_id']}/pickup", json=scan).status_code == 200
        second_device = client.post(f"/devices/{second['device_id']}/pickup", json=scan)
        assert second_device.status_code == 409

        holder_in_use = client.delete(f"/holders/{holder['holder_id']}")
        assert holder_in_use.status_code == 409

        renamed = client.put(f"/devices/{second['device_id']}", json={"label": "TAP-099"})
        assert renamed.status_code == 200
        assert renamed.json()["label"] == "TAP-099"

        assert client.delete(f"/devices/{second['device_id']}").status_code == 200
        assert client.delete(f"/devices/{second['device_id']}").status_code == 404


def test_timetable_crud_and_validation(tmp_path) -> None:
    client, _ = _build_client(tmp_path, "api_timetable.db")
    with client:
        holder = _create_holder(client, "Dr. Aline Uwimana")
        payload = {
            "holder_id": holder["holder_id"],
            "course": "Public Health",
            "day": "thursday",
            "start_time": "08:00",
            "end_time": "10:00",
        }

        created = client.post("/timetable", json=payload)
        assert created.status_code == 201, created.text
        entry = created.json()
        assert entry["day"] == "Thursday"
        assert entry["holder_name"] == holder["name"]

        bad_day = client.post("/timetable", json={**payload, "day": "Someday"})
        assert bad_day.status_code == 422

        inverted = client.post(
            "/timetable",
            json={**payload, "start_time": "10:00", "end_time": "08:00"},
        )
        assert inverted.status_code == 400

        unknown_holder = client.post("/timetable", json={**payload, "holder_id": "missing"})
        assert unknown_holder.status_code == 404

        updated = client.put(
            f"/timetable/{entry['session_id']}",
            json={**payload, "day": "Friday", "end_time": "11:00"},
        )
        assert updated.status_code == 200
        assert updated.json()["end_time"] == "11:00"

        holder_entries = client.get(f"/timetable/holder/{holder['holder_id']}")
        assert [item["day"] for item in holder_entries.json()] == ["Friday"]

        assert client.delete(f"/timetable/{entry['session_id']}").status_code == 200
        assert client.delete(f"/timetable/{entry['session_id']}").status_code == 404
        assert client.get("/timetable").json() == []


def test_statistics_and_health(tmp_path) -> None:
    client, _ = _build_client(tmp_path, "api_statistics.db")
    with client:
        holder = _create_holder(client, "Prof. David Habimana")
        for course, start, end in [("Electronics", "08:00", "10:00"), ("Circuits", "13:00", "15:00")]:
            response = client.post(
                "/timetable",
                json={
                    "holder_id": holder["holder_id"],
                    "course": course,
                    "day": "Monday",
                    "start_time": start,
                    "end_time": end,
                },
            )
            assert response.status_code == 201

        daily = client.get("/statistics/daily", params={"date": "2026-03-02"})
        assert daily.status_code == 200
        assert daily.json()["total_devices_needed"] == 2

        weekly = client.get("/statistics/weekly")
        assert weekly.status_code == 200
        assert weekly.json()["week_start"] == "2026-03-02"
        assert weekly.json()["peak_devices_needed"] == 1

        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "ok"
        assert health.json()["reconciliation_running"] is False


def test_startup_seeds_demo_data(tmp_path) -> None:
    client, _ = _build_client(tmp_path, "api_seed.db", seed_demo_data=True)
    with client:
        devices = client.get("/devices").json()
        assert len(devices) == 10
        assert devices[0]["label"] == "TAP-001"
        assert len(client.get("/holders").json()) == 5


def test_holder_update_and_device_delete_keep_history(tmp_path) -> None:
    client, _ = _build_client(tmp_path, "api_holders.db")
    with client:
        holder = _create_holder(client, "Dr. Aline Uwimana")
        client.post(
            "/timetable",
            json={
                "holder_id": holder["holder_id"],
                "course": "Public Health",
                "day": "Monday",
                "start_time": "08:00",
                "end_time": "10:00",
            },
        )

        updated = client.put(
            f"/holders/{holder['holder_id']}",
            json={"name": "Prof. Aline Uwimana", "email": "aline@kepler.edu"},
        )
        assert updated.status_code == 200, updated.text
        assert updated.json()["name"] == "Prof. Aline Uwimana"
        assert updated.json()["department"] is None
        timetable = client.get(f"/timetable/holder/{holder['holder_id']}").json()
        assert timetable[0]["holder_name"] == "Prof. Aline Uwimana"

        missing = client.put("/holders/missing", json={"name": "Nobody"})
        assert missing.status_code == 404

        device = _create_device(client, "TAP-001")
        scan = {"holder_id": holder["holder_id"], "holder_name": "Prof. Aline Uwimana"}
        assert client.post(f"/devices/{device['device_id']}/pickup", json=scan).status_code == 200
        assert client.delete(f"/devices/{device['device_id']}").status_code == 200

        history = client.get("/history", params={"device_id": device["device_id"]})
        assert [event["action"] for event in history.json()] == ["pickup"]
