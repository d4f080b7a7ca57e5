import unittest
from collections.abc import Generator
from datetime import datetime, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from warehouse_queue.db import get_db
from warehouse_queue.main import app
from warehouse_queue.models import (
    AuditLog,
    JobType,
    Registration,
    RegistrationStatus,
    TimeSlot,
    TruckType,
)
from warehouse_queue.services.line_identity import LineProfile

CENTER = {"lat": 18.761325, "lon": 99.060475, "accuracy_m": 10}
PROFILE = LineProfile(user_id="U42", display_name="Somchai")


class _ScalarResult:
    def __init__(self, items: list[object]):
        self._items = items

    def all(self) -> list[object]:
        return list(self._items)


class FakeDB:
    def __init__(self, scalar_results: list[object | None] | None = None, listed: list[object] | None = None):
        self._scalar_results = list(scalar_results or [])
        self._listed = listed or []
        self.added: list[object] = []
        self.committed = False

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        if not self._scalar_results:
            return None
        return self._scalar_results.pop(0)

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        return _ScalarResult(self._listed)

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def flush(self) -> None:
        return

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        return

    def refresh(self, obj: object) -> None:
        if isinstance(obj, Registration):
            obj.id = 12
            obj.queue_number = "A001"


def override_get_db(fake_db: FakeDB):
    def _override() -> Generator[FakeDB, None, None]:
        yield fake_db

    return _override


def _payload(**overrides) -> dict:  # type: ignore[no-untyped-def]
    body = {
        "driver_name": "สมชาย ใจดี",
        "vehicle_plate": "70-1234",
        "carrier": "TBL-โคราช",
        "time_slot": "afternoon",
        "light_truck_job": "READY",
        "location": CENTER,
    }
    body.update(overrides)
    return body


def _registration(queue_number: str, line_user_id: str = "U42") -> Registration:
    return Registration(
        id=5,
        queue_number=queue_number,
        line_user_id=line_user_id,
        driver_name="สมชาย ใจดี",
        vehicle_plate="70-1234",
        carrier="TBL-โคราช",
        truck_type=TruckType.LIGHT,
        job_type=JobType.READY,
        time_slot=TimeSlot.AFTERNOON,
        status=RegistrationStatus.PENDING,
        shift_start_utc=datetime.now(timezone.utc),
        created_at=datetime.now(timezone.utc),
    )


def _audit_actions(fake_db: FakeDB) -> list[str]:
    return [item.action for item in fake_db.added if isinstance(item, AuditLog)]


class QueueSubmitEndpointTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_submit_success(self) -> None:
        fake_db = FakeDB(scalar_results=[None])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch("warehouse_queue.routers.queue.fetch_line_profile", return_value=PROFILE) as fetch_profile:
            response = client.post(
                "/api/queue/registrations",
                json=_payload(),
                headers={"Authorization": "Bearer line-token", "X-Request-Id": "req-1"},
            )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.headers["X-Request-Id"], "req-1")
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["registration_id"], 12)
        self.assertEqual(body["queue_number"], "A001")
        self.assertEqual(body["time_slot"], "afternoon")
        self.assertIn("A001", body["message"])
        self.assertTrue(body["location"]["within_area"])
        self.assertEqual(body["shift_window"]["timezone"], "Asia/Bangkok")
        fetch_profile.assert_called_once_with("line-token")
        registration = fake_db.added[0]
        self.assertIsInstance(registration, Registration)
        self.assertEqual(registration.line_user_id, "U42")
        self.assertIn("REGISTRATION_CREATED", _audit_actions(fake_db))

    def test_validation_error_skips_identity_lookup(self) -> None:
        fake_db = FakeDB()
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch("warehouse_queue.routers.queue.fetch_line_profile") as fetch_profile:
            response = client.post("/api/queue/registrations", json=_payload(time_slot=None))

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["error"]["code"], "TIME_SLOT_REQUIRED")
        self.assertIn("request_id", body["error"])
        fetch_profile.assert_not_called()
        self.assertEqual(fake_db.added, [])

    def test_outside_area_returns_location_details(self) -> None:
        fake_db = FakeDB()
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch("warehouse_queue.routers.queue.fetch_line_profile") as fetch_profile:
            response = client.post(
                "/api/queue/registrations",
                json=_payload(location={"lat": 18.7700, "lon": 99.0700, "accuracy_m": 10}),
            )

        self.assertEqual(response.status_code, 403)
        error = response.json()["error"]
        self.assertEqual(error["code"], "OUTSIDE_AREA")
        self.assertFalse(error["details"]["location"]["within_area"])
        self.assertGreater(error["details"]["location"]["distance_m"], 1000)
        fetch_profile.assert_not_called()
        self.assertEqual(_audit_actions(fake_db), ["REGISTRATION_REJECTED"])

    def test_location_error_is_reported(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.post(
            "/api/queue/registrations",
            json=_payload(location=None, location_error={"code": "PERMISSION_DENIED", "message": "User denied Geolocation"}),
        )

        self.assertEqual(response.status_code, 400)
        error = response.json()["error"]
        self.assertEqual(error["code"], "LOCATION_PERMISSION_DENIED")
        self.assertEqual(error["message"], "User denied Geolocation")

    def test_missing_line_token_requires_login(self) -> None:
        fake_db = FakeDB()
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        response = client.post("/api/queue/registrations", json=_payload())

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "LINE_LOGIN_REQUIRED")
        self.assertFalse(any(isinstance(item, Registration) for item in fake_db.added))

    def test_duplicate_returns_existing_queue_number(self) -> None:
        fake_db = FakeDB(scalar_results=[_registration("A007")])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch("warehouse_queue.routers.queue.fetch_line_profile", return_value=PROFILE):
            response = client.post(
                "/api/queue/registrations",
                json=_payload(),
                headers={"Authorization": "Bearer line-token"},
            )

        self.assertEqual(response.status_code, 409)
        error = response.json()["error"]
        self.assertEqual(error["code"], "DUPLICATE_REGISTRATION")
        self.assertEqual(error["details"]["existing_queue_number"], "A007")

    def test_malformed_body_is_rejected(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.post(
            "/api/queue/registrations",
            json=_payload(location={"lat": 200, "lon": 99.06}),
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")


class QueueReadEndpointTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_config_lists_options(self) -> None:
        client = TestClient(app)

        response = client.get("/api/queue/config")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["time_slots"], ["morning", "afternoon"])
        self.assertEqual([item["value"] for item in body["job_options"]], ["FG", "RETURN", "READY", "REPAIR"])
        self.assertTrue(body["job_options"][0]["requires_trip_number"])
        self.assertIn("TBL-โคราช", body["carriers"])
        self.assertEqual(body["geofence"]["shape"], "rectangle")
        self.assertEqual(body["location_maximum_age_ms"], 0)
        self.assertTrue(body["enable_high_accuracy"])

    def test_geofence_check(self) -> None:
        client = TestClient(app)

        response = client.post("/api/queue/geofence/check", json=CENTER)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["within_area"])
        self.assertEqual(body["distance_m"], 0.0)

    def test_shift_window(self) -> None:
        client = TestClient(app)

        response = client.get("/api/queue/shift-window")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["policy"], "rolling")
        start = datetime.fromisoformat(body["start_utc"])
        end = datetime.fromisoformat(body["end_utc"])
        self.assertLessEqual(start, datetime.now(timezone.utc))
        self.assertEqual((end - start).total_seconds(), 24 * 3600)

    def test_all_scope_lists_without_identity(self) -> None:
        fake_db = FakeDB(listed=[_registration("A001"), _registration("A002", line_user_id="U7")])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        response = client.get("/api/queue/registrations", params={"scope": "all"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["scope"], "all")
        self.assertEqual([item["queue_number"] for item in body["items"]], ["A001", "A002"])
        self.assertNotIn("line_user_id", body["items"][0])

    def test_mine_scope_requires_login(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.get("/api/queue/registrations")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "LINE_LOGIN_REQUIRED")

    def test_mine_scope_with_identity(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB(listed=[_registration("A003")]))
        client = TestClient(app)

        with patch("warehouse_queue.routers.queue.fetch_line_profile", return_value=PROFILE):
            response = client.get(
                "/api/queue/registrations",
                params={"scope": "mine"},
                headers={"Authorization": "Bearer line-token"},
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["items"][0]["queue_number"], "A003")


if __name__ == "__main__":
    unittest.main()
