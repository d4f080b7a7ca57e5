from __future__ import annotations

import os
import unittest
from collections.abc import Generator
from datetime import datetime, timezone
from io import BytesIO
from unittest.mock import patch

from fastapi.testclient import TestClient
from openpyxl import load_workbook

from warehouse_queue import security
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
from warehouse_queue.security import hash_password, require_staff
from warehouse_queue.settings import get_settings


class _ScalarResult:
    def __init__(self, items: list[object]):
        self._items = items

    def all(self) -> list[object]:
        return list(self._items)


class FakeDB:
    def __init__(self, listed: list[object] | None = None):
        self._listed = listed or []
        self.added: list[object] = []

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        return _ScalarResult(self._listed)

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        return

    def rollback(self) -> None:
        return


def override_get_db(fake_db: FakeDB):
    def _override() -> Generator[FakeDB, None, None]:
        yield fake_db

    return _override


def _registration(reg_id: int, queue_number: str, time_slot: TimeSlot, status: RegistrationStatus) -> Registration:
    heavy = time_slot == TimeSlot.MORNING
    return Registration(
        id=reg_id,
        queue_number=queue_number,
        line_user_id=f"U{reg_id}",
        driver_name=f"คนขับ {reg_id}",
        vehicle_plate=f"70-{reg_id:04d}",
        carrier="TBL-ขนส่งวังน้อย",
        truck_type=TruckType.HEAVY if heavy else TruckType.LIGHT,
        job_type=JobType.FG if heavy else JobType.REPAIR,
        trip_number="1" if heavy else None,
        time_slot=time_slot,
        status=status,
        shift_start_utc=datetime(2026, 3, 9, 11, 0, tzinfo=timezone.utc),
        created_at=datetime(2026, 3, 10, 1, reg_id, tzinfo=timezone.utc),
    )


QUEUE = [
    _registration(1, "M001", TimeSlot.MORNING, RegistrationStatus.PENDING),
    _registration(2, "M002", TimeSlot.MORNING, RegistrationStatus.CANCELLED),
    _registration(3, "A001", TimeSlot.AFTERNOON, RegistrationStatus.COMPLETED),
]

STAFF_ENV = {
    "STAFF_USER": "staff",
    "JWT_SECRET": "jwt-test-secret",
}


class StaffLoginTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.password_hash = hash_password("s3cret-pass")

    def setUp(self) -> None:
        get_settings.cache_clear()
        security._FAILED_ATTEMPTS.clear()

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        security._FAILED_ATTEMPTS.clear()
        get_settings.cache_clear()

    def _env(self) -> dict[str, str]:
        return {**STAFF_ENV, "STAFF_PASS_HASH": self.password_hash}

    def test_login_then_list_registrations(self) -> None:
        fake_db = FakeDB(listed=QUEUE)
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch.dict(os.environ, self._env(), clear=False):
            get_settings.cache_clear()
            login = client.post("/api/staff/auth/login", json={"username": "staff", "password": "s3cret-pass"})
            self.assertEqual(login.status_code, 200)
            token = login.json()["access_token"]
            self.assertEqual(login.json()["token_type"], "bearer")

            response = client.get(
                "/api/staff/registrations",
                params={"shift_date": "2026-03-09"},
                headers={"Authorization": f"Bearer {token}"},
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 3)
        self.assertEqual(body["counts_by_slot"], {"morning": 2, "afternoon": 1})
        self.assertEqual(body["counts_by_status"]["cancelled"], 1)
        self.assertEqual(body["counts_by_status"]["confirmed"], 0)
        self.assertEqual(body["shift_window"]["shift_date"], "2026-03-09")
        actions = [item.action for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(actions, ["STAFF_LOGIN_SUCCESS"])

    def test_wrong_password_is_rejected(self) -> None:
        fake_db = FakeDB()
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch.dict(os.environ, self._env(), clear=False):
            get_settings.cache_clear()
            response = client.post("/api/staff/auth/login", json={"username": "staff", "password": "wrong"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_CREDENTIALS")
        actions = [item.action for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(actions, ["STAFF_LOGIN_FAIL"])

    def test_repeated_failures_are_throttled(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        with patch.dict(os.environ, self._env(), clear=False):
            get_settings.cache_clear()
            for _ in range(10):
                security.register_login_failure("testclient")
            response = client.post("/api/staff/auth/login", json={"username": "staff", "password": "s3cret-pass"})

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["error"]["code"], "TOO_MANY_ATTEMPTS")

    def test_staff_routes_require_token(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.get("/api/staff/registrations")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")


class StaffExportTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_export_queue_xlsx(self) -> None:
        fake_db = FakeDB(listed=QUEUE)
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        app.dependency_overrides[require_staff] = lambda: {"username": "staff"}
        client = TestClient(app)

        response = client.get("/api/staff/exports/queue.xlsx", params={"shift_date": "2026-03-09"})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("application/vnd.openxmlformats"))
        self.assertIn('filename="queue-2026-03-09.xlsx"', response.headers["content-disposition"])

        workbook = load_workbook(BytesIO(response.content))
        self.assertEqual(workbook.sheetnames, ["Queue", "Summary"])
        sheet = workbook["Queue"]
        self.assertEqual(sheet["A9"].value, "หมายเลขคิว")
        self.assertEqual([sheet.cell(row=row, column=1).value for row in (10, 11, 12)], ["M001", "M002", "A001"])
        self.assertEqual(sheet["B5"].value, 3)
        # Bangkok wall clock: 01:01 UTC is 08:01 local.
        self.assertEqual(sheet["B10"].value, datetime(2026, 3, 10, 8, 1))
        self.assertEqual(sheet["J11"].value, "ยกเลิก")

        summary = workbook["Summary"]
        self.assertEqual(summary.cell(row=summary.max_row, column=4).value, 3)

        audit = [item for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(audit[0].action, "QUEUE_EXPORT_XLSX")
        self.assertEqual(audit[0].details["rows"], 3)


if __name__ == "__main__":
    unittest.main()
