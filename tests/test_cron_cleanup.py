from __future__ import annotations

import os
import unittest
from collections.abc import Generator
from datetime import datetime
from unittest.mock import patch

from fastapi.testclient import TestClient

from warehouse_queue.db import get_db
from warehouse_queue.main import app
from warehouse_queue.models import AuditLog
from warehouse_queue.settings import get_settings


class _Result:
    def __init__(self, rowcount: int):
        self.rowcount = rowcount


class FakeDB:
    def __init__(self, rowcount: int = 0):
        self.rowcount = rowcount
        self.executed = 0
        self.added: list[object] = []

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        self.executed += 1
        return _Result(self.rowcount)

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


class CronCleanupEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()
        self.fake_db = FakeDB(rowcount=4)
        app.dependency_overrides[get_db] = override_get_db(self.fake_db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        get_settings.cache_clear()

    def test_missing_secret_header_is_unauthorized(self) -> None:
        with patch.dict(os.environ, {"CRON_SECRET": "cron-secret"}, clear=False):
            get_settings.cache_clear()
            response = self.client.get("/api/cron/clear-queues")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "UNAUTHORIZED")
        self.assertEqual(self.fake_db.executed, 0)

    def test_wrong_secret_is_unauthorized(self) -> None:
        with patch.dict(os.environ, {"CRON_SECRET": "cron-secret"}, clear=False):
            get_settings.cache_clear()
            response = self.client.get("/api/cron/clear-queues", headers={"Authorization": "Bearer nope"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.fake_db.executed, 0)

    def test_unset_secret_rejects_every_call(self) -> None:
        with patch.dict(os.environ, {"CRON_SECRET": ""}, clear=False):
            get_settings.cache_clear()
            response = self.client.post("/api/cron/clear-queues", headers={"Authorization": "Bearer anything"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.fake_db.executed, 0)

    def test_valid_secret_clears_past_registrations(self) -> None:
        with patch.dict(os.environ, {"CRON_SECRET": "cron-secret"}, clear=False):
            get_settings.cache_clear()
            for method in (self.client.get, self.client.post):
                response = method("/api/cron/clear-queues", headers={"Authorization": "Bearer cron-secret"})

                self.assertEqual(response.status_code, 200)
                body = response.json()
                self.assertTrue(body["success"])
                self.assertEqual(body["deleted_count"], 4)
                cutoff = datetime.fromisoformat(body["cutoff_utc"])
                timestamp = datetime.fromisoformat(body["timestamp"])
                self.assertLessEqual(cutoff, timestamp)

        self.assertEqual(self.fake_db.executed, 2)
        actions = [item.action for item in self.fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(actions, ["QUEUE_CLEANUP", "QUEUE_CLEANUP"])


if __name__ == "__main__":
    unittest.main()
