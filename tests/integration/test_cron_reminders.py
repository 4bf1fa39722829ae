"""
HTTP tests for the cron-triggered reminder pass.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from checkin_notifier.config import settings
from checkin_notifier.features.reminders.api.router import get_reminder_driver
from checkin_notifier.features.reminders.jobs import ReminderJobError
from checkin_notifier.main import app

CRON_SECRET = "test-cron-secret"
AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def driver():
    driver = AsyncMock()
    driver.run_once.return_value = {"job_run": "reminders", "reminders_sent": 2}
    return driver


@pytest.fixture
def client(monkeypatch, driver):
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    app.dependency_overrides[get_reminder_driver] = lambda: driver
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_runs_one_pass(client, driver):
    response = client.post("/cron/process-reminders", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"success": True, "job_run": "reminders", "reminders_sent": 2}
    driver.run_once.assert_awaited_once()


def test_rejects_admin_token(client, monkeypatch, driver):
    monkeypatch.setattr(settings, "ADMIN_TOKEN", "admin")

    response = client.post(
        "/cron/process-reminders", headers={"Authorization": "Bearer admin"}
    )

    assert response.status_code == 401
    driver.run_once.assert_not_awaited()


def test_job_error_is_503(client, driver):
    driver.run_once.side_effect = ReminderJobError(
        "Failed to load due subjects", operation="load_due_subjects"
    )

    response = client.post("/cron/process-reminders", headers=AUTH)

    assert response.status_code == 503


def test_response_carries_request_id(client):
    response = client.post(
        "/cron/process-reminders", headers={**AUTH, "X-Request-ID": "req-123"}
    )

    assert response.headers["X-Request-ID"] == "req-123"
