"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from checkin_notifier.main import app

client = TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "checkin-notifier"


def test_readyz_endpoint_all_healthy():
    """Test readiness endpoint when the pool and configuration are healthy."""
    with (
        patch(
            "checkin_notifier.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": True, "pool_stats": {"pool_size": 2}}),
        ),
        patch("checkin_notifier.routes.health.settings.ADMIN_TOKEN", "admin"),
        patch("checkin_notifier.routes.health.settings.EMAIL_PROVIDER", "console-dev"),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["database"]["pool_stats"] == {"pool_size": 2}
    assert data["checks"]["configuration"]["ok"] is True


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the pool reports unhealthy."""
    with (
        patch(
            "checkin_notifier.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": False, "error": "Pool not initialized"}),
        ),
        patch("checkin_notifier.routes.health.settings.ADMIN_TOKEN", "admin"),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_endpoint_database_exception():
    """Test readiness endpoint when the health check itself raises."""
    with (
        patch(
            "checkin_notifier.routes.health.db_health_check",
            new=AsyncMock(side_effect=ConnectionError("refused")),
        ),
        patch("checkin_notifier.routes.health.settings.ADMIN_TOKEN", "admin"),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert "ConnectionError" in data["checks"]["database"]["error"]


def test_readyz_reports_missing_configuration():
    """Test readiness endpoint flags a sendgrid provider without an API key."""
    with (
        patch(
            "checkin_notifier.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": True}),
        ),
        patch("checkin_notifier.routes.health.settings.ADMIN_TOKEN", None),
        patch("checkin_notifier.routes.health.settings.EMAIL_PROVIDER", "sendgrid"),
        patch("checkin_notifier.routes.health.settings.SENDGRID_API_KEY", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert set(data["checks"]["configuration"]["issues"]) == {
        "SENDGRID_API_KEY not set",
        "ADMIN_TOKEN not set",
    }
