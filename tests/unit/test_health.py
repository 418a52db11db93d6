"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.features.warranty_notifications.channels import LogNotificationChannel
from app.main import app

client = TestClient(app)


@pytest.fixture
def app_components(monkeypatch):
    scheduler = MagicMock()
    scheduler.health_check.return_value = {"healthy": True, "state": "idle"}
    monkeypatch.setattr(app.state, "warranty_scheduler", scheduler, raising=False)
    monkeypatch.setattr(app.state, "warranty_channel", LogNotificationChannel(), raising=False)
    return scheduler


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_readyz_all_services_healthy(app_components):
    with (
        patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("app.routes.health.settings.REDIS_URL", None),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    checks = data["checks"]
    assert checks["database"]["ok"] is True
    assert checks["redis"] == {"ok": True, "mode": "in_memory_cache"}
    assert checks["notification_channel"]["ok"] is True
    assert checks["warranty_scheduler"]["ok"] is True
    assert isinstance(checks["database"]["latency_ms"], (int, float))


def test_readyz_database_unhealthy(app_components):
    with (
        patch(
            "app.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": False, "error": "Pool not initialized"}),
        ),
        patch("app.routes.health.settings.REDIS_URL", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_redis_unhealthy(app_components):
    with (
        patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("app.routes.health.settings.REDIS_URL", "redis://localhost:6379/0"),
        patch("app.routes.health.fast_redis.ping", AsyncMock(return_value=False)),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_scheduler_stalled(app_components):
    app_components.health_check.return_value = {"healthy": False, "is_overdue": True}
    with (
        patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("app.routes.health.settings.REDIS_URL", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["warranty_scheduler"]["is_overdue"] is True


def test_readyz_channel_degraded(app_components, monkeypatch):
    channel = MagicMock()
    channel.health_check = AsyncMock(
        return_value={"healthy": False, "service": "smtp", "error": "SMTP configuration not found."}
    )
    monkeypatch.setattr(app.state, "warranty_channel", channel)
    with (
        patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("app.routes.health.settings.REDIS_URL", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["notification_channel"]["service"] == "smtp"
