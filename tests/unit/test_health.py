"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from retention.features.interventions.api.router import get_provider_registry
from retention.features.interventions.domain import Channel
from retention.features.interventions.providers import EmailDispatcher, ProviderRegistry, StubProvider
from retention.main import app

client = TestClient(app)


def _email_only_registry() -> ProviderRegistry:
    registry = ProviderRegistry([EmailDispatcher(StubProvider())])
    registry.mark_unavailable(Channel.SMS, "Twilio not configured")
    return registry


def setup_function():
    app.dependency_overrides[get_provider_registry] = _email_only_registry


def teardown_function():
    app.dependency_overrides.clear()


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "retention-engine"


def test_readyz_endpoint_database_healthy():
    """Test readiness endpoint when the pool is healthy."""
    health = {"healthy": True, "pool_stats": {"pool_size": 2}}
    with patch("retention.routes.health.db_health_check", AsyncMock(return_value=health)):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["database"]["pool_stats"] == {"pool_size": 2}
    assert "latency_ms" in data["checks"]["database"]


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the pool reports a failure."""
    health = {"healthy": False, "error": "Pool not initialized"}
    with patch("retention.routes.health.db_health_check", AsyncMock(return_value=health)):
        response = client.get("/readyz")

    # Should still return 200, but overall_ok should be False
    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_endpoint_database_check_raises():
    with patch(
        "retention.routes.health.db_health_check",
        AsyncMock(side_effect=RuntimeError("boom")),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "RuntimeError: boom"


def test_readyz_reports_channel_availability():
    """Missing providers show up per channel without failing readiness."""
    with patch(
        "retention.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["channels"] == {"EMAIL": True, "SMS": False, "WHATSAPP": False}
    assert "stub_providers" in data["checks"]["configuration"]
