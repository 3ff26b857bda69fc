"""Tests for the performance monitoring API."""

import pytest
from fastapi.testclient import TestClient

from config.monitoring_config import MonitoringSettings
from src.api.main import create_app

ADMIN = {"X-User-Roles": "admin"}
ANALYST = {"X-User-Roles": "analyst"}


@pytest.fixture
def client(engine):
    settings = MonitoringSettings(metrics_auto_start=False, metrics_database_url="sqlite://")
    app = create_app(settings=settings, engine=engine)
    with TestClient(app) as test_client:
        yield test_client


class TestAccessControl:
    """Role gating via the gateway roles header."""

    def test_missing_roles_header(self, client):
        response = client.get("/api/performance/realtime")

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Authentication required"}

    def test_insufficient_role(self, client):
        response = client.get("/api/performance/summary", headers={"X-User-Roles": "patient"})

        assert response.status_code == 403
        assert response.json()["success"] is False
        assert "Insufficient permissions" in response.json()["message"]

    def test_analyst_can_read(self, client):
        response = client.get("/api/performance/summary", headers=ANALYST)
        assert response.status_code == 200

    def test_analyst_cannot_control_collection(self, client):
        response = client.post("/api/performance/monitoring", json={"action": "stop"}, headers=ANALYST)
        assert response.status_code == 403

    def test_roles_are_comma_separated(self, client):
        response = client.get("/api/performance/health", headers={"X-User-Roles": "viewer, Super_Admin"})
        assert response.status_code == 200


class TestReadEndpoints:
    """Snapshot, health and history reads."""

    def test_realtime_without_data(self, client):
        response = client.get("/api/performance/realtime", headers=ADMIN)

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "No metrics data available"}

    def test_realtime_returns_latest_document(self, client, seed):
        seed({"cpu": 12}, {"cpu": 34})

        response = client.get("/api/performance/realtime", headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["server"]["cpu"]["usage"] == 34
        assert "healthStatus" in body["data"]
        assert "errorMetrics" in body["data"]

    def test_health_without_data(self, client):
        response = client.get("/api/performance/health", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["data"] == {"overall": "unknown", "services": {}, "alerts": []}

    def test_history_pagination(self, client, seed):
        seed(*({"cpu": value} for value in range(5)))

        response = client.get("/api/performance/history?limit=2&skip=0", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["metrics"]) == 2
        assert data["pagination"] == {"total": 5, "limit": 2, "skip": 0, "hasMore": True}
        assert data["metrics"][0]["server"]["cpu"]["usage"] == 4

    def test_history_sort_ascending(self, client, seed):
        seed({"cpu": 30}, {"cpu": 10}, {"cpu": 20})

        response = client.get(
            "/api/performance/history",
            params={"sortBy": "server.cpu.usage", "sortOrder": "asc"},
            headers=ADMIN
        )

        values = [m["server"]["cpu"]["usage"] for m in response.json()["data"]["metrics"]]
        assert values == [10, 20, 30]

    def test_history_rejects_unknown_sort_field(self, client):
        response = client.get("/api/performance/history?sortBy=password", headers=ADMIN)

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_history_rejects_malformed_date(self, client):
        response = client.get("/api/performance/history?startDate=yesterday", headers=ADMIN)

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_summary_aggregates(self, client, seed):
        seed({"cpu": 50}, {"cpu": 92}, {"cpu": 60})

        response = client.get("/api/performance/summary?period=1h", headers=ADMIN)

        summary = response.json()["data"]["summary"]
        assert summary["maxCpuUsage"] == 92
        assert summary["avgCpuUsage"] == pytest.approx(67.33, abs=0.01)

    def test_unknown_period_uses_default(self, client):
        assert client.get("/api/performance/summary?period=2y", headers=ADMIN).json()["data"]["period"] == "24h"
        assert client.get("/api/performance/business?period=1h", headers=ADMIN).json()["data"]["period"] == "30d"

    @pytest.mark.parametrize("path", ["trends", "database", "errors", "business"])
    def test_family_endpoints_use_envelope(self, client, path):
        response = client.get(f"/api/performance/{path}", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert "data" in response.json()


class TestMonitoringControl:
    """Starting and stopping the collector."""

    def test_invalid_action(self, client):
        response = client.post("/api/performance/monitoring", json={"action": "pause"}, headers=ADMIN)

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": 'Invalid action. Use "start" or "stop"'}

    def test_start_and_stop(self, client):
        response = client.post("/api/performance/monitoring", json={"action": "start"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "System monitoring started"}

        status = client.get("/api/performance/monitoring", headers=ADMIN).json()["data"]
        assert status["running"] is True
        assert len(status["jobs"]) == 1

        response = client.post("/api/performance/monitoring", json={"action": "stop"}, headers=ADMIN)
        assert response.json()["message"] == "System monitoring stopped"
        assert client.get("/api/performance/monitoring", headers=ADMIN).json()["data"]["running"] is False

    def test_stop_when_not_running(self, client):
        response = client.post("/api/performance/monitoring", json={"action": "stop"}, headers=ADMIN)
        assert response.status_code == 200


class TestServiceEndpoints:
    """Liveness and Prometheus exposition."""

    def test_liveness(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["database"] is True

    def test_prometheus_metrics(self, client):
        client.get("/health/live")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_requests_are_tracked(self, client):
        client.get("/health/live")
        client.get("/api/performance/realtime")

        stats = client.app.state.request_tracker.stats()
        assert stats.total >= 2
        assert stats.unauthorized >= 1


class BrokenRepository:
    """Repository whose reads fail."""

    def latest(self):
        raise RuntimeError("store unreachable")

    def query(self, *args):
        raise RuntimeError("store unreachable")


class BrokenSummaries:
    """Summary service whose reads fail."""

    def performance_summary(self, period):
        raise RuntimeError("store unreachable")

    def error_summary(self, period):
        raise RuntimeError("store unreachable")


class TestHandlerFailures:
    """Failures inside handlers are answered with 500 and counted as errors."""

    def test_realtime_failure_is_recorded(self, client):
        client.app.state.error_tracker.drain()
        client.app.state.repository = BrokenRepository()

        response = client.get("/api/performance/realtime", headers=ADMIN)

        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Failed to fetch realtime metrics"}
        batch = client.app.state.error_tracker.drain()
        assert batch.total == 1
        assert batch.by_type == {"runtime_error": 1}
        assert batch.recent[0].message == "store unreachable"

    def test_history_failure_is_recorded(self, client):
        client.app.state.error_tracker.drain()
        client.app.state.repository = BrokenRepository()

        response = client.get("/api/performance/history", headers=ADMIN)

        assert response.status_code == 500
        assert client.app.state.error_tracker.drain().total == 1

    @pytest.mark.parametrize("path", ["summary", "errors"])
    def test_summary_failures_are_recorded(self, client, path):
        client.app.state.error_tracker.drain()
        client.app.state.summary_service = BrokenSummaries()

        response = client.get(f"/api/performance/{path}", headers=ADMIN)

        assert response.status_code == 500
        assert response.json()["message"].startswith("Failed to fetch")
        assert client.app.state.error_tracker.drain().total == 1

    def test_not_found_is_not_an_error(self, client):
        client.app.state.error_tracker.drain()

        client.get("/api/performance/realtime", headers=ADMIN)

        assert client.app.state.error_tracker.drain().total == 0


class TestRoleSettings:
    """Role checks follow the settings the app was created with."""

    @pytest.fixture
    def gateway_client(self, engine):
        settings = MonitoringSettings(
            metrics_auto_start=False,
            metrics_database_url="sqlite://",
            monitoring_roles_header="X-Gateway-Roles",
            monitoring_viewer_roles=["ops"],
            monitoring_admin_roles=["ops_lead"]
        )
        with TestClient(create_app(settings=settings, engine=engine)) as test_client:
            yield test_client

    def test_custom_header_and_viewer_roles(self, gateway_client):
        response = gateway_client.get("/api/performance/health", headers={"X-Gateway-Roles": "ops"})
        assert response.status_code == 200

    def test_default_header_is_ignored(self, gateway_client):
        response = gateway_client.get("/api/performance/health", headers={"X-User-Roles": "ops"})
        assert response.status_code == 401

    def test_default_roles_no_longer_apply(self, gateway_client):
        response = gateway_client.get("/api/performance/health", headers={"X-Gateway-Roles": "admin"})
        assert response.status_code == 403

    def test_custom_admin_roles(self, gateway_client):
        response = gateway_client.post(
            "/api/performance/monitoring",
            json={"action": "stop"},
            headers={"X-Gateway-Roles": "ops_lead"}
        )
        assert response.status_code == 200
